"""Queue tokens, lifecycle, presence and patient-facing status"""
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta

import pytest
from sqlmodel import Session, select

from errors import ConcurrencyError, NotFound, StateError, TokenExpired, ValidationError
from models import (
    Appointment,
    AppointmentStatus,
    QueueEntry,
    QueuePriority,
    QueueSource,
    QueueStatus,
)
from services.queue_engine import (
    check_in,
    close_stale_entries,
    doctor_check_in,
    doctor_check_out,
    list_queue,
    transition,
)
from services.public_token import get_status_by_public_token, issue_public_token
from services.queue_status import find_entry_by_token, queue_status
from services.slot_generator import generate_slots
from services.slot_store import book_appointment, cancel_appointment, list_slots

TODAY = date(2026, 3, 2)


@pytest.fixture
def walk_in(session, doctor_id, now):
    """Check in a walk-in ``minutes`` after opening; returns the entry id"""
    def add(patient_ref, minutes=0, priority=QueuePriority.NORMAL):
        entry = check_in(
            session,
            doctor_id,
            patient_ref,
            QueueSource.WALKIN,
            queue_date=TODAY,
            priority=priority,
            now=now + timedelta(minutes=minutes),
        )
        return entry.id
    return add


def status_of(session, entry_id, now):
    return queue_status(session, session.get(QueueEntry, entry_id), today=now.date())


def call_in(session, entry_id, now):
    transition(session, entry_id, QueueStatus.WAITING, now=now)
    return transition(session, entry_id, QueueStatus.WITH_DOCTOR, now=now)


def test_tokens_are_sequential_per_doctor_and_day(session, doctor_id, walk_in, now):
    first = session.get(QueueEntry, walk_in("patient-1"))
    second = session.get(QueueEntry, walk_in("patient-2", minutes=1))
    tomorrow = check_in(
        session, doctor_id, "patient-3", QueueSource.WALKIN,
        queue_date=TODAY + timedelta(days=1), now=now,
    )

    assert (first.token, second.token) == (1, 2)
    assert tomorrow.token == 1
    assert first.status == QueueStatus.QUEUED


def test_concurrent_check_ins_issue_every_token_once(engine, session, doctor_id, now):
    patients = [f"patient-{i}" for i in range(12)]

    def issue(patient_ref):
        with Session(engine) as worker_session:
            for _ in range(10):
                try:
                    entry = check_in(
                        worker_session, doctor_id, patient_ref, QueueSource.WALKIN,
                        queue_date=TODAY, now=now,
                    )
                    return entry.token
                except ConcurrencyError:
                    continue
            raise AssertionError(f"{patient_ref} never got a token")

    with ThreadPoolExecutor(max_workers=6) as pool:
        tokens = list(pool.map(issue, patients))

    assert sorted(tokens) == list(range(1, len(patients) + 1))


def test_walk_in_cannot_reference_a_slot(session, doctor_id, now):
    with pytest.raises(ValidationError):
        check_in(session, doctor_id, "patient-1", QueueSource.WALKIN, queue_date=TODAY, slot_id=1, now=now)


def test_appointment_check_in_follows_the_booking(session, doctor_id, configure_schedule, now):
    configure_schedule(doctor_id, duration=30)
    generate_slots(session, doctor_id, TODAY, TODAY)
    slot = list_slots(session, doctor_id, TODAY)[2]
    appointment = book_appointment(session, slot.id, "patient-1", now=now)

    entry = check_in(
        session, doctor_id, "patient-1", QueueSource.APPOINTMENT,
        queue_date=TODAY, slot_id=slot.id, now=now,
    )

    assert entry.appointment_id == appointment.id
    assert session.get(Appointment, appointment.id).status == AppointmentStatus.CHECKED_IN
    with pytest.raises(StateError):
        check_in(
            session, doctor_id, "patient-1", QueueSource.APPOINTMENT,
            queue_date=TODAY, slot_id=slot.id, now=now,
        )

    call_in(session, entry.id, now)
    transition(session, entry.id, QueueStatus.COMPLETED, now=now + timedelta(minutes=30))

    assert session.get(Appointment, appointment.id).status == AppointmentStatus.COMPLETED
    completed = session.get(QueueEntry, entry.id)
    assert completed.called_at == now
    assert completed.completed_at == now + timedelta(minutes=30)


def test_appointment_check_in_needs_a_booked_slot(session, doctor_id, configure_schedule, now):
    configure_schedule(doctor_id, duration=30)
    generate_slots(session, doctor_id, TODAY, TODAY + timedelta(days=1))
    free_slot = list_slots(session, doctor_id, TODAY)[0]
    tomorrow_slot = list_slots(session, doctor_id, TODAY + timedelta(days=1))[0]
    book_appointment(session, tomorrow_slot.id, "patient-2", now=now)

    with pytest.raises(ValidationError):
        check_in(session, doctor_id, "patient-1", QueueSource.APPOINTMENT, queue_date=TODAY, now=now)
    with pytest.raises(StateError):
        check_in(
            session, doctor_id, "patient-1", QueueSource.APPOINTMENT,
            queue_date=TODAY, slot_id=free_slot.id, now=now,
        )
    with pytest.raises(ValidationError):
        check_in(
            session, doctor_id, "patient-2", QueueSource.APPOINTMENT,
            queue_date=TODAY, slot_id=tomorrow_slot.id, now=now,
        )



def test_cancelling_during_the_consultation_is_refused(session, doctor_id, configure_schedule, now):
    configure_schedule(doctor_id, duration=30)
    generate_slots(session, doctor_id, TODAY, TODAY)
    slot = list_slots(session, doctor_id, TODAY)[2]
    appointment = book_appointment(session, slot.id, "patient-1", now=now)
    entry = check_in(
        session, doctor_id, "patient-1", QueueSource.APPOINTMENT,
        queue_date=TODAY, slot_id=slot.id, now=now,
    )
    call_in(session, entry.id, now)

    with pytest.raises(StateError):
        cancel_appointment(session, appointment.id, now=now)

    assert session.get(Appointment, appointment.id).status == AppointmentStatus.CHECKED_IN
    assert session.get(QueueEntry, entry.id).status == QueueStatus.WITH_DOCTOR

@pytest.mark.parametrize(
    "path, illegal",
    [
        ([], QueueStatus.WITH_DOCTOR),
        ([], QueueStatus.COMPLETED),
        ([QueueStatus.WAITING, QueueStatus.WITH_DOCTOR], QueueStatus.CANCELLED),
        ([QueueStatus.CANCELLED], QueueStatus.WAITING),
        ([QueueStatus.WAITING, QueueStatus.NO_SHOW], QueueStatus.WITH_DOCTOR),
    ],
)
def test_illegal_transitions(session, walk_in, now, path, illegal):
    entry_id = walk_in("patient-1")
    for status in path:
        transition(session, entry_id, status, now=now)

    with pytest.raises(StateError):
        transition(session, entry_id, illegal, now=now)


def test_unknown_entry(session, doctor_id, now):
    with pytest.raises(NotFound):
        transition(session, 9999, QueueStatus.WAITING, now=now)


def test_only_one_patient_with_the_doctor(session, walk_in, now):
    first = walk_in("patient-1")
    second = walk_in("patient-2", minutes=1)
    call_in(session, first, now)
    transition(session, second, QueueStatus.WAITING, now=now)

    with pytest.raises(StateError):
        transition(session, second, QueueStatus.WITH_DOCTOR, now=now)

    transition(session, first, QueueStatus.COMPLETED, now=now)
    assert transition(session, second, QueueStatus.WITH_DOCTOR, now=now).status == QueueStatus.WITH_DOCTOR


def test_concurrent_calls_admit_one_patient(engine, session, doctor_id, walk_in, now):
    entry_ids = [walk_in(f"patient-{i}", minutes=i) for i in range(6)]
    for entry_id in entry_ids:
        transition(session, entry_id, QueueStatus.WAITING, now=now)

    def call(entry_id):
        with Session(engine) as worker_session:
            try:
                transition(worker_session, entry_id, QueueStatus.WITH_DOCTOR, now=now)
                return "called"
            except (StateError, ConcurrencyError):
                return "refused"

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(call, entry_ids))

    assert outcomes.count("called") == 1
    session.rollback()
    with_doctor = session.exec(
        select(QueueEntry).where(QueueEntry.doctor_id == doctor_id, QueueEntry.status == QueueStatus.WITH_DOCTOR)
    ).all()
    assert len(with_doctor) == 1


def test_position_only_moves_forward(session, doctor_id, walk_in, now):
    first = walk_in("patient-1")
    second = walk_in("patient-2", minutes=1)
    third = walk_in("patient-3", minutes=2)

    positions = [status_of(session, third, now)["position"]]
    transition(session, first, QueueStatus.CANCELLED, now=now)
    positions.append(status_of(session, third, now)["position"])
    call_in(session, second, now)
    positions.append(status_of(session, third, now)["position"])

    assert positions == [3, 2, 1]
    assert status_of(session, second, now)["position"] == 0


def test_priority_moves_ahead_of_earlier_tokens(session, doctor_id, walk_in, now):
    walk_in("patient-1")
    walk_in("patient-2", minutes=1)
    urgent = walk_in("patient-3", minutes=2, priority=QueuePriority.URGENT)
    emergency = walk_in("patient-4", minutes=3, priority=QueuePriority.EMERGENCY)

    assert status_of(session, emergency, now)["position"] == 1
    assert status_of(session, urgent, now)["position"] == 2
    order = [entry.token for entry in list_queue(session, doctor_id, TODAY)]
    assert order == [4, 3, 1, 2]


def test_status_reports_wait_and_doctor_availability(session, doctor_id, configure_schedule, walk_in, now):
    first = walk_in("patient-1")
    second = walk_in("patient-2", minutes=1)

    status = status_of(session, second, now)
    assert status["people_ahead"] == 1
    assert status["estimated_wait_minutes"] is None  # duration not configured yet
    assert status["doctor_available"] is False

    configure_schedule(doctor_id, duration=15)
    doctor_check_in(session, doctor_id, now=now)
    status = status_of(session, second, now)
    assert status["estimated_wait_minutes"] == 15
    assert status["doctor_available"] is True

    call_in(session, first, now)
    status = status_of(session, second, now)
    assert status["doctor_available"] is False
    assert status["doctor_checked_in"] is True
    assert status["current_token"] == 1

    transition(session, first, QueueStatus.COMPLETED, now=now)
    doctor_check_out(session, doctor_id, now=now + timedelta(hours=4))
    assert status_of(session, second, now)["doctor_available"] is False

    done = status_of(session, first, now)
    assert done["position"] is None
    assert done["people_ahead"] == 0
    assert done["estimated_wait_minutes"] == 0


def test_doctor_check_out_requires_check_in(session, doctor_id, now):
    with pytest.raises(StateError):
        doctor_check_out(session, doctor_id, now=now)

    doctor_check_in(session, doctor_id, now=now)
    record = doctor_check_in(session, doctor_id, now=now + timedelta(minutes=5))
    assert record.checked_in_at == now


def test_find_entry_by_token(session, doctor_id, walk_in):
    entry_id = walk_in("patient-1")

    assert find_entry_by_token(session, doctor_id, TODAY, 1).id == entry_id
    with pytest.raises(NotFound):
        find_entry_by_token(session, doctor_id, TODAY, 2)


def test_stale_entries_are_closed(session, doctor_id, now):
    yesterday = TODAY - timedelta(days=1)
    morning = datetime(2026, 3, 1, 9, 0)
    ids = [
        check_in(session, doctor_id, f"patient-{i}", QueueSource.WALKIN, queue_date=yesterday, now=morning).id
        for i in range(4)
    ]
    transition(session, ids[1], QueueStatus.WAITING, now=morning)
    call_in(session, ids[2], morning)
    transition(session, ids[3], QueueStatus.CANCELLED, now=morning)
    today_entry = check_in(session, doctor_id, "patient-9", QueueSource.WALKIN, queue_date=TODAY, now=now).id

    closed = close_stale_entries(session, doctor_id, today=TODAY, now=now)

    assert closed == 3
    statuses = [session.get(QueueEntry, entry_id).status for entry_id in ids]
    assert statuses == [QueueStatus.CANCELLED, QueueStatus.NO_SHOW, QueueStatus.COMPLETED, QueueStatus.CANCELLED]
    assert session.get(QueueEntry, today_entry).status == QueueStatus.QUEUED
    assert close_stale_entries(session, doctor_id, today=TODAY, now=now) == 0


def test_public_token_reports_queue_status(session, clinic, doctor_id, walk_in, now):
    walk_in("patient-1")
    entry_id = walk_in("patient-2", minutes=1)

    issued = issue_public_token(session, entry_id, now=now)

    assert len(issued["token"]) == 32
    assert issued["url_path"].endswith(issued["token"])
    assert issued["expires_at"] == now + timedelta(minutes=480)

    status = get_status_by_public_token(session, issued["token"], now=now + timedelta(hours=1))
    assert status["entry_id"] == entry_id
    assert status["clinic_name"] == clinic.name
    assert status["doctor_name"]
    assert status["position"] == 2
    assert status["people_ahead"] == 1
    assert status["checked_in_at"] == now + timedelta(minutes=1)


def test_public_token_expiry_and_unknown_tokens(session, walk_in, now):
    entry_id = walk_in("patient-1")
    issued = issue_public_token(session, entry_id, ttl_minutes=30, now=now)

    with pytest.raises(TokenExpired):
        get_status_by_public_token(session, issued["token"], now=now + timedelta(minutes=31))
    with pytest.raises(NotFound):
        get_status_by_public_token(session, "not-a-token", now=now)
    with pytest.raises(ValidationError):
        issue_public_token(session, entry_id, ttl_minutes=0, now=now)
    with pytest.raises(NotFound):
        issue_public_token(session, 9999, now=now)
