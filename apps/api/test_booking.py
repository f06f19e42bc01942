"""Slot reservation, booking and cancellation"""
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime

import pytest
from sqlmodel import Session, select

from errors import AlreadyBooked, ConcurrencyError, NotFound, StateError, ValidationError
from models import Appointment, AppointmentStatus, Slot, SlotStatus
from services.slot_generator import generate_slots
from services.slot_store import (
    book_appointment,
    cancel_appointment,
    list_slots,
    mark_no_show,
    reschedule_appointment,
)

TUESDAY = date(2026, 3, 3)


@pytest.fixture
def tuesday_slots(session, doctor_id, configure_schedule):
    configure_schedule(doctor_id, duration=30)
    generate_slots(session, doctor_id, date(2026, 3, 2), TUESDAY)
    return [slot.id for slot in list_slots(session, doctor_id, TUESDAY)]


def test_book_appointment(session, tuesday_slots, now):
    appointment = book_appointment(session, tuesday_slots[0], "patient-1", now=now)

    assert appointment.status == AppointmentStatus.BOOKED
    assert appointment.slot_id == tuesday_slots[0]
    assert appointment.starts_at == datetime(2026, 3, 3, 9, 0)
    assert appointment.ends_at == datetime(2026, 3, 3, 9, 30)
    assert session.get(Slot, tuesday_slots[0]).status == SlotStatus.BOOKED


def test_second_booking_loses(session, tuesday_slots, now):
    book_appointment(session, tuesday_slots[0], "patient-1", now=now)

    with pytest.raises(AlreadyBooked):
        book_appointment(session, tuesday_slots[0], "patient-2", now=now)


def test_cannot_book_a_slot_that_started(session, tuesday_slots):
    with pytest.raises(ValidationError):
        book_appointment(session, tuesday_slots[0], "patient-1", now=datetime(2026, 3, 3, 9, 0))


def test_unknown_slot(session, tuesday_slots, now):
    with pytest.raises(NotFound):
        book_appointment(session, 9999, "patient-1", now=now)


def test_cancel_releases_the_slot(session, tuesday_slots, now):
    appointment = book_appointment(session, tuesday_slots[1], "patient-1", now=now)

    cancelled = cancel_appointment(session, appointment.id, "Feeling better", now=now)

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancellation_reason == "Feeling better"
    assert cancelled.slot_id is None
    assert session.get(Slot, tuesday_slots[1]).status == SlotStatus.AVAILABLE

    # The freed slot can be booked again
    again = book_appointment(session, tuesday_slots[1], "patient-2", now=now)
    assert again.status == AppointmentStatus.BOOKED


def test_cancel_twice_is_a_state_error(session, tuesday_slots, now):
    appointment = book_appointment(session, tuesday_slots[0], "patient-1", now=now)
    cancel_appointment(session, appointment.id, now=now)

    with pytest.raises(StateError):
        cancel_appointment(session, appointment.id, now=now)



def test_no_show_after_the_appointment_started(session, tuesday_slots, now):
    appointment = book_appointment(session, tuesday_slots[0], "patient-1", now=now)

    with pytest.raises(ValidationError):
        mark_no_show(session, appointment.id, now=now)

    missed = mark_no_show(session, appointment.id, now=datetime(2026, 3, 3, 9, 20))

    assert missed.status == AppointmentStatus.NO_SHOW
    assert missed.slot_id == tuesday_slots[0]
    assert session.get(Slot, tuesday_slots[0]).status == SlotStatus.BOOKED
    with pytest.raises(StateError):
        mark_no_show(session, appointment.id, now=datetime(2026, 3, 3, 9, 30))
    with pytest.raises(StateError):
        cancel_appointment(session, appointment.id, now=datetime(2026, 3, 3, 9, 30))


def test_reschedule_releases_the_slot(session, tuesday_slots, now):
    appointment = book_appointment(session, tuesday_slots[2], "patient-1", now=now)

    moved = reschedule_appointment(session, appointment.id)

    assert moved.status == AppointmentStatus.RESCHEDULED
    assert moved.slot_id is None
    assert session.get(Slot, tuesday_slots[2]).status == SlotStatus.AVAILABLE
    assert book_appointment(session, tuesday_slots[2], "patient-2", now=now).status == AppointmentStatus.BOOKED
    with pytest.raises(StateError):
        reschedule_appointment(session, appointment.id)


def test_only_booked_appointments_are_rescheduled_or_missed(session, tuesday_slots, now):
    appointment = book_appointment(session, tuesday_slots[0], "patient-1", now=now)
    cancel_appointment(session, appointment.id, now=now)

    with pytest.raises(StateError):
        reschedule_appointment(session, appointment.id)
    with pytest.raises(StateError):
        mark_no_show(session, appointment.id, now=datetime(2026, 3, 3, 10, 0))
    with pytest.raises(NotFound):
        reschedule_appointment(session, 9999)

def test_concurrent_bookings_of_one_slot(engine, session, tuesday_slots, now):
    slot_id = tuesday_slots[2]

    def attempt(patient):
        with Session(engine) as worker_session:
            for _ in range(5):
                try:
                    book_appointment(worker_session, slot_id, patient, now=now)
                    return "booked"
                except AlreadyBooked:
                    return "lost"
                except ConcurrencyError:
                    continue
            return "gave up"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, [f"patient-{i}" for i in range(8)]))

    assert outcomes.count("booked") == 1
    assert outcomes.count("lost") == 7

    session.rollback()
    holders = session.exec(select(Appointment).where(Appointment.slot_id == slot_id)).all()
    assert len(holders) == 1
