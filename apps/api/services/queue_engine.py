"""
Queue Engine

Per doctor, per clinic-local day queue of patients:
- tokens are issued 1, 2, 3, ... without gaps or duplicates, under the
  ("queue", doctor, date) scope so concurrent check-ins never read the same max
- entries move QUEUED -> WAITING -> WITH_DOCTOR -> COMPLETED, with CANCELLED
  and NO_SHOW exits before the consultation starts
- at most one entry per doctor is WITH_DOCTOR, checked and set under the
  ("doctor", doctor) scope
"""

from datetime import date, datetime
from typing import Dict, List, Optional, Set
import logging

from sqlalchemy import func
from sqlmodel import Session, select

from database import scoped_transaction
from errors import NotFound, StateError, ValidationError
from models import (
    ACTIVE_QUEUE_STATUSES,
    Appointment,
    AppointmentStatus,
    Doctor,
    DoctorDailyCheckIn,
    QueueEntry,
    QueuePriority,
    QueueSource,
    QueueStatus,
    Slot,
    SlotStatus,
)
from services.schedule_store import get_active_doctor
from services.slot_store import release
from services.queue_status import effective_order_key
from utils.cache import QueueCache
from utils.clinic_time import clinic_now

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[QueueStatus, Set[QueueStatus]] = {
    QueueStatus.QUEUED: {QueueStatus.WAITING, QueueStatus.CANCELLED},
    QueueStatus.WAITING: {QueueStatus.WITH_DOCTOR, QueueStatus.CANCELLED, QueueStatus.NO_SHOW},
    QueueStatus.WITH_DOCTOR: {QueueStatus.COMPLETED},
    QueueStatus.COMPLETED: set(),
    QueueStatus.CANCELLED: set(),
    QueueStatus.NO_SHOW: set(),
}

# What an entry leaving the queue means for its appointment
APPOINTMENT_OUTCOMES = {
    QueueStatus.COMPLETED: AppointmentStatus.COMPLETED,
    QueueStatus.NO_SHOW: AppointmentStatus.NO_SHOW,
    QueueStatus.CANCELLED: AppointmentStatus.CANCELLED,
}

# How a leftover entry from an earlier day is closed
STALE_OUTCOMES = {
    QueueStatus.QUEUED: QueueStatus.CANCELLED,
    QueueStatus.WAITING: QueueStatus.NO_SHOW,
    QueueStatus.WITH_DOCTOR: QueueStatus.COMPLETED,
}


def get_queue_entry(session: Session, entry_id: int) -> QueueEntry:
    entry = session.get(QueueEntry, entry_id)
    if not entry:
        raise NotFound("Queue entry not found", entry_id=entry_id)
    return entry


def _next_token(session: Session, doctor_id: int, queue_date: date) -> int:
    max_token = session.exec(
        select(func.max(QueueEntry.token)).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.queue_date == queue_date,
        )
    ).one()
    return (max_token or 0) + 1


def _check_in_appointment(
    session: Session,
    doctor: Doctor,
    slot_id: Optional[int],
    queue_date: date,
) -> Appointment:
    if slot_id is None:
        raise ValidationError("slot_id is required for appointment check-in")

    slot = session.get(Slot, slot_id)
    if not slot or slot.doctor_id != doctor.id:
        raise NotFound("Slot not found for this doctor", slot_id=slot_id)
    if slot.slot_date != queue_date:
        raise ValidationError(
            f"Slot is on {slot.slot_date}, not on the queue date {queue_date}",
            slot_id=slot_id,
        )
    if slot.status != SlotStatus.BOOKED:
        raise StateError("Slot has no booking to check in", slot_id=slot_id)

    appointment = session.exec(
        select(Appointment).where(
            Appointment.slot_id == slot.id,
            Appointment.status.in_([AppointmentStatus.BOOKED, AppointmentStatus.CHECKED_IN]),
        )
    ).first()
    if appointment is None:
        raise StateError("Slot has no booking to check in", slot_id=slot_id)
    if appointment.status == AppointmentStatus.CHECKED_IN:
        raise StateError("Appointment is already checked in", appointment_id=appointment.id)

    appointment.status = AppointmentStatus.CHECKED_IN
    session.add(appointment)
    return appointment


def check_in(
    session: Session,
    doctor_id: int,
    patient_ref: str,
    source: QueueSource,
    queue_date: Optional[date] = None,
    slot_id: Optional[int] = None,
    priority: QueuePriority = QueuePriority.NORMAL,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> QueueEntry:
    """Issue the next token of the doctor's queue for ``queue_date`` (clinic today by default)"""
    source = QueueSource(source)
    priority = QueuePriority(priority)
    if not patient_ref or not patient_ref.strip():
        raise ValidationError("patient_ref is required")
    if source == QueueSource.WALKIN and slot_id is not None:
        raise ValidationError("Walk-in check-ins cannot reference a slot")

    if queue_date is None or now is None:
        tz_name = get_active_doctor(session, doctor_id).clinic.timezone
        now = now or clinic_now(tz_name)
        queue_date = queue_date or now.date()

    with scoped_transaction(session, "queue", doctor_id, queue_date):
        doctor = get_active_doctor(session, doctor_id)

        appointment = None
        if source == QueueSource.APPOINTMENT:
            appointment = _check_in_appointment(session, doctor, slot_id, queue_date)

        entry = QueueEntry(
            clinic_id=doctor.clinic_id,
            doctor_id=doctor.id,
            queue_date=queue_date,
            token=_next_token(session, doctor.id, queue_date),
            patient_ref=patient_ref.strip(),
            source=source,
            priority=priority,
            status=QueueStatus.QUEUED,
            appointment_id=appointment.id if appointment else None,
            reason=reason,
            checked_in_at=now,
        )
        session.add(entry)
        session.flush()
        token = entry.token

    QueueCache.invalidate_doctor(doctor_id)
    logger.info(f"Token {token} issued for doctor {doctor_id} on {queue_date} ({source.value})")
    return entry


def _apply_status(session: Session, entry: QueueEntry, new_status: QueueStatus, now: datetime) -> None:
    entry.status = new_status
    if new_status == QueueStatus.WITH_DOCTOR:
        entry.called_at = now
    elif new_status in APPOINTMENT_OUTCOMES:
        entry.completed_at = now
    session.add(entry)

    outcome = APPOINTMENT_OUTCOMES.get(new_status)
    if outcome is not None and entry.appointment_id is not None:
        appointment = session.get(Appointment, entry.appointment_id)
        if appointment and appointment.status == AppointmentStatus.CHECKED_IN:
            appointment.status = outcome
            session.add(appointment)
            if outcome == AppointmentStatus.CANCELLED:
                appointment.cancelled_at = now
                appointment.cancellation_reason = "Left the queue"
                session.flush()
                if appointment.slot_id is not None:
                    release(session, appointment.slot_id)


def transition(
    session: Session,
    entry_id: int,
    new_status: QueueStatus,
    now: Optional[datetime] = None,
) -> QueueEntry:
    new_status = QueueStatus(new_status)
    doctor_id = get_queue_entry(session, entry_id).doctor_id

    with scoped_transaction(session, "doctor", doctor_id):
        entry = get_queue_entry(session, entry_id)
        current = QueueStatus(entry.status)
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise StateError(
                f"Cannot move a {current.value} entry to {new_status.value}",
                entry_id=entry_id,
            )

        if now is None:
            now = clinic_now(session.get(Doctor, doctor_id).clinic.timezone)

        if new_status == QueueStatus.WITH_DOCTOR:
            busy = session.exec(
                select(QueueEntry).where(
                    QueueEntry.doctor_id == doctor_id,
                    QueueEntry.status == QueueStatus.WITH_DOCTOR,
                    QueueEntry.id != entry.id,
                )
            ).first()
            if busy is not None:
                raise StateError(
                    f"Token {busy.token} is already with the doctor",
                    entry_id=entry_id,
                    busy_entry_id=busy.id,
                )

        _apply_status(session, entry, new_status, now)
        session.flush()

    QueueCache.invalidate_doctor(doctor_id)
    logger.info(f"Queue entry {entry_id} moved {current.value} -> {new_status.value}")
    return entry


def close_stale_entries(
    session: Session,
    doctor_id: int,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> int:
    """Close entries left open on days before ``today``; returns how many were closed"""
    with scoped_transaction(session, "doctor", doctor_id):
        doctor = get_active_doctor(session, doctor_id)
        now = now or clinic_now(doctor.clinic.timezone)
        today = today or now.date()

        stale = session.exec(
            select(QueueEntry).where(
                QueueEntry.doctor_id == doctor_id,
                QueueEntry.queue_date < today,
                QueueEntry.status.in_(list(STALE_OUTCOMES)),
            )
        ).all()
        for entry in stale:
            _apply_status(session, entry, STALE_OUTCOMES[QueueStatus(entry.status)], now)
        session.flush()
        closed = len(stale)

    if closed:
        QueueCache.invalidate_doctor(doctor_id)
        logger.info(f"Closed {closed} stale queue entries for doctor {doctor_id} before {today}")
    return closed


def list_queue(
    session: Session,
    doctor_id: int,
    queue_date: date,
    include_closed: bool = True,
) -> List[QueueEntry]:
    """Entries of one day: the patient with the doctor, then the waiting order, then closed entries by token"""
    query = select(QueueEntry).where(QueueEntry.doctor_id == doctor_id, QueueEntry.queue_date == queue_date)
    if not include_closed:
        query = query.where(QueueEntry.status.in_(list(ACTIVE_QUEUE_STATUSES) + [QueueStatus.WITH_DOCTOR]))
    entries = session.exec(query).all()

    with_doctor = [e for e in entries if e.status == QueueStatus.WITH_DOCTOR]
    active = sorted((e for e in entries if e.status in ACTIVE_QUEUE_STATUSES), key=effective_order_key)
    closed = sorted(
        (e for e in entries if e.status not in ACTIVE_QUEUE_STATUSES and e.status != QueueStatus.WITH_DOCTOR),
        key=lambda e: e.token,
    )
    return with_doctor + active + closed


def get_doctor_check_in(session: Session, doctor_id: int, checkin_date: date) -> Optional[DoctorDailyCheckIn]:
    return session.exec(
        select(DoctorDailyCheckIn).where(
            DoctorDailyCheckIn.doctor_id == doctor_id,
            DoctorDailyCheckIn.checkin_date == checkin_date,
        )
    ).first()


def doctor_check_in(session: Session, doctor_id: int, now: Optional[datetime] = None) -> DoctorDailyCheckIn:
    """Mark the doctor present for the clinic day; checking in again after a check-out reopens the day"""
    with scoped_transaction(session, "doctor", doctor_id):
        doctor = get_active_doctor(session, doctor_id)
        now = now or clinic_now(doctor.clinic.timezone)

        record = get_doctor_check_in(session, doctor_id, now.date())
        if record is None:
            record = DoctorDailyCheckIn(doctor_id=doctor_id, checkin_date=now.date(), checked_in_at=now)
        elif record.checked_out_at is not None:
            record.checked_out_at = None
        session.add(record)
        session.flush()

    QueueCache.invalidate_doctor(doctor_id)
    logger.info(f"Doctor {doctor_id} checked in for {now.date()}")
    return record


def doctor_check_out(session: Session, doctor_id: int, now: Optional[datetime] = None) -> DoctorDailyCheckIn:
    with scoped_transaction(session, "doctor", doctor_id):
        doctor = get_active_doctor(session, doctor_id)
        now = now or clinic_now(doctor.clinic.timezone)

        record = get_doctor_check_in(session, doctor_id, now.date())
        if record is None or record.checked_out_at is not None:
            raise StateError("Doctor is not checked in today", doctor_id=doctor_id)
        record.checked_out_at = now
        session.add(record)
        session.flush()

    QueueCache.invalidate_doctor(doctor_id)
    logger.info(f"Doctor {doctor_id} checked out for {now.date()}")
    return record
