"""
Slot Store

Persistence and atomic state changes of materialized slots, plus the
booking and cancellation flows built on them.

A slot moves AVAILABLE -> BOOKED only through ``reserve``, a conditional
UPDATE that succeeds for exactly one of any number of concurrent callers.
"""

from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional
import logging

from sqlalchemy import delete, func, update
from sqlmodel import Session, select

from database import scoped_transaction
from errors import AlreadyBooked, NotFound, StateError, ValidationError
from models import (
    Appointment,
    AppointmentStatus,
    Doctor,
    QueueEntry,
    QueueStatus,
    ACTIVE_QUEUE_STATUSES,
    Slot,
    SlotStatus,
)
from services.schedule_store import get_active_doctor
from utils.cache import QueueCache
from utils.clinic_time import clinic_now

logger = logging.getLogger(__name__)

ACTIVE_APPOINTMENT_STATUSES = (AppointmentStatus.BOOKED, AppointmentStatus.CHECKED_IN)


def get_slot(session: Session, slot_id: int) -> Slot:
    slot = session.get(Slot, slot_id)
    if not slot:
        raise NotFound("Slot not found", slot_id=slot_id)
    return slot


def reserve(session: Session, slot_id: int) -> Slot:
    """AVAILABLE -> BOOKED inside the caller's transaction"""
    result = session.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.status == SlotStatus.AVAILABLE)
        .values(status=SlotStatus.BOOKED)
        .execution_options(synchronize_session=False)
    )
    slot = session.get(Slot, slot_id, populate_existing=True)
    if slot is None:
        raise NotFound("Slot not found", slot_id=slot_id)
    if result.rowcount != 1:
        raise AlreadyBooked("Slot is already booked", slot_id=slot_id)
    return slot


def release(session: Session, slot_id: int) -> None:
    """
    BOOKED -> AVAILABLE inside the caller's transaction.

    Idempotent. The appointment that held the slot is detached from it so the
    slot can later be removed by regeneration.
    """
    session.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.status == SlotStatus.BOOKED)
        .values(status=SlotStatus.AVAILABLE)
        .execution_options(synchronize_session="fetch")
    )
    session.execute(
        update(Appointment)
        .where(Appointment.slot_id == slot_id)
        .values(slot_id=None)
        .execution_options(synchronize_session="fetch")
    )


def cancel_appointment_in_transaction(
    session: Session,
    appointment: Appointment,
    reason: Optional[str],
    now: datetime,
) -> None:
    """Cancel an appointment, free its slot and drop its waiting queue entry"""
    if appointment.status not in ACTIVE_APPOINTMENT_STATUSES:
        raise StateError(
            f"Cannot cancel an appointment that is {AppointmentStatus(appointment.status).value}",
            appointment_id=appointment.id,
        )

    # A consultation in progress has to finish through the queue
    in_consultation = session.exec(
        select(QueueEntry).where(
            QueueEntry.appointment_id == appointment.id,
            QueueEntry.status == QueueStatus.WITH_DOCTOR,
        )
    ).first()
    if in_consultation is not None:
        raise StateError(
            f"Token {in_consultation.token} is with the doctor; complete it before cancelling",
            appointment_id=appointment.id,
            entry_id=in_consultation.id,
        )

    slot_id = appointment.slot_id
    appointment.status = AppointmentStatus.CANCELLED
    appointment.cancellation_reason = reason
    appointment.cancelled_at = now
    session.add(appointment)
    session.flush()

    if slot_id is not None:
        release(session, slot_id)

    for entry in session.exec(
        select(QueueEntry).where(
            QueueEntry.appointment_id == appointment.id,
            QueueEntry.status.in_(ACTIVE_QUEUE_STATUSES),
        )
    ).all():
        entry.status = QueueStatus.CANCELLED
        entry.completed_at = now
        session.add(entry)
    session.flush()


def discard_released_slots(session: Session, slot_ids: Iterable[int]) -> int:
    """Delete slots that were released and are no longer valid; booked ones are kept"""
    slot_ids = list(slot_ids)
    if not slot_ids:
        return 0
    return session.execute(
        delete(Slot).where(Slot.id.in_(slot_ids), Slot.status == SlotStatus.AVAILABLE)
    ).rowcount


def cancel_appointments(
    session: Session,
    appointment_ids: Iterable[int],
    reason: Optional[str],
    now: datetime,
) -> List[int]:
    """Bulk cancellation used when a schedule change is applied with resolution"""
    cancelled = []
    for appointment_id in appointment_ids:
        appointment = session.get(Appointment, appointment_id)
        if appointment is None or appointment.status not in ACTIVE_APPOINTMENT_STATUSES:
            continue
        cancel_appointment_in_transaction(session, appointment, reason, now)
        cancelled.append(appointment_id)
    return cancelled


def book_appointment(
    session: Session,
    slot_id: int,
    patient_ref: str,
    now: Optional[datetime] = None,
) -> Appointment:
    """Reserve a slot and record the appointment that holds it"""
    if not patient_ref or not patient_ref.strip():
        raise ValidationError("patient_ref is required")

    doctor_id = get_slot(session, slot_id).doctor_id

    with scoped_transaction(session, "schedule", doctor_id):
        doctor = get_active_doctor(session, doctor_id)
        now = now or clinic_now(doctor.clinic.timezone)

        slot = get_slot(session, slot_id)
        starts_at = datetime.combine(slot.slot_date, slot.start_time)
        if starts_at <= now:
            raise ValidationError("Cannot book a slot that has already started", slot_id=slot_id)

        slot = reserve(session, slot_id)
        appointment = Appointment(
            clinic_id=slot.clinic_id,
            doctor_id=slot.doctor_id,
            slot_id=slot.id,
            patient_ref=patient_ref.strip(),
            starts_at=starts_at,
            ends_at=datetime.combine(slot.slot_date, slot.end_time),
            status=AppointmentStatus.BOOKED,
        )
        session.add(appointment)
        session.flush()
        appointment_id = appointment.id

    logger.info(f"Appointment {appointment_id} booked on slot {slot_id} for doctor {doctor_id}")
    return appointment


def cancel_appointment(
    session: Session,
    appointment_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Appointment:
    appointment = session.get(Appointment, appointment_id)
    if not appointment:
        raise NotFound("Appointment not found", appointment_id=appointment_id)
    doctor_id = appointment.doctor_id

    with scoped_transaction(session, "schedule", doctor_id):
        appointment = session.get(Appointment, appointment_id)
        doctor = session.get(Doctor, doctor_id)
        now = now or clinic_now(doctor.clinic.timezone)
        cancel_appointment_in_transaction(session, appointment, reason, now)

    QueueCache.invalidate_doctor(doctor_id)
    logger.info(f"Appointment {appointment_id} cancelled")
    return appointment


def _booked_appointment(session: Session, appointment_id: int, action: str) -> Appointment:
    appointment = session.get(Appointment, appointment_id)
    if not appointment:
        raise NotFound("Appointment not found", appointment_id=appointment_id)
    if appointment.status != AppointmentStatus.BOOKED:
        raise StateError(f"Only booked appointments can be {action}", appointment_id=appointment_id)
    return appointment


def mark_no_show(session: Session, appointment_id: int, now: Optional[datetime] = None) -> Appointment:
    """
    Record that the patient never arrived.

    Only allowed once the appointment has started. The slot stays BOOKED as
    history of the missed visit.
    """
    doctor_id = _booked_appointment(session, appointment_id, "marked as no-show").doctor_id

    with scoped_transaction(session, "schedule", doctor_id):
        appointment = _booked_appointment(session, appointment_id, "marked as no-show")
        doctor = session.get(Doctor, doctor_id)
        now = now or clinic_now(doctor.clinic.timezone)
        if now < appointment.starts_at:
            raise ValidationError(
                "Cannot mark a no-show before the appointment starts",
                appointment_id=appointment_id,
            )
        appointment.status = AppointmentStatus.NO_SHOW
        session.add(appointment)

    QueueCache.invalidate_doctor(doctor_id)
    logger.info(f"Appointment {appointment_id} marked as no-show")
    return appointment


def reschedule_appointment(session: Session, appointment_id: int) -> Appointment:
    """Mark a booking as moved and give its slot back; the new time is booked separately"""
    doctor_id = _booked_appointment(session, appointment_id, "rescheduled").doctor_id

    with scoped_transaction(session, "schedule", doctor_id):
        appointment = _booked_appointment(session, appointment_id, "rescheduled")
        slot_id = appointment.slot_id
        appointment.status = AppointmentStatus.RESCHEDULED
        session.add(appointment)
        session.flush()
        if slot_id is not None:
            release(session, slot_id)

    QueueCache.invalidate_doctor(doctor_id)
    logger.info(f"Appointment {appointment_id} rescheduled, slot {slot_id} released")
    return appointment


def list_slots(session: Session, doctor_id: int, slot_date: date, status: Optional[SlotStatus] = None) -> List[Slot]:
    query = select(Slot).where(Slot.doctor_id == doctor_id, Slot.slot_date == slot_date)
    if status is not None:
        query = query.where(Slot.status == status)
    return session.exec(query.order_by(Slot.start_time)).all()


def clear_available_slots(session: Session, doctor_id: int, from_date: date) -> Dict[str, int]:
    """
    Delete AVAILABLE slots dated on or after ``from_date``.

    The recorded generation range is cut back to end the day before so a
    later schedule change does not bring the slots back.
    """
    with scoped_transaction(session, "schedule", doctor_id):
        doctor = get_active_doctor(session, doctor_id)
        deleted = session.execute(
            delete(Slot).where(
                Slot.doctor_id == doctor_id,
                Slot.slot_date >= from_date,
                Slot.status == SlotStatus.AVAILABLE,
            )
        ).rowcount

        if doctor.slots_generated_to is not None and doctor.slots_generated_to >= from_date:
            if doctor.slots_generated_from is None or doctor.slots_generated_from >= from_date:
                doctor.slots_generated_from = None
                doctor.slots_generated_to = None
            else:
                doctor.slots_generated_to = from_date - timedelta(days=1)
            session.add(doctor)

    logger.info(f"Cleared {deleted} available slots for doctor {doctor_id} from {from_date}")
    return {"deleted_count": deleted}


def slot_status_summary(session: Session, doctor_id: int) -> dict:
    doctor = get_active_doctor(session, doctor_id)

    counts = dict(
        session.exec(
            select(Slot.status, func.count(Slot.id))
            .where(Slot.doctor_id == doctor_id)
            .group_by(Slot.status)
        ).all()
    )
    available = counts.get(SlotStatus.AVAILABLE.value, 0)
    booked = counts.get(SlotStatus.BOOKED.value, 0)

    return {
        "total": available + booked,
        "available": available,
        "booked": booked,
        "generated_from": doctor.slots_generated_from,
        "generated_to": doctor.slots_generated_to,
    }
