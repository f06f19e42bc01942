"""
Schedule Service

Owns every change to a doctor's Availability Model. All writes follow one
commit protocol, executed as a single transaction in the doctor's schedule
scope:

1. load the current model and build the candidate
2. detect conflicts of the candidate against future BOOKED slots
3. reject with ConflictError, or cancel and release the conflicting bookings
4. persist the candidate
5. regenerate AVAILABLE slots over the still-future part of the recorded
   generation range

Any failure rolls every step back.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
import logging

from sqlmodel import Session

from database import scoped_transaction
from errors import ConflictError, NotFound
from models import Doctor, TimeOffException, TimeOffType
from services.availability import AvailabilityModel, TimeOffPeriod, DAYS_OF_WEEK
from services.conflict_detector import SlotConflict, detect_conflicts
from services.schedule_store import get_active_doctor, load_availability_model, persist_availability_model
from services.slot_generator import regenerate_recorded_range
from services.slot_store import cancel_appointments, discard_released_slots, release
from utils.cache import QueueCache
from utils.clinic_time import clinic_now
from validators.time_validator import format_time, validate_date_range

logger = logging.getLogger(__name__)

SCHEDULE_CHANGE_REASON = "Doctor schedule changed"
TIME_OFF_REASON = "Doctor unavailable"


def serialize_model(model: AvailabilityModel, doctor: Doctor) -> dict:
    return {
        "doctor_id": doctor.id,
        "appointment_duration_min": model.appointment_duration_min,
        "shift_templates": {
            shift_type.value: {"start": format_time(window.start), "end": format_time(window.end)}
            for shift_type, window in sorted(model.shift_templates.items(), key=lambda item: item[1].start)
        },
        "weekly": [
            {
                "day_of_week": day,
                "shifts": {shift.value: enabled for (d, shift), enabled in model.weekly.items() if d == day},
            }
            for day in DAYS_OF_WEEK
        ],
        "time_off": [
            {
                "id": period.id,
                "start_date": period.start_date,
                "end_date": period.end_date,
                "type": period.type.value,
                "reason": period.reason,
            }
            for period in model.time_off
        ],
        "is_configured": model.is_fully_configured(),
        "schedule_configured_at": doctor.schedule_configured_at,
        "slots_generated_from": doctor.slots_generated_from,
        "slots_generated_to": doctor.slots_generated_to,
    }


def get_schedule(session: Session, doctor_id: int) -> dict:
    doctor = get_active_doctor(session, doctor_id)
    return serialize_model(load_availability_model(session, doctor), doctor)


def check_schedule_conflicts(
    session: Session,
    doctor_id: int,
    change: Dict[str, Any],
    now: Optional[datetime] = None,
) -> dict:
    """Dry run of a schedule change; never mutates state"""
    doctor = get_active_doctor(session, doctor_id)
    now = now or clinic_now(doctor.clinic.timezone)
    candidate = load_availability_model(session, doctor).merge(**change)
    conflicts = detect_conflicts(session, doctor.id, candidate, now)
    return {
        "has_conflicts": bool(conflicts),
        "conflicts": [conflict.to_dict() for conflict in conflicts],
        "total_conflicts": len(conflicts),
    }


def _resolve_conflicts(
    session: Session,
    conflicts: List[SlotConflict],
    cancel_conflicts: bool,
    reason: str,
    now: datetime,
) -> List[int]:
    if not conflicts:
        return []
    if not cancel_conflicts:
        raise ConflictError(
            f"Change conflicts with {len(conflicts)} booked appointment(s)",
            conflicts=conflicts,
        )

    cancelled = cancel_appointments(
        session,
        [conflict.appointment_id for conflict in conflicts if conflict.appointment_id is not None],
        reason,
        now,
    )
    # Booked slots without a live appointment are simply freed
    for conflict in conflicts:
        if conflict.appointment_id is None:
            release(session, conflict.slot_id)
    # Freed slots lie outside the new model; regeneration recreates whatever is still valid
    discard_released_slots(session, [conflict.slot_id for conflict in conflicts])
    return cancelled


def update_availability_with_resolution(
    session: Session,
    doctor_id: int,
    change: Dict[str, Any],
    cancel_conflicts: bool,
    now: Optional[datetime] = None,
    reason: str = SCHEDULE_CHANGE_REASON,
) -> dict:
    """
    Apply a partial schedule change (duration, shift templates, weekly table).

    ``change`` holds the keyword arguments of ``AvailabilityModel.merge``.
    Without ``cancel_conflicts`` a conflicting change raises ConflictError and
    leaves everything untouched.
    """
    with scoped_transaction(session, "schedule", doctor_id):
        doctor = get_active_doctor(session, doctor_id)
        now = now or clinic_now(doctor.clinic.timezone)

        candidate = load_availability_model(session, doctor).merge(**change)
        conflicts = detect_conflicts(session, doctor.id, candidate, now)
        cancelled = _resolve_conflicts(session, conflicts, cancel_conflicts, reason, now)

        persist_availability_model(session, doctor, candidate)
        regenerated = regenerate_recorded_range(session, doctor, candidate, now.date())
        result = {
            "applied": True,
            "cancelled_appointments": cancelled,
            "conflicts": [conflict.to_dict() for conflict in conflicts],
            "regenerated": regenerated,
            "schedule": serialize_model(candidate, doctor),
        }

    if cancelled:
        QueueCache.invalidate_doctor(doctor_id)
    logger.info(
        f"Schedule updated for doctor {doctor_id}: "
        f"{len(cancelled)} appointment(s) cancelled, regenerated={regenerated is not None}"
    )
    return result


def update_availability(
    session: Session,
    doctor_id: int,
    change: Dict[str, Any],
    now: Optional[datetime] = None,
) -> dict:
    """Apply a schedule change only if it invalidates no booking"""
    return update_availability_with_resolution(session, doctor_id, change, cancel_conflicts=False, now=now)


def create_time_off(
    session: Session,
    doctor_id: int,
    start_date: date,
    end_date: date,
    type: TimeOffType = TimeOffType.OTHER,
    reason: Optional[str] = None,
    cancel_conflicts: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    validate_date_range(start_date, end_date)

    with scoped_transaction(session, "schedule", doctor_id):
        doctor = get_active_doctor(session, doctor_id)
        now = now or clinic_now(doctor.clinic.timezone)

        period = TimeOffPeriod(start_date=start_date, end_date=end_date, type=TimeOffType(type), reason=reason)
        candidate = load_availability_model(session, doctor).with_time_off(period)
        conflicts = detect_conflicts(session, doctor.id, candidate, now)
        cancelled = _resolve_conflicts(session, conflicts, cancel_conflicts, reason or TIME_OFF_REASON, now)

        row = TimeOffException(
            doctor_id=doctor.id,
            start_date=start_date,
            end_date=end_date,
            type=TimeOffType(type),
            reason=reason,
        )
        session.add(row)
        session.flush()

        regenerated = regenerate_recorded_range(
            session, doctor, candidate, now.date(), start_date=start_date, end_date=end_date
        )
        result = {
            "time_off": {
                "id": row.id,
                "start_date": row.start_date,
                "end_date": row.end_date,
                "type": TimeOffType(row.type).value,
                "reason": row.reason,
            },
            "cancelled_appointments": cancelled,
            "conflicts": [conflict.to_dict() for conflict in conflicts],
            "regenerated": regenerated,
        }

    if cancelled:
        QueueCache.invalidate_doctor(doctor_id)
    logger.info(
        f"Time-off {start_date}..{end_date} added for doctor {doctor_id}, "
        f"{len(cancelled)} appointment(s) cancelled"
    )
    return result


def delete_time_off(
    session: Session,
    doctor_id: int,
    time_off_id: int,
    now: Optional[datetime] = None,
) -> dict:
    """Remove a time-off exception and restore slots on the freed dates"""
    with scoped_transaction(session, "schedule", doctor_id):
        doctor = get_active_doctor(session, doctor_id)
        now = now or clinic_now(doctor.clinic.timezone)

        row = session.get(TimeOffException, time_off_id)
        if not row or row.doctor_id != doctor.id:
            raise NotFound("Time-off not found", time_off_id=time_off_id)
        start_date, end_date = row.start_date, row.end_date

        candidate = load_availability_model(session, doctor).without_time_off(time_off_id)
        session.delete(row)
        session.flush()

        regenerated = regenerate_recorded_range(
            session, doctor, candidate, now.date(), start_date=start_date, end_date=end_date
        )

    logger.info(f"Time-off {time_off_id} removed for doctor {doctor_id}")
    return {"deleted": True, "regenerated": regenerated}
