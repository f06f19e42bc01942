"""
Patient-facing queue status: position, people ahead, estimated wait and
whether the doctor is free to see the next patient.

Position is derived from the effective order (priority first, then arrival,
then token), so an urgent walk-in can move ahead of earlier tokens.
"""

from datetime import date, datetime
from typing import Optional, Tuple

from sqlmodel import Session, select

from errors import NotFound
from models import (
    ACTIVE_QUEUE_STATUSES,
    Doctor,
    DoctorDailyCheckIn,
    QueueEntry,
    QueuePriority,
    QueueStatus,
)
from utils.cache import QueueCache
from utils.clinic_time import clinic_today
from validators.business_rules import get_scheduling_rules


def priority_rank(priority) -> int:
    return get_scheduling_rules().PRIORITY_RANK[QueuePriority(priority).value]


def effective_order_key(entry: QueueEntry) -> Tuple[int, datetime, int]:
    """Sort key of the waiting order; lower is called sooner"""
    return (-priority_rank(entry.priority), entry.checked_in_at, entry.token)


def doctor_checked_in(session: Session, doctor_id: int, today: date) -> bool:
    presence = session.exec(
        select(DoctorDailyCheckIn).where(
            DoctorDailyCheckIn.doctor_id == doctor_id,
            DoctorDailyCheckIn.checkin_date == today,
        )
    ).first()
    return presence is not None and presence.checked_out_at is None


def current_entry(session: Session, doctor_id: int) -> Optional[QueueEntry]:
    """The entry currently WITH_DOCTOR, if any"""
    return session.exec(
        select(QueueEntry).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.status == QueueStatus.WITH_DOCTOR,
        )
    ).first()


def queue_status(session: Session, entry: QueueEntry, today: Optional[date] = None) -> dict:
    doctor = session.get(Doctor, entry.doctor_id)
    today = today or clinic_today(doctor.clinic.timezone)
    status = QueueStatus(entry.status)

    if status in ACTIVE_QUEUE_STATUSES:
        active = session.exec(
            select(QueueEntry).where(
                QueueEntry.doctor_id == entry.doctor_id,
                QueueEntry.queue_date == entry.queue_date,
                QueueEntry.status.in_(ACTIVE_QUEUE_STATUSES),
            )
        ).all()
        key = effective_order_key(entry)
        people_ahead = sum(1 for other in active if other.id != entry.id and effective_order_key(other) < key)
        position = people_ahead + 1
    elif status == QueueStatus.WITH_DOCTOR:
        people_ahead, position = 0, 0
    else:
        people_ahead, position = 0, None

    duration = doctor.appointment_duration_min
    estimated_wait = people_ahead * duration if duration else None

    # Available: checked in today, not checked out, and nobody with the doctor
    checked_in = doctor_checked_in(session, doctor.id, today)
    current = current_entry(session, doctor.id)

    return {
        "entry_id": entry.id,
        "doctor_id": entry.doctor_id,
        "token": entry.token,
        "queue_date": entry.queue_date,
        "status": status.value,
        "priority": QueuePriority(entry.priority).value,
        "position": position,
        "people_ahead": people_ahead,
        "estimated_wait_minutes": estimated_wait,
        "doctor_checked_in": checked_in,
        "current_token": current.token if current is not None else None,
        "doctor_available": checked_in and current is None,
    }


def find_entry_by_token(session: Session, doctor_id: int, queue_date: date, token: int) -> QueueEntry:
    entry = session.exec(
        select(QueueEntry).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.queue_date == queue_date,
            QueueEntry.token == token,
        )
    ).first()
    if entry is None:
        raise NotFound("Token not found", doctor_id=doctor_id, token=token)
    return entry


def cached_queue_status(session: Session, entry: QueueEntry) -> dict:
    """``queue_status`` behind the per-entry cache that patient screens poll"""
    cached = QueueCache.get_status(entry.doctor_id, entry.queue_date, entry.id)
    if cached is not None:
        return cached

    status_data = queue_status(session, entry)
    QueueCache.set_status(entry.doctor_id, entry.queue_date, entry.id, status_data)
    return status_data
