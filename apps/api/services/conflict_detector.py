"""
Conflict Detector

Compares a candidate Availability Model against the future BOOKED slots of a
doctor and reports every slot the candidate would no longer admit. Detection
is read-only; resolution (cancel and release) belongs to the schedule service.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Dict, List, Optional, Tuple

from sqlmodel import Session, select

from models import Appointment, ShiftType, Slot, SlotStatus
from services.availability import AvailabilityModel
from services.slot_store import ACTIVE_APPOINTMENT_STATUSES
from validators.time_validator import minutes_of_day

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class ConflictReason(str, Enum):
    TIME_OFF = "TIME_OFF"
    SHIFT_DISABLED = "SHIFT_DISABLED"
    TIME_OUTSIDE_SHIFT = "TIME_OUTSIDE_SHIFT"
    DURATION_MISMATCH = "DURATION_MISMATCH"


@dataclass(frozen=True)
class SlotConflict:
    slot_id: int
    appointment_id: Optional[int]
    patient_ref: Optional[str]
    slot_date: date
    start_time: time
    end_time: time
    shift_type: ShiftType
    reason: ConflictReason
    message: str

    def to_dict(self) -> dict:
        return {
            "slot_id": self.slot_id,
            "appointment_id": self.appointment_id,
            "patient_ref": self.patient_ref,
            "slot_date": self.slot_date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "shift_type": ShiftType(self.shift_type).value,
            "reason": self.reason.value,
            "message": self.message,
        }


def classify(
    slot_date: date,
    start: time,
    end: time,
    shift_type: ShiftType,
    model: AvailabilityModel,
) -> Optional[Tuple[ConflictReason, str]]:
    """First rule the candidate model breaks for a booked slot, or None when it still fits"""
    shift_type = ShiftType(shift_type)

    period = model.time_off_for(slot_date)
    if period is not None:
        return ConflictReason.TIME_OFF, (
            f"Doctor is off ({period.type.value}) from {period.start_date} to {period.end_date}"
        )

    day_name = DAY_NAMES[slot_date.weekday()]
    window = model.shift_templates.get(shift_type)
    if window is None or not model.is_enabled(slot_date.weekday(), shift_type):
        return ConflictReason.SHIFT_DISABLED, f"{shift_type.value} shift is disabled on {day_name}"

    if not window.contains(start, end):
        return ConflictReason.TIME_OUTSIDE_SHIFT, (
            f"{start:%H:%M}-{end:%H:%M} falls outside the {shift_type.value} shift "
            f"({window.start:%H:%M}-{window.end:%H:%M})"
        )

    duration = model.require_duration()
    length = minutes_of_day(end) - minutes_of_day(start)
    offset = minutes_of_day(start) - minutes_of_day(window.start)
    if length != duration or offset % duration != 0:
        return ConflictReason.DURATION_MISMATCH, (
            f"{start:%H:%M}-{end:%H:%M} does not line up with {duration}-minute slots"
        )

    return None


def detect_conflicts(
    session: Session,
    doctor_id: int,
    candidate: AvailabilityModel,
    now: datetime,
) -> List[SlotConflict]:
    """
    BOOKED slots from ``now`` onwards that the candidate model invalidates,
    ordered by date and start time. Slots that already started are history
    and never conflict.
    """
    booked = session.exec(
        select(Slot)
        .where(
            Slot.doctor_id == doctor_id,
            Slot.status == SlotStatus.BOOKED,
            Slot.slot_date >= now.date(),
        )
        .order_by(Slot.slot_date, Slot.start_time)
    ).all()
    booked = [
        slot for slot in booked
        if datetime.combine(slot.slot_date, slot.start_time) > now
    ]
    if not booked:
        return []

    appointments: Dict[int, Appointment] = {
        appointment.slot_id: appointment
        for appointment in session.exec(
            select(Appointment).where(
                Appointment.slot_id.in_([slot.id for slot in booked]),
                Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            )
        ).all()
    }

    conflicts = []
    for slot in booked:
        verdict = classify(slot.slot_date, slot.start_time, slot.end_time, slot.shift_type, candidate)
        if verdict is None:
            continue
        reason, message = verdict
        appointment = appointments.get(slot.id)
        conflicts.append(
            SlotConflict(
                slot_id=slot.id,
                appointment_id=appointment.id if appointment else None,
                patient_ref=appointment.patient_ref if appointment else None,
                slot_date=slot.slot_date,
                start_time=slot.start_time,
                end_time=slot.end_time,
                shift_type=ShiftType(slot.shift_type),
                reason=reason,
                message=message,
            )
        )
    return conflicts
