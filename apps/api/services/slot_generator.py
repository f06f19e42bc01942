"""
Slot Generator

Materializes discrete bookable slots from an Availability Model:
- dates covered by time-off are skipped entirely
- each enabled shift is cut into back-to-back slots of the appointment
  duration, starting at the shift start
- no partial trailing slot (slot_start + duration must fit in the shift)

Generation replaces AVAILABLE slots in the range and never touches BOOKED
ones, so running it twice with the same model yields the same slot set.
"""

from dataclasses import dataclass
from datetime import date, time
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import delete
from sqlmodel import Session, select

from database import scoped_transaction
from models import Doctor, Slot, SlotStatus, ShiftType
from services.availability import AvailabilityModel
from services.schedule_store import get_active_doctor, load_availability_model
from validators.business_rules import get_scheduling_rules
from validators.time_validator import add_minutes, date_range, minutes_of_day, validate_date_range

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotSpec:
    slot_date: date
    start_time: time
    end_time: time
    shift_type: ShiftType

    def overlaps(self, start: time, end: time) -> bool:
        return self.start_time < end and start < self.end_time


def materialize(model: AvailabilityModel, start_date: date, end_date: date) -> List[SlotSpec]:
    """Pure slot materialization of a model over an inclusive date range"""
    duration = model.require_duration()

    specs = []
    for target_date in date_range(start_date, end_date):
        for window in model.windows_for(target_date):
            cursor = minutes_of_day(window.start)
            window_end = minutes_of_day(window.end)

            while cursor + duration <= window_end:
                start = add_minutes(window.start, cursor - minutes_of_day(window.start))
                specs.append(SlotSpec(target_date, start, add_minutes(start, duration), window.shift_type))
                cursor += duration
    return specs


def regenerate_range(
    session: Session,
    doctor: Doctor,
    model: AvailabilityModel,
    start_date: date,
    end_date: date,
) -> Dict[str, int]:
    """
    Replace AVAILABLE slots of [start_date, end_date] with a fresh materialization.

    Runs inside the caller's transaction. Candidate slots overlapping a BOOKED
    slot are skipped so slot windows never overlap.
    """
    specs = materialize(model, start_date, end_date)

    deleted = session.execute(
        delete(Slot).where(
            Slot.doctor_id == doctor.id,
            Slot.slot_date >= start_date,
            Slot.slot_date <= end_date,
            Slot.status == SlotStatus.AVAILABLE,
        )
    ).rowcount

    booked: Dict[date, List[Tuple[time, time]]] = {}
    for slot in session.exec(
        select(Slot).where(
            Slot.doctor_id == doctor.id,
            Slot.slot_date >= start_date,
            Slot.slot_date <= end_date,
            Slot.status == SlotStatus.BOOKED,
        )
    ).all():
        booked.setdefault(slot.slot_date, []).append((slot.start_time, slot.end_time))

    created = 0
    for spec in specs:
        if any(spec.overlaps(start, end) for start, end in booked.get(spec.slot_date, ())):
            continue
        session.add(
            Slot(
                clinic_id=doctor.clinic_id,
                doctor_id=doctor.id,
                slot_date=spec.slot_date,
                start_time=spec.start_time,
                end_time=spec.end_time,
                shift_type=spec.shift_type,
                status=SlotStatus.AVAILABLE,
            )
        )
        created += 1

    session.flush()
    return {"deleted": deleted, "created": created}


def regenerate_recorded_range(
    session: Session,
    doctor: Doctor,
    model: AvailabilityModel,
    today: date,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Optional[Dict[str, Any]]:
    """
    Re-materialize the part of the recorded generation range that is still
    ahead of ``today``, optionally narrowed to [start_date, end_date].

    Returns None when nothing was ever generated or the window is in the past.
    """
    if doctor.slots_generated_from is None or doctor.slots_generated_to is None:
        return None

    window_start = max(doctor.slots_generated_from, today, start_date or today)
    window_end = min(doctor.slots_generated_to, end_date or doctor.slots_generated_to)
    if window_end < window_start:
        return None

    counts = regenerate_range(session, doctor, model, window_start, window_end)
    logger.info(
        f"Regenerated slots for doctor {doctor.id} from {window_start} to {window_end}: "
        f"{counts['deleted']} removed, {counts['created']} created"
    )
    return {"from": window_start, "to": window_end, **counts}


def record_generation_range(doctor: Doctor, start_date: date, end_date: date) -> None:
    """Widen the stored generation range to cover [start_date, end_date]"""
    if doctor.slots_generated_from is None or start_date < doctor.slots_generated_from:
        doctor.slots_generated_from = start_date
    if doctor.slots_generated_to is None or end_date > doctor.slots_generated_to:
        doctor.slots_generated_to = end_date


def generate_slots(session: Session, doctor_id: int, start_date: date, end_date: date) -> dict:
    """Materialize slots over an inclusive range and widen the recorded generation range"""
    validate_date_range(start_date, end_date, get_scheduling_rules().MAX_GENERATION_RANGE_DAYS)

    with scoped_transaction(session, "schedule", doctor_id):
        doctor = get_active_doctor(session, doctor_id)
        model = load_availability_model(session, doctor)

        created = regenerate_range(session, doctor, model, start_date, end_date)["created"]
        record_generation_range(doctor, start_date, end_date)
        session.add(doctor)

    logger.info(f"Generated {created} slots for doctor {doctor_id} from {start_date} to {end_date}")

    return {
        "created": created,
        "range": {"from": start_date, "to": end_date},
    }
