"""
Availability Model

A doctor's bookable hours as a value object:
- shift templates (one start/end per shift type)
- the weekly table of which shift runs on which day
- time-off exceptions that blank out whole dates
- the appointment duration used to cut windows into slots

``windows_for(date)`` is a pure function of the snapshot and the date, which
lets the slot generator and the conflict detector evaluate a *candidate*
model without touching the database.
"""

from dataclasses import dataclass, field, replace
from datetime import date, time
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from errors import ConfigurationError, ValidationError
from models import ShiftType, TimeOffType
from validators.time_validator import (
    parse_time_string,
    validate_appointment_duration,
    validate_day_of_week,
    validate_time_range,
)

DAYS_OF_WEEK = range(7)  # 0=Monday, 6=Sunday


@dataclass(frozen=True)
class ShiftWindow:
    """An open time-of-day window on one date"""
    shift_type: ShiftType
    start: time
    end: time

    def contains(self, start: time, end: time) -> bool:
        return self.start <= start and end <= self.end


@dataclass(frozen=True)
class TimeOffPeriod:
    start_date: date
    end_date: date
    type: TimeOffType = TimeOffType.OTHER
    reason: Optional[str] = None
    id: Optional[int] = None

    def covers(self, target_date: date) -> bool:
        return self.start_date <= target_date <= self.end_date


def empty_weekly_table() -> Dict[Tuple[int, ShiftType], bool]:
    return {(day, shift): False for day in DAYS_OF_WEEK for shift in ShiftType}


@dataclass(frozen=True)
class AvailabilityModel:
    doctor_id: int
    appointment_duration_min: Optional[int] = None
    shift_templates: Mapping[ShiftType, ShiftWindow] = field(default_factory=dict)
    weekly: Mapping[Tuple[int, ShiftType], bool] = field(default_factory=empty_weekly_table)
    time_off: Tuple[TimeOffPeriod, ...] = ()

    def is_enabled(self, day_of_week: int, shift_type: ShiftType) -> bool:
        return bool(self.weekly.get((day_of_week, ShiftType(shift_type)), False))

    def time_off_for(self, target_date: date) -> Optional[TimeOffPeriod]:
        for period in self.time_off:
            if period.covers(target_date):
                return period
        return None

    def enabled_shifts(self, day_of_week: int) -> List[ShiftType]:
        return [shift for shift in ShiftType if self.is_enabled(day_of_week, shift)]

    def windows_for(self, target_date: date) -> List[ShiftWindow]:
        """Ordered, disjoint open windows of a date after time-off is applied"""
        if self.time_off_for(target_date) is not None:
            return []

        windows = []
        for shift_type in self.enabled_shifts(target_date.weekday()):
            template = self.shift_templates.get(shift_type)
            if template is not None:
                windows.append(template)
        windows.sort(key=lambda window: window.start)
        return windows

    def require_duration(self) -> int:
        if not self.appointment_duration_min:
            raise ConfigurationError(
                "Appointment duration is not configured for this doctor",
                doctor_id=self.doctor_id,
            )
        return self.appointment_duration_min

    def is_fully_configured(self) -> bool:
        """Duration, at least one shift template and at least one enabled weekly shift"""
        return (
            bool(self.appointment_duration_min)
            and len(self.shift_templates) > 0
            and any(self.weekly.values())
        )

    def validate(self) -> "AvailabilityModel":
        if self.appointment_duration_min is not None:
            validate_appointment_duration(self.appointment_duration_min)

        for shift_type, window in self.shift_templates.items():
            if window.end <= window.start:
                raise ValidationError(
                    f"{shift_type.value} shift must end after it starts "
                    f"({window.start:%H:%M}-{window.end:%H:%M})"
                )

        ordered = sorted(self.shift_templates.values(), key=lambda window: window.start)
        for earlier, later in zip(ordered, ordered[1:]):
            if later.start < earlier.end:
                raise ValidationError(
                    f"{earlier.shift_type.value} and {later.shift_type.value} shifts overlap"
                )
        return self

    def merge(
        self,
        appointment_duration_min: Optional[int] = None,
        shift_templates: Optional[Mapping[ShiftType, Tuple[str, str]]] = None,
        weekly: Optional[Iterable[Tuple[int, Mapping[ShiftType, Optional[bool]]]]] = None,
    ) -> "AvailabilityModel":
        """Candidate model: this snapshot with a partial schedule change applied"""
        templates = dict(self.shift_templates)
        for shift_type, (start, end) in (shift_templates or {}).items():
            validate_time_range(start, end)
            shift_type = ShiftType(shift_type)
            templates[shift_type] = ShiftWindow(shift_type, parse_time_string(start), parse_time_string(end))

        table = dict(self.weekly)
        for day_of_week, shifts in weekly or ():
            validate_day_of_week(day_of_week)
            for shift_type, enabled in shifts.items():
                if enabled is not None:
                    table[(day_of_week, ShiftType(shift_type))] = bool(enabled)

        duration = self.appointment_duration_min
        if appointment_duration_min is not None:
            duration = appointment_duration_min

        return replace(
            self,
            appointment_duration_min=duration,
            shift_templates=templates,
            weekly=table,
        ).validate()

    def with_time_off(self, period: TimeOffPeriod) -> "AvailabilityModel":
        return replace(self, time_off=self.time_off + (period,))

    def without_time_off(self, time_off_id: int) -> "AvailabilityModel":
        return replace(self, time_off=tuple(p for p in self.time_off if p.id != time_off_id))
