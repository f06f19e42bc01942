"""Time validation utilities"""
import re
from datetime import datetime, date, time, timedelta
from errors import ValidationError
from validators.business_rules import get_scheduling_rules


def validate_time_format(time_str: str) -> bool:
    """Validate time string is in HH:MM format"""
    pattern = r'^([01][0-9]|2[0-3]):[0-5][0-9]$'
    if not isinstance(time_str, str) or not re.match(pattern, time_str):
        raise ValidationError(
            f"Invalid time format: {time_str}. Use HH:MM format (e.g., 09:30, 14:00)"
        )
    return True


def parse_time_string(time_str: str) -> time:
    """Parse time string to time object"""
    validate_time_format(time_str)
    return datetime.strptime(time_str, "%H:%M").time()


def format_time(value: time) -> str:
    return value.strftime("%H:%M")


def validate_time_range(start_time_str: str, end_time_str: str) -> bool:
    """Validate that end time is after start time"""
    start = parse_time_string(start_time_str)
    end = parse_time_string(end_time_str)

    if end <= start:
        raise ValidationError(
            f"End time ({end_time_str}) must be after start time ({start_time_str})"
        )
    return True


def validate_date_range(start: date, end: date, max_days: int = None) -> bool:
    """Validate an inclusive date range"""
    if start > end:
        raise ValidationError(f"Start date ({start}) must be before or equal to end date ({end})")

    if max_days is not None and (end - start).days + 1 > max_days:
        raise ValidationError(f"Date range cannot exceed {max_days} days")
    return True


def validate_appointment_duration(duration_minutes: int) -> bool:
    """Validate appointment duration is within limits"""
    rules = get_scheduling_rules()

    if duration_minutes < rules.MIN_APPOINTMENT_DURATION_MINUTES:
        raise ValidationError(
            f"Appointment duration must be at least {rules.MIN_APPOINTMENT_DURATION_MINUTES} minutes"
        )

    if duration_minutes > rules.MAX_APPOINTMENT_DURATION_MINUTES:
        raise ValidationError(
            f"Appointment duration cannot exceed {rules.MAX_APPOINTMENT_DURATION_MINUTES} minutes"
        )
    return True


def validate_day_of_week(day_of_week: int) -> bool:
    if not 0 <= day_of_week <= 6:
        raise ValidationError("day_of_week must be between 0 (Monday) and 6 (Sunday)")
    return True


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def add_minutes(value: time, minutes: int) -> time:
    """Shift a wall-clock time; callers guarantee the result stays within the day"""
    return (datetime.combine(date.min, value) + timedelta(minutes=minutes)).time()


def date_range(start: date, end: date):
    """Yield every date in the inclusive range"""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
