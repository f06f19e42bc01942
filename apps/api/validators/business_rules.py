"""Scheduling rule configuration"""
from typing import Any, Dict
from pydantic import BaseModel


class SchedulingRules(BaseModel):
    """Scheduling rules configuration"""
    # Appointment duration rules
    MIN_APPOINTMENT_DURATION_MINUTES: int = 5
    MAX_APPOINTMENT_DURATION_MINUTES: int = 240

    # Slot generation rules
    MAX_GENERATION_RANGE_DAYS: int = 366

    # Clinic defaults
    DEFAULT_TIMEZONE: str = "America/Chicago"

    # Queue rules - higher rank is called first
    PRIORITY_RANK: Dict[str, int] = {"NORMAL": 0, "URGENT": 1, "EMERGENCY": 2}


# Global instance - can be loaded from database
scheduling_rules = SchedulingRules()


def get_scheduling_rules() -> SchedulingRules:
    """Get current scheduling rules"""
    return scheduling_rules


def update_scheduling_rule(key: str, value: Any) -> None:
    """Update a scheduling rule"""
    if hasattr(scheduling_rules, key):
        setattr(scheduling_rules, key, value)
    else:
        raise ValueError(f"Unknown scheduling rule: {key}")
