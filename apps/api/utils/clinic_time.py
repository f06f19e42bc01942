"""
Clinic-local clock.

Every date the scheduling engine reasons about (slot dates, queue dates,
"today" for conflict checks) is the owning clinic's calendar day, never UTC.
Datetimes returned here are naive wall-clock values in the clinic timezone,
which is how slots and queue entries are stored.
"""

from datetime import datetime, date
from typing import Optional
import logging

import pytz

from validators.business_rules import get_scheduling_rules

logger = logging.getLogger(__name__)


def get_clinic_timezone(tz_name: Optional[str]) -> pytz.BaseTzInfo:
    tz_name = tz_name or get_scheduling_rules().DEFAULT_TIMEZONE
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Invalid clinic timezone '{tz_name}', using UTC")
        return pytz.UTC


def clinic_now(tz_name: Optional[str]) -> datetime:
    """Current clinic-local wall-clock time (naive)"""
    tz = get_clinic_timezone(tz_name)
    return datetime.now(pytz.UTC).astimezone(tz).replace(tzinfo=None)


def clinic_today(tz_name: Optional[str]) -> date:
    return clinic_now(tz_name).date()
