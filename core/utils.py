# =============================================================================
# Core Utilities for the Clinic Schedule Grid
# =============================================================================

import logging
from datetime import date, datetime, time
from typing import Any, List, Optional, Union

from dateutil.rrule import DAILY, FR, MO, TH, TU, WE, rrule

from models.constants import (
    BASE_TREATMENT_DAYS, SCHEDULE_END_HOUR, SCHEDULE_START_HOUR, SLOT_MINUTES,
)

logger = logging.getLogger(__name__)

BUSINESS_DAYS = (MO, TU, WE, TH, FR)
ISO_DATE_FORMAT = "%Y-%m-%d"

DateLike = Union[str, date, datetime]


def parse_iso_date(value: Any) -> Optional[date]:
    """Parse a YYYY-MM-DD string (or pass through a date). Returns None when invalid."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.strptime(value.strip(), ISO_DATE_FORMAT).date()
    except ValueError:
        return None


def today_iso(today: Optional[date] = None) -> str:
    """Today's date (or the injected one) as YYYY-MM-DD."""
    return (today or date.today()).strftime(ISO_DATE_FORMAT)


def is_business_day(day: date) -> bool:
    """Monday to Friday. Public holidays are not excluded."""
    return day.weekday() < 5


def normalize_extension_days(value: Any) -> int:
    """Extension count as a non-negative int; missing, negative or non-numeric input is 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        days = int(float(value))
    except (TypeError, ValueError):
        return 0
    return max(0, days)


def calculate_end_date(start_date: Optional[DateLike], extension_days: Any = 0) -> str:
    """
    Calculate the end date of a treatment course.
    The course lasts 15 business days plus the extension, counted from the
    start date itself; weekends are skipped. Returns '' when there is no
    usable start date.
    """
    start = parse_iso_date(start_date)
    if start is None:
        if start_date:
            logger.warning(f"Cannot calculate end date for invalid start date {start_date!r}")
        return ""

    total_days = BASE_TREATMENT_DAYS + normalize_extension_days(extension_days)
    # Pin the time to noon so no daylight-saving transition can shift the day.
    rule = rrule(DAILY, dtstart=datetime.combine(start, time(12, 0)),
                 byweekday=BUSINESS_DAYS, count=total_days)
    return list(rule)[-1].strftime(ISO_DATE_FORMAT)


def capitalize_first_letter(text: Optional[str]) -> str:
    """Upper-case only the first character; the rest is left untouched."""
    if not text:
        return ""
    return text[0].upper() + text[1:]


def make_time_slots(start_hour: int = SCHEDULE_START_HOUR, end_hour: int = SCHEDULE_END_HOUR) -> List[str]:
    """Generate the grid's time-slot labels ("7:00", "7:30", ... "17:00")."""
    slots = []
    for hour in range(start_hour, end_hour + 1):
        for minute in SLOT_MINUTES:
            if hour == end_hour and minute > 0:
                continue
            slots.append(f"{hour}:{minute:02d}")
    return slots
