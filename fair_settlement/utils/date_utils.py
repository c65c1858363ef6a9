"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


def add_months(from_date: date, months: int) -> date:
    """Add calendar months, clamping the day to the end of the target month"""
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(from_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)
