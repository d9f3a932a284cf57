# services/duration.py
"""
Plan duration arithmetic.

Months and years are added on the calendar with end-of-month clamping:
the target month is computed arithmetically and the day is clamped to the
last day of that month (Jan 31 + 1 month -> Feb 29 in a leap year, Feb 28
otherwise). The time of day is carried over unchanged.
"""
import calendar
from datetime import datetime, timedelta
from typing import assert_never

from core.exceptions import UnsupportedDurationUnit
from models.models import DurationUnit


def parse_duration_unit(raw: str) -> DurationUnit:
    """Convert a stored plan duration unit into the closed enum."""
    try:
        return DurationUnit(str(raw).lower())
    except ValueError:
        raise UnsupportedDurationUnit(f"Unsupported plan duration unit: {raw!r}")


def add_months(start: datetime, months: int) -> datetime:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return start.replace(year=year, month=month, day=min(start.day, last_day))


def add_duration(start: datetime, value: int, unit: DurationUnit) -> datetime:
    match unit:
        case DurationUnit.DAY:
            return start + timedelta(days=value)
        case DurationUnit.WEEK:
            return start + timedelta(weeks=value)
        case DurationUnit.MONTH:
            return add_months(start, value)
        case DurationUnit.YEAR:
            return add_months(start, value * 12)
        case _:
            assert_never(unit)
