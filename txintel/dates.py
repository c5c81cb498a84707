"""Calendar arithmetic helpers."""

import calendar
from datetime import date


def days_in_month(year: int, month: int) -> int:
    """Number of days in the given month."""
    return calendar.monthrange(year, month)[1]


def clamp_day_to_month(year: int, month: int, day: int) -> int:
    """Clamp day to the valid range for the given year/month."""
    return max(1, min(day, days_in_month(year, month)))


def add_months(d: date, n: int) -> date:
    """Add n months to date d, clamping day to month end."""
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    return d.replace(year=year, month=month, day=clamp_day_to_month(year, month, d.day))


def days_between(a: date, b: date) -> int:
    """Absolute number of days separating two dates."""
    return abs((a - b).days)
