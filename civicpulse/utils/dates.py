"""
CivicPulse - Date Helpers

Billing periods are half-open date ranges [start, end).
"""

from datetime import date, datetime, timezone
from typing import Tuple


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utcnow().date()


def add_years(d: date, years: int) -> date:
    """Shift a date by whole years; 29 February falls back to 28 February."""
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        return d.replace(year=d.year + years, day=28)


def first_of_next_month(d: date) -> date:
    if d.month == 12:
        return date(d.year + 1, 1, 1)
    return date(d.year, d.month + 1, 1)


def month_period(d: date) -> Tuple[date, date]:
    """Calendar month containing d."""
    return d.replace(day=1), first_of_next_month(d)


def anniversary_period(anchor: date, today: date) -> Tuple[date, date]:
    """
    Yearly period derived from an anniversary date.

    The end is the first anniversary of ``anchor`` falling after ``today``;
    the start is one year before it. Anniversaries are always computed from
    the anchor itself so a 29 February anchor does not drift.
    """
    years = max(today.year - anchor.year, 0)
    end = add_years(anchor, years)
    while end <= today:
        years += 1
        end = add_years(anchor, years)
    return add_years(anchor, years - 1), end
