"""
Date bucketing helpers shared by the ledger adapters and trend engine.
"""

from datetime import date, datetime, timedelta
from typing import Callable, Union

import pandas as pd

from .constants import Period

DateLike = Union[date, datetime]
# Returns the current naive UTC time
Clock = Callable[[], datetime]


def to_date(value: DateLike) -> date:
    """Normalize a date or datetime to a date."""
    if isinstance(value, datetime):
        return value.date()
    return value


def bucket_start(value: DateLike, period: Period) -> date:
    """Return the first day of the bucket containing value."""
    day = to_date(value)

    if period == Period.DAILY:
        return day
    if period == Period.WEEKLY:
        return day - timedelta(days=day.weekday())
    if period == Period.MONTHLY:
        return day.replace(day=1)
    if period == Period.YEARLY:
        return date(day.year, 1, 1)

    raise ValueError(f"Unsupported period: {period}")


def add_periods(value: DateLike, period: Period, count: int) -> date:
    """Advance a date by count periods (calendar aware for months and years)."""
    if period == Period.DAILY:
        offset = pd.DateOffset(days=count)
    elif period == Period.WEEKLY:
        offset = pd.DateOffset(weeks=count)
    elif period == Period.MONTHLY:
        offset = pd.DateOffset(months=count)
    elif period == Period.YEARLY:
        offset = pd.DateOffset(years=count)
    else:
        raise ValueError(f"Unsupported period: {period}")

    return (pd.Timestamp(to_date(value)) + offset).date()


def months_before(value: DateLike, months: int) -> date:
    """Return the date months calendar months before value."""
    return (pd.Timestamp(to_date(value)) - pd.DateOffset(months=months)).date()
