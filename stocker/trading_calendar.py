"""
Trading Calendar Gap Detection

Weekday-based trading calendar used to find missing days in a stored series.
Holidays are not modelled; they show up as short gaps, which is why callers
separate significant gaps (more than ``SIGNIFICANT_GAP_DAYS`` trading days)
from the rest.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, List

import numpy as np
import pandas as pd

from .models import SIGNIFICANT_GAP_DAYS, Gap

__all__ = [
    "SIGNIFICANT_GAP_DAYS",
    "as_date",
    "count_weekdays_between",
    "find_gaps",
    "is_trading_day",
    "next_weekday",
    "previous_weekday",
    "significant_gaps",
    "weekday_span",
]


def as_date(value: date | datetime | pd.Timestamp | str) -> date:
    """Coerce a date-like value to ``datetime.date``."""
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    if isinstance(value, datetime):
        return value.date()
    return value


def is_trading_day(day: date) -> bool:
    return day.weekday() < 5


def next_weekday(day: date) -> date:
    """First weekday strictly after ``day``."""
    candidate = day + timedelta(days=1)
    while not is_trading_day(candidate):
        candidate += timedelta(days=1)
    return candidate


def previous_weekday(day: date) -> date:
    """Last weekday strictly before ``day``."""
    candidate = day - timedelta(days=1)
    while not is_trading_day(candidate):
        candidate -= timedelta(days=1)
    return candidate


def count_weekdays_between(earlier: date, later: date) -> int:
    """
    Count weekdays strictly between two dates, excluding both endpoints.

    Args:
        earlier: Lower bound (excluded)
        later: Upper bound (excluded)

    Returns:
        Number of weekdays in the open interval, 0 if it is empty
    """
    first = earlier + timedelta(days=1)
    if first >= later:
        return 0
    return int(np.busday_count(first, later))


def weekday_span(first: date, last: date) -> int:
    """Count weekdays from ``first`` to ``last``, both included."""
    if last < first:
        return 0
    return int(np.busday_count(first, last + timedelta(days=1)))


def find_gaps(dates: Iterable[date | datetime | pd.Timestamp]) -> List[Gap]:
    """
    Find runs of missing weekdays in an ascending, de-duplicated date sequence.

    Each consecutive pair with at least one weekday strictly between them
    produces one gap spanning the first missing weekday to the last one.
    Weekends never count as missing. All gaps are returned regardless of size.

    Args:
        dates: Ascending unique dates (a series index is accepted as is)

    Returns:
        Gaps in date order; empty when fewer than two dates are given

    Example:
        >>> find_gaps([date(2024, 1, 5), date(2024, 1, 10)])
        [Gap(start=datetime.date(2024, 1, 8), end=datetime.date(2024, 1, 9), days=2)]
    """
    days = [as_date(d) for d in dates]
    if len(days) < 2:
        return []

    gaps: List[Gap] = []
    for previous, current in zip(days, days[1:]):
        missing = count_weekdays_between(previous, current)
        if missing > 0:
            gaps.append(
                Gap(
                    start=next_weekday(previous),
                    end=previous_weekday(current),
                    days=missing,
                )
            )
    return gaps


def significant_gaps(gaps: Iterable[Gap]) -> List[Gap]:
    """Gaps longer than ``SIGNIFICANT_GAP_DAYS`` trading days."""
    return [gap for gap in gaps if gap.significant]
