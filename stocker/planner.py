"""
Update Planner

Decides, for one ticker, which date range to request from the data source
and how the result is stored:

- INITIAL: nothing stored yet, fetch the requested range (all history if
  unset) and write it.
- TAIL: stored series without gaps, fetch from the day after the last stored
  date through today and merge.
- BACKFILL: stored series with gaps, fetch the whole history again and merge
  so the source can fill the holes.
- REFRESH: stored series, no update requested, but forced or given explicit
  dates; fetch that range.
- SKIP: stored series, nothing requested; no fetch.

Explicit start/end dates always replace the derived range.
"""

from __future__ import annotations

from datetime import date, timedelta
from enum import Enum
from typing import Iterable, List, Optional

import pandas as pd
from pydantic import BaseModel, Field

from .logging import get_logger
from .models import Gap, SplitEvent
from .trading_calendar import as_date, find_gaps

logger = get_logger(__name__)


class FetchIntent(str, Enum):
    """Why a fetch is (or is not) issued for a symbol."""

    INITIAL = "initial"
    TAIL = "tail"
    BACKFILL = "backfill"
    REFRESH = "refresh"
    SKIP = "skip"


class WriteMode(str, Enum):
    """How fetched bars are stored."""

    OVERWRITE = "overwrite"
    MERGE = "merge"
    NONE = "none"


class FetchPlan(BaseModel):
    """The date range to request for a symbol and how to store the result."""

    symbol: str
    intent: FetchIntent
    start: Optional[date] = None
    end: Optional[date] = None
    write_mode: WriteMode
    reason: str
    gaps: List[Gap] = Field(default_factory=list)

    @property
    def should_fetch(self) -> bool:
        return self.intent != FetchIntent.SKIP and not self.is_current

    @property
    def is_current(self) -> bool:
        """True when the range is empty because the stored data is up to date."""
        return self.start is not None and self.end is not None and self.start > self.end

    def describe_range(self) -> str:
        start = self.start.isoformat() if self.start else "beginning"
        end = self.end.isoformat() if self.end else "today"
        return f"{start} to {end}"


def plan_fetch(
    symbol: str,
    existing: Optional[pd.DataFrame],
    start: Optional[date] = None,
    end: Optional[date] = None,
    update: bool = False,
    force: bool = False,
    today: Optional[date] = None,
) -> FetchPlan:
    """
    Plan the fetch for one symbol from its stored series and the request.

    Args:
        symbol: Normalized ticker symbol
        existing: Stored series, or None when the symbol has no file
        start: Explicit first date to fetch
        end: Explicit last date to fetch
        update: Extend stored data (tail or backfill) instead of skipping it
        force: Re-fetch even though data exists and no update was requested
        today: Reference date for tail fetches; defaults to the current date

    Returns:
        The plan; SKIP plans carry the reason for the caller to report
    """
    today = today or date.today()
    explicit = start is not None or end is not None

    if existing is None or existing.empty:
        plan = FetchPlan(
            symbol=symbol,
            intent=FetchIntent.INITIAL,
            start=start,
            end=end,
            write_mode=WriteMode.OVERWRITE,
            reason="no stored data",
        )
    elif not update:
        if not force and not explicit:
            plan = FetchPlan(
                symbol=symbol,
                intent=FetchIntent.SKIP,
                write_mode=WriteMode.NONE,
                reason="data exists; use update or force to fetch",
            )
        else:
            # A partial window must not drop stored rows outside it
            plan = FetchPlan(
                symbol=symbol,
                intent=FetchIntent.REFRESH,
                start=start,
                end=end,
                write_mode=WriteMode.MERGE if explicit else WriteMode.OVERWRITE,
                reason="explicit range requested" if explicit else "forced full refresh",
            )
    else:
        gaps = find_gaps(existing.index)
        if gaps:
            plan = FetchPlan(
                symbol=symbol,
                intent=FetchIntent.BACKFILL,
                start=None,
                end=end,
                write_mode=WriteMode.MERGE,
                reason=f"{len(gaps)} gaps in stored data",
                gaps=gaps,
            )
        else:
            last_date = as_date(existing.index.max())
            plan = FetchPlan(
                symbol=symbol,
                intent=FetchIntent.TAIL,
                start=last_date + timedelta(days=1),
                end=end or today,
                write_mode=WriteMode.MERGE,
                reason=f"extending from {last_date.isoformat()}",
            )

        if explicit:
            plan = plan.model_copy(
                update={"start": start, "end": end, "reason": "explicit range requested"}
            )

    logger.debug(
        "Planned fetch",
        ticker=symbol,
        intent=plan.intent.value,
        start=plan.start.isoformat() if plan.start else None,
        end=plan.end.isoformat() if plan.end else None,
        write_mode=plan.write_mode.value,
        reason=plan.reason,
    )
    return plan


def apply_splits(series: pd.DataFrame, split_events: Iterable[SplitEvent]) -> pd.DataFrame:
    """
    Tag bars that fall on a reported split date.

    Adjusted prices are left as reported by the source.

    Args:
        series: Fetched series
        split_events: Split events for the same symbol

    Returns:
        Copy of the series with ``split`` set on matching dates
    """
    split_dates = pd.DatetimeIndex([pd.Timestamp(event.date) for event in split_events])
    if series.empty or split_dates.empty:
        return series

    tagged = series.copy()
    on_split = tagged.index.isin(split_dates)
    tagged.loc[on_split, "split"] = True

    if on_split.any():
        logger.info(
            "Tagged split dates",
            splits=int(on_split.sum()),
            dates=[timestamp.date().isoformat() for timestamp in tagged.index[on_split]],
        )
    return tagged
