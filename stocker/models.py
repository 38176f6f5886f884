"""
Stocker Data Models

Pydantic models for daily bars, detected gaps, per-ticker summaries, split
events and the per-symbol fetch outcomes reported to callers.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import normalize_symbol

# Gaps longer than this many trading days are reported as significant
SIGNIFICANT_GAP_DAYS = 10


class Bar(BaseModel):
    """
    One trading day of price and volume data for one ticker.

    Raw prices are as traded on the day; adjusted prices reflect later
    splits and dividends as reported by the source.
    """

    date: date

    open: float = Field(..., ge=0)
    high: float = Field(..., ge=0)
    low: float = Field(..., ge=0)
    close: float = Field(..., ge=0)
    volume: int = Field(..., ge=0)

    adj_open: float
    adj_high: float
    adj_low: float
    adj_close: float
    adj_volume: int

    percent_change: Optional[float] = None
    split: bool = False
    data_source: str = "eod"
    fetched_at: datetime


class Gap(BaseModel):
    """A contiguous span of weekdays missing from a series."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date
    days: int = Field(..., gt=0)

    @property
    def significant(self) -> bool:
        """Whether the gap is long enough to be more than a holiday."""
        return self.days > SIGNIFICANT_GAP_DAYS


class SplitEvent(BaseModel):
    """A stock split reported by the data source."""

    date: date
    ratio: str


class TickerSummary(BaseModel):
    """
    Materialized projection of one ticker's stored series.

    Recomputed and persisted together with every write or merge.
    """

    symbol: str
    first_date: date
    last_date: date
    last_update: datetime
    data_source: str
    record_count: int = Field(..., ge=0)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        return normalize_symbol(v)


class TickerInfo(BaseModel):
    """Inspection report for a single stored ticker."""

    summary: TickerSummary
    gaps: List[Gap] = Field(default_factory=list)

    @property
    def significant_gaps(self) -> List[Gap]:
        return [gap for gap in self.gaps if gap.significant]


class FetchStatus(str, Enum):
    """Per-symbol result of a fetch request."""

    FETCHED = "fetched"
    NO_DATA = "no_data"
    SKIPPED = "skipped"
    ERROR = "error"


class FetchOutcome(BaseModel):
    """What happened to one symbol in a fetch or update run."""

    symbol: str
    status: FetchStatus
    records: int = 0
    intent: Optional[str] = None
    message: Optional[str] = None
    error_type: Optional[str] = None
    summary: Optional[TickerSummary] = None

    @property
    def failed(self) -> bool:
        return self.status == FetchStatus.ERROR

    def describe(self) -> str:
        """Human readable one-line description."""
        if self.status == FetchStatus.FETCHED:
            return f"fetched {self.records} records"
        if self.status == FetchStatus.NO_DATA:
            return "no new data"
        if self.status == FetchStatus.SKIPPED:
            return "skipped (exists, not forced)"
        return f"error: {self.message}"
