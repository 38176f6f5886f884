"""
Stocker Storage Module

Abstraction layer for per-ticker series storage. Each ticker is an
independent storage unit; a failure reading one ticker never affects others.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Optional, Set

import pandas as pd

from ..logging import get_logger
from ..models import Bar, TickerSummary
from ..series import DEFAULT_DATA_SOURCE, series_to_bars, utc_now

logger = get_logger(__name__)


class TickerStore(ABC):
    """
    Abstract base class for ticker series stores.

    Writes and merges replace a ticker's stored series atomically together
    with its summary.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def symbol_lock(self, symbol: str) -> asyncio.Lock:
        """Lock serializing mutations of one symbol's series."""
        lock = self._locks.get(symbol)
        if lock is None:
            lock = self._locks[symbol] = asyncio.Lock()
        return lock

    @abstractmethod
    async def exists(self, symbol: str) -> bool:
        """Whether a series is stored for the symbol."""

    @abstractmethod
    async def get_series(
        self,
        symbol: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> pd.DataFrame:
        """
        Read a symbol's series, optionally limited to a date range.

        Returns:
            The series, empty when the symbol is unknown

        Raises:
            StorageCorruptionError: If the stored file cannot be read
        """

    @abstractmethod
    async def write_series(self, symbol: str, series: pd.DataFrame) -> Optional[TickerSummary]:
        """
        Replace a symbol's series.

        Returns:
            The recomputed summary, or None if ``series`` was empty and
            nothing was written
        """

    @abstractmethod
    async def merge_series(self, symbol: str, incoming: pd.DataFrame) -> Optional[TickerSummary]:
        """
        Merge bars into a symbol's stored series.

        Returns:
            The recomputed summary, or None if ``incoming`` was empty and
            nothing was written
        """

    @abstractmethod
    async def get_summary(self, symbol: str) -> Optional[TickerSummary]:
        """Stored summary for a symbol, or None if unknown."""

    @abstractmethod
    async def list_tickers(self) -> Set[str]:
        """Symbols with a stored series."""

    @abstractmethod
    async def get_storage_info(self) -> Dict[str, Any]:
        """
        Get information about storage usage and configuration.

        Returns:
            Storage metadata
        """

    async def get_first_bar(self, symbol: str) -> Optional[Bar]:
        series = await self.get_series(symbol)
        return series_to_bars(series.iloc[:1])[0] if not series.empty else None

    async def get_latest_bar(self, symbol: str) -> Optional[Bar]:
        series = await self.get_series(symbol)
        return series_to_bars(series.iloc[-1:])[0] if not series.empty else None


class StorageError(Exception):
    """Exception raised when storage operations fail."""

    def __init__(self, message: str, backend: str, operation: Optional[str] = None):
        self.message = message
        self.backend = backend
        self.operation = operation
        super().__init__(f"[{backend}] {message}" + (f" during {operation}" if operation else ""))


class StorageCorruptionError(StorageError):
    """Exception raised when a stored series exists but cannot be read."""


def summarize_series(
    symbol: str,
    series: pd.DataFrame,
    last_update: Optional[datetime] = None
) -> TickerSummary:
    """
    Compute the summary of a non-empty series.

    Args:
        symbol: Ticker symbol
        series: Normalized, non-empty series
        last_update: Update timestamp; defaults to now (UTC)

    Returns:
        Summary with first/last date, record count and the latest source tag
    """
    if series.empty:
        raise ValueError(f"Cannot summarize an empty series for {symbol}")

    sources = series["data_source"].dropna()
    return TickerSummary(
        symbol=symbol,
        first_date=series.index.min().date(),
        last_date=series.index.max().date(),
        last_update=last_update or utc_now().to_pydatetime(),
        data_source=str(sources.iloc[-1]) if not sources.empty else DEFAULT_DATA_SOURCE,
        record_count=len(series),
    )
