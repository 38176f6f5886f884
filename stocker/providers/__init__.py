"""
Stocker Price Data Providers

Abstract price source interface, its exception taxonomy, and shared helpers
for turning upstream rows into daily series.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List, Optional

import pandas as pd

from ..logging import get_logger
from ..models import SplitEvent

logger = get_logger(__name__)


class PriceDataSource(ABC):
    """
    Abstract base class for daily price data sources.

    Implementations must raise ``SymbolNotFoundError`` for unknown symbols
    and ``TransientFetchError`` for failures worth retrying later, so
    callers can tell them apart.
    """

    name: str = "abstract"

    @abstractmethod
    async def fetch_daily(
        self,
        symbol: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> pd.DataFrame:
        """
        Fetch daily bars for a symbol.

        Args:
            symbol: Ticker symbol
            start_date: First date to fetch; None for the start of history
            end_date: Last date to fetch; None for the latest available

        Returns:
            Normalized series, empty when the source has no rows in range

        Raises:
            SymbolNotFoundError: If the source does not know the symbol
            TransientFetchError: On network, timeout, rate-limit or server errors
            ProviderError: On any other source failure
        """

    @abstractmethod
    async def fetch_split_events(self, symbol: str) -> List[SplitEvent]:
        """
        Fetch reported split events for a symbol.

        Args:
            symbol: Ticker symbol

        Returns:
            Split events, empty when none are known
        """

    @abstractmethod
    def get_provider_info(self) -> Dict[str, Any]:
        """
        Get information about this provider.

        Returns:
            Dictionary containing provider metadata
        """

    async def close(self) -> None:
        """Release any held connections."""


class ProviderError(Exception):
    """Exception raised when provider operations fail."""

    def __init__(self, message: str, provider: str, symbol: Optional[str] = None):
        self.message = message
        self.provider = provider
        self.symbol = symbol
        super().__init__(f"[{provider}] {message}" + (f" for {symbol}" if symbol else ""))


class SymbolNotFoundError(ProviderError):
    """Exception raised when the source does not know a symbol."""


class TransientFetchError(ProviderError):
    """Exception raised for network, timeout and server-side failures."""


class RateLimitError(TransientFetchError):
    """Exception raised when provider rate limits are exceeded."""


class DataQualityError(ProviderError):
    """Exception raised when fetched data doesn't meet quality standards."""


RAW_COLUMNS = ["open", "high", "low", "close", "volume"]


def check_non_negative(data: pd.DataFrame, provider: str, symbol: str) -> pd.DataFrame:
    """
    Reject a series with negative raw prices or volumes.

    Raises:
        DataQualityError: Naming the first offending date
    """
    negative = data[RAW_COLUMNS].lt(0).any(axis=1)
    if negative.any():
        first_bad = data.index[negative.to_numpy()][0]
        raise DataQualityError(
            f"Negative price or volume on {first_bad.date()} "
            f"({int(negative.sum())} bad rows)",
            provider,
            symbol
        )
    return data


def adjusted_bar_values(
    open_: float,
    high: float,
    low: float,
    close: float,
    volume: int,
    adj_close: Optional[float],
) -> Dict[str, Any]:
    """
    Derive adjusted OHLCV values from a bar's adjusted close.

    Sources report only an adjusted close; the same factor is applied to
    open, high and low, and volume is scaled inversely.

    Returns:
        Mapping with adj_open, adj_high, adj_low, adj_close and adj_volume
    """
    adjusted_close = close if adj_close is None or pd.isna(adj_close) else float(adj_close)
    factor = adjusted_close / close if close > 0 else 1.0

    return {
        "adj_open": open_ * factor,
        "adj_high": high * factor,
        "adj_low": low * factor,
        "adj_close": adjusted_close,
        "adj_volume": int(round(volume / factor)) if factor not in (0.0, 1.0) else int(volume),
    }
