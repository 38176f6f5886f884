"""
Mock Data Provider for Testing

Generates deterministic synthetic daily bars for offline runs and tests.
Individual dates can be withheld, and symbols can be made unknown or
failing, to exercise gap handling and batch error isolation.
"""

from __future__ import annotations

import asyncio
import zlib
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from . import PriceDataSource, SymbolNotFoundError, TransientFetchError
from ..logging import get_logger
from ..models import SplitEvent
from ..series import empty_series, filter_range, normalize_series, utc_now

logger = get_logger(__name__)

PROVIDER_NAME = "mock"


class MockDataProvider(PriceDataSource):
    """
    Mock implementation of PriceDataSource for testing.

    Each symbol gets one random-walk history from ``history_start`` to
    ``today``, seeded from the symbol, so repeated fetches return identical
    bars for the same dates.
    """

    name = PROVIDER_NAME

    def __init__(
        self,
        base_price: float = 100.0,
        volatility: float = 0.02,
        history_start: date = date(2020, 1, 1),
        today: Optional[date] = None,
        missing_dates: Optional[Dict[str, Iterable[date]]] = None,
        unknown_symbols: Iterable[str] = (),
        failing_symbols: Iterable[str] = (),
        split_events: Optional[Dict[str, List[SplitEvent]]] = None,
        latency: float = 0.0
    ):
        """
        Initialize the mock provider.

        Args:
            base_price: Starting price for synthetic data
            volatility: Price volatility (standard deviation of returns)
            history_start: First date of every symbol's history
            today: Last date of every symbol's history
            missing_dates: Dates withheld per symbol
            unknown_symbols: Symbols that raise SymbolNotFoundError
            failing_symbols: Symbols that raise TransientFetchError
            split_events: Split events reported per symbol
            latency: Simulated network delay in seconds
        """
        self.base_price = base_price
        self.volatility = volatility
        self.history_start = history_start
        self.today = today or date.today()
        self.missing_dates = {
            symbol: set(dates) for symbol, dates in (missing_dates or {}).items()
        }
        self.unknown_symbols = set(unknown_symbols)
        self.failing_symbols = set(failing_symbols)
        self.split_events = split_events or {}
        self.latency = latency
        self.calls: List[Tuple[str, Optional[date], Optional[date]]] = []
        self._histories: Dict[str, pd.DataFrame] = {}

        logger.info(
            "Initialized Mock provider",
            base_price=base_price,
            volatility=volatility
        )

    def _history(self, symbol: str) -> pd.DataFrame:
        if symbol in self._histories:
            return self._histories[symbol]

        date_range = pd.bdate_range(start=self.history_start, end=self.today)
        rng = np.random.default_rng(zlib.crc32(symbol.encode("utf-8")))

        returns = rng.normal(0, self.volatility, len(date_range))
        closes = self.base_price * np.exp(np.cumsum(returns))
        opens = np.concatenate(([self.base_price], closes[:-1]))
        spread = np.abs(rng.normal(0, self.volatility * 0.5, (2, len(date_range))))
        highs = np.maximum(opens, closes) * (1 + spread[0])
        lows = np.minimum(opens, closes) * (1 - spread[1])
        volumes = rng.lognormal(15, 1, len(date_range)).astype("int64")

        history = pd.DataFrame(
            {
                "open": opens.round(2),
                "high": highs.round(2),
                "low": lows.round(2),
                "close": closes.round(2),
                "volume": volumes,
                "percent_change": np.concatenate(([np.nan], np.diff(closes) / closes[:-1] * 100)),
                "data_source": self.name,
                "fetched_at": utc_now(),
            },
            index=date_range,
        )
        history = normalize_series(history, data_source=self.name)
        self._histories[symbol] = history
        return history

    async def fetch_daily(
        self,
        symbol: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> pd.DataFrame:
        """
        Return synthetic bars for the requested range.

        Raises:
            SymbolNotFoundError: For symbols configured as unknown
            TransientFetchError: For symbols configured as failing
        """
        self.calls.append((symbol, start_date, end_date))
        if self.latency:
            await asyncio.sleep(self.latency)

        if symbol in self.unknown_symbols:
            raise SymbolNotFoundError("Ticker not found", self.name, symbol)
        if symbol in self.failing_symbols:
            raise TransientFetchError("Simulated upstream failure", self.name, symbol)

        data = filter_range(self._history(symbol), start_date, end_date)
        withheld = self.missing_dates.get(symbol)
        if withheld:
            data = data[~data.index.isin(pd.DatetimeIndex(list(withheld)))]

        if data.empty:
            return empty_series()

        data = data.copy()
        data["fetched_at"] = utc_now()
        logger.debug("Generated synthetic data", ticker=symbol, records=len(data))
        return data

    async def fetch_split_events(self, symbol: str) -> List[SplitEvent]:
        return list(self.split_events.get(symbol, []))

    def get_provider_info(self) -> Dict[str, Any]:
        """Get information about the mock provider."""
        return {
            "name": "Mock",
            "source_tag": self.name,
            "description": "Synthetic data provider for testing",
            "base_price": self.base_price,
            "volatility": self.volatility,
            "features": {
                "ohlcv": True,
                "splits": True,
                "intraday": False,
                "synthetic": True
            }
        }
