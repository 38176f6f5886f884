"""
YFinance Provider Implementation

Alternate PriceDataSource backed by the yfinance library, used when no EOD
Historical Data key is available.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import yfinance as yf
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from . import (
    PriceDataSource,
    ProviderError,
    RateLimitError,
    SymbolNotFoundError,
    TransientFetchError,
    adjusted_bar_values,
    check_non_negative,
)
from ..config import StockerSettings
from ..logging import get_logger, Timer
from ..models import SplitEvent
from ..series import empty_series, normalize_series, utc_now

logger = get_logger(__name__)

# tenacity hooks log through stdlib
_retry_logger = logging.getLogger(__name__)

PROVIDER_NAME = "yahoo"


def _flatten_columns(data: pd.DataFrame) -> pd.DataFrame:
    """Drop the ticker level yf.download() adds to column names."""
    if isinstance(data.columns, pd.MultiIndex):
        data = data.copy()
        data.columns = [col[0] if isinstance(col, tuple) else col for col in data.columns]
    return data


class YFinanceProvider(PriceDataSource):
    """
    YFinance implementation of the PriceDataSource interface.

    yf.download() reports an unknown ticker by returning an empty frame, so
    an empty result is checked against the ticker's full history before it
    is treated as "no rows in range".
    """

    name = PROVIDER_NAME

    def __init__(
        self,
        rate_limit_delay: float = 0.1,
        max_retries: int = 3,
        backoff_factor: float = 1.0
    ):
        """
        Initialize the YFinance provider.

        Args:
            rate_limit_delay: Delay between requests in seconds
            max_retries: Maximum attempts for transient failures
            backoff_factor: Exponential backoff multiplier between attempts
        """
        self.rate_limit_delay = rate_limit_delay
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.last_request_time = 0.0

        # Suppress yfinance's noisy error logging
        logging.getLogger("yfinance").setLevel(logging.CRITICAL)

        logger.info(
            "Initialized YFinance provider",
            rate_limit_delay=rate_limit_delay,
            max_retries=max_retries
        )

    @classmethod
    def from_settings(cls, settings: StockerSettings) -> YFinanceProvider:
        return cls(
            rate_limit_delay=settings.rate_limit_delay,
            max_retries=settings.max_retries,
            backoff_factor=settings.retry_backoff_factor,
        )

    async def _respect_rate_limit(self) -> None:
        """Ensure we don't exceed rate limits."""
        time_since_last = time.monotonic() - self.last_request_time
        if time_since_last < self.rate_limit_delay:
            await asyncio.sleep(self.rate_limit_delay - time_since_last)
        self.last_request_time = time.monotonic()

    def _classify_error(self, error: Exception, symbol: str) -> ProviderError:
        error_str = str(error).lower()
        message = f"Failed to fetch data: {error}"
        if "429" in error_str or "rate limit" in error_str or "too many requests" in error_str:
            return RateLimitError(message, self.name, symbol)
        if "timeout" in error_str or "timed out" in error_str or "connection" in error_str:
            return TransientFetchError(message, self.name, symbol)
        if "expecting value" in error_str and "char 0" in error_str:
            # Truncated JSON from the Yahoo API, usually temporary
            return TransientFetchError(message, self.name, symbol)
        if "no timezone found" in error_str or "delisted" in error_str or "not found" in error_str:
            return SymbolNotFoundError(message, self.name, symbol)
        return ProviderError(message, self.name, symbol)

    async def _call(self, func: Callable[..., Any], symbol: str, *args: Any) -> Any:
        """Run a blocking yfinance call with pacing, classification and retry."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.backoff_factor, min=1, max=10),
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=before_sleep_log(_retry_logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                await self._respect_rate_limit()
                try:
                    return await asyncio.to_thread(func, symbol, *args)
                except ProviderError:
                    raise
                # yfinance surfaces HTTP, JSON and parsing failures as arbitrary types
                except Exception as e:
                    raise self._classify_error(e, symbol) from e

    def _download(
        self,
        symbol: str,
        start_date: Optional[date],
        end_date: Optional[date]
    ) -> pd.DataFrame:
        kwargs: Dict[str, Any] = {
            "auto_adjust": False,  # We want both Close and Adj Close
            "actions": False,
            "progress": False,
        }
        if start_date is None and end_date is None:
            kwargs["period"] = "max"
        else:
            kwargs["start"] = start_date or date(1970, 1, 1)
            if end_date:
                # yfinance treats end as exclusive
                kwargs["end"] = end_date + timedelta(days=1)
        return yf.download(symbol, **kwargs)

    @staticmethod
    def _has_history(symbol: str) -> bool:
        history = yf.Ticker(symbol).history(period="max", auto_adjust=False)
        return history is not None and not history.empty

    def _process_ohlcv_data(self, raw_data: pd.DataFrame, symbol: str) -> pd.DataFrame:
        """Convert a yf.download() frame into bar records."""
        data = _flatten_columns(raw_data)
        data = data.dropna(subset=["Open", "High", "Low", "Close"])
        if data.empty:
            return empty_series()

        fetched_at = utc_now()
        records = []
        previous_close: Optional[float] = None
        for timestamp, row in data.iterrows():
            close = float(row["Close"])
            volume = int(row["Volume"]) if not pd.isna(row["Volume"]) else 0
            record = {
                "date": timestamp,
                "open": float(row["Open"]),
                "high": float(row["High"]),
                "low": float(row["Low"]),
                "close": close,
                "volume": volume,
                "percent_change": (
                    (close / previous_close - 1.0) * 100.0 if previous_close else None
                ),
                "split": False,
                "data_source": self.name,
                "fetched_at": fetched_at,
            }
            record.update(
                adjusted_bar_values(
                    record["open"], record["high"], record["low"], close, volume,
                    row.get("Adj Close"),
                )
            )
            records.append(record)
            previous_close = close

        series = normalize_series(pd.DataFrame.from_records(records), data_source=self.name)
        return check_non_negative(series, self.name, symbol)

    async def fetch_daily(
        self,
        symbol: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> pd.DataFrame:
        """
        Fetch daily bars through yf.download().

        Raises:
            SymbolNotFoundError: If Yahoo has no history at all for the symbol
        """
        with Timer(
            logger,
            "yfinance_fetch",
            ticker=symbol,
            start_date=start_date.isoformat() if start_date else None,
            end_date=end_date.isoformat() if end_date else None
        ):
            hist_data = await self._call(self._download, symbol, start_date, end_date)

            if hist_data is None or hist_data.empty:
                full_range = start_date is None and end_date is None
                if full_range or not await self._call(self._has_history, symbol):
                    raise SymbolNotFoundError("No price history on Yahoo Finance", self.name, symbol)
                logger.info("No historical data found", ticker=symbol)
                return empty_series()

            data = self._process_ohlcv_data(hist_data, symbol)
            logger.info("Successfully fetched data", ticker=symbol, records=len(data))
            return data

    async def fetch_split_events(self, symbol: str) -> List[SplitEvent]:
        """Fetch split events from ``Ticker.splits``; failures yield an empty list."""
        try:
            splits = await self._call(lambda s: yf.Ticker(s).splits, symbol)
        except ProviderError as e:
            logger.warning("Failed to fetch split events", ticker=symbol, error=str(e))
            return []

        if splits is None or splits.empty:
            return []

        return [
            SplitEvent(date=pd.Timestamp(timestamp).date(), ratio=f"{float(ratio):g}/1")
            for timestamp, ratio in splits.items()
            if ratio and float(ratio) != 1.0
        ]

    def get_provider_info(self) -> Dict[str, Any]:
        """Get information about the YFinance provider."""
        return {
            "name": "YFinance",
            "source_tag": self.name,
            "version": yf.__version__,
            "description": "Yahoo Finance data provider",
            "rate_limit_delay": self.rate_limit_delay,
            "max_retries": self.max_retries,
            "features": {
                "ohlcv": True,
                "splits": True,
                "intraday": False
            }
        }
