"""
EOD Historical Data Provider

Concrete implementation of the PriceDataSource interface over the EOD
Historical Data REST API, with retry on transient failures, request pacing
and HTTP status classification.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date
from typing import Any, Dict, List, Optional

import pandas as pd
import requests
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

PROVIDER_NAME = "eod"


def transform_eod_row(row: Dict[str, Any], fetched_at: pd.Timestamp) -> Dict[str, Any]:
    """
    Convert one EODHD ``/eod`` row into a bar record.

    Args:
        row: JSON object with date, open, high, low, close, adjusted_close,
            volume and optionally change_p
        fetched_at: Retrieval timestamp stamped on the record

    Returns:
        Bar record keyed by series column names
    """
    open_ = float(row["open"])
    high = float(row["high"])
    low = float(row["low"])
    close = float(row["close"])
    volume = int(row.get("volume") or 0)

    record: Dict[str, Any] = {
        "date": row["date"],
        "open": open_,
        "high": high,
        "low": low,
        "close": close,
        "volume": volume,
        "percent_change": row.get("change_p"),
        "split": False,
        "data_source": PROVIDER_NAME,
        "fetched_at": fetched_at,
    }
    record.update(
        adjusted_bar_values(open_, high, low, close, volume, row.get("adjusted_close"))
    )
    return record


class EODHDProvider(PriceDataSource):
    """
    EOD Historical Data implementation of the PriceDataSource interface.

    Blocking HTTP calls run in a worker thread so several symbols can be in
    flight at once under the caller's concurrency limit.
    """

    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://eodhistoricaldata.com/api",
        timeout: float = 30.0,
        rate_limit_delay: float = 0.05,
        max_retries: int = 3,
        backoff_factor: float = 2.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the EODHD provider.

        Args:
            api_key: EODHD API token
            base_url: REST API base URL
            timeout: Per-request timeout in seconds
            rate_limit_delay: Minimum delay between requests in seconds
            max_retries: Maximum attempts for transient failures
            backoff_factor: Exponential backoff multiplier between attempts
            session: Optional pre-configured requests session
        """
        if not api_key:
            raise ValueError("EOD Historical Data API key is required")

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limit_delay = rate_limit_delay
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.session = session or requests.Session()
        self.last_request_time = 0.0
        self._rate_lock = asyncio.Lock()

        logger.info(
            "Initialized EODHD provider",
            base_url=self.base_url,
            rate_limit_delay=rate_limit_delay,
            max_retries=max_retries
        )

    @classmethod
    def from_settings(cls, settings: StockerSettings) -> EODHDProvider:
        return cls(
            api_key=settings.require_api_key(),
            base_url=settings.eodhd_base_url,
            timeout=settings.request_timeout,
            rate_limit_delay=settings.rate_limit_delay,
            max_retries=settings.max_retries,
            backoff_factor=settings.retry_backoff_factor,
        )

    async def _respect_rate_limit(self) -> None:
        """Ensure we don't exceed rate limits."""
        async with self._rate_lock:
            time_since_last = time.monotonic() - self.last_request_time
            if time_since_last < self.rate_limit_delay:
                sleep_time = self.rate_limit_delay - time_since_last
                logger.debug(f"Rate limiting: sleeping for {sleep_time:.2f}s")
                await asyncio.sleep(sleep_time)
            self.last_request_time = time.monotonic()

    def _request(self, path: str, params: Dict[str, str], symbol: str) -> Any:
        """Issue one GET and classify failures."""
        url = f"{self.base_url}/{path}"
        query = {"api_token": self.api_key, "fmt": "json", **params}

        try:
            response = self.session.get(url, params=query, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise TransientFetchError(f"Request timed out: {e}", self.name, symbol) from e
        except requests.exceptions.ConnectionError as e:
            raise TransientFetchError(f"Connection failed: {e}", self.name, symbol) from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Request failed: {e}", self.name, symbol) from e

        status = response.status_code
        if status == 404:
            raise SymbolNotFoundError("Ticker not found", self.name, symbol)
        if status == 429:
            raise RateLimitError("Rate limit exceeded (HTTP 429)", self.name, symbol)
        if status >= 500:
            raise TransientFetchError(
                f"Server error: HTTP {status} {response.reason}", self.name, symbol
            )
        if status >= 400:
            raise ProviderError(f"API error: HTTP {status} {response.reason}", self.name, symbol)

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON response: {e}", self.name, symbol) from e

    async def _get(self, path: str, params: Dict[str, str], symbol: str) -> Any:
        """GET with pacing and retry on transient failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.backoff_factor, min=1, max=30),
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=before_sleep_log(_retry_logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                await self._respect_rate_limit()
                return await asyncio.to_thread(self._request, path, params, symbol)

    async def fetch_daily(
        self,
        symbol: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> pd.DataFrame:
        """
        Fetch daily bars from ``/eod/{symbol}``.

        Args:
            symbol: Ticker symbol as understood by EODHD
            start_date: Optional ``from`` date
            end_date: Optional ``to`` date

        Returns:
            Normalized series, empty when the API returns no rows
        """
        params: Dict[str, str] = {}
        if start_date:
            params["from"] = start_date.isoformat()
        if end_date:
            params["to"] = end_date.isoformat()

        with Timer(
            logger,
            "eodhd_fetch",
            ticker=symbol,
            start_date=params.get("from"),
            end_date=params.get("to")
        ):
            payload = await self._get(f"eod/{symbol}", params, symbol)

            if not isinstance(payload, list):
                raise ProviderError("Invalid response: expected a list of bars", self.name, symbol)

            if not payload:
                logger.info("No rows returned", ticker=symbol, **params)
                return empty_series()

            fetched_at = utc_now()
            try:
                records = [transform_eod_row(row, fetched_at) for row in payload]
            except (KeyError, TypeError, ValueError) as e:
                raise ProviderError(f"Malformed bar in response: {e}", self.name, symbol) from e

            data = normalize_series(pd.DataFrame.from_records(records), data_source=self.name)
            check_non_negative(data, self.name, symbol)

            logger.info(
                "Successfully fetched data",
                ticker=symbol,
                records=len(data),
                date_range=f"{data.index.min().date()} to {data.index.max().date()}"
            )
            return data

    async def fetch_split_events(self, symbol: str) -> List[SplitEvent]:
        """
        Fetch split events from ``/splits/{symbol}``.

        Split data only annotates bars, so failures are logged and an empty
        list is returned.
        """
        try:
            payload = await self._get(f"splits/{symbol}", {}, symbol)
        except ProviderError as e:
            logger.warning(
                "Failed to fetch split events",
                ticker=symbol,
                error=str(e)
            )
            return []

        if not isinstance(payload, list):
            return []

        events = []
        for row in payload:
            try:
                events.append(SplitEvent(date=row["date"], ratio=str(row["split"])))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed split row", ticker=symbol, row=row)
        return events

    async def close(self) -> None:
        self.session.close()

    def get_provider_info(self) -> Dict[str, Any]:
        """Get information about the EODHD provider."""
        return {
            "name": "EODHD",
            "source_tag": self.name,
            "description": "EOD Historical Data REST API",
            "base_url": self.base_url,
            "rate_limit_delay": self.rate_limit_delay,
            "max_retries": self.max_retries,
            "features": {
                "ohlcv": True,
                "splits": True,
                "intraday": False
            }
        }
