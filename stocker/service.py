"""
Stocker Service

Orchestrates planning, fetching, split tagging, storage and registry updates
for one or many symbols. Every symbol produces a ``FetchOutcome``; a failing
symbol never stops the rest of a batch.
"""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence

import pandas as pd

from .config import DataSource, StockerSettings, normalize_symbol
from .logging import Timer, get_logger, set_correlation_id
from .models import Bar, FetchOutcome, FetchStatus, TickerInfo, TickerSummary
from .planner import FetchIntent, FetchPlan, WriteMode, apply_splits, plan_fetch
from .providers import PriceDataSource, ProviderError, SymbolNotFoundError
from .registry import ReferenceRegistry
from .storage import StorageError, TickerStore
from .storage.local_storage import LocalTickerStore
from .trading_calendar import find_gaps

logger = get_logger(__name__)


def create_provider(settings: StockerSettings) -> PriceDataSource:
    """Create the configured price data source."""
    if settings.data_source == DataSource.EOD:
        from .providers.eodhd_provider import EODHDProvider
        return EODHDProvider.from_settings(settings)
    if settings.data_source == DataSource.YAHOO:
        from .providers.yfinance_provider import YFinanceProvider
        return YFinanceProvider.from_settings(settings)
    if settings.data_source == DataSource.MOCK:
        from .providers.mock_provider import MockDataProvider
        return MockDataProvider()
    raise ValueError(f"Unsupported data source: {settings.data_source}")


def _batch_key(symbol: str) -> str:
    """Deduplication key; invalid symbols stay as given and fail on their own."""
    try:
        return normalize_symbol(symbol)
    except ValueError:
        return symbol


class StockerService:
    """
    Fetches, stores and inspects daily price series.

    Args:
        provider: Price data source; only needed for fetches
        store: Ticker store
        registry: Optional reference registry to keep in step with fetches
        max_workers: Concurrent symbol fetches in batch operations
        default_start: First date for initial fetches without an explicit start
        today: Clock used for tail fetches
    """

    def __init__(
        self,
        provider: Optional[PriceDataSource],
        store: TickerStore,
        registry: Optional[ReferenceRegistry] = None,
        max_workers: int = 5,
        default_start: Optional[date] = None,
        today: Callable[[], date] = date.today
    ):
        self.provider = provider
        self.store = store
        self.registry = registry
        self.max_workers = max_workers
        self.default_start = default_start
        self.today = today
        self._symbol_locks: Dict[str, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: StockerSettings,
        provider: Optional[PriceDataSource] = None,
        connect: bool = True
    ) -> StockerService:
        """
        Build a service from settings.

        Args:
            settings: Validated settings
            provider: Price data source to use instead of the configured one
            connect: Create the configured data source; read-only callers
                pass False so no API key is required
        """
        if provider is None and connect:
            provider = create_provider(settings)
        return cls(
            provider=provider,
            store=LocalTickerStore(settings.data_dir, compression=settings.parquet_compression),
            registry=ReferenceRegistry(settings.reference_path),
            max_workers=settings.max_workers,
            default_start=settings.default_start_date,
        )

    def _lock(self, symbol: str) -> asyncio.Lock:
        lock = self._symbol_locks.get(symbol)
        if lock is None:
            lock = self._symbol_locks[symbol] = asyncio.Lock()
        return lock

    async def plan(
        self,
        symbol: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        update: bool = False,
        force: bool = False
    ) -> FetchPlan:
        """Plan a fetch for a symbol against its stored series."""
        symbol = normalize_symbol(symbol)
        existing = await self.store.get_series(symbol) if await self.store.exists(symbol) else None
        plan = plan_fetch(
            symbol, existing, start=start, end=end, update=update, force=force, today=self.today()
        )
        if plan.intent == FetchIntent.INITIAL and plan.start is None and self.default_start:
            plan = plan.model_copy(update={"start": self.default_start})
        return plan

    async def fetch_symbol(
        self,
        symbol: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        update: bool = False,
        force: bool = False
    ) -> FetchOutcome:
        """
        Plan, fetch and store one symbol.

        Args:
            symbol: Ticker symbol
            start: Explicit first date
            end: Explicit last date
            update: Extend existing data (tail or gap backfill)
            force: Re-fetch existing data without update

        Returns:
            Outcome describing what happened; errors are reported, not raised
        """
        try:
            symbol = normalize_symbol(symbol)
        except ValueError as e:
            logger.warning("Invalid symbol", ticker=symbol, error=str(e))
            return self._error(symbol, e, str(e))
        set_correlation_id()

        async with self._lock(symbol):
            try:
                plan = await self.plan(symbol, start=start, end=end, update=update, force=force)
                return await self._execute(plan)
            except SymbolNotFoundError as e:
                logger.warning("Symbol not found", ticker=symbol, error=str(e))
                return self._error(symbol, e, f"symbol not found ({e.provider})")
            except ProviderError as e:
                logger.error("Fetch failed", ticker=symbol, error=str(e))
                return self._error(symbol, e, e.message)
            except StorageError as e:
                logger.error("Storage failure", ticker=symbol, error=str(e))
                return self._error(symbol, e, e.message)

    async def _execute(self, plan: FetchPlan) -> FetchOutcome:
        symbol = plan.symbol

        if plan.intent == FetchIntent.SKIP:
            summary = await self.store.get_summary(symbol)
            logger.info("Skipping existing symbol", ticker=symbol, reason=plan.reason)
            return FetchOutcome(
                symbol=symbol,
                status=FetchStatus.SKIPPED,
                intent=plan.intent.value,
                message=plan.reason,
                summary=summary,
            )

        if plan.is_current:
            logger.info("Data is current", ticker=symbol, last_fetchable=plan.end.isoformat())
            return FetchOutcome(
                symbol=symbol, status=FetchStatus.NO_DATA, intent=plan.intent.value,
                message="stored data is current",
            )

        if self.provider is None:
            raise RuntimeError("No price data source configured")

        logger.info(
            f"Fetching {symbol} from {plan.describe_range()}",
            ticker=symbol,
            intent=plan.intent.value,
            reason=plan.reason
        )

        with Timer(logger, "fetch_symbol", ticker=symbol, intent=plan.intent.value):
            incoming = await self.provider.fetch_daily(symbol, plan.start, plan.end)

            if incoming.empty:
                logger.info("No new data", ticker=symbol)
                return FetchOutcome(
                    symbol=symbol, status=FetchStatus.NO_DATA, intent=plan.intent.value
                )

            split_events = await self.provider.fetch_split_events(symbol)
            incoming = apply_splits(incoming, split_events)

            if plan.write_mode == WriteMode.OVERWRITE:
                summary = await self.store.write_series(symbol, incoming)
            else:
                summary = await self.store.merge_series(symbol, incoming)

        if summary is not None:
            await self._update_registry(symbol, summary)

        logger.info(
            "Successfully processed symbol",
            ticker=symbol,
            records=len(incoming),
            total_records=summary.record_count if summary else None
        )
        return FetchOutcome(
            symbol=symbol,
            status=FetchStatus.FETCHED,
            records=len(incoming),
            intent=plan.intent.value,
            summary=summary,
        )

    async def _update_registry(self, symbol: str, summary: TickerSummary) -> None:
        if self.registry is None:
            return
        try:
            # One registry rewrite at a time, off the event loop
            async with self._registry_lock:
                await asyncio.to_thread(
                    self.registry.record_prices,
                    symbol, summary.first_date, summary.last_date, summary.data_source
                )
        except (OSError, ValueError) as e:
            logger.warning("Failed to update reference registry", ticker=symbol, error=str(e))

    @staticmethod
    def _error(symbol: str, error: Exception, message: str) -> FetchOutcome:
        return FetchOutcome(
            symbol=symbol,
            status=FetchStatus.ERROR,
            message=message,
            error_type=type(error).__name__,
        )

    async def fetch_many(
        self,
        symbols: Sequence[str],
        start: Optional[date] = None,
        end: Optional[date] = None,
        update: bool = False,
        force: bool = False,
        max_workers: Optional[int] = None,
        on_complete: Optional[Callable[[FetchOutcome], None]] = None
    ) -> List[FetchOutcome]:
        """
        Fetch many symbols with bounded concurrency.

        The batch always runs over every symbol; failures are collected in
        the returned outcomes.

        Args:
            symbols: Ticker symbols; duplicates are fetched once
            start: Explicit first date for every symbol
            end: Explicit last date for every symbol
            update: Extend existing data
            force: Re-fetch existing data
            max_workers: Concurrency limit; defaults to the service setting
            on_complete: Called with each outcome as it finishes

        Returns:
            One outcome per unique symbol, in input order
        """
        unique = list(dict.fromkeys(_batch_key(s) for s in symbols))
        semaphore = asyncio.Semaphore(max_workers or self.max_workers)

        async def process_symbol(symbol: str) -> FetchOutcome:
            async with semaphore:
                outcome = await self.fetch_symbol(
                    symbol, start=start, end=end, update=update, force=force
                )
            if on_complete:
                on_complete(outcome)
            return outcome

        results = await asyncio.gather(
            *[process_symbol(symbol) for symbol in unique],
            return_exceptions=True
        )

        outcomes = []
        for symbol, result in zip(unique, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected failure",
                    ticker=symbol,
                    error_type=type(result).__name__,
                    error=str(result)
                )
                outcome = self._error(symbol, result, str(result) or type(result).__name__)
                if on_complete:
                    on_complete(outcome)
                outcomes.append(outcome)
            else:
                outcomes.append(result)

        failed = [o.symbol for o in outcomes if o.failed]
        logger.info(
            "Batch completed",
            symbols=len(outcomes),
            fetched=sum(1 for o in outcomes if o.status == FetchStatus.FETCHED),
            failed=len(failed)
        )
        return outcomes

    async def update_all(
        self,
        symbols: Optional[Sequence[str]] = None,
        max_workers: Optional[int] = None,
        on_complete: Optional[Callable[[FetchOutcome], None]] = None
    ) -> List[FetchOutcome]:
        """Update the given symbols, or every stored symbol."""
        if not symbols:
            symbols = sorted(await self.store.list_tickers())
        return await self.fetch_many(
            symbols, update=True, max_workers=max_workers, on_complete=on_complete
        )

    async def info(self, symbol: str) -> Optional[TickerInfo]:
        """
        Summary and gap report for a stored symbol.

        Returns:
            None when nothing is stored for the symbol

        Raises:
            StorageCorruptionError: If the stored file cannot be read
        """
        symbol = normalize_symbol(symbol)
        if not await self.store.exists(symbol):
            return None

        series = await self.store.get_series(symbol)
        summary = await self.store.get_summary(symbol)
        if summary is None:
            return None

        return TickerInfo(summary=summary, gaps=find_gaps(series.index))

    async def list_tickers(self) -> List[str]:
        return sorted(await self.store.list_tickers())

    async def get_prices(
        self,
        symbol: str,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> pd.DataFrame:
        return await self.store.get_series(normalize_symbol(symbol), start, end)

    async def get_latest_price(self, symbol: str) -> Optional[Bar]:
        return await self.store.get_latest_bar(normalize_symbol(symbol))

    async def get_first_price(self, symbol: str) -> Optional[Bar]:
        return await self.store.get_first_bar(normalize_symbol(symbol))

    async def close(self) -> None:
        if self.provider is not None:
            await self.provider.close()
