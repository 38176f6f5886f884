"""
Stocker

Daily stock price fetcher: downloads OHLCV history per ticker into
per-ticker Parquet files and keeps them current with gap-aware incremental
updates.
"""

__version__ = "1.0.0"

from .config import DataSource, LogLevel, StockerSettings, load_settings
from .models import Bar, FetchOutcome, FetchStatus, Gap, TickerInfo, TickerSummary
from .planner import FetchIntent, FetchPlan, plan_fetch
from .providers import PriceDataSource, ProviderError
from .registry import ReferenceRegistry
from .service import StockerService
from .storage import StorageError, TickerStore
from .storage.local_storage import LocalTickerStore

__all__ = [
    "DataSource",
    "LogLevel",
    "StockerSettings",
    "load_settings",
    "Bar",
    "FetchOutcome",
    "FetchStatus",
    "Gap",
    "TickerInfo",
    "TickerSummary",
    "FetchIntent",
    "FetchPlan",
    "plan_fetch",
    "PriceDataSource",
    "ProviderError",
    "ReferenceRegistry",
    "StockerService",
    "StorageError",
    "TickerStore",
    "LocalTickerStore",
]
