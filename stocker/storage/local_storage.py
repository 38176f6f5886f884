"""
Local Filesystem Storage Backend

Implementation of TickerStore on the local filesystem with one Parquet file
per ticker:

    <data_dir>/stocks/<SYMBOL>/daily.parquet

The ticker summary is kept in the Parquet schema metadata, so the rows and
their summary are always replaced together. Files are written to a
temporary sibling and moved into place with ``os.replace``.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
from pydantic import ValidationError

from . import StorageCorruptionError, StorageError, TickerStore, summarize_series
from ..config import normalize_symbol
from ..logging import get_logger, Timer
from ..models import TickerSummary
from ..series import filter_range, merge_series as merge_bars, normalize_series

logger = get_logger(__name__)

SERIES_FILENAME = "daily.parquet"
SUMMARY_METADATA_KEY = b"stocker.summary"
BACKEND_NAME = "local"


class LocalTickerStore(TickerStore):
    """
    Local filesystem implementation of TickerStore.

    File I/O runs in worker threads; mutations of one symbol are serialized
    by that symbol's lock, while different symbols proceed independently.
    """

    def __init__(self, data_dir: Path, compression: str = "zstd"):
        """
        Initialize local storage backend.

        Args:
            data_dir: Root data directory; series live under ``stocks/``
            compression: Parquet compression codec
        """
        super().__init__()
        self.data_dir = Path(data_dir).resolve()
        self.stocks_dir = self.data_dir / "stocks"
        self.compression = compression

        self.stocks_dir.mkdir(parents=True, exist_ok=True)

        logger.debug(
            "Initialized local ticker store",
            stocks_dir=str(self.stocks_dir),
            compression=compression
        )

    def series_path(self, symbol: str) -> Path:
        return self.stocks_dir / normalize_symbol(symbol) / SERIES_FILENAME

    # Synchronous file operations, run via asyncio.to_thread

    def _read_file(self, symbol: str) -> pd.DataFrame:
        path = self.series_path(symbol)
        if not path.exists():
            return normalize_series(None)

        try:
            frame = pq.read_table(path).to_pandas()
            return normalize_series(frame)
        except (pa.ArrowException, OSError, ValueError, KeyError) as e:
            raise StorageCorruptionError(
                f"Unreadable series file {path}: {e}", BACKEND_NAME, "read"
            ) from e

    def _read_summary(self, symbol: str) -> Optional[TickerSummary]:
        path = self.series_path(symbol)
        if not path.exists():
            return None

        try:
            metadata = pq.read_schema(path).metadata or {}
        except (pa.ArrowException, OSError) as e:
            raise StorageCorruptionError(
                f"Unreadable series file {path}: {e}", BACKEND_NAME, "read_summary"
            ) from e

        raw = metadata.get(SUMMARY_METADATA_KEY)
        if raw is not None:
            try:
                return TickerSummary.model_validate_json(raw)
            except ValidationError as e:
                logger.warning("Invalid stored summary, recomputing", ticker=symbol, error=str(e))

        # Files written without a summary: derive one from the rows
        series = self._read_file(symbol)
        if series.empty:
            return None
        modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).replace(tzinfo=None)
        return summarize_series(symbol, series, last_update=modified)

    def _write_file(self, symbol: str, series: pd.DataFrame, summary: TickerSummary) -> None:
        path = self.series_path(symbol)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex[:8]}")

        table = pa.Table.from_pandas(series, preserve_index=True)
        metadata = dict(table.schema.metadata or {})
        metadata[SUMMARY_METADATA_KEY] = summary.model_dump_json().encode("utf-8")
        table = table.replace_schema_metadata(metadata)

        try:
            pq.write_table(table, tmp_path, compression=self.compression)
            os.replace(tmp_path, path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    async def _store(self, symbol: str, series: pd.DataFrame, operation: str) -> TickerSummary:
        summary = summarize_series(symbol, series)
        try:
            await asyncio.to_thread(self._write_file, symbol, series, summary)
        except (pa.ArrowException, OSError, ValueError) as e:
            error_msg = f"Failed to write series for {symbol}: {e}"
            logger.error(error_msg, ticker=symbol, error=str(e))
            raise StorageError(error_msg, BACKEND_NAME, operation) from e
        return summary

    # TickerStore interface

    async def exists(self, symbol: str) -> bool:
        return self.series_path(symbol).is_file()

    async def get_series(
        self,
        symbol: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> pd.DataFrame:
        """
        Read a symbol's series with optional date filtering.

        Args:
            symbol: Symbol to read data for
            start_date: Optional start date filter
            end_date: Optional end date filter

        Returns:
            Series sorted by date; empty if nothing is stored
        """
        series = await asyncio.to_thread(self._read_file, symbol)
        if start_date or end_date:
            series = filter_range(series, start_date, end_date)
        return series

    async def write_series(self, symbol: str, series: pd.DataFrame) -> Optional[TickerSummary]:
        """
        Replace a symbol's stored series and summary.

        Args:
            symbol: Ticker symbol
            series: Complete series to store

        Returns:
            New summary, or None when ``series`` is empty
        """
        series = normalize_series(series)
        if series.empty:
            logger.warning("Attempted to write empty data", ticker=symbol)
            return None

        async with self.symbol_lock(symbol):
            with Timer(logger, "write_series", ticker=symbol, records=len(series)):
                summary = await self._store(symbol, series, "write_series")

        logger.info(
            "Wrote series",
            ticker=symbol,
            records=summary.record_count,
            first_date=summary.first_date.isoformat(),
            last_date=summary.last_date.isoformat()
        )
        return summary

    async def merge_series(self, symbol: str, incoming: pd.DataFrame) -> Optional[TickerSummary]:
        """
        Merge incoming bars into the stored series; incoming bars win on date.

        Args:
            symbol: Ticker symbol
            incoming: Newly fetched bars

        Returns:
            New summary, or None when ``incoming`` is empty
        """
        incoming = normalize_series(incoming)
        if incoming.empty:
            logger.info("Nothing to merge", ticker=symbol)
            return None

        async with self.symbol_lock(symbol):
            with Timer(logger, "merge_series", ticker=symbol, records=len(incoming)):
                existing = await asyncio.to_thread(self._read_file, symbol)
                merged = merge_bars(existing, incoming)
                summary = await self._store(symbol, merged, "merge_series")

        logger.info(
            "Merged series",
            ticker=symbol,
            incoming=len(incoming),
            added=summary.record_count - len(existing),
            records=summary.record_count
        )
        return summary

    async def get_summary(self, symbol: str) -> Optional[TickerSummary]:
        return await asyncio.to_thread(self._read_summary, symbol)

    async def list_tickers(self) -> Set[str]:
        """Symbols with a series file, found by scanning the stocks directory."""
        if not self.stocks_dir.exists():
            return set()
        return {
            entry.name
            for entry in self.stocks_dir.iterdir()
            if entry.is_dir() and (entry / SERIES_FILENAME).is_file()
        }

    async def get_storage_info(self) -> Dict[str, Any]:
        """
        Get information about storage usage and configuration.

        Returns:
            Storage metadata
        """
        total_size = 0
        file_count = 0
        for path in self.stocks_dir.glob(f"*/{SERIES_FILENAME}"):
            total_size += path.stat().st_size
            file_count += 1

        return {
            "backend": BACKEND_NAME,
            "root_path": str(self.data_dir),
            "compression": self.compression,
            "total_size_bytes": total_size,
            "total_size_mb": round(total_size / (1024 * 1024), 2),
            "file_count": file_count,
        }
