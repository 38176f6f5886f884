"""
Daily Series Schema and Merge Engine

A series is a pandas DataFrame of daily bars for one ticker, indexed by a
``DatetimeIndex`` named ``date`` with the fixed bar columns below. Merging
keeps the union of dates and lets incoming bars replace stored ones, since
adjusted prices change retroactively after later splits and dividends.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

import pandas as pd

from .logging import get_logger
from .models import Bar

logger = get_logger(__name__)

INDEX_NAME = "date"

DEFAULT_DATA_SOURCE = "eod"

# Column order is the on-disk order
BAR_DTYPES = {
    "open": "float64",
    "high": "float64",
    "low": "float64",
    "close": "float64",
    "volume": "int64",
    "adj_open": "float64",
    "adj_high": "float64",
    "adj_low": "float64",
    "adj_close": "float64",
    "adj_volume": "int64",
    "percent_change": "float64",
    "split": "bool",
    "data_source": "object",
    "fetched_at": "datetime64[ns]",
}

BAR_COLUMNS = list(BAR_DTYPES)

REQUIRED_COLUMNS = ["open", "high", "low", "close", "volume"]

_ADJUSTED_FALLBACKS = {
    "adj_open": "open",
    "adj_high": "high",
    "adj_low": "low",
    "adj_close": "close",
    "adj_volume": "volume",
}


def utc_now() -> pd.Timestamp:
    """Current time as a naive UTC timestamp, the stored form of fetched_at."""
    return pd.Timestamp(datetime.now(timezone.utc)).tz_localize(None)


def empty_series() -> pd.DataFrame:
    """An empty series with the full bar schema."""
    index = pd.DatetimeIndex([], dtype="datetime64[ns]", name=INDEX_NAME)
    return pd.DataFrame(
        {column: pd.Series(dtype=dtype, index=index) for column, dtype in BAR_DTYPES.items()},
        index=index,
    )


def normalize_series(
    data: Optional[pd.DataFrame],
    data_source: Optional[str] = None,
) -> pd.DataFrame:
    """
    Coerce a frame of daily bars to the fixed series schema.

    Accepts either a ``date`` column or a date-like index. Missing adjusted
    columns fall back to their raw counterparts. Duplicate dates keep the
    last row. The result is sorted ascending by date.

    Args:
        data: Frame with at least the raw OHLCV columns
        data_source: Source tag used when the frame has no data_source column

    Returns:
        Normalized series

    Raises:
        ValueError: If a raw OHLCV column is missing
    """
    if data is None or len(data) == 0:
        return empty_series()

    frame = data.copy()
    if INDEX_NAME in frame.columns:
        frame = frame.set_index(INDEX_NAME)

    missing = [column for column in REQUIRED_COLUMNS if column not in frame.columns]
    if missing:
        raise ValueError(f"Series is missing required columns: {', '.join(missing)}")

    index = pd.DatetimeIndex(pd.to_datetime(frame.index))
    if index.tz is not None:
        index = index.tz_localize(None)
    frame.index = pd.DatetimeIndex(
        index.normalize().to_numpy(dtype="datetime64[ns]"), name=INDEX_NAME
    )

    for adjusted, raw in _ADJUSTED_FALLBACKS.items():
        if adjusted not in frame.columns:
            frame[adjusted] = frame[raw]
    if "percent_change" not in frame.columns:
        frame["percent_change"] = float("nan")
    if "split" not in frame.columns:
        frame["split"] = False
    if "data_source" not in frame.columns:
        frame["data_source"] = data_source or DEFAULT_DATA_SOURCE
    if "fetched_at" not in frame.columns:
        frame["fetched_at"] = utc_now()

    frame = frame.loc[:, BAR_COLUMNS].copy()

    for column in ("volume", "adj_volume"):
        frame[column] = pd.to_numeric(frame[column], errors="coerce").fillna(0).round()
    frame["percent_change"] = pd.to_numeric(frame["percent_change"], errors="coerce")
    frame["split"] = frame["split"].fillna(False)
    frame["data_source"] = (
        frame["data_source"].fillna(data_source or DEFAULT_DATA_SOURCE).astype(str)
    )
    frame["fetched_at"] = pd.to_datetime(frame["fetched_at"], utc=True).dt.tz_localize(None)

    frame = frame.astype(BAR_DTYPES)

    if frame.index.has_duplicates:
        duplicates = int(frame.index.duplicated().sum())
        logger.debug("Dropping duplicate dates within one batch", duplicates=duplicates)
        frame = frame[~frame.index.duplicated(keep="last")]

    return frame.sort_index()


def merge_series(existing: pd.DataFrame, incoming: pd.DataFrame) -> pd.DataFrame:
    """
    Merge newly fetched bars into a stored series.

    The result holds the union of both date sets in ascending order. Where a
    date is present in both, the incoming bar replaces the stored bar
    entirely; no field-level merge takes place.

    Args:
        existing: Stored series (unique by date)
        incoming: Newly fetched series (unique by date)

    Returns:
        Merged series; ``existing`` itself when ``incoming`` is empty
    """
    if incoming is None or incoming.empty:
        return existing if existing is not None else empty_series()

    incoming = normalize_series(incoming)
    if existing is None or existing.empty:
        return incoming

    existing = normalize_series(existing)

    # Keep the last occurrence so incoming bars win
    combined = pd.concat([existing, incoming])
    merged = combined[~combined.index.duplicated(keep="last")].sort_index()

    logger.debug(
        "Merged series",
        existing_records=len(existing),
        incoming_records=len(incoming),
        final_records=len(merged),
        replaced=len(existing) + len(incoming) - len(merged),
    )

    return merged


def filter_range(
    series: pd.DataFrame,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> pd.DataFrame:
    """Rows with ``start <= date <= end``; either bound may be omitted."""
    mask = pd.Series(True, index=series.index)
    if start is not None:
        mask &= series.index >= pd.Timestamp(start)
    if end is not None:
        mask &= series.index <= pd.Timestamp(end)
    return series[mask.to_numpy()]


def series_dates(series: pd.DataFrame) -> List[date]:
    return [timestamp.date() for timestamp in series.index]


def bars_to_series(bars: Iterable[Bar]) -> pd.DataFrame:
    """Build a normalized series from bar models."""
    records = [bar.model_dump() for bar in bars]
    if not records:
        return empty_series()
    return normalize_series(pd.DataFrame.from_records(records))


def series_to_bars(series: pd.DataFrame) -> List[Bar]:
    """Convert a series back into bar models, oldest first."""
    bars = []
    for record in series.reset_index().to_dict("records"):
        record[INDEX_NAME] = pd.Timestamp(record[INDEX_NAME]).date()
        record["fetched_at"] = pd.Timestamp(record["fetched_at"]).to_pydatetime()
        if pd.isna(record["percent_change"]):
            record["percent_change"] = None
        bars.append(Bar(**record))
    return bars
