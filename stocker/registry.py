"""
Reference Registry

CSV-backed registry of ticker metadata. Price fetches consult it only to
register symbols seen for the first time and to record which date range of
prices is stored for each symbol.
"""

from __future__ import annotations

import os
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
from pydantic import BaseModel, Field, field_validator

from .config import normalize_symbol
from .logging import get_logger
from .series import utc_now

logger = get_logger(__name__)

LIST_SEPARATOR = ";"


class TickerReference(BaseModel):
    """
    Model for a registered ticker and its company metadata.
    """

    symbol: str = Field(
        ...,
        min_length=1,
        max_length=20,
        description="Stock ticker symbol"
    )

    name: Optional[str] = Field(
        default=None,
        description="Company or instrument name"
    )

    exchange: Optional[str] = Field(
        default=None,
        description="Listing exchange"
    )

    security_type: str = Field(
        default="stock",
        description="stock, etf, adr, reit or closed-end-fund"
    )

    sector: Optional[str] = None
    industry: Optional[str] = None

    status: str = Field(
        default="active",
        description="active, delisted, suspended, merged or renamed"
    )

    first_seen: datetime = Field(default_factory=lambda: utc_now().to_pydatetime())
    last_updated: datetime = Field(default_factory=lambda: utc_now().to_pydatetime())

    first_trade_date: Optional[date] = Field(
        default=None,
        description="First date with stored prices"
    )

    last_price_date: Optional[date] = Field(
        default=None,
        description="Most recent date with stored prices"
    )

    data_sources: List[str] = Field(default_factory=list)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Normalize ticker symbol."""
        return normalize_symbol(v)


REFERENCE_COLUMNS = list(TickerReference.model_fields)


class ReferenceRegistry:
    """
    Ticker registry persisted as one CSV file.

    The file is loaded on first use and rewritten atomically after every
    change.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._entries: Optional[Dict[str, TickerReference]] = None

    @property
    def entries(self) -> Dict[str, TickerReference]:
        if self._entries is None:
            self._entries = self._load()
        return self._entries

    def _load(self) -> Dict[str, TickerReference]:
        if not self.path.exists():
            return {}

        frame = pd.read_csv(self.path, dtype=str, keep_default_na=False)
        entries: Dict[str, TickerReference] = {}
        for row in frame.to_dict("records"):
            values: Dict[str, Any] = {k: (v if v != "" else None) for k, v in row.items()}
            values["data_sources"] = [
                source for source in (row.get("data_sources") or "").split(LIST_SEPARATOR) if source
            ]
            values = {k: v for k, v in values.items() if v is not None}
            entry = TickerReference(**values)
            entries[entry.symbol] = entry

        logger.debug("Loaded reference registry", path=str(self.path), tickers=len(entries))
        return entries

    def save(self) -> None:
        """Write the registry atomically."""
        rows = []
        for entry in sorted(self.entries.values(), key=lambda e: e.symbol):
            row = entry.model_dump(mode="json")
            row["data_sources"] = LIST_SEPARATOR.join(entry.data_sources)
            rows.append(row)
        frame = pd.DataFrame(rows, columns=REFERENCE_COLUMNS)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.tmp.{uuid.uuid4().hex[:8]}")
        try:
            frame.to_csv(tmp_path, index=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def is_registered(self, symbol: str) -> bool:
        return normalize_symbol(symbol) in self.entries

    def get(self, symbol: str) -> Optional[TickerReference]:
        return self.entries.get(normalize_symbol(symbol))

    def register(self, symbol: str, **metadata: Any) -> TickerReference:
        """
        Add a ticker or update its metadata; ``first_seen`` is kept on update.

        Args:
            symbol: Ticker symbol
            **metadata: TickerReference field values

        Returns:
            The stored entry
        """
        symbol = normalize_symbol(symbol)
        current = self.entries.get(symbol)
        now = utc_now().to_pydatetime()

        if current is None:
            entry = TickerReference(symbol=symbol, first_seen=now, last_updated=now, **metadata)
            logger.info("Registered new ticker", ticker=symbol)
        else:
            entry = current.model_copy(update={**metadata, "last_updated": now})
            entry = TickerReference.model_validate(entry.model_dump())

        self.entries[symbol] = entry
        self.save()
        return entry

    def record_prices(
        self,
        symbol: str,
        first_date: date,
        last_date: date,
        source: str
    ) -> TickerReference:
        """Record the stored price range and source for a ticker."""
        current = self.get(symbol)
        sources = list(current.data_sources) if current else []
        if source not in sources:
            sources.append(source)
        return self.register(
            symbol,
            first_trade_date=first_date,
            last_price_date=last_date,
            data_sources=sources,
        )

    def all(self, status: Optional[str] = None) -> List[TickerReference]:
        entries = sorted(self.entries.values(), key=lambda e: e.symbol)
        if status:
            entries = [entry for entry in entries if entry.status == status]
        return entries

    def search(self, query: str) -> List[TickerReference]:
        """Case-insensitive match on symbol or company name."""
        needle = query.strip().lower()
        return [
            entry for entry in self.all()
            if needle in entry.symbol.lower() or needle in (entry.name or "").lower()
        ]

    def stats(self) -> Dict[str, Any]:
        entries = self.all()
        by_exchange: Dict[str, int] = {}
        for entry in entries:
            key = entry.exchange or "UNKNOWN"
            by_exchange[key] = by_exchange.get(key, 0) + 1

        return {
            "total": len(entries),
            "active": sum(1 for e in entries if e.status == "active"),
            "delisted": sum(1 for e in entries if e.status == "delisted"),
            "with_prices": sum(1 for e in entries if e.last_price_date is not None),
            "by_exchange": dict(sorted(by_exchange.items())),
        }
