from __future__ import annotations

import threading
import uuid
from datetime import datetime
from typing import Protocol

from quote_pipeline.errors import PersistenceError
from quote_pipeline.schemas.quote import QuoteEvent


class QuoteStore(Protocol):
    def insert(self, event: QuoteEvent) -> QuoteEvent: ...

    def insert_or_get(self, event: QuoteEvent) -> tuple[QuoteEvent, bool]: ...

    def find_by_symbol(self, symbol: str) -> list[QuoteEvent]: ...

    def find_latest(self, symbol: str) -> QuoteEvent | None: ...

    def find_latest_per_symbol(self) -> list[QuoteEvent]: ...

    def find_by_time_range(self, symbol: str, start: datetime, end: datetime) -> list[QuoteEvent]: ...

    def find_recent(self, since: datetime) -> list[QuoteEvent]: ...

    def find_by_symbols(self, symbols: list[str]) -> list[QuoteEvent]: ...

    def find_by_percent_change(self, threshold: float) -> list[QuoteEvent]: ...

    def find_by_min_price(self, min_price: float) -> list[QuoteEvent]: ...

    def count(self) -> int: ...

    def count_by_symbol(self, symbol: str) -> int: ...

    def average_price(self, symbol: str, start: datetime, end: datetime) -> float | None: ...

    def price_range(self, symbol: str, start: datetime, end: datetime) -> tuple[float | None, float | None]: ...


def _newest_first(rows: list[QuoteEvent]) -> list[QuoteEvent]:
    return sorted(rows, key=lambda row: row.timestamp, reverse=True)


class InMemoryQuoteStore:
    """Append-only quote store. Insert is idempotent on (symbol, ingested_at)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: list[QuoteEvent] = []
        self._by_natural_key: dict[tuple[str, datetime], QuoteEvent] = {}

    def insert(self, event: QuoteEvent) -> QuoteEvent:
        return self.insert_or_get(event)[0]

    def insert_or_get(self, event: QuoteEvent) -> tuple[QuoteEvent, bool]:
        """Return the stored row and whether this call created it."""
        if not event.symbol:
            raise PersistenceError("symbol is required")
        natural_key = (event.symbol, event.ingested_at)
        with self._lock:
            existing = self._by_natural_key.get(natural_key)
            if existing is not None:
                return existing, False
            saved = event.model_copy(update={"id": uuid.uuid4()})
            self._rows.append(saved)
            self._by_natural_key[natural_key] = saved
            return saved, True

    def _snapshot(self) -> list[QuoteEvent]:
        with self._lock:
            return list(self._rows)

    def find_by_symbol(self, symbol: str) -> list[QuoteEvent]:
        return _newest_first([row for row in self._snapshot() if row.symbol == symbol])

    def find_latest(self, symbol: str) -> QuoteEvent | None:
        rows = self.find_by_symbol(symbol)
        return rows[0] if rows else None

    def find_latest_per_symbol(self) -> list[QuoteEvent]:
        latest: dict[str, QuoteEvent] = {}
        for row in self._snapshot():
            current = latest.get(row.symbol)
            if current is None or row.timestamp >= current.timestamp:
                latest[row.symbol] = row
        return [latest[symbol] for symbol in sorted(latest)]

    def find_by_time_range(self, symbol: str, start: datetime, end: datetime) -> list[QuoteEvent]:
        return _newest_first(
            [row for row in self._snapshot() if row.symbol == symbol and start <= row.timestamp <= end]
        )

    def find_recent(self, since: datetime) -> list[QuoteEvent]:
        return _newest_first([row for row in self._snapshot() if row.timestamp >= since])

    def find_by_symbols(self, symbols: list[str]) -> list[QuoteEvent]:
        wanted = set(symbols)
        return _newest_first([row for row in self._snapshot() if row.symbol in wanted])

    def find_by_percent_change(self, threshold: float) -> list[QuoteEvent]:
        return _newest_first(
            [
                row
                for row in self._snapshot()
                if row.percent_change is not None and abs(row.percent_change) >= threshold
            ]
        )

    def find_by_min_price(self, min_price: float) -> list[QuoteEvent]:
        rows = [row for row in self._snapshot() if row.current_price >= min_price]
        return sorted(rows, key=lambda row: row.current_price, reverse=True)

    def count(self) -> int:
        with self._lock:
            return len(self._rows)

    def count_by_symbol(self, symbol: str) -> int:
        return sum(1 for row in self._snapshot() if row.symbol == symbol)

    def _prices(self, symbol: str, start: datetime, end: datetime) -> list[float]:
        return [row.current_price for row in self.find_by_time_range(symbol, start, end)]

    def average_price(self, symbol: str, start: datetime, end: datetime) -> float | None:
        prices = self._prices(symbol, start, end)
        if not prices:
            return None
        return sum(prices) / len(prices)

    def price_range(self, symbol: str, start: datetime, end: datetime) -> tuple[float | None, float | None]:
        prices = self._prices(symbol, start, end)
        if not prices:
            return None, None
        return min(prices), max(prices)
