from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable

from prometheus_client import CollectorRegistry, Counter

from quote_pipeline.schemas.quote import SymbolMetrics, utcnow
from quote_pipeline.services.counters import Counters


class MetricsService:
    """Live per-symbol quote metrics fed by the consumer and refreshed from the store.

    Each event updates only the fields it carries (last writer wins per field).
    A store refresh re-applies `update_metrics` to the latest persisted row of
    every symbol, so quote counts can be bumped again for rows that were
    already counted live.
    """

    def __init__(
        self,
        store,
        *,
        registry: CollectorRegistry | None = None,
        refresh_interval_sec: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
        max_recent_alerts: int = 100,
    ) -> None:
        self.store = store
        self.refresh_interval_sec = refresh_interval_sec
        self._clock = clock
        self._max_recent_alerts = max_recent_alerts
        self._lock = threading.Lock()
        self._prices: dict[str, float] = {}
        self._changes: dict[str, float] = {}
        self._counts: dict[str, int] = {}
        self._last_updates: dict[str, datetime] = {}
        self._recent_alerts: list[dict] = []
        self.counters = Counters("refreshes", "refresh_errors", "alerts_recorded")

        self.registry = registry or CollectorRegistry()
        self.alerts_total = Counter(
            "stock_price_alerts",
            "Significant price movements by symbol and direction",
            ["symbol", "direction"],
            registry=self.registry,
        )

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def update_metrics(self, event) -> None:
        symbol = getattr(event, "symbol", None) if event is not None else None
        if not symbol:
            return

        price = getattr(event, "current_price", None)
        change = getattr(event, "percent_change", None)
        now = self._clock()
        with self._lock:
            if price is not None:
                self._prices[symbol] = float(price)
            if change is not None:
                self._changes[symbol] = float(change)
            self._counts[symbol] = self._counts.get(symbol, 0) + 1
            self._last_updates[symbol] = now

    def refresh_from_store(self) -> int:
        try:
            latest = self.store.find_latest_per_symbol()
        except Exception as exc:
            self.counters.inc("refresh_errors")
            print(f"[METRICS][refresh_error] error={exc}", flush=True)
            return 0

        for row in latest:
            self.update_metrics(row)
        self.counters.inc("refreshes")
        print(f"[METRICS][refresh] symbols={len(latest)}", flush=True)
        return len(latest)

    def record_alert(self, symbol: str, percent_change: float) -> None:
        direction = "up" if percent_change > 0 else "down"
        self.alerts_total.labels(symbol=symbol, direction=direction).inc()
        self.counters.inc("alerts_recorded")
        with self._lock:
            self._recent_alerts.append(
                {
                    "symbol": symbol,
                    "percent_change": percent_change,
                    "direction": direction,
                    "at": self._clock().isoformat(),
                }
            )
            if len(self._recent_alerts) > self._max_recent_alerts:
                self._recent_alerts = self._recent_alerts[-self._max_recent_alerts :]
        print(
            f"[METRICS][price_alert] symbol={symbol} percent_change={percent_change:.2f} direction={direction}",
            flush=True,
        )

    def recent_alerts(self) -> list[dict]:
        with self._lock:
            return list(self._recent_alerts)

    def get_snapshot(self) -> dict:
        with self._lock:
            snapshot = {
                "tracked_symbols": sorted(self._counts),
                "current_prices": dict(self._prices),
                "percent_changes": dict(self._changes),
                "quote_counts": dict(self._counts),
                "last_updates": {s: ts.isoformat() for s, ts in self._last_updates.items()},
            }
        snapshot["total_store_records"] = self.store.count()
        return snapshot

    def get_symbol_snapshot(self, symbol: str) -> SymbolMetrics:
        with self._lock:
            return SymbolMetrics(
                symbol=symbol,
                current_price=self._prices.get(symbol, 0.0),
                percent_change=self._changes.get(symbol, 0.0),
                quote_count=self._counts.get(symbol, 0),
                last_update=self._last_updates.get(symbol),
            )

    def _loop(self) -> None:
        while not self._stop_event.wait(self.refresh_interval_sec):
            self.refresh_from_store()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="metrics-refresh")
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)

    def statistics(self) -> dict[str, int]:
        return self.counters.snapshot()
