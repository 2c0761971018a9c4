from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable

from quote_pipeline.schemas.quote import QuoteEvent, RawQuote, utcnow


def build_quote_event(
    symbol: str,
    stock_name: str,
    quote: RawQuote,
    now: datetime | None = None,
) -> QuoteEvent:
    if quote.timestamp is not None:
        timestamp = datetime.fromtimestamp(quote.timestamp, tz=timezone.utc)
    else:
        timestamp = now or utcnow()

    return QuoteEvent(
        symbol=symbol,
        stock_name=stock_name,
        current_price=quote.current_price,
        percent_change=quote.percent_change,
        change_amount=quote.change,
        day_high=quote.high,
        day_low=quote.low,
        open_price=quote.open,
        previous_close=quote.previous_close,
        timestamp=timestamp,
        market_timestamp=quote.timestamp,
    )


class IngestionScheduler:
    """Fixed-rate fetch cycles with a single-flight gate.

    Timer ticks and manual triggers share `run_cycle`. A trigger that finds a
    cycle in progress is dropped, never queued. Each cycle fans out one
    fetch-and-publish task per symbol on a bounded thread pool and waits for
    all of them before the gate opens again.
    """

    def __init__(
        self,
        quote_client,
        producer,
        *,
        symbols: list[str],
        update_interval_sec: float = 10.0,
        max_concurrent_fetches: int = 8,
        alert_threshold_pct: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if max_concurrent_fetches < 1:
            raise ValueError("max_concurrent_fetches must be >= 1")

        self.quote_client = quote_client
        self.producer = producer
        self.symbols = [s.strip().upper() for s in symbols if s and s.strip()]
        self.update_interval_sec = update_interval_sec
        self.max_concurrent_fetches = max_concurrent_fetches
        self.alert_threshold_pct = alert_threshold_pct
        self._clock = clock

        self._gate = threading.Lock()
        self._state_lock = threading.Lock()
        self.is_running = False
        self.cycle_count = 0
        self.dropped_ticks = 0
        self.last_cycle: dict = {}

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._warm_up_thread: threading.Thread | None = None

    def fetch_and_publish(self, symbol: str) -> bool:
        try:
            result = self.quote_client.fetch_quote(symbol)
            if not result.ok or result.quote.current_price is None:
                print(f"[SCHED][symbol_skip] symbol={symbol} reason={result.error}", flush=True)
                return False

            stock_name = self.quote_client.resolve_name(symbol)
            event = build_quote_event(symbol, stock_name, result.quote, now=self._clock())
            if not self.producer.publish(event):
                return False

            change = event.percent_change
            if change is not None and abs(change) >= self.alert_threshold_pct:
                self.producer.publish_alert(event)
            return True
        except Exception as exc:
            print(f"[SCHED][symbol_error] symbol={symbol} error={exc}", flush=True)
            return False

    def run_cycle(self, trigger: str = "timer") -> int | None:
        if not self._gate.acquire(blocking=False):
            with self._state_lock:
                self.dropped_ticks += 1
            print(f"[SCHED][cycle_skip] trigger={trigger} reason=previous_cycle_running", flush=True)
            return None

        try:
            with self._state_lock:
                self.is_running = True
                self.cycle_count += 1
                cycle = self.cycle_count

            symbols = list(self.symbols)
            started = time.monotonic()
            print(
                f"[SCHED][cycle_start] cycle={cycle} trigger={trigger} symbols={','.join(symbols)}",
                flush=True,
            )

            results: list[bool] = []
            if symbols:
                workers = min(self.max_concurrent_fetches, len(symbols))
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="quote-fetch") as pool:
                    results = list(pool.map(self.fetch_and_publish, symbols))

            succeeded = sum(1 for ok in results if ok)
            duration_ms = int((time.monotonic() - started) * 1000)
            with self._state_lock:
                self.last_cycle = {
                    "cycle": cycle,
                    "trigger": trigger,
                    "attempted": len(symbols),
                    "succeeded": succeeded,
                    "failed": len(symbols) - succeeded,
                    "duration_ms": duration_ms,
                }
            print(
                f"[SCHED][cycle_done] cycle={cycle} attempted={len(symbols)} "
                f"succeeded={succeeded} failed={len(symbols) - succeeded} duration_ms={duration_ms}",
                flush=True,
            )
            return len(symbols)
        finally:
            with self._state_lock:
                self.is_running = False
            self._gate.release()

    def trigger_manual_fetch(self) -> int:
        print("[SCHED][manual_trigger]", flush=True)
        attempted = self.run_cycle(trigger="manual")
        return attempted or 0

    def _loop(self) -> None:
        next_tick = time.monotonic()
        while not self._stop_event.is_set():
            self.run_cycle()

            next_tick += self.update_interval_sec
            now = time.monotonic()
            if now > next_tick:
                # ticks that fell inside an overlong cycle are dropped, not replayed
                missed = int((now - next_tick) // self.update_interval_sec) + 1
                with self._state_lock:
                    self.dropped_ticks += missed
                next_tick += missed * self.update_interval_sec
            if self._stop_event.wait(max(next_tick - now, 0.0)):
                break

    def _warm_up(self) -> None:
        try:
            self.quote_client.warm_up(list(self.symbols))
        except Exception as exc:  # pragma: no cover
            print(f"[SCHED][warm_up_error] error={exc}", flush=True)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        print(
            f"[SCHED][start] symbols={','.join(self.symbols)} interval_sec={self.update_interval_sec}",
            flush=True,
        )
        self._warm_up_thread = threading.Thread(target=self._warm_up, daemon=True, name="name-warm-up")
        self._warm_up_thread.start()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="ingestion-scheduler")
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)

    def health_check(self) -> bool:
        return self.quote_client.health_check()

    def statistics(self) -> dict:
        with self._state_lock:
            return {
                "cycle_count": self.cycle_count,
                "is_running": self.is_running,
                "tracked_symbols": len(self.symbols),
                "update_interval_sec": self.update_interval_sec,
                "dropped_ticks": self.dropped_ticks,
                "last_cycle": dict(self.last_cycle),
            }
