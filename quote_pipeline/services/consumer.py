from __future__ import annotations

import threading
from typing import Callable

from prometheus_client import CollectorRegistry, Counter
from pydantic import ValidationError

from quote_pipeline.schemas.quote import QuoteEvent
from quote_pipeline.services.counters import Counters


class EventConsumer:
    """Subscribes to the quote and alert topics on two independent listener threads.

    Delivery is at-most-once: a message is considered handled after one
    attempt, whether or not persistence succeeded.
    """

    def __init__(
        self,
        broker,
        store,
        metrics_service,
        *,
        quotes_topic: str = "stock-quotes",
        alerts_topic: str = "stock-alerts",
        quotes_group: str = "stock-quote-consumer-group",
        alerts_group: str = "stock-alert-consumer-group",
        alert_threshold_pct: float = 5.0,
        poll_timeout_sec: float = 0.5,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self.broker = broker
        self.store = store
        self.metrics_service = metrics_service
        self.quotes_topic = quotes_topic
        self.alerts_topic = alerts_topic
        self.quotes_group = quotes_group
        self.alerts_group = alerts_group
        self.alert_threshold_pct = alert_threshold_pct
        self.poll_timeout_sec = poll_timeout_sec
        self.counters = Counters("consumed", "persisted", "duplicates", "errors", "alerts_consumed", "alerts_recorded")
        self.registry = registry or CollectorRegistry()
        self._meters = {
            "consumed": Counter("stock_events_consumed", "Quote events consumed", registry=self.registry),
            "persisted": Counter("stock_events_persisted", "Quote events persisted", registry=self.registry),
            "errors": Counter("stock_consumer_errors", "Consumer failures", registry=self.registry),
        }
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def _inc(self, name: str) -> None:
        self.counters.inc(name)
        meter = self._meters.get(name)
        if meter is not None:
            meter.inc()

    def handle_quote(self, event: QuoteEvent) -> bool:
        try:
            self._inc("consumed")
            saved, created = self.store.insert_or_get(event.without_id())
            if created:
                self._inc("persisted")
                self.metrics_service.update_metrics(saved)
            else:
                self._inc("duplicates")
        except Exception as exc:
            self._inc("errors")
            print(
                f"[CONSUMER][persist_error] symbol={getattr(event, 'symbol', None)} error={exc}",
                flush=True,
            )
            return False

        print(
            f"[CONSUMER][{'persisted' if created else 'duplicate'}] "
            f"symbol={saved.symbol} price={saved.current_price:.2f} id={saved.id}",
            flush=True,
        )
        return True

    def is_significant(self, percent_change: float | None) -> bool:
        return percent_change is not None and abs(percent_change) >= self.alert_threshold_pct

    def handle_alert(self, event: QuoteEvent) -> bool:
        try:
            self._inc("alerts_consumed")
            if not self.is_significant(event.percent_change):
                return False

            print(
                "[CONSUMER][significant_move] "
                f"symbol={event.symbol} percent_change={event.percent_change:.2f} price={event.current_price:.2f}",
                flush=True,
            )
            self.metrics_service.record_alert(event.symbol, event.percent_change)
            self._inc("alerts_recorded")
            return True
        except Exception as exc:
            self._inc("errors")
            print(f"[CONSUMER][alert_error] error={exc}", flush=True)
            return False

    def _consume(self, topic: str, group_id: str, handler: Callable[[QuoteEvent], bool], timeout: float) -> int:
        records = self.broker.poll(topic, group_id, timeout=timeout)
        for record in records:
            try:
                event = QuoteEvent.model_validate_json(record["value"])
            except (ValidationError, KeyError, TypeError) as exc:
                self._inc("errors")
                print(
                    f"[CONSUMER][decode_error] topic={topic} offset={record.get('offset')} error={exc}",
                    flush=True,
                )
                continue
            handler(event)
        return len(records)

    def poll_once(self, timeout: float = 0.0) -> dict[str, int]:
        return {
            "quotes": self._consume(self.quotes_topic, self.quotes_group, self.handle_quote, timeout),
            "alerts": self._consume(self.alerts_topic, self.alerts_group, self.handle_alert, timeout),
        }

    def _listen(self, topic: str, group_id: str, handler: Callable[[QuoteEvent], bool]) -> None:
        print(f"[CONSUMER][listener_start] topic={topic} group={group_id}", flush=True)
        while not self._stop_event.is_set():
            try:
                received = self._consume(topic, group_id, handler, self.poll_timeout_sec)
            except Exception as exc:  # pragma: no cover
                self._inc("errors")
                print(f"[CONSUMER][listener_error] topic={topic} error={exc}", flush=True)
                self._stop_event.wait(self.poll_timeout_sec)
                continue
            if not received and getattr(self.broker, "closed", False):
                break
        print(f"[CONSUMER][listener_stop] topic={topic} group={group_id}", flush=True)

    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self._listen,
                args=(self.quotes_topic, self.quotes_group, self.handle_quote),
                daemon=True,
                name="quote-consumer",
            ),
            threading.Thread(
                target=self._listen,
                args=(self.alerts_topic, self.alerts_group, self.handle_alert),
                daemon=True,
                name="alert-consumer",
            ),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        for thread in self._threads:
            if thread.is_alive():
                thread.join(timeout=self.poll_timeout_sec + 1.0)

    def statistics(self) -> dict[str, int]:
        return self.counters.snapshot()
