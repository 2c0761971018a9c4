from __future__ import annotations

from quote_pipeline.schemas.quote import QuoteEvent
from quote_pipeline.services.counters import Counters, success_rate


class EventProducer:
    """Publishes quote events keyed by symbol. Failed sends are counted, never retried."""

    def __init__(
        self,
        broker,
        *,
        quotes_topic: str = "stock-quotes",
        alerts_topic: str = "stock-alerts",
    ) -> None:
        self.broker = broker
        self.quotes_topic = quotes_topic
        self.alerts_topic = alerts_topic
        self.counters = Counters("published", "failed", "alerts_published", "alerts_failed")

    def _send(self, topic: str, event: QuoteEvent, *, ok_key: str, fail_key: str) -> bool:
        try:
            self.broker.publish(topic, event.symbol, event.model_dump_json())
        except Exception as exc:
            self.counters.inc(fail_key)
            print(
                f"[PRODUCER][publish_error] topic={topic} symbol={event.symbol} error={exc}",
                flush=True,
            )
            return False

        self.counters.inc(ok_key)
        print(
            f"[PRODUCER][published] topic={topic} symbol={event.symbol} price={event.current_price}",
            flush=True,
        )
        return True

    def publish(self, event: QuoteEvent) -> bool:
        return self._send(self.quotes_topic, event, ok_key="published", fail_key="failed")

    def publish_alert(self, event: QuoteEvent) -> bool:
        return self._send(self.alerts_topic, event, ok_key="alerts_published", fail_key="alerts_failed")

    def statistics(self) -> dict[str, int | float]:
        counts = self.counters.snapshot()
        published = counts["published"]
        failed = counts["failed"]
        return {
            "published": published,
            "failed": failed,
            "success_rate": success_rate(published, published + failed),
            "alerts_published": counts["alerts_published"],
            "alerts_failed": counts["alerts_failed"],
        }
