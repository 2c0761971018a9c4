from __future__ import annotations

import time
from typing import Callable

from prometheus_client import CollectorRegistry

from quote_pipeline.config.settings import Settings
from quote_pipeline.integrations.broker import InMemoryBroker
from quote_pipeline.integrations.finnhub_rest import FinnhubRestClient
from quote_pipeline.services.consumer import EventConsumer
from quote_pipeline.services.metrics import MetricsService
from quote_pipeline.services.name_cache import NameCache
from quote_pipeline.services.producer import EventProducer
from quote_pipeline.services.quote_client import QuoteClient
from quote_pipeline.services.quote_store import InMemoryQuoteStore
from quote_pipeline.services.scheduler import IngestionScheduler


class QuotePipeline:
    """Owns every pipeline component and their start/stop order."""

    def __init__(
        self,
        *,
        settings: Settings,
        broker,
        store,
        quote_client: QuoteClient,
        producer: EventProducer,
        scheduler: IngestionScheduler,
        metrics_service: MetricsService,
        consumer: EventConsumer,
    ) -> None:
        self.settings = settings
        self.broker = broker
        self.store = store
        self.quote_client = quote_client
        self.producer = producer
        self.scheduler = scheduler
        self.metrics_service = metrics_service
        self.consumer = consumer
        self.started = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        rest_client=None,
        broker=None,
        store=None,
        registry: CollectorRegistry | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> "QuotePipeline":
        rest_client = rest_client or FinnhubRestClient(
            settings.FINNHUB_API_KEY,
            base_url=settings.FINNHUB_BASE_URL,
            timeout_sec=settings.FINNHUB_TIMEOUT_SEC,
        )
        broker = broker or InMemoryBroker(partitions=settings.BROKER_PARTITIONS)
        store = store or InMemoryQuoteStore()

        quote_client = QuoteClient(
            rest_client,
            name_cache=NameCache(fallback_ttl_sec=settings.NAME_FALLBACK_TTL_SEC),
            health_symbol=settings.HEALTH_CHECK_SYMBOL,
            sleep_fn=sleep_fn,
        )
        producer = EventProducer(
            broker,
            quotes_topic=settings.QUOTES_TOPIC,
            alerts_topic=settings.ALERTS_TOPIC,
        )
        scheduler = IngestionScheduler(
            quote_client,
            producer,
            symbols=settings.STOCK_SYMBOLS,
            update_interval_sec=settings.STOCK_UPDATE_INTERVAL_SEC,
            max_concurrent_fetches=settings.MAX_CONCURRENT_FETCHES,
            alert_threshold_pct=settings.ALERT_THRESHOLD_PCT,
        )
        metrics_service = MetricsService(
            store,
            registry=registry,
            refresh_interval_sec=settings.METRICS_REFRESH_INTERVAL_SEC,
        )
        consumer = EventConsumer(
            broker,
            store,
            metrics_service,
            quotes_topic=settings.QUOTES_TOPIC,
            alerts_topic=settings.ALERTS_TOPIC,
            alert_threshold_pct=settings.ALERT_THRESHOLD_PCT,
            registry=metrics_service.registry,
        )
        return cls(
            settings=settings,
            broker=broker,
            store=store,
            quote_client=quote_client,
            producer=producer,
            scheduler=scheduler,
            metrics_service=metrics_service,
            consumer=consumer,
        )

    def start(self) -> None:
        if self.started:
            return
        # listeners must be up before the first cycle publishes
        self.metrics_service.start()
        self.consumer.start()
        self.scheduler.start()
        self.started = True
        print("[PIPELINE][start]", flush=True)

    def stop(self) -> None:
        self.scheduler.stop()
        self.consumer.stop()
        self.metrics_service.stop()
        close = getattr(self.broker, "close", None)
        if close is not None:
            close()
        self.started = False
        print("[PIPELINE][stop]", flush=True)

    def status(self) -> dict:
        return {
            "scheduler": self.scheduler.statistics(),
            "producer": self.producer.statistics(),
            "api": self.quote_client.statistics(),
            "consumer": self.consumer.statistics(),
            "configuration": {
                "symbols": list(self.scheduler.symbols),
                "update_interval_sec": self.scheduler.update_interval_sec,
            },
        }
