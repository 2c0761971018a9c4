import os
from functools import lru_cache

from pydantic import BaseModel, Field

_DEFAULT_SYMBOLS = ["AAPL", "GOOGL", "MSFT", "TSLA", "AMZN"]


def parse_symbols(raw: str | None) -> list[str]:
    symbols: list[str] = []
    for value in (raw or "").split(","):
        symbol = value.strip().upper()
        if symbol and symbol not in symbols:
            symbols.append(symbol)
    return symbols


class Settings(BaseModel):
    FINNHUB_API_KEY: str = Field(min_length=1)
    FINNHUB_BASE_URL: str = "https://finnhub.io/api/v1"
    FINNHUB_TIMEOUT_SEC: float = Field(default=30.0, gt=0)
    STOCK_SYMBOLS: list[str]
    STOCK_UPDATE_INTERVAL_SEC: float = Field(default=10.0, gt=0)
    MAX_CONCURRENT_FETCHES: int = Field(default=8, ge=1)
    METRICS_REFRESH_INTERVAL_SEC: float = Field(default=60.0, gt=0)
    ALERT_THRESHOLD_PCT: float = 5.0
    HEALTH_CHECK_SYMBOL: str = "AAPL"
    NAME_FALLBACK_TTL_SEC: float = 300.0
    QUOTES_TOPIC: str = "stock-quotes"
    ALERTS_TOPIC: str = "stock-alerts"
    BROKER_PARTITIONS: int = Field(default=3, ge=1)

    @classmethod
    def from_env(cls) -> "Settings":
        symbols = parse_symbols(os.getenv("STOCK_SYMBOLS")) or list(_DEFAULT_SYMBOLS)

        values = {
            "FINNHUB_API_KEY": os.getenv("FINNHUB_API_KEY"),
            "STOCK_SYMBOLS": symbols,
        }
        # unset optionals keep model defaults
        for name in (
            "FINNHUB_BASE_URL",
            "FINNHUB_TIMEOUT_SEC",
            "STOCK_UPDATE_INTERVAL_SEC",
            "MAX_CONCURRENT_FETCHES",
            "METRICS_REFRESH_INTERVAL_SEC",
            "ALERT_THRESHOLD_PCT",
            "HEALTH_CHECK_SYMBOL",
            "NAME_FALLBACK_TTL_SEC",
            "QUOTES_TOPIC",
            "ALERTS_TOPIC",
            "BROKER_PARTITIONS",
        ):
            raw = os.getenv(name)
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()

        return cls.model_validate(values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
