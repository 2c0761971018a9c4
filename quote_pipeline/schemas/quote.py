from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RawQuote(BaseModel):
    """Finnhub `/quote` payload. Short provider keys are accepted as aliases."""

    model_config = ConfigDict(populate_by_name=True)

    current_price: float | None = Field(default=None, alias="c")
    change: float | None = Field(default=None, alias="d")
    percent_change: float | None = Field(default=None, alias="dp")
    high: float | None = Field(default=None, alias="h")
    low: float | None = Field(default=None, alias="l")
    open: float | None = Field(default=None, alias="o")
    previous_close: float | None = Field(default=None, alias="pc")
    timestamp: int | None = Field(default=None, alias="t")


class QuoteEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID | None = None
    symbol: str = Field(min_length=1, max_length=10)
    stock_name: str
    current_price: float
    percent_change: float | None = None
    change_amount: float | None = None
    day_high: float | None = None
    day_low: float | None = None
    open_price: float | None = None
    previous_close: float | None = None
    volume: int | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    market_timestamp: int | None = None
    ingested_at: datetime = Field(default_factory=utcnow)

    @field_validator("symbol", mode="before")
    @classmethod
    def normalize_symbol(cls, value: object) -> str:
        return str(value or "").strip().upper()

    def without_id(self) -> "QuoteEvent":
        return QuoteEvent.model_validate(self.model_dump(exclude={"id"}))


class QuoteFetchResult(BaseModel):
    symbol: str
    quote: RawQuote | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.quote is not None and self.error is None


class SymbolMetrics(BaseModel):
    symbol: str
    current_price: float = 0.0
    percent_change: float = 0.0
    quote_count: int = 0
    last_update: datetime | None = None
