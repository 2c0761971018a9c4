from __future__ import annotations

import threading
import time
from typing import Any, Callable

from pydantic import ValidationError

from quote_pipeline.errors import MalformedResponseError, ResolutionError, TransportError
from quote_pipeline.schemas.quote import QuoteFetchResult, RawQuote
from quote_pipeline.services.counters import Counters, success_rate
from quote_pipeline.services.name_cache import NameCache


class QuoteClient:
    """Quote provider facade: fetch with error accounting, cached name resolution."""

    def __init__(
        self,
        rest_client,
        *,
        name_cache: NameCache | None = None,
        health_symbol: str = "AAPL",
        name_retries: int = 2,
        backoff_base_sec: float = 1.0,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rest_client = rest_client
        self.name_cache = name_cache or NameCache()
        self.health_symbol = health_symbol
        self.name_retries = name_retries
        self.backoff_base_sec = backoff_base_sec
        self.sleep_fn = sleep_fn
        self.counters = Counters("requests", "errors")
        self._resolve_locks: dict[str, threading.Lock] = {}
        self._resolve_locks_guard = threading.Lock()

    @staticmethod
    def _parse_quote(payload: Any) -> RawQuote:
        if not isinstance(payload, dict) or not payload:
            raise MalformedResponseError("empty or non-object response")
        try:
            quote = RawQuote.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponseError(f"invalid quote payload: {exc.error_count()} error(s)") from exc
        if quote.current_price is None:
            raise MalformedResponseError("missing price field 'c'")
        return quote

    def _fail(self, symbol: str, exc: Exception) -> QuoteFetchResult:
        self.counters.inc("errors")
        error = f"{type(exc).__name__}: {exc}"
        print(f"[QUOTE][fetch_error] symbol={symbol} error={error}", flush=True)
        return QuoteFetchResult(symbol=symbol, error=error)

    def fetch_quote(self, symbol: str) -> QuoteFetchResult:
        self.counters.inc("requests")
        try:
            payload = self.rest_client.get_quote(symbol)
        except Exception as exc:
            return self._fail(symbol, TransportError(str(exc) or type(exc).__name__))

        try:
            quote = self._parse_quote(payload)
        except MalformedResponseError as exc:
            return self._fail(symbol, exc)

        return QuoteFetchResult(symbol=symbol, quote=quote)

    def _symbol_lock(self, symbol: str) -> threading.Lock:
        with self._resolve_locks_guard:
            lock = self._resolve_locks.get(symbol)
            if lock is None:
                lock = threading.Lock()
                self._resolve_locks[symbol] = lock
            return lock

    def _lookup_name(self, symbol: str) -> str:
        attempts = self.name_retries + 1
        last_error: str | None = None

        for attempt in range(attempts):
            try:
                profile = self.rest_client.get_profile(symbol)
            except Exception as exc:
                last_error = str(exc) or type(exc).__name__
                if attempt == attempts - 1:
                    break
                self.sleep_fn(self.backoff_base_sec * (2**attempt))
                continue

            name = profile.get("name") if isinstance(profile, dict) else None
            if name and str(name).strip():
                return str(name).strip()
            # empty profile means unknown symbol; retrying will not help
            raise ResolutionError(f"no company name in profile for {symbol}")

        raise ResolutionError(f"name lookup failed for {symbol} after {attempts} attempts: {last_error}")

    def resolve_name(self, symbol: str) -> str:
        cached = self.name_cache.get(symbol)
        if cached is not None:
            return cached

        with self._symbol_lock(symbol):
            cached = self.name_cache.get(symbol)
            if cached is not None:
                return cached

            try:
                name = self._lookup_name(symbol)
            except ResolutionError as exc:
                print(f"[NAME][resolve_fallback] symbol={symbol} error={exc}", flush=True)
                self.name_cache.put_fallback(symbol)
                return symbol

            self.name_cache.put(symbol, name)
            return name

    def warm_up(self, symbols: list[str]) -> dict[str, str]:
        print(f"[NAME][warm_up_start] symbols={','.join(symbols)}", flush=True)
        resolved: dict[str, str] = {}
        for symbol in symbols:
            try:
                resolved[symbol] = self.resolve_name(symbol)
            except Exception as exc:  # pragma: no cover
                print(f"[NAME][warm_up_error] symbol={symbol} error={exc}", flush=True)
        print(f"[NAME][warm_up_done] cached={len(self.name_cache)}", flush=True)
        return resolved

    def health_check(self) -> bool:
        result = self.fetch_quote(self.health_symbol)
        return result.ok and result.quote.current_price is not None

    def statistics(self) -> dict[str, int | float]:
        counts = self.counters.snapshot()
        requests = counts["requests"]
        errors = counts["errors"]
        return {
            "requests": requests,
            "errors": errors,
            "success_rate": success_rate(requests - errors, requests),
            "cached_names": len(self.name_cache),
        }
