from __future__ import annotations

import threading
import time
from typing import Callable


class NameCache:
    """Symbol -> display name.

    Resolved names never expire. A fallback entry (the symbol itself, stored
    after a failed lookup) expires after `fallback_ttl_sec` so the next miss
    retries the lookup; a ttl <= 0 keeps fallbacks forever.
    """

    def __init__(
        self,
        fallback_ttl_sec: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.fallback_ttl_sec = fallback_ttl_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._names: dict[str, str] = {}
        self._fallback_at: dict[str, float] = {}

    def _fallback_expired(self, symbol: str) -> bool:
        cached_at = self._fallback_at.get(symbol)
        if cached_at is None or self.fallback_ttl_sec <= 0:
            return False
        return self._clock() - cached_at >= self.fallback_ttl_sec

    def get(self, symbol: str) -> str | None:
        with self._lock:
            if symbol not in self._names:
                return None
            if self._fallback_expired(symbol):
                self._names.pop(symbol, None)
                self._fallback_at.pop(symbol, None)
                return None
            return self._names[symbol]

    def put(self, symbol: str, name: str) -> None:
        with self._lock:
            self._names[symbol] = name
            self._fallback_at.pop(symbol, None)

    def put_fallback(self, symbol: str) -> None:
        with self._lock:
            self._names[symbol] = symbol
            self._fallback_at[symbol] = self._clock()

    def is_fallback(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._fallback_at

    def clear(self) -> None:
        with self._lock:
            self._names.clear()
            self._fallback_at.clear()

    def as_dict(self) -> dict[str, str]:
        with self._lock:
            return dict(self._names)

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)
