from __future__ import annotations

import threading


def success_rate(succeeded: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return succeeded / total * 100.0


class Counters:
    """Named monotonic counters, safe to bump from worker threads."""

    def __init__(self, *names: str) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, int] = {name: 0 for name in names}

    def inc(self, key: str, value: int = 1) -> None:
        with self._lock:
            self._values[key] = self._values.get(key, 0) + value

    def get(self, key: str) -> int:
        with self._lock:
            return self._values.get(key, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._values)
