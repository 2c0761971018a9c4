from __future__ import annotations

from typing import Any, Dict, Optional

import requests


class FinnhubRestClient:
    """Minimal Finnhub REST client for quotes and company profiles."""

    DEFAULT_BASE_URL = "https://finnhub.io/api/v1"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        timeout_sec: float = 30.0,
        session: Optional[Any] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")

        self.api_key = api_key
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.timeout_sec = timeout_sec
        self.session = session or requests

    def _get(self, path: str, symbol: str) -> Dict[str, Any]:
        response = self.session.get(
            f"{self.base_url}{path}",
            params={"symbol": symbol, "token": self.api_key},
            timeout=self.timeout_sec,
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"unexpected payload type for {path}: {type(payload).__name__}")
        return payload

    def get_quote(self, symbol: str) -> Dict[str, Any]:
        return self._get("/quote", symbol)

    def get_profile(self, symbol: str) -> Dict[str, Any]:
        return self._get("/stock/profile2", symbol)
