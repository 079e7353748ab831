"""Fake HTTP session and payload builders for market feed tests."""
from __future__ import annotations

from typing import Any

import requests


ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40
WEI = 10**18


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, text: str = "") -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = text or str(payload)

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Routes GET calls by URL substring; a route value may be a list consumed in order."""

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes = routes or {}
        self.calls: list[tuple[str, dict[str, Any] | None]] = []

    def get(self, url: str, params: dict[str, Any] | None = None, headers: Any = None, timeout: Any = None):
        self.calls.append((url, params))
        for fragment, outcome in self.routes.items():
            if fragment in url:
                if isinstance(outcome, list):
                    outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        raise requests.ConnectionError(f"no route for {url}")

    def count(self, fragment: str) -> int:
        return sum(1 for url, _ in self.calls if fragment in url)


def coin_payload(coin_id: str = "bitcoin", price: float = 60000.0, change_24h: float = 2.0) -> dict[str, Any]:
    return {
        "id": coin_id,
        "name": coin_id.title(),
        "symbol": "btc",
        "last_updated": "2024-01-01T00:00:00Z",
        "market_data": {
            "current_price": {"usd": price},
            "price_change_percentage_24h": change_24h,
            "price_change_percentage_7d": 5.0,
            "market_cap": {"usd": 1_000_000_000.0},
            "total_volume": {"usd": 20_000_000.0},
        },
    }


def chart_payload(n: int = 60, start: float = 100.0, step: float = 1.0) -> dict[str, Any]:
    base_ts = 1_700_000_000_000
    return {"prices": [[base_ts + i * 3_600_000, start + i * step] for i in range(n)]}

