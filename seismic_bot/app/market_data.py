"""Public market feed client (CoinGecko, Binance, CryptoCompare, NewsAPI) with TTL cache."""

from __future__ import annotations

import asyncio
import math
import random
import time
from datetime import UTC, datetime, timedelta
from typing import Any

import requests

from seismic_bot.app.cache import TTLCache
from seismic_bot.app.config import MarketConfig


SUPPORTED_COINS: list[dict[str, str]] = [
    {"id": "bitcoin", "name": "Bitcoin", "symbol": "BTC"},
    {"id": "ethereum", "name": "Ethereum", "symbol": "ETH"},
    {"id": "solana", "name": "Solana", "symbol": "SOL"},
    {"id": "cardano", "name": "Cardano", "symbol": "ADA"},
    {"id": "ripple", "name": "XRP", "symbol": "XRP"},
    {"id": "polkadot", "name": "Polkadot", "symbol": "DOT"},
]

_MOCK_PRICES = {
    "bitcoin": 60000.0,
    "ethereum": 3000.0,
    "solana": 150.0,
    "cardano": 0.45,
    "ripple": 0.55,
    "polkadot": 7.0,
}

_MOCK_NEWS = [
    "Bitcoin breaks resistance amid institutional buying",
    "Ethereum Layer 2 solutions see record adoption",
    "Federal Reserve signals potential rate cuts",
    "Major crypto exchange announces new trading pairs",
]


class MarketDataError(RuntimeError):
    """Raised when an upstream feed call fails after retries."""

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


def coin_index(coin_id: str) -> int:
    for index, coin in enumerate(SUPPORTED_COINS):
        if coin["id"] == coin_id:
            return index
    return -1


def coin_name(index: int) -> str:
    if 0 <= index < len(SUPPORTED_COINS):
        return SUPPORTED_COINS[index]["name"]
    return "Unknown"


def get_coin(coin_id: str) -> dict[str, str] | None:
    index = coin_index(coin_id)
    return SUPPORTED_COINS[index] if index >= 0 else None


class MarketDataClient:
    """Async facade over blocking HTTP calls with caching, pacing and mock fallback."""

    def __init__(
        self,
        config: MarketConfig | None = None,
        session: requests.Session | None = None,
        cache: TTLCache | None = None,
        logger: Any | None = None,
    ) -> None:
        self.config = config or MarketConfig()
        self.session = session or requests.Session()
        self.cache = cache or TTLCache(self.config.cache_ttl_sec)
        self.logger = logger
        self._pace_lock = asyncio.Lock()
        self._last_call_at = 0.0

    async def test_connection(self) -> bool:
        try:
            await self._get_json(f"{self.config.coingecko_url}/ping")
            return True
        except MarketDataError as exc:
            self._log_error("test_connection", exc)
            return False

    async def get_top_coins(self, limit: int = 20) -> list[dict[str, Any]]:
        async def fetch() -> list[dict[str, Any]]:
            data = await self._get_json(
                f"{self.config.coingecko_url}/coins/markets",
                {
                    "vs_currency": "usd",
                    "order": "market_cap_desc",
                    "per_page": limit,
                    "sparkline": "true",
                    "price_change_percentage": "24h,7d",
                },
            )
            if not isinstance(data, list):
                raise MarketDataError("coins/markets returned unexpected payload")
            return data

        try:
            return await self.cache.get_or_set(f"top_coins:{limit}", fetch)
        except MarketDataError as exc:
            self._log_error("get_top_coins", exc)
            if not self.config.use_mock_fallback:
                raise
            return [self._mock_coin(coin["id"], with_sparkline=True) for coin in SUPPORTED_COINS][:limit]

    async def get_coin_market(self, coin_id: str) -> dict[str, Any]:
        async def fetch() -> dict[str, Any]:
            data = await self._get_json(
                f"{self.config.coingecko_url}/coins/{coin_id}",
                {
                    "localization": "false",
                    "tickers": "false",
                    "community_data": "false",
                    "developer_data": "false",
                    "sparkline": "false",
                },
            )
            market = (data or {}).get("market_data") or {}
            price = (market.get("current_price") or {}).get("usd")
            if price is None:
                raise MarketDataError(f"current price missing for {coin_id}")
            return {
                "id": data.get("id", coin_id),
                "name": data.get("name", coin_id.title()),
                "symbol": str(data.get("symbol") or "").upper(),
                "current_price": float(price),
                "price_change_percentage_24h": float(market.get("price_change_percentage_24h") or 0.0),
                "price_change_percentage_7d": float(market.get("price_change_percentage_7d") or 0.0),
                "market_cap": float((market.get("market_cap") or {}).get("usd") or 0.0),
                "total_volume": float((market.get("total_volume") or {}).get("usd") or 0.0),
                "last_updated": data.get("last_updated") or datetime.now(UTC).isoformat(),
                "is_mock": False,
            }

        try:
            return await self.cache.get_or_set(f"coin:{coin_id}", fetch)
        except MarketDataError as exc:
            self._log_error("get_coin_market", exc)
            if not self.config.use_mock_fallback:
                raise
            return self._mock_coin(coin_id)

    async def get_price_history(self, coin_id: str, days: int | None = None) -> list[dict[str, Any]]:
        days = days or self.config.history_days

        async def fetch() -> list[dict[str, Any]]:
            try:
                data = await self._get_json(
                    f"{self.config.coingecko_url}/coins/{coin_id}/market_chart",
                    {"vs_currency": "usd", "days": days},
                )
                rows = (data or {}).get("prices") or []
                if not rows:
                    raise MarketDataError(f"empty market_chart for {coin_id}")
                return [
                    {"time": datetime.fromtimestamp(ts / 1000, UTC).isoformat(), "price": float(price)}
                    for ts, price in rows
                ]
            except MarketDataError as exc:
                self._log_warning("CoinGecko history failed for {}, trying Binance: {}", coin_id, exc)
                return await self._binance_history(coin_id, days)

        try:
            return await self.cache.get_or_set(f"history:{coin_id}:{days}", fetch)
        except MarketDataError as exc:
            self._log_error("get_price_history", exc)
            if not self.config.use_mock_fallback:
                raise
            return self._mock_history(coin_id, hours=days * 24)

    async def get_simple_prices(self, ids: list[str]) -> dict[str, dict[str, float]]:
        key = ",".join(ids)

        async def fetch() -> dict[str, dict[str, float]]:
            data = await self._get_json(
                f"{self.config.coingecko_url}/simple/price",
                {"ids": key, "vs_currencies": "usd", "include_24hr_change": "true"},
            )
            if not isinstance(data, dict):
                raise MarketDataError("simple/price returned unexpected payload")
            return data

        try:
            return await self.cache.get_or_set(f"simple:{key}", fetch)
        except MarketDataError as exc:
            self._log_error("get_simple_prices", exc)
            if not self.config.use_mock_fallback:
                raise
            result = {}
            for coin_id in ids:
                mock = self._mock_coin(coin_id)
                result[coin_id] = {"usd": mock["current_price"], "usd_24h_change": mock["price_change_percentage_24h"]}
            return result

    async def get_news(self, limit: int | None = None) -> list[dict[str, Any]]:
        limit = limit or self.config.news_limit

        async def fetch() -> list[dict[str, Any]]:
            if self.config.news_api_key:
                return await self._newsapi_articles(limit)
            return await self._cryptocompare_articles(limit)

        try:
            return await self.cache.get_or_set(f"news:{limit}", fetch)
        except MarketDataError as exc:
            self._log_error("get_news", exc)
            if not self.config.use_mock_fallback:
                raise
            return self._mock_news()[:limit]

    async def get_fear_greed(self) -> int:
        async def fetch() -> int:
            data = await self._get_json(self.config.fear_greed_url)
            rows = (data or {}).get("data") or []
            if not rows:
                raise MarketDataError("fear & greed payload empty")
            return int(rows[0].get("value"))

        try:
            return await self.cache.get_or_set("fear_greed", fetch)
        except (MarketDataError, TypeError, ValueError) as exc:
            self._log_error("get_fear_greed", exc)
            return 50

    async def _binance_history(self, coin_id: str, days: int) -> list[dict[str, Any]]:
        coin = get_coin(coin_id)
        if coin is None:
            raise MarketDataError(f"no Binance symbol for {coin_id}")
        rows = await self._get_json(
            f"{self.config.binance_url}/api/v3/klines",
            {"symbol": f"{coin['symbol']}USDT", "interval": "1h", "limit": min(days * 24, 1000)},
        )
        if not isinstance(rows, list) or not rows:
            raise MarketDataError(f"empty klines for {coin_id}")
        # kline row: [open_time, open, high, low, close, ...]
        return [
            {"time": datetime.fromtimestamp(row[0] / 1000, UTC).isoformat(), "price": float(row[4])}
            for row in rows
        ]

    async def _newsapi_articles(self, limit: int) -> list[dict[str, Any]]:
        data = await self._get_json(
            f"{self.config.newsapi_url}/v2/everything",
            {"q": "crypto", "apiKey": self.config.news_api_key, "sortBy": "publishedAt", "pageSize": limit},
        )
        articles = (data or {}).get("articles") or []
        return [
            {
                "title": article.get("title") or "",
                "description": article.get("description") or "",
                "url": article.get("url"),
                "source": (article.get("source") or {}).get("name"),
                "published_at": article.get("publishedAt"),
            }
            for article in articles[:limit]
        ]

    async def _cryptocompare_articles(self, limit: int) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"lang": "EN"}
        if self.config.cryptocompare_api_key:
            params["api_key"] = self.config.cryptocompare_api_key
        data = await self._get_json(f"{self.config.cryptocompare_url}/data/v2/news/", params)
        rows = (data or {}).get("Data") or []
        if not isinstance(rows, list):
            raise MarketDataError("cryptocompare news payload malformed")
        return [
            {
                "title": row.get("title") or "",
                "description": row.get("body") or "",
                "url": row.get("url"),
                "source": row.get("source"),
                "published_at": datetime.fromtimestamp(int(row.get("published_on") or 0), UTC).isoformat(),
            }
            for row in rows[:limit]
        ]

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        retries = 3
        delay = 0.5
        for attempt in range(1, retries + 1):
            await self._pace()
            try:
                return await asyncio.to_thread(self._request_sync, url, params)
            except MarketDataError as exc:
                if not exc.retryable or attempt >= retries:
                    raise
                self._log_warning("Market request retry {}/{} url={} err={}", attempt, retries, url, exc)
                await asyncio.sleep(delay)
                delay *= 2
        raise MarketDataError(f"request failed: {url}")

    async def _pace(self) -> None:
        async with self._pace_lock:
            wait = self.config.request_delay_sec - (time.monotonic() - self._last_call_at)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_call_at = time.monotonic()

    def _request_sync(self, url: str, params: dict[str, Any] | None = None) -> Any:
        headers = {"Accept": "application/json"}
        if self.config.coingecko_api_key and url.startswith(self.config.coingecko_url):
            headers["x-cg-demo-api-key"] = self.config.coingecko_api_key
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.config.timeout_sec)
        except requests.Timeout as exc:
            raise MarketDataError(f"timeout: {exc}", retryable=True) from exc
        except requests.ConnectionError as exc:
            raise MarketDataError(f"connection error: {exc}", retryable=True) from exc
        except requests.RequestException as exc:
            raise MarketDataError(f"request error: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise MarketDataError(f"HTTP {response.status_code}: {response.text[:200]}", retryable=True)
        if response.status_code >= 400:
            raise MarketDataError(f"HTTP {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as exc:
            raise MarketDataError(f"invalid JSON from {url}") from exc

    def _mock_coin(self, coin_id: str, with_sparkline: bool = False) -> dict[str, Any]:
        coin = get_coin(coin_id) or {"id": coin_id, "name": coin_id.title(), "symbol": coin_id[:3].upper()}
        base = _MOCK_PRICES.get(coin_id, 1.0)
        price = base * (1 + random.uniform(-0.01, 0.01))
        mock: dict[str, Any] = {
            "id": coin["id"],
            "name": coin["name"],
            "symbol": coin["symbol"],
            "current_price": round(price, 6),
            "price_change_percentage_24h": round(random.uniform(-3, 3), 2),
            "price_change_percentage_7d": round(random.uniform(-8, 8), 2),
            "market_cap": base * 19_000_000,
            "total_volume": base * 450_000,
            "last_updated": datetime.now(UTC).isoformat(),
            "is_mock": True,
        }
        if with_sparkline:
            mock["sparkline_in_7d"] = {"price": [p["price"] for p in self._mock_history(coin_id, hours=168)]}
        return mock

    def _mock_history(self, coin_id: str, hours: int = 24) -> list[dict[str, Any]]:
        base = _MOCK_PRICES.get(coin_id, 1.0)
        now = datetime.now(UTC).replace(minute=0, second=0, microsecond=0)
        points = []
        for i in range(hours):
            ts = now - timedelta(hours=hours - 1 - i)
            price = base + math.sin(i / 3) * base * 0.03 + random.uniform(0, base * 0.008)
            points.append({"time": ts.isoformat(), "price": round(price, 6), "is_mock": True})
        return points

    def _mock_news(self) -> list[dict[str, Any]]:
        now = datetime.now(UTC).isoformat()
        return [
            {"title": title, "description": "", "url": None, "source": "mock", "published_at": now, "is_mock": True}
            for title in _MOCK_NEWS
        ]

    def _log_warning(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "warning"):
            self.logger.warning(message, *args)

    def _log_error(self, scope: str, exc: Exception) -> None:
        if self.logger is not None and hasattr(self.logger, "error"):
            self.logger.error("Market data error [{}]: {}", scope, exc)
