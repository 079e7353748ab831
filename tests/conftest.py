"""Shared fixtures for market feed tests."""
from __future__ import annotations

from typing import Any

import pytest

from fakes import FakeSession
from seismic_bot.app.config import MarketConfig
from seismic_bot.app.market_data import MarketDataClient


@pytest.fixture
def market_config() -> MarketConfig:
    return MarketConfig(request_delay_sec=0, cache_ttl_sec=60)


@pytest.fixture
def make_market(market_config: MarketConfig):
    def factory(routes: dict[str, Any] | None = None, **overrides: Any) -> tuple[MarketDataClient, FakeSession]:
        session = FakeSession(routes)
        config = market_config.model_copy(update=overrides) if overrides else market_config
        return MarketDataClient(config, session=session), session

    return factory
