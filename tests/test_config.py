"""Tests for config loading and persisted bot state."""
from datetime import UTC, datetime

import pytest

from seismic_bot.app.config import AppConfig, load_config
from seismic_bot.app.state import load_state, save_state


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for name in (
        "NEWS_API_KEY",
        "CRYPTOCOMPARE_API_KEY",
        "COINGECKO_API_KEY",
        "PORT",
        "SEISMIC_BOT_ADDRESS",
        "SEISMIC_DB_PATH",
        "PRIVATE_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults_without_file() -> None:
    config = load_config(None)
    assert config.server.port == 3001
    assert config.market.cache_ttl_sec == 60
    assert config.strategy.weights.technicals == 0.35
    assert config.bot.interval_sec == 30
    assert config.ledger.network == "base_sepolia"


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yml")


def test_yaml_values_and_env_overrides(tmp_path, monkeypatch) -> None:
    path = tmp_path / "config.yml"
    path.write_text("server:\n  port: 4000\nledger:\n  shielded: true\n  network: local\n", encoding="utf-8")
    monkeypatch.setenv("PORT", "5000")
    monkeypatch.setenv("NEWS_API_KEY", "secret")
    monkeypatch.setenv("PRIVATE_KEY", "random")

    config = load_config(path)

    assert config.server.port == 5000
    assert config.market.news_api_key == "secret"
    assert config.bot.private_key == "random"
    assert config.ledger.shielded is True
    assert config.ledger.network == "local"


@pytest.mark.parametrize(
    "body",
    [
        "bot:\n  interval_sec: 5\n",
        "ledger:\n  network: mainnet\n",
        "strategy:\n  weights:\n    technicals: 0.9\n",
        "unknown_section: {}\n",
    ],
)
def test_invalid_values_raise_value_error(tmp_path, body) -> None:
    path = tmp_path / "config.yml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid config"):
        load_config(path)


def test_app_config_builds_without_arguments() -> None:
    assert AppConfig().logging.level == "INFO"


def test_state_round_trip(tmp_path) -> None:
    assert load_state(tmp_path).running is False
    assert load_state(tmp_path).started_at is None

    save_state(running=True, root_dir=tmp_path, coin_id="solana", address="0x" + "c" * 40, started_at=datetime.now(UTC))
    state = load_state(tmp_path)
    assert state.running is True
    assert state.coin_id == "solana"
    assert state.started_at is not None
    assert state.stopped_at is None

    save_state(running=False, root_dir=tmp_path)
    state = load_state(tmp_path)
    assert state.running is False
    assert state.stopped_at is not None
    assert state.coin_id == "solana"
    assert state.address == "0x" + "c" * 40


def test_resume_counter(tmp_path) -> None:
    save_state(running=True, root_dir=tmp_path)
    save_state(root_dir=tmp_path, resumed=True)
    state = save_state(root_dir=tmp_path, resumed=True)
    assert state.resumes == 2
    assert load_state(tmp_path).resumes == 2
    assert not (tmp_path / "data" / "state.yml.tmp").exists()
