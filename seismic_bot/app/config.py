"""Configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    host: str = "0.0.0.0"
    port: int = Field(default=3001, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    sse_interval_sec: float = Field(default=30.0, gt=0)


class MarketConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    coingecko_url: str = "https://api.coingecko.com/api/v3"
    binance_url: str = "https://api.binance.com"
    cryptocompare_url: str = "https://min-api.cryptocompare.com"
    newsapi_url: str = "https://newsapi.org"
    fear_greed_url: str = "https://api.alternative.me/fng/"
    coingecko_api_key: str = ""
    cryptocompare_api_key: str = ""
    news_api_key: str = ""
    cache_ttl_sec: float = Field(default=60.0, ge=0)
    request_delay_sec: float = Field(default=1.2, ge=0)
    timeout_sec: float = Field(default=10.0, gt=0)
    history_days: int = Field(default=7, ge=1, le=90)
    news_limit: int = Field(default=10, ge=1, le=100)
    use_mock_fallback: bool = True


class WeightsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    technicals: float = Field(default=0.35, ge=0, le=1)
    sentiment: float = Field(default=0.25, ge=0, le=1)
    momentum: float = Field(default=0.25, ge=0, le=1)
    volume: float = Field(default=0.15, ge=0, le=1)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "WeightsConfig":
        total = self.technicals + self.sentiment + self.momentum + self.volume
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"strategy weights must add to 1.0, got {total:.4f}")
        return self


class StrategyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_position_size: float = Field(default=0.30, gt=0, le=1)
    min_confidence: float = Field(default=0.70, ge=0, le=1)
    stop_loss_percent: float = Field(default=-0.05, lt=0)
    take_profit_percent: float = Field(default=0.10, gt=0)
    rsi_oversold: float = Field(default=30, ge=0, le=100)
    rsi_overbought: float = Field(default=70, ge=0, le=100)
    rsi_period: int = Field(default=14, ge=2)
    sma_short_period: int = Field(default=20, ge=2)
    sma_long_period: int = Field(default=50, ge=2)
    weights: WeightsConfig = Field(default_factory=WeightsConfig)


class BotConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    interval_sec: float = Field(default=30.0, ge=15, le=60)
    coin_id: str = "bitcoin"
    address: str = ""
    private_key: str = ""
    auto_resume: bool = True


class LedgerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    db_path: str = "data/ledger.db"
    shielded: bool = False
    network: str = Field(default="base_sepolia", pattern=r"^(base_sepolia|local)$")
    gas_price_gwei: float = Field(default=0.01, ge=0)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_dir: str = "logs"
    level: str = Field(default="INFO", pattern=r"^(TRACE|DEBUG|INFO|SUCCESS|WARNING|ERROR|CRITICAL)$")


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    server: ServerConfig = Field(default_factory=ServerConfig)
    market: MarketConfig = Field(default_factory=MarketConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    bot: BotConfig = Field(default_factory=BotConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "NEWS_API_KEY": ("market", "news_api_key"),
    "CRYPTOCOMPARE_API_KEY": ("market", "cryptocompare_api_key"),
    "COINGECKO_API_KEY": ("market", "coingecko_api_key"),
    "PORT": ("server", "port"),
    "SEISMIC_BOT_ADDRESS": ("bot", "address"),
    "PRIVATE_KEY": ("bot", "private_key"),
    "SEISMIC_DB_PATH": ("ledger", "db_path"),
}


def _apply_env(raw_data: dict) -> dict:
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            raw_data.setdefault(section, {})
            raw_data[section][key] = value
    return raw_data


def load_config(path: str | Path | None = "config.yml") -> AppConfig:
    """Load configuration from YAML file, overlay environment, validate schema.

    ``path=None`` builds the defaults with only the environment overlay applied.
    """
    load_dotenv()
    raw_data: dict = {}
    config_path: Path | None = None
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file '{config_path}' not found. Copy config.yml.example to config.yml first."
            )
        with config_path.open("r", encoding="utf-8") as fh:
            raw_data = yaml.safe_load(fh) or {}

    raw_data = _apply_env(raw_data)
    try:
        return AppConfig.model_validate(raw_data)
    except ValidationError as exc:
        raise ValueError(f"Invalid config '{config_path or '<defaults>'}': {exc}") from exc
