"""Loguru sinks: console, rotating service log, error log and a daily trade journal."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from loguru import logger

TRADES_CHANNEL = "trades"

_CONSOLE_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}"


def _is_trade(record: dict[str, Any]) -> bool:
    return record["extra"].get("channel") == TRADES_CHANNEL


def setup_logger(log_dir: str | Path = "logs", level: str = "INFO"):
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(sys.stdout, level=level, format=_CONSOLE_FORMAT, enqueue=True)
    logger.add(
        path / "bot.log",
        level=level,
        format=_FILE_FORMAT,
        rotation="5 MB",
        retention=5,
        enqueue=True,
        encoding="utf-8",
    )
    logger.add(
        path / "errors.log",
        level="ERROR",
        format=_FILE_FORMAT,
        rotation="5 MB",
        retention=5,
        enqueue=True,
        encoding="utf-8",
        backtrace=True,
    )
    logger.add(
        path / "trades.log",
        level="INFO",
        format="{time:YYYY-MM-DD HH:mm:ss} | {message}",
        filter=_is_trade,
        rotation="00:00",
        retention="30 days",
        enqueue=True,
        encoding="utf-8",
    )
    return logger


def log_trade(action: str, address: str, coin: str, amount: str, price: str, pnl: str | None = None) -> None:
    """Append one line to the trade journal."""
    message = f"{action} address={address} coin={coin} amount={amount} price={price}"
    if pnl is not None:
        message += f" pnl={pnl}"
    logger.bind(channel=TRADES_CHANNEL).info(message)
