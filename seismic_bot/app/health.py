"""Periodic probes of the ledger store and the market feed."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from seismic_bot.app.ledger import Ledger
from seismic_bot.app.market_data import MarketDataClient

DEGRADED_AFTER = 3


@dataclass(slots=True)
class ProbeResult:
    ok: bool
    latency_ms: float
    error: str | None = None


@dataclass(slots=True)
class HealthStatus:
    api: str = "OK"
    db: str = "OK"
    api_consecutive_errors: int = 0
    ledger_paused: bool = False
    api_latency_ms: float | None = None
    db_latency_ms: float | None = None
    checked_at: datetime | None = None


async def _probe(check) -> ProbeResult:
    started = time.perf_counter()
    try:
        ok = bool(await check())
        error = None if ok else "check returned False"
    except Exception as exc:  # noqa: BLE001
        ok, error = False, str(exc)
    return ProbeResult(ok=ok, latency_ms=round((time.perf_counter() - started) * 1000, 1), error=error)


class HealthMonitor:
    def __init__(
        self,
        ledger: Ledger,
        market: MarketDataClient,
        logger: Any | None = None,
        interval_sec: float = 30.0,
    ) -> None:
        self.ledger = ledger
        self.market = market
        self.logger = logger
        self.interval_sec = interval_sec
        self.status = HealthStatus()

    async def run_loop(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self.interval_sec)

    async def check_once(self) -> dict[str, Any]:
        db, api = await asyncio.gather(_probe(self.ledger.healthcheck), _probe(self.market.test_connection))
        self._apply_db(db)
        self._apply_api(api)
        if db.ok:
            await self._refresh_paused()
        self.status.checked_at = datetime.now(UTC)
        return self.snapshot()

    def _apply_db(self, result: ProbeResult) -> None:
        self.status.db_latency_ms = result.latency_ms
        if not result.ok:
            self.status.db = "ERROR"
            self._log_error("HealthMonitor DB check failed: {}", result.error)
            return
        self.status.db = "OK"

    def _apply_api(self, result: ProbeResult) -> None:
        self.status.api_latency_ms = result.latency_ms
        if result.ok:
            if self.status.api_consecutive_errors >= DEGRADED_AFTER:
                self._log_info("HealthMonitor: market API recovered after {} failures", self.status.api_consecutive_errors)
            self.status.api = "OK"
            self.status.api_consecutive_errors = 0
            return
        self.status.api = "ERROR"
        self.status.api_consecutive_errors += 1
        self._log_error("HealthMonitor API check failed: {}", result.error)
        if self.status.api_consecutive_errors == DEGRADED_AFTER:
            self._log_warning("HealthMonitor: market API failed {} times, serving mock data", DEGRADED_AFTER)

    async def _refresh_paused(self) -> None:
        try:
            self.status.ledger_paused = await self.ledger.is_paused()
        except Exception as exc:  # noqa: BLE001
            self._log_error("HealthMonitor pause check failed: {}", exc)

    @property
    def degraded(self) -> bool:
        return self.status.db != "OK" or self.status.api_consecutive_errors >= DEGRADED_AFTER

    def snapshot(self) -> dict[str, Any]:
        status = self.status
        return {
            "api": status.api,
            "db": status.db,
            "api_consecutive_errors": status.api_consecutive_errors,
            "status": "degraded" if self.degraded else "ok",
            "ledger_paused": status.ledger_paused,
            "latency_ms": {"api": status.api_latency_ms, "db": status.db_latency_ms},
            "checked_at": status.checked_at.isoformat() if status.checked_at else None,
        }

    def _log_info(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)

    def _log_warning(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "warning"):
            self.logger.warning(message, *args)

    def _log_error(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "error"):
            self.logger.error(message, *args)
