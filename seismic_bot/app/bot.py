"""Polling trading bot: market snapshot -> decision -> ledger positions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from seismic_bot.app.blockchain import BlockchainService, format_units, parse_units
from seismic_bot.app.config import BotConfig
from seismic_bot.app.events import EventBus
from seismic_bot.app.ledger import InvalidAddressError, LedgerError, Position, is_valid_address
from seismic_bot.app.market_data import MarketDataClient, coin_index
from seismic_bot.app.state import save_state
from seismic_bot.app.strategy import SignalStrategy, TradingDecision


@dataclass(slots=True)
class BotStatus:
    running: bool = False
    coin_id: str | None = None
    address: str | None = None
    ticks: int = 0
    last_decision: dict[str, Any] | None = None
    last_error: str | None = None
    last_tick_at: datetime | None = None
    started_at: datetime | None = None
    actions: list[str] = field(default_factory=list)


def _units(value: float | Decimal) -> str:
    return f"{float(value):.8f}"


class TradingBot:
    def __init__(
        self,
        market: MarketDataClient,
        strategy: SignalStrategy,
        blockchain: BlockchainService,
        events: EventBus | None = None,
        config: BotConfig | None = None,
        logger: Any | None = None,
        state_dir: Path | None = None,
    ) -> None:
        self.market = market
        self.strategy = strategy
        self.blockchain = blockchain
        self.events = events or EventBus()
        self.config = config or BotConfig()
        self.logger = logger
        self.state_dir = state_dir
        self._status = BotStatus()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, coin_id: str | None = None, address: str | None = None, persist: bool = True) -> bool:
        """Schedule the polling loop; returns False when already running."""
        if self.running:
            return False
        coin_id = coin_id or self.config.coin_id
        address = address or self.config.address
        if coin_index(coin_id) < 0:
            raise ValueError(f"Unsupported coin: {coin_id}")
        if not is_valid_address(address):
            raise InvalidAddressError(f"Invalid address: {address!r}")

        started_at = datetime.now(UTC)
        self._status = BotStatus(running=True, coin_id=coin_id, address=address, started_at=started_at)
        self._task = asyncio.create_task(self.run_loop(), name=f"trading-bot-{coin_id}")
        if persist:
            save_state(running=True, root_dir=self.state_dir, coin_id=coin_id, address=address, started_at=started_at)
        self._info("TradingBot started coin={} address={}", coin_id, address)
        return True

    async def stop(self, persist: bool = True) -> bool:
        task = self._task
        if task is None or task.done():
            self._status.running = False
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._status.running = False
        if persist:
            save_state(running=False, root_dir=self.state_dir)
        self._info("TradingBot stopped coin={}", self._status.coin_id)
        return True

    async def run_loop(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                self._status.last_error = str(exc)
                self._error("TradingBot tick error: {}", exc)
            await asyncio.sleep(self.config.interval_sec)

    async def tick(self) -> TradingDecision:
        coin_id = self._status.coin_id or self.config.coin_id
        address = self._status.address or self.config.address
        index = coin_index(coin_id)

        market = await self.market.get_coin_market(coin_id)
        history = await self.market.get_price_history(coin_id)
        news = await self.market.get_news()
        decision = self.strategy.analyze_market(market, history, news)
        price = float(market.get("current_price") or 0.0)
        actions: list[str] = []

        if price > 0 and is_valid_address(address):
            actions += await self._check_exits(address, index, price)
            if decision.signal == "BUY":
                action = await self._enter(address, index, price, decision)
                if action:
                    actions.append(action)
            elif decision.signal == "SELL":
                actions += await self._close_all(address, index, price, "signal")

        self._status.ticks += 1
        self._status.last_decision = decision.to_dict()
        self._status.last_tick_at = datetime.now(UTC)
        self._status.actions = actions

        trades: list[dict[str, Any]] = []
        if is_valid_address(address):
            trades = await self.blockchain.get_dashboard_trades(address)
        self.events.publish(
            "tick",
            {
                "coin_id": coin_id,
                "address": address,
                "price": price,
                "decision": decision.to_dict(),
                "actions": actions,
                "trades": trades,
            },
        )
        self._info(
            "Tick coin={} price={} signal={} confidence={:.2f} actions={}",
            coin_id,
            price,
            decision.signal,
            decision.confidence,
            actions,
        )
        return decision

    async def _check_exits(self, address: str, index: int, price: float) -> list[str]:
        price_units = parse_units(_units(price))
        positions = await self.blockchain.ledger.get_open_positions(address, address)
        actions = []
        for position in positions:
            if position.coin_id != index:
                continue
            reason = self._exit_reason(position, price_units)
            if reason is None:
                continue
            action = await self._close(address, position, price, reason)
            if action:
                actions.append(action)
        return actions

    @staticmethod
    def _exit_reason(position: Position, price_units: int) -> str | None:
        if position.stop_loss and price_units <= position.stop_loss:
            return "stop_loss"
        if position.take_profit and price_units >= position.take_profit:
            return "take_profit"
        return None

    async def _enter(self, address: str, index: int, price: float, decision: TradingDecision) -> str | None:
        settings = await self.blockchain.ledger.get_bot_config(address, address)
        if decision.confidence * 100 < settings.min_confidence:
            self._info("Skip BUY: confidence {:.0f}% below {}%", decision.confidence * 100, settings.min_confidence)
            return None
        # bot entries are positions, which the ledger trade counter does not see
        stats = await self.blockchain.ledger.get_public_stats(address, address)
        opened_today = await self.blockchain.ledger.get_daily_open_count(address, address)
        if stats.user_daily_trades + opened_today >= settings.daily_trade_limit:
            self._info("Skip BUY: daily trade limit {} reached", settings.daily_trade_limit)
            return None

        balance = float(format_units(await self.blockchain.ledger.get_balance(address, address)))
        decision.position_size = min(decision.position_size, settings.max_position_size / 100)
        params = self.strategy.calculate_trade_parameters(decision, price, balance)
        if params.trade_amount <= 0:
            self._info("Skip BUY: no balance for {}", address)
            return None

        try:
            receipt = await self.blockchain.open_position(
                address,
                _units(params.trade_amount),
                _units(price),
                _units(params.stop_loss_price),
                _units(params.take_profit_price),
                index,
            )
        except LedgerError as exc:
            self._warning("BUY refused by ledger: {}", exc)
            self._status.last_error = str(exc)
            return None
        return f"open:{receipt['position_index']}"

    async def _close_all(self, address: str, index: int, price: float, reason: str) -> list[str]:
        positions = await self.blockchain.ledger.get_open_positions(address, address)
        actions = []
        for position in positions:
            if position.coin_id != index:
                continue
            action = await self._close(address, position, price, reason)
            if action:
                actions.append(action)
        return actions

    async def _close(self, address: str, position: Position, price: float, reason: str) -> str | None:
        try:
            receipt = await self.blockchain.close_position(address, position.index, _units(price))
        except LedgerError as exc:
            self._warning("Close refused by ledger index={}: {}", position.index, exc)
            self._status.last_error = str(exc)
            return None
        self._info("Position {} closed ({}) pnl={}", position.index, reason, receipt["pnl"])
        return f"close:{position.index}:{reason}"

    def status(self) -> dict[str, Any]:
        status = self._status
        return {
            "running": self.running,
            "coin_id": status.coin_id,
            "address": status.address,
            "ticks": status.ticks,
            "interval_sec": self.config.interval_sec,
            "last_decision": status.last_decision,
            "last_error": status.last_error,
            "last_tick_at": status.last_tick_at.isoformat() if status.last_tick_at else None,
            "started_at": status.started_at.isoformat() if status.started_at else None,
            "actions": list(status.actions),
        }

    def _info(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)

    def _warning(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "warning"):
            self.logger.warning(message, *args)

    def _error(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "error"):
            self.logger.error(message, *args)
