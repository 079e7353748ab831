"""Service facade that speaks human units over the ledger's base units."""

from __future__ import annotations

import inspect
import itertools
import secrets
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from seismic_bot.app.config import LedgerConfig
from seismic_bot.app.ledger import (
    BotSettings,
    DailyTradeLimitError,
    InsufficientBalanceError,
    InvalidAmountError,
    Ledger,
    LedgerEvent,
    Position,
    Trade,
)
from seismic_bot.app.logger import log_trade
from seismic_bot.app.market_data import coin_name


NETWORKS: dict[str, dict[str, Any]] = {
    "base_sepolia": {
        "name": "Base Sepolia",
        "chain_id": 84532,
        "rpc_url": "https://sepolia.base.org",
        "block_explorer": "https://sepolia.basescan.org",
        "native_currency": {"name": "Ethereum", "symbol": "ETH", "decimals": 18},
    },
    "local": {
        "name": "Anvil Local",
        "chain_id": 31337,
        "rpc_url": "http://127.0.0.1:8545",
        "block_explorer": None,
        "native_currency": {"name": "Ethereum", "symbol": "ETH", "decimals": 18},
    },
}

# nominal gas per call, mirrors the gas limits used for the deployed contract
_GAS_USED = {
    "deposit": 200_000,
    "withdraw": 200_000,
    "execute_trade": 300_000,
    "open_position": 350_000,
    "close_position": 300_000,
    "configure_bot_settings": 200_000,
}


def parse_units(value: str | int | float | Decimal, decimals: int = 18) -> int:
    """Convert a human decimal string ("1.5") to integer base units."""
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmountError(f"Invalid numeric value: {value!r}") from exc
    if not number.is_finite():
        raise InvalidAmountError(f"Invalid numeric value: {value!r}")
    scaled = number.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidAmountError(f"Too many decimals in {value!r}")
    return int(scaled)


def format_units(value: int, decimals: int = 18) -> str:
    """Convert base units back to a normalized decimal string ("1.5", "0.0")."""
    number = Decimal(int(value)).scaleb(-decimals)
    text = format(number, "f")
    if "." in text:
        text = text.rstrip("0")
        if text.endswith("."):
            text += "0"
    else:
        text += ".0"
    return text


def _iso(timestamp: int | None) -> str | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), UTC).isoformat()


class BlockchainService:
    """Formats ledger reads and turns ledger writes into transaction-style receipts."""

    def __init__(self, ledger: Ledger, config: LedgerConfig | None = None, logger: Any | None = None) -> None:
        self.ledger = ledger
        self.config = config or LedgerConfig()
        self.logger = logger
        self._blocks = itertools.count(1)
        self._forwarders: list[Callable[[LedgerEvent], Any]] = []

    # --- reads -----------------------------------------------------------

    async def get_balance(self, address: str, caller: str | None = None) -> str:
        balance = await self.ledger.get_balance(address, caller or address)
        return format_units(balance)

    async def get_trade_history(self, address: str, caller: str | None = None) -> list[dict[str, Any]]:
        trades = await self.ledger.get_trade_history(address, caller or address)
        return [self._format_trade(trade) for trade in trades]

    async def get_open_positions(self, address: str, caller: str | None = None) -> list[dict[str, Any]]:
        positions = await self.ledger.get_open_positions(address, caller or address)
        return [self._format_position(position) for position in positions]

    async def get_positions(self, address: str, caller: str | None = None) -> list[dict[str, Any]]:
        positions = await self.ledger.get_positions(address, caller or address)
        return [self._format_position(position) for position in positions]

    async def get_bot_config(self, address: str, caller: str | None = None) -> dict[str, Any]:
        settings = await self.ledger.get_bot_config(address, caller or address)
        return self._format_settings(settings)

    async def get_public_stats(self, address: str, caller: str | None = None) -> dict[str, int]:
        stats = await self.ledger.get_public_stats(address, caller or address)
        return {
            "totalUsers": stats.total_users,
            "totalTrades": stats.total_trades,
            "userDailyTrades": stats.user_daily_trades,
        }

    async def get_dashboard_trades(self, address: str, caller: str | None = None) -> list[dict[str, Any]]:
        """Positions rendered as the dashboard trade table rows."""
        positions = await self.ledger.get_positions(address, caller or address)
        rows = []
        for position in positions:
            pnl = 0.0
            if position.pnl is not None and position.amount:
                pnl = round(position.pnl / position.amount * 100, 2)
            rows.append(
                {
                    "id": str(position.index),
                    "asset": coin_name(position.coin_id),
                    "entry": format_units(position.entry_price),
                    "exit": format_units(position.exit_price) if position.exit_price is not None else None,
                    "pnl": pnl,
                    "status": "Active" if position.is_active else "Closed",
                    "timestamp": _iso(position.timestamp),
                }
            )
        return rows

    async def is_paused(self) -> bool:
        try:
            return await self.ledger.is_paused()
        except Exception as exc:  # noqa: BLE001
            self._log_error("Failed to check pause status: {}", exc)
            return True

    def get_gas_price(self) -> str:
        return format(Decimal(str(self.config.gas_price_gwei)).normalize(), "f")

    def get_network(self) -> dict[str, Any]:
        network = dict(NETWORKS[self.config.network])
        network["key"] = self.config.network
        network["shielded"] = self.config.shielded
        return network

    # --- writes ----------------------------------------------------------

    async def deposit(self, address: str, amount: str) -> dict[str, Any]:
        await self.ledger.deposit(address, parse_units(amount))
        self._log_info("Deposit confirmed address={} amount={}", address, amount)
        return self._receipt("deposit")

    async def withdraw(self, address: str, amount: str) -> dict[str, Any]:
        await self.ledger.withdraw(address, parse_units(amount))
        self._log_info("Withdrawal confirmed address={} amount={}", address, amount)
        return self._receipt("withdraw")

    async def execute_trade(self, address: str, amount: str, price: str, is_buy: bool, coin_id: int) -> dict[str, Any]:
        try:
            await self.ledger.execute_trade(address, parse_units(amount), parse_units(price), is_buy, int(coin_id))
        except InsufficientBalanceError as exc:
            raise InsufficientBalanceError("Not enough balance to execute trade") from exc
        except DailyTradeLimitError as exc:
            raise DailyTradeLimitError("Daily trade limit reached") from exc
        self._log_info(
            "Trade confirmed {} {} {} @ {}",
            "BUY" if is_buy else "SELL",
            amount,
            coin_name(int(coin_id)),
            price,
        )
        log_trade("BUY" if is_buy else "SELL", address, coin_name(int(coin_id)), amount, price)
        return self._receipt("execute_trade")

    async def open_position(
        self,
        address: str,
        amount: str,
        entry_price: str,
        stop_loss: str,
        take_profit: str,
        coin_id: int,
    ) -> dict[str, Any]:
        index = await self.ledger.open_position(
            address,
            parse_units(amount),
            parse_units(entry_price),
            parse_units(stop_loss),
            parse_units(take_profit),
            int(coin_id),
        )
        log_trade(f"OPEN #{index}", address, coin_name(int(coin_id)), amount, entry_price)
        receipt = self._receipt("open_position")
        receipt["position_index"] = index
        return receipt

    async def close_position(self, address: str, index: int, current_price: str) -> dict[str, Any]:
        position = await self.ledger.close_position(address, int(index), parse_units(current_price))
        receipt = self._receipt("close_position")
        receipt["pnl"] = format_units(position.pnl or 0)
        log_trade(
            f"CLOSE #{position.index}",
            address,
            coin_name(position.coin_id),
            format_units(position.amount),
            current_price,
            receipt["pnl"],
        )
        return receipt

    async def configure_bot_settings(self, address: str, settings: dict[str, Any] | None = None) -> dict[str, Any]:
        settings = settings or {}
        defaults = BotSettings()

        def pick(name: str) -> Any:
            value = settings.get(name)
            return getattr(defaults, name) if value is None else value

        await self.ledger.configure_bot_settings(
            address,
            int(pick("max_position_size")),
            int(pick("daily_trade_limit")),
            bool(pick("is_active")),
            int(pick("min_confidence")),
        )
        return self._receipt("configure_bot_settings")

    # --- events ----------------------------------------------------------

    def listen_to_trade_events(self, callback: Callable[[dict[str, Any]], Any]) -> None:
        async def forward(event: LedgerEvent) -> None:
            if event.name != "TradeExecuted":
                return
            payload = {
                "user": event.address,
                "timestamp": event.timestamp,
                "is_buy": event.is_buy,
                "coin_id": event.coin_id,
                "coin": coin_name(event.coin_id),
                "transaction_hash": self._tx_hash(),
            }
            result = callback(payload)
            if inspect.isawaitable(result):
                await result

        self._forwarders.append(forward)
        self.ledger.add_listener(forward)
        self._log_info("Listening for trade events")

    def stop_listening(self) -> None:
        self.ledger.remove_all_listeners()
        self._forwarders.clear()
        self._log_info("Stopped listening to events")

    # --- helpers ---------------------------------------------------------

    def _receipt(self, operation: str) -> dict[str, Any]:
        return {
            "success": True,
            "transaction_hash": self._tx_hash(),
            "block_number": next(self._blocks),
            "gas_used": str(_GAS_USED[operation]),
        }

    @staticmethod
    def _tx_hash() -> str:
        return "0x" + secrets.token_hex(32)

    @staticmethod
    def _format_trade(trade: Trade) -> dict[str, Any]:
        return {
            "amount": format_units(trade.amount),
            "price": format_units(trade.price),
            "is_buy": trade.is_buy,
            "timestamp": _iso(trade.timestamp),
            "coin_id": trade.coin_id,
            "coin": coin_name(trade.coin_id),
        }

    @staticmethod
    def _format_position(position: Position) -> dict[str, Any]:
        return {
            "index": position.index,
            "amount": format_units(position.amount),
            "entry_price": format_units(position.entry_price),
            "stop_loss": format_units(position.stop_loss),
            "take_profit": format_units(position.take_profit),
            "opened_at": _iso(position.timestamp),
            "is_active": position.is_active,
            "coin_id": position.coin_id,
            "coin": coin_name(position.coin_id),
            "exit_price": format_units(position.exit_price) if position.exit_price is not None else None,
            "closed_at": _iso(position.closed_at),
            "pnl": format_units(position.pnl) if position.pnl is not None else None,
        }

    @staticmethod
    def _format_settings(settings: BotSettings) -> dict[str, Any]:
        return {
            "max_position_size": settings.max_position_size,
            "daily_trade_limit": settings.daily_trade_limit,
            "is_active": settings.is_active,
            "min_confidence": settings.min_confidence,
        }

    def _log_info(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)

    def _log_error(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "error"):
            self.logger.error(message, *args)
