"""Balance/trade ledger stored in async SQLite via SQLAlchemy.

Holds per-address balances, trade history, positions, bot settings and the
daily trade counters. Amounts and prices are integer base units (18 decimals)
and are persisted as decimal text so they are not truncated to 64 bits.

With ``shielded=True`` every view is scoped to its ``caller``: reading another
address returns the zero value and emitted events carry no amounts.
"""

from __future__ import annotations

import asyncio
import inspect
import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable

from sqlalchemy import Boolean, DateTime, Integer, String, TypeDecorator, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


WEI = 10**18
SECONDS_PER_DAY = 86400
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class LedgerError(Exception):
    """Base class for refused ledger operations."""

    code = "ledger_error"


class InvalidAmountError(LedgerError):
    code = "invalid_amount"


class InvalidAddressError(LedgerError):
    code = "invalid_address"


class InsufficientBalanceError(LedgerError):
    code = "insufficient_balance"


class DailyTradeLimitError(LedgerError):
    code = "daily_trade_limit"


class PositionNotFoundError(LedgerError):
    code = "position_not_found"


class PositionNotActiveError(LedgerError):
    code = "position_not_active"


class BotInactiveError(LedgerError):
    code = "bot_inactive"


class LedgerPausedError(LedgerError):
    code = "ledger_paused"


class InvalidSettingsError(LedgerError):
    code = "invalid_settings"


class WeiAmount(TypeDecorator):
    """Arbitrary-size integer stored as text."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        return None if value is None else str(int(value))

    def process_result_value(self, value: Any, dialect: Any) -> int | None:
        return None if value is None else int(value)


class Base(DeclarativeBase):
    """Base declarative class for ledger tables."""


class AccountORM(Base):
    __tablename__ = "accounts"

    address: Mapped[str] = mapped_column(String, primary_key=True)
    balance: Mapped[int] = mapped_column(WeiAmount, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


class TradeORM(Base):
    __tablename__ = "ledger_trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    address: Mapped[str] = mapped_column(String, index=True, nullable=False)
    amount: Mapped[int] = mapped_column(WeiAmount, nullable=False)
    price: Mapped[int] = mapped_column(WeiAmount, nullable=False)
    timestamp: Mapped[int] = mapped_column(Integer, nullable=False)
    is_buy: Mapped[bool] = mapped_column(Boolean, nullable=False)
    coin_id: Mapped[int] = mapped_column(Integer, nullable=False)


class PositionORM(Base):
    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    address: Mapped[str] = mapped_column(String, index=True, nullable=False)
    position_index: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[int] = mapped_column(WeiAmount, nullable=False)
    entry_price: Mapped[int] = mapped_column(WeiAmount, nullable=False)
    stop_loss: Mapped[int] = mapped_column(WeiAmount, nullable=False)
    take_profit: Mapped[int] = mapped_column(WeiAmount, nullable=False)
    timestamp: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    coin_id: Mapped[int] = mapped_column(Integer, nullable=False)
    exit_price: Mapped[int | None] = mapped_column(WeiAmount, nullable=True)
    closed_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pnl: Mapped[int | None] = mapped_column(WeiAmount, nullable=True)


class BotSettingsORM(Base):
    __tablename__ = "bot_settings"

    address: Mapped[str] = mapped_column(String, primary_key=True)
    max_position_size: Mapped[int] = mapped_column(Integer, nullable=False)
    daily_trade_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False)
    min_confidence: Mapped[int] = mapped_column(Integer, nullable=False)


class DailyCountORM(Base):
    __tablename__ = "daily_trade_counts"

    address: Mapped[str] = mapped_column(String, primary_key=True)
    day: Mapped[int] = mapped_column(Integer, primary_key=True)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class LedgerStateORM(Base):
    __tablename__ = "ledger_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_users: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_trades: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


@dataclass(slots=True)
class Trade:
    amount: int
    price: int
    timestamp: int
    is_buy: bool
    coin_id: int


@dataclass(slots=True)
class Position:
    index: int
    amount: int
    entry_price: int
    stop_loss: int
    take_profit: int
    timestamp: int
    is_active: bool
    coin_id: int
    exit_price: int | None = None
    closed_at: int | None = None
    pnl: int | None = None


@dataclass(slots=True)
class BotSettings:
    max_position_size: int = 30
    daily_trade_limit: int = 5
    is_active: bool = True
    min_confidence: int = 70


@dataclass(slots=True)
class PublicStats:
    total_users: int
    total_trades: int
    user_daily_trades: int


@dataclass(slots=True)
class LedgerEvent:
    name: str
    address: str
    timestamp: int
    coin_id: int
    is_buy: bool | None = None
    amount: int | None = None
    price: int | None = None
    index: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[LedgerEvent], Any]


def is_valid_address(address: str | None) -> bool:
    return bool(address) and bool(_ADDRESS_RE.match(address))


def _normalize(address: str) -> str:
    if not is_valid_address(address):
        raise InvalidAddressError(f"Invalid address: {address!r}")
    return address.lower()


class Ledger:
    """Per-address ledger with atomic write operations."""

    def __init__(
        self,
        db_path: str | Path = "data/ledger.db",
        shielded: bool = False,
        clock: Callable[[], float] = time.time,
        logger: Any | None = None,
    ) -> None:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._engine: AsyncEngine = create_async_engine(f"sqlite+aiosqlite:///{path}", echo=False)
        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )
        self.shielded = shielded
        self.logger = logger
        self._clock = clock
        self._write_lock = asyncio.Lock()
        self._listeners: list[Listener] = []

    async def init_db(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with self._session_factory() as session:
            if await session.get(LedgerStateORM, 1) is None:
                session.add(LedgerStateORM(id=1, paused=False, total_users=0, total_trades=0))
                await session.commit()

    async def close(self) -> None:
        await self._engine.dispose()

    async def healthcheck(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(select(1))
        return True

    # --- listeners -------------------------------------------------------

    def add_listener(self, callback: Listener) -> None:
        self._listeners.append(callback)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    async def _emit(self, event: LedgerEvent) -> None:
        if self.shielded:
            event.amount = None
            event.price = None
            event.extra = {}
        for callback in list(self._listeners):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                self._log_error("Ledger listener failed for {}: {}", event.name, exc)

    # --- admin -----------------------------------------------------------

    async def pause(self) -> None:
        await self._set_paused(True)

    async def unpause(self) -> None:
        await self._set_paused(False)

    async def _set_paused(self, paused: bool) -> None:
        async with self._write_lock, self._session_factory() as session:
            state = await self._state(session)
            state.paused = paused
            await session.commit()
        self._log_info("Ledger {}", "paused" if paused else "unpaused")

    async def is_paused(self) -> bool:
        async with self._session_factory() as session:
            state = await session.get(LedgerStateORM, 1)
            return bool(state.paused) if state is not None else False

    # --- writes ----------------------------------------------------------

    async def deposit(self, address: str, amount: int) -> int:
        address = _normalize(address)
        amount = self._positive(amount)
        async with self._write_lock, self._session_factory() as session:
            account = await session.get(AccountORM, address)
            if account is None:
                account = AccountORM(address=address, balance=0)
                session.add(account)
                state = await self._state(session)
                state.total_users += 1
            account.balance = int(account.balance) + amount
            await session.commit()
            balance = int(account.balance)
        await self._emit(LedgerEvent(name="Deposit", address=address, timestamp=self._now(), coin_id=-1, amount=amount))
        return balance

    async def withdraw(self, address: str, amount: int) -> int:
        address = _normalize(address)
        amount = self._positive(amount)
        async with self._write_lock, self._session_factory() as session:
            account = await session.get(AccountORM, address)
            current = int(account.balance) if account is not None else 0
            if account is None or amount > current:
                raise InsufficientBalanceError("Insufficient balance")
            account.balance = current - amount
            await session.commit()
            balance = int(account.balance)
        await self._emit(LedgerEvent(name="Withdrawal", address=address, timestamp=self._now(), coin_id=-1, amount=amount))
        return balance

    async def execute_trade(self, address: str, amount: int, price: int, is_buy: bool, coin_id: int) -> Trade:
        address = _normalize(address)
        amount = self._positive(amount)
        price = self._positive(price, "price")
        now = self._now()
        day = now // SECONDS_PER_DAY

        async with self._write_lock, self._session_factory() as session:
            state = await self._state(session)
            if state.paused:
                raise LedgerPausedError("Ledger is paused")

            settings = await self._settings(session, address)
            if not settings.is_active:
                raise BotInactiveError("Bot is not active")

            counter = await session.get(DailyCountORM, (address, day))
            used = counter.count if counter is not None else 0
            if used >= settings.daily_trade_limit:
                raise DailyTradeLimitError("Daily trade limit reached")

            account = await session.get(AccountORM, address)
            balance = int(account.balance) if account is not None else 0
            if is_buy:
                if account is None or amount > balance:
                    raise InsufficientBalanceError("Insufficient balance")
                account.balance = balance - amount
            else:
                if account is None:
                    account = AccountORM(address=address, balance=0)
                    session.add(account)
                    state.total_users += 1
                account.balance = balance + amount * price // WEI

            if counter is None:
                counter = DailyCountORM(address=address, day=day, count=0)
                session.add(counter)
            counter.count = used + 1
            state.total_trades += 1

            trade = TradeORM(address=address, amount=amount, price=price, timestamp=now, is_buy=bool(is_buy), coin_id=int(coin_id))
            session.add(trade)
            await session.commit()

        record = Trade(amount=amount, price=price, timestamp=now, is_buy=bool(is_buy), coin_id=int(coin_id))
        self._log_info("Trade executed address={} buy={} coin={}", address, is_buy, coin_id)
        await self._emit(
            LedgerEvent(
                name="TradeExecuted",
                address=address,
                timestamp=now,
                coin_id=int(coin_id),
                is_buy=bool(is_buy),
                amount=amount,
                price=price,
            )
        )
        return record

    async def open_position(
        self,
        address: str,
        amount: int,
        entry_price: int,
        stop_loss: int,
        take_profit: int,
        coin_id: int,
    ) -> int:
        address = _normalize(address)
        amount = self._positive(amount)
        entry_price = self._positive(entry_price, "entry price")
        now = self._now()

        async with self._write_lock, self._session_factory() as session:
            state = await self._state(session)
            if state.paused:
                raise LedgerPausedError("Ledger is paused")
            account = await session.get(AccountORM, address)
            balance = int(account.balance) if account is not None else 0
            if account is None or amount > balance:
                raise InsufficientBalanceError("Insufficient balance")
            account.balance = balance - amount

            count = await session.execute(select(func.count(PositionORM.id)).where(PositionORM.address == address))
            index = int(count.scalar_one() or 0)
            session.add(
                PositionORM(
                    address=address,
                    position_index=index,
                    amount=amount,
                    entry_price=entry_price,
                    stop_loss=max(int(stop_loss), 0),
                    take_profit=max(int(take_profit), 0),
                    timestamp=now,
                    is_active=True,
                    coin_id=int(coin_id),
                )
            )
            await session.commit()

        self._log_info("Position opened address={} index={} coin={}", address, index, coin_id)
        await self._emit(
            LedgerEvent(
                name="PositionOpened",
                address=address,
                timestamp=now,
                coin_id=int(coin_id),
                amount=amount,
                price=entry_price,
                index=index,
            )
        )
        return index

    async def close_position(self, address: str, index: int, current_price: int) -> Position:
        address = _normalize(address)
        current_price = self._positive(current_price, "current price")
        now = self._now()

        async with self._write_lock, self._session_factory() as session:
            result = await session.execute(
                select(PositionORM).where(PositionORM.address == address, PositionORM.position_index == int(index))
            )
            row = result.scalars().first()
            if row is None:
                raise PositionNotFoundError(f"Position {index} not found")
            if not row.is_active:
                raise PositionNotActiveError(f"Position {index} is not active")

            amount = int(row.amount)
            payout = max(amount * current_price // int(row.entry_price), 0)
            account = await session.get(AccountORM, address)
            if account is None:
                account = AccountORM(address=address, balance=0)
                session.add(account)
            account.balance = int(account.balance) + payout

            row.is_active = False
            row.exit_price = current_price
            row.closed_at = now
            row.pnl = payout - amount
            await session.commit()
            position = self._to_position(row)

        self._log_info("Position closed address={} index={} pnl={}", address, index, position.pnl)
        await self._emit(
            LedgerEvent(
                name="PositionClosed",
                address=address,
                timestamp=now,
                coin_id=position.coin_id,
                amount=amount,
                price=current_price,
                index=position.index,
                extra={"pnl": position.pnl},
            )
        )
        return position

    async def configure_bot_settings(
        self,
        address: str,
        max_position_size: int,
        daily_trade_limit: int,
        is_active: bool,
        min_confidence: int,
    ) -> BotSettings:
        address = _normalize(address)
        if not 1 <= int(max_position_size) <= 100:
            raise InvalidSettingsError("Invalid position size")
        if int(daily_trade_limit) < 1:
            raise InvalidSettingsError("Invalid trade limit")
        if not 0 <= int(min_confidence) <= 100:
            raise InvalidSettingsError("Invalid confidence level")

        async with self._write_lock, self._session_factory() as session:
            row = await session.get(BotSettingsORM, address)
            if row is None:
                row = BotSettingsORM(address=address)
                session.add(row)
            row.max_position_size = int(max_position_size)
            row.daily_trade_limit = int(daily_trade_limit)
            row.is_active = bool(is_active)
            row.min_confidence = int(min_confidence)
            await session.commit()
            settings = BotSettings(
                max_position_size=row.max_position_size,
                daily_trade_limit=row.daily_trade_limit,
                is_active=row.is_active,
                min_confidence=row.min_confidence,
            )
        await self._emit(LedgerEvent(name="BotConfigured", address=address, timestamp=self._now(), coin_id=-1))
        return settings

    # --- views -----------------------------------------------------------

    async def get_balance(self, address: str, caller: str | None = None) -> int:
        address = _normalize(address)
        if self._hidden(address, caller):
            return 0
        async with self._session_factory() as session:
            account = await session.get(AccountORM, address)
            return int(account.balance) if account is not None else 0

    async def get_trade_history(self, address: str, caller: str | None = None) -> list[Trade]:
        address = _normalize(address)
        if self._hidden(address, caller):
            return []
        async with self._session_factory() as session:
            result = await session.execute(select(TradeORM).where(TradeORM.address == address).order_by(TradeORM.id.asc()))
            rows = result.scalars().all()
        return [
            Trade(amount=int(row.amount), price=int(row.price), timestamp=row.timestamp, is_buy=row.is_buy, coin_id=row.coin_id)
            for row in rows
        ]

    async def get_positions(self, address: str, caller: str | None = None) -> list[Position]:
        address = _normalize(address)
        if self._hidden(address, caller):
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(PositionORM).where(PositionORM.address == address).order_by(PositionORM.position_index.asc())
            )
            rows = result.scalars().all()
        return [self._to_position(row) for row in rows]

    async def get_open_positions(self, address: str, caller: str | None = None) -> list[Position]:
        return [p for p in await self.get_positions(address, caller) if p.is_active]

    async def get_bot_config(self, address: str, caller: str | None = None) -> BotSettings:
        address = _normalize(address)
        if self._hidden(address, caller):
            return BotSettings()
        async with self._session_factory() as session:
            return await self._settings(session, address)

    async def get_daily_trade_count(self, address: str, caller: str | None = None) -> int:
        address = _normalize(address)
        if self._hidden(address, caller):
            return 0
        day = self._now() // SECONDS_PER_DAY
        async with self._session_factory() as session:
            counter = await session.get(DailyCountORM, (address, day))
            return counter.count if counter is not None else 0

    async def get_daily_open_count(self, address: str, caller: str | None = None) -> int:
        """Positions opened by ``address`` during the current UTC day."""
        address = _normalize(address)
        if self._hidden(address, caller):
            return 0
        start = self._now() // SECONDS_PER_DAY * SECONDS_PER_DAY
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(PositionORM.id)).where(
                    PositionORM.address == address,
                    PositionORM.timestamp >= start,
                    PositionORM.timestamp < start + SECONDS_PER_DAY,
                )
            )
            return int(result.scalar_one() or 0)

    async def get_public_stats(self, address: str, caller: str | None = None) -> PublicStats:
        daily = await self.get_daily_trade_count(address, caller)
        async with self._session_factory() as session:
            state = await session.get(LedgerStateORM, 1)
            total_users = state.total_users if state is not None else 0
            total_trades = state.total_trades if state is not None else 0
        return PublicStats(total_users=total_users, total_trades=total_trades, user_daily_trades=daily)

    # --- helpers ---------------------------------------------------------

    def _hidden(self, address: str, caller: str | None) -> bool:
        if not self.shielded:
            return False
        return caller is None or caller.lower() != address

    def _now(self) -> int:
        return int(self._clock())

    @staticmethod
    def _positive(value: int, label: str = "amount") -> int:
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise InvalidAmountError(f"Invalid {label}: {value!r}") from exc
        if number <= 0:
            raise InvalidAmountError(f"{label.capitalize()} must be positive")
        return number

    @staticmethod
    async def _state(session: AsyncSession) -> LedgerStateORM:
        state = await session.get(LedgerStateORM, 1)
        if state is None:
            state = LedgerStateORM(id=1, paused=False, total_users=0, total_trades=0)
            session.add(state)
        return state

    @staticmethod
    async def _settings(session: AsyncSession, address: str) -> BotSettings:
        row = await session.get(BotSettingsORM, address)
        if row is None:
            return BotSettings()
        return BotSettings(
            max_position_size=row.max_position_size,
            daily_trade_limit=row.daily_trade_limit,
            is_active=row.is_active,
            min_confidence=row.min_confidence,
        )

    @staticmethod
    def _to_position(row: PositionORM) -> Position:
        return Position(
            index=row.position_index,
            amount=int(row.amount),
            entry_price=int(row.entry_price),
            stop_loss=int(row.stop_loss),
            take_profit=int(row.take_profit),
            timestamp=row.timestamp,
            is_active=bool(row.is_active),
            coin_id=row.coin_id,
            exit_price=row.exit_price,
            closed_at=row.closed_at,
            pnl=row.pnl,
        )

    def _log_info(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "info"):
            self.logger.info(message, *args)

    def _log_error(self, message: str, *args: object) -> None:
        if self.logger is not None and hasattr(self.logger, "error"):
            self.logger.error(message, *args)
