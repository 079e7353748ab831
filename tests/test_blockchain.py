"""Tests for the ledger service facade and wallet helpers."""
import asyncio
import re

import pytest

from fakes import ALICE, BOB
from seismic_bot.app.blockchain import BlockchainService, format_units, parse_units
from seismic_bot.app.config import BotConfig, LedgerConfig
from seismic_bot.app.ledger import (
    DailyTradeLimitError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidSettingsError,
    Ledger,
)
from seismic_bot.app.wallet import generate_wallet, is_valid_address, resolve_service_address


TX_HASH = re.compile(r"^0x[0-9a-f]{64}$")


def run_service(tmp_path, scenario, **ledger_config):
    async def runner():
        config = LedgerConfig(**ledger_config)
        ledger = Ledger(tmp_path / "ledger.db", shielded=config.shielded)
        await ledger.init_db()
        service = BlockchainService(ledger, config)
        try:
            return await scenario(service)
        finally:
            await ledger.close()

    return asyncio.run(runner())


def test_parse_and_format_units() -> None:
    assert parse_units("1.5") == 1_500_000_000_000_000_000
    assert parse_units("45000") == 45_000 * 10**18
    assert parse_units(0.1) == 10**17
    assert format_units(1_500_000_000_000_000_000) == "1.5"
    assert format_units(0) == "0.0"
    assert format_units(45_000 * 10**18) == "45000.0"
    assert format_units(-(10**17)) == "-0.1"


def test_parse_units_rejects_garbage() -> None:
    with pytest.raises(InvalidAmountError):
        parse_units("abc")
    with pytest.raises(InvalidAmountError):
        parse_units("NaN")
    with pytest.raises(InvalidAmountError):
        parse_units("0.0000000000000000001")


def test_write_operations_return_receipts(tmp_path) -> None:
    async def scenario(service: BlockchainService):
        first = await service.deposit(ALICE, "2")
        second = await service.execute_trade(ALICE, "0.5", "45000", True, 0)
        return first, second, await service.get_balance(ALICE)

    first, second, balance = run_service(tmp_path, scenario)
    assert first["success"] is True
    assert TX_HASH.match(first["transaction_hash"])
    assert second["block_number"] > first["block_number"]
    assert second["gas_used"] == "300000"
    assert balance == "1.5"


def test_trade_errors_are_translated(tmp_path) -> None:
    async def scenario(service: BlockchainService):
        await service.deposit(ALICE, "1")
        with pytest.raises(InsufficientBalanceError, match="Not enough balance to execute trade"):
            await service.execute_trade(ALICE, "5", "100", True, 0)
        await service.configure_bot_settings(ALICE, {"daily_trade_limit": 1})
        await service.execute_trade(ALICE, "0.1", "100", True, 0)
        with pytest.raises(DailyTradeLimitError, match="Daily trade limit reached"):
            await service.execute_trade(ALICE, "0.1", "100", True, 0)

    run_service(tmp_path, scenario)


def test_trade_history_is_formatted(tmp_path) -> None:
    async def scenario(service: BlockchainService):
        await service.deposit(ALICE, "1")
        await service.execute_trade(ALICE, "0.25", "3000.5", True, 1)
        return await service.get_trade_history(ALICE)

    (trade,) = run_service(tmp_path, scenario)
    assert trade["amount"] == "0.25"
    assert trade["price"] == "3000.5"
    assert trade["coin"] == "Ethereum"
    assert trade["timestamp"].endswith("+00:00")


def test_configure_defaults_and_explicit_inactive(tmp_path) -> None:
    async def scenario(service: BlockchainService):
        await service.configure_bot_settings(ALICE, {})
        defaults = await service.get_bot_config(ALICE)
        await service.configure_bot_settings(ALICE, {"is_active": False, "min_confidence": 55})
        return defaults, await service.get_bot_config(ALICE)

    defaults, updated = run_service(tmp_path, scenario)
    assert defaults == {"max_position_size": 30, "daily_trade_limit": 5, "is_active": True, "min_confidence": 70}
    assert updated["is_active"] is False
    assert updated["min_confidence"] == 55


def test_configure_keeps_explicit_zero_values(tmp_path) -> None:
    async def scenario(service: BlockchainService):
        await service.configure_bot_settings(ALICE, {"min_confidence": 0})
        stored = await service.get_bot_config(ALICE)
        with pytest.raises(InvalidSettingsError):
            await service.configure_bot_settings(ALICE, {"daily_trade_limit": 0})
        return stored

    stored = run_service(tmp_path, scenario)
    assert stored["min_confidence"] == 0
    assert stored["daily_trade_limit"] == 5


def test_positions_and_dashboard_rows(tmp_path) -> None:
    async def scenario(service: BlockchainService):
        await service.deposit(ALICE, "10")
        opened = await service.open_position(ALICE, "2", "100", "95", "110", 0)
        await service.open_position(ALICE, "1", "50", "45", "60", 2)
        closed = await service.close_position(ALICE, opened["position_index"], "110")
        return (
            opened,
            closed,
            await service.get_open_positions(ALICE),
            await service.get_dashboard_trades(ALICE),
        )

    opened, closed, open_positions, rows = run_service(tmp_path, scenario)
    assert opened["position_index"] == 0
    assert closed["pnl"] == "0.2"
    assert [p["coin"] for p in open_positions] == ["Solana"]
    assert open_positions[0]["stop_loss"] == "45.0"
    assert rows[0] == {
        "id": "0",
        "asset": "Bitcoin",
        "entry": "100.0",
        "exit": "110.0",
        "pnl": 10.0,
        "status": "Closed",
        "timestamp": rows[0]["timestamp"],
    }
    assert rows[1]["status"] == "Active"
    assert rows[1]["exit"] is None


def test_public_stats_and_network(tmp_path) -> None:
    async def scenario(service: BlockchainService):
        await service.deposit(ALICE, "1")
        await service.deposit(BOB, "1")
        await service.execute_trade(ALICE, "0.1", "10", True, 0)
        return await service.get_public_stats(ALICE), await service.is_paused()

    stats, paused = run_service(tmp_path, scenario, network="local", gas_price_gwei=0.5)
    assert stats == {"totalUsers": 2, "totalTrades": 1, "userDailyTrades": 1}
    assert paused is False

    service = BlockchainService(ledger=None, config=LedgerConfig(network="local", gas_price_gwei=0.5))
    assert service.get_network()["chain_id"] == 31337
    assert service.get_gas_price() == "0.5"
    assert BlockchainService(ledger=None).get_network()["rpc_url"] == "https://sepolia.base.org"


def test_is_paused_reports_true_when_ledger_unreadable() -> None:
    class BrokenLedger:
        async def is_paused(self):
            raise RuntimeError("db locked")

    assert asyncio.run(BlockchainService(BrokenLedger()).is_paused()) is True


def test_trade_event_forwarding(tmp_path) -> None:
    received = []

    async def scenario(service: BlockchainService):
        service.listen_to_trade_events(received.append)
        await service.deposit(ALICE, "1")
        await service.execute_trade(ALICE, "0.1", "10", False, 3)
        service.stop_listening()
        await service.execute_trade(ALICE, "0.1", "10", False, 3)

    run_service(tmp_path, scenario)
    assert len(received) == 1
    assert received[0]["coin"] == "Cardano"
    assert received[0]["is_buy"] is False
    assert TX_HASH.match(received[0]["transaction_hash"])


def test_wallet_generation_and_validation() -> None:
    address, key = generate_wallet()
    again, _ = generate_wallet(key)

    assert is_valid_address(address)
    assert again == address
    assert key.startswith("0x") and len(key) == 66
    assert not is_valid_address("0x123")
    assert not is_valid_address("")
    assert not is_valid_address(None)


def test_random_private_key_creates_fresh_wallet() -> None:
    first, first_key = generate_wallet("random")
    second, _ = generate_wallet("random")

    assert is_valid_address(first) and is_valid_address(second)
    assert first != second
    assert generate_wallet(first_key)[0] == first


def test_resolve_service_address_keeps_configured_address() -> None:
    address, key = generate_wallet()
    derived = BotConfig(private_key=key)
    configured = BotConfig(address=ALICE, private_key=key)

    assert resolve_service_address(derived) == address
    assert derived.address == address
    assert resolve_service_address(configured) == ALICE
