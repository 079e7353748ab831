"""Wallet helpers: key generation, address validation and the service address."""

from __future__ import annotations

from eth_account import Account

from seismic_bot.app.config import BotConfig
from seismic_bot.app.ledger import is_valid_address


def generate_wallet(private_key: str | None = None) -> tuple[str, str]:
    """Return ``(address, private_key_hex)``.

    A fresh key is created when ``private_key`` is empty or the literal ``"random"``.
    """
    if not private_key or private_key.strip().lower() == "random":
        account = Account.create()
    else:
        account = Account.from_key(private_key.strip())
    key_hex = account.key.hex()
    if not key_hex.startswith("0x"):
        key_hex = f"0x{key_hex}"
    return account.address, key_hex


def resolve_service_address(bot_config: BotConfig) -> str:
    """Fill ``bot_config.address`` from ``private_key`` when no address is configured."""
    if not bot_config.address:
        bot_config.address, _ = generate_wallet(bot_config.private_key or None)
    return bot_config.address


__all__ = ["generate_wallet", "is_valid_address", "resolve_service_address"]
