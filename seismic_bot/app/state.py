"""Persisted trading bot lifecycle (data/state.yml), used to resume after a restart."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml

STATE_FILE = Path("data") / "state.yml"


@dataclass(slots=True)
class BotState:
    running: bool = False
    coin_id: str = "bitcoin"
    address: str = ""
    started_at: datetime | None = None
    stopped_at: datetime | None = None
    resumes: int = 0


def _state_path(root_dir: Path | None = None) -> Path:
    return (root_dir or Path.cwd()) / STATE_FILE


def _parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _to_payload(state: BotState) -> dict[str, Any]:
    return {
        "running": state.running,
        "coin_id": state.coin_id,
        "address": state.address,
        "started_at": state.started_at.isoformat() if state.started_at else None,
        "stopped_at": state.stopped_at.isoformat() if state.stopped_at else None,
        "resumes": state.resumes,
    }


def load_state(root_dir: Path | None = None) -> BotState:
    path = _state_path(root_dir)
    if not path.exists():
        return BotState()

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return BotState(
        running=bool(raw.get("running", False)),
        coin_id=str(raw.get("coin_id") or "bitcoin"),
        address=str(raw.get("address") or ""),
        started_at=_parse_dt(raw.get("started_at")),
        stopped_at=_parse_dt(raw.get("stopped_at")),
        resumes=int(raw.get("resumes") or 0),
    )


def save_state(
    running: bool | None = None,
    root_dir: Path | None = None,
    coin_id: str | None = None,
    address: str | None = None,
    started_at: datetime | None = None,
    resumed: bool = False,
) -> BotState:
    """Merge the given fields into the stored state and write it back."""
    path = _state_path(root_dir)
    path.parent.mkdir(parents=True, exist_ok=True)

    state = load_state(root_dir)
    if running is not None:
        if state.running and not running:
            state.stopped_at = datetime.now(UTC)
        state.running = running
    if coin_id is not None:
        state.coin_id = coin_id
    if address is not None:
        state.address = address
    if started_at is not None:
        state.started_at = started_at
        state.stopped_at = None
    if resumed:
        state.resumes += 1

    tmp = path.with_suffix(".yml.tmp")
    tmp.write_text(yaml.safe_dump(_to_payload(state), allow_unicode=True, sort_keys=False), encoding="utf-8")
    tmp.replace(path)
    return state
