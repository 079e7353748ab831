"""Application entrypoint."""

from __future__ import annotations

import argparse
from pathlib import Path

import uvicorn

from seismic_bot.app.config import AppConfig, load_config
from seismic_bot.app.logger import setup_logger
from seismic_bot.app.state import load_state
from seismic_bot.web.server import create_app


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="seismic-bot", description="Crypto signal bot API server")
    parser.add_argument("--config", default="config.yml", help="path to config.yml")
    parser.add_argument("--root", default=".", help="directory holding data/ and logs/")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    root_dir = Path(args.root).resolve()
    config_path = Path(args.config)
    config: AppConfig = load_config(config_path if config_path.exists() else None)
    logger = setup_logger(root_dir / config.logging.log_dir, config.logging.level)

    if not config_path.exists():
        logger.warning("Config file {} not found, using defaults and environment", config_path)

    bot_state = load_state(root_dir)
    logger.info(
        "Starting API network={} shielded={} bot_running={} coin={}",
        config.ledger.network,
        config.ledger.shielded,
        bot_state.running,
        bot_state.coin_id,
    )
    app = create_app(config, root_dir=root_dir, logger=logger)
    uvicorn.run(
        app,
        host=args.host or config.server.host,
        port=args.port or config.server.port,
        log_level=config.logging.level.lower() if config.logging.level != "SUCCESS" else "info",
    )


if __name__ == "__main__":
    main()
