"""HTTP API for market analysis, the ledger and the trading bot, plus a live SSE feed."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Awaitable

from fastapi import FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger as LOGGER
from pydantic import BaseModel, ConfigDict, Field

from seismic_bot.app.blockchain import BlockchainService
from seismic_bot.app.bot import TradingBot
from seismic_bot.app.config import AppConfig
from seismic_bot.app.events import EventBus, format_sse
from seismic_bot.app.health import HealthMonitor
from seismic_bot.app.ledger import InvalidAddressError, Ledger, LedgerError, is_valid_address
from seismic_bot.app.market_data import SUPPORTED_COINS, MarketDataClient, get_coin
from seismic_bot.app.state import load_state, save_state
from seismic_bot.app.strategy import SignalStrategy, quick_market_signal
from seismic_bot.app.wallet import resolve_service_address


class _Body(BaseModel):
    model_config = ConfigDict(extra="forbid")


class AmountRequest(_Body):
    address: str
    amount: str | float


class TradeRequest(_Body):
    address: str
    amount: str | float
    price: str | float
    is_buy: bool
    coin_id: int = Field(ge=0)


class OpenPositionRequest(_Body):
    address: str
    amount: str | float
    entry_price: str | float
    stop_loss: str | float
    take_profit: str | float
    coin_id: int = Field(ge=0)


class ClosePositionRequest(_Body):
    address: str
    current_price: str | float


class BotSettingsRequest(_Body):
    address: str
    max_position_size: int | None = None
    daily_trade_limit: int | None = None
    is_active: bool | None = None
    min_confidence: int | None = None


class BotStartRequest(_Body):
    coin_id: str | None = None
    address: str | None = None


def _ledger_error(exc: LedgerError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc), "code": exc.code})


async def _guard(route: str, awaitable: Awaitable[Any]) -> Any:
    try:
        return await awaitable
    except LedgerError as exc:
        return _ledger_error(exc)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("{} endpoint error: {}", route, exc)
        return JSONResponse(status_code=500, content={"error": f"{route}_failed"})


def _require_address(address: str | None) -> str:
    if not is_valid_address(address):
        raise InvalidAddressError(f"Invalid address: {address!r}")
    return address


def _chart_points(history: list[dict[str, Any]], hours: int = 24) -> list[dict[str, Any]]:
    points = []
    for point in history[-hours:]:
        stamp = str(point.get("time") or "")
        try:
            label = f"{datetime.fromisoformat(stamp).hour}:00"
        except ValueError:
            label = stamp
        points.append({"time": label, "price": float(point.get("price") or 0.0)})
    return points


def create_app(
    config: AppConfig | None = None,
    *,
    market: MarketDataClient | None = None,
    ledger: Ledger | None = None,
    strategy: SignalStrategy | None = None,
    events: EventBus | None = None,
    root_dir: Path | None = None,
    logger: Any | None = None,
) -> FastAPI:
    config = config or AppConfig()
    logger = logger or LOGGER
    root_dir = root_dir or Path.cwd()
    if not config.bot.address:
        logger.info("Service wallet address {}", resolve_service_address(config.bot))

    market = market or MarketDataClient(config.market, logger=logger)
    ledger = ledger or Ledger(root_dir / config.ledger.db_path, shielded=config.ledger.shielded, logger=logger)
    strategy = strategy or SignalStrategy(config.strategy, logger=logger)
    events = events or EventBus()
    blockchain = BlockchainService(ledger, config.ledger, logger=logger)
    bot = TradingBot(market, strategy, blockchain, events, config.bot, logger=logger, state_dir=root_dir)
    health = HealthMonitor(ledger, market, logger=logger)

    app = FastAPI(title="seismic_bot api")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.config = config
    app.state.market = market
    app.state.ledger = ledger
    app.state.strategy = strategy
    app.state.events = events
    app.state.blockchain = blockchain
    app.state.bot = bot
    app.state.health = health
    app.state.health_task = None

    @app.on_event("startup")
    async def startup_event() -> None:
        await ledger.init_db()
        blockchain.listen_to_trade_events(lambda event: events.publish("trade", event))
        app.state.health_task = asyncio.create_task(health.run_loop(), name="health-monitor")
        state = load_state(root_dir)
        if config.bot.auto_resume and state.running:
            try:
                bot.start(state.coin_id, state.address, persist=False)
                resumed = save_state(root_dir=root_dir, resumed=True)
                LOGGER.info(
                    "Resumed bot coin={} address={} resumes={}", state.coin_id, state.address, resumed.resumes
                )
            except (ValueError, LedgerError) as exc:
                LOGGER.error("Bot resume failed: {}", exc)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await bot.stop(persist=False)
        blockchain.stop_listening()
        task = app.state.health_task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            app.state.health_task = None
        await ledger.close()

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(_request: Request, exc: LedgerError) -> JSONResponse:
        return _ledger_error(exc)

    async def _analysis(coin_id: str) -> dict[str, Any]:
        coin = await market.get_coin_market(coin_id)
        history = await market.get_price_history(coin_id)
        news = await market.get_news()
        decision = strategy.analyze_market(coin, history, news)
        return {"coin": coin, "history": history, "news": news, "decision": decision}

    async def _webhook_payload(coin_id: str, address: str | None, caller: str | None = None) -> dict[str, Any]:
        analysis = await _analysis(coin_id)
        coin, decision = analysis["coin"], analysis["decision"]
        payload: dict[str, Any] = {
            "timestamp": int(datetime.now(UTC).timestamp() * 1000),
            "coin": {
                "id": coin["id"],
                "name": coin["name"],
                "symbol": coin["symbol"],
                "current_price": coin["current_price"],
                "price_change_percentage_24h": coin["price_change_percentage_24h"],
                "market_cap": coin["market_cap"],
                "total_volume": coin["total_volume"],
            },
            "price": {
                "current": coin["current_price"],
                "change_24h": coin["price_change_percentage_24h"],
                "market_cap": coin["market_cap"],
                "updated_at": coin["last_updated"],
            },
            "chart": {"prices": _chart_points(analysis["history"])},
            "aiSignal": {
                "signal": decision.signal,
                "confidence": decision.confidence,
                "positionSize": decision.position_size,
            },
            "analysis": {
                "signal": decision.signal,
                "confidence": decision.confidence,
                "reasoning": decision.reasoning,
                "positionSize": decision.position_size,
                "sentiment": (decision.sentiment or {}).get("score"),
            },
            "trades": [],
        }
        if is_valid_address(address):
            payload["balance"] = {
                "amount": await blockchain.get_balance(address, caller),
                "currency": "ETH",
                "network": blockchain.get_network()["name"],
            }
            payload["trades"] = await blockchain.get_dashboard_trades(address, caller)
        return payload

    # --- market ----------------------------------------------------------

    @app.get("/api/health")
    async def api_health():
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "network": blockchain.get_network()["name"],
            "health": health.snapshot(),
        }

    @app.get("/api/coins")
    async def api_coins():
        return [{"index": index, **coin} for index, coin in enumerate(SUPPORTED_COINS)]

    @app.get("/api/market")
    async def api_market():
        async def build() -> dict[str, Any]:
            prices = await market.get_simple_prices(["bitcoin", "ethereum"])
            news = await market.get_news(5)
            history = await market.get_price_history("bitcoin", days=1)
            return {
                "prices": prices,
                "news": news,
                **quick_market_signal(prices, news),
                "chartData": _chart_points(history),
            }

        return await _guard("market", build())

    @app.get("/api/market/{coin_id}")
    async def api_market_coin(coin_id: str):
        if get_coin(coin_id) is None:
            return JSONResponse(status_code=404, content={"error": f"Unknown coin: {coin_id}"})

        async def build() -> dict[str, Any]:
            analysis = await _analysis(coin_id)
            decision = analysis["decision"]
            return {
                "coin": analysis["coin"],
                "chart": _chart_points(analysis["history"]),
                "decision": decision.to_dict(),
                "sentiment": decision.sentiment,
                "fear_greed": await market.get_fear_greed(),
            }

        return await _guard("market_coin", build())

    @app.get("/api/opportunities")
    async def api_opportunities(limit: int = Query(default=5, ge=1, le=20)):
        async def build() -> list[dict[str, Any]]:
            coins = await market.get_top_coins(20)
            news = await market.get_news()
            return [item.to_dict() for item in strategy.score_opportunities(coins, news)[:limit]]

        return await _guard("opportunities", build())

    @app.get("/api/opportunities/best")
    async def api_best_opportunity(
        address: str | None = Query(default=None),
        x_caller_address: str | None = Header(default=None),
    ):
        if address is not None:
            _require_address(address)

        async def build() -> dict[str, Any]:
            coins = await market.get_top_coins(20)
            news = await market.get_news()
            balance, positions = 0.0, []
            if address is not None:
                balance = float(await blockchain.get_balance(address, x_caller_address))
                positions = await blockchain.get_dashboard_trades(address, x_caller_address)
            return strategy.analyze_and_trade(coins, news, balance, positions).to_dict()

        return await _guard("best_opportunity", build())

    @app.get("/api/trades")
    async def api_trades(address: str = Query(...), x_caller_address: str | None = Header(default=None)):
        _require_address(address)
        return await _guard("trades", blockchain.get_dashboard_trades(address, x_caller_address))

    @app.get("/api/balance")
    async def api_balance(address: str = Query(...), x_caller_address: str | None = Header(default=None)):
        _require_address(address)

        async def build() -> dict[str, str]:
            return {"balance": await blockchain.get_balance(address, x_caller_address)}

        return await _guard("balance", build())

    # --- ledger ----------------------------------------------------------

    @app.get("/api/blockchain/balance")
    async def chain_balance(address: str = Query(...), x_caller_address: str | None = Header(default=None)):
        _require_address(address)

        async def build() -> dict[str, str]:
            return {"address": address, "balance": await blockchain.get_balance(address, x_caller_address)}

        return await _guard("blockchain_balance", build())

    @app.get("/api/blockchain/trades")
    async def chain_trades(address: str = Query(...), x_caller_address: str | None = Header(default=None)):
        _require_address(address)
        return await _guard("blockchain_trades", blockchain.get_trade_history(address, x_caller_address))

    @app.get("/api/blockchain/positions")
    async def chain_positions(
        address: str = Query(...),
        include_closed: bool = Query(default=False),
        x_caller_address: str | None = Header(default=None),
    ):
        _require_address(address)
        if include_closed:
            return await _guard("blockchain_positions", blockchain.get_positions(address, x_caller_address))
        return await _guard("blockchain_positions", blockchain.get_open_positions(address, x_caller_address))

    @app.get("/api/blockchain/config")
    async def chain_config(address: str = Query(...), x_caller_address: str | None = Header(default=None)):
        _require_address(address)
        return await _guard("blockchain_config", blockchain.get_bot_config(address, x_caller_address))

    @app.get("/api/blockchain/stats")
    async def chain_stats(address: str = Query(...), x_caller_address: str | None = Header(default=None)):
        _require_address(address)

        async def build() -> dict[str, Any]:
            stats = await blockchain.get_public_stats(address, x_caller_address)
            return {**stats, "isPaused": await blockchain.is_paused()}

        return await _guard("blockchain_stats", build())

    @app.post("/api/blockchain/deposit")
    async def chain_deposit(body: AmountRequest):
        _require_address(body.address)
        return await _guard("deposit", blockchain.deposit(body.address, str(body.amount)))

    @app.post("/api/blockchain/withdraw")
    async def chain_withdraw(body: AmountRequest):
        _require_address(body.address)
        return await _guard("withdraw", blockchain.withdraw(body.address, str(body.amount)))

    @app.post("/api/blockchain/trade")
    async def chain_trade(body: TradeRequest):
        _require_address(body.address)
        return await _guard(
            "trade",
            blockchain.execute_trade(body.address, str(body.amount), str(body.price), body.is_buy, body.coin_id),
        )

    @app.post("/api/blockchain/positions")
    async def chain_open_position(body: OpenPositionRequest):
        _require_address(body.address)
        return await _guard(
            "open_position",
            blockchain.open_position(
                body.address,
                str(body.amount),
                str(body.entry_price),
                str(body.stop_loss),
                str(body.take_profit),
                body.coin_id,
            ),
        )

    @app.post("/api/blockchain/positions/{index}/close")
    async def chain_close_position(index: int, body: ClosePositionRequest):
        _require_address(body.address)
        return await _guard("close_position", blockchain.close_position(body.address, index, str(body.current_price)))

    @app.post("/api/blockchain/config")
    async def chain_configure(body: BotSettingsRequest):
        _require_address(body.address)
        settings = body.model_dump(exclude={"address"}, exclude_none=True)
        return await _guard("configure", blockchain.configure_bot_settings(body.address, settings))

    @app.get("/api/blockchain/network")
    async def chain_network():
        return blockchain.get_network()

    @app.get("/api/blockchain/gas")
    async def chain_gas():
        return {"gas_price_gwei": blockchain.get_gas_price()}

    # --- bot -------------------------------------------------------------

    @app.post("/api/bot/start")
    async def bot_start(body: BotStartRequest):
        coin_id = body.coin_id or config.bot.coin_id
        if get_coin(coin_id) is None:
            return JSONResponse(status_code=400, content={"error": f"Unsupported coin: {coin_id}"})
        _require_address(body.address or config.bot.address)
        started = bot.start(coin_id, body.address or config.bot.address)
        return {"started": started, **bot.status()}

    @app.post("/api/bot/stop")
    async def bot_stop():
        stopped = await bot.stop()
        return {"stopped": stopped, **bot.status()}

    @app.get("/api/bot/status")
    async def bot_status():
        return bot.status()

    # --- live feed -------------------------------------------------------

    @app.get("/api/webhook/snapshot/{coin_id}")
    async def webhook_snapshot(
        coin_id: str,
        address: str | None = Query(default=None),
        x_caller_address: str | None = Header(default=None),
    ):
        if get_coin(coin_id) is None:
            return JSONResponse(status_code=404, content={"error": f"Unknown coin: {coin_id}"})
        return await _guard("webhook_snapshot", _webhook_payload(coin_id, address, x_caller_address))

    @app.get("/api/webhook/live/{coin_id}")
    async def webhook_live(
        request: Request,
        coin_id: str,
        address: str | None = Query(default=None),
        x_caller_address: str | None = Header(default=None),
    ):
        if get_coin(coin_id) is None:
            return JSONResponse(status_code=404, content={"error": f"Unknown coin: {coin_id}"})
        if address is not None:
            _require_address(address)

        async def stream():
            queue = events.subscribe()
            try:
                yield format_sse({"type": "connected", "coin_id": coin_id}, event="connected")
                while not await request.is_disconnected():
                    try:
                        yield format_sse(await _webhook_payload(coin_id, address, x_caller_address))
                    except Exception as exc:  # noqa: BLE001
                        LOGGER.exception("Live feed error coin={}: {}", coin_id, exc)
                        yield format_sse({"error": "live_feed_failed"}, event="error")
                    with contextlib.suppress(asyncio.TimeoutError):
                        await asyncio.wait_for(queue.get(), timeout=config.server.sse_interval_sec)
            finally:
                events.unsubscribe(queue)

        return StreamingResponse(
            stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
        )

    return app
