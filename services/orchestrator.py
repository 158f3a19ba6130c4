from __future__ import annotations

import asyncio

from loguru import logger

from adapters.base import ExchangeGateway
from adapters.binance_spot import BinanceSpotAdapter
from adapters.mexc_spot import MexcSpotAdapter
from adapters.paper import PaperAdapter, RandomWalkMarketData
from data.store import PositionStore
from engine.core import TradingEngine
from engine.errors import GatewayError
from risk.manager import PositionManager
from services.config_service import BotSettings, ConfigService, RuntimeConfig
from services.notifier import EventBus
from strategies.registry import build_strategy


def build_gateway(config: RuntimeConfig) -> ExchangeGateway:
    if config.exchange == "mexc":
        return MexcSpotAdapter(config.api_key, config.api_secret, config.base_url)
    if config.exchange == "binance":
        return BinanceSpotAdapter(config.api_key, config.api_secret)
    if config.exchange == "paper":
        return PaperAdapter(MexcSpotAdapter(base_url=config.base_url), timeframe=config.timeframe)
    if config.exchange == "simulated":
        return PaperAdapter(RandomWalkMarketData(), timeframe=config.timeframe)
    raise ValueError(f"Unknown exchange: {config.exchange}")


def build_engine(config: RuntimeConfig, events: EventBus, gateway: ExchangeGateway | None = None) -> TradingEngine:
    gateway = gateway or build_gateway(config)
    strategy = build_strategy(config)
    manager = PositionManager(config, gateway, strategy, PositionStore(), events)
    return TradingEngine(config, gateway, strategy, manager, events)


class EngineOrchestrator:
    """Owns the engine task and exposes the control surface used by the API and bot."""

    def __init__(self, settings: BotSettings, events: EventBus, gateway: ExchangeGateway | None = None) -> None:
        self.settings = settings
        self.events = events
        self.config_service = ConfigService(settings)
        self.config = self.config_service.load()
        self.engine = build_engine(self.config, events, gateway)
        self.exchange_info: dict = {}
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        logger.info("[BOT] Initializing trading bot (dry run: {})", self.config.dry_run)
        logger.info("[POSITIONS] {} open positions found", len(self.engine.manager.get_open_positions()))
        if not self.config.dry_run:
            await self.load_exchange_info()
        self._task = asyncio.create_task(self.engine.run_forever())

    async def load_exchange_info(self) -> dict:
        try:
            self.exchange_info = await self.engine.gateway.get_exchange_info()
        except GatewayError as exc:
            logger.error("[BOT] Could not load exchange info: {}", exc)
            return self.exchange_info
        listed = {s.get("symbol") for s in self.exchange_info.get("symbols", [])}
        unknown = [s for s in self.config.symbols if listed and s not in listed]
        if unknown:
            logger.warning("[BOT] Symbols not listed on {}: {}", self.config.exchange, ", ".join(unknown))
        return self.exchange_info

    def pause(self) -> bool:
        return self.engine.pause()

    def resume(self) -> bool:
        return self.engine.resume()

    async def kill(self) -> int:
        """Engage the kill switch and flatten every open position."""
        self.engine.activate_kill_switch()
        closed = await self.engine.emergency_close_all()
        logger.warning("[SAFETY] Kill switch engaged, {} positions closed", len(closed))
        return len(closed)

    async def stop(self) -> None:
        self.engine.stop()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.engine.gateway.close()
        logger.info("[SHUTDOWN] Graceful shutdown completed")
