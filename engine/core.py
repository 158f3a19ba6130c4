from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, replace
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from adapters.base import ExchangeGateway, with_timeout
from backtest.metrics import compute_metrics
from engine.errors import GatewayError
from engine.models import MIN_PRICE_POINTS, AlreadyOpen, MarketSnapshot, Position, SignalResult
from engine.state import EngineStateStore
from indicators.technicals import build_snapshot
from risk.manager import PositionManager
from services.config_service import RuntimeConfig
from services.notifier import EventBus
from services.scheduler import wait_next_tick
from strategies.base import Strategy

# best score a forced trade needs when no symbol is given
FORCE_TRADE_MIN_SCORE = 1


def _utc_day(now: datetime | None = None) -> str:
    return (now or datetime.now(timezone.utc)).date().isoformat()


class TradingEngine:
    """Runs trading cycles: refresh market data, manage open positions, look for entries.

    Cycles never overlap. A tick that arrives while the previous cycle is
    still running is skipped; manual closes and forced trades wait for the
    running cycle to finish.

    Safety controls: a kill switch that pauses trading and blocks start/resume,
    a cap on the USDT size of each entry, and a daily loss limit on realised
    P/L that pauses trading until the next UTC day.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        gateway: ExchangeGateway,
        strategy: Strategy,
        manager: PositionManager,
        events: EventBus,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.strategy = strategy
        self.manager = manager
        self.events = events
        self.state_store = EngineStateStore()
        self.state_store.update(daily_start_balance=config.account_balance, trading_day=_utc_day())
        self.market_data: dict[str, MarketSnapshot] = {}
        self.max_position_size = config.max_position_size
        self.daily_loss_limit = config.daily_loss_limit
        self._cycle_lock = asyncio.Lock()
        self._stopped = False

    async def run_forever(self) -> None:
        self._stopped = False
        self.start()
        while not self._stopped:
            await self.run_once()
            await wait_next_tick(self.config.timeframe)

    def start(self) -> bool:
        state = self.state_store.load()
        if state.running:
            logger.warning("[BOT] Trading bot is already running")
            return False
        if self._blocked("start"):
            return False
        self.state_store.update(running=True, started_at=state.started_at or time.time())
        logger.info("[BOT] Starting trading bot, monitoring {} symbols", len(self.config.symbols))
        return True

    def stop(self) -> None:
        self._stopped = True
        self.state_store.update(running=False)
        logger.info("[BOT] Trading bot stopped")

    def pause(self) -> bool:
        if not self.state_store.load().running:
            logger.warning("[BOT] Trading bot is already paused")
            return False
        self.state_store.update(running=False)
        logger.info("[BOT] Trading bot paused")
        return True

    def resume(self) -> bool:
        if self.state_store.load().running:
            logger.warning("[BOT] Trading bot is already running")
            return False
        if self._blocked("resume"):
            return False
        self.state_store.update(running=True)
        logger.info("[BOT] Trading bot resumed")
        return True

    def _blocked(self, action: str) -> bool:
        state = self.state_store.load()
        if state.kill_switch:
            logger.error("[SAFETY] Cannot {} bot: Kill switch is activated", action)
            return True
        if state.daily_loss_limit_reached:
            logger.error("[SAFETY] Cannot {} bot: Daily loss limit reached", action)
            return True
        return False

    def activate_kill_switch(self) -> bool:
        logger.warning("[SAFETY] Kill switch activated - stopping all trading activity")
        self.state_store.update(kill_switch=True, running=False)
        return True

    def deactivate_kill_switch(self) -> bool:
        logger.info("[SAFETY] Kill switch deactivated")
        self.state_store.update(kill_switch=False)
        return True

    def set_max_position_size(self, size_usdt: float) -> bool:
        if size_usdt <= 0:
            logger.error("[SAFETY] Invalid maximum position size: {}", size_usdt)
            return False
        self.max_position_size = size_usdt
        logger.info("[SAFETY] Maximum position size set to {} USDT", size_usdt)
        return True

    def set_daily_loss_limit(self, percent: float) -> bool:
        if percent >= 0:
            logger.error("[SAFETY] Daily loss limit must be a negative number")
            return False
        self.daily_loss_limit = percent / 100.0
        logger.info("[SAFETY] Daily loss limit set to {}%", percent)
        return True

    def check_daily_loss_limit(self, now: datetime | None = None) -> bool:
        """Roll the realised P/L over at UTC midnight; pause once the limit is hit."""
        state = self.state_store.load()
        day = _utc_day(now)
        if day != state.trading_day:
            logger.info("[SAFETY] New trading day {}, daily P/L reset", day)
            self.state_store.update(
                trading_day=day,
                daily_pnl=0.0,
                daily_start_balance=self.config.account_balance,
                daily_loss_limit_reached=False,
            )
            state = self.state_store.load()

        if state.daily_start_balance <= 0:
            return False
        pnl_fraction = state.daily_pnl / state.daily_start_balance
        if pnl_fraction > self.daily_loss_limit:
            return False
        if not state.daily_loss_limit_reached:
            logger.warning(
                "[SAFETY] Daily loss limit reached: {:.2f}% (limit: {:.2f}%)",
                pnl_fraction * 100,
                self.daily_loss_limit * 100,
            )
            self.state_store.update(daily_loss_limit_reached=True, running=False)
        return True

    def _record_close(self, position: Position) -> None:
        if position.profits is None:
            return
        state = self.state_store.load()
        self.state_store.update(daily_pnl=state.daily_pnl + position.profits.raw)

    async def run_once(self) -> bool:
        self.check_daily_loss_limit()
        state = self.state_store.load()
        if not state.running:
            return False
        if self._cycle_lock.locked():
            logger.warning("[UPDATE] Previous cycle still running, skipping this tick")
            self.state_store.update(skipped_cycles=state.skipped_cycles + 1)
            return False

        async with self._cycle_lock:
            logger.info("[UPDATE] cycle {}", state.cycles + 1)
            try:
                snapshots = await self.refresh_market_data()
                actions = await self.manager.update(snapshots)
                for action in actions:
                    if action.position is not None:
                        self._record_close(action.position)
                for symbol in self.config.symbols:
                    await self._process_symbol(symbol)
            except Exception as exc:
                logger.exception("[MAIN LOOP ERROR] {}", exc)
                self.state_store.update(last_error=str(exc))
            self.state_store.update(cycles=state.cycles + 1, last_cycle_ts=int(time.time()))
        return True

    async def refresh_market_data(self) -> dict[str, MarketSnapshot]:
        semaphore = asyncio.Semaphore(self.config.fetch_concurrency)

        async def _fetch(symbol: str) -> MarketSnapshot | None:
            async with semaphore:
                return await self._fetch_snapshot(symbol)

        results = await asyncio.gather(*(_fetch(s) for s in self.config.symbols))
        fresh = {snapshot.symbol: snapshot for snapshot in results if snapshot is not None}
        self.market_data.update(fresh)
        return fresh

    async def _fetch_snapshot(self, symbol: str) -> MarketSnapshot | None:
        try:
            candles = await self.gateway.fetch_candles(symbol, self.config.timeframe, limit=self.config.candle_limit)
        except Exception as exc:
            logger.error("[{}] Error fetching market data: {}", symbol, exc)
            return None
        if len(candles) < MIN_PRICE_POINTS:
            logger.debug("[{}] Insufficient price data", symbol)
            return None
        snapshot = build_snapshot(symbol, candles)
        self.events.publish("market_update", {"symbol": symbol, "data": snapshot.to_dict()})
        return snapshot

    async def _process_symbol(self, symbol: str) -> None:
        if self.manager.has_open_position(symbol):
            return
        snapshot = self.market_data.get(symbol)
        if snapshot is None or len(snapshot.prices) < MIN_PRICE_POINTS:
            logger.debug("[{}] Insufficient market data for analysis", symbol)
            return
        analysis = self.strategy.analyze(symbol, snapshot)
        if analysis.signal != "BUY":
            return
        try:
            await self._open_position(symbol, analysis)
        except GatewayError as exc:
            logger.error("[{}] Error opening position: {}", symbol, exc)

    async def _open_position(self, symbol: str, analysis: SignalResult) -> Position:
        snapshot = self.market_data[symbol]
        current_price = snapshot.current_price
        size = self.strategy.calculate_position_size(self.config.account_balance, self.config.risk_percent, snapshot)
        if size > self.max_position_size:
            logger.info("[SAFETY] Position size {:.2f} USDT reduced to maximum {} USDT", size, self.max_position_size)
            size = self.max_position_size
        logger.info("[{}] Opening position. Signal strength: {}/5, USDT: {:.2f}", symbol, analysis.score, size)

        if self.config.dry_run:
            logger.info("[DRY RUN] Would place market buy: {}, {:.2f} USDT", symbol, size)
            fill_price, quantity = current_price, size / current_price
        else:
            try:
                fill = await with_timeout(
                    self.gateway.place_market_buy(symbol, size),
                    self.config.order_timeout_seconds,
                    symbol,
                    "Market buy",
                )
            except GatewayError as exc:
                logger.error("[{}] Error executing buy order: {}", symbol, exc)
                raise
            fill_price = fill.fill_price or current_price
            quantity = fill.executed_qty or size / current_price

        result = self.manager.open(symbol, fill_price, quantity, snapshot)
        if isinstance(result, AlreadyOpen):
            return result.position
        state = self.state_store.load()
        self.state_store.update(total_trades=state.total_trades + 1)
        return result

    async def force_trade(self, symbol: str | None = None) -> dict[str, Any]:
        logger.info("[FORCE TRADE] Executing forced trade{}", f" for {symbol}" if symbol else "")
        if self.state_store.load().kill_switch:
            logger.error("[SAFETY] Forced trade rejected: Kill switch is activated")
            return {"status": "Kill switch is activated"}
        async with self._cycle_lock:
            if symbol:
                if self.manager.has_open_position(symbol):
                    return {"status": f"Position already open for {symbol}", "symbol": symbol}
                snapshot = self.market_data.get(symbol)
                if snapshot is None or len(snapshot.prices) < MIN_PRICE_POINTS:
                    return {"status": f"No viable data for {symbol}"}
                analysis = replace(self.strategy.analyze(symbol, snapshot), signal="FORCE_BUY")
                position = await self._open_position(symbol, analysis)
                return self._forced_result(symbol, analysis, position)

            best: SignalResult | None = None
            for sym in self.config.symbols:
                if self.manager.has_open_position(sym):
                    continue
                snapshot = self.market_data.get(sym)
                if snapshot is None or len(snapshot.prices) < MIN_PRICE_POINTS:
                    continue
                analysis = self.strategy.analyze(sym, snapshot)
                if best is None or analysis.score > best.score:
                    best = analysis

            if best is not None and best.score > FORCE_TRADE_MIN_SCORE:
                analysis = replace(best, signal="FORCE_BUY")
                position = await self._open_position(best.symbol, analysis)
                return self._forced_result(best.symbol, analysis, position)
            return {"status": "No viable trading opportunities found"}

    def _forced_result(self, symbol: str, analysis: SignalResult, position: Position) -> dict[str, Any]:
        return {
            "status": "Trade executed successfully",
            "symbol": symbol,
            "signal": analysis.signal,
            "score": analysis.score,
            "position": position.to_dict(),
        }

    async def close_position(self, symbol: str) -> Position | None:
        async with self._cycle_lock:
            return await self._close_at_market(symbol)

    async def _close_at_market(self, symbol: str) -> Position | None:
        if not self.manager.has_open_position(symbol):
            return None
        snapshot = self.market_data.get(symbol)
        if snapshot is None or snapshot.current_price is None:
            raise ValueError(f"No market price available for {symbol}")
        closed = await self.manager.close(symbol, snapshot.current_price, "MANUAL_CLOSE")
        if closed is not None:
            self._record_close(closed)
        return closed

    async def emergency_close_all(self) -> list[Position]:
        logger.warning("[SAFETY] Emergency closing all positions")
        closed: list[Position] = []
        async with self._cycle_lock:
            symbols = list(self.manager.get_open_positions())
            for symbol in symbols:
                try:
                    position = await self._close_at_market(symbol)
                except (GatewayError, ValueError) as exc:
                    logger.error("[SAFETY] Error closing position for {}: {}", symbol, exc)
                    continue
                if position is not None:
                    closed.append(position)
        logger.info("[SAFETY] Emergency closed {}/{} positions", len(closed), len(symbols))
        return closed

    def safety_status(self) -> dict[str, Any]:
        state = self.state_store.load()
        return {
            "kill_switch": state.kill_switch,
            "daily_loss_limit_reached": state.daily_loss_limit_reached,
            "max_position_size_limit": self.max_position_size,
            "daily_loss_limit_pct": self.daily_loss_limit * 100,
            "daily_pnl": state.daily_pnl,
        }

    def status(self) -> dict[str, Any]:
        state = self.state_store.load()
        metrics = compute_metrics(self.manager.get_closed_positions())
        return {
            "running": state.running,
            "dry_run": self.config.dry_run,
            "uptime": self.state_store.uptime(),
            "start_time": state.started_at,
            "cycles": state.cycles,
            "skipped_cycles": state.skipped_cycles,
            "last_cycle_ts": state.last_cycle_ts,
            "last_error": state.last_error,
            "total_trades": state.total_trades,
            "closed_trades": metrics.total_trades,
            "win_rate": metrics.win_rate,
            "total_profit_loss": metrics.total_profit_loss,
            "best_trade": asdict(metrics.best_trade) if metrics.best_trade else None,
            "account_balance": self.config.account_balance,
            "active_pairs_count": len(self.market_data),
            "total_pairs_count": len(self.config.symbols),
            "open_positions": len(self.manager.get_open_positions()),
            "safety_status": self.safety_status(),
        }

    def get_market_data(self, symbol: str) -> MarketSnapshot | None:
        return self.market_data.get(symbol)

    def get_all_market_data(self) -> dict[str, MarketSnapshot]:
        return dict(self.market_data)
