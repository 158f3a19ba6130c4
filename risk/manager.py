from __future__ import annotations

from dataclasses import replace
from typing import Mapping

from loguru import logger

from adapters.base import ExchangeGateway, with_timeout
from data.store import PositionStore
from engine.errors import GatewayError
from engine.models import (
    AlreadyOpen,
    CloseAction,
    MarketSnapshot,
    Position,
    PositionEvent,
    Profits,
    utc_now,
)
from services.config_service import RuntimeConfig
from services.notifier import EventBus
from strategies.base import Strategy

# favorable move (fraction of entry) before the stop starts trailing up
DYNAMIC_STOP_TRIGGER = 0.02
# share of the favorable move locked in by the raised stop
DYNAMIC_STOP_LOCK = 0.1


class PositionManager:
    """Opens, watches and closes positions held in a ``PositionStore``.

    Not safe for concurrent use: the engine runs one cycle at a time and routes
    manual closes and forced trades through the same lock.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        gateway: ExchangeGateway,
        strategy: Strategy,
        store: PositionStore,
        events: EventBus | None = None,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.strategy = strategy
        self.store = store
        self.events = events

    def open(self, symbol: str, entry_price: float, quantity: float, snapshot: MarketSnapshot | None) -> Position | AlreadyOpen:
        existing = self.store.get(symbol)
        if existing is not None:
            logger.warning("[OPEN POSITION] {} already has an open position, ignoring", symbol)
            return AlreadyOpen(symbol=symbol, position=replace(existing))

        stop_loss = self.strategy.calculate_stop_loss(entry_price, snapshot)
        take_profit = self.strategy.calculate_take_profit(entry_price, snapshot)
        position = Position(
            symbol=symbol,
            entry_price=entry_price,
            quantity=quantity,
            stop_loss_price=stop_loss,
            take_profit_price=take_profit,
            highest_price=entry_price,
            trailing_stop_distance=entry_price * self.config.trailing_stop_pct,
        )
        self.store.add(position)
        logger.info(
            "[POSITION OPENED] {}: Entry={}, Qty={}, SL={}, TP={}",
            symbol,
            entry_price,
            quantity,
            stop_loss,
            take_profit,
        )
        self._emit("OPEN", position)
        return replace(position)

    async def close(self, symbol: str, exit_price: float, reason: str) -> Position | None:
        position = self.store.get(symbol)
        if position is None:
            logger.warning("[CLOSE POSITION] No open position found for {}", symbol)
            return None

        raw = (exit_price - position.entry_price) * position.quantity
        percent = (exit_price / position.entry_price - 1) * 100

        if self.config.dry_run:
            logger.info("[DRY RUN] Would close position for {}: Exit={}, P/L={:.2f}%", symbol, exit_price, percent)
        else:
            try:
                await with_timeout(
                    self.gateway.place_market_sell(symbol, position.quantity),
                    self.config.order_timeout_seconds,
                    symbol,
                    "Market sell",
                )
            except GatewayError as exc:
                logger.error("[CLOSE POSITION ERROR] {}: {}", symbol, exc)
                raise

        position.exit_price = exit_price
        position.close_time = utc_now()
        position.close_reason = reason
        position.profits = Profits(raw=raw, percent=percent)
        position.status = "CLOSED"
        closed = self.store.archive(symbol)
        logger.info("[POSITION CLOSED] {}: Exit={}, P/L={:.2f}%, Reason={}", symbol, exit_price, percent, reason)
        self._emit("CLOSE", closed, reason)
        return closed

    async def update(self, snapshots: Mapping[str, MarketSnapshot]) -> list[CloseAction]:
        actions: list[CloseAction] = []
        for symbol in self.store.symbols():
            snapshot = snapshots.get(symbol)
            if snapshot is None or not snapshot.prices:
                logger.warning("[UPDATE POSITION] No market data available for {}", symbol)
                continue
            position = self.store.get(symbol)
            if position is None:
                continue

            current_price = snapshot.current_price
            if current_price > position.highest_price:
                position.highest_price = current_price
                position.last_update_time = utc_now()

            reason = self._exit_reason(position, current_price)
            if reason is None:
                self._update_dynamic_levels(position, snapshot)
                continue

            logger.info("[{}] {} triggered at {}", reason.replace("_", " "), symbol, current_price)
            try:
                closed = await self.close(symbol, current_price, reason)
            except GatewayError as exc:
                actions.append(CloseAction(symbol=symbol, reason=reason, position=None, error=str(exc)))
                continue
            actions.append(CloseAction(symbol=symbol, reason=reason, position=closed))
        return actions

    def has_open_position(self, symbol: str) -> bool:
        return self.store.has(symbol)

    def get_open_positions(self) -> dict[str, Position]:
        return self.store.open_positions()

    def get_closed_positions(self) -> list[Position]:
        return self.store.closed_positions()

    def _exit_reason(self, position: Position, price: float) -> str | None:
        if price <= position.stop_loss_price:
            return "STOP_LOSS"
        if price >= position.take_profit_price:
            return "TAKE_PROFIT"
        trailing_stop = position.highest_price * (1 - self.config.trailing_stop_pct)
        if position.highest_price > position.entry_price and price < trailing_stop:
            return "TRAILING_STOP"
        return None

    def _update_dynamic_levels(self, position: Position, snapshot: MarketSnapshot) -> None:
        if not snapshot.atr or snapshot.current_price <= position.entry_price:
            return
        move = position.highest_price - position.entry_price
        if move / position.entry_price <= DYNAMIC_STOP_TRIGGER:
            return
        new_stop = max(position.stop_loss_price, position.entry_price + move * DYNAMIC_STOP_LOCK)
        if new_stop > position.stop_loss_price:
            position.stop_loss_price = new_stop
            logger.info("[DYNAMIC SL] Updated stop loss for {} to {}", position.symbol, new_stop)

    def _emit(self, action: str, position: Position, reason: str | None = None) -> None:
        if self.events is None:
            return
        event = PositionEvent(action=action, symbol=position.symbol, position=position.to_dict(), reason=reason)
        self.events.publish("position_update", event.to_dict())
