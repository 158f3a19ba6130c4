from __future__ import annotations

import pandas as pd
from loguru import logger

from adapters.base import ExchangeGateway
from adapters.paper import PaperAdapter
from data.store import PositionStore
from engine.errors import GatewayError
from engine.models import MIN_PRICE_POINTS, BuyResult, Candle, Position, SellResult
from indicators.technicals import build_snapshot
from risk.manager import PositionManager
from services.config_service import RuntimeConfig
from strategies.base import Strategy
from strategies.registry import build_strategy


def load_candles(csv_path: str) -> list[Candle]:
    df = pd.read_csv(csv_path)
    return [
        Candle(
            ts=int(row["timestamp"]),
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=float(row.get("volume", 0)),
        )
        for _, row in df.iterrows()
    ]


class ReplayMarketData(ExchangeGateway):
    """Serves recorded candles up to a movable cursor, as if they were live."""

    def __init__(self, candles: list[Candle]) -> None:
        self.candles = candles
        self.cursor = 0

    async def fetch_candles(self, symbol: str, timeframe: str, limit: int = 200) -> list[Candle]:
        return self.candles[max(0, self.cursor + 1 - limit) : self.cursor + 1]

    async def place_market_buy(self, symbol: str, usdt_amount: float) -> BuyResult:
        raise GatewayError("Recorded market data cannot execute orders", symbol=symbol)

    async def place_market_sell(self, symbol: str, quantity: float) -> SellResult:
        raise GatewayError("Recorded market data cannot execute orders", symbol=symbol)


async def run_backtest(
    csv_path: str,
    config: RuntimeConfig,
    strategy: Strategy | None = None,
    symbol: str | None = None,
) -> list[Position]:
    """Replay CSV candles through the strategy with paper fills at each candle close.

    Positions still open after the last candle are closed at its close with
    reason ``END_OF_DATA``. Returns every closed position.
    """
    config = config.model_copy(update={"dry_run": False})
    strategy = strategy or build_strategy(config)
    symbol = symbol or (config.symbols[0] if config.symbols else "BACKTEST")
    candles = load_candles(csv_path)
    replay = ReplayMarketData(candles)
    gateway = PaperAdapter(replay, timeframe=config.timeframe)
    manager = PositionManager(config, gateway, strategy, PositionStore())

    for i in range(MIN_PRICE_POINTS - 1, len(candles)):
        replay.cursor = i
        window = await gateway.fetch_candles(symbol, config.timeframe, limit=config.candle_limit)
        snapshot = build_snapshot(symbol, window)
        await manager.update({symbol: snapshot})
        if manager.has_open_position(symbol):
            continue
        analysis = strategy.analyze(symbol, snapshot)
        if analysis.signal != "BUY":
            continue
        size = strategy.calculate_position_size(config.account_balance, config.risk_percent, snapshot)
        fill = await gateway.place_market_buy(symbol, size)
        manager.open(symbol, fill.fill_price, fill.executed_qty, snapshot)

    if candles and manager.has_open_position(symbol):
        await manager.close(symbol, candles[-1].close, "END_OF_DATA")
    closed = manager.get_closed_positions()
    logger.info("Backtest of {} finished: {} candles, {} closed positions", symbol, len(candles), len(closed))
    return closed
