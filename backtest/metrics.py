from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from engine.models import Position


@dataclass
class BestTrade:
    symbol: str
    profit: float


@dataclass
class TradeMetrics:
    total_trades: int
    wins: int
    win_rate: float
    total_profit_loss: float
    best_trade: BestTrade | None


def compute_metrics(closed: Iterable[Position]) -> TradeMetrics:
    positions = list(closed)
    total = 0.0
    wins = 0
    best: BestTrade | None = None
    for position in positions:
        if position.profits is None:
            continue
        total += position.profits.raw
        if position.profits.percent > 0:
            wins += 1
        if best is None or position.profits.percent > best.profit:
            best = BestTrade(symbol=position.symbol, profit=position.profits.percent)
    win_rate = wins / len(positions) * 100 if positions else 0.0
    return TradeMetrics(
        total_trades=len(positions),
        wins=wins,
        win_rate=win_rate,
        total_profit_loss=total,
        best_trade=best,
    )
