from __future__ import annotations

from engine.models import MIN_PRICE_POINTS, MarketSnapshot, SignalResult
from strategies.base import Strategy
from strategies.levels import fixed_stop_loss, fixed_take_profit


class FixedPercentStrategy(Strategy):
    """Never signals; sizes and exits at fixed percentages of entry."""

    name = "FixedPercentStrategy"
    description = "Fixed-percentage sizing, stop loss and take profit"

    def analyze(self, symbol: str, snapshot: MarketSnapshot | None) -> SignalResult:
        if snapshot is None or len(snapshot.prices) < MIN_PRICE_POINTS:
            return SignalResult(symbol=symbol, error="Insufficient data for analysis")
        return SignalResult(symbol=symbol, indicators=snapshot.indicators)

    def calculate_position_size(self, account_size: float, risk_percent: float, snapshot: MarketSnapshot | None) -> float:
        return account_size * risk_percent

    def calculate_stop_loss(self, entry_price: float, snapshot: MarketSnapshot | None) -> float:
        return fixed_stop_loss(entry_price, self.config.stop_loss_pct)

    def calculate_take_profit(self, entry_price: float, snapshot: MarketSnapshot | None) -> float:
        return fixed_take_profit(entry_price, self.config.take_profit_pct)
