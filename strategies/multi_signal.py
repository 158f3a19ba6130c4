from __future__ import annotations

from engine.models import MIN_PRICE_POINTS, MarketSnapshot, SignalResult, SubSignal
from strategies.base import Strategy
from strategies.levels import atr_stop_loss, atr_take_profit, snapshot_atr, volatility_scaled_size

STOCHASTIC_OVERSOLD = 20


class MultiSignalStrategy(Strategy):
    """Composite buy signal: one point per bullish indicator family.

    Families are only scored when their inputs are available, so the score is
    out of however many families the snapshot carries, at most five.
    """

    name = "MultiSignalStrategy"
    description = "Composite signal scoring using multiple technical indicators"

    def analyze(self, symbol: str, snapshot: MarketSnapshot | None) -> SignalResult:
        if snapshot is None or len(snapshot.prices) < MIN_PRICE_POINTS:
            return SignalResult(symbol=symbol, error="Insufficient data for analysis")

        ind = snapshot.indicators
        current_price = snapshot.current_price
        details: dict[str, SubSignal] = {}

        if ind.ma5 is not None and ind.ma20 is not None:
            bullish = ind.ma5 > ind.ma20
            details["moving_average_crossover"] = SubSignal(
                "BULLISH" if bullish else "BEARISH",
                {"ma5": ind.ma5, "ma20": ind.ma20},
            )

        if ind.rsi14 is not None:
            threshold = self.config.rsi_oversold
            details["rsi"] = SubSignal(
                "BULLISH" if ind.rsi14 < threshold else "NEUTRAL",
                {"rsi14": ind.rsi14, "threshold": threshold},
            )

        macd = ind.macd
        if macd is not None and macd.macd_line is not None and macd.signal_line is not None:
            details["macd"] = SubSignal(
                "BULLISH" if macd.macd_line > macd.signal_line else "BEARISH",
                {"macd_line": macd.macd_line, "signal_line": macd.signal_line, "histogram": macd.histogram},
            )

        bands = ind.bollinger
        if bands is not None and bands.lower is not None:
            details["bollinger"] = SubSignal(
                "BULLISH" if current_price < bands.lower else "NEUTRAL",
                {"upper": bands.upper, "middle": bands.middle, "lower": bands.lower, "bandwidth": bands.bandwidth},
            )

        stoch = ind.stochastic
        if stoch is not None and stoch.percent_k is not None:
            details["stochastic"] = SubSignal(
                "BULLISH" if stoch.percent_k < STOCHASTIC_OVERSOLD else "NEUTRAL",
                {"percent_k": stoch.percent_k, "percent_d": stoch.percent_d},
            )

        score = sum(1 for d in details.values() if d.signal == "BULLISH")
        return SignalResult(
            symbol=symbol,
            signal="BUY" if score >= self.config.min_signal_score else "NEUTRAL",
            score=score,
            details=details,
            indicators=ind,
        )

    def calculate_position_size(self, account_size: float, risk_percent: float, snapshot: MarketSnapshot | None) -> float:
        return volatility_scaled_size(account_size * risk_percent, snapshot_atr(snapshot), self.config.atr_threshold)

    def calculate_stop_loss(self, entry_price: float, snapshot: MarketSnapshot | None) -> float:
        return atr_stop_loss(entry_price, self.config.stop_loss_pct, snapshot_atr(snapshot))

    def calculate_take_profit(self, entry_price: float, snapshot: MarketSnapshot | None) -> float:
        return atr_take_profit(entry_price, self.config.take_profit_pct, snapshot_atr(snapshot))
