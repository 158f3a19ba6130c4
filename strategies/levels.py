from __future__ import annotations

from engine.models import MarketSnapshot

ATR_STOP_MULTIPLIER = 1.5
ATR_TARGET_MULTIPLIER = 2.5
MIN_VOLATILITY_SCALE = 0.5


def snapshot_atr(snapshot: MarketSnapshot | None) -> float | None:
    # zero ATR carries no volatility information
    if snapshot is None or not snapshot.atr:
        return None
    return snapshot.atr


def fixed_stop_loss(entry_price: float, stop_loss_pct: float) -> float:
    return entry_price * (1 - stop_loss_pct)


def fixed_take_profit(entry_price: float, take_profit_pct: float) -> float:
    return entry_price * (1 + take_profit_pct)


def volatility_scaled_size(base_size: float, atr: float | None, atr_threshold: float) -> float:
    """Shrink ``base_size`` when ATR exceeds the threshold, never below half of it."""
    if atr is None or atr <= atr_threshold:
        return base_size
    factor = min(max(atr_threshold / atr, MIN_VOLATILITY_SCALE), 1.0)
    return base_size * factor


def atr_stop_loss(entry_price: float, stop_loss_pct: float, atr: float | None) -> float:
    stop = fixed_stop_loss(entry_price, stop_loss_pct)
    if atr is None:
        return stop
    return max(stop, entry_price - atr * ATR_STOP_MULTIPLIER)


def atr_take_profit(entry_price: float, take_profit_pct: float, atr: float | None) -> float:
    target = fixed_take_profit(entry_price, take_profit_pct)
    if atr is None:
        return target
    return min(target, entry_price + atr * ATR_TARGET_MULTIPLIER)
