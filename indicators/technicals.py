from __future__ import annotations

from typing import Sequence

import pandas as pd

from engine.models import (
    BollingerValues,
    Candle,
    IndicatorSet,
    MacdValues,
    MarketSnapshot,
    StochasticValues,
)


def _series(values: Sequence[float]) -> pd.Series:
    return pd.Series(list(values), dtype="float64")


def ema_series(prices: Sequence[float], period: int) -> pd.Series | None:
    """EMA seeded with the SMA of the first ``period`` values."""
    if len(prices) < period:
        return None
    s = _series(prices)
    seeded = s.iloc[period - 1 :].copy()
    seeded.iloc[0] = s.iloc[:period].mean()
    return seeded.ewm(alpha=2 / (period + 1), adjust=False).mean()


def calc_ma(prices: Sequence[float], period: int) -> float | None:
    if len(prices) < period:
        return None
    return float(_series(prices).iloc[-period:].mean())


def calc_ema(prices: Sequence[float], period: int) -> float | None:
    ema = ema_series(prices, period)
    if ema is None:
        return None
    return float(ema.iloc[-1])


def calc_rsi(prices: Sequence[float], period: int = 14) -> float | None:
    if len(prices) < period + 1:
        return None
    diffs = _series(prices).diff().iloc[-period:]
    gains = diffs.clip(lower=0).sum()
    losses = -diffs.clip(upper=0).sum()
    if losses == 0:
        return 100.0
    rs = gains / losses
    return float(100 - 100 / (1 + rs))


def calc_macd(
    prices: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MacdValues | None:
    if len(prices) < slow_period:
        return None
    fast = ema_series(prices, fast_period)
    slow = ema_series(prices, slow_period)
    macd = (fast - slow).dropna()
    if len(macd) < signal_period:
        return MacdValues(macd_line=None, signal_line=None, histogram=None)
    macd_line = float(macd.iloc[-1])
    signal_line = calc_ema(macd.tolist(), signal_period)
    return MacdValues(macd_line=macd_line, signal_line=signal_line, histogram=macd_line - signal_line)


def calc_bollinger_bands(prices: Sequence[float], period: int = 20, multiplier: float = 2.0) -> BollingerValues | None:
    if len(prices) < period:
        return None
    window = _series(prices).iloc[-period:]
    ma = float(window.mean())
    std = float(window.std(ddof=0))
    return BollingerValues(
        upper=ma + multiplier * std,
        middle=ma,
        lower=ma - multiplier * std,
        bandwidth=(2 * multiplier * std) / ma if ma else 0.0,
    )


def calc_stochastic(
    prices: Sequence[float],
    high_prices: Sequence[float] | None = None,
    low_prices: Sequence[float] | None = None,
    period: int = 14,
    smooth_k: int = 3,
    smooth_d: int = 3,
) -> StochasticValues | None:
    highs = high_prices if high_prices is not None else prices
    lows = low_prices if low_prices is not None else prices
    if len(prices) < period or len(highs) < period or len(lows) < period:
        return None

    close = _series(prices)
    highest = _series(highs).rolling(period).max()
    lowest = _series(lows).rolling(period).min()
    span = highest - lowest
    raw_k = ((close - lowest) / span * 100).where(span != 0, 100.0).iloc[period - 1 :]

    k_values = raw_k.rolling(smooth_k).mean().dropna() if smooth_k > 1 else raw_k
    if k_values.empty:
        return StochasticValues(percent_k=None, percent_d=None)
    d_values = k_values.rolling(smooth_d).mean().dropna()
    return StochasticValues(
        percent_k=float(k_values.iloc[-1]),
        percent_d=float(d_values.iloc[-1]) if not d_values.empty else None,
    )


def calc_atr(
    close_prices: Sequence[float],
    high_prices: Sequence[float] | None = None,
    low_prices: Sequence[float] | None = None,
    period: int = 14,
) -> float | None:
    if len(close_prices) < period + 1:
        return None
    close = _series(close_prices)
    prev_close = close.shift()
    if high_prices is None or low_prices is None:
        tr = (close - prev_close).abs()
    else:
        if len(high_prices) < period + 1 or len(low_prices) < period + 1:
            return None
        high = _series(high_prices)
        low = _series(low_prices)
        tr = pd.concat(
            [
                (high - low).abs(),
                (high - prev_close).abs(),
                (prev_close - low).abs(),
            ],
            axis=1,
        ).max(axis=1)
    return float(tr.iloc[1:].iloc[-period:].mean())


def compute_indicators(
    prices: Sequence[float],
    high_prices: Sequence[float] | None = None,
    low_prices: Sequence[float] | None = None,
) -> IndicatorSet:
    return IndicatorSet(
        ma5=calc_ma(prices, 5),
        ma20=calc_ma(prices, 20),
        rsi14=calc_rsi(prices, 14),
        macd=calc_macd(prices, 12, 26, 9),
        bollinger=calc_bollinger_bands(prices, 20, 2.0),
        stochastic=calc_stochastic(prices, high_prices, low_prices, 14),
        atr=calc_atr(prices, high_prices, low_prices, 14) if high_prices is not None else None,
    )


def build_snapshot(symbol: str, candles: Sequence[Candle]) -> MarketSnapshot:
    prices = tuple(float(c.close) for c in candles)
    highs = tuple(float(c.high) for c in candles)
    lows = tuple(float(c.low) for c in candles)
    return MarketSnapshot(
        symbol=symbol,
        prices=prices,
        high_prices=highs,
        low_prices=lows,
        indicators=compute_indicators(prices, highs, lows),
    )
