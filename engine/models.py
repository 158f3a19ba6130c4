from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

SignalKind = Literal["BUY", "NEUTRAL", "FORCE_BUY"]
SubSignalKind = Literal["BULLISH", "BEARISH", "NEUTRAL"]
PositionStatus = Literal["OPEN", "CLOSED"]

MIN_PRICE_POINTS = 50


def utc_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@dataclass
class Candle:
    ts: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class MacdValues:
    macd_line: float | None
    signal_line: float | None
    histogram: float | None


@dataclass(frozen=True)
class BollingerValues:
    upper: float
    middle: float
    lower: float
    bandwidth: float


@dataclass(frozen=True)
class StochasticValues:
    percent_k: float | None
    percent_d: float | None


@dataclass(frozen=True)
class IndicatorSet:
    ma5: float | None = None
    ma20: float | None = None
    rsi14: float | None = None
    macd: MacdValues | None = None
    bollinger: BollingerValues | None = None
    stochastic: StochasticValues | None = None
    atr: float | None = None


@dataclass(frozen=True)
class MarketSnapshot:
    """One cycle's prices and indicator values for a symbol.

    ``prices`` holds closes in chronological order. High/low series are only
    present when the data source provided full candles.
    """

    symbol: str
    prices: tuple[float, ...]
    indicators: IndicatorSet = field(default_factory=IndicatorSet)
    high_prices: tuple[float, ...] | None = None
    low_prices: tuple[float, ...] | None = None
    timestamp: str = field(default_factory=utc_now)

    @property
    def current_price(self) -> float | None:
        return self.prices[-1] if self.prices else None

    @property
    def atr(self) -> float | None:
        return self.indicators.atr

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp,
            "current_price": self.current_price,
            "points": len(self.prices),
            "indicators": asdict(self.indicators),
        }


@dataclass(frozen=True)
class SubSignal:
    signal: SubSignalKind
    values: dict[str, Any]


@dataclass
class SignalResult:
    symbol: str
    signal: SignalKind = "NEUTRAL"
    score: int = 0
    details: dict[str, SubSignal] = field(default_factory=dict)
    indicators: IndicatorSet | None = None
    error: str | None = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.error is None:
            data.pop("error")
        return data


@dataclass
class Profits:
    raw: float
    percent: float


@dataclass
class Position:
    symbol: str
    entry_price: float
    quantity: float
    stop_loss_price: float
    take_profit_price: float
    highest_price: float
    trailing_stop_distance: float
    open_time: str = field(default_factory=utc_now)
    last_update_time: str = field(default_factory=utc_now)
    status: PositionStatus = "OPEN"
    exit_price: float | None = None
    close_time: str | None = None
    close_reason: str | None = None
    profits: Profits | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AlreadyOpen:
    symbol: str
    position: Position


@dataclass
class PositionEvent:
    action: Literal["OPEN", "CLOSE"]
    symbol: str
    position: dict[str, Any]
    reason: str | None = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CloseAction:
    symbol: str
    reason: str
    position: Position | None
    error: str | None = None
    action: str = "CLOSE"


@dataclass
class BuyResult:
    executed_qty: float | None
    fill_price: float | None
    order_id: str | None = None


@dataclass
class SellResult:
    executed_qty: float
    order_id: str | None = None
