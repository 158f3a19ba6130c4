from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from engine.models import MarketSnapshot, SignalResult
from services.config_service import RuntimeConfig


class Strategy(ABC):
    """What the engine needs from a strategy: a verdict, a size and exit levels."""

    name: str = "Strategy"
    description: str = ""

    def __init__(self, config: RuntimeConfig) -> None:
        self.config = config

    @abstractmethod
    def analyze(self, symbol: str, snapshot: MarketSnapshot | None) -> SignalResult:
        raise NotImplementedError

    @abstractmethod
    def calculate_position_size(self, account_size: float, risk_percent: float, snapshot: MarketSnapshot | None) -> float:
        raise NotImplementedError

    @abstractmethod
    def calculate_stop_loss(self, entry_price: float, snapshot: MarketSnapshot | None) -> float:
        raise NotImplementedError

    @abstractmethod
    def calculate_take_profit(self, entry_price: float, snapshot: MarketSnapshot | None) -> float:
        raise NotImplementedError

    def info(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "config": self.config.public_dict()}
