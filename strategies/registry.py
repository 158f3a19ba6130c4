from __future__ import annotations

from services.config_service import RuntimeConfig
from strategies.base import Strategy
from strategies.fixed import FixedPercentStrategy
from strategies.multi_signal import MultiSignalStrategy

_STRATEGIES: dict[str, type[Strategy]] = {
    "multi_signal": MultiSignalStrategy,
    "fixed": FixedPercentStrategy,
}


def build_strategy(config: RuntimeConfig) -> Strategy:
    cls = _STRATEGIES.get(config.strategy)
    if cls is None:
        raise ValueError(f"Unknown strategy: {config.strategy}")
    return cls(config)
