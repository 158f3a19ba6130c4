from __future__ import annotations

import time
from dataclasses import asdict, dataclass


@dataclass
class EngineState:
    running: bool = False
    started_at: float | None = None
    last_cycle_ts: int | None = None
    last_error: str | None = None
    total_trades: int = 0
    cycles: int = 0
    skipped_cycles: int = 0
    kill_switch: bool = False
    daily_loss_limit_reached: bool = False
    daily_pnl: float = 0.0
    daily_start_balance: float = 0.0
    trading_day: str | None = None


class EngineStateStore:
    def __init__(self) -> None:
        self._state = EngineState()

    def load(self) -> EngineState:
        return EngineState(**asdict(self._state))

    def update(self, **kwargs) -> None:
        for key, value in kwargs.items():
            if not hasattr(self._state, key):
                raise AttributeError(f"Unknown engine state field: {key}")
            setattr(self._state, key, value)

    def uptime(self) -> int:
        if self._state.started_at is None:
            return 0
        return int(time.time() - self._state.started_at)
