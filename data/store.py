from __future__ import annotations

import threading
from dataclasses import replace

from engine.models import Position


def _copy(position: Position) -> Position:
    return replace(position, profits=replace(position.profits) if position.profits else None)


class PositionStore:
    """Open positions keyed by symbol plus the history of closed ones.

    At most one OPEN position exists per symbol. Closed positions are moved out
    of the open index into an append-only history. Reads hand out copies; the
    position manager is the only writer.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._open: dict[str, Position] = {}
        self._closed: list[Position] = []

    def get(self, symbol: str) -> Position | None:
        with self._lock:
            return self._open.get(symbol)

    def has(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._open

    def add(self, position: Position) -> None:
        with self._lock:
            if position.symbol in self._open:
                raise ValueError(f"Position already open for {position.symbol}")
            self._open[position.symbol] = position

    def archive(self, symbol: str) -> Position:
        with self._lock:
            position = self._open.pop(symbol)
            self._closed.append(position)
            return _copy(position)

    def symbols(self) -> list[str]:
        with self._lock:
            return list(self._open)

    def open_positions(self) -> dict[str, Position]:
        with self._lock:
            return {symbol: _copy(p) for symbol, p in self._open.items()}

    def closed_positions(self) -> list[Position]:
        with self._lock:
            return [_copy(p) for p in self._closed]
