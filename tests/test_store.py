import pytest

from data.store import PositionStore
from engine.models import Position, Profits


def _position(symbol: str = "BTCUSDT") -> Position:
    return Position(
        symbol=symbol,
        entry_price=100.0,
        quantity=1.0,
        stop_loss_price=98.0,
        take_profit_price=105.0,
        highest_price=100.0,
        trailing_stop_distance=1.0,
    )


def test_add_and_read_copies():
    store = PositionStore()
    store.add(_position())
    copy = store.open_positions()["BTCUSDT"]
    copy.stop_loss_price = 1.0
    assert store.get("BTCUSDT").stop_loss_price == 98.0
    assert store.has("BTCUSDT")
    assert store.symbols() == ["BTCUSDT"]


def test_add_rejects_second_open_position():
    store = PositionStore()
    store.add(_position())
    with pytest.raises(ValueError):
        store.add(_position())


def test_archive_moves_to_history():
    store = PositionStore()
    store.add(_position())
    position = store.get("BTCUSDT")
    position.status = "CLOSED"
    position.profits = Profits(raw=1.0, percent=1.0)
    archived = store.archive("BTCUSDT")
    assert archived.status == "CLOSED"
    assert not store.has("BTCUSDT")
    history = store.closed_positions()
    assert len(history) == 1
    history[0].profits.raw = 99.0
    assert store.closed_positions()[0].profits.raw == 1.0
    store.add(_position())
    assert store.has("BTCUSDT")
