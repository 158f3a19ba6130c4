import asyncio

import pytest

from backtest.metrics import compute_metrics
from backtest.report import render_report
from backtest.runner import ReplayMarketData, load_candles, run_backtest
from engine.errors import GatewayError
from engine.models import Position, Profits, SignalResult
from services.config_service import RuntimeConfig
from strategies.base import Strategy
from strategies.fixed import FixedPercentStrategy
from strategies.levels import fixed_stop_loss, fixed_take_profit


class AlwaysBuy(Strategy):
    def analyze(self, symbol, snapshot):
        return SignalResult(symbol=symbol, signal="BUY", score=5)

    def calculate_position_size(self, account_size, risk_percent, snapshot):
        return 100.0

    def calculate_stop_loss(self, entry_price, snapshot):
        return fixed_stop_loss(entry_price, self.config.stop_loss_pct)

    def calculate_take_profit(self, entry_price, snapshot):
        return fixed_take_profit(entry_price, self.config.take_profit_pct)


def _write_csv(path, closes):
    lines = ["timestamp,open,high,low,close,volume"]
    for i, close in enumerate(closes):
        lines.append(f"{i * 60},{close},{close + 0.5},{close - 0.5},{close},10")
    path.write_text("\n".join(lines) + "\n")
    return str(path)


def _closed(symbol, percent):
    return Position(
        symbol=symbol,
        entry_price=100.0,
        quantity=1.0,
        stop_loss_price=98.0,
        take_profit_price=105.0,
        highest_price=100.0,
        trailing_stop_distance=1.0,
        status="CLOSED",
        exit_price=100.0 + percent,
        profits=Profits(raw=percent, percent=percent),
    )


def test_load_candles(tmp_path):
    path = _write_csv(tmp_path / "c.csv", [1.0, 2.0, 3.0])
    candles = load_candles(path)
    assert [c.close for c in candles] == [1.0, 2.0, 3.0]
    assert candles[1].ts == 60
    assert candles[2].high == 3.5


def test_replay_serves_candles_up_to_cursor(tmp_path):
    replay = ReplayMarketData(load_candles(_write_csv(tmp_path / "r.csv", [1.0, 2.0, 3.0, 4.0])))
    replay.cursor = 2
    window = asyncio.run(replay.fetch_candles("BTCUSDT", "1m", limit=2))
    assert [c.close for c in window] == [2.0, 3.0]
    assert asyncio.run(replay.fetch_candles("BTCUSDT", "1m", limit=10))[-1].close == 3.0
    with pytest.raises(GatewayError):
        asyncio.run(replay.place_market_buy("BTCUSDT", 10))


def test_backtest_take_profit_and_end_of_data(tmp_path):
    closes = [100.0] * 55 + [101.0, 102.0, 103.0, 104.0, 105.0]
    path = _write_csv(tmp_path / "run.csv", closes)
    config = RuntimeConfig(symbols=["BTCUSDT"], dry_run=False)
    closed = asyncio.run(run_backtest(path, config, strategy=AlwaysBuy(config)))

    assert [p.close_reason for p in closed] == ["TAKE_PROFIT", "END_OF_DATA"]
    assert closed[0].entry_price == 100.0
    assert closed[0].quantity == pytest.approx(1.0)
    assert closed[0].profits.percent == pytest.approx(5.0)
    assert closed[1].entry_price == 105.0
    assert closed[1].profits.raw == pytest.approx(0.0)


def test_backtest_without_signals_has_no_trades(tmp_path):
    path = _write_csv(tmp_path / "flat.csv", [100.0] * 80)
    config = RuntimeConfig(symbols=["BTCUSDT"])
    assert asyncio.run(run_backtest(path, config, strategy=FixedPercentStrategy(config))) == []


def test_backtest_short_file(tmp_path):
    path = _write_csv(tmp_path / "short.csv", [100.0] * 10)
    config = RuntimeConfig(symbols=["BTCUSDT"])
    assert asyncio.run(run_backtest(path, config, strategy=AlwaysBuy(config))) == []


def test_backtest_missing_file(tmp_path):
    config = RuntimeConfig()
    with pytest.raises(FileNotFoundError):
        asyncio.run(run_backtest(str(tmp_path / "missing.csv"), config))


def test_metrics_and_report():
    metrics = compute_metrics([_closed("BTCUSDT", 2.0), _closed("ETHUSDT", -1.0), _closed("XRPUSDT", 4.0)])
    assert metrics.total_trades == 3
    assert metrics.wins == 2
    assert metrics.win_rate == pytest.approx(200 / 3)
    assert metrics.total_profit_loss == pytest.approx(5.0)
    assert metrics.best_trade.symbol == "XRPUSDT"

    report = render_report(metrics)
    assert "Total trades: 3" in report
    assert "Best trade: XRPUSDT 4.00%" in report


def test_metrics_empty():
    metrics = compute_metrics([])
    assert metrics.win_rate == 0.0
    assert metrics.best_trade is None
    assert "Best trade: none" in render_report(metrics)
