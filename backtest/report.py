from __future__ import annotations

from backtest.metrics import TradeMetrics


def render_report(metrics: TradeMetrics) -> str:
    best = f"{metrics.best_trade.symbol} {metrics.best_trade.profit:.2f}%" if metrics.best_trade else "none"
    return (
        f"Total trades: {metrics.total_trades}\n"
        f"Wins: {metrics.wins} ({metrics.win_rate:.1f}%)\n"
        f"Total P/L: {metrics.total_profit_loss:.4f} USDT\n"
        f"Best trade: {best}"
    )
