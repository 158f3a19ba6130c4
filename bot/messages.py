from __future__ import annotations

from typing import Any

from engine.models import Position


def main_menu_text() -> str:
    return "Trading Agent Control Panel"


def status_text(status: dict[str, Any]) -> str:
    best = status.get("best_trade")
    best_summary = f"{best['symbol']} {best['profit']:.2f}%" if best else "none"
    text = (
        f"Mode: {'DRY RUN' if status['dry_run'] else 'LIVE'}\n"
        f"Running: {'yes' if status['running'] else 'no'}\n"
        f"Uptime: {status['uptime']}s\n"
        f"Pairs with data: {status['active_pairs_count']}/{status['total_pairs_count']}\n"
        f"Open positions: {status['open_positions']}\n"
        f"Trades opened: {status['total_trades']}\n"
        f"Win rate: {status['win_rate']:.1f}%\n"
        f"Total P/L: {status['total_profit_loss']:.4f} USDT\n"
        f"Best trade: {best_summary}\n"
        f"Last error: {status['last_error'] or 'none'}"
    )
    if status.get("safety_status"):
        text += "\n" + safety_text(status["safety_status"])
    return text


def safety_text(safety: dict[str, Any]) -> str:
    return (
        f"Kill switch: {'ON' if safety['kill_switch'] else 'off'}\n"
        f"Daily loss limit: {safety['daily_loss_limit_pct']:.1f}%"
        f"{' (reached)' if safety['daily_loss_limit_reached'] else ''}\n"
        f"Daily P/L: {safety['daily_pnl']:.4f} USDT\n"
        f"Max position size: {safety['max_position_size_limit']:.2f} USDT"
    )


def position_line(position: Position) -> str:
    line = (
        f"{position.symbol} {position.quantity:.6f} @ {position.entry_price:.6f} "
        f"SL {position.stop_loss_price:.6f} TP {position.take_profit_price:.6f}"
    )
    if position.profits is not None:
        line += f" -> {position.exit_price:.6f} ({position.profits.percent:+.2f}%, {position.close_reason})"
    return line


def positions_text(title: str, positions: list[Position]) -> str:
    lines = [position_line(p) for p in positions] or ["none"]
    return f"{title}:\n" + "\n".join(lines)


def position_event_text(event: dict[str, Any]) -> str:
    position = event["position"]
    if event["action"] == "OPEN":
        return (
            f"Opened {event['symbol']}: {position['quantity']:.6f} @ {position['entry_price']:.6f} "
            f"(SL {position['stop_loss_price']:.6f}, TP {position['take_profit_price']:.6f})"
        )
    profits = position.get("profits") or {}
    return (
        f"Closed {event['symbol']} @ {position['exit_price']:.6f}: "
        f"{profits.get('percent', 0.0):+.2f}% ({event.get('reason')})"
    )


def force_trade_text(result: dict[str, Any]) -> str:
    if "position" not in result:
        return result["status"]
    return f"{result['status']}: {result['symbol']} (score {result['score']}/5)"


def access_denied_text() -> str:
    return "Access denied. This bot is admin-only."
