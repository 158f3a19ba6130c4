import asyncio

from bot import keyboards, messages
from bot.app import _alert_chat_id, telegram_alerts
from bot.middleware import _is_admin
from engine.models import Position, Profits
from services.config_service import BotSettings
from services.notifier import BusMessage


def _position(**overrides) -> Position:
    values = dict(
        symbol="BTCUSDT",
        entry_price=100.0,
        quantity=0.5,
        stop_loss_price=98.0,
        take_profit_price=105.0,
        highest_price=100.0,
        trailing_stop_distance=1.0,
    )
    values.update(overrides)
    return Position(**values)


def test_admin_guard_allows_admin():
    settings = BotSettings(_env_file=None, ADMIN_TELEGRAM_IDS="123,456")
    assert _is_admin(123, settings)


def test_admin_guard_blocks_non_admin():
    settings = BotSettings(_env_file=None, ADMIN_TELEGRAM_IDS="123,456")
    assert not _is_admin(999, settings)


def test_admin_guard_blocks_everyone_without_ids():
    settings = BotSettings(_env_file=None, ADMIN_TELEGRAM_IDS="")
    assert not _is_admin(123, settings)


def test_alert_chat_prefers_explicit_chat():
    assert _alert_chat_id(BotSettings(_env_file=None, TELEGRAM_CHAT_ID="-100", ADMIN_TELEGRAM_IDS="1")) == "-100"
    assert _alert_chat_id(BotSettings(_env_file=None, TELEGRAM_CHAT_ID="", ADMIN_TELEGRAM_IDS=" 7, 8")) == "7"
    assert _alert_chat_id(BotSettings(_env_file=None, TELEGRAM_CHAT_ID="", ADMIN_TELEGRAM_IDS="")) == ""


def test_position_line_open_and_closed():
    assert messages.position_line(_position()).startswith("BTCUSDT 0.500000 @ 100.000000")
    closed = _position(status="CLOSED", exit_price=110.0, close_reason="TAKE_PROFIT", profits=Profits(raw=5.0, percent=10.0))
    assert messages.position_line(closed).endswith("(+10.00%, TAKE_PROFIT)")


def test_positions_text_empty():
    assert messages.positions_text("Open positions", []) == "Open positions:\nnone"


def test_position_event_text():
    opened = {"action": "OPEN", "symbol": "BTCUSDT", "position": _position().to_dict(), "reason": None}
    assert messages.position_event_text(opened).startswith("Opened BTCUSDT")

    closed_position = _position(exit_price=97.0, profits=Profits(raw=-1.5, percent=-3.0)).to_dict()
    closed = {"action": "CLOSE", "symbol": "BTCUSDT", "position": closed_position, "reason": "STOP_LOSS"}
    assert messages.position_event_text(closed) == "Closed BTCUSDT @ 97.000000: -3.00% (STOP_LOSS)"


def test_status_text():
    status = {
        "dry_run": True,
        "running": False,
        "uptime": 12,
        "active_pairs_count": 3,
        "total_pairs_count": 30,
        "open_positions": 1,
        "total_trades": 4,
        "win_rate": 50.0,
        "total_profit_loss": 1.25,
        "best_trade": {"symbol": "ETHUSDT", "profit": 3.5},
        "last_error": None,
    }
    text = messages.status_text(status)
    assert "Mode: DRY RUN" in text
    assert "Pairs with data: 3/30" in text
    assert "Best trade: ETHUSDT 3.50%" in text
    assert "Last error: none" in text


def test_force_trade_text():
    assert messages.force_trade_text({"status": "No viable trading opportunities found"}) == "No viable trading opportunities found"
    executed = {"status": "Trade executed successfully", "symbol": "BTCUSDT", "score": 4, "position": {}}
    assert messages.force_trade_text(executed) == "Trade executed successfully: BTCUSDT (score 4/5)"


def test_close_menu_has_one_button_per_symbol():
    markup = keyboards.close_menu(["BTCUSDT", "ETHUSDT"])
    data = [row[0].callback_data for row in markup.inline_keyboard]
    assert data == ["close:BTCUSDT", "close:ETHUSDT", "main_menu"]


class FakeBot:
    def __init__(self) -> None:
        self.sent = []

    async def send_message(self, chat_id, text):
        self.sent.append((chat_id, text))


def test_telegram_alerts_only_forward_position_updates():
    bot = FakeBot()
    send = telegram_alerts(bot, "42")
    event = {"action": "OPEN", "symbol": "BTCUSDT", "position": _position().to_dict(), "reason": None}
    asyncio.run(send(BusMessage(type="market_update", data={"symbol": "BTCUSDT"})))
    asyncio.run(send(BusMessage(type="position_update", data=event)))
    assert len(bot.sent) == 1
    assert bot.sent[0][0] == "42"
    assert bot.sent[0][1].startswith("Opened BTCUSDT")


def test_safety_text():
    safety = {
        "kill_switch": True,
        "daily_loss_limit_reached": True,
        "max_position_size_limit": 10.0,
        "daily_loss_limit_pct": -10.0,
        "daily_pnl": -120.0,
    }
    text = messages.safety_text(safety)
    assert "Kill switch: ON" in text
    assert "Daily loss limit: -10.0% (reached)" in text
    assert "Max position size: 10.00 USDT" in text

    status = {
        "dry_run": False,
        "running": False,
        "uptime": 0,
        "active_pairs_count": 0,
        "total_pairs_count": 1,
        "open_positions": 0,
        "total_trades": 0,
        "win_rate": 0.0,
        "total_profit_loss": 0.0,
        "best_trade": None,
        "last_error": None,
        "safety_status": safety,
    }
    assert messages.status_text(status).endswith(text)


def test_main_menu_has_emergency_stop():
    data = [row[0].callback_data for row in keyboards.main_menu().inline_keyboard]
    assert data[-1] == "kill"
