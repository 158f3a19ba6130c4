from __future__ import annotations

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import CallbackQuery, Message

from backtest.metrics import compute_metrics
from backtest.report import render_report
from backtest.runner import run_backtest
from bot import keyboards, messages
from engine.errors import GatewayError
from services.orchestrator import EngineOrchestrator


def build_router(orchestrator: EngineOrchestrator) -> Router:
    router = Router()
    engine = orchestrator.engine

    async def _close(symbol: str) -> str:
        try:
            position = await engine.close_position(symbol)
        except (GatewayError, ValueError) as exc:
            return f"Close failed for {symbol}: {exc}"
        if position is None:
            return f"No position found for {symbol}"
        return "Closed " + messages.position_line(position)

    async def _force(symbol: str | None) -> str:
        try:
            result = await engine.force_trade(symbol)
        except GatewayError as exc:
            return f"Force trade failed: {exc}"
        return messages.force_trade_text(result)

    @router.message(CommandStart())
    async def start_cmd(message: Message) -> None:
        await message.answer(messages.main_menu_text(), reply_markup=keyboards.main_menu())

    @router.callback_query(lambda c: c.data == "main_menu")
    async def main_menu_cb(query: CallbackQuery) -> None:
        await query.message.edit_text(messages.main_menu_text(), reply_markup=keyboards.main_menu())

    @router.callback_query(lambda c: c.data == "status")
    async def status_cb(query: CallbackQuery) -> None:
        await query.message.edit_text(messages.status_text(engine.status()), reply_markup=keyboards.main_menu())

    @router.message(Command("status"))
    async def status_cmd(message: Message) -> None:
        await message.answer(messages.status_text(engine.status()))

    @router.callback_query(lambda c: c.data == "positions")
    async def positions_cb(query: CallbackQuery) -> None:
        positions = engine.manager.get_open_positions()
        await query.message.answer(
            messages.positions_text("Open positions", list(positions.values())),
            reply_markup=keyboards.close_menu(list(positions)),
        )

    @router.callback_query(lambda c: c.data == "history")
    async def history_cb(query: CallbackQuery) -> None:
        closed = engine.manager.get_closed_positions()[-10:]
        await query.message.answer(messages.positions_text("Closed positions", closed))

    @router.callback_query(lambda c: c.data == "pause")
    async def pause_cb(query: CallbackQuery) -> None:
        await query.answer("Engine paused" if orchestrator.pause() else "Already paused")

    @router.callback_query(lambda c: c.data == "resume")
    async def resume_cb(query: CallbackQuery) -> None:
        await query.answer("Engine resumed" if orchestrator.resume() else "Cannot resume, see /status")

    @router.callback_query(lambda c: c.data == "force_trade")
    async def force_trade_cb(query: CallbackQuery) -> None:
        await query.message.answer(await _force(None))

    @router.message(Command("force"))
    async def force_cmd(message: Message) -> None:
        parts = message.text.split(maxsplit=1)
        symbol = parts[1].strip().upper() if len(parts) > 1 else None
        await message.answer(await _force(symbol))

    @router.callback_query(lambda c: (c.data or "").startswith("close:"))
    async def close_cb(query: CallbackQuery) -> None:
        symbol = query.data.split(":", 1)[1]
        await query.message.answer(await _close(symbol))

    @router.message(Command("close"))
    async def close_cmd(message: Message) -> None:
        parts = message.text.split(maxsplit=1)
        if len(parts) < 2:
            await message.answer("Usage: /close SYMBOL")
            return
        await message.answer(await _close(parts[1].strip().upper()))

    @router.callback_query(lambda c: c.data == "kill")
    async def kill_cb(query: CallbackQuery) -> None:
        closed = await orchestrator.kill()
        await query.answer("Kill switch engaged. Trading halted.", show_alert=True)
        await query.message.answer(f"Kill switch engaged. Closed {closed} positions.")

    @router.message(Command("safety"))
    async def safety_cmd(message: Message) -> None:
        await message.answer(messages.safety_text(engine.safety_status()))

    @router.message(Command("killswitch"))
    async def killswitch_cmd(message: Message) -> None:
        parts = message.text.split(maxsplit=1)
        mode = parts[1].strip().lower() if len(parts) > 1 else ""
        if mode == "on":
            engine.activate_kill_switch()
        elif mode == "off":
            engine.deactivate_kill_switch()
        else:
            await message.answer("Usage: /killswitch on|off")
            return
        await message.answer(messages.safety_text(engine.safety_status()))

    @router.message(Command("closeall"))
    async def closeall_cmd(message: Message) -> None:
        closed = await engine.emergency_close_all()
        await message.answer(messages.positions_text("Emergency closed", closed))

    async def _set_limit(message: Message, setter, usage: str) -> None:
        parts = message.text.split(maxsplit=1)
        try:
            value = float(parts[1])
        except (IndexError, ValueError):
            await message.answer(usage)
            return
        if not setter(value):
            await message.answer(f"Rejected value: {value}")
            return
        await message.answer(messages.safety_text(engine.safety_status()))

    @router.message(Command("maxsize"))
    async def maxsize_cmd(message: Message) -> None:
        await _set_limit(message, engine.set_max_position_size, "Usage: /maxsize USDT")

    @router.message(Command("losslimit"))
    async def losslimit_cmd(message: Message) -> None:
        await _set_limit(message, engine.set_daily_loss_limit, "Usage: /losslimit -PERCENT")

    @router.message(Command("backtest"))
    async def backtest_cmd(message: Message) -> None:
        parts = message.text.split(maxsplit=1)
        if len(parts) < 2:
            await message.answer("Usage: /backtest /path/to/file.csv")
            return
        path = parts[1].strip()
        try:
            closed = await run_backtest(path, engine.config)
        except FileNotFoundError:
            await message.answer("CSV file not found.")
            return
        except (KeyError, ValueError) as exc:
            await message.answer(f"Backtest failed: {exc}")
            return
        await message.answer(render_report(compute_metrics(closed)))

    return router
