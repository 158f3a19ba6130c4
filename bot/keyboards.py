from __future__ import annotations

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup


def main_menu() -> InlineKeyboardMarkup:
    buttons = [
        [InlineKeyboardButton(text="✅ Status", callback_data="status")],
        [InlineKeyboardButton(text="📈 Positions", callback_data="positions")],
        [InlineKeyboardButton(text="🧾 History", callback_data="history")],
        [InlineKeyboardButton(text="▶️ Resume", callback_data="resume")],
        [InlineKeyboardButton(text="⏸ Pause", callback_data="pause")],
        [InlineKeyboardButton(text="⚡ Force Trade", callback_data="force_trade")],
        [InlineKeyboardButton(text="🛑 Emergency Stop", callback_data="kill")],
    ]
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def close_menu(symbols: list[str]) -> InlineKeyboardMarkup:
    buttons = [[InlineKeyboardButton(text=f"Close {s}", callback_data=f"close:{s}")] for s in symbols]
    buttons.append([InlineKeyboardButton(text="Back", callback_data="main_menu")])
    return InlineKeyboardMarkup(inline_keyboard=buttons)
