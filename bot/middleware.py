from __future__ import annotations

import time
from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.types import CallbackQuery, Message, TelegramObject, User
from loguru import logger

from bot.messages import access_denied_text
from services.config_service import BotSettings

Handler = Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]]


def _admin_ids(settings: BotSettings) -> set[int]:
    return {int(x.strip()) for x in settings.ADMIN_TELEGRAM_IDS.split(",") if x.strip()}


def _is_admin(user_id: int, settings: BotSettings) -> bool:
    return user_id in _admin_ids(settings)


def _event_user(event: TelegramObject) -> User | None:
    if isinstance(event, (Message, CallbackQuery)):
        return event.from_user
    return None


class AdminOnlyMiddleware(BaseMiddleware):
    """Drops updates from anyone not listed in ADMIN_TELEGRAM_IDS."""

    def __init__(self, settings: BotSettings) -> None:
        self.admin_ids = _admin_ids(settings)

    async def __call__(self, handler: Handler, event: TelegramObject, data: dict[str, Any]) -> Any:
        user = _event_user(event)
        if user and user.id not in self.admin_ids:
            logger.warning("Rejected control command from user {}", user.id)
            if isinstance(event, Message):
                await event.answer(access_denied_text())
            elif isinstance(event, CallbackQuery):
                await event.answer(access_denied_text(), show_alert=True)
            return None
        return await handler(event, data)


class ThrottleMiddleware(BaseMiddleware):
    def __init__(self, cooldown: float = 1.0) -> None:
        self.cooldown = cooldown
        self._last: dict[int, float] = {}

    async def __call__(self, handler: Handler, event: TelegramObject, data: dict[str, Any]) -> Any:
        user = _event_user(event)
        if user is None:
            return await handler(event, data)
        now = time.monotonic()
        if now - self._last.get(user.id, float("-inf")) < self.cooldown:
            if isinstance(event, CallbackQuery):
                await event.answer("Slow down.")
            return None
        self._last[user.id] = now
        return await handler(event, data)
