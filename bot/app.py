from __future__ import annotations

import asyncio

import uvicorn
from aiogram import Bot, Dispatcher
from loguru import logger

from bot import messages
from bot.middleware import AdminOnlyMiddleware, ThrottleMiddleware
from bot.routers import build_router
from services.config_service import BotSettings
from services.logging_setup import configure_logging
from services.notifier import BusMessage, EventBus
from services.orchestrator import EngineOrchestrator
from web.api import create_app


def telegram_alerts(bot: Bot, chat_id: str):
    async def _send(message: BusMessage) -> None:
        if message.type != "position_update":
            return
        await bot.send_message(chat_id, messages.position_event_text(message.data))

    return _send


def _alert_chat_id(settings: BotSettings) -> str:
    if settings.TELEGRAM_CHAT_ID:
        return settings.TELEGRAM_CHAT_ID
    if settings.ADMIN_TELEGRAM_IDS:
        return settings.ADMIN_TELEGRAM_IDS.split(",")[0].strip()
    return ""


async def main() -> None:
    settings = BotSettings()
    configure_logging(settings)
    events = EventBus()
    orchestrator = EngineOrchestrator(settings, events)

    server = uvicorn.Server(uvicorn.Config(create_app(orchestrator), host=settings.HOST, port=settings.PORT, log_config=None))
    tasks: list[asyncio.Task] = []

    bot = None
    if settings.TELEGRAM_BOT_TOKEN:
        bot = Bot(token=settings.TELEGRAM_BOT_TOKEN)
        dp = Dispatcher()
        dp.message.middleware(AdminOnlyMiddleware(settings))
        dp.callback_query.middleware(AdminOnlyMiddleware(settings))
        dp.message.middleware(ThrottleMiddleware())
        dp.callback_query.middleware(ThrottleMiddleware())
        dp.include_router(build_router(orchestrator))
        chat_id = _alert_chat_id(settings)
        if chat_id:
            events.subscribe(telegram_alerts(bot, chat_id))
        tasks.append(asyncio.create_task(dp.start_polling(bot, handle_signals=False)))
    else:
        logger.info("TELEGRAM_BOT_TOKEN not set, control bot disabled")

    await events.start()
    await orchestrator.start()
    logger.info("[MAIN] Trading agent started on port {}", settings.PORT)
    try:
        await server.serve()
    finally:
        logger.info("[SHUTDOWN] Received shutdown signal")
        await orchestrator.stop()
        await events.stop()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if bot is not None:
            await bot.session.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
