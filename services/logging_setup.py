from __future__ import annotations

import sys

from loguru import logger

from services.config_service import BotSettings

_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSS} {level}: {message}"


def configure_logging(settings: BotSettings) -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL.upper(), format=_FORMAT)
    if settings.LOG_FILE:
        logger.add(
            settings.LOG_FILE,
            level=settings.LOG_LEVEL.upper(),
            format=_FORMAT,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
