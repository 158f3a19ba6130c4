from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from engine.models import utc_now

Subscriber = Callable[["BusMessage"], Awaitable[None]]


@dataclass
class BusMessage:
    type: str
    data: dict[str, Any]
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data, "timestamp": self.timestamp}


class EventBus:
    """Queues engine events and fans them out to subscribers in the background.

    Publishing never blocks and never fails, so position transitions are not
    held up by slow WebSocket clients or Telegram.
    """

    def __init__(self, history: int = 100) -> None:
        self.queue: asyncio.Queue[BusMessage] = asyncio.Queue()
        self.recent: deque[BusMessage] = deque(maxlen=history)
        self._subscribers: list[Subscriber] = []
        self._task: Optional[asyncio.Task] = None

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while True:
            message = await self.queue.get()
            try:
                await self.dispatch(message)
            finally:
                self.queue.task_done()

    async def dispatch(self, message: BusMessage) -> None:
        for subscriber in list(self._subscribers):
            try:
                await subscriber(message)
            except Exception as exc:
                logger.exception("Failed to deliver {} event: {}", message.type, exc)

    def publish(self, kind: str, data: dict[str, Any]) -> BusMessage:
        message = BusMessage(type=kind, data=data)
        self.recent.append(message)
        self.queue.put_nowait(message)
        return message
