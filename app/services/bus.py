"""
In-process publish/subscribe message bus.

Stages only ever talk through named channels.  Each subscription owns a
queue drained by several consumer tasks, so handlers for one channel run
concurrently, the same way a consumer group would on a broker.  Messages
are JSON-compatible dicts; publishers ``model_dump`` their schemas.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable

from app.core.errors import BusClosedError
from app.utils.logging import get_logger

logger = get_logger("searchsaga.services.bus")

Handler = Callable[[dict[str, Any]], Awaitable[None]]


class _Subscription:
    def __init__(self, channel: str, handler: Handler, workers: int):
        self.channel = channel
        self.handler = handler
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.tasks: list[asyncio.Task] = [
            asyncio.create_task(self._consume(i), name=f"bus:{channel}:{i}")
            for i in range(max(1, workers))
        ]

    async def _consume(self, worker_id: int) -> None:
        while True:
            message = await self.queue.get()
            try:
                await self.handler(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "[BUS] Handler failed on %s (worker %d): %s",
                    self.channel, worker_id, e, exc_info=True,
                )
            finally:
                self.queue.task_done()

    async def drain(self) -> None:
        await self.queue.join()

    async def close(self) -> None:
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)


class MessageBus:
    """
    Channel-based async bus.

    ``publish`` never waits for handlers; it only enqueues.  It raises
    ``BusClosedError`` once the bus is shut down, which the coordinator
    reports as a dispatch failure.
    """

    def __init__(self, workers_per_channel: int = 4):
        self.workers_per_channel = workers_per_channel
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, channel: str, handler: Handler, workers: int | None = None) -> None:
        if self._closed:
            raise BusClosedError(f"Cannot subscribe to {channel}: bus is closed")
        sub = _Subscription(channel, handler, workers or self.workers_per_channel)
        self._subscriptions[channel].append(sub)
        logger.debug("[BUS] Subscribed to %s with %d worker(s)", channel, len(sub.tasks))

    async def publish(self, channel: str, message: dict[str, Any]) -> None:
        if self._closed:
            raise BusClosedError(f"Cannot publish to {channel}: bus is closed")
        subs = self._subscriptions.get(channel)
        if not subs:
            logger.debug("[BUS] No subscriber on %s, message dropped", channel)
            return
        for sub in subs:
            sub.queue.put_nowait(message)

    async def drain(self) -> None:
        """Wait until every queued message has been handled."""
        for subs in list(self._subscriptions.values()):
            for sub in subs:
                await sub.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for subs in self._subscriptions.values():
            for sub in subs:
                await sub.close()
        self._subscriptions.clear()
        logger.info("[BUS] Closed")
