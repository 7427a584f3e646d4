"""delivery.py
~~~~~~~~~~~~~~
Hand finished feeds to the single subscriber, one at a time.

:class:`SerialDelivery` owns one consumer task on the event loop it was
started on. Feeds are invoked in submission order and the subscriber
callback never runs concurrently with itself. ``deliver()`` returns once
the callback has finished, so a fetch cycle only completes after its feed
reached the subscriber.

The callback may be a plain function or a coroutine function. Errors it
raises are logged and do not stop later deliveries.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from .models import Feed

LOG = logging.getLogger("delivery")

FeedCallback = Callable[[Feed], Union[None, Awaitable[None]]]


class DeliveryContext(Protocol):
    async def deliver(self, feed: Feed) -> None: ...

    async def aclose(self) -> None: ...


class SerialDelivery:
    def __init__(self, callback: FeedCallback) -> None:
        self._callback = callback
        self._queue: Optional[asyncio.Queue[tuple[Feed, asyncio.Future[None]]]] = None
        self._task: Optional[asyncio.Task[None]] = None
        self.delivered = 0

    def _ensure_started(self) -> asyncio.Queue:
        queue = self._queue
        if queue is None or self._task is None or self._task.done():
            queue = asyncio.Queue()
            self._queue = queue
            self._task = asyncio.get_running_loop().create_task(self._consume(queue))
        return queue

    async def _consume(self, queue: asyncio.Queue) -> None:
        while True:
            feed, done = await queue.get()
            try:
                result: Any = self._callback(feed)
                if inspect.isawaitable(result):
                    await result
                self.delivered += 1
            except Exception as exc:  # noqa: BLE001 – subscriber bug, keep delivering
                LOG.error("[delivery] subscriber raised: %s", exc, exc_info=True)
            finally:
                if not done.done():
                    done.set_result(None)
                queue.task_done()

    async def deliver(self, feed: Feed) -> None:
        queue = self._ensure_started()
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        await queue.put((feed, done))
        await done

    async def aclose(self) -> None:
        """Stop the consumer task; pending deliveries are dropped."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        if self._queue is not None:
            while not self._queue.empty():
                _, done = self._queue.get_nowait()
                done.cancel()
        self._task = None
        self._queue = None


__all__ = ["DeliveryContext", "FeedCallback", "SerialDelivery"]
