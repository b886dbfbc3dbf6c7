"""
Queue-backed change subscription.

Realtime SDKs deliver change events through a callback. This adapter
turns that callback into the pull-based ChangeSubscription: the
callback pushes, the single consumer iterates.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from notafacil.models.events import ChangeEvent
from notafacil.services.storage.interface import ChangeSubscription


_CLOSED = object()


class QueueSubscription(ChangeSubscription):
    """
    A ChangeSubscription fed by push().

    Args:
        on_close: Coroutine function releasing the underlying channel.
                  Called exactly once, on the first close().
    """

    def __init__(self, on_close: Optional[Callable[[], Awaitable[None]]] = None):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._closed = False
        self._iterating = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, event: ChangeEvent) -> None:
        """Deliver an event to the consumer. Ignored once closed."""
        if self._closed:
            return
        self._queue.put_nowait(event)

    def __aiter__(self) -> "QueueSubscription":
        if self._iterating:
            raise RuntimeError("A change subscription can only be consumed once")
        self._iterating = True
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        # Undelivered events are dropped; the consumer is woken to stop
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

        if self._on_close is not None:
            await self._on_close()
