"""Bounded outbound channel between the dispatcher and a transport.

Actions write outbound content through a callback; ``OutboundChannel`` is
such a callback backed by a bounded ``asyncio.Queue``. A transport drains
it concurrently. When the queue is full, ``send`` waits, so a slow
transport applies back-pressure to the turn rather than growing memory.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, List, Optional

from .config import Config
from .schemas import Content


class ChannelClosedError(RuntimeError):
    """Raised when sending on a closed channel."""


_CLOSED = object()


class OutboundChannel:
    def __init__(self, maxsize: Optional[int] = None) -> None:
        self._queue: "asyncio.Queue[object]" = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else Config.OUTBOUND_QUEUE_SIZE
        )
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, content: Content) -> None:
        if self._closed:
            raise ChannelClosedError("Outbound channel is closed")
        await self._queue.put(content)

    async def __call__(self, content: Content) -> None:
        await self.send(content)

    async def close(self) -> None:
        """Stop accepting content; consumers finish after the queued items."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    def drain_nowait(self) -> List[Content]:
        """Return everything currently queued without waiting."""
        items: List[Content] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return items
            if item is _CLOSED:
                # Keep the sentinel for any async consumer.
                self._queue.put_nowait(_CLOSED)
                return items
            items.append(item)  # type: ignore[arg-type]

    async def drain(self) -> AsyncIterator[Content]:
        """Yield content as it arrives until the channel is closed."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                return
            yield item  # type: ignore[misc]
