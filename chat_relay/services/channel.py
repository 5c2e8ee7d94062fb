"""Single-producer channel carrying upstream results to the relay."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from ..models.stream import StreamResult

_CLOSED = object()


class ChannelClosed(Exception):
    """Raised when sending on a channel that has already been closed."""


class ResultChannel:
    """An asyncio queue of capacity one with an explicit close.

    The producer blocks on :meth:`send` until the consumer has taken the
    previous item, so results are handed over one at a time in order.
    :meth:`close` is synchronous and idempotent; it may be called from a
    ``finally`` block after the producer was cancelled.  Iterating the
    channel ends once it is closed and drained.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=1)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, result: StreamResult) -> None:
        if self._closed:
            raise ChannelClosed("send on closed channel")
        await self._queue.put(result)

    def close(self) -> bool:
        """Close the channel; return ``False`` if it was already closed."""
        if self._closed:
            return False
        self._closed = True
        if not self._queue.full():
            self._queue.put_nowait(_CLOSED)
        return True

    async def receive(self) -> StreamResult:
        """Return the next result, or raise ``StopAsyncIteration`` once closed."""
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiter.
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[StreamResult]:
        return self

    async def __anext__(self) -> StreamResult:
        return await self.receive()
