"""Cancellation contexts and the coordinator that links them.

A :class:`CancelContext` is a one-shot signal shared by the tasks that
serve a single request.  The :class:`CancellationCoordinator` ties the
lifetime of the downstream request to the upstream work: when the client
goes away, the context handed to the upstream client is cancelled, and
when the handling routine finishes, everything it spawned is torn down.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

from ..utils.logger import component_logger

if TYPE_CHECKING:
    from loguru import Logger


class CancelContext:
    """One-shot, idempotent cancellation signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the context.

        Returns ``True`` for the call that actually cancelled it and
        ``False`` for every later call.  Registered callbacks run once, in
        registration order.
        """
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        return True

    async def wait(self) -> None:
        await self._event.wait()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` when the context is cancelled.

        If the context is already cancelled the callback runs immediately.
        Returns a function that unregisters the callback.
        """
        if self.cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def unregister() -> None:
            with suppress(ValueError):
                self._callbacks.remove(callback)

        return unregister

    def child(self) -> "CancelContext":
        """Derive a context that is cancelled whenever this one is."""
        derived = CancelContext()
        unregister = self.on_cancel(lambda: derived.cancel(self.reason or "parent cancelled"))
        derived.on_cancel(unregister)
        return derived


class CancellationCoordinator:
    """Propagates downstream disconnects to upstream work."""

    def __init__(self, log: "Logger | None" = None) -> None:
        self._log = log or component_logger("cancellation")

    @asynccontextmanager
    async def link(self, parent: CancelContext) -> AsyncIterator[CancelContext]:
        """Yield a context cancelled when ``parent`` concludes.

        A watcher task waits on ``parent`` and forwards its cancellation.
        On leaving the block, on any path, the linked context is
        cancelled and the watcher is cancelled and joined.
        """
        linked = CancelContext()
        watcher = asyncio.create_task(self._watch(parent, linked))
        try:
            yield linked
        finally:
            linked.cancel("request finished")
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)

    async def _watch(self, parent: CancelContext, linked: CancelContext) -> None:
        await parent.wait()
        if linked.cancel(parent.reason or "client disconnected"):
            self._log.info("Client disconnected ({}), cancelling upstream", parent.reason)
