"""ASGI response that hands its send channel to the relay as a sink.

Starlette's ``StreamingResponse`` pulls from an iterator and hides the
client's disconnect from the producer.  The relay needs the opposite: it
pushes text into a sink, flushes after every delta, and must learn about a
disconnect as soon as the server does.  :class:`RelayStreamingResponse`
listens on ``receive`` for ``http.disconnect`` and cancels the request's
:class:`CancelContext`, which the chat service links to the upstream call.

Headers are sent lazily on the first flush, so an error raised before any
text was produced can still be reported with a proper status code.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Mapping
from contextlib import suppress
from typing import TYPE_CHECKING

from starlette.requests import ClientDisconnect
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

from ..services.cancellation import CancelContext
from .error_handler import ChatError, DownstreamWriteError, public_detail
from .logger import component_logger

if TYPE_CHECKING:
    from loguru import Logger

STREAM_ERROR_MARKER = "\n[error] upstream stream failed"

RelayHandler = Callable[[CancelContext, "ASGIResponseSink"], Awaitable[None]]


class ASGIResponseSink:
    """Write/flush sink over an ASGI ``send`` callable."""

    def __init__(
        self,
        send: Send,
        status_code: int,
        headers: list[tuple[bytes, bytes]],
        ctx: CancelContext,
    ) -> None:
        self._send = send
        self._status_code = status_code
        self._headers = list(headers)
        self._ctx = ctx
        self._pending: list[bytes] = []
        self.started = False
        self.finished = False

    def set_header(self, name: str, value: str) -> None:
        if self.started:
            raise RuntimeError("response headers were already sent")
        self._headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))

    async def write(self, text: str) -> None:
        self._ensure_open()
        self._pending.append(text.encode("utf-8"))

    async def flush(self) -> None:
        self._ensure_open()
        await self._start()
        if not self._pending:
            return
        body = b"".join(self._pending)
        self._pending.clear()
        await self._deliver({"type": "http.response.body", "body": body, "more_body": True})

    async def close(self) -> None:
        """Finish the response body; a no-op once the client is gone."""
        if self.finished or self._ctx.cancelled:
            return
        await self._start()
        body = b"".join(self._pending)
        self._pending.clear()
        self.finished = True
        await self._deliver({"type": "http.response.body", "body": body, "more_body": False})

    async def send_error(self, status_code: int, detail: str) -> None:
        """Send a complete JSON error response in place of the stream."""
        if self.started:
            raise RuntimeError("cannot replace a response that already started")
        body = json.dumps({"detail": detail}).encode("utf-8")
        self.started = True
        self.finished = True
        await self._deliver(
            {
                "type": "http.response.start",
                "status": status_code,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode("latin-1")),
                ],
            }
        )
        await self._deliver({"type": "http.response.body", "body": body, "more_body": False})

    def _ensure_open(self) -> None:
        if self._ctx.cancelled:
            raise DownstreamWriteError(f"client disconnected ({self._ctx.reason})")
        if self.finished:
            raise DownstreamWriteError("response already finished")

    async def _start(self) -> None:
        if self.started:
            return
        self.started = True
        await self._deliver(
            {"type": "http.response.start", "status": self._status_code, "headers": self._headers}
        )

    async def _deliver(self, message: Message) -> None:
        try:
            await self._send(message)
        except (OSError, ClientDisconnect) as exc:
            self._ctx.cancel("client disconnected")
            raise DownstreamWriteError(f"failed to write response: {exc}") from exc


class RelayStreamingResponse(Response):
    """Run a relay handler against the raw ASGI connection."""

    media_type = "text/event-stream"

    def __init__(
        self,
        handler: RelayHandler,
        headers: Mapping[str, str] | None = None,
        log: "Logger | None" = None,
    ) -> None:
        self.handler = handler
        self.status_code = 200
        self.background = None
        self._log = log or component_logger("downstream")
        self.init_headers(
            {
                "Content-Type": self.media_type,
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                **(headers or {}),
            }
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request_ctx = CancelContext()
        sink = ASGIResponseSink(send, self.status_code, self.raw_headers, request_ctx)
        listener = asyncio.create_task(self._listen_for_disconnect(receive, request_ctx))
        try:
            await self.handler(request_ctx, sink)
        except DownstreamWriteError as exc:
            self._log.info("Client went away after {} relayed characters", len(exc.partial))
        except ChatError as exc:
            await self._fail(sink, exc)
        else:
            with suppress(DownstreamWriteError):
                await sink.close()
        finally:
            listener.cancel()
            await asyncio.gather(listener, return_exceptions=True)

    async def _fail(self, sink: ASGIResponseSink, exc: ChatError) -> None:
        self._log.error("Relay failed: {}", exc)
        if not sink.started:
            with suppress(DownstreamWriteError):
                await sink.send_error(exc.status_code, public_detail(exc))
            return
        # Headers are gone; all that is left is truncation plus a marker.
        with suppress(DownstreamWriteError):
            await sink.write(STREAM_ERROR_MARKER)
            await sink.flush()
            await sink.close()

    async def _listen_for_disconnect(self, receive: Receive, ctx: CancelContext) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                ctx.cancel("client disconnected")
                return
