"""Streaming client for the provider's chat completions endpoint.

:class:`UpstreamClient` is the seam the chat service depends on.
:class:`GroqStreamClient` is the production implementation: it posts the
request with httpx, parses the server-sent events of the response and
publishes one :class:`StreamResult` per event on a :class:`ResultChannel`.

The literal ``[DONE]`` event ends the stream cleanly.  A payload that
fails to decode becomes an error result for that event only.  Transport
failures and any other crash of the pump become a single error result,
unless the stream was cancelled, in which case the channel just closes.  The channel is closed exactly once
on every path.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol

import httpx
from pydantic import ValidationError

from ..models.completion import CompletionChunk, CompletionRequest
from ..models.stream import StreamResult
from ..utils.error_handler import (
    UpstreamDecodeError,
    UpstreamSetupError,
    UpstreamStatusError,
    UpstreamTransportError,
)
from ..utils.logger import component_logger
from .cancellation import CancelContext
from .channel import ResultChannel
from .sse import iter_sse_events

if TYPE_CHECKING:
    from loguru import Logger

DONE_TOKEN = "[DONE]"


class UpstreamStream:
    """Handle returned by :meth:`UpstreamClient.connect`.

    ``results`` yields results until the channel closes.  :meth:`aclose`
    releases the connection and the background task; it must be awaited
    once by the caller, and later calls do nothing.
    """

    def __init__(
        self,
        results: ResultChannel,
        ctx: CancelContext,
        task: asyncio.Task[None] | None = None,
    ) -> None:
        self.results = results
        self._ctx = ctx
        self._task = task
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ctx.cancel("stream released")
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self.results.close()


class UpstreamClient(Protocol):
    """Anything that can open a streamed completion."""

    async def connect(self, ctx: CancelContext, request: CompletionRequest) -> UpstreamStream:
        ...


class GroqStreamClient:
    """Stream completions from Groq's OpenAI-compatible API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        url: str,
        log: "Logger | None" = None,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self._url = url
        self._log = log or component_logger("upstream")

    async def connect(self, ctx: CancelContext, request: CompletionRequest) -> UpstreamStream:
        """Start streaming ``request``; raise :class:`UpstreamSetupError` on setup failure."""
        try:
            body = request.to_json()
            http_request = self._http.build_request(
                "POST",
                self._url,
                content=body,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                    "Accept": "text/event-stream",
                },
            )
        except (ValueError, TypeError, httpx.InvalidURL) as exc:
            raise UpstreamSetupError(f"failed to create upstream request: {exc}") from exc

        stream_ctx = ctx.child()
        channel = ResultChannel()
        task = asyncio.create_task(self._pump(http_request, channel, stream_ctx))
        # A task cancelled before its first step never reaches its finally.
        task.add_done_callback(lambda _: channel.close())
        stream_ctx.on_cancel(task.cancel)
        self._log.debug("Opened upstream stream for model {}", request.model)
        return UpstreamStream(channel, stream_ctx, task)

    async def _pump(
        self,
        http_request: httpx.Request,
        channel: ResultChannel,
        ctx: CancelContext,
    ) -> None:
        try:
            if ctx.cancelled:
                return
            response = await self._http.send(http_request, stream=True)
            try:
                if response.is_error:
                    await response.aread()
                    self._log.warning("Upstream rejected request with status {}", response.status_code)
                    await channel.send(
                        StreamResult.failure(UpstreamStatusError(response.status_code, response.text))
                    )
                    return
                await self._publish_events(response, channel)
            finally:
                await response.aclose()
        except httpx.HTTPError as exc:
            if ctx.cancelled:
                return
            self._log.error("Upstream stream failed: {}", exc)
            await channel.send(
                StreamResult.failure(UpstreamTransportError(f"failed to read upstream stream: {exc}"))
            )
        except Exception as exc:
            if ctx.cancelled:
                return
            self._log.exception("Upstream stream crashed")
            await channel.send(
                StreamResult.failure(UpstreamTransportError(f"upstream stream ended abnormally: {exc}"))
            )
        finally:
            channel.close()

    async def _publish_events(
        self,
        response: httpx.Response,
        channel: ResultChannel,
    ) -> None:
        async for event in iter_sse_events(response.aiter_lines()):
            self._log.trace("Received SSE event: {}", event.data)
            if event.data.strip() == DONE_TOKEN:
                self._log.debug("Upstream signalled end of stream")
                return
            try:
                chunk = CompletionChunk.model_validate_json(event.data)
            except ValidationError as exc:
                self._log.warning("Failed to decode upstream event: {}", exc)
                await channel.send(
                    StreamResult.failure(UpstreamDecodeError(f"failed to unmarshal chat response: {exc}"))
                )
                continue
            await channel.send(StreamResult.of(chunk.to_fragment()))
