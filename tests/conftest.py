from __future__ import annotations

import asyncio

import pytest

from chat_relay.config.llm_config import LlmConfig
from chat_relay.memory.conversation_store import InMemoryConversationStore
from chat_relay.models.completion import CompletionRequest
from chat_relay.models.stream import StreamFragment, StreamResult
from chat_relay.services.cancellation import CancelContext
from chat_relay.services.channel import ResultChannel
from chat_relay.services.chat_service import ChatService
from chat_relay.services.upstream_client import UpstreamStream
from chat_relay.utils.error_handler import DownstreamWriteError, UpstreamSetupError


def fragment(fragment_id: str, content: str, *, terminal: bool = False) -> StreamResult:
    return StreamResult.of(StreamFragment(id=fragment_id, delta_content=content, is_terminal=terminal))


class CountingStream(UpstreamStream):
    """UpstreamStream that records how often it was released."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.aclose_calls = 0

    async def aclose(self) -> None:
        self.aclose_calls += 1
        await super().aclose()


class ScriptedUpstreamClient:
    """Upstream double that replays a fixed list of results.

    With ``hold_open`` the stream stays open after the script until its
    context is cancelled, like a provider that is still generating.
    """

    def __init__(
        self,
        results: list[StreamResult],
        *,
        hold_open: bool = False,
        setup_error: str | None = None,
    ) -> None:
        self.results = results
        self.hold_open = hold_open
        self.setup_error = setup_error
        self.requests: list[CompletionRequest] = []
        self.streams: list[CountingStream] = []

    @property
    def teardown_calls(self) -> int:
        return sum(stream.aclose_calls for stream in self.streams)

    async def connect(self, ctx: CancelContext, request: CompletionRequest) -> UpstreamStream:
        if self.setup_error is not None:
            raise UpstreamSetupError(self.setup_error)
        self.requests.append(request)
        stream_ctx = ctx.child()
        channel = ResultChannel()
        task = asyncio.create_task(self._produce(channel, stream_ctx))
        task.add_done_callback(lambda _: channel.close())
        stream_ctx.on_cancel(task.cancel)
        stream = CountingStream(channel, stream_ctx, task)
        self.streams.append(stream)
        return stream

    async def _produce(self, channel: ResultChannel, ctx: CancelContext) -> None:
        try:
            for result in self.results:
                await channel.send(result)
            if self.hold_open:
                await ctx.wait()
        finally:
            channel.close()


class RecordingSink:
    """Downstream sink that keeps what was flushed."""

    def __init__(self, fail_after: int | None = None) -> None:
        self.fail_after = fail_after
        self.chunks: list[str] = []
        self.flushes = 0
        self._pending: list[str] = []

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    async def write(self, text: str) -> None:
        if self.fail_after is not None and len(self.chunks) >= self.fail_after:
            raise DownstreamWriteError("client gone")
        self._pending.append(text)

    async def flush(self) -> None:
        self.flushes += 1
        self.chunks.extend(self._pending)
        self._pending.clear()


@pytest.fixture
def llm_config() -> LlmConfig:
    return LlmConfig(
        _env_file=None,
        api_key="test-key",
        base_url="https://upstream.test/openai",
        model="llama3-8b-8192",
        max_tokens=32,
    )


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def make_service(store, llm_config):
    def factory(upstream) -> ChatService:
        return ChatService(store=store, upstream=upstream, config_loader=lambda: llm_config)

    return factory
