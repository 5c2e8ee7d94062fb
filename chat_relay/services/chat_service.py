"""Orchestration service for streamed chat turns.

The ChatService turns an inbound chat request into a provider request,
relays the provider's streamed reply to the client and files the turn in
the conversation store once the stream is over.  It centralises error
handling so controllers can remain thin.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from functools import lru_cache
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from ..config.app_config import get_app_config
from ..config.llm_config import LlmConfig, load_llm_config
from ..memory.conversation_store import MAX_MESSAGES, ConversationStore, create_conversation_store
from ..models.chat_message import Message
from ..models.chat_request import ChatRequest, InboundMessage
from ..models.completion import CompletionRequest
from ..models.conversation import StoredMessage
from ..models.enums import MessageRole
from ..utils.error_handler import (
    DownstreamWriteError,
    InvalidMessageError,
    UpstreamStreamError,
)
from ..utils.logger import component_logger
from .cancellation import CancelContext, CancellationCoordinator
from .relay import DownstreamSink, RelayOutcome, relay
from .upstream_client import GroqStreamClient, UpstreamClient

if TYPE_CHECKING:
    from loguru import Logger


class ChatService:
    """Coordinates the upstream client, the relay and the store.

    Collaborators are injected so tests can swap the provider for a
    scripted double.  When no upstream client is given, a
    :class:`GroqStreamClient` over a shared ``httpx.AsyncClient`` is built
    on first use from the provider configuration.
    """

    def __init__(
        self,
        store: ConversationStore,
        upstream: UpstreamClient | None = None,
        config_loader: Callable[[], LlmConfig] = load_llm_config,
        coordinator: CancellationCoordinator | None = None,
        log: "Logger | None" = None,
    ) -> None:
        self.store = store
        self._upstream = upstream
        self._config_loader = config_loader
        self._log = log or component_logger("chat")
        self._coordinator = coordinator or CancellationCoordinator(log=self._log)
        self._http: httpx.AsyncClient | None = None
        self._pending: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Request shaping

    def build_request(self, chat_request: ChatRequest) -> CompletionRequest:
        """Validate an inbound request and build the provider payload.

        Raises
        ------
        ConfigurationError
            If the provider configuration (API key, token budget) is
            missing or malformed.
        InvalidMessageError
            If there are no messages or a message has an unknown role.
        """
        config = self._config_loader()
        if not chat_request.messages:
            raise InvalidMessageError("at least one message is required")
        messages = tuple(self._to_message(message) for message in chat_request.messages)
        return CompletionRequest(
            messages=messages,
            model=chat_request.model or config.model,
            temperature=config.temperature,
            top_p=config.top_p,
            max_tokens=config.max_tokens,
            stream=True,
        )

    @staticmethod
    def _to_message(message: InboundMessage) -> Message:
        try:
            return Message(role=message.role, content=message.content)
        except ValidationError as exc:
            raise InvalidMessageError(f"invalid message role: {message.role}") from exc

    # ------------------------------------------------------------------
    # Streaming

    async def stream_reply(
        self,
        chat_request: ChatRequest,
        completion: CompletionRequest,
        request_ctx: CancelContext,
        sink: DownstreamSink,
        on_turn_start: Callable[[str], None] | None = None,
    ) -> RelayOutcome:
        """Relay one completion to ``sink`` and schedule its persistence.

        ``request_ctx`` represents the downstream client; cancelling it
        tears down the upstream call.  The upstream stream is released on
        every exit path.  A reply cut short by a disconnect or an upstream
        failure is not persisted.
        """
        async with self._coordinator.link(request_ctx) as ctx:
            upstream = self._resolve_upstream()
            stream = await upstream.connect(ctx, completion)
            try:
                outcome = await relay(stream.results, sink, on_turn_start=on_turn_start)
                if ctx.cancelled:
                    raise DownstreamWriteError(
                        f"client disconnected before the reply completed ({ctx.reason})",
                        partial=outcome.text,
                    )
            except DownstreamWriteError as exc:
                self._log.info(
                    "Relay aborted by downstream after {} characters: {}", len(exc.partial), exc
                )
                raise
            except UpstreamStreamError as exc:
                self._log.error("Relay aborted by upstream after {} characters: {}", len(exc.partial), exc)
                raise
            finally:
                await stream.aclose()

        conversation_id = chat_request.conversation_id or outcome.turn_id
        self.schedule_persist(conversation_id, chat_request.messages, outcome.text)
        return outcome

    def _resolve_upstream(self) -> UpstreamClient:
        if self._upstream is None:
            config = self._config_loader()
            self._http = httpx.AsyncClient(timeout=config.timeout)
            self._upstream = GroqStreamClient(
                self._http,
                api_key=config.api_key,
                url=config.completions_url,
                log=component_logger("upstream"),
            )
        return self._upstream

    # ------------------------------------------------------------------
    # Persistence

    def schedule_persist(
        self,
        conversation_id: str,
        inbound: Sequence[InboundMessage],
        reply: str,
    ) -> asyncio.Task[None]:
        """Persist a completed turn in the background.

        The client-visible stream never waits on the store; failures are
        logged and otherwise invisible to the caller.
        """
        task = asyncio.create_task(self._persist_turn(conversation_id, inbound, reply))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _persist_turn(
        self,
        conversation_id: str,
        inbound: Sequence[InboundMessage],
        reply: str,
    ) -> None:
        if not conversation_id:
            self._log.warning("No conversation identifier for turn; skipping persistence")
            return

        for message in self._new_turn(inbound):
            try:
                self.store.append(conversation_id, StoredMessage(role=message.role, content=message.content))
            except Exception:
                self._log.exception("Failed to save {} message for {}", message.role, conversation_id)

        try:
            self.store.append(
                conversation_id,
                StoredMessage(role=MessageRole.ASSISTANT.value, content=reply),
            )
        except Exception:
            self._log.exception("Failed to save assistant reply for {}", conversation_id)
            return

        recent = self.store.get_recent(conversation_id, MAX_MESSAGES)
        self._log.debug("Conversation {} now holds {} messages", conversation_id, len(recent))

    @staticmethod
    def _new_turn(inbound: Sequence[InboundMessage]) -> list[InboundMessage]:
        """Return the messages sent after the last assistant reply.

        Clients resend the whole transcript with every request; only the
        part the store has not seen yet belongs to this turn.
        """
        for index in range(len(inbound) - 1, -1, -1):
            if inbound[index].role == MessageRole.ASSISTANT.value:
                return list(inbound[index + 1 :])
        return list(inbound)

    async def drain(self) -> None:
        """Wait for background persistence to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    # ------------------------------------------------------------------
    # History

    def recent_messages(self, conversation_id: str, limit: int = MAX_MESSAGES) -> list[StoredMessage]:
        return self.store.get_recent(conversation_id, limit)


@lru_cache()
def get_chat_service() -> ChatService:
    """Dependency injector for ChatService instances.

    FastAPI will call this function to obtain a singleton ChatService.
    The lru_cache decorator ensures only one instance, and therefore one
    conversation store, exists per process.
    """
    store = create_conversation_store(get_app_config().memory_type)
    return ChatService(store=store)
