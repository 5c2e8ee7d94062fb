"""Bounded conversation history.

The store keeps the most recent messages of each conversation in process
memory.  It is volatile by nature: everything is lost on restart, and each
conversation is capped so memory use stays bounded no matter how long a
chat runs.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Protocol

from ..models.conversation import StoredMessage
from ..utils.error_handler import ConfigurationError
from ..utils.logger import component_logger

if TYPE_CHECKING:
    from loguru import Logger

MAX_MESSAGES = 20


class ConversationStore(Protocol):
    """Append/read-recent log of messages keyed by conversation id."""

    def append(self, conversation_id: str, message: StoredMessage) -> None:
        ...

    def get_recent(self, conversation_id: str, limit: int) -> list[StoredMessage]:
        ...


class InMemoryConversationStore:
    """Thread-safe in-memory store with a sliding window per conversation.

    ``append`` stamps the message with the current unix time and drops the
    oldest entries once a conversation holds more than ``max_messages``.
    A single lock guards the whole mapping.
    """

    def __init__(self, max_messages: int = MAX_MESSAGES, log: "Logger | None" = None) -> None:
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        self.max_messages = max_messages
        self._conversations: dict[str, list[StoredMessage]] = {}
        self._lock = threading.Lock()
        self._log = log or component_logger("store")

    def append(self, conversation_id: str, message: StoredMessage) -> None:
        now = int(time.time())
        with self._lock:
            messages = self._conversations.setdefault(conversation_id, [])
            # Never let a wall-clock step backwards reorder a conversation.
            if messages:
                now = max(now, messages[-1].timestamp)
            stored = message.model_copy(update={"timestamp": now})
            messages.append(stored)
            if len(messages) > self.max_messages:
                del messages[: len(messages) - self.max_messages]
        self._log.trace("Stored {} message for conversation {}", stored.role, conversation_id)

    def get_recent(self, conversation_id: str, limit: int) -> list[StoredMessage]:
        """Return up to ``limit`` most recent messages, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            messages = self._conversations.get(conversation_id, [])
            return list(messages[-limit:])

    def __len__(self) -> int:
        with self._lock:
            return len(self._conversations)


def create_conversation_store(memory_type: str, log: "Logger | None" = None) -> ConversationStore:
    """Build the store selected by ``MEMORY_TYPE``."""
    if memory_type == "in_memory":
        return InMemoryConversationStore(log=log)
    raise ConfigurationError(f"unsupported memory type: {memory_type}")
