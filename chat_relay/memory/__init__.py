"""Memory package containing the conversation history stores."""

from .conversation_store import (  # noqa: F401
    MAX_MESSAGES,
    ConversationStore,
    InMemoryConversationStore,
    create_conversation_store,
)
