"""Request model for the chat API."""

from pydantic import BaseModel, Field


class InboundMessage(BaseModel):
    """A message as supplied by the client.

    The role is kept as a plain string here so that an unknown role can
    be rejected by the service with a 400 rather than a schema error.
    """

    role: str
    content: str


class ChatRequest(BaseModel):
    """Represents a request payload for ``POST /chat``.

    ``messages`` is the ordered conversation the client wants the model to
    continue.  ``model`` is optional and falls back to the configured
    default.  ``conversation_id`` lets a client file the turn under an
    identifier of its choosing; when omitted, the identifier of the
    upstream completion is used and echoed back in the
    ``X-Conversation-ID`` response header.
    """

    messages: list[InboundMessage] = Field(
        default_factory=list,
        description="Ordered messages forwarded to the model.",
    )
    model: str | None = Field(
        default=None,
        description="Optional model identifier.  Defaults to the configured model.",
    )
    conversation_id: str | None = Field(
        default=None,
        description="Optional identifier under which the turn is stored.",
    )
