"""Models for persisted conversation history."""

from __future__ import annotations

from pydantic import BaseModel, Field


class StoredMessage(BaseModel):
    """A message as kept in the conversation store.

    ``timestamp`` is assigned by the store at append time, in whole unix
    seconds.  Callers building a message to append may leave it at zero.
    """

    role: str = Field(..., description="Role of the message sender.")
    content: str = Field(..., description="Text of the message.")
    timestamp: int = Field(default=0, description="Unix seconds when the message was stored.")
