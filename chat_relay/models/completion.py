"""Wire models for the provider's chat completions endpoint."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from .chat_message import Message
from .stream import StreamFragment


class CompletionRequest(BaseModel):
    """Payload posted to the provider.

    Built fresh for every inbound request and frozen before it is handed
    to the upstream client.  ``max_tokens`` is serialised under the
    provider's ``max_completion_tokens`` name; dump with ``by_alias=True``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    messages: tuple[Message, ...]
    model: str
    temperature: float
    top_p: float
    max_tokens: int = Field(..., gt=0, alias="max_completion_tokens")
    stream: bool = True

    def to_json(self) -> str:
        """Serialise the request the way the provider expects it."""
        return self.model_dump_json(by_alias=True)


class CompletionDelta(BaseModel):
    role: str | None = None
    content: str | None = None


class CompletionChoice(BaseModel):
    index: int = 0
    delta: CompletionDelta = Field(default_factory=CompletionDelta)
    finish_reason: str | None = None


class CompletionChunk(BaseModel):
    """One decoded ``chat.completion.chunk`` event.

    Only the fields the relay needs are modelled; anything else the
    provider sends (usage, system fingerprints, ...) is ignored.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    choices: list[CompletionChoice] = Field(default_factory=list)

    def to_fragment(self) -> StreamFragment:
        if not self.choices:
            return StreamFragment(id=self.id, delta_content="", is_terminal=False)
        choice = self.choices[0]
        return StreamFragment(
            id=self.id,
            delta_content=choice.delta.content or "",
            is_terminal=choice.finish_reason is not None,
        )
