"""Values carried over the upstream result channel."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StreamFragment:
    """One incremental piece of a generated reply.

    ``id`` is empty for fragments that carry no usable content; the relay
    skips those.  ``is_terminal`` is set when the provider reported a
    finish reason for the turn.
    """

    id: str
    delta_content: str
    is_terminal: bool = False


@dataclass(frozen=True)
class StreamResult:
    """Either a fragment or the error that replaced it.

    Build instances through :meth:`of` and :meth:`failure` so exactly one
    side is ever populated.
    """

    fragment: StreamFragment | None = None
    error: Exception | None = None

    def __post_init__(self) -> None:
        if (self.fragment is None) == (self.error is None):
            raise ValueError("StreamResult needs exactly one of fragment or error")

    @classmethod
    def of(cls, fragment: StreamFragment) -> "StreamResult":
        return cls(fragment=fragment)

    @classmethod
    def failure(cls, error: Exception) -> "StreamResult":
        return cls(error=error)

    @property
    def is_error(self) -> bool:
        return self.error is not None
