"""Models representing chat messages exchanged with the provider."""

from pydantic import BaseModel, ConfigDict

from .enums import MessageRole


class Message(BaseModel):
    """A single chat turn sent to (or received from) the provider.

    Messages are immutable once constructed.  The ``role`` must be one of
    the values of :class:`MessageRole`; pydantic rejects anything else, so
    an unrecognised role fails the call that tries to build the message.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    role: MessageRole
    content: str
