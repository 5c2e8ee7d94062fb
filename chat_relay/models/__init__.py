"""Expose commonly used model classes at the package level.

Importing these classes here allows consumers to write concise imports like::

    from chat_relay.models import ChatRequest, Message, StreamResult

These names refer to the underlying Pydantic models and dataclasses
defined in their respective modules.
"""

from .chat_request import ChatRequest, InboundMessage  # noqa: F401
from .chat_message import Message  # noqa: F401
from .completion import CompletionChunk, CompletionRequest  # noqa: F401
from .conversation import StoredMessage  # noqa: F401
from .enums import MessageRole  # noqa: F401
from .stream import StreamFragment, StreamResult  # noqa: F401
