"""Enumerations used across models."""

from enum import Enum


class MessageRole(str, Enum):
    """Enum for message roles in a conversation.

    The role field distinguishes between the sender of each message in the
    conversation.  ``USER`` denotes a human message, ``ASSISTANT`` denotes
    a reply from the model, and ``SYSTEM`` carries instructions that steer
    the model for the whole exchange.
    """

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
