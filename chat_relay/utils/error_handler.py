"""Error handling utilities and custom exceptions."""

from __future__ import annotations

from http import HTTPStatus

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger


class ChatError(Exception):
    """Base class for failures raised while handling a chat request.

    ``status_code`` is the HTTP status used when the error surfaces before
    any part of the response has been sent.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(ChatError):
    """Required configuration is missing or malformed."""


class InvalidMessageError(ChatError):
    """An inbound message could not be turned into a provider message."""

    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamSetupError(ChatError):
    """The upstream request could not be built or dispatched."""

    status_code = status.HTTP_502_BAD_GATEWAY


class RelayError(ChatError):
    """A failure after streaming began.

    ``partial`` holds the assistant text relayed before the failure.
    """

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, *, partial: str = "", status_code: int | None = None) -> None:
        super().__init__(message, status_code=status_code)
        self.partial = partial


class UpstreamStreamError(RelayError):
    """The provider's event stream failed or reported an error."""


class UpstreamTransportError(UpstreamStreamError):
    """The connection to the provider failed mid-stream."""


class UpstreamStatusError(UpstreamStreamError):
    """The provider answered with a non-2xx status."""

    def __init__(self, upstream_status: int, body: str = "") -> None:
        message = f"upstream responded with status {upstream_status}"
        if body:
            message = f"{message}: {body}"
        super().__init__(message)
        self.upstream_status = upstream_status
        self.body = body


class UpstreamDecodeError(UpstreamStreamError):
    """A single event from the provider could not be decoded."""


class DownstreamWriteError(RelayError):
    """The client went away while the reply was being written."""


def public_detail(exc: ChatError) -> str:
    """Return the error text safe to show a client.

    Server-side failures only expose the status phrase; their messages can
    carry provider responses or transport internals.
    """
    if exc.status_code < 500:
        return exc.message
    return HTTPStatus(exc.status_code).phrase


async def http_exception_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Convert a ChatError into a JSON error response."""
    logger.error("ChatError occurred on {} {}: {}", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": public_detail(exc)},
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Reject malformed request bodies with a 400."""
    logger.warning("Rejected malformed request to {}: {}", request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Bad Request"},
    )
