"""Request logging middleware.

Implemented as a plain ASGI middleware rather than ``BaseHTTPMiddleware``
so streamed bodies and ``http.disconnect`` messages pass through
untouched.
"""

from __future__ import annotations

import time

from loguru import logger
from starlette.types import ASGIApp, Message, Receive, Scope, Send


class RequestLoggingMiddleware:
    """Log method, path, status, duration and client address per request."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            client = scope.get("client")
            logger.bind(component="http").info(
                "{} {} {} {:.1f}ms {}",
                scope["method"],
                scope["path"],
                status_code,
                (time.perf_counter() - start) * 1000,
                f"{client[0]}:{client[1]}" if client else "-",
            )
