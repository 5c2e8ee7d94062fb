"""FastAPI application entry point.

This module initialises the FastAPI app, configures logging and
registers API routes.  The ``uvicorn`` ASGI server can point to
``chat_relay.main:app`` to serve the application, or run ``chat-relay``.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from .config.app_config import get_app_config
from .controllers.chat_controller import router as chat_router
from .services.chat_service import get_chat_service
from .utils.error_handler import ChatError, http_exception_handler, validation_exception_handler
from .utils.logger import setup_logging
from .utils.middleware import RequestLoggingMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Chat relay starting")
    yield
    # Only tear down a service that was actually created.
    if get_chat_service.cache_info().currsize:
        await get_chat_service().aclose()
    logger.info("Chat relay stopped")


def create_app() -> FastAPI:
    """Create and configure a FastAPI application."""
    setup_logging()

    app = FastAPI(title="Chat Relay", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
        expose_headers=["X-Conversation-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(ChatError, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(chat_router)

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        logger.debug("Health check invoked")
        return {"status": "ok"}

    return app


# Create an application instance for ASGI servers
app = create_app()


def run() -> None:
    """Start the uvicorn server with host and port from the app config."""
    config = get_app_config()
    uvicorn.run(
        "chat_relay.main:app",
        host=config.app_host,
        port=config.app_port,
        log_config=None,
    )
