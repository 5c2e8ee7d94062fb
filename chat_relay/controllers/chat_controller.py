"""Controllers for chat endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger

from ..memory.conversation_store import MAX_MESSAGES
from ..models.chat_request import ChatRequest
from ..models.conversation import StoredMessage
from ..services.cancellation import CancelContext
from ..services.chat_service import ChatService, get_chat_service
from ..utils.streaming import ASGIResponseSink, RelayStreamingResponse

CONVERSATION_HEADER = "X-Conversation-ID"

router = APIRouter(prefix="", tags=["Chat"])


@router.post("/chat", response_class=RelayStreamingResponse)
async def chat_endpoint(
    request: ChatRequest,
    service: ChatService = Depends(get_chat_service),
) -> RelayStreamingResponse:
    """Send messages to the model and stream the reply back.

    The body of the response is the raw concatenation of the reply's
    text deltas, each flushed as soon as it arrives.  Configuration
    problems and invalid messages raise a ChatError before streaming starts,
    which the application-level handler turns into a JSON error.
    """
    completion = service.build_request(request)

    logger.info(
        "Relaying {} messages to model {} (conversation={})",
        len(completion.messages),
        completion.model,
        request.conversation_id,
    )

    headers: dict[str, str] = {}
    if request.conversation_id:
        headers[CONVERSATION_HEADER] = request.conversation_id

    async def handle(request_ctx: CancelContext, sink: ASGIResponseSink) -> None:
        def announce_turn(turn_id: str) -> None:
            if not request.conversation_id and not sink.started:
                sink.set_header(CONVERSATION_HEADER, turn_id)

        await service.stream_reply(
            request,
            completion,
            request_ctx,
            sink,
            on_turn_start=announce_turn,
        )

    return RelayStreamingResponse(handle, headers=headers)


@router.get("/conversations/{conversation_id}/messages", response_model=list[StoredMessage])
async def recent_messages_endpoint(
    conversation_id: str,
    limit: int = Query(MAX_MESSAGES, ge=1, le=MAX_MESSAGES),
    service: ChatService = Depends(get_chat_service),
) -> list[StoredMessage]:
    """Return the most recent stored messages of a conversation, oldest first.

    Unknown conversations yield an empty list.
    """
    try:
        return service.recent_messages(conversation_id, limit)
    except Exception as exc:
        logger.exception("Failed to read conversation {}", conversation_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read conversation",
        ) from exc


@router.get("/status")
async def status_endpoint() -> dict[str, str]:
    """Report that the server is up."""
    return {"status": "OK"}
