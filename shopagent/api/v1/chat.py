"""Chat API endpoints."""

from fastapi import APIRouter, HTTPException, Query, Request, status

from shopagent.core.config import settings
from shopagent.core.deps import ChatServiceDep
from shopagent.core.rate_limit import get_client_ip, limiter
from shopagent.schemas.chat import ChatRequest, ChatResponse

router = APIRouter()


@router.post(
    "/messages",
    response_model=ChatResponse,
    summary="Send a chat message",
    description="""
    Send a message and get the assistant's reply.

    Omit session_id to start a new conversation; the response carries the
    session_id to send with follow-up messages. Cart changes are never made
    directly: the reply carries a confirmation block, and the change runs
    only after the user answers "yes".
    """,
)
@limiter.limit(settings.chat_rate_limit)
async def send_message(
    request: Request,
    payload: ChatRequest,
    service: ChatServiceDep,
) -> ChatResponse:
    """Send a message and get the assistant's reply."""
    return await service.process_message(payload, client_ip=get_client_ip(request))


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a chat session",
)
async def delete_session(
    session_id: str,
    service: ChatServiceDep,
    application_id: str = Query(..., min_length=1, description="Application ID"),
) -> None:
    """Forget a conversation, including any pending cart confirmation."""
    if not await service.delete_session(application_id, session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
