"""Chat API: one assistant reply for a transcript."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from src.api.deps import ChatRateLimit
from src.schemas.chat import ChatRequest, ChatResponse
from src.schemas.lab import ChatErrorResponse
from src.services.chat_client import ChatBackend
from src.services.chat_errors import ChatAPIError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

CHAT_FAILURE_DETAIL = "Failed to process chat request"


def get_chat_backend(request: Request) -> ChatBackend:
    """Chat backend created in the application lifespan."""
    backend = getattr(request.app.state, "chat_backend", None)
    if backend is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat backend is not available",
        )
    return backend


@router.post(
    "/chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    responses={500: {"model": ChatErrorResponse, "description": "Chat backend failure"}},
    summary="Send chat transcript",
    description="Returns the assistant reply for the transcript, phase and scent selection.",
)
async def chat(
    data: ChatRequest,
    backend: Annotated[ChatBackend, Depends(get_chat_backend)],
    _rate_limit: ChatRateLimit,
) -> ChatResponse | JSONResponse:
    """Generate the assistant reply.

    Args:
        data: Transcript with phase context.
        backend: Agent or remote chat API.

    Returns:
        ChatResponse: Reply content, choices and recipe.
    """
    try:
        return await backend.send(data)
    except ChatAPIError as e:
        logger.error("Chat API error: %s", e.message)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": CHAT_FAILURE_DETAIL},
        )
