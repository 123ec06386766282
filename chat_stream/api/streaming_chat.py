"""Streaming chat API endpoint that relays model tokens as Server-Sent Events."""

from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from chat_stream.api.deps import get_orchestrator
from chat_stream.core.errors import ValidationError
from chat_stream.core.logging import get_logger
from chat_stream.services.chat.orchestrator import ChatTurnOrchestrator
from chat_stream.services.chat.request_validator import validate_chat_request
from chat_stream.utils.error_handlers import create_error_response

logger = get_logger(__name__)
router = APIRouter()

ANONYMOUS_USER = "anonymous"


async def _read_body(request: Request) -> Optional[Any]:
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


@router.post("/chat")
@router.post("/chat/stream")
async def chat_stream(
    request: Request,
    orchestrator: ChatTurnOrchestrator = Depends(get_orchestrator),
):
    """Stream a chat turn.

    Validation failures are answered with a 400 JSON body; once the stream is
    committed, every outcome is reported in-band as events.
    """
    try:
        chat_request = validate_chat_request(await _read_body(request))
    except ValidationError as e:
        return create_error_response(
            message=e.user_message,
            status_code=e.status_code or 400,
            error_code=e.code,
            details={"details": e.errors},
        )

    user_id = request.headers.get("X-User-Id") or ANONYMOUS_USER

    try:
        session, headers = orchestrator.start_turn(
            chat_request,
            user_id,
            request_id=request.headers.get("X-Request-Id"),
        )
    except Exception as e:
        logger.error(f"Failed to start chat turn: {e}", exc_info=True)
        return create_error_response(
            message="Failed to process chat request",
            status_code=500,
            error_code="INTERNAL_ERROR",
        )

    logger.info(
        "Chat stream started",
        extra={
            "req_id": session.request_id,
            "session_id": chat_request.session_id,
            "use_memory": chat_request.use_memory,
        },
    )

    return StreamingResponse(
        session.stream(),
        media_type="text/event-stream",
        headers=headers,
    )
