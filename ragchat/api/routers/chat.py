"""Chat endpoints."""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from ragchat.api.schemas import AbortRequest, ChatRequest
from ragchat.api.dependencies import (
    get_message_store_dep,
    get_settings_dep,
    get_turn_controller_dep,
    get_user_id_dep,
)
from ragchat.config import Settings
from ragchat.services.abort import handle_abort
from ragchat.services.chat_service import TurnController, TurnRequest
from ragchat.services.message_store import MessageStore
from ragchat.services.streaming import EventStream, watch_disconnect

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents/chat", tags=["Chat"])

# Keeps running turns referenced until they finish
_running_turns = set()


def _to_turn_request(request: ChatRequest) -> TurnRequest:
    return TurnRequest(
        text=request.text,
        conversation_id=request.conversation_id,
        parent_message_id=request.parent_message_id,
        override_parent_message_id=request.override_parent_message_id,
        is_regenerate=request.is_regenerate,
        is_continued=request.is_continued,
        edited_content=request.edited_content,
        response_message_id=request.response_message_id,
        endpoint=request.endpoint,
        model=request.model,
        files=[f.model_dump() for f in request.files] if request.files else None,
    )


@router.post("")
async def chat(
    body: ChatRequest,
    request: Request,
    controller: TurnController = Depends(get_turn_controller_dep),
    settings: Settings = Depends(get_settings_dep),
    user_id: str = Depends(get_user_id_dep),
):
    """Run one chat turn and stream its events.

    The response is a Server-Sent Events stream ending with a single
    ``final`` event, or a plain JSON error when the model response is
    rejected before anything was streamed.
    """
    stream = EventStream()
    turn = asyncio.create_task(
        controller.handle(request, stream, _to_turn_request(body), user_id)
    )
    _running_turns.add(turn)
    turn.add_done_callback(_running_turns.discard)

    watcher = asyncio.create_task(
        watch_disconnect(request, stream, settings.stream.disconnect_poll_interval)
    )
    ready = asyncio.create_task(stream.wait_until_ready())
    try:
        await asyncio.wait({ready, turn}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watcher.cancel()
        ready.cancel()

    if stream.json_response is not None:
        status_code, content = stream.json_response
        return JSONResponse(status_code=status_code, content=content)

    if not stream.headers_sent:
        logger.error("Chat turn finished without a response")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Chat turn produced no response"},
        )

    return StreamingResponse(
        stream.iter_frames(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.post("/abort")
async def abort_chat(
    body: AbortRequest,
    store: MessageStore = Depends(get_message_store_dep),
    user_id: str = Depends(get_user_id_dep),
):
    """Stop a running turn and return its partial response."""
    payload = await handle_abort(user_id, body.conversation_id, store)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "NOT_FOUND", "message": "No running request for this conversation"},
        )
    return payload
