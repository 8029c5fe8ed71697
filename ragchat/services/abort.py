"""Cancellation primitives for chat turns.

Each turn owns one ``AbortController``. Once the model client reports the
turn has started, the controller is registered under
``"{user_id}:{conversation_id}"`` so a separate abort request can stop it
and reply with the partial response.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

from ragchat.core.normalizer import text_from_content
from ragchat.services.streaming import EventStream, send_event

if TYPE_CHECKING:
    from ragchat.services.chat_service import TurnContext
    from ragchat.services.message_store import MessageStore

logger = logging.getLogger(__name__)

ABORTED_DURING_COMPLETION = "Request was aborted during completion"
GENERIC_ERROR = "An error occurred while processing the request"


class AbortController:
    """One-shot cancellation flag for a turn."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None
        self.request_completed = False

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "aborted") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()


@dataclass
class AbortEntry:
    abort_controller: AbortController
    get_abort_data: Callable[[], Dict[str, Any]]
    stream: EventStream


# abort key -> running turn
abort_controllers: Dict[str, AbortEntry] = {}


def make_abort_key(user_id: str, conversation_id: str) -> str:
    return f"{user_id}:{conversation_id}"


def create_abort_controller(
    ctx: "TurnContext",
) -> Tuple[AbortController, Callable[[Dict[str, Any], Optional[str]], None]]:
    """Create the turn's abort controller and its ``on_start`` hook."""
    abort_controller = AbortController()

    def on_start(user_message: Dict[str, Any], response_message_id: Optional[str] = None) -> None:
        conversation_id = user_message.get("conversationId") or ctx.conversation_id
        key = make_abort_key(ctx.user_id, conversation_id)
        abort_controllers[key] = AbortEntry(
            abort_controller=abort_controller,
            get_abort_data=ctx.abort_snapshot,
            stream=ctx.stream,
        )
        ctx.abort_key = key
        if response_message_id:
            ctx.update({"responseMessageId": response_message_id})
        send_event(ctx.stream, {"message": user_message, "created": True})

    return abort_controller, on_start


def cleanup_abort_controller(abort_key: str) -> bool:
    """Forget a turn's abort controller. Returns whether one was registered."""
    return abort_controllers.pop(abort_key, None) is not None


async def handle_abort(
    user_id: str,
    conversation_id: str,
    store: "MessageStore",
) -> Optional[Dict[str, Any]]:
    """Abort a running turn and finish its stream with the partial response.

    Returns the final payload, or None when no turn is registered.
    """
    key = make_abort_key(user_id, conversation_id)
    entry = abort_controllers.pop(key, None)
    if entry is None:
        logger.debug(f"No running turn for abort key {key}")
        return None

    entry.abort_controller.abort("user")
    data = entry.get_abort_data()

    user_message_task = data.get("userMessagePromise")
    if user_message_task is not None:
        try:
            await user_message_task
        except Exception as e:
            logger.error(f"User message was not saved before abort: {e}")

    content = list(data.get("content") or [])
    response_message = {
        "messageId": data.get("messageId") or str(uuid.uuid4()),
        "parentMessageId": data.get("parentMessageId"),
        "conversationId": data.get("conversationId") or conversation_id,
        "sender": data.get("sender"),
        "content": content,
        "text": text_from_content(content),
        "isCreatedByUser": False,
        "unfinished": True,
        "error": False,
    }
    payload = {
        "final": True,
        "conversation": {"conversationId": response_message["conversationId"]},
        "title": None,
        "requestMessage": data.get("userMessage"),
        "responseMessage": response_message,
    }

    entry.abort_controller.request_completed = True
    if not entry.stream.finished:
        send_event(entry.stream, payload)
        entry.stream.end()

    await store.save_message(
        user_id,
        {**response_message, "user": user_id},
        context="handle_abort",
    )
    logger.info(f"Aborted turn {key}")
    return payload


async def handle_abort_error(
    stream: EventStream,
    error: BaseException,
    data: Dict[str, Any],
    aborted: bool = False,
) -> None:
    """Finish a failed turn's stream with a terminal error event.

    Nothing is written when the peer is gone or the stream already ended.
    """
    if aborted:
        logger.info(f"Turn aborted before failing: {error}")
    else:
        logger.error(f"Turn failed: {error}", exc_info=error)

    if stream.closed or stream.finished:
        logger.debug("Stream already closed, skipping error event")
        return

    message = ABORTED_DURING_COMPLETION if aborted else GENERIC_ERROR
    response_message = {
        "messageId": data.get("messageId") or str(uuid.uuid4()),
        "parentMessageId": data.get("parentMessageId"),
        "conversationId": data.get("conversationId"),
        "sender": data.get("sender"),
        "text": message,
        "content": [],
        "isCreatedByUser": False,
        "unfinished": False,
        "error": True,
    }
    send_event(stream, {
        "final": True,
        "conversation": {"conversationId": data.get("conversationId")},
        "requestMessage": {"messageId": data.get("userMessageId")},
        "responseMessage": response_message,
        "error": {"message": message},
    })
    stream.end()
