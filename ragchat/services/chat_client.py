"""Model client used by the turn controller.

``ChatClient.send_message`` runs one completion: it creates and saves the
user message, streams token deltas to the event stream, and returns the
response record together with a task that persists the conversation.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ragchat.config import GenerationConfig, get_settings
from ragchat.core.generator import LLMClient, create_llm_client
from ragchat.services.message_store import MessageStore
from ragchat.services.streaming import EventStream, send_event

logger = logging.getLogger(__name__)

NO_PARENT = "00000000-0000-0000-0000-000000000000"

TITLE_PROMPT = """Write a concise title (at most 7 words) for a conversation that starts with the exchange below.
Reply with the title only, without quotes.

User: {text}
Assistant: {response}

Title:"""


@dataclass
class EndpointOption:
    """Which backend and model serve a turn."""
    endpoint: str
    model: str
    model_parameters: Dict[str, Any] = field(default_factory=dict)


class ChatClient:
    """One-turn conversation client around an ``LLMClient``.

    Attributes:
        content_parts: Content streamed so far, for abort snapshots
        saved_message_ids: Messages this client already persisted
        options: Client options; ``attachments`` holds uploaded files
    """

    def __init__(
        self,
        llm: LLMClient,
        store: MessageStore,
        endpoint_option: EndpointOption,
        config: Optional[GenerationConfig] = None,
        options: Optional[Dict[str, Any]] = None,
    ):
        self.llm = llm
        self.store = store
        self.endpoint_option = endpoint_option
        self.config = config or get_settings().generation
        self.options: Dict[str, Any] = options or {}
        self.content_parts: List[Dict[str, Any]] = []
        self.saved_message_ids: Set[str] = set()
        self.sender = endpoint_option.model

    def _append_delta(self, delta: str) -> None:
        if not self.content_parts:
            self.content_parts.append({"type": "text", "text": ""})
        self.content_parts[-1]["text"] += delta

    async def send_message(self, text: str, options: Dict[str, Any]) -> Dict[str, Any]:
        """Send ``text`` (or ``options["force_prompt"]``) to the model.

        Args:
            text: Literal user text, persisted as the user message
            options: Turn options from the controller

        Returns:
            Response record; ``database_task`` resolves to the saved conversation
        """
        user_id = options["user"]
        get_req_data = options.get("get_req_data") or (lambda data: None)
        abort_controller = options.get("abort_controller")
        stream: Optional[EventStream] = options.get("progress_options", {}).get("stream")

        conversation_id = options.get("conversation_id") or str(uuid.uuid4())
        parent_message_id = options.get("parent_message_id") or NO_PARENT

        user_message = {
            "messageId": str(uuid.uuid4()),
            "parentMessageId": parent_message_id,
            "conversationId": conversation_id,
            "sender": "User",
            "text": text,
            "isCreatedByUser": True,
        }
        response_message_id = options.get("response_message_id") or str(uuid.uuid4())
        get_req_data({
            "userMessage": user_message,
            "conversationId": conversation_id,
            "responseMessageId": response_message_id,
            "sender": self.sender,
        })

        user_message_task = None
        if not options.get("is_regenerate"):
            user_message_task = asyncio.create_task(
                self.store.save_message(user_id, {**user_message}, context="save user message")
            )
            get_req_data({"userMessagePromise": user_message_task})

        on_start = options.get("on_start")
        if on_start is not None:
            on_start(user_message, response_message_id)

        prompt = options.get("force_prompt") or text
        # rough estimate, the providers do not report usage while streaming
        get_req_data({"promptTokens": max(1, len(prompt) // 4)})

        async for delta in self.llm.generate_stream(
            prompt=prompt,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        ):
            if abort_controller is not None and abort_controller.aborted:
                logger.debug("Stopping generation, turn aborted")
                break
            self._append_delta(delta)
            if stream is not None and not stream.finished:
                send_event(stream, {
                    "message": True,
                    "text": delta,
                    "messageId": response_message_id,
                    "conversationId": conversation_id,
                })

        if user_message_task is not None:
            await user_message_task
            self.saved_message_ids.add(user_message["messageId"])

        parent_for_response = options.get("override_parent_message_id") or user_message["messageId"]
        response = {
            "messageId": response_message_id,
            "conversationId": conversation_id,
            "parentMessageId": parent_for_response,
            "sender": self.sender,
            "text": "".join(part.get("text", "") for part in self.content_parts),
            "content": [dict(part) for part in self.content_parts],
            "isCreatedByUser": False,
            "model": self.endpoint_option.model,
            "unfinished": bool(abort_controller and abort_controller.aborted),
        }

        if not response["unfinished"]:
            await self.store.save_message(
                user_id,
                {**response, "endpoint": self.endpoint_option.endpoint},
                context="save response message",
            )
            self.saved_message_ids.add(response_message_id)

        response["database_task"] = asyncio.create_task(
            self._save_conversation(user_id, conversation_id)
        )
        return response

    async def _save_conversation(self, user_id: str, conversation_id: str) -> Dict[str, Any]:
        conversation = await self.store.save_convo(user_id, {
            "conversationId": conversation_id,
            "endpoint": self.endpoint_option.endpoint,
            "model": self.endpoint_option.model,
        })
        return {"conversation": conversation}

    async def title_convo(self, text: str, response_text: str) -> str:
        """Ask the model for a short conversation title."""
        title = await self.llm.generate(
            prompt=TITLE_PROMPT.format(text=text[:1000], response=response_text[:1000]),
            max_tokens=32,
            temperature=0.2,
        )
        return title.strip().strip('"').strip()[:255]

    async def dispose(self):
        """Close the completion client and drop per-turn state."""
        self.content_parts = []
        self.options = {}
        await self.llm.close()


async def initialize_client(
    request: Any,
    stream: EventStream,
    endpoint_option: EndpointOption,
    store: MessageStore,
) -> ChatClient:
    """Build the ``ChatClient`` serving one turn."""
    llm = create_llm_client(
        model=endpoint_option.model,
        provider=endpoint_option.endpoint,
    )
    return ChatClient(llm=llm, store=store, endpoint_option=endpoint_option)
