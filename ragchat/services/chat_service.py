"""Chat turn orchestration.

A turn runs through: client acquisition, cancellation wiring, RAG
injection, model call, response normalization, emission, persistence and
cleanup. ``TurnContext`` holds everything the turn owns and releases it in
a single idempotent ``teardown()``; ``TurnController`` drives the steps.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ragchat.config import Settings, get_settings
from ragchat.core.context import build_model_input, format_rag_context
from ragchat.core.normalizer import (
    MalformedResponseError,
    coerce_response,
    ensure_array_fields,
    preview,
    sanitize_response,
)
from ragchat.core.retrieval import RetrievalResult, VectorRetriever, get_retriever
from ragchat.services.abort import (
    AbortController,
    cleanup_abort_controller,
    create_abort_controller,
    handle_abort_error,
)
from ragchat.services.chat_client import EndpointOption, NO_PARENT, initialize_client
from ragchat.services.cleanup import client_registry, dispose_client, request_data_map
from ragchat.services.message_store import MessageStore, OwnershipError, get_message_store
from ragchat.services.streaming import EventStream, send_event

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class TurnRequest:
    """A chat turn as submitted by the user."""
    text: str
    conversation_id: Optional[str] = None
    parent_message_id: Optional[str] = None
    override_parent_message_id: Optional[str] = None
    is_regenerate: bool = False
    is_continued: bool = False
    edited_content: Optional[str] = None
    response_message_id: Optional[str] = None
    endpoint: Optional[str] = None
    model: Optional[str] = None
    files: Optional[List[Dict[str, Any]]] = None


class TurnContext:
    """Request-scoped state of one chat turn."""

    def __init__(
        self,
        request: Any,
        stream: EventStream,
        body: TurnRequest,
        user_id: str,
        endpoint_option: EndpointOption,
    ):
        self.request = request
        self.stream = stream
        self.body = body
        self.user_id = user_id
        self.endpoint_option: Optional[EndpointOption] = endpoint_option

        self.conversation_id: Optional[str] = body.conversation_id
        self.sender: Optional[str] = None
        self.user_message: Optional[Dict[str, Any]] = None
        self.user_message_id: Optional[str] = None
        self.user_message_task = None
        self.response_message_id: Optional[str] = None
        self.prompt_tokens: Optional[int] = None

        self.client = None
        self.abort_key: Optional[str] = None
        self.abort_controller: Optional[AbortController] = None
        self.cleanup_handlers: Optional[List[Callable[[], None]]] = []
        self._torn_down = False

    @property
    def is_new_conversation(self) -> bool:
        return not self.body.conversation_id

    def update(self, data: Dict[str, Any]) -> None:
        """Record values reported by the model client."""
        for key, value in data.items():
            if key == "userMessage":
                self.user_message = value
                self.user_message_id = value.get("messageId")
            elif key == "userMessagePromise":
                self.user_message_task = value
            elif key == "responseMessageId":
                self.response_message_id = value
            elif key == "promptTokens":
                self.prompt_tokens = value
            elif key == "sender":
                self.sender = value
            elif key == "conversationId" and not self.conversation_id:
                self.conversation_id = value

    def abort_snapshot(self) -> Dict[str, Any]:
        """Current turn state, as seen by an abort request."""
        content = getattr(self.client, "content_parts", None)
        return {
            "sender": self.sender,
            "content": content if content is not None else [],
            "userMessage": self.user_message,
            "promptTokens": self.prompt_tokens,
            "conversationId": self.conversation_id,
            "userMessagePromise": self.user_message_task,
            "messageId": self.response_message_id,
            "parentMessageId": self.body.override_parent_message_id or self.user_message_id,
        }

    def error_data(self) -> Dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "sender": self.sender,
            "messageId": self.response_message_id,
            "parentMessageId": (
                self.body.override_parent_message_id
                or self.user_message_id
                or self.body.parent_message_id
            ),
            "userMessageId": self.user_message_id,
        }

    def add_cleanup(self, handler: Callable[[], None]) -> None:
        self.cleanup_handlers.append(handler)

    async def teardown(self) -> None:
        """Release everything the turn owns. Safe to call more than once."""
        if self._torn_down:
            return
        self._torn_down = True
        logger.debug("[TurnController] Performing cleanup")

        for handler in self.cleanup_handlers or []:
            try:
                handler()
            except Exception as e:
                logger.error(f"[TurnController] Error in cleanup handler: {e}", exc_info=True)

        if self.abort_key:
            logger.debug("[TurnController] Cleaning up abort controller")
            cleanup_abort_controller(self.abort_key)

        client, self.client = self.client, None
        await dispose_client(client)

        self.cleanup_handlers = None
        self.user_message = None
        self.user_message_task = None
        self.endpoint_option = None
        request_data_map.pop(id(self.request), None)
        logger.debug("[TurnController] Cleanup completed")


class TurnController:
    """Runs one chat turn from request to terminal event."""

    def __init__(
        self,
        retriever: Optional[VectorRetriever] = None,
        store: Optional[MessageStore] = None,
        client_factory: Optional[ClientFactory] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.retriever = retriever or get_retriever()
        self.store = store or get_message_store()
        self.client_factory = client_factory or initialize_client

    def endpoint_option_for(self, body: TurnRequest) -> EndpointOption:
        generation = self.settings.generation
        return EndpointOption(
            endpoint=body.endpoint or generation.provider,
            model=body.model or generation.model,
        )

    async def handle(
        self,
        request: Any,
        stream: EventStream,
        body: TurnRequest,
        user_id: str,
    ) -> TurnContext:
        """Run the turn; always leaves ``stream`` finished or closed."""
        ctx = TurnContext(
            request=request,
            stream=stream,
            body=body,
            user_id=user_id,
            endpoint_option=self.endpoint_option_for(body),
        )
        try:
            await self._run(ctx)
        except (MalformedResponseError, OwnershipError) as error:
            self._reject(ctx, error)
        except Exception as error:
            aborted = ctx.abort_controller is not None and ctx.abort_controller.aborted
            try:
                await handle_abort_error(stream, error, ctx.error_data(), aborted=aborted)
            except Exception as e:
                logger.error(f"[TurnController] Error in handle_abort_error: {e}", exc_info=True)
        finally:
            await ctx.teardown()
            if not stream.finished and not stream.closed:
                logger.warning("[TurnController] Turn ended without a terminal event")
                stream.end()
        return ctx

    async def retrieve_context(self, text: str) -> str:
        """Build the RAG prefix for ``text``; empty when nothing is injected."""
        logger.info(f"[RAG] beginning retrieval for query: {text}")
        results = await self.retriever.retrieve(text)
        if self.settings.rag.debug:
            self._log_previews(results)
        return format_rag_context(results, max_chars=self.settings.rag.max_context_chars)

    def _log_previews(self, results: List[RetrievalResult]) -> None:
        previews = [
            {
                "sim": f"{r.similarity:.3f}",
                "preview": r.text[:120],
                "source": r.metadata.get("source", "unknown"),
            }
            for r in results[:8]
        ]
        logger.debug(f"[RAG] Raw result previews:\n{json.dumps(previews, indent=2, default=str)}")

    async def _inject_context(self, text: str) -> str:
        try:
            context = await self.retrieve_context(text)
        except Exception as e:
            logger.error(f"[TurnController] RAG injection failed: {e}", exc_info=True)
            return text

        if context:
            logger.info(f"[RAG] Injecting RAG context of length: {len(context)}")
        else:
            logger.info("[RAG] No RAG context injected")
        return build_model_input(context, text)

    async def _run(self, ctx: TurnContext) -> None:
        body = ctx.body
        stream = ctx.stream
        text = body.text

        client = await self.client_factory(
            request=ctx.request,
            stream=stream,
            endpoint_option=ctx.endpoint_option,
            store=self.store,
        )
        ctx.client = client
        client_registry.register(client, {"user_id": ctx.user_id})
        request_data_map[id(ctx.request)] = {"client": client}

        abort_controller, on_start = create_abort_controller(ctx)
        ctx.abort_controller = abort_controller

        def close_handler():
            logger.debug("[TurnController] Request closed")
            if abort_controller.aborted or abort_controller.request_completed:
                return
            abort_controller.abort("closed")
            logger.debug("[TurnController] Request aborted on close")

        stream.on_close(close_handler)
        ctx.add_cleanup(lambda: stream.remove_close_listener(close_handler))

        message_options = {
            "user": ctx.user_id,
            "on_start": on_start,
            "get_req_data": ctx.update,
            "is_continued": body.is_continued,
            "is_regenerate": body.is_regenerate,
            "edited_content": body.edited_content,
            "conversation_id": body.conversation_id,
            "parent_message_id": body.parent_message_id,
            "abort_controller": abort_controller,
            "override_parent_message_id": body.override_parent_message_id,
            "is_edited": bool(body.edited_content),
            "response_message_id": body.response_message_id,
            "progress_options": {"stream": stream},
        }

        model_input = await self._inject_context(text)

        raw = await client.send_message(text, {**message_options, "force_prompt": model_input})

        response = coerce_response(raw).unwrap()

        message_id = response.get("messageId")
        response["endpoint"] = ctx.endpoint_option.endpoint

        database_task = response.pop("database_task", None)
        convo_data = {}
        if database_task is not None:
            convo_data = (await database_task).get("conversation") or {}
        conversation = dict(convo_data)
        conversation["title"] = conversation.get("title") or "New Chat"

        self._attach_files(ctx, client)

        if not abort_controller.aborted:
            await self._emit_final(ctx, response, conversation, message_id)
        elif not stream.headers_sent and not stream.finished:
            logger.debug("[TurnController] Handling edge case: aborted during completion")
            self._emit_aborted(ctx, response, conversation)

    def _attach_files(self, ctx: TurnContext, client: Any) -> None:
        attachments = (getattr(client, "options", None) or {}).get("attachments")
        if not ctx.body.files or not attachments or ctx.user_message is None:
            return
        requested = {f.get("file_id") for f in ctx.body.files}
        ctx.user_message["files"] = [
            dict(att) for att in attachments if att.get("file_id") in requested
        ]
        ctx.user_message.pop("image_urls", None)

    def _reject(self, ctx: TurnContext, error: Exception) -> None:
        """Fail the turn with the error's ``status_code``, without a final message event."""
        message = str(error)
        stream = ctx.stream
        if stream.closed or stream.finished:
            logger.error(f"[TurnController] {message} (stream already closed)")
        elif not stream.headers_sent:
            stream.json_error(error.status_code, {"error": message})
        else:
            send_event(stream, {"final": True, "error": {"message": message, "status": error.status_code}})
            stream.end()

    def _log_diagnostics(self, response: Dict[str, Any]) -> None:
        logger.info("[TurnController] --- MODEL RESPONSE DIAGNOSTICS ---")
        keys = list(response.keys())
        if not keys:
            logger.warning("[TurnController] Response object has NO KEYS")
        logger.info(f"[TurnController] Keys in model response: {', '.join(keys)}")
        logger.info(f"[TurnController] Preview of raw response:\n{preview(response)}")

    async def _emit_final(
        self,
        ctx: TurnContext,
        response: Dict[str, Any],
        conversation: Dict[str, Any],
        message_id: Optional[str],
    ) -> None:
        text = ctx.body.text
        user_message = ctx.user_message
        if user_message is not None:
            user_message["content"] = text
            user_message["text"] = text

        self._log_diagnostics(response)

        final_response = sanitize_response(response, user_message).unwrap()
        logger.info("[TurnController] Final payload being sent")
        logger.info(f"[TurnController] Keys in final response: {', '.join(final_response)}")

        ensure_array_fields(final_response)
        ensure_array_fields(user_message)

        send_event(ctx.stream, {
            "final": True,
            "conversation": conversation,
            "title": conversation["title"],
            "requestMessage": user_message,
            "responseMessage": final_response,
        })
        ctx.stream.end()
        ctx.abort_controller.request_completed = True

        saved = getattr(ctx.client, "saved_message_ids", None)
        if saved is not None and message_id not in saved:
            await self.store.save_message(
                ctx.user_id,
                {**final_response, "user": ctx.user_id},
                context="chat_service.TurnController - response end",
            )

        if self._should_add_title(ctx):
            await self.add_title(ctx, final_response)

    def _emit_aborted(
        self,
        ctx: TurnContext,
        response: Dict[str, Any],
        conversation: Dict[str, Any],
    ) -> None:
        text = ctx.body.text
        if ctx.user_message is not None:
            ctx.user_message["content"] = text
            ctx.user_message["text"] = text
        send_event(ctx.stream, {
            "final": True,
            "conversation": conversation,
            "title": conversation["title"],
            "requestMessage": ctx.user_message,
            "responseMessage": {**response, "error": True},
            "error": {"message": "Request was aborted during completion"},
        })
        ctx.stream.end()

    def _should_add_title(self, ctx: TurnContext) -> bool:
        parent = ctx.body.parent_message_id
        return (
            ctx.is_new_conversation
            and not ctx.body.is_regenerate
            and (parent is None or parent == NO_PARENT)
            and hasattr(ctx.client, "title_convo")
        )

    async def add_title(self, ctx: TurnContext, final_response: Dict[str, Any]) -> Optional[str]:
        """Name a new conversation after its first exchange."""
        conversation_id = final_response.get("conversationId") or ctx.conversation_id
        if not conversation_id:
            return None
        try:
            title = await ctx.client.title_convo(ctx.body.text, final_response.get("text", ""))
            if not title:
                return None
            await self.store.save_convo(ctx.user_id, {
                "conversationId": conversation_id,
                "title": title,
            })
            logger.info(f"[TurnController] Titled conversation {conversation_id}: {title}")
            return title
        except Exception as e:
            logger.error(f"[TurnController] Title generation failed: {e}", exc_info=True)
            return None


# Singleton instance
_controller: Optional[TurnController] = None


def get_turn_controller() -> TurnController:
    """Get the global turn controller instance."""
    global _controller
    if _controller is None:
        _controller = TurnController()
    return _controller
