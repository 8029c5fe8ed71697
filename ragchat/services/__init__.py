"""Service layer for the RAG chat backend.

This module provides high-level services for:
- Chat turn orchestration
- Event streaming
- Cancellation and cleanup
- Message persistence
"""

from ragchat.services.streaming import EventStream, send_event
from ragchat.services.abort import (
    AbortController,
    create_abort_controller,
    cleanup_abort_controller,
    handle_abort,
    handle_abort_error,
)
from ragchat.services.cleanup import client_registry, dispose_client, request_data_map
from ragchat.services.message_store import MessageStore, OwnershipError, get_message_store
from ragchat.services.chat_client import ChatClient, EndpointOption, initialize_client
from ragchat.services.chat_service import (
    TurnContext,
    TurnController,
    TurnRequest,
    get_turn_controller,
)

__all__ = [
    # Streaming
    "EventStream",
    "send_event",
    # Abort
    "AbortController",
    "create_abort_controller",
    "cleanup_abort_controller",
    "handle_abort",
    "handle_abort_error",
    # Cleanup
    "client_registry",
    "dispose_client",
    "request_data_map",
    # Persistence
    "MessageStore",
    "OwnershipError",
    "get_message_store",
    # Chat
    "ChatClient",
    "EndpointOption",
    "initialize_client",
    "TurnContext",
    "TurnController",
    "TurnRequest",
    "get_turn_controller",
]
