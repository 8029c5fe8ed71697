"""API routers for the RAG chat backend."""

from ragchat.api.routers.chat import router as chat_router
from ragchat.api.routers.conversations import router as conversations_router

__all__ = [
    "chat_router",
    "conversations_router",
]
