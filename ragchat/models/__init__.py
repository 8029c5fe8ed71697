"""Database models for conversation history."""

from ragchat.models.base import Base, TimestampMixin
from ragchat.models.conversation import Conversation, Message

__all__ = [
    "Base",
    "TimestampMixin",
    "Conversation",
    "Message",
]
