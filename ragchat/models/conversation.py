"""Conversation and message models."""

from typing import Optional
from sqlalchemy import JSON, Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ragchat.models.base import Base, TimestampMixin


class Conversation(Base, TimestampMixin):
    """A chat conversation."""

    __tablename__ = "conversations"

    conversation_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="New Chat")
    endpoint: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("idx_conversations_user", "user_id"),
    )

    def to_dict(self) -> dict:
        return {
            "conversationId": self.conversation_id,
            "user": self.user_id,
            "title": self.title,
            "endpoint": self.endpoint,
            "model": self.model,
        }


class Message(Base, TimestampMixin):
    """A user or model message within a conversation."""

    __tablename__ = "messages"

    message_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    conversation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    parent_message_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sender: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    files: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    is_created_by_user: Mapped[bool] = mapped_column(Boolean, default=False)
    error: Mapped[bool] = mapped_column(Boolean, default=False)
    unfinished: Mapped[bool] = mapped_column(Boolean, default=False)
    endpoint: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("idx_messages_conversation", "conversation_id"),
        Index("idx_messages_user", "user_id"),
    )

    def to_dict(self) -> dict:
        return {
            "messageId": self.message_id,
            "conversationId": self.conversation_id,
            "parentMessageId": self.parent_message_id,
            "user": self.user_id,
            "sender": self.sender,
            "text": self.text,
            "content": self.content or [],
            "files": self.files or [],
            "isCreatedByUser": self.is_created_by_user,
            "error": self.error,
            "unfinished": self.unfinished,
            "endpoint": self.endpoint,
            "model": self.model,
        }
