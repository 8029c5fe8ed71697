"""Conversation and message persistence.

Messages arrive as the camelCase dicts that travel over the event stream;
this service maps them onto the SQLAlchemy models. Blocking database work
runs in a worker thread.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ragchat.config import MessageStoreConfig, get_settings
from ragchat.models import Base, Conversation, Message

logger = logging.getLogger(__name__)


class OwnershipError(Exception):
    """A save targeted a record that belongs to another user."""

    status_code = 403


class MessageStore:
    """SQLAlchemy-backed store for conversations and messages."""

    def __init__(
        self,
        config: Optional[MessageStoreConfig] = None,
        engine: Optional[Engine] = None,
    ):
        """Initialize the store.

        Args:
            config: Persistence configuration
            engine: Pre-built engine (for testing)
        """
        self.config = config or get_settings().messages
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None

    def _ensure_initialized(self) -> sessionmaker:
        """Lazy initialization of the engine and tables."""
        if self._session_factory is None:
            if self._engine is None:
                connect_args = {}
                if self.config.url.startswith("sqlite"):
                    connect_args["check_same_thread"] = False
                logger.info("Connecting message store")
                self._engine = create_engine(self.config.url, connect_args=connect_args)
            if self.config.create_tables:
                Base.metadata.create_all(self._engine)
            self._session_factory = sessionmaker(self._engine, expire_on_commit=False)
        return self._session_factory

    def _session(self) -> Session:
        return self._ensure_initialized()()

    # ---- messages ----

    def _save_message(self, user_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
        message_id = record.get("messageId")
        if not message_id:
            raise ValueError("Cannot save a message without messageId")

        with self._session() as session:
            message = session.get(Message, message_id)
            if message is None:
                message = Message(message_id=message_id, user_id=user_id)
                session.add(message)
            elif message.user_id != user_id:
                raise OwnershipError(
                    f"Message {message_id} belongs to another user"
                )

            message.conversation_id = record.get("conversationId") or ""
            message.parent_message_id = record.get("parentMessageId")
            message.sender = record.get("sender")
            message.text = record.get("text") or ""
            content = record.get("content")
            message.content = content if isinstance(content, list) else None
            files = record.get("files")
            message.files = files if isinstance(files, list) else None
            message.is_created_by_user = bool(record.get("isCreatedByUser", False))
            message.error = bool(record.get("error", False))
            message.unfinished = bool(record.get("unfinished", False))
            message.endpoint = record.get("endpoint")
            message.model = record.get("model")

            session.commit()
            return message.to_dict()

    async def save_message(
        self,
        user_id: str,
        record: Dict[str, Any],
        context: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert or update a message.

        Args:
            user_id: Owner of the message
            record: Message record (camelCase keys)
            context: Caller description, for logs

        Returns:
            The stored message
        """
        logger.debug(f"Saving message {record.get('messageId')} ({context})")
        return await asyncio.to_thread(self._save_message, user_id, record)

    def _get_messages(self, user_id: str, conversation_id: str) -> List[Dict[str, Any]]:
        with self._session() as session:
            rows = session.scalars(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .where(Message.user_id == user_id)
                .order_by(Message.created_at)
            ).all()
            return [row.to_dict() for row in rows]

    async def get_messages(self, user_id: str, conversation_id: str) -> List[Dict[str, Any]]:
        """List a conversation's messages, oldest first."""
        return await asyncio.to_thread(self._get_messages, user_id, conversation_id)

    # ---- conversations ----

    def _save_convo(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        conversation_id = data.get("conversationId")
        if not conversation_id:
            raise ValueError("Cannot save a conversation without conversationId")

        with self._session() as session:
            convo = session.get(Conversation, conversation_id)
            if convo is None:
                convo = Conversation(conversation_id=conversation_id, user_id=user_id)
                session.add(convo)
            elif convo.user_id != user_id:
                raise OwnershipError(
                    f"Conversation {conversation_id} belongs to another user"
                )
            if data.get("title"):
                convo.title = data["title"]
            elif not convo.title:
                convo.title = "New Chat"
            convo.endpoint = data.get("endpoint", convo.endpoint)
            convo.model = data.get("model", convo.model)
            session.commit()
            return convo.to_dict()

    async def save_convo(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or update a conversation."""
        return await asyncio.to_thread(self._save_convo, user_id, data)

    def _get_convo(self, user_id: str, conversation_id: str) -> Optional[Dict[str, Any]]:
        with self._session() as session:
            convo = session.get(Conversation, conversation_id)
            if convo is None or convo.user_id != user_id:
                return None
            return convo.to_dict()

    async def get_convo(self, user_id: str, conversation_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a conversation owned by ``user_id``."""
        return await asyncio.to_thread(self._get_convo, user_id, conversation_id)

    def close(self):
        if self._engine is not None:
            self._engine.dispose()


# Singleton instance
_store: Optional[MessageStore] = None


def get_message_store() -> MessageStore:
    """Get the global message store instance."""
    global _store
    if _store is None:
        _store = MessageStore()
    return _store
