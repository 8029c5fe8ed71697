"""Pytest fixtures for RAG chat tests."""

from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from ragchat.config import MessageStoreConfig, RagConfig, Settings
from ragchat.core.retrieval import VectorRetriever
from ragchat.core.vector_store import StoredDocument
from ragchat.services.abort import abort_controllers
from ragchat.services.chat_service import TurnController
from ragchat.services.cleanup import request_data_map
from ragchat.services.message_store import MessageStore


class FakeEmbedder:
    """Embedder returning a fixed vector."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.queries: List[str] = []
        self.close = AsyncMock()

    async def embed_query(self, query: str) -> np.ndarray:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return np.array([0.1, 0.2, 0.3], dtype=np.float32)


class FakeVectorStore:
    """Vector store returning canned (document, distance) pairs."""

    def __init__(
        self,
        results: Optional[List[Tuple[StoredDocument, float]]] = None,
        error: Optional[Exception] = None,
    ):
        self.results = results or []
        self.error = error
        self.calls: List[Tuple[List[float], int]] = []
        self.dispose = MagicMock()

    async def similarity_search_with_score(self, embedding, k):
        self.calls.append((list(embedding), k))
        if self.error is not None:
            raise self.error
        return list(self.results)


class FakeChatClient:
    """Model client returning a canned response.

    ``on_send`` runs inside ``send_message`` before the response is
    returned, which lets tests close the stream mid-call.
    """

    def __init__(self, response: Any = None, error: Optional[Exception] = None, on_send=None):
        self.response = response
        self.error = error
        self.on_send = on_send
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.content_parts: List[Dict[str, Any]] = [{"type": "text", "text": "partial"}]
        self.saved_message_ids = set()
        self.options: Dict[str, Any] = {}
        self.dispose = AsyncMock()

    async def send_message(self, text: str, options: Dict[str, Any]):
        self.calls.append((text, options))
        options["get_req_data"]({
            "userMessage": {
                "messageId": "user-msg-1",
                "conversationId": "convo-1",
                "parentMessageId": None,
                "sender": "User",
                "text": text,
                "isCreatedByUser": True,
            },
            "conversationId": "convo-1",
            "responseMessageId": "resp-msg-1",
            "sender": "gpt-test",
        })
        if self.on_send is not None:
            self.on_send()
        if self.error is not None:
            raise self.error
        return self.response


def make_doc(text: str, **metadata) -> StoredDocument:
    return StoredDocument(page_content=text, metadata=metadata)


@pytest.fixture(autouse=True)
def clear_registries():
    """Reset module-level turn registries between tests."""
    yield
    abort_controllers.clear()
    request_data_map.clear()


@pytest.fixture
def settings():
    """Default settings without environment overrides."""
    return Settings()


@pytest.fixture
def rag_config():
    return RagConfig()


@pytest.fixture
def reset_password_hits():
    """Three hits for "reset password", the last one beyond the cutoff."""
    return [
        (make_doc("Open Settings > Security > Reset password.", title="Password reset"), 0.12),
        (make_doc("Reset links expire after 24 hours.", source="kb/links.md", url="https://kb/links"), 0.30),
        (make_doc("Our office hours are 9-5.", source="kb/hours.md"), 0.50),
    ]


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_store(reset_password_hits):
    return FakeVectorStore(results=reset_password_hits)


@pytest.fixture
def retriever(rag_config, fake_embedder, fake_store):
    return VectorRetriever(rag_config=rag_config, embedder=fake_embedder, store=fake_store)


@pytest.fixture
def message_store():
    """Message store on an in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    store = MessageStore(config=MessageStoreConfig(url="sqlite://"), engine=engine)
    yield store
    store.close()


@pytest.fixture
def make_controller(settings, retriever, message_store):
    """Build a TurnController around a given fake client."""

    def _make(client, retriever_override=None):
        async def factory(**kwargs):
            return client

        return TurnController(
            retriever=retriever_override or retriever,
            store=message_store,
            client_factory=factory,
            settings=settings,
        )

    return _make
