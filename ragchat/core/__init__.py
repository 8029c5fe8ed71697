"""Core RAG components.

This module provides the core functionality for:
- Text embedding
- Vector retrieval
- Prompt context formatting
- Model response validation
- Completion clients
"""

from ragchat.core.embedder import Embedder, EmbeddingError, get_embedder
from ragchat.core.vector_store import PGVectorStore, StoredDocument
from ragchat.core.retrieval import VectorRetriever, RetrievalResult, get_retriever
from ragchat.core.context import format_rag_context, build_model_input
from ragchat.core.normalizer import (
    MalformedResponseError,
    ValidationFailure,
    coerce_response,
    sanitize_response,
    ensure_array_fields,
)
from ragchat.core.generator import LLMClient, OpenAIClient, AnthropicClient, create_llm_client

__all__ = [
    # Embedder
    "Embedder",
    "EmbeddingError",
    "get_embedder",
    # Vector store
    "PGVectorStore",
    "StoredDocument",
    # Retrieval
    "VectorRetriever",
    "RetrievalResult",
    "get_retriever",
    # Context
    "format_rag_context",
    "build_model_input",
    # Response contract
    "MalformedResponseError",
    "ValidationFailure",
    "coerce_response",
    "sanitize_response",
    "ensure_array_fields",
    # Generator
    "LLMClient",
    "OpenAIClient",
    "AnthropicClient",
    "create_llm_client",
]
