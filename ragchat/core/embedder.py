"""Embedding service for text vectorization.

This module converts text into dense vectors with an Ollama embedding
model through ``langchain_ollama``.
"""

import logging
from typing import Any, Optional

import numpy as np
from langchain_ollama import OllamaEmbeddings

from ragchat.config import EmbeddingConfig, get_settings

logger = logging.getLogger(__name__)


class EmbeddingError(RuntimeError):
    """Raised when the embedding model returns an unusable vector."""


class Embedder:
    """Service for generating text embeddings.

    Wraps ``OllamaEmbeddings`` for the configured model and returns
    float32 numpy vectors.
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        client: Optional[Any] = None,
    ):
        """Initialize the embedder.

        Args:
            config: Embedding configuration
            client: Pre-built embeddings client exposing ``aembed_query`` (for testing)
        """
        self.config = config or get_settings().embedding
        self._client = client
        self._initialized = client is not None

    def _ensure_initialized(self):
        """Lazy initialization of the embeddings client."""
        if not self._initialized:
            logger.info(
                f"Using embedding model {self.config.model_name} at {self.config.base_url}"
            )
            self._client = OllamaEmbeddings(
                model=self.config.model_name,
                base_url=self.config.base_url,
                client_kwargs={"timeout": self.config.timeout},
            )
            self._initialized = True

    async def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text.

        Args:
            text: Input text to embed

        Returns:
            Numpy array of shape (dimensions,)
        """
        self._ensure_initialized()

        vector = await self._client.aembed_query(text)
        if not vector:
            raise EmbeddingError(
                f"Embedding model {self.config.model_name} returned no vector"
            )
        return np.asarray(vector, dtype=np.float32)

    async def embed_query(self, query: str) -> np.ndarray:
        """Generate embedding for a query."""
        return await self.embed(query)

    async def close(self):
        """Drop the embeddings client; the next call builds a fresh one."""
        self._client = None
        self._initialized = False


# Singleton instance
_embedder: Optional[Embedder] = None


def get_embedder() -> Embedder:
    """Get the global embedder instance."""
    global _embedder
    if _embedder is None:
        _embedder = Embedder()
    return _embedder
