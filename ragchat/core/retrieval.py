"""Vector retrieval service.

This module retrieves passages relevant to a user's text from the
pgvector store and filters them by cosine distance.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

from ragchat.config import RagConfig, get_settings
from ragchat.core.embedder import Embedder, get_embedder
from ragchat.core.vector_store import PGVectorStore

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    """A passage kept for prompt injection."""
    text: str
    distance: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def similarity(self) -> float:
        return 1 - self.distance


class VectorRetriever:
    """Service for retrieving documents using vector similarity.

    Uses pgvector with cosine distance as the vector store backend.
    Retrieval failures are logged and reported as an empty result so a
    chat turn never fails because of RAG.
    """

    def __init__(
        self,
        rag_config: Optional[RagConfig] = None,
        embedder: Optional[Embedder] = None,
        store: Optional[PGVectorStore] = None,
    ):
        """Initialize the retriever.

        Args:
            rag_config: Retrieval parameters (k, distance cutoff)
            embedder: Embedding service
            store: Pre-initialized vector store (for testing)
        """
        self.rag_config = rag_config or get_settings().rag
        self.embedder = embedder or get_embedder()
        self._store = store

    @property
    def store(self) -> PGVectorStore:
        if self._store is None:
            self._store = PGVectorStore()
        return self._store

    async def retrieve(self, query: str) -> List[RetrievalResult]:
        """Retrieve relevant passages for a query.

        Args:
            query: User text

        Returns:
            Passages within the distance cutoff, nearest first
        """
        logger.info(f'[RAG] Starting retrieval for query: "{query}"')

        try:
            query_embedding = await self.embedder.embed_query(query)
            results = await self.store.similarity_search_with_score(
                query_embedding.tolist(),
                self.rag_config.k,
            )
            logger.info(f"[RAG] similarity results: {len(results)}")

            if not results:
                logger.info("[RAG] No vector matches returned.")
                return []

            previews = [
                {
                    "sim": f"{1 - dist:.3f}",
                    "preview": doc.page_content[:140],
                    "source": (doc.metadata or {}).get("source", "unknown"),
                }
                for doc, dist in results
            ]
            logger.info(f"[RAG] Raw result previews:\n{json.dumps(previews, indent=2)}")

            cutoff = self.rag_config.max_cosine_distance
            kept = [(doc, dist) for doc, dist in results if dist <= cutoff]
            if not kept:
                logger.info(f"[RAG] No chunks passed cutoff of {cutoff}.")
                return []

            scores = ", ".join(f"{1 - dist:.3f}" for _, dist in kept)
            logger.info(f"[RAG] Injecting {len(kept)} chunks with similarity scores: {scores}")

            return [
                RetrievalResult(
                    text=doc.page_content,
                    distance=dist,
                    metadata=doc.metadata or {},
                )
                for doc, dist in kept
            ]
        except Exception as e:
            logger.error(f"[RAG] Retrieval failed: {e}", exc_info=True)
            return []

    async def close(self):
        """Release the embedding client and the connection pool."""
        await self.embedder.close()
        if self._store is not None:
            self._store.dispose()


# Singleton instance
_retriever: Optional[VectorRetriever] = None


def get_retriever() -> VectorRetriever:
    """Get the global retriever instance."""
    global _retriever
    if _retriever is None:
        _retriever = VectorRetriever()
    return _retriever
