"""pgvector similarity search.

Reads the table layout written by LangChain's PGVector integration: a
collection table holding named collections and an embedding table holding
one row per chunk with its vector, content and JSON metadata.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from ragchat.config import DatabaseConfig, VectorStoreConfig, get_settings

logger = logging.getLogger(__name__)

# Cosine distance operator of the pgvector extension
COSINE_DISTANCE_OP = "<=>"


@dataclass
class StoredDocument:
    """A chunk stored in the vector table."""
    page_content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


def to_vector_literal(embedding: Sequence[float]) -> str:
    """Render an embedding as a pgvector text literal."""
    return "[" + ",".join(repr(float(x)) for x in embedding) + "]"


class PGVectorStore:
    """Read-only handle on a pgvector collection.

    The engine is created lazily and reused across searches; the pool is
    capped at ``pool_size`` connections with no overflow. Once no search
    has run for ``idle_timeout_ms`` the pooled connections are closed.
    """

    def __init__(
        self,
        database_config: Optional[DatabaseConfig] = None,
        store_config: Optional[VectorStoreConfig] = None,
        engine: Optional[Engine] = None,
    ):
        settings = get_settings()
        self.database_config = database_config or settings.database
        self.store_config = store_config or settings.vector_store
        self._engine = engine
        self._query = None
        self._active = 0
        self._idle_timer: Optional[asyncio.TimerHandle] = None

        if self.store_config.distance_strategy != "cosine":
            raise ValueError(
                f"Unsupported distance strategy: {self.store_config.distance_strategy}"
            )

    def _ensure_engine(self) -> Engine:
        if self._engine is None:
            logger.info(f"Creating pgvector engine (pool_size={self.database_config.pool_size})")
            self._engine = create_engine(
                self.database_config.url,
                pool_size=self.database_config.pool_size,
                max_overflow=self.database_config.max_overflow,
                pool_pre_ping=True,
            )
        return self._engine

    def _build_query(self):
        """Build the top-k cosine query with quoted identifiers."""
        if self._query is None:
            quote = self._ensure_engine().dialect.identifier_preparer.quote
            cfg = self.store_config
            self._query = text(
                f"SELECT e.{quote(cfg.id_column)} AS id, "
                f"e.{quote(cfg.content_column)} AS content, "
                f"e.{quote(cfg.metadata_column)} AS metadata, "
                f"e.{quote(cfg.vector_column)} {COSINE_DISTANCE_OP} CAST(:embedding AS vector) AS distance "
                f"FROM {quote(cfg.table_name)} e "
                f"JOIN {quote(cfg.collection_table)} c "
                f"ON e.{quote(cfg.collection_fk)} = c.{quote(cfg.collection_pk)} "
                f"WHERE c.name = :collection "
                f"ORDER BY distance ASC "
                f"LIMIT :k"
            )
        return self._query

    def _search(self, embedding: Sequence[float], k: int) -> List[Tuple[StoredDocument, float]]:
        query = self._build_query()
        with self._ensure_engine().connect() as conn:
            rows = conn.execute(
                query,
                {
                    "embedding": to_vector_literal(embedding),
                    "collection": self.store_config.collection_name,
                    "k": k,
                },
            ).mappings().all()

        results = []
        for row in rows:
            metadata = row["metadata"] or {}
            if isinstance(metadata, str):
                metadata = json.loads(metadata)
            document = StoredDocument(
                page_content=row["content"] or "",
                metadata=metadata,
                id=str(row["id"]) if row["id"] is not None else None,
            )
            results.append((document, float(row["distance"])))
        return results

    async def similarity_search_with_score(
        self,
        embedding: Sequence[float],
        k: int,
    ) -> List[Tuple[StoredDocument, float]]:
        """Return up to ``k`` (document, cosine distance) pairs, nearest first."""
        self._cancel_idle_timer()
        self._active += 1
        try:
            return await asyncio.to_thread(self._search, embedding, k)
        finally:
            self._active -= 1
            if self._active == 0:
                self._reset_idle_timer()

    def _reset_idle_timer(self) -> None:
        self._cancel_idle_timer()
        self._idle_timer = asyncio.get_running_loop().call_later(
            self.database_config.idle_timeout_ms / 1000, self._release_idle
        )

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _release_idle(self) -> None:
        """Close pooled connections; the engine reconnects on the next search."""
        self._idle_timer = None
        if self._active or self._engine is None:
            return
        logger.debug("Closing idle pgvector connections")
        self._engine.dispose()

    def dispose(self):
        """Close all pooled connections."""
        self._cancel_idle_timer()
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._query = None
