"""ChromaDB vector index - dual mode (embedded for dev, HTTP for Docker)."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import chromadb

from cam.errors import EmbeddingError, QueryError, StoreError
from cam.models.insight import Insight, LifecycleStage

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    """Nearest-neighbour index over insight embeddings."""

    def upsert(self, insight_id: str, embedding: list[float], tags: dict[str, str]) -> None: ...

    def retag(self, insight_id: str, tags: dict[str, str]) -> None: ...

    def search(
        self,
        query_embedding: list[float],
        limit: int,
        min_score: float = 0.0,
        exclude_tags: dict[str, list[str]] | None = None,
    ) -> list[tuple[str, float]]: ...

    def delete(self, insight_id: str) -> None: ...

    def count(self) -> int: ...


def build_where(exclude_tags: dict[str, list[str]] | None) -> dict[str, Any] | None:
    """Translate tag exclusions into a Chroma where clause."""
    clauses = [{key: {"$nin": list(values)}} for key, values in (exclude_tags or {}).items() if values]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaVectorIndex:
    """ChromaDB-backed insight index using cosine distance."""

    def __init__(
        self,
        mode: str = "embedded",
        host: str = "localhost",
        port: int = 8000,
        persist_dir: str = "./data/chromadb",
        collection: str = "cam_insights_vectors",
        dimension: int = 0,
    ) -> None:
        if mode == "http":
            logger.info(f"Connecting to ChromaDB at {host}:{port}")
            self._client = chromadb.HttpClient(host=host, port=port)
        else:
            logger.info(f"Using embedded ChromaDB at {persist_dir}")
            self._client = chromadb.PersistentClient(path=persist_dir)
        self._collection_name = collection
        self._dimension = dimension
        self._col = self._client.get_or_create_collection(
            name=collection,
            metadata={"hnsw:space": "cosine"},
        )

    def _check_dimension(self, embedding: list[float]) -> None:
        if self._dimension and len(embedding) != self._dimension:
            raise EmbeddingError(
                f"Embedding dimension {len(embedding)} does not match index dimension {self._dimension}"
            )

    def upsert(self, insight_id: str, embedding: list[float], tags: dict[str, str]) -> None:
        """Insert or replace a single vector."""
        self.upsert_many([(insight_id, embedding, tags)])

    def upsert_many(self, items: list[tuple[str, list[float], dict[str, str]]]) -> None:
        if not items:
            return
        for _, embedding, _ in items:
            self._check_dimension(embedding)
        try:
            self._col.upsert(
                ids=[i for i, _, _ in items],
                embeddings=[list(e) for _, e, _ in items],
                metadatas=[dict(t) for _, _, t in items],
            )
        except Exception as e:
            raise StoreError(f"Vector upsert failed: {e}") from e

    def retag(self, insight_id: str, tags: dict[str, str]) -> None:
        """Replace the tags on an existing vector."""
        try:
            self._col.update(ids=[insight_id], metadatas=[dict(tags)])
        except Exception as e:
            raise StoreError(f"Vector retag failed for {insight_id}: {e}") from e

    def search(
        self,
        query_embedding: list[float],
        limit: int,
        min_score: float = 0.0,
        exclude_tags: dict[str, list[str]] | None = None,
    ) -> list[tuple[str, float]]:
        """Nearest neighbours as (id, similarity) pairs, best first.

        Similarity is ``1 - cosine_distance``; hits under ``min_score`` are dropped.
        """
        self._check_dimension(query_embedding)
        try:
            total = self._col.count()
            if total == 0 or limit <= 0:
                return []
            kwargs: dict[str, Any] = {
                "query_embeddings": [list(query_embedding)],
                "n_results": min(limit, total),
                "include": ["distances"],
            }
            where = build_where(exclude_tags)
            if where:
                kwargs["where"] = where
            results = self._col.query(**kwargs)
        except Exception as e:
            raise QueryError(f"Vector search failed: {e}") from e

        hits = []
        ids = results.get("ids") or [[]]
        distances = results.get("distances") or [[]]
        for insight_id, distance in zip(ids[0], distances[0]):
            score = 1.0 - distance
            if score >= min_score:
                hits.append((insight_id, score))
        hits.sort(key=lambda h: h[1], reverse=True)
        return hits

    def delete(self, insight_id: str) -> None:
        try:
            self._col.delete(ids=[insight_id])
        except Exception as e:
            raise StoreError(f"Vector delete failed for {insight_id}: {e}") from e

    def count(self) -> int:
        return self._col.count()

    def heartbeat(self) -> bool:
        """Check if ChromaDB is responsive."""
        try:
            self._client.heartbeat()
            return True
        except Exception:
            return False


def insight_tags(insight: Insight) -> dict[str, str]:
    """Flat metadata stored beside an insight's vector."""
    return {
        "lifecycle_stage": insight.lifecycle_stage.value,
        "primary_domain": insight.primary_domain.value,
        "created_at": insight.created_at.isoformat(),
    }


# Index-side filter that keeps deprecated insights out of nearest-neighbour results
EXCLUDE_DEPRECATED = {"lifecycle_stage": [LifecycleStage.DEPRECATED.value]}
