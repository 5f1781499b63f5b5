"""Query engine: six retrieval strategies over the vector index and the store."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from cam.config import Settings
from cam.errors import CAMError, QueryError
from cam.memory.embedder import Embedder
from cam.memory.insight_store import InsightStore
from cam.memory.vector_store import EXCLUDE_DEPRECATED, VectorIndex
from cam.models.insight import (
    ACTIVE_STAGES,
    MIN_RATE_AGE_DAYS,
    Insight,
    LifecycleStage,
    age_in_days,
    utc_now,
)
from cam.models.query import (
    CAMQuery,
    CAMQueryResult,
    DomainIntersectionQuery,
    HybridQuery,
    OscillationPatternQuery,
    QueryFilters,
    QueryMetadata,
    SemanticQuery,
    StructuralQuery,
    TemporalQuery,
    TemporalSort,
)

logger = logging.getLogger(__name__)

_QUERY_ADAPTER: TypeAdapter[Any] = TypeAdapter(CAMQuery)

# (ordered insights, similarity scores by id)
_Hits = tuple[list[Insight], dict[str, float]]


def parse_query(data: dict[str, Any]) -> CAMQuery:
    """Validate a raw query payload, dispatching on its ``mode``."""
    try:
        return _QUERY_ADAPTER.validate_python(data)
    except PydanticValidationError as e:
        raise QueryError(f"Invalid query: {e.errors(include_url=False)}") from e


def _stages(include_deprecated: bool) -> list[LifecycleStage]:
    return list(LifecycleStage) if include_deprecated else list(ACTIVE_STAGES)


@dataclass
class _CacheEntry:
    result: CAMQueryResult
    expires_at: float


class QueryCache:
    """Small TTL cache of query results, evicting the oldest entry when full."""

    def __init__(
        self,
        max_entries: int = 512,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> CAMQueryResult | None:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() > entry.expires_at:
                del self._cache[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.result

    def put(self, key: str, result: CAMQueryResult) -> None:
        if self._max_entries <= 0 or self._ttl <= 0:
            return
        with self._lock:
            if key not in self._cache and len(self._cache) >= self._max_entries:
                # dicts keep insertion order, so the first key is the oldest
                del self._cache[next(iter(self._cache))]
            self._cache[key] = _CacheEntry(result, self._clock() + self._ttl)

    def invalidate(self) -> None:
        with self._lock:
            self._cache.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"entries": len(self._cache), "hits": self._hits, "misses": self._misses}


class QueryEngine:
    """Answers CAM queries; ``query`` is the timeout-bound entry point."""

    def __init__(
        self,
        store: InsightStore,
        index: VectorIndex,
        embedder: Embedder,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._index = index
        self._embedder = embedder
        self._settings = settings
        self._clock = clock
        self._cache = QueryCache(
            max_entries=settings.query_cache_max_entries,
            ttl_seconds=settings.query_cache_ttl_seconds,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=settings.query_workers,
            thread_name_prefix="cam-query",
        )

    @property
    def cache(self) -> QueryCache:
        return self._cache

    def invalidate_cache(self) -> None:
        self._cache.invalidate()

    # ── Entry points ─────────────────────────────────────────────────

    def query(self, q: CAMQuery, timeout: float | None = None) -> CAMQueryResult:
        """Run a query with a hard timeout. Never raises.

        Timeouts and failures yield an empty result with ``metadata.timed_out``
        or ``metadata.error`` set.
        """
        timeout = self._settings.query_timeout_seconds if timeout is None else timeout
        cancel = threading.Event()
        started = time.perf_counter()
        try:
            future = self._executor.submit(self.execute, q, cancel)
        except RuntimeError as e:
            logger.warning(f"Query rejected: {e}")
            return self._empty(q, started, error=str(e))
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            cancel.set()
            future.cancel()
            logger.warning("Query (%s) timed out after %.0fms", q.mode, timeout * 1000)
            return self._empty(q, started, timed_out=True)
        except Exception as e:
            logger.warning(f"Query ({q.mode}) failed: {e}")
            return self._empty(q, started, error=str(e))

    def execute(self, q: CAMQuery, cancel: threading.Event | None = None) -> CAMQueryResult:
        """Run a query without a timeout; failures raise ``QueryError``."""
        cancel = cancel or threading.Event()
        started = time.perf_counter()
        key = f"{q.mode}:{q.model_dump_json()}"
        cached = self._cache.get(key)
        if cached is not None:
            metadata = cached.metadata.model_copy(update={
                "cached": True,
                "query_time_ms": (time.perf_counter() - started) * 1000,
            })
            return cached.model_copy(update={"metadata": metadata})

        try:
            insights, scores = self._run(q, cancel)
            limited = insights[: q.limit]
            self._check_cancel(cancel)
            hyperedges = self._store.hyperedges_for_insights([i.id for i in limited])
        except QueryError:
            raise
        except CAMError as e:
            raise QueryError(str(e)) from e

        confidences = [i.confidence for i in limited]
        result = CAMQueryResult(
            insights=limited,
            hyperedges=hyperedges,
            scores={i.id: scores[i.id] for i in limited if i.id in scores},
            metadata=QueryMetadata(
                mode=q.mode,
                query_time_ms=(time.perf_counter() - started) * 1000,
                total_results=len(insights),
                returned_results=len(limited),
                confidence_range=(min(confidences), max(confidences)) if confidences else (0.0, 0.0),
            ),
        )
        self._cache.put(key, result)
        return result

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ── Strategies ───────────────────────────────────────────────────

    def _run(self, q: CAMQuery, cancel: threading.Event) -> _Hits:
        if isinstance(q, SemanticQuery):
            return self._semantic(q)
        if isinstance(q, StructuralQuery):
            return self._structural(q, cancel), {}
        if isinstance(q, DomainIntersectionQuery):
            return self._domain_intersection(q), {}
        if isinstance(q, TemporalQuery):
            return self._temporal(q), {}
        if isinstance(q, OscillationPatternQuery):
            return self._oscillation(q), {}
        if isinstance(q, HybridQuery):
            return self._hybrid(q, cancel)
        raise QueryError(f"Unsupported query type: {type(q).__name__}")

    def _semantic(self, q: SemanticQuery) -> _Hits:
        embedding = self._embedder.embed(q.query_text)
        min_score = self._settings.min_semantic_score if q.min_score is None else q.min_score
        hits = self._index.search(
            embedding,
            q.limit * self._settings.semantic_overfetch,
            min_score,
            None if q.include_deprecated else EXCLUDE_DEPRECATED,
        )
        scores = dict(hits)
        wanted = set(q.domains or [])
        insights = [
            i for i in self._store.get_by_ids([insight_id for insight_id, _ in hits])
            if i.confidence >= q.min_confidence
            and (q.include_deprecated or i.lifecycle_stage != LifecycleStage.DEPRECATED)
            and (not wanted or i.domains & wanted)
        ]
        return insights, scores

    def _structural(self, q: StructuralQuery, cancel: threading.Event) -> list[Insight]:
        """Breadth-first walk over hyperedges from the start insight."""
        start = self._store.get_insight(q.start_insight_id)
        visited = {start.id}
        frontier = [start.id]
        collected: list[Insight] = []
        types = q.relationship_types or None

        for _ in range(q.max_depth):
            self._check_cancel(cancel)
            next_ids: list[str] = []
            for edge in self._store.hyperedges_for_insights(frontier, types):
                for insight_id in edge.insight_ids:
                    if insight_id not in visited:
                        visited.add(insight_id)
                        next_ids.append(insight_id)
            if not next_ids:
                break
            for insight in self._store.get_by_ids(next_ids):
                if q.include_deprecated or insight.lifecycle_stage != LifecycleStage.DEPRECATED:
                    collected.append(insight)
                    if len(collected) >= q.limit:
                        return collected
            frontier = next_ids
        return collected

    def _domain_intersection(self, q: DomainIntersectionQuery) -> list[Insight]:
        return self._store.find_by_domains(
            q.domains,
            min_confidence=q.min_confidence,
            stages=_stages(q.include_deprecated),
            limit=q.limit,
        )

    def _temporal(self, q: TemporalQuery) -> list[Insight]:
        now = self._clock()
        start, end = q.time_range.bounds(now)
        insights = self._store.find_created_between(
            start,
            end,
            domains=q.domains,
            stages=_stages(q.include_deprecated),
            limit=q.limit if q.sort_by == TemporalSort.MOST_RECENT else None,
        )
        if q.sort_by == TemporalSort.MOST_OBSERVED:
            insights.sort(key=lambda i: (i.observation_count, i.created_at), reverse=True)
        elif q.sort_by == TemporalSort.HIGHEST_CONFIDENCE_GROWTH:
            initial = self._settings.initial_confidence

            def growth(i: Insight) -> float:
                age = max(age_in_days(i.created_at, now), MIN_RATE_AGE_DAYS)
                return (i.confidence - initial) / age

            insights.sort(key=growth, reverse=True)
        return insights

    def _oscillation(self, q: OscillationPatternQuery) -> list[Insight]:
        return self._store.find_by_oscillation(
            boundary=q.boundary,
            frequency_range=q.frequency_range,
            amplitude_range=q.amplitude_range,
            stages=_stages(q.include_deprecated),
            limit=q.limit,
        )

    def _hybrid(self, q: HybridQuery, cancel: threading.Event) -> _Hits:
        merged: dict[str, Insight] = {}
        scores: dict[str, float] = {}
        for sub in q.sub_queries:
            self._check_cancel(cancel)
            insights, sub_scores = self._run(sub, cancel)
            for insight in insights[: sub.limit]:
                # first occurrence wins
                merged.setdefault(insight.id, insight)
                if insight.id in sub_scores:
                    scores.setdefault(insight.id, sub_scores[insight.id])
        return [i for i in merged.values() if _passes(i, q.filters)], scores

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _check_cancel(cancel: threading.Event) -> None:
        if cancel.is_set():
            raise QueryError("Query cancelled")

    @staticmethod
    def _empty(
        q: CAMQuery,
        started: float,
        timed_out: bool = False,
        error: str | None = None,
    ) -> CAMQueryResult:
        return CAMQueryResult(metadata=QueryMetadata(
            mode=q.mode,
            query_time_ms=(time.perf_counter() - started) * 1000,
            timed_out=timed_out,
            error=error,
        ))


def _passes(insight: Insight, filters: QueryFilters) -> bool:
    """Apply the shared hybrid filter set."""
    if filters.exclude_deprecated and insight.lifecycle_stage == LifecycleStage.DEPRECATED:
        return False
    if filters.min_confidence is not None and insight.confidence < filters.min_confidence:
        return False
    if filters.lifecycle_stages and insight.lifecycle_stage not in filters.lifecycle_stages:
        return False
    if filters.domains and not insight.domains & set(filters.domains):
        return False
    return True
