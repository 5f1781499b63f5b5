"""Collective memory broker - wires the stores, engines and background workers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future
from datetime import datetime
from typing import Any

from cam.config import Settings
from cam.memory.audit_log import AuditLog
from cam.memory.embedder import Embedder, SentenceTransformerEmbedder
from cam.memory.extraction import ExtractionPipeline, ExtractionWorker, describe
from cam.memory.insight_store import InsightStore
from cam.memory.query import QueryEngine
from cam.memory.summarizer import Summarizer, build_summarizer
from cam.memory.validation import ValidationCycleReport, ValidationEngine, ValidationScheduler
from cam.memory.vector_store import ChromaVectorIndex, VectorIndex
from cam.models.extraction import ExtractionInput
from cam.models.hyperedge import Hyperedge
from cam.models.insight import Insight, LifecyclePolicy, utc_now
from cam.models.query import CAMQuery, CAMQueryResult
from cam.models.validation import ValidationRecord

logger = logging.getLogger(__name__)


class CollectiveMemory:
    """Central orchestrator for extraction, validation and retrieval.

    Collaborators may be injected; anything omitted is built from settings.
    With ``start_workers=False`` no background threads are started, and
    ``extract`` runs inline (returning an already-resolved future).
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: InsightStore | None = None,
        index: VectorIndex | None = None,
        embedder: Embedder | None = None,
        summarizer: Summarizer | None = None,
        clock: Callable[[], datetime] = utc_now,
        start_workers: bool = True,
    ) -> None:
        settings.ensure_dirs()
        self._settings = settings
        self._clock = clock

        self._store = store or InsightStore(
            settings.kuzu_dir, policy=LifecyclePolicy.from_settings(settings)
        )
        self._index = index or ChromaVectorIndex(
            mode=settings.chroma_mode,
            host=settings.chroma_host,
            port=settings.chroma_port,
            persist_dir=str(settings.chroma_dir),
            collection=settings.chroma_collection,
            dimension=settings.embedding_dimension,
        )
        self._embedder = embedder or SentenceTransformerEmbedder(settings.embedding_model)
        self._summarizer = summarizer if summarizer is not None else build_summarizer(settings)
        self._audit = AuditLog(settings.audit_dir)

        self._pipeline = ExtractionPipeline(
            self._store, self._index, self._embedder, self._summarizer, settings, clock
        )
        self._validation = ValidationEngine(
            self._store, self._index, self._summarizer, settings, clock
        )
        self._query = QueryEngine(self._store, self._index, self._embedder, settings, clock)

        self._worker: ExtractionWorker | None = None
        self._scheduler = ValidationScheduler(
            self._validation,
            settings.validation_interval_seconds,
            on_cycle=self._after_validation,
        )
        if start_workers:
            self._worker = ExtractionWorker(self._pipeline)
            self._scheduler.start()

    @property
    def store(self) -> InsightStore:
        return self._store

    @property
    def index(self) -> VectorIndex:
        return self._index

    @property
    def query_engine(self) -> QueryEngine:
        return self._query

    @property
    def audit(self) -> AuditLog:
        return self._audit

    # ── Extraction ───────────────────────────────────────────────────

    def extract(self, ctx: ExtractionInput) -> Future:
        """Queue an extraction; the returned future resolves to new insights."""
        if self._worker is None:
            future: Future = Future()
            future.set_result(self.extract_sync(ctx))
            return future
        future = self._worker.submit(ctx)
        future.add_done_callback(lambda f: self._after_extraction(ctx, f))
        return future

    def extract_sync(self, ctx: ExtractionInput) -> list[Insight]:
        """Run an extraction on the calling thread."""
        insights = self._pipeline.extract(ctx)
        self._record_extraction(ctx, insights)
        return insights

    def _after_extraction(self, ctx: ExtractionInput, future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self._record_extraction(ctx, future.result())

    def _record_extraction(self, ctx: ExtractionInput, insights: list[Insight]) -> None:
        # Dedup hits bump counters even when nothing new is created
        self._query.invalidate_cache()
        self._audit.log("insights_extracted", "extraction", {
            "source_instance_id": ctx.source_instance_id,
            "source_interaction_id": ctx.source_interaction_id,
            "created": describe(insights),
        })

    # ── Retrieval ────────────────────────────────────────────────────

    def query(self, q: CAMQuery, timeout: float | None = None) -> CAMQueryResult:
        """Timeout-bound query; never raises."""
        return self._query.query(q, timeout=timeout)

    def get_insight(self, insight_id: str) -> Insight:
        return self._store.get_insight(insight_id)

    def insert_hyperedge(self, edge: Hyperedge) -> Hyperedge:
        stored = self._store.insert_hyperedge(edge)
        self._query.invalidate_cache()
        self._audit.log("hyperedge_created", "hyperedge", {
            "id": stored.id,
            "relationship_type": stored.relationship_type.value,
            "insight_ids": stored.insight_ids,
            "strength": stored.strength,
        })
        return stored

    # ── Validation ───────────────────────────────────────────────────

    def run_validation_cycle(self) -> ValidationCycleReport:
        report = self._validation.run_validation_cycle()
        if not report.skipped:
            self._after_validation(report)
        return report

    def validate_insight(self, insight_id: str) -> ValidationRecord:
        record = self._validation.validate_by_id(insight_id)
        self._query.invalidate_cache()
        return record

    def _after_validation(self, report: ValidationCycleReport) -> None:
        self._query.invalidate_cache()
        self._audit.log("validation_cycle", "validation", report.to_dict())

    # ── Admin ────────────────────────────────────────────────────────

    def get_stats(self) -> dict[str, Any]:
        """Get system statistics."""
        stats = self._store.stats()
        stats["vector_count"] = self._index.count()
        stats["pending_extractions"] = self._worker.pending() if self._worker else 0
        stats["query_cache"] = self._query.cache.stats()
        stats["summarizer_enabled"] = self._summarizer is not None
        return stats

    def health_check(self) -> dict[str, Any]:
        """Check system health."""
        heartbeat = getattr(self._index, "heartbeat", None)
        return {
            "status": "healthy",
            "vector_store": heartbeat() if heartbeat else True,
            "insight_store": self._store.insight_count() >= 0,
            "instance_id": self._settings.instance_id,
        }

    def close(self, drain: bool = True, timeout: float | None = None) -> None:
        """Stop background work and release the stores."""
        self._scheduler.stop(timeout)
        if self._worker is not None:
            self._worker.shutdown(drain=drain, timeout=timeout)
        self._query.close()
        self._store.close()
