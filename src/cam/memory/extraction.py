"""Insight extraction: summarize an interaction, dedup, persist, associate."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from concurrent.futures import Future
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from cam.config import Settings
from cam.errors import CAMError, InsightNotFound
from cam.memory.embedder import Embedder
from cam.memory.insight_store import InsightStore
from cam.memory.summarizer import Summarizer, parse_json_response
from cam.memory.vector_store import EXCLUDE_DEPRECATED, VectorIndex, insight_tags
from cam.models.extraction import BoundaryQualities, CandidateInsight, ExtractionInput
from cam.models.hyperedge import DiscoveryMethod, Hyperedge, RelationshipType
from cam.models.insight import (
    Insight,
    LifecycleStage,
    OscillationContext,
    PhenomenologicalQualities,
    parse_domain,
    utc_now,
)

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """\
You distill reusable insights from a conversation between a user and an assistant
whose reasoning spans several interacting domains.

An insight is a short, general statement that would help a future conversation with
a different user. Do not restate the user's message, do not include personal details,
and do not produce more than 3 insights. Return an empty list when nothing is reusable.
"""

_RESPONSE_SCHEMA = """\
Return ONLY valid JSON with this exact schema:
{
  "insights": [
    {
      "content": "string",
      "primary_domain": "CD | SD | CuD | ED",
      "secondary_domains": ["CD | SD | CuD | ED"],
      "confidence": 0.0,
      "rationale": "string"
    }
  ]
}
CD = computational, SD = scientific, CuD = cultural, ED = experiential.
Confidence is a float between 0.0 and 1.0.
"""


def build_prompt(ctx: ExtractionInput) -> str:
    """Render an interaction context into the extraction prompt."""
    sections = [f"User message:\n{ctx.user_text}"]
    if ctx.domain_activations:
        lines = [f"- {a.domain}: {a.activation:.2f}" for a in ctx.domain_activations]
        sections.append("Domain activations:\n" + "\n".join(lines))
    if ctx.boundaries:
        lines = [
            f"- {b.name}: permeability={b.permeability:.2f} frequency={b.frequency:.2f} "
            f"amplitude={b.amplitude:.2f} status={b.status or 'unknown'}"
            for b in ctx.boundaries
        ]
        sections.append("Boundary states:\n" + "\n".join(lines))
    if ctx.patterns:
        sections.append("Identified patterns:\n" + "\n".join(f"- {p}" for p in ctx.patterns))
    sections.append(_RESPONSE_SCHEMA)
    return "\n\n".join(sections)


def parse_candidates(raw: str, max_candidates: int = 3) -> list[CandidateInsight]:
    """Parse summarizer output into candidates.

    Accepts ``{"insights": [...]}`` or a bare list. Malformed entries are
    skipped; malformed JSON raises ``cam.errors.ValidationError``.
    """
    parsed = parse_json_response(raw)
    items = parsed.get("insights", []) if isinstance(parsed, dict) else parsed
    if not isinstance(items, list):
        return []

    candidates: list[CandidateInsight] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        primary = parse_domain(item.get("primary_domain"))
        content = str(item.get("content") or "").strip()
        if primary is None or not content:
            logger.debug("Skipping candidate with missing content or domain: %s", item)
            continue
        secondary = [
            d for d in (parse_domain(s) for s in item.get("secondary_domains") or [])
            if d is not None and d != primary
        ]
        try:
            candidates.append(CandidateInsight(
                content=content,
                primary_domain=primary,
                secondary_domains=list(dict.fromkeys(secondary)),
                confidence=item.get("confidence", 0.0),
                rationale=str(item.get("rationale") or ""),
            ))
        except PydanticValidationError as e:
            logger.debug("Skipping invalid candidate: %s", e)
        if len(candidates) >= max_candidates:
            break
    return candidates


def oscillation_context_for(ctx: ExtractionInput) -> OscillationContext:
    """Context from the most permeable boundary, with its matching qualities."""
    if not ctx.boundaries:
        return OscillationContext()
    boundary = max(ctx.boundaries, key=lambda b: b.permeability)
    match: BoundaryQualities | None = next(
        (q for q in ctx.qualities if q.boundary_name == boundary.name), None
    )
    qualities = PhenomenologicalQualities()
    if match is not None:
        qualities = PhenomenologicalQualities(
            **match.model_dump(exclude={"boundary_name"})
        )
    return OscillationContext(
        boundary=boundary.name,
        frequency=boundary.frequency,
        amplitude=boundary.amplitude,
        phase=boundary.phase,
        permeability=boundary.permeability,
        qualities=qualities,
    )


class ExtractionPipeline:
    """Turns one interaction into zero or more persisted insights."""

    def __init__(
        self,
        store: InsightStore,
        index: VectorIndex,
        embedder: Embedder,
        summarizer: Summarizer | None,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._index = index
        self._embedder = embedder
        self._summarizer = summarizer
        self._settings = settings
        self._clock = clock

    def extract(self, ctx: ExtractionInput) -> list[Insight]:
        """Extract, dedup and persist insights; never raises.

        Returns only newly created insights. Duplicates of existing ones
        bump their observation count instead.
        """
        if self._summarizer is None:
            logger.debug("Extraction skipped: no summarizer configured")
            return []
        try:
            raw = self._summarizer.complete(build_prompt(ctx), system=_SYSTEM_PROMPT)
            candidates = parse_candidates(raw, self._settings.extraction_max_candidates)
            candidates = [
                c for c in candidates
                if c.confidence >= self._settings.extraction_min_confidence
            ]
            if not candidates:
                return []
            embeddings = self._embedder.embed_batch([c.content for c in candidates])
        except Exception:
            logger.exception("Insight extraction failed for instance %s", ctx.source_instance_id)
            return []

        oscillation = oscillation_context_for(ctx)
        created: list[Insight] = []
        for candidate, embedding in zip(candidates, embeddings):
            try:
                insight = self._persist_candidate(ctx, candidate, embedding, oscillation)
            except Exception:
                logger.exception("Dropping candidate insight: %.60s", candidate.content)
                continue
            if insight is not None:
                created.append(insight)
        return created

    def _persist_candidate(
        self,
        ctx: ExtractionInput,
        candidate: CandidateInsight,
        embedding: list[float],
        oscillation: OscillationContext,
    ) -> Insight | None:
        now = self._clock()
        hits = self._index.search(
            embedding, 1, self._settings.dedup_threshold, EXCLUDE_DEPRECATED
        )
        if hits:
            match_id, score = hits[0]
            try:
                self._store.increment_observation(match_id, ctx.source_instance_id, now)
                logger.info("Duplicate of %s (%.3f), observation recorded", match_id[:12], score)
                return None
            except InsightNotFound:
                logger.warning("Vector %s has no stored insight; creating a new one", match_id[:12])

        insight = Insight(
            content=candidate.content,
            primary_domain=candidate.primary_domain,
            secondary_domains=candidate.secondary_domains,
            confidence=self._settings.initial_confidence,
            lifecycle_stage=LifecycleStage.EMERGING,
            source_instance_id=ctx.source_instance_id,
            source_user_id=ctx.source_user_id,
            source_interaction_id=ctx.source_interaction_id,
            oscillation_context=oscillation,
            created_at=now,
            last_validated=now,
            metadata={
                "extraction_confidence": candidate.confidence,
                "rationale": candidate.rationale,
            },
        )
        # Vector first; orphaned vectors are dropped at query time
        self._index.upsert(insight.id, embedding, insight_tags(insight))
        insight = self._store.insert_insight(insight)
        self._associate(insight, embedding)
        logger.info("Created insight %s in %s", insight.id[:12], insight.primary_domain.value)
        return insight

    def _associate(self, insight: Insight, embedding: list[float]) -> None:
        """Link a new insight to its close semantic neighbours."""
        try:
            neighbours = self._index.search(
                embedding,
                self._settings.association_limit + 1,
                self._settings.association_min_score,
                EXCLUDE_DEPRECATED,
            )
        except CAMError as e:
            logger.warning(f"Association search failed for {insight.id[:12]}: {e}")
            return

        linked = 0
        for neighbour_id, score in neighbours:
            if neighbour_id == insight.id or linked >= self._settings.association_limit:
                continue
            try:
                self._store.insert_hyperedge(Hyperedge(
                    insight_ids=[insight.id, neighbour_id],
                    relationship_type=RelationshipType.REINFORCEMENT,
                    strength=max(0.0, min(1.0, score)),
                    discovery_method=DiscoveryMethod.SEMANTIC_CLUSTERING,
                    discovered_by=insight.source_instance_id,
                    created_at=insight.created_at,
                ))
                linked += 1
            except CAMError as e:
                logger.warning(f"Skipping association {insight.id[:12]} -> {neighbour_id[:12]}: {e}")


class ExtractionWorker:
    """Runs extractions on a named daemon thread, one at a time."""

    def __init__(self, pipeline: ExtractionPipeline, name: str = "cam-extraction-worker") -> None:
        self._pipeline = pipeline
        self._queue: queue.Queue[tuple[ExtractionInput, Future] | None] = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(target=self._worker_loop, name=name, daemon=True)
        self._thread.start()

    def submit(self, ctx: ExtractionInput) -> Future:
        """Queue an extraction; the future resolves to the created insights."""
        future: Future = Future()
        with self._lock:
            if self._closed:
                raise RuntimeError("Extraction worker is shut down")
            self._queue.put((ctx, future))
        return future

    def pending(self) -> int:
        return self._queue.qsize()

    def shutdown(self, drain: bool = True, timeout: float | None = None) -> None:
        """Stop the worker; queued work is finished or cancelled."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if not drain:
                self._cancel_queued()
            self._queue.put(None)
        self._thread.join(timeout)

    def _cancel_queued(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not None:
                item[1].cancel()
            self._queue.task_done()

    def _worker_loop(self) -> None:
        """Background worker for extraction jobs."""
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                ctx, future = item
                if not future.set_running_or_notify_cancel():
                    continue
                try:
                    future.set_result(self._pipeline.extract(ctx))
                except Exception as e:
                    logger.exception("Extraction job failed for instance %s", ctx.source_instance_id)
                    future.set_exception(e)
            finally:
                self._queue.task_done()


def describe(insights: list[Insight]) -> list[dict[str, Any]]:
    """Compact audit view of extracted insights."""
    return [
        {
            "id": i.id,
            "primary_domain": i.primary_domain.value,
            "content": i.content[:120],
        }
        for i in insights
    ]
