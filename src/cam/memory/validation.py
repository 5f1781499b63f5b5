"""Validation and consensus engine: keeps stored confidence honest over time."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime

from cam.config import Settings
from cam.errors import CAMError, ValidationError
from cam.memory.insight_store import InsightStore
from cam.memory.summarizer import Summarizer, parse_json_response
from cam.memory.vector_store import VectorIndex, insight_tags
from cam.models.hyperedge import RelationshipType
from cam.models.insight import Insight, LifecycleStage, observation_rate, utc_now
from cam.models.validation import ValidationMethod, ValidationOutcome, ValidationRecord

logger = logging.getLogger(__name__)

_REVIEW_PROMPT = """\
Re-evaluate the following insight, which other conversations have relied on.

Insight: {content}
Primary domain: {domain}
Current confidence: {confidence:.2f}
Observed {observations} time(s) by {instances} instance(s).

Decide whether the insight still holds. Return ONLY valid JSON:
{{"verdict": "confirmed | weakened | contradicted", "new_confidence": 0.0, "reasoning": "string"}}
"""

_VERDICTS = {
    "confirmed": ValidationOutcome.CONFIRMED,
    "weakened": ValidationOutcome.WEAKENED,
    "contradicted": ValidationOutcome.CONTRADICTED,
}


@dataclass
class ValidationCycleReport:
    """Summary of one validation cycle."""

    started_at: datetime
    processed: int = 0
    confirmed: int = 0
    weakened: int = 0
    contradicted: int = 0
    failed: int = 0
    duration_seconds: float = 0.0
    skipped: bool = False
    record_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data


@dataclass
class _Finding:
    method: ValidationMethod
    outcome: ValidationOutcome
    findings: str
    suggested_confidence: float | None = None
    contradicting_ids: list[str] = field(default_factory=list)


class ValidationEngine:
    """Revalidates insights by contradiction, consensus growth and model review."""

    def __init__(
        self,
        store: InsightStore,
        index: VectorIndex,
        summarizer: Summarizer | None,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._index = index
        self._summarizer = summarizer
        self._settings = settings
        self._clock = clock
        self._run_lock = threading.Lock()

    # ── Checks ───────────────────────────────────────────────────────

    def _check_contradictions(self, insight: Insight) -> _Finding | None:
        edges = self._store.hyperedges_for_insight(insight.id, [RelationshipType.CONTRADICTION])
        threshold = self._settings.contradiction_strength_threshold
        strong = [e for e in edges if e.requires_resolution(threshold)]
        if not strong:
            return None
        others = list(dict.fromkeys(
            i for e in strong for i in e.insight_ids if i != insight.id
        ))
        return _Finding(
            method=ValidationMethod.CONTRADICTION_CHECK,
            outcome=ValidationOutcome.CONTRADICTED,
            findings=f"{len(strong)} contradiction(s) above strength {threshold}",
            contradicting_ids=others,
        )

    def _check_consensus(self, insight: Insight, population_rate: float, now: datetime) -> _Finding | None:
        if population_rate <= 0:
            return None
        rate = observation_rate(insight.observation_count, insight.created_at, now)
        growth = (rate - population_rate) / population_rate
        if growth <= self._settings.consensus_growth_threshold:
            return None
        return _Finding(
            method=ValidationMethod.CONSENSUS_CHECK,
            outcome=ValidationOutcome.CONFIRMED,
            findings=f"Observation rate {rate:.3f}/day is {growth:+.0%} against "
                     f"population {population_rate:.3f}/day",
        )

    def _check_with_model(self, insight: Insight) -> _Finding | None:
        if self._summarizer is None or insight.confidence <= self._settings.model_review_min_confidence:
            return None
        prompt = _REVIEW_PROMPT.format(
            content=insight.content,
            domain=insight.primary_domain.value,
            confidence=insight.confidence,
            observations=insight.observation_count,
            instances=insight.distinct_instances,
        )
        # An outage (SummarizerError) propagates; only unusable answers fall through
        raw = self._summarizer.complete(prompt)
        try:
            parsed = parse_json_response(raw)
            if not isinstance(parsed, dict):
                raise ValidationError(f"Expected a JSON object, got {type(parsed).__name__}")
            outcome = _VERDICTS.get(str(parsed.get("verdict", "")).strip().lower())
            if outcome is None:
                raise ValidationError(f"Unknown verdict: {parsed.get('verdict')!r}")
            suggested = parsed.get("new_confidence")
            if suggested is not None:
                suggested = max(0.0, min(1.0, float(suggested)))
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning(f"Model re-evaluation of {insight.id[:12]} unusable: {e}")
            return None
        return _Finding(
            method=ValidationMethod.MODEL_REEVALUATION,
            outcome=outcome,
            findings=str(parsed.get("reasoning") or ""),
            suggested_confidence=suggested,
        )

    # ── Apply ────────────────────────────────────────────────────────

    def _new_confidence(self, current: float, finding: _Finding) -> float:
        if finding.suggested_confidence is not None:
            return finding.suggested_confidence
        if finding.outcome == ValidationOutcome.CONFIRMED:
            return min(current * self._settings.confirm_factor, 1.0)
        if finding.outcome == ValidationOutcome.WEAKENED:
            return current * self._settings.weaken_factor
        return current

    def validate_insight(
        self,
        insight: Insight,
        population_rate: float,
        now: datetime | None = None,
    ) -> ValidationRecord:
        """Run the checks in order, apply the first outcome, record it."""
        now = now or self._clock()
        finding = (
            self._check_contradictions(insight)
            or self._check_consensus(insight, population_rate, now)
            or self._check_with_model(insight)
            or _Finding(
                method=ValidationMethod.DECAY,
                outcome=ValidationOutcome.WEAKENED,
                findings="No supporting evidence since last validation",
            )
        )

        force_stage = (
            LifecycleStage.DEPRECATED
            if finding.outcome == ValidationOutcome.CONTRADICTED
            else None
        )
        # The factor applies to the stored confidence, not the caller's snapshot
        previous, updated = self._store.apply_confidence(
            insight.id,
            lambda current: self._new_confidence(current, finding),
            force_stage=force_stage,
            now=now,
        )
        if updated.lifecycle_stage != previous.lifecycle_stage:
            logger.info(
                "Insight %s moved %s -> %s",
                insight.id[:12], previous.lifecycle_stage.value, updated.lifecycle_stage.value,
            )
            try:
                self._index.retag(updated.id, insight_tags(updated))
            except CAMError as e:
                logger.warning(f"Could not retag vector for {updated.id[:12]}: {e}")

        record = ValidationRecord(
            insight_id=insight.id,
            validator_id=self._settings.instance_id,
            method=finding.method,
            outcome=finding.outcome,
            passed=finding.outcome != ValidationOutcome.CONTRADICTED,
            previous_confidence=previous.confidence,
            new_confidence=updated.confidence,
            findings=finding.findings,
            contradicting_insight_ids=finding.contradicting_ids,
            validated_at=now,
        )
        return self._store.append_validation(record)

    def validate_by_id(self, insight_id: str) -> ValidationRecord:
        """Revalidate one insight now, whether or not it is due.

        Waits for a running cycle to finish first.
        """
        with self._run_lock:
            now = self._clock()
            insight = self._store.get_insight(insight_id)
            return self.validate_insight(insight, self._store.average_observation_rate(now), now)

    def run_validation_cycle(self) -> ValidationCycleReport:
        """Validate one batch of due insights.

        A call made while another cycle is running returns a skipped report.
        """
        now = self._clock()
        report = ValidationCycleReport(started_at=now)
        if not self._run_lock.acquire(blocking=False):
            logger.info("Validation cycle already running; skipping")
            report.skipped = True
            return report

        start = time.monotonic()
        try:
            population_rate = self._store.average_observation_rate(now)
            due = self._store.insights_due_for_validation(self._settings.validation_batch_size, now)
            for insight in due:
                report.processed += 1
                try:
                    record = self.validate_insight(insight, population_rate, now)
                except Exception:
                    logger.exception("Validation failed for insight %s", insight.id)
                    report.failed += 1
                    continue
                report.record_ids.append(record.id)
                if record.outcome == ValidationOutcome.CONFIRMED:
                    report.confirmed += 1
                elif record.outcome == ValidationOutcome.WEAKENED:
                    report.weakened += 1
                else:
                    report.contradicted += 1
        finally:
            report.duration_seconds = time.monotonic() - start
            self._run_lock.release()

        logger.info(
            "Validation cycle: %d processed, %d confirmed, %d weakened, %d contradicted, %d failed",
            report.processed, report.confirmed, report.weakened, report.contradicted, report.failed,
        )
        return report


class ValidationScheduler:
    """Runs validation cycles on a background thread at a fixed interval."""

    def __init__(
        self,
        engine: ValidationEngine,
        interval_seconds: float,
        on_cycle: Callable[[ValidationCycleReport], None] | None = None,
    ) -> None:
        self._engine = engine
        self._interval = interval_seconds
        self._on_cycle = on_cycle
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="cam-validation-scheduler",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def tick(self) -> ValidationCycleReport | None:
        """Run one cycle now; errors are logged, never raised."""
        try:
            report = self._engine.run_validation_cycle()
        except Exception:
            logger.exception("Validation cycle failed")
            return None
        if self._on_cycle is not None and not report.skipped:
            try:
                self._on_cycle(report)
            except Exception:
                logger.exception("Validation cycle callback failed")
        return report

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            self.tick()
