"""Kuzu embedded graph database for insights, hyperedges and validations."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import kuzu

from cam.errors import InsightNotFound, StoreError
from cam.models.hyperedge import DiscoveryMethod, Hyperedge, RelationshipType, check_members
from cam.models.insight import (
    ACTIVE_STAGES,
    DEFAULT_POLICY,
    Domain,
    Insight,
    LifecyclePolicy,
    LifecycleStage,
    OscillationContext,
    observation_rate,
    utc_now,
)
from cam.models.validation import ValidationRecord

logger = logging.getLogger(__name__)

_INSIGHT_FIELDS = (
    "i.id, i.content, i.primary_domain, i.secondary_domains, i.confidence, "
    "i.lifecycle_stage, i.source_instance_id, i.source_user_id, "
    "i.source_interaction_id, i.oscillation_context, i.observation_count, "
    "i.observing_instances, i.created_at, i.last_validated, i.metadata"
)

_HYPEREDGE_FIELDS = (
    "h.id, h.insight_ids, h.relationship_type, h.strength, h.spanning_domains, "
    "h.discovery_method, h.discovered_by, h.created_at, h.observation_count, h.metadata"
)

_VALIDATION_FIELDS = (
    "v.id, v.insight_id, v.validator_id, v.method, v.outcome, v.passed, "
    "v.previous_confidence, v.new_confidence, v.findings, "
    "v.contradicting_insight_ids, v.validated_at"
)

_SCAN_PAGE = 500


def _ts(value: datetime) -> str:
    """Fixed-width UTC timestamp so string order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _stage_values(stages: list[LifecycleStage] | None) -> list[str]:
    return [s.value for s in (stages or ACTIVE_STAGES)]


class InsightStore:
    """Kuzu-backed persistence for the insight hypergraph.

    Hyperedges are nodes linked to their member insights through ``Member``
    relationships, so "hyperedges containing any of these insights" is a
    single graph match. All writes go through one lock; multi-statement
    writes run inside a kuzu transaction.
    """

    def __init__(self, db_path: str | Path, policy: LifecyclePolicy = DEFAULT_POLICY) -> None:
        self._db_path = Path(db_path)
        # Kuzu manages its own directory - only ensure parent exists
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = kuzu.Database(str(self._db_path))
        self._conn = kuzu.Connection(self._db)
        self._lock = threading.RLock()
        self._policy = policy
        self._init_schema()

    @property
    def policy(self) -> LifecyclePolicy:
        return self._policy

    def _init_schema(self) -> None:
        """Create node and relationship tables if they don't exist."""
        statements = [
            "CREATE NODE TABLE IF NOT EXISTS Insight("
            "id STRING, content STRING, primary_domain STRING, secondary_domains STRING, "
            "confidence DOUBLE, lifecycle_stage STRING, source_instance_id STRING, "
            "source_user_id STRING, source_interaction_id STRING, oscillation_context STRING, "
            "boundary STRING, frequency DOUBLE, amplitude DOUBLE, observation_count INT64, "
            "observing_instances STRING, created_at STRING, last_validated STRING, "
            "metadata STRING, PRIMARY KEY (id))",
            "CREATE NODE TABLE IF NOT EXISTS Domain(name STRING, PRIMARY KEY (name))",
            "CREATE NODE TABLE IF NOT EXISTS Hyperedge("
            "id STRING, insight_ids STRING, relationship_type STRING, strength DOUBLE, "
            "spanning_domains STRING, discovery_method STRING, discovered_by STRING, "
            "created_at STRING, observation_count INT64, metadata STRING, PRIMARY KEY (id))",
            "CREATE NODE TABLE IF NOT EXISTS ValidationRecord("
            "id STRING, insight_id STRING, validator_id STRING, method STRING, outcome STRING, "
            "passed BOOLEAN, previous_confidence DOUBLE, new_confidence DOUBLE, findings STRING, "
            "contradicting_insight_ids STRING, validated_at STRING, PRIMARY KEY (id))",
            "CREATE REL TABLE IF NOT EXISTS Member(FROM Hyperedge TO Insight, position INT64)",
            "CREATE REL TABLE IF NOT EXISTS InDomain(FROM Insight TO Domain, role STRING)",
            "CREATE REL TABLE IF NOT EXISTS Validates(FROM ValidationRecord TO Insight)",
        ]
        with self._lock:
            for statement in statements:
                self._conn.execute(statement)

    # ── Low-level helpers ────────────────────────────────────────────

    def _execute(self, query: str, params: dict[str, Any] | None = None) -> Any:
        with self._lock:
            try:
                return self._conn.execute(query, params or {})
            except RuntimeError as e:
                raise StoreError(str(e)) from e

    def _rows(self, query: str, params: dict[str, Any] | None = None) -> list[list[Any]]:
        with self._lock:
            result = self._execute(query, params)
            rows = []
            while result.has_next():
                rows.append(result.get_next())
            return rows

    def _count(self, query: str, params: dict[str, Any] | None = None) -> int:
        rows = self._rows(query, params)
        return int(rows[0][0]) if rows else 0

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._lock:
            self._execute("BEGIN TRANSACTION")
            try:
                yield
            except BaseException:
                try:
                    self._conn.execute("ROLLBACK")
                except RuntimeError:
                    # kuzu already rolled back the failed transaction
                    logger.debug("Rollback skipped: no active transaction")
                raise
            self._execute("COMMIT")

    @staticmethod
    def _row_to_insight(row: list[Any]) -> Insight:
        return Insight(
            id=row[0],
            content=row[1],
            primary_domain=Domain(row[2]),
            secondary_domains=[Domain(d) for d in json.loads(row[3] or "[]")],
            confidence=row[4],
            lifecycle_stage=LifecycleStage(row[5]),
            source_instance_id=row[6],
            source_user_id=row[7] or None,
            source_interaction_id=row[8] or None,
            oscillation_context=OscillationContext.model_validate_json(row[9] or "{}"),
            observation_count=row[10],
            observing_instances=json.loads(row[11] or "[]"),
            created_at=_parse_ts(row[12]),
            last_validated=_parse_ts(row[13]),
            metadata=json.loads(row[14] or "{}"),
        )

    @staticmethod
    def _row_to_hyperedge(row: list[Any]) -> Hyperedge:
        # Rows were validated on insert
        return Hyperedge.model_construct(
            id=row[0],
            insight_ids=json.loads(row[1]),
            relationship_type=RelationshipType(row[2]),
            strength=row[3],
            spanning_domains=[Domain(d) for d in json.loads(row[4] or "[]")],
            discovery_method=DiscoveryMethod(row[5]),
            discovered_by=row[6],
            created_at=_parse_ts(row[7]),
            observation_count=row[8],
            metadata=json.loads(row[9] or "{}"),
        )

    @staticmethod
    def _row_to_validation(row: list[Any]) -> ValidationRecord:
        return ValidationRecord(
            id=row[0],
            insight_id=row[1],
            validator_id=row[2],
            method=row[3],
            outcome=row[4],
            passed=row[5],
            previous_confidence=row[6],
            new_confidence=row[7],
            findings=row[8],
            contradicting_insight_ids=json.loads(row[9] or "[]"),
            validated_at=_parse_ts(row[10]),
        )

    def _insights(self, query: str, params: dict[str, Any] | None = None) -> list[Insight]:
        return [self._row_to_insight(row) for row in self._rows(query, params)]

    # ── Insights ─────────────────────────────────────────────────────

    def insert_insight(self, insight: Insight) -> Insight:
        """Persist a new insight and its domain links."""
        observers = list(dict.fromkeys([insight.source_instance_id, *insight.observing_instances]))
        ctx = insight.oscillation_context
        params = {
            "id": insight.id,
            "content": insight.content,
            "primary_domain": insight.primary_domain.value,
            "secondary_domains": json.dumps([d.value for d in insight.secondary_domains]),
            "confidence": float(insight.confidence),
            "lifecycle_stage": insight.lifecycle_stage.value,
            "source_instance_id": insight.source_instance_id,
            "source_user_id": insight.source_user_id or "",
            "source_interaction_id": insight.source_interaction_id or "",
            "oscillation_context": ctx.model_dump_json(),
            "boundary": ctx.boundary,
            "frequency": float(ctx.frequency),
            "amplitude": float(ctx.amplitude),
            "observation_count": int(insight.observation_count),
            "observing_instances": json.dumps(observers),
            "created_at": _ts(insight.created_at),
            "last_validated": _ts(insight.last_validated),
            "metadata": json.dumps(insight.metadata),
        }
        with self._transaction():
            self._execute(
                "CREATE (i:Insight {id: $id, content: $content, primary_domain: $primary_domain, "
                "secondary_domains: $secondary_domains, confidence: $confidence, "
                "lifecycle_stage: $lifecycle_stage, source_instance_id: $source_instance_id, "
                "source_user_id: $source_user_id, source_interaction_id: $source_interaction_id, "
                "oscillation_context: $oscillation_context, boundary: $boundary, "
                "frequency: $frequency, amplitude: $amplitude, "
                "observation_count: $observation_count, observing_instances: $observing_instances, "
                "created_at: $created_at, last_validated: $last_validated, metadata: $metadata})",
                params,
            )
            roles = [(insight.primary_domain, "primary")]
            roles += [(d, "secondary") for d in insight.secondary_domains if d != insight.primary_domain]
            for domain, role in roles:
                self._execute("MERGE (d:Domain {name: $name})", {"name": domain.value})
                self._execute(
                    "MATCH (i:Insight), (d:Domain) WHERE i.id = $id AND d.name = $name "
                    "CREATE (i)-[:InDomain {role: $role}]->(d)",
                    {"id": insight.id, "name": domain.value, "role": role},
                )
        logger.debug("Stored insight %s (%s)", insight.id[:12], insight.primary_domain.value)
        return insight.model_copy(update={"observing_instances": observers})

    def get_insight(self, insight_id: str) -> Insight:
        rows = self._insights(
            f"MATCH (i:Insight) WHERE i.id = $id RETURN {_INSIGHT_FIELDS}",
            {"id": insight_id},
        )
        if not rows:
            raise InsightNotFound(insight_id)
        return rows[0]

    def get_by_ids(self, insight_ids: list[str]) -> list[Insight]:
        """Fetch insights in input order; unknown ids are dropped."""
        if not insight_ids:
            return []
        found = {
            i.id: i
            for i in self._insights(
                f"MATCH (i:Insight) WHERE list_contains($ids, i.id) RETURN {_INSIGHT_FIELDS}",
                {"ids": list(dict.fromkeys(insight_ids))},
            )
        }
        return [found[i] for i in insight_ids if i in found]

    def increment_observation(
        self,
        insight_id: str,
        source_instance_id: str | None = None,
        now: datetime | None = None,
    ) -> Insight:
        """Record another observation of an insight.

        The counter is bumped in a single statement. A new distinct observer
        re-applies the consensus gate, which can promote the stored stage.
        """
        stamp = _ts(now or utc_now())
        with self._transaction():
            rows = self._rows(
                "MATCH (i:Insight) WHERE i.id = $id "
                "SET i.observation_count = i.observation_count + 1, i.last_validated = $now "
                "RETURN i.observing_instances, i.confidence, i.lifecycle_stage",
                {"id": insight_id, "now": stamp},
            )
            if not rows:
                raise InsightNotFound(insight_id)
            observers: list[str] = json.loads(rows[0][0] or "[]")
            if source_instance_id and source_instance_id not in observers:
                observers.append(source_instance_id)
                stage = LifecycleStage(rows[0][2])
                if stage != LifecycleStage.DEPRECATED:
                    stage = self._policy.resolve_stage(rows[0][1], len(observers))
                self._execute(
                    "MATCH (i:Insight) WHERE i.id = $id "
                    "SET i.observing_instances = $observers, i.lifecycle_stage = $stage",
                    {"id": insight_id, "observers": json.dumps(observers), "stage": stage.value},
                )
        return self.get_insight(insight_id)

    def update_confidence_and_lifecycle(
        self,
        insight_id: str,
        new_confidence: float,
        force_stage: LifecycleStage | None = None,
        now: datetime | None = None,
    ) -> Insight:
        """Set confidence and recompute the lifecycle stage from it.

        ``force_stage`` overrides the computed stage (used for contradictions).
        """
        _, updated = self.apply_confidence(
            insight_id, lambda _: new_confidence, force_stage=force_stage, now=now
        )
        return updated

    def apply_confidence(
        self,
        insight_id: str,
        compute: Callable[[float], float],
        force_stage: LifecycleStage | None = None,
        now: datetime | None = None,
    ) -> tuple[Insight, Insight]:
        """Derive the new confidence from the stored one inside a transaction.

        ``compute`` receives the confidence as currently stored, so concurrent
        validators compose instead of overwriting each other. Returns the
        insight before and after the update.
        """
        stamp = _ts(now or utc_now())
        with self._transaction():
            before = self.get_insight(insight_id)
            confidence = max(0.0, min(1.0, float(compute(before.confidence))))
            stage = force_stage or self._policy.resolve_stage(confidence, before.distinct_instances)
            self._execute(
                "MATCH (i:Insight) WHERE i.id = $id "
                "SET i.confidence = $confidence, i.lifecycle_stage = $stage, "
                "i.last_validated = $now",
                {"id": insight_id, "confidence": confidence, "stage": stage.value, "now": stamp},
            )
            after = self.get_insight(insight_id)
        return before, after

    # ── Hyperedges ───────────────────────────────────────────────────

    def insert_hyperedge(self, edge: Hyperedge) -> Hyperedge:
        """Persist a hyperedge; spanning domains are derived from its members."""
        check_members(edge.insight_ids)
        member_ids = list(dict.fromkeys(i for i in edge.insight_ids if i))
        members = self.get_by_ids(member_ids)
        found = {m.id for m in members}
        for member_id in member_ids:
            if member_id not in found:
                raise InsightNotFound(member_id)

        spanning: set[Domain] = set()
        for member in members:
            spanning |= member.domains
        spanning_domains = [d for d in Domain if d in spanning]

        with self._transaction():
            self._execute(
                "CREATE (h:Hyperedge {id: $id, insight_ids: $insight_ids, "
                "relationship_type: $relationship_type, strength: $strength, "
                "spanning_domains: $spanning_domains, discovery_method: $discovery_method, "
                "discovered_by: $discovered_by, created_at: $created_at, "
                "observation_count: $observation_count, metadata: $metadata})",
                {
                    "id": edge.id,
                    "insight_ids": json.dumps(member_ids),
                    "relationship_type": edge.relationship_type.value,
                    "strength": float(edge.strength),
                    "spanning_domains": json.dumps([d.value for d in spanning_domains]),
                    "discovery_method": edge.discovery_method.value,
                    "discovered_by": edge.discovered_by,
                    "created_at": _ts(edge.created_at),
                    "observation_count": int(edge.observation_count),
                    "metadata": json.dumps(edge.metadata),
                },
            )
            for position, member_id in enumerate(member_ids):
                self._execute(
                    "MATCH (h:Hyperedge), (i:Insight) WHERE h.id = $hid AND i.id = $iid "
                    "CREATE (h)-[:Member {position: $position}]->(i)",
                    {"hid": edge.id, "iid": member_id, "position": position},
                )
        logger.debug(
            "Stored %s hyperedge %s over %d insights",
            edge.relationship_type.value, edge.id[:12], len(member_ids),
        )
        return edge.model_copy(
            update={"insight_ids": member_ids, "spanning_domains": spanning_domains}
        )

    def increment_hyperedge_observation(self, hyperedge_id: str) -> None:
        rows = self._rows(
            "MATCH (h:Hyperedge) WHERE h.id = $id "
            "SET h.observation_count = h.observation_count + 1 RETURN h.id",
            {"id": hyperedge_id},
        )
        if not rows:
            raise StoreError(f"Hyperedge not found: {hyperedge_id}")

    def hyperedges_for_insight(
        self,
        insight_id: str,
        relationship_types: list[RelationshipType] | None = None,
    ) -> list[Hyperedge]:
        return self.hyperedges_for_insights([insight_id], relationship_types)

    def hyperedges_for_insights(
        self,
        insight_ids: list[str],
        relationship_types: list[RelationshipType] | None = None,
    ) -> list[Hyperedge]:
        """All hyperedges touching any of the given insights, strongest first."""
        if not insight_ids:
            return []
        conditions = [
            "EXISTS { MATCH (h)-[:Member]->(i:Insight) WHERE list_contains($ids, i.id) }"
        ]
        params: dict[str, Any] = {"ids": list(dict.fromkeys(insight_ids))}
        if relationship_types:
            conditions.append("list_contains($types, h.relationship_type)")
            params["types"] = [t.value for t in relationship_types]
        rows = self._rows(
            f"MATCH (h:Hyperedge) WHERE {' AND '.join(conditions)} "
            f"RETURN {_HYPEREDGE_FIELDS} ORDER BY h.strength DESC",
            params,
        )
        return [self._row_to_hyperedge(row) for row in rows]

    # ── Maintenance views ────────────────────────────────────────────

    def insights_due_for_validation(self, limit: int, now: datetime | None = None) -> list[Insight]:
        """Insights whose decayed confidence fell under their stage floor.

        Scans least-recently-validated first.
        """
        now = now or utc_now()
        due: list[Insight] = []
        skip = 0
        while len(due) < limit:
            page = self._insights(
                f"MATCH (i:Insight) RETURN {_INSIGHT_FIELDS} "
                f"ORDER BY i.last_validated ASC SKIP {skip} LIMIT {_SCAN_PAGE}"
            )
            if not page:
                break
            due.extend(i for i in page if i.needs_revalidation(now, self._policy))
            skip += len(page)
            if len(page) < _SCAN_PAGE:
                break
        return due[:limit]

    def established_high_confidence(self, limit: int) -> list[Insight]:
        return self._insights(
            f"MATCH (i:Insight) WHERE i.lifecycle_stage = $stage "
            f"RETURN {_INSIGHT_FIELDS} ORDER BY i.confidence DESC LIMIT {int(limit)}",
            {"stage": LifecycleStage.ESTABLISHED.value},
        )

    def average_observation_rate(self, now: datetime | None = None) -> float:
        """Mean observations-per-day across non-deprecated insights."""
        now = now or utc_now()
        rows = self._rows(
            "MATCH (i:Insight) WHERE i.lifecycle_stage <> $stage "
            "RETURN i.observation_count, i.created_at",
            {"stage": LifecycleStage.DEPRECATED.value},
        )
        if not rows:
            return 0.0
        rates = [observation_rate(row[0], _parse_ts(row[1]), now) for row in rows]
        return sum(rates) / len(rates)

    # ── Query support ────────────────────────────────────────────────

    def find_by_domains(
        self,
        domains: list[Domain],
        min_confidence: float = 0.0,
        stages: list[LifecycleStage] | None = None,
        limit: int = 50,
    ) -> list[Insight]:
        """Insights tagged (primary or secondary) with any of the domains."""
        if not domains:
            return []
        return self._insights(
            "MATCH (i:Insight) WHERE i.confidence >= $min_confidence "
            "AND list_contains($stages, i.lifecycle_stage) "
            "AND EXISTS { MATCH (i)-[:InDomain]->(d:Domain) WHERE list_contains($domains, d.name) } "
            f"RETURN {_INSIGHT_FIELDS} ORDER BY i.confidence DESC LIMIT {int(limit)}",
            {
                "min_confidence": float(min_confidence),
                "stages": _stage_values(stages),
                "domains": [d.value for d in domains],
            },
        )

    def find_created_between(
        self,
        start: datetime,
        end: datetime,
        domains: list[Domain] | None = None,
        stages: list[LifecycleStage] | None = None,
        limit: int | None = None,
    ) -> list[Insight]:
        """Insights created inside [start, end], newest first."""
        conditions = [
            "i.created_at >= $start",
            "i.created_at <= $end_ts",
            "list_contains($stages, i.lifecycle_stage)",
        ]
        params: dict[str, Any] = {
            "start": _ts(start),
            "end_ts": _ts(end),
            "stages": _stage_values(stages),
        }
        if domains:
            conditions.append(
                "EXISTS { MATCH (i)-[:InDomain]->(d:Domain) WHERE list_contains($domains, d.name) }"
            )
            params["domains"] = [d.value for d in domains]
        limit_clause = f" LIMIT {int(limit)}" if limit else ""
        return self._insights(
            f"MATCH (i:Insight) WHERE {' AND '.join(conditions)} "
            f"RETURN {_INSIGHT_FIELDS} ORDER BY i.created_at DESC{limit_clause}",
            params,
        )

    def find_by_oscillation(
        self,
        boundary: str | None = None,
        frequency_range: tuple[float, float] | None = None,
        amplitude_range: tuple[float, float] | None = None,
        stages: list[LifecycleStage] | None = None,
        limit: int = 50,
    ) -> list[Insight]:
        """Insights whose recorded oscillation context falls inside the filters."""
        conditions = ["list_contains($stages, i.lifecycle_stage)"]
        params: dict[str, Any] = {"stages": _stage_values(stages)}
        if boundary:
            conditions.append("i.boundary = $boundary")
            params["boundary"] = boundary
        if frequency_range:
            conditions.append("i.frequency >= $fmin AND i.frequency <= $fmax")
            params["fmin"], params["fmax"] = float(frequency_range[0]), float(frequency_range[1])
        if amplitude_range:
            conditions.append("i.amplitude >= $amin AND i.amplitude <= $amax")
            params["amin"], params["amax"] = float(amplitude_range[0]), float(amplitude_range[1])
        return self._insights(
            f"MATCH (i:Insight) WHERE {' AND '.join(conditions)} "
            f"RETURN {_INSIGHT_FIELDS} ORDER BY i.confidence DESC LIMIT {int(limit)}",
            params,
        )

    # ── Validation records ───────────────────────────────────────────

    def append_validation(self, record: ValidationRecord) -> ValidationRecord:
        """Append an audit record; existing records are never modified."""
        with self._transaction():
            if not self._rows("MATCH (i:Insight) WHERE i.id = $id RETURN i.id", {"id": record.insight_id}):
                raise InsightNotFound(record.insight_id)
            self._execute(
                "CREATE (v:ValidationRecord {id: $id, insight_id: $insight_id, "
                "validator_id: $validator_id, method: $method, outcome: $outcome, "
                "passed: $passed, previous_confidence: $previous_confidence, "
                "new_confidence: $new_confidence, findings: $findings, "
                "contradicting_insight_ids: $contradicting, validated_at: $validated_at})",
                {
                    "id": record.id,
                    "insight_id": record.insight_id,
                    "validator_id": record.validator_id,
                    "method": record.method.value,
                    "outcome": record.outcome.value,
                    "passed": bool(record.passed),
                    "previous_confidence": float(record.previous_confidence),
                    "new_confidence": float(record.new_confidence),
                    "findings": record.findings,
                    "contradicting": json.dumps(record.contradicting_insight_ids),
                    "validated_at": _ts(record.validated_at),
                },
            )
            self._execute(
                "MATCH (v:ValidationRecord), (i:Insight) WHERE v.id = $vid AND i.id = $iid "
                "CREATE (v)-[:Validates]->(i)",
                {"vid": record.id, "iid": record.insight_id},
            )
        return record

    def validations_for_insight(self, insight_id: str) -> list[ValidationRecord]:
        rows = self._rows(
            f"MATCH (v:ValidationRecord) WHERE v.insight_id = $id "
            f"RETURN {_VALIDATION_FIELDS} ORDER BY v.validated_at ASC",
            {"id": insight_id},
        )
        return [self._row_to_validation(row) for row in rows]

    # ── Stats ────────────────────────────────────────────────────────

    def insight_count(self, stage: LifecycleStage | None = None) -> int:
        if stage:
            return self._count(
                "MATCH (i:Insight) WHERE i.lifecycle_stage = $stage RETURN count(i)",
                {"stage": stage.value},
            )
        return self._count("MATCH (i:Insight) RETURN count(i)")

    def hyperedge_count(self) -> int:
        return self._count("MATCH (h:Hyperedge) RETURN count(h)")

    def validation_count(self) -> int:
        return self._count("MATCH (v:ValidationRecord) RETURN count(v)")

    def stats(self) -> dict[str, Any]:
        by_stage = {stage.value: self.insight_count(stage) for stage in LifecycleStage}
        return {
            "total_insights": sum(by_stage.values()),
            "insights_by_stage": by_stage,
            "total_hyperedges": self.hyperedge_count(),
            "total_validations": self.validation_count(),
        }

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
                self._db.close()
            except RuntimeError as e:
                logger.debug(f"Store close note: {e}")
