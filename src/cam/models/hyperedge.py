"""Hyperedge model: a typed relationship spanning two or more insights."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from cam.errors import InvalidHyperedge
from cam.models.insight import Domain, new_id, utc_now


class RelationshipType(str, Enum):
    CONTRADICTION = "Contradiction"
    REINFORCEMENT = "Reinforcement"
    GENERALIZATION = "Generalization"
    SPECIALIZATION = "Specialization"
    SYNTHESIS = "Synthesis"
    ANALOGY = "Analogy"
    CAUSATION = "Causation"
    TEMPORAL_SEQUENCE = "TemporalSequence"
    CO_OCCURRENCE = "CoOccurrence"


class DiscoveryMethod(str, Enum):
    OSCILLATION_EMERGENCE = "OscillationEmergence"
    SEMANTIC_CLUSTERING = "SemanticClustering"
    INFERRED_BY_MODEL = "InferredByModel"
    MANUAL_CURATION = "ManualCuration"
    STATISTICAL_ANALYSIS = "StatisticalAnalysis"


CONTRADICTION_STRENGTH_THRESHOLD = 0.5


def check_members(insight_ids: list[str]) -> None:
    """Raise InvalidHyperedge unless at least two distinct insights are linked."""
    if len({i for i in insight_ids if i}) < 2:
        raise InvalidHyperedge(
            f"Hyperedge must connect at least 2 insights, got {len(insight_ids)}"
        )


class Hyperedge(BaseModel):
    """Relationship between two or more insights."""

    id: str = Field(default_factory=new_id)
    insight_ids: list[str]
    relationship_type: RelationshipType
    strength: float = Field(default=0.5, ge=0.0, le=1.0)
    # Filled in by the store from the member insights
    spanning_domains: list[Domain] = Field(default_factory=list)
    discovery_method: DiscoveryMethod = DiscoveryMethod.MANUAL_CURATION
    discovered_by: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    observation_count: int = Field(default=1, ge=1)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_two_members(self) -> Hyperedge:
        check_members(self.insight_ids)
        return self

    def requires_resolution(self, threshold: float = CONTRADICTION_STRENGTH_THRESHOLD) -> bool:
        """A contradiction strong enough that the validation engine must act on it."""
        return self.relationship_type == RelationshipType.CONTRADICTION and self.strength > threshold
