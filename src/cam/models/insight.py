"""Insight model, lifecycle stages and confidence decay."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class Domain(str, Enum):
    """Domain taxonomy for insights."""

    COMPUTATIONAL = "Computational"
    SCIENTIFIC = "Scientific"
    CULTURAL = "Cultural"
    EXPERIENTIAL = "Experiential"

    COMPUTATIONAL_ALGORITHMS = "ComputationalAlgorithms"
    COMPUTATIONAL_DATA_STRUCTURES = "ComputationalDataStructures"
    SCIENTIFIC_PHYSICS = "ScientificPhysics"
    SCIENTIFIC_BIOLOGY = "ScientificBiology"
    CULTURAL_LANGUAGE = "CulturalLanguage"
    CULTURAL_ETHICS = "CulturalEthics"
    EXPERIENTIAL_AESTHETIC = "ExperientialAesthetic"
    EXPERIENTIAL_EMBODIED = "ExperientialEmbodied"


_DOMAIN_CODES = {
    "cd": Domain.COMPUTATIONAL,
    "sd": Domain.SCIENTIFIC,
    "cud": Domain.CULTURAL,
    "ed": Domain.EXPERIENTIAL,
}


def parse_domain(value: Any) -> Domain | None:
    """Parse a domain label or short code (CD/SD/CuD/ED), case-insensitively."""
    if isinstance(value, Domain):
        return value
    text = str(value or "").strip()
    if not text:
        return None
    code = _DOMAIN_CODES.get(text.lower())
    if code:
        return code
    for domain in Domain:
        if domain.value.lower() == text.lower():
            return domain
    return None


class LifecycleStage(str, Enum):
    """Trustworthiness classification of an insight."""

    EMERGING = "Emerging"
    VALIDATED = "Validated"
    ESTABLISHED = "Established"
    DEPRECATED = "Deprecated"


_STAGE_RANK = {
    LifecycleStage.DEPRECATED: 0,
    LifecycleStage.EMERGING: 1,
    LifecycleStage.VALIDATED: 2,
    LifecycleStage.ESTABLISHED: 3,
}

ACTIVE_STAGES = [
    LifecycleStage.EMERGING,
    LifecycleStage.VALIDATED,
    LifecycleStage.ESTABLISHED,
]


@dataclass(frozen=True)
class LifecyclePolicy:
    """Thresholds governing stage assignment, decay and revalidation."""

    established_threshold: float = 0.75
    validated_threshold: float = 0.5
    emerging_threshold: float = 0.3
    consensus_validated_instances: int = 2
    consensus_established_instances: int = 5
    half_life_established: float = 180.0
    half_life_validated: float = 90.0
    half_life_emerging: float = 30.0
    half_life_deprecated: float = 7.0
    floor_emerging: float = 0.4
    floor_validated: float = 0.6
    floor_established: float = 0.7

    @classmethod
    def from_settings(cls, settings: Any) -> LifecyclePolicy:
        return cls(
            established_threshold=settings.established_threshold,
            validated_threshold=settings.validated_threshold,
            emerging_threshold=settings.emerging_threshold,
            consensus_validated_instances=settings.consensus_validated_instances,
            consensus_established_instances=settings.consensus_established_instances,
            half_life_established=settings.half_life_established,
            half_life_validated=settings.half_life_validated,
            half_life_emerging=settings.half_life_emerging,
            half_life_deprecated=settings.half_life_deprecated,
            floor_emerging=settings.revalidation_floor_emerging,
            floor_validated=settings.revalidation_floor_validated,
            floor_established=settings.revalidation_floor_established,
        )

    def stage_for_confidence(self, confidence: float) -> LifecycleStage:
        """Map a confidence value onto a lifecycle stage."""
        if confidence >= self.established_threshold:
            return LifecycleStage.ESTABLISHED
        if confidence >= self.validated_threshold:
            return LifecycleStage.VALIDATED
        if confidence >= self.emerging_threshold:
            return LifecycleStage.EMERGING
        return LifecycleStage.DEPRECATED

    def consensus_cap(self, distinct_instances: int) -> LifecycleStage:
        """Highest stage reachable with the given number of distinct observers."""
        if distinct_instances >= self.consensus_established_instances:
            return LifecycleStage.ESTABLISHED
        if distinct_instances >= self.consensus_validated_instances:
            return LifecycleStage.VALIDATED
        return LifecycleStage.EMERGING

    def resolve_stage(self, confidence: float, distinct_instances: int) -> LifecycleStage:
        """Confidence mapping, capped by the consensus gate.

        The cap only ever lowers a stage; Deprecated stays Deprecated.
        """
        by_confidence = self.stage_for_confidence(confidence)
        cap = self.consensus_cap(distinct_instances)
        if _STAGE_RANK[by_confidence] > _STAGE_RANK[cap]:
            return cap
        return by_confidence

    def half_life(self, stage: LifecycleStage) -> float:
        return {
            LifecycleStage.ESTABLISHED: self.half_life_established,
            LifecycleStage.VALIDATED: self.half_life_validated,
            LifecycleStage.EMERGING: self.half_life_emerging,
            LifecycleStage.DEPRECATED: self.half_life_deprecated,
        }[stage]

    def revalidation_floor(self, stage: LifecycleStage) -> float | None:
        """Decayed-confidence floor for a stage; None means always due."""
        return {
            LifecycleStage.ESTABLISHED: self.floor_established,
            LifecycleStage.VALIDATED: self.floor_validated,
            LifecycleStage.EMERGING: self.floor_emerging,
            LifecycleStage.DEPRECATED: None,
        }[stage]


DEFAULT_POLICY = LifecyclePolicy()


def age_in_days(since: datetime, now: datetime) -> float:
    """Fractional days elapsed, never negative."""
    return max(0.0, (now - since).total_seconds() / 86400.0)


def decayed_confidence(confidence: float, age_days: float, half_life: float) -> float:
    """confidence * exp(-age_days / half_life)."""
    return confidence * math.exp(-max(0.0, age_days) / half_life)


class PhenomenologicalQualities(BaseModel):
    """The seven quality scalars observed at a boundary."""

    clarity: float = 0.5
    depth: float = 0.5
    openness: float = 0.5
    precision: float = 0.5
    fluidity: float = 0.5
    resonance: float = 0.5
    coherence: float = 0.5


class OscillationContext(BaseModel):
    """Boundary conditions present when an insight was observed."""

    boundary: str = ""
    frequency: float = 0.0
    amplitude: float = 0.0
    phase: float = 0.0
    permeability: float = 0.0
    qualities: PhenomenologicalQualities = Field(default_factory=PhenomenologicalQualities)


class Insight(BaseModel):
    """A single reusable observation shared across instances."""

    id: str = Field(default_factory=new_id)
    content: str
    primary_domain: Domain
    secondary_domains: list[Domain] = Field(default_factory=list)
    confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    lifecycle_stage: LifecycleStage = LifecycleStage.EMERGING
    source_instance_id: str
    source_user_id: str | None = None
    source_interaction_id: str | None = None
    oscillation_context: OscillationContext = Field(default_factory=OscillationContext)
    observation_count: int = Field(default=1, ge=1)
    observing_instances: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_validated: datetime = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def domains(self) -> set[Domain]:
        """Primary plus secondary domains."""
        return {self.primary_domain, *self.secondary_domains}

    @property
    def distinct_instances(self) -> int:
        observers = set(self.observing_instances)
        observers.add(self.source_instance_id)
        return len(observers)

    def decayed_confidence(
        self,
        now: datetime | None = None,
        policy: LifecyclePolicy = DEFAULT_POLICY,
    ) -> float:
        """Effective confidence after time decay since the last validation."""
        age = age_in_days(self.last_validated, now or utc_now())
        return decayed_confidence(self.confidence, age, policy.half_life(self.lifecycle_stage))

    def needs_revalidation(
        self,
        now: datetime | None = None,
        policy: LifecyclePolicy = DEFAULT_POLICY,
    ) -> bool:
        floor = policy.revalidation_floor(self.lifecycle_stage)
        if floor is None:
            return True
        return self.decayed_confidence(now, policy) < floor


# Observation rates are computed over at least an hour so brand-new
# insights do not dominate the population average.
MIN_RATE_AGE_DAYS = 1.0 / 24.0


def observation_rate(observation_count: int, created_at: datetime, now: datetime) -> float:
    """Observations per day since creation."""
    return observation_count / max(age_in_days(created_at, now), MIN_RATE_AGE_DAYS)
