"""Inputs handed to the extraction pipeline by the conversational flow."""

from __future__ import annotations

from pydantic import BaseModel, Field

from cam.models.insight import Domain


class DomainActivation(BaseModel):
    domain: str
    activation: float = 0.0


class BoundaryState(BaseModel):
    """State of one domain boundary at the end of an interaction."""

    name: str
    permeability: float = 0.0
    frequency: float = 0.0
    amplitude: float = 0.0
    phase: float = 0.0
    status: str = ""


class BoundaryQualities(BaseModel):
    """Quality scalars the flow observed at a named boundary."""

    boundary_name: str
    clarity: float = 0.5
    depth: float = 0.5
    openness: float = 0.5
    precision: float = 0.5
    fluidity: float = 0.5
    resonance: float = 0.5
    coherence: float = 0.5


class ExtractionInput(BaseModel):
    """One interaction's worth of context for insight extraction."""

    user_text: str
    domain_activations: list[DomainActivation] = Field(default_factory=list)
    boundaries: list[BoundaryState] = Field(default_factory=list)
    qualities: list[BoundaryQualities] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    source_instance_id: str
    source_user_id: str | None = None
    source_interaction_id: str | None = None


class CandidateInsight(BaseModel):
    """An insight proposed by the summarizer, before dedup and persistence."""

    content: str
    primary_domain: Domain
    secondary_domains: list[Domain] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
