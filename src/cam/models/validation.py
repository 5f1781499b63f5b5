"""Append-only validation audit records."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from cam.models.insight import new_id, utc_now


class ValidationOutcome(str, Enum):
    CONFIRMED = "Confirmed"
    WEAKENED = "Weakened"
    CONTRADICTED = "Contradicted"


class ValidationMethod(str, Enum):
    CONTRADICTION_CHECK = "ContradictionCheck"
    CONSENSUS_CHECK = "ConsensusCheck"
    MODEL_REEVALUATION = "ModelReevaluation"
    DECAY = "Decay"


class ValidationRecord(BaseModel):
    """Result of validating one insight. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    insight_id: str
    validator_id: str
    method: ValidationMethod
    outcome: ValidationOutcome
    passed: bool
    previous_confidence: float
    new_confidence: float
    findings: str = ""
    contradicting_insight_ids: list[str] = Field(default_factory=list)
    validated_at: datetime = Field(default_factory=utc_now)
