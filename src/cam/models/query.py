"""Query requests and results for the six retrieval strategies."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from cam.models.hyperedge import Hyperedge, RelationshipType
from cam.models.insight import Domain, Insight, LifecycleStage

_PRESETS = {
    "last_hour": timedelta(hours=1),
    "last_day": timedelta(days=1),
    "last_week": timedelta(weeks=1),
    "last_month": timedelta(days=30),
}


class TemporalSort(str, Enum):
    MOST_RECENT = "most_recent"
    MOST_OBSERVED = "most_observed"
    HIGHEST_CONFIDENCE_GROWTH = "highest_confidence_growth"


class TimeRange(BaseModel):
    """A preset window ending now, or an explicit [start, end] window."""

    preset: Literal["last_hour", "last_day", "last_week", "last_month", "custom"] = "last_day"
    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        """Naive bounds are read as UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _custom_needs_bounds(self) -> TimeRange:
        if self.preset == "custom" and (self.start is None or self.end is None):
            raise ValueError("custom time range requires start and end")
        if self.start and self.end and self.start > self.end:
            raise ValueError("time range start must not be after end")
        return self

    def bounds(self, now: datetime) -> tuple[datetime, datetime]:
        if self.preset == "custom":
            return self.start, self.end  # type: ignore[return-value]
        return now - _PRESETS[self.preset], now


class QueryFilters(BaseModel):
    """Filters shared by hybrid queries."""

    min_confidence: float | None = None
    lifecycle_stages: list[LifecycleStage] | None = None
    domains: list[Domain] | None = None
    exclude_deprecated: bool = True


class SemanticQuery(BaseModel):
    mode: Literal["semantic"] = "semantic"
    query_text: str = Field(min_length=1)
    domains: list[Domain] | None = None
    min_confidence: float = 0.0
    # None = configured default
    min_score: float | None = None
    limit: int = Field(default=10, ge=1, le=1000)
    include_deprecated: bool = False


class StructuralQuery(BaseModel):
    mode: Literal["structural"] = "structural"
    start_insight_id: str
    # Empty = follow every relationship type
    relationship_types: list[RelationshipType] = Field(default_factory=list)
    max_depth: int = Field(default=2, ge=1, le=10)
    limit: int = Field(default=10, ge=1, le=1000)
    include_deprecated: bool = False


class DomainIntersectionQuery(BaseModel):
    mode: Literal["domain_intersection"] = "domain_intersection"
    domains: list[Domain] = Field(min_length=1)
    min_confidence: float = 0.0
    limit: int = Field(default=10, ge=1, le=1000)
    include_deprecated: bool = False


class TemporalQuery(BaseModel):
    mode: Literal["temporal"] = "temporal"
    time_range: TimeRange = Field(default_factory=TimeRange)
    domains: list[Domain] | None = None
    sort_by: TemporalSort = TemporalSort.MOST_RECENT
    limit: int = Field(default=10, ge=1, le=1000)
    include_deprecated: bool = False


class OscillationPatternQuery(BaseModel):
    mode: Literal["oscillation_pattern"] = "oscillation_pattern"
    boundary: str | None = None
    frequency_range: tuple[float, float] | None = None
    amplitude_range: tuple[float, float] | None = None
    limit: int = Field(default=10, ge=1, le=1000)
    include_deprecated: bool = False


class HybridQuery(BaseModel):
    """Any combination of the other strategies, fused and filtered."""

    mode: Literal["hybrid"] = "hybrid"
    semantic: SemanticQuery | None = None
    structural: StructuralQuery | None = None
    domain_intersection: DomainIntersectionQuery | None = None
    temporal: TemporalQuery | None = None
    oscillation: OscillationPatternQuery | None = None
    filters: QueryFilters = Field(default_factory=QueryFilters)
    limit: int = Field(default=10, ge=1, le=1000)

    @property
    def sub_queries(self) -> list[BaseModel]:
        parts = [
            self.semantic,
            self.structural,
            self.domain_intersection,
            self.temporal,
            self.oscillation,
        ]
        return [q for q in parts if q is not None]


CAMQuery = Annotated[
    Union[
        SemanticQuery,
        StructuralQuery,
        DomainIntersectionQuery,
        TemporalQuery,
        OscillationPatternQuery,
        HybridQuery,
    ],
    Field(discriminator="mode"),
]


class QueryMetadata(BaseModel):
    mode: str = ""
    query_time_ms: float = 0.0
    total_results: int = 0
    returned_results: int = 0
    confidence_range: tuple[float, float] = (0.0, 0.0)
    cached: bool = False
    timed_out: bool = False
    error: str | None = None


class CAMQueryResult(BaseModel):
    insights: list[Insight] = Field(default_factory=list)
    hyperedges: list[Hyperedge] = Field(default_factory=list)
    # Similarity per insight id, for results that came through the vector index
    scores: dict[str, float] = Field(default_factory=dict)
    metadata: QueryMetadata = Field(default_factory=QueryMetadata)

    @property
    def insight_ids(self) -> list[str]:
        return [i.id for i in self.insights]
