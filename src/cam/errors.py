"""Exception hierarchy for the collective memory subsystem."""

from __future__ import annotations


class CAMError(Exception):
    """Base class for all CAM errors."""


class EmbeddingError(CAMError):
    """Embedding provider unavailable or returned malformed output."""


class InvalidHyperedge(CAMError):
    """A hyperedge was built with fewer than two member insights."""


class QueryError(CAMError):
    """Malformed query or a failure in the backing stores during a query."""


class ValidationError(CAMError):
    """A judge or summarizer response could not be interpreted."""


class SummarizerError(CAMError):
    """The summarizer backend failed to produce a completion."""


class StoreError(CAMError):
    """Underlying persistence failure."""


class InsightNotFound(CAMError):
    """No insight exists with the requested id."""

    def __init__(self, insight_id: str) -> None:
        super().__init__(f"Insight not found: {insight_id}")
        self.insight_id = insight_id
