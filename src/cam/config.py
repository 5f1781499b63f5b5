"""Configuration via environment variables with Pydantic Settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """CAM configuration loaded from environment variables."""

    model_config = {"env_prefix": "CAM_"}

    # Server
    host: str = "0.0.0.0"
    port: int = 8200
    log_level: str = "info"

    # Service API key for the REST surface (empty = no auth, for local dev)
    api_key: str = ""

    # Identity of this instance, recorded as provenance on everything it writes
    instance_id: str = "cam-local"

    # ChromaDB vector index
    chroma_mode: Literal["embedded", "http"] = "embedded"
    chroma_host: str = "cam-chromadb"
    chroma_port: int = 8000
    chroma_collection: str = "cam_insights_vectors"

    # Embedding
    embedding_model: str = "BAAI/bge-base-en-v1.5"
    # Expected vector width (0 = accept whatever the embedder produces)
    embedding_dimension: int = 0

    # Data directories
    data_dir: Path = Path("./data")
    kuzu_dir: Path = Path("./data/kuzu")
    audit_dir: Path = Path("./data/audit")

    # LLM summarizer (empty key = extraction and model re-evaluation disabled)
    llm_api_key: str = ""
    llm_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens: int = 2048
    llm_temperature: float = 0.0

    # Extraction
    extraction_min_confidence: float = 0.5
    extraction_max_candidates: int = 3
    initial_confidence: float = 0.3
    dedup_threshold: float = 0.9
    association_min_score: float = 0.7
    association_limit: int = 5

    # Lifecycle thresholds (confidence → stage)
    established_threshold: float = 0.75
    validated_threshold: float = 0.5
    emerging_threshold: float = 0.3

    # Consensus gate (distinct observing instances)
    consensus_validated_instances: int = 2
    consensus_established_instances: int = 5

    # Decay half-lives (days)
    half_life_established: float = 180.0
    half_life_validated: float = 90.0
    half_life_emerging: float = 30.0
    half_life_deprecated: float = 7.0

    # Revalidation floors for decayed confidence
    revalidation_floor_emerging: float = 0.4
    revalidation_floor_validated: float = 0.6
    revalidation_floor_established: float = 0.7

    # Validation engine
    validation_batch_size: int = 100
    validation_interval_seconds: float = 3600.0
    consensus_growth_threshold: float = 0.2
    contradiction_strength_threshold: float = 0.5
    model_review_min_confidence: float = 0.7
    confirm_factor: float = 1.1
    weaken_factor: float = 0.9

    # Query engine
    min_semantic_score: float = 0.7
    semantic_overfetch: int = 3
    query_timeout_seconds: float = 0.1
    query_workers: int = 4
    query_cache_ttl_seconds: float = 30.0
    query_cache_max_entries: int = 512

    def ensure_dirs(self) -> None:
        """Create data directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        # Kuzu manages its own directory - only ensure parent exists
        self.kuzu_dir.parent.mkdir(parents=True, exist_ok=True)
        self.audit_dir.mkdir(parents=True, exist_ok=True)

    @property
    def chroma_dir(self) -> Path:
        """Directory used by the embedded ChromaDB client."""
        return self.data_dir / "chromadb"


# Singleton
settings = Settings()
