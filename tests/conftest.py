"""Shared test fixtures."""

import hashlib
import math
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from cam.config import Settings
from cam.memory.insight_store import InsightStore
from cam.memory.vector_store import ChromaVectorIndex
from cam.models.insight import Domain, Insight

DIM = 64
T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def similar_vector(similarity: float, dim: int = DIM) -> list[float]:
    """Unit vector whose cosine similarity with axis_vector() is ``similarity``."""
    vec = [0.0] * dim
    vec[0] = similarity
    vec[1] = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return vec


def axis_vector(dim: int = DIM) -> list[float]:
    return similar_vector(1.0, dim)


class FakeEmbedder:
    """Deterministic embeddings: registered vectors, else a hash of the text."""

    def __init__(self, dim: int = DIM) -> None:
        self.dim = dim
        self.vectors: dict[str, list[float]] = {}
        self.calls: list[list[str]] = []
        self.fail = False

    def register(self, text: str, vector: list[float]) -> None:
        self.vectors[text] = vector

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        from cam.errors import EmbeddingError

        if self.fail:
            raise EmbeddingError("embedder offline")
        self.calls.append(list(texts))
        return [self.vectors.get(t) or self._hashed(t) for t in texts]

    def _hashed(self, text: str) -> list[float]:
        values = []
        counter = 0
        while len(values) < self.dim:
            digest = hashlib.sha256(f"{text}:{counter}".encode()).digest()
            values.extend((b - 127.5) / 127.5 for b in digest)
            counter += 1
        values = values[: self.dim]
        norm = math.sqrt(sum(v * v for v in values))
        return [v / norm for v in values]


class FakeSummarizer:
    """Returns queued responses in order; the last one repeats."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    def complete(self, prompt: str, system: str | None = None) -> str:
        self.prompts.append(prompt)
        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def tmp_data_dir(tmp_path):
    """Create a temporary data directory."""
    (tmp_path / "chromadb").mkdir()
    # Don't create kuzu dir - Kuzu manages it
    (tmp_path / "audit").mkdir()
    return tmp_path


@pytest.fixture
def test_settings(tmp_data_dir):
    """Create settings pointing to temp directories."""
    return Settings(
        chroma_mode="embedded",
        chroma_collection=f"test_{uuid4().hex[:8]}",
        data_dir=tmp_data_dir,
        kuzu_dir=tmp_data_dir / "kuzu",
        audit_dir=tmp_data_dir / "audit",
        api_key="",
        llm_api_key="",
        instance_id="cam-test",
        # Embedded stores on CI can be slower than the production budget
        query_timeout_seconds=10.0,
    )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store(tmp_data_dir):
    gs = InsightStore(tmp_data_dir / "kuzu")
    yield gs
    gs.close()


@pytest.fixture
def index(tmp_data_dir):
    return ChromaVectorIndex(
        mode="embedded",
        persist_dir=str(tmp_data_dir / "chromadb"),
        collection=f"test_{uuid4().hex[:8]}",
    )


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def make_insight():
    """Factory for insights with sensible defaults."""

    def _make(content: str = "Caching trades memory for latency", **overrides) -> Insight:
        fields = {
            "content": content,
            "primary_domain": Domain.COMPUTATIONAL,
            "source_instance_id": "instance-a",
            "created_at": T0,
            "last_validated": T0,
        }
        fields.update(overrides)
        return Insight(**fields)

    return _make
