"""Tests for the REST server."""

from datetime import datetime, timezone
from typing import Any

import httpx
import pytest

from cam.config import Settings
from cam.errors import InsightNotFound
from cam.memory.validation import ValidationCycleReport
from cam.models.extraction import ExtractionInput
from cam.models.hyperedge import Hyperedge
from cam.models.insight import Domain, Insight
from cam.models.query import CAMQuery, CAMQueryResult, QueryMetadata
from cam.rest_server import create_app


class _FakeBroker:
    def __init__(self) -> None:
        self.insights: dict[str, Insight] = {}
        self.queued: list[ExtractionInput] = []
        self.queries: list[CAMQuery] = []
        self.edges: list[Hyperedge] = []

    def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", "vector_store": True, "insight_store": True}

    def query(self, q: CAMQuery, timeout: float | None = None) -> CAMQueryResult:
        self.queries.append(q)
        insights = list(self.insights.values())
        return CAMQueryResult(
            insights=insights,
            scores={i.id: 0.9 for i in insights},
            metadata=QueryMetadata(mode=q.mode, total_results=len(insights), returned_results=len(insights)),
        )

    def extract(self, ctx: ExtractionInput) -> None:
        self.queued.append(ctx)

    def extract_sync(self, ctx: ExtractionInput) -> list[Insight]:
        insight = Insight(
            content=f"Learned from: {ctx.user_text}",
            primary_domain=Domain.COMPUTATIONAL,
            source_instance_id=ctx.source_instance_id,
        )
        self.insights[insight.id] = insight
        return [insight]

    def get_insight(self, insight_id: str) -> Insight:
        if insight_id not in self.insights:
            raise InsightNotFound(insight_id)
        return self.insights[insight_id]

    def insert_hyperedge(self, edge: Hyperedge) -> Hyperedge:
        for insight_id in edge.insight_ids:
            self.get_insight(insight_id)
        self.edges.append(edge)
        return edge

    def run_validation_cycle(self) -> ValidationCycleReport:
        return ValidationCycleReport(
            started_at=datetime(2025, 6, 1, tzinfo=timezone.utc),
            processed=2,
            weakened=2,
        )

    def get_stats(self) -> dict[str, Any]:
        return {"total_insights": len(self.insights), "total_hyperedges": len(self.edges)}


def _make_app(api_key: str = "", broker: _FakeBroker | None = None):
    settings = Settings(api_key=api_key, instance_id="cam-rest")
    return create_app(broker=broker or _FakeBroker(), config=settings)


def _client(app) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://testserver")


@pytest.mark.asyncio
async def test_rest_health_and_openapi():
    """Health and OpenAPI endpoints are available."""
    async with _client(_make_app()) as client:
        health = await client.get("/health")
        assert health.status_code == 200
        assert health.json()["status"] == "healthy"

        openapi = await client.get("/openapi.json")
        assert openapi.status_code == 200
        body = openapi.json()
        assert body["openapi"] == "3.1.0"
        assert "/api/v1/query" in body["paths"]
        assert "/api/v1/admin/validation/run" in body["paths"]


@pytest.mark.asyncio
async def test_rest_auth_guard():
    """API endpoints require a bearer token when an API key is configured."""
    async with _client(_make_app(api_key="secret-token")) as client:
        unauthorized = await client.post("/api/v1/query", json={"mode": "semantic", "query_text": "x"})
        assert unauthorized.status_code == 401

        wrong = await client.get(
            "/api/v1/admin/stats",
            headers={"Authorization": "Bearer nope"},
        )
        assert wrong.status_code == 401

        authorized = await client.get(
            "/api/v1/admin/stats",
            headers={"Authorization": "Bearer secret-token"},
        )
        assert authorized.status_code == 200

        # health stays open without a token
        assert (await client.get("/health")).status_code == 200


@pytest.mark.asyncio
async def test_rest_extract_and_query_roundtrip():
    broker = _FakeBroker()
    async with _client(_make_app(broker=broker)) as client:
        extracted = await client.post(
            "/api/v1/extract",
            params={"wait": "true"},
            json={"user_text": "caching", "source_instance_id": "instance-a"},
        )
        assert extracted.status_code == 200
        body = extracted.json()
        assert body["status"] == "completed"
        assert body["insights"][0]["primary_domain"] == "CD"

        result = await client.post(
            "/api/v1/query",
            json={"mode": "domain_intersection", "domains": ["CD"]},
        )
        assert result.status_code == 200
        payload = result.json()
        assert payload["metadata"]["mode"] == "domain_intersection"
        assert payload["insights"][0]["content"] == "Learned from: caching"
        assert broker.queries[0].mode == "domain_intersection"


@pytest.mark.asyncio
async def test_rest_extract_is_queued_by_default():
    broker = _FakeBroker()
    async with _client(_make_app(broker=broker)) as client:
        resp = await client.post(
            "/api/v1/extract",
            json={"user_text": "later", "source_instance_id": "instance-b"},
        )
        assert resp.status_code == 202
        assert resp.json() == {"status": "queued"}
        assert broker.queued[0].source_instance_id == "instance-b"

        missing_field = await client.post("/api/v1/extract", json={"user_text": "no source"})
        assert missing_field.status_code == 422


@pytest.mark.asyncio
async def test_rest_query_validation():
    async with _client(_make_app()) as client:
        unknown_mode = await client.post("/api/v1/query", json={"mode": "telepathic"})
        assert unknown_mode.status_code == 422

        empty_text = await client.post("/api/v1/query", json={"mode": "semantic", "query_text": ""})
        assert empty_text.status_code == 422

        not_an_object = await client.post("/api/v1/query", json=["semantic"])
        assert not_an_object.status_code == 422

        inverted_window = await client.post("/api/v1/query", json={
            "mode": "temporal",
            "time_range": {
                "preset": "custom",
                "start": "2025-03-01T00:00:00",
                "end": "2025-02-01T00:00:00Z",
            },
        })
        assert inverted_window.status_code == 422

        mixed_window = await client.post("/api/v1/query", json={
            "mode": "temporal",
            "time_range": {
                "preset": "custom",
                "start": "2025-01-01T00:00:00Z",
                "end": "2025-02-01T00:00:00",
            },
        })
        assert mixed_window.status_code == 200


@pytest.mark.asyncio
async def test_rest_get_insight():
    broker = _FakeBroker()
    [insight] = broker.extract_sync(ExtractionInput(user_text="x", source_instance_id="instance-a"))
    async with _client(_make_app(broker=broker)) as client:
        found = await client.get(f"/api/v1/insights/{insight.id}")
        assert found.status_code == 200
        body = found.json()
        assert body["id"] == insight.id
        assert 0.0 <= body["decayed_confidence"] <= body["confidence"]

        missing = await client.get("/api/v1/insights/ghost")
        assert missing.status_code == 404


@pytest.mark.asyncio
async def test_rest_create_hyperedge():
    broker = _FakeBroker()
    a = broker.extract_sync(ExtractionInput(user_text="a", source_instance_id="i"))[0]
    b = broker.extract_sync(ExtractionInput(user_text="b", source_instance_id="i"))[0]
    async with _client(_make_app(broker=broker)) as client:
        created = await client.post(
            "/api/v1/hyperedges",
            json={"insight_ids": [a.id, b.id], "relationship_type": "Analogy", "strength": 0.7},
        )
        assert created.status_code == 200
        assert created.json()["relationship_type"] == "Analogy"
        assert broker.edges[0].discovered_by == "cam-rest"

        single = await client.post(
            "/api/v1/hyperedges",
            json={"insight_ids": [a.id], "relationship_type": "Analogy"},
        )
        assert single.status_code == 422

        bad_type = await client.post(
            "/api/v1/hyperedges",
            json={"insight_ids": [a.id, b.id], "relationship_type": "Friendship"},
        )
        assert bad_type.status_code == 422

        unknown = await client.post(
            "/api/v1/hyperedges",
            json={"insight_ids": [a.id, "ghost"], "relationship_type": "Causation"},
        )
        assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_rest_admin_endpoints():
    async with _client(_make_app()) as client:
        report = await client.post("/api/v1/admin/validation/run")
        assert report.status_code == 200
        body = report.json()
        assert body["processed"] == 2
        assert body["weakened"] == 2
        assert body["started_at"].startswith("2025-06-01")

        stats = await client.get("/api/v1/admin/stats")
        assert stats.status_code == 200
        assert stats.json() == {"total_insights": 0, "total_hyperedges": 0}
