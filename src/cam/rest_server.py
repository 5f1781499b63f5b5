"""REST/OpenAPI server for the collective memory."""

from __future__ import annotations

import logging
from typing import Any

import uvicorn
from pydantic import BaseModel, Field, ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from cam.config import Settings, settings
from cam.errors import InsightNotFound, InvalidHyperedge, QueryError
from cam.memory.broker import CollectiveMemory
from cam.memory.query import parse_query
from cam.models.extraction import ExtractionInput
from cam.models.hyperedge import DiscoveryMethod, Hyperedge, RelationshipType

logger = logging.getLogger(__name__)


class HyperedgeCreateRequest(BaseModel):
    insight_ids: list[str]
    relationship_type: RelationshipType
    strength: float = Field(default=0.5, ge=0.0, le=1.0)
    discovery_method: DiscoveryMethod = DiscoveryMethod.MANUAL_CURATION
    discovered_by: str | None = None
    metadata: dict[str, Any] | None = None


def _build_openapi_schema(base_url: str) -> dict[str, Any]:
    """Build a compact OpenAPI schema for the REST endpoints."""
    components = {
        "ExtractionInput": ExtractionInput.model_json_schema(),
        "HyperedgeCreateRequest": HyperedgeCreateRequest.model_json_schema(),
    }

    def req(name: str) -> dict[str, Any]:
        return {
            "required": True,
            "content": {
                "application/json": {
                    "schema": {"$ref": f"#/components/schemas/{name}"},
                }
            },
        }

    query_body = {
        "required": True,
        "content": {"application/json": {"schema": {
            "type": "object",
            "required": ["mode"],
            "properties": {"mode": {"type": "string", "enum": [
                "semantic", "structural", "domain_intersection",
                "temporal", "oscillation_pattern", "hybrid",
            ]}},
        }}},
    }

    return {
        "openapi": "3.1.0",
        "info": {
            "title": "CAM REST API",
            "version": "0.1.0",
            "description": "Collective associative memory: extract, validate and query shared insights.",
        },
        "servers": [{"url": base_url}],
        "paths": {
            "/health": {"get": {"summary": "Health check", "responses": {"200": {"description": "OK"}}}},
            "/api/v1/query": {"post": {"summary": "Query insights", "requestBody": query_body, "responses": {"200": {"description": "Results"}}}},
            "/api/v1/extract": {"post": {"summary": "Extract insights from an interaction", "requestBody": req("ExtractionInput"), "responses": {"200": {"description": "Created insights"}, "202": {"description": "Queued"}}}},
            "/api/v1/insights/{insight_id}": {"get": {"summary": "Get insight", "responses": {"200": {"description": "Insight"}, "404": {"description": "Not found"}}}},
            "/api/v1/hyperedges": {"post": {"summary": "Create hyperedge", "requestBody": req("HyperedgeCreateRequest"), "responses": {"200": {"description": "Hyperedge"}}}},
            "/api/v1/admin/validation/run": {"post": {"summary": "Run a validation cycle", "responses": {"200": {"description": "Cycle report"}}}},
            "/api/v1/admin/stats": {"get": {"summary": "Get stats", "responses": {"200": {"description": "Stats"}}}},
        },
        "components": {"schemas": components},
    }


def create_app(
    broker: CollectiveMemory | None = None,
    config: Settings | None = None,
) -> Starlette:
    """Create a Starlette app exposing the collective memory as REST + OpenAPI."""
    app_settings = config or settings
    app_broker = broker or CollectiveMemory(app_settings)

    def unauthorized() -> JSONResponse:
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    def error(message: str, status: int = 400) -> JSONResponse:
        return JSONResponse({"error": message}, status_code=status)

    def require_auth(request: Request) -> JSONResponse | None:
        if not app_settings.api_key:
            return None
        auth = request.headers.get("authorization", "")
        expected = f"Bearer {app_settings.api_key}"
        if auth == expected:
            return None
        return unauthorized()

    async def parse_json(request: Request, model: type[BaseModel]) -> BaseModel:
        payload = await request.json()
        return model.model_validate(payload)

    async def health(_: Request) -> JSONResponse:
        return JSONResponse(app_broker.health_check())

    async def openapi(request: Request) -> JSONResponse:
        base_url = str(request.base_url).rstrip("/")
        return JSONResponse(_build_openapi_schema(base_url))

    async def query(request: Request) -> JSONResponse:
        auth = require_auth(request)
        if auth:
            return auth
        try:
            payload = await request.json()
            if not isinstance(payload, dict):
                return error("Query body must be a JSON object", status=422)
            q = parse_query(payload)
        except QueryError as e:
            return error(str(e), status=422)
        except ValueError as e:
            return error(str(e), status=400)
        result = app_broker.query(q)
        return JSONResponse(result.model_dump(mode="json"))

    async def extract(request: Request) -> JSONResponse:
        auth = require_auth(request)
        if auth:
            return auth
        try:
            body = await parse_json(request, ExtractionInput)
        except ValidationError as e:
            return error(str(e), status=422)
        except ValueError as e:
            return error(str(e), status=400)
        if request.query_params.get("wait", "").lower() in ("1", "true", "yes"):
            insights = app_broker.extract_sync(body)
            return JSONResponse({
                "status": "completed",
                "insights": [i.model_dump(mode="json") for i in insights],
            })
        app_broker.extract(body)
        return JSONResponse({"status": "queued"}, status_code=202)

    async def get_insight(request: Request) -> JSONResponse:
        auth = require_auth(request)
        if auth:
            return auth
        insight_id = request.path_params["insight_id"]
        try:
            insight = app_broker.get_insight(insight_id)
        except InsightNotFound as e:
            return error(str(e), status=404)
        payload = insight.model_dump(mode="json")
        payload["decayed_confidence"] = insight.decayed_confidence()
        return JSONResponse(payload)

    async def create_hyperedge(request: Request) -> JSONResponse:
        auth = require_auth(request)
        if auth:
            return auth
        try:
            body = await parse_json(request, HyperedgeCreateRequest)
            edge = app_broker.insert_hyperedge(Hyperedge(
                insight_ids=body.insight_ids,
                relationship_type=body.relationship_type,
                strength=body.strength,
                discovery_method=body.discovery_method,
                discovered_by=body.discovered_by or app_settings.instance_id,
                metadata=body.metadata or {},
            ))
            return JSONResponse(edge.model_dump(mode="json"))
        except ValidationError as e:
            return error(str(e), status=422)
        except InvalidHyperedge as e:
            return error(str(e), status=422)
        except InsightNotFound as e:
            return error(str(e), status=404)
        except ValueError as e:
            return error(str(e), status=400)

    async def run_validation(request: Request) -> JSONResponse:
        auth = require_auth(request)
        if auth:
            return auth
        report = app_broker.run_validation_cycle()
        return JSONResponse(report.to_dict())

    async def get_stats(request: Request) -> JSONResponse:
        auth = require_auth(request)
        if auth:
            return auth
        return JSONResponse(app_broker.get_stats())

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/openapi.json", openapi, methods=["GET"]),
        Route("/api/v1/query", query, methods=["POST"]),
        Route("/api/v1/extract", extract, methods=["POST"]),
        Route("/api/v1/insights/{insight_id}", get_insight, methods=["GET"]),
        Route("/api/v1/hyperedges", create_hyperedge, methods=["POST"]),
        Route("/api/v1/admin/validation/run", run_validation, methods=["POST"]),
        Route("/api/v1/admin/stats", get_stats, methods=["GET"]),
    ]

    return Starlette(debug=False, routes=routes)


def main() -> None:
    """Run the REST server."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting CAM REST API on %s:%s", settings.host, settings.port)
    app = create_app()
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
