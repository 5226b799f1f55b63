"""FastAPI API routes for the regulatory ingestion service.

Provides REST endpoints for document ingestion, source lookup and health
checks.  Service dependencies are resolved from ``app.state`` via
FastAPI's ``Depends`` using the ``Annotated`` pattern.

# ─── API ROUTE MAP ────────────────────────────────────────────────────
#
# Endpoint                     Method  Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/ingest               POST    Ingest a PDF / URL / raw text (full or batch)
# /api/v1/sources/{source_id}  GET     Source summary with chunk count
# /api/v1/health               GET     Health check + circuit breaker states
#
# DEPENDENCY INJECTION PATTERN:
# Each route declares its dependencies as type-annotated params.  FastAPI
# resolves these via Depends() helpers that read from app.state
# (populated at startup in main.py's _build_all).
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from src.api.schemas import (
    ErrorResponse,
    HealthResponse,
    IngestRequest,
    IngestResponse,
    SourceResponse,
)
from src.resilience.circuit_breaker import CircuitBreakerRegistry
from src.services.ingestion.ingestion_service import IngestionService
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# All routes in this file are prefixed with /api/v1.
router = APIRouter(prefix="/api/v1")

_VERSION = "0.1.0"


def _get_ingestion_service(request: Request) -> IngestionService:
    """Retrieve the ingestion service from app state."""
    return request.app.state.ingestion_service


def _get_circuit_breakers(request: Request) -> CircuitBreakerRegistry:
    """Retrieve the shared circuit breaker registry from app state."""
    return request.app.state.circuit_breakers


IngestionServiceDep = Annotated[IngestionService, Depends(_get_ingestion_service)]
CircuitBreakersDep = Annotated[CircuitBreakerRegistry, Depends(_get_circuit_breakers)]


@router.post(
    "/ingest",
    response_model=IngestResponse,
    responses={
        400: {"model": ErrorResponse},
        429: {"description": "Rate limit exceeded"},
        500: {"model": ErrorResponse},
    },
    summary="Ingest a regulatory document",
)
async def ingest_document(
    body: IngestRequest,
    service: IngestionServiceDep,
) -> IngestResponse:
    """Extract, chunk and store a document, or one page batch of it.

    Validation failures surface as 400 and dependency failures as 500
    through :class:`~src.api.middleware.ErrorHandlingMiddleware`.
    """
    result = await service.ingest(body.to_domain())
    return IngestResponse.from_result(result)


@router.get(
    "/sources/{source_id}",
    response_model=SourceResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a stored source",
)
async def get_source(source_id: int, service: IngestionServiceDep) -> SourceResponse:
    """Return the source's metadata and current chunk count."""
    source = await service.get_source_summary(source_id)
    if source is None:
        raise HTTPException(status_code=404, detail=f"Source {source_id} not found")
    return SourceResponse.from_source(source)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request, breakers: CircuitBreakersDep) -> HealthResponse:
    """Return health, provider availability and every circuit's state.

    ``degraded`` means an open circuit or a missing optional provider
    (embeddings); ``unhealthy`` means extraction is not configured.
    """
    providers: dict[str, Any] = dict(getattr(request.app.state, "provider_registry", {}))
    circuits = breakers.snapshot()

    if not providers.get("extraction", False):
        status = "unhealthy"
    elif any(c["state"] != "closed" for c in circuits.values()) or not providers.get(
        "embeddings", False
    ):
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(
        status=status,
        version=_VERSION,
        providers=providers,
        circuits=circuits,
    )
