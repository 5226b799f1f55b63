"""Regulatory ingestion service FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``.env`` and ``config/config.yaml``, configures
structured logging, and installs the rate-limit, logging and error-handling
middleware.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router as api_router
from src.config.loader import load_config
from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.models.resilience import CircuitBreakerConfig, RateLimitConfig
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.providers.extraction.anthropic_extraction_provider import AnthropicExtractionProvider
from src.providers.store.sqlite_metadata_store import SQLiteMetadataStore
from src.providers.store.sqlite_rate_limit_store import SQLiteRateLimitStore
from src.resilience.circuit_breaker import CircuitBreakerRegistry
from src.resilience.rate_limiter import DistributedRateLimiter
from src.resilience.retry import ResilientCaller, load_retry_presets
from src.services.codes.detector import CodeDetector
from src.services.ingestion.chunker import TextChunker
from src.services.ingestion.ingestion_service import IngestionService
from src.services.ingestion.pdf_splitter import PdfSplitter
from src.utils.logging import configure_logging, get_logger

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()
config = load_config(settings=settings)

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider | None:
    """Return the OpenAI embedding provider, or ``None`` without an API key.

    Without embeddings chunks are stored with a null vector.
    """
    provider = OpenAIEmbeddingProvider(settings=app_settings)
    if provider.is_available():
        return provider
    _logger.warning("embeddings_disabled", reason="OPENAI_API_KEY not configured")
    return None


def _build_rate_limiter(
    store: SQLiteRateLimitStore, app_config: dict[str, Any]
) -> DistributedRateLimiter:
    """Shared SQLite-backed limiter; falls back to in-memory counters on store errors."""
    rl_config = RateLimitConfig(
        **{k: v for k, v in app_config.get("rate_limit", {}).items() if k != "enabled"}
    )
    return DistributedRateLimiter(
        store=store,
        default_config=rl_config,
    )


# ---------------------------------------------------------------------------
# Full DI assembly for the FastAPI application
# ---------------------------------------------------------------------------


def _build_all(app_settings: Settings, app_config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Construct every provider and service instance for the application.

    Returns a flat dict of named components to be stored on ``app.state``.
    """
    app_config = app_config if app_config is not None else config
    presets = load_retry_presets(app_config)
    ingestion_cfg = app_config.get("ingestion", {})

    # -- Shared resources --
    http_client = httpx.AsyncClient(timeout=30.0)
    caller = ResilientCaller(client=http_client)
    circuit_breakers = CircuitBreakerRegistry(
        default_config=CircuitBreakerConfig(**app_config.get("circuit_breaker", {}))
    )

    # -- External providers --
    extraction_provider = AnthropicExtractionProvider(
        settings=app_settings,
        retry_config=presets["extraction"],
        small_document_bytes=ingestion_cfg.get("small_document_bytes", 200 * 1024),
        small_document_timeout_ms=ingestion_cfg.get("small_document_timeout_ms", 55000),
        invocation_timeout_ms=ingestion_cfg.get(
            "invocation_timeout_ms", app_settings.invocation_timeout_ms
        ),
    )
    embedding_provider = _build_embedding_provider(app_settings)
    metadata_store = SQLiteMetadataStore(db_path=app_settings.metadata_db_path)

    # -- Pipeline helpers --
    chunker = TextChunker(**app_config.get("chunking", {}))
    splitter = PdfSplitter(max_size_bytes=app_settings.max_pdf_size_mb * 1024 * 1024)

    ingestion_service = IngestionService(
        extraction_provider=extraction_provider,
        embedding_provider=embedding_provider,
        metadata_store=metadata_store,
        chunker=chunker,
        detector=CodeDetector(),
        splitter=splitter,
        caller=caller,
        circuit_breakers=circuit_breakers,
        pages_per_batch=app_settings.pages_per_batch,
        store_retry=presets["metadata_store"],
        embedding_retry=presets["embeddings"],
        invocation_timeout_ms=ingestion_cfg.get(
            "invocation_timeout_ms", app_settings.invocation_timeout_ms
        ),
    )

    provider_registry: dict[str, Any] = {
        "extraction": extraction_provider.is_available(),
        "embeddings": embedding_provider is not None,
        "metadata_store": metadata_store.get_provider_name(),
    }

    return {
        "http_client": http_client,
        "circuit_breakers": circuit_breakers,
        "metadata_store": metadata_store,
        "ingestion_service": ingestion_service,
        "provider_registry": provider_registry,
    }


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Initialise all providers and services on startup, clean up on shutdown."""
    components = _build_all(settings)

    for key, value in components.items():
        setattr(application.state, key, value)

    # Create tables if needed.
    await application.state.metadata_store.initialize()
    rate_limit_store = getattr(application.state, "rate_limit_store", None)
    if rate_limit_store is not None:
        await rate_limit_store.initialize()

    _logger.info(
        "app_startup",
        version=_VERSION,
        environment=settings.app_env,
        providers=components["provider_registry"],
        pages_per_batch=settings.pages_per_batch,
    )

    yield

    # -- Shutdown: close shared httpx client --
    http_client: httpx.AsyncClient = components["http_client"]
    await http_client.aclose()
    _logger.info("app_shutdown", message="HTTP client closed")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="Regulatory Ingestion API",
        version=_VERSION,
        description=(
            "Ingest regulatory PDFs (customs circulars, decrees, notes) into a "
            "citation-safe knowledge base: page-batched extraction, chunking, "
            "classification-code evidence and resilient external calls."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    if settings.rate_limit_enabled:
        rate_limit_store = SQLiteRateLimitStore(db_path=settings.rate_limit_db_path)
        application.state.rate_limit_store = rate_limit_store
        application.add_middleware(
            RateLimitMiddleware, limiter=_build_rate_limiter(rate_limit_store, config)
        )
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
