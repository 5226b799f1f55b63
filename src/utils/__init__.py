"""Utility modules for the regulatory ingestion service.

- **errors** -- Domain exception hierarchy rooted at RegDocError; each
  pipeline stage raises its own subclass so callers can handle failures
  granularly.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
"""

# -- Domain exception hierarchy --------------------------------------------
from src.utils.errors import (
    CircuitOpenError,
    ConfigurationError,
    EmbeddingError,
    ExtractionError,
    PipelineError,
    ProviderUnavailableError,
    RateLimitError,
    RegDocError,
    StorageError,
    ValidationError,
)

# -- Structured logging setup ----------------------------------------------
from src.utils.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    get_logger,
)

__all__ = [
    "CircuitOpenError",
    "ConfigurationError",
    "EmbeddingError",
    "ExtractionError",
    "PipelineError",
    "ProviderUnavailableError",
    "RateLimitError",
    "RegDocError",
    "StorageError",
    "ValidationError",
    "bind_request_context",
    "clear_request_context",
    "configure_logging",
    "get_logger",
]
