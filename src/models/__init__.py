"""Domain models for the regulatory ingestion service, re-exported.

Other parts of the codebase can import directly from ``src.models``
(e.g. ``from src.models import TextChunk``) instead of the submodules.

The models are organized across two submodules by domain concern:
    - legal.py       -- Extracted pages, chunks, detected codes, sources,
                       evidence, and the ingestion request / result
    - resilience.py  -- Retry policy / outcome, circuit breaker state,
                       rate-limit entries and decisions

The ``__all__`` list at the bottom controls what ``from src.models import *``
exports. If you add a new model class, remember to add it here too.
"""

from __future__ import annotations

# --- Regulatory documents: everything that flows through ingestion. ---
from src.models.legal import (
    DetectedCode,
    DocumentMetadata,
    EvidenceRow,
    ExtractedImage,
    ExtractedPage,
    ExtractedTable,
    IngestionRequest,
    IngestionResult,
    LegalSource,
    TextChunk,
)

# --- Resilience: policies and state for outbound calls. ---
from src.models.resilience import (
    CircuitBreakerConfig,
    CircuitState,
    CircuitStats,
    RateLimitConfig,
    RateLimitEntry,
    RateLimitResult,
    RetryConfig,
    RetryEvent,
    RetryResult,
)

__all__ = [
    # Legal
    "DetectedCode",
    "DocumentMetadata",
    "EvidenceRow",
    "ExtractedImage",
    "ExtractedPage",
    "ExtractedTable",
    "IngestionRequest",
    "IngestionResult",
    "LegalSource",
    "TextChunk",
    # Resilience
    "CircuitBreakerConfig",
    "CircuitState",
    "CircuitStats",
    "RateLimitConfig",
    "RateLimitEntry",
    "RateLimitResult",
    "RetryConfig",
    "RetryEvent",
    "RetryResult",
]
