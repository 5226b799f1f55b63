"""Custom exception hierarchy for the regulatory ingestion service.

All application exceptions inherit from :class:`RegDocError`, which carries
an optional ``provider_name`` so handlers can tell which external service
(e.g. "anthropic", "openai", "sqlite") caused the failure.

The hierarchy follows the error taxonomy of the ingestion pipeline:

    RegDocError  (base -- catch-all for any application error)
    +-- ValidationError          (bad request fields / page ranges -> HTTP 400)
    +-- ExtractionError          (document-text extraction service)
    +-- EmbeddingError           (embedding service, degraded per chunk)
    +-- StorageError             (metadata store reads / writes)
    +-- ProviderUnavailableError (external service down / unreachable)
    +-- RateLimitError           (client exceeded its window + block)
    +-- CircuitOpenError         (dependency circuit is open)
    +-- PipelineError            (orchestration failures)
    +-- ConfigurationError       (startup / missing config)

Transient failures are retried by :mod:`src.resilience.retry`; exhaustion
conditions (``CircuitOpenError``, ``RateLimitError``) are surfaced to the
caller rather than retried internally.
"""


class RegDocError(Exception):
    """Base exception for all ingestion-service errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name``.  ``__str__`` prefixes the provider in brackets for
    log scanning, e.g. ``[anthropic] Extraction service returned 529``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------

class ValidationError(RegDocError):
    """Raised when an ingestion request is missing fields or is out of bounds.

    Validation failures are never coerced: codes that fail strict-width
    normalization and invalid page ranges are rejected with a descriptive
    message.
    """

    def __init__(
        self,
        message: str = "Invalid request",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Pipeline stage errors
# ---------------------------------------------------------------------------

class ExtractionError(RegDocError):
    """Raised when the document-text extraction service fails or is unusable."""

    def __init__(
        self,
        message: str = "Document text extraction failed",
        provider_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._status_code = status_code

    @property
    def status_code(self) -> int | None:
        return self._status_code


class EmbeddingError(RegDocError):
    """Raised when an embedding API call fails.

    The ingestion pipeline catches this per chunk and stores a null
    embedding instead of aborting.
    """

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._status_code = status_code

    @property
    def status_code(self) -> int | None:
        return self._status_code


class StorageError(RegDocError):
    """Raised when the metadata store rejects a read or write."""

    def __init__(
        self,
        message: str = "Metadata store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service / exhaustion errors
# ---------------------------------------------------------------------------

class ProviderUnavailableError(RegDocError):
    """Raised when an external service is unreachable or not configured."""

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(RegDocError):
    """Raised when a client exceeds its rate-limit window and block allowance."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._retry_after = retry_after

    @property
    def retry_after(self) -> int | None:
        """Seconds until the client may retry, when known."""
        return self._retry_after


class CircuitOpenError(RegDocError):
    """Raised when a call is rejected because the dependency's circuit is open.

    The wrapped function is never invoked; callers should fail fast or
    degrade rather than retry immediately.
    """

    def __init__(
        self,
        circuit_name: str,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message=message or f"Circuit breaker is open for {circuit_name}",
            provider_name=circuit_name,
        )
        self._circuit_name = circuit_name

    @property
    def circuit_name(self) -> str:
        return self._circuit_name


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class PipelineError(RegDocError):
    """Raised when ingestion orchestration fails."""

    def __init__(
        self,
        message: str = "Ingestion pipeline failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(RegDocError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
