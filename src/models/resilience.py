"""Data models for the resilience layer.

Retry policy and outcome, circuit breaker state, and rate-limit entries.
Configs and events are frozen Pydantic models; :class:`CircuitStats` and
:class:`RateLimitEntry` are mutable because their owners update them in
place on every call.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------
class RetryConfig(BaseModel):
    """Retry policy for one outbound dependency.

    A response whose status is in ``retryable_statuses``, or an exception
    whose message contains one of ``retryable_errors`` (case-insensitive),
    triggers another attempt.  Timeouts are always retryable.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)
    retryable_statuses: list[int] = Field(default_factory=lambda: [429, 500, 502, 503, 504])
    retryable_errors: list[str] = Field(
        default_factory=lambda: [
            "ECONNRESET",
            "ETIMEDOUT",
            "ENOTFOUND",
            "socket hang up",
            "network",
            "timeout",
            "aborted",
        ]
    )
    timeout_ms: int = Field(default=60000, gt=0)

    def merged(self, **overrides: Any) -> RetryConfig:
        """Return a copy with per-call overrides applied (``None`` values ignored)."""
        update = {k: v for k, v in overrides.items() if v is not None}
        return self.model_copy(update=update)


class RetryEvent(BaseModel):
    """Emitted to the caller's observer before each backoff sleep."""

    model_config = ConfigDict(frozen=True)

    target: str = ""
    attempt: int = Field(ge=0, description="Zero-based attempt that just failed.")
    delay_ms: float = Field(ge=0.0)
    elapsed_ms: float = Field(ge=0.0)
    status_code: int | None = None
    error: str | None = None


class RetryResult(BaseModel):
    """Outcome of :func:`~src.resilience.retry.with_retry`."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    success: bool
    data: Any = None
    error: str | None = None
    attempts: int = Field(default=0, ge=0)
    last_error: BaseException | None = None
    total_duration_ms: float = Field(default=0.0, ge=0.0)
    delays_ms: list[float] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------
class CircuitState(str, Enum):
    """States of a per-dependency circuit."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerConfig(BaseModel):
    """Thresholds for a circuit breaker."""

    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_ms: int = Field(default=30000, ge=0)
    half_open_max_calls: int = Field(default=3, ge=1)


class CircuitStats(BaseModel):
    """Mutable per-dependency counters owned by the circuit breaker registry."""

    failures: int = 0
    successes: int = 0
    last_failure: float | None = Field(default=None, description="Clock reading of the last failure.")
    state: CircuitState = CircuitState.CLOSED
    half_open_calls: int = Field(default=0, description="Trial calls admitted since entering half-open.")


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------
class RateLimitConfig(BaseModel):
    """Fixed-window limit plus a longer penalty block for abusive clients."""

    model_config = ConfigDict(frozen=True)

    max_requests: int = Field(default=30, ge=1)
    window_ms: int = Field(default=60000, gt=0)
    block_duration_ms: int = Field(default=300000, ge=0)


class RateLimitEntry(BaseModel):
    """Per-client window state; all timestamps are epoch milliseconds."""

    client_id: str
    request_count: int = 0
    window_start: int = 0
    blocked_until: int | None = None


class RateLimitResult(BaseModel):
    """Decision returned by the rate limiter."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    remaining: int = Field(ge=0)
    reset_at: int = Field(description="Epoch milliseconds when the client may try again.")
