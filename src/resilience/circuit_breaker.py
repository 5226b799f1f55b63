"""Per-dependency circuit breaker.

State machine per named dependency::

    closed --(failures >= threshold)--> open
    open --(reset timeout elapsed since last failure)--> half_open
    half_open --(successes >= half_open_max_calls)--> closed
    half_open --(any failure)--> open

Each success while closed decays the failure counter by one (never below
zero), so transient blips heal without a full reset.  Calls while open are
rejected without invoking the wrapped function.

State lives in a :class:`CircuitBreakerRegistry` built once per process
and passed to the components that need it, rather than in a module-level
map.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from src.models.resilience import CircuitBreakerConfig, CircuitState, CircuitStats
from src.utils.errors import CircuitOpenError

logger = structlog.get_logger(logger_name=__name__)

T = TypeVar("T")


class CircuitBreakerRegistry:
    """Owns the circuit state of every named dependency in this process.

    Parameters
    ----------
    default_config:
        Thresholds used when a call does not pass its own config.
    clock:
        Monotonic clock in seconds; injectable for tests.
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._circuits: dict[str, CircuitStats] = {}
        self._configs: dict[str, CircuitBreakerConfig] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def can_call(self, name: str, config: CircuitBreakerConfig | None = None) -> bool:
        """Return ``True`` if a call to *name* may proceed right now.

        An open circuit whose reset timeout has elapsed moves to half-open
        and admits the call as a trial.  Half-open admits at most
        ``half_open_max_calls`` trial calls.
        """
        cfg = self._config_for(name, config)
        stats = self._stats(name)

        if stats.state == CircuitState.CLOSED:
            return True

        if stats.state == CircuitState.OPEN:
            elapsed_ms = (self._clock() - (stats.last_failure or 0.0)) * 1000
            if elapsed_ms <= cfg.reset_timeout_ms:
                return False
            stats.state = CircuitState.HALF_OPEN
            stats.successes = 0
            stats.half_open_calls = 0
            logger.info("circuit_half_open", circuit=name, elapsed_ms=round(elapsed_ms))

        if stats.half_open_calls >= cfg.half_open_max_calls:
            return False
        stats.half_open_calls += 1
        return True

    def record_success(self, name: str) -> None:
        """Record a successful call to *name*."""
        cfg = self._config_for(name, None)
        stats = self._stats(name)

        if stats.state == CircuitState.HALF_OPEN:
            stats.successes += 1
            if stats.successes >= cfg.half_open_max_calls:
                stats.state = CircuitState.CLOSED
                stats.failures = 0
                stats.half_open_calls = 0
                logger.info("circuit_closed", circuit=name)
        elif stats.state == CircuitState.CLOSED:
            stats.failures = max(0, stats.failures - 1)

    def record_failure(self, name: str) -> None:
        """Record a failed call to *name*, opening the circuit when warranted."""
        cfg = self._config_for(name, None)
        stats = self._stats(name)
        stats.failures += 1
        stats.last_failure = self._clock()

        if stats.state == CircuitState.HALF_OPEN:
            stats.state = CircuitState.OPEN
            stats.half_open_calls = 0
            logger.warning("circuit_reopened", circuit=name, failures=stats.failures)
        elif stats.state == CircuitState.CLOSED and stats.failures >= cfg.failure_threshold:
            stats.state = CircuitState.OPEN
            logger.warning(
                "circuit_opened",
                circuit=name,
                failures=stats.failures,
                threshold=cfg.failure_threshold,
            )

    async def wrap(
        self,
        name: str,
        fn: Callable[[], Awaitable[T]],
        config: CircuitBreakerConfig | None = None,
    ) -> T:
        """Invoke *fn* under the circuit for *name*.

        Raises
        ------
        CircuitOpenError
            If the circuit is open; *fn* is not invoked.
        """
        if not self.can_call(name, config):
            raise CircuitOpenError(circuit_name=name)
        try:
            result = await fn()
        except Exception:
            self.record_failure(name)
            raise
        self.record_success(name)
        return result

    def get_state(self, name: str) -> CircuitStats | None:
        """Return a copy of the stats for *name*, or ``None`` if never used."""
        stats = self._circuits.get(name)
        return stats.model_copy() if stats is not None else None

    def reset(self, name: str) -> None:
        """Forget all state for *name* (it starts closed on next use)."""
        self._circuits.pop(name, None)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Return a JSON-friendly view of every known circuit."""
        return {
            name: {
                "state": stats.state.value,
                "failures": stats.failures,
                "successes": stats.successes,
            }
            for name, stats in self._circuits.items()
        }

    def configure(self, name: str, config: CircuitBreakerConfig) -> None:
        """Pin *config* as the thresholds for *name*."""
        self._configs[name] = config

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _stats(self, name: str) -> CircuitStats:
        stats = self._circuits.get(name)
        if stats is None:
            stats = CircuitStats()
            self._circuits[name] = stats
        return stats

    def _config_for(
        self, name: str, config: CircuitBreakerConfig | None
    ) -> CircuitBreakerConfig:
        if config is not None:
            self._configs[name] = config
            return config
        return self._configs.get(name, self._default_config)
