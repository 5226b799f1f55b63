"""Bounded retry with exponential backoff, jitter and per-attempt timeouts.

Every outbound call to an unreliable dependency goes through one of two
entry points:

* :class:`ResilientCaller` -- HTTP calls made with a shared
  ``httpx.AsyncClient``.  Retryable statuses are retried, non-retryable
  responses (2xx, and 4xx except 429) are returned immediately, and the
  last response is returned once retries are exhausted.
* :func:`with_retry` -- any async callable (SDK calls, store calls).  The
  outcome is reported as a :class:`~src.models.resilience.RetryResult`
  instead of raising.

Backoff for attempt ``n`` is ``min(initial * 2^n + jitter, max)`` where the
jitter is at most 30% of the exponential term.  A server-supplied
``Retry-After`` wins when it is larger, still capped by ``max_delay_ms``.

Instead of closures, retry notifications are typed
:class:`~src.models.resilience.RetryEvent` objects handed to an optional
observer callable.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import structlog

from src.models.resilience import RetryConfig, RetryEvent, RetryResult

logger = structlog.get_logger(logger_name=__name__)

RetryObserver = Callable[[RetryEvent], None]
Sleeper = Callable[[float], Awaitable[Any]]

_JITTER_RATIO = 0.3

# Headroom kept under an invocation ceiling for parsing and storage.
CEILING_MARGIN_MS = 5000

# ---------------------------------------------------------------------------
# Named presets, one per external dependency
# ---------------------------------------------------------------------------

DEFAULT_RETRY_CONFIG = RetryConfig()

RETRY_PRESETS: dict[str, RetryConfig] = {
    # Document-text extraction (Claude with PDF input).  529 = overloaded.
    "extraction": RetryConfig(
        max_retries=2,
        initial_delay_ms=3000,
        max_delay_ms=20000,
        retryable_statuses=[429, 500, 502, 503, 504, 529],
        timeout_ms=180000,
    ),
    # Chat-style LLM calls.
    "llm": RetryConfig(
        max_retries=3,
        initial_delay_ms=2000,
        max_delay_ms=15000,
        timeout_ms=60000,
    ),
    # Embeddings are best effort: short timeout, few retries.
    "embeddings": RetryConfig(
        max_retries=2,
        initial_delay_ms=500,
        max_delay_ms=5000,
        retryable_errors=["timeout", "aborted", "network"],
        timeout_ms=10000,
    ),
    "metadata_store": RetryConfig(
        max_retries=3,
        initial_delay_ms=100,
        max_delay_ms=2000,
        retryable_statuses=[500, 502, 503, 504],
        retryable_errors=["timeout", "network", "database is locked"],
        timeout_ms=10000,
    ),
}


def get_retry_preset(name: str, **overrides: Any) -> RetryConfig:
    """Return the named preset with per-call overrides applied.

    Unknown names fall back to :data:`DEFAULT_RETRY_CONFIG`.
    """
    base = RETRY_PRESETS.get(name, DEFAULT_RETRY_CONFIG)
    return base.merged(**overrides)


def cap_timeout(
    config: RetryConfig,
    ceiling_ms: int | None,
    margin_ms: int = CEILING_MARGIN_MS,
    per_attempt: bool = True,
) -> RetryConfig:
    """Return *config* with its timeout strictly below an invocation ceiling.

    ``margin_ms`` is left free for the work that follows the call.  With
    ``per_attempt=False`` the budget is shared by every attempt, so each
    one gets ``(ceiling - margin) / (max_retries + 1)``.  A falsy
    *ceiling_ms* leaves the policy unchanged.
    """
    if not ceiling_ms:
        return config
    budget = ceiling_ms - margin_ms if ceiling_ms > 2 * margin_ms else ceiling_ms // 2
    if not per_attempt:
        budget //= config.max_retries + 1
    budget = max(1, budget)
    if config.timeout_ms <= budget:
        return config
    logger.debug("retry_timeout_capped", timeout_ms=config.timeout_ms, capped_ms=budget)
    return config.merged(timeout_ms=budget)


def load_retry_presets(config: dict) -> dict[str, RetryConfig]:
    """Build presets from the ``retry.presets`` section of the YAML config.

    YAML fields override the built-in preset of the same name; unknown
    preset names start from the default policy.
    """
    presets = dict(RETRY_PRESETS)
    for name, fields in (config.get("retry", {}).get("presets", {}) or {}).items():
        base = presets.get(name, DEFAULT_RETRY_CONFIG)
        presets[name] = base.merged(**(fields or {}))
    return presets


# ---------------------------------------------------------------------------
# Backoff / classification helpers
# ---------------------------------------------------------------------------

def compute_backoff(
    attempt: int,
    config: RetryConfig,
    retry_after_s: float | None = None,
    rand: Callable[[], float] = random.random,
) -> float:
    """Return the delay in milliseconds before the attempt after *attempt*.

    Parameters
    ----------
    attempt:
        Zero-based index of the attempt that just failed.
    config:
        Policy supplying initial / max delays.
    retry_after_s:
        Server-supplied ``Retry-After`` in seconds, if any.
    rand:
        Source of uniform [0, 1) values for jitter (injectable for tests).
    """
    exponential = config.initial_delay_ms * (2 ** attempt)
    jitter = rand() * _JITTER_RATIO * exponential
    delay = min(exponential + jitter, config.max_delay_ms)
    if retry_after_s is not None:
        server_delay = retry_after_s * 1000
        if server_delay > delay:
            delay = min(server_delay, config.max_delay_ms)
    return float(delay)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header (delta-seconds or HTTP date) into seconds."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(tz=timezone.utc)).total_seconds())


def is_retryable_error(exc: BaseException, config: RetryConfig) -> bool:
    """Return ``True`` when *exc* should trigger another attempt under *config*.

    Timeouts are always retryable.  Exceptions carrying an HTTP status
    (``status_code`` or ``status``) are judged by ``retryable_statuses``;
    everything else by a case-insensitive substring match of
    ``retryable_errors`` against the message and exception type.  Transport
    failures from httpx count as "network" errors.
    """
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return True

    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    if isinstance(status, int) and status in config.retryable_statuses:
        return True

    haystack = f"{type(exc).__name__} {exc}".lower()
    # SDK connection errors wrap the underlying httpx transport error.
    if isinstance(exc, httpx.TransportError) or isinstance(exc.__cause__, httpx.TransportError):
        haystack += " network"
    return any(needle.lower() in haystack for needle in config.retryable_errors)


def _notify(observer: RetryObserver | None, event: RetryEvent) -> None:
    if observer is None:
        return
    try:
        observer(event)
    except Exception as exc:  # noqa: BLE001
        # A broken observer must not change the retry outcome.
        logger.warning("retry_observer_failed", target=event.target, error=str(exc))


# ---------------------------------------------------------------------------
# HTTP caller
# ---------------------------------------------------------------------------

class ResilientCaller:
    """Retries HTTP requests made through a shared ``httpx.AsyncClient``.

    Parameters
    ----------
    client:
        The shared async HTTP client (owned and closed by the application).
    observer:
        Optional callable receiving a :class:`RetryEvent` before each sleep.
    sleep:
        Awaitable sleep function; injectable so tests run without waiting.
    rand:
        Jitter source; injectable for deterministic tests.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        observer: RetryObserver | None = None,
        sleep: Sleeper = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self._client = client
        self._observer = observer
        self._sleep = sleep
        self._rand = rand

    async def call(
        self,
        method: str,
        url: str,
        config: RetryConfig = DEFAULT_RETRY_CONFIG,
        *,
        target: str | None = None,
        observer: RetryObserver | None = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying transient failures according to *config*.

        Returns the first non-retryable response, or the last response once
        retries are exhausted.  Raises the last exception when the final
        attempt failed with an exception; a non-retryable exception
        propagates on the attempt where it happened, without delay.
        """
        label = target or url
        notify = observer or self._observer
        timeout_s = config.timeout_ms / 1000
        start = time.monotonic()

        last_response: httpx.Response | None = None
        last_error: BaseException | None = None

        for attempt in range(config.max_retries + 1):
            retry_after: float | None = None
            status_code: int | None = None
            try:
                response = await asyncio.wait_for(
                    self._client.request(method, url, **request_kwargs),
                    timeout=timeout_s,
                )
            except Exception as exc:  # noqa: BLE001
                if not is_retryable_error(exc, config):
                    raise
                last_error = exc
                last_response = None
            else:
                if response.status_code not in config.retryable_statuses:
                    return response
                last_response = response
                last_error = None
                status_code = response.status_code
                retry_after = parse_retry_after(response.headers.get("retry-after"))

            if attempt >= config.max_retries:
                break

            delay_ms = compute_backoff(attempt, config, retry_after, rand=self._rand)
            error_text = _describe(last_error, config) if last_error else None
            logger.warning(
                "retry_scheduled",
                target=label,
                attempt=attempt + 1,
                max_retries=config.max_retries,
                status=status_code,
                error=error_text,
                delay_ms=round(delay_ms),
            )
            _notify(
                notify,
                RetryEvent(
                    target=label,
                    attempt=attempt,
                    delay_ms=delay_ms,
                    elapsed_ms=(time.monotonic() - start) * 1000,
                    status_code=status_code,
                    error=error_text,
                ),
            )
            await self._sleep(delay_ms / 1000)

        logger.error(
            "retry_exhausted",
            target=label,
            attempts=config.max_retries + 1,
            status=last_response.status_code if last_response is not None else None,
            error=_describe(last_error, config) if last_error else None,
            duration_ms=round((time.monotonic() - start) * 1000),
        )
        if last_error is not None:
            raise last_error
        assert last_response is not None
        return last_response


# ---------------------------------------------------------------------------
# Generic async callable wrapper
# ---------------------------------------------------------------------------

async def with_retry(
    fn: Callable[[], Awaitable[Any]],
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    *,
    target: str = "",
    observer: RetryObserver | None = None,
    sleep: Sleeper = asyncio.sleep,
    rand: Callable[[], float] = random.random,
) -> RetryResult:
    """Run *fn* with bounded retries and report the outcome.

    Each attempt is bounded by ``config.timeout_ms``.  Failures of *fn* are
    never raised; inspect ``result.success`` / ``result.last_error``.
    """
    start = time.monotonic()
    delays: list[float] = []
    last_error: BaseException | None = None
    attempts = 0

    for attempt in range(config.max_retries + 1):
        attempts = attempt + 1
        try:
            data = await asyncio.wait_for(fn(), timeout=config.timeout_ms / 1000)
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            if not is_retryable_error(exc, config):
                break
        else:
            return RetryResult(
                success=True,
                data=data,
                attempts=attempts,
                total_duration_ms=(time.monotonic() - start) * 1000,
                delays_ms=delays,
            )

        if attempt >= config.max_retries:
            break

        retry_after = parse_retry_after(_retry_after_header(last_error))
        delay_ms = compute_backoff(attempt, config, retry_after, rand=rand)
        delays.append(delay_ms)
        error_text = _describe(last_error, config)
        logger.warning(
            "retry_scheduled",
            target=target,
            attempt=attempts,
            max_retries=config.max_retries,
            error=error_text,
            delay_ms=round(delay_ms),
        )
        _notify(
            observer,
            RetryEvent(
                target=target,
                attempt=attempt,
                delay_ms=delay_ms,
                elapsed_ms=(time.monotonic() - start) * 1000,
                status_code=_status_of(last_error),
                error=error_text,
            ),
        )
        await sleep(delay_ms / 1000)

    error_text = _describe(last_error, config) if last_error else "Unknown error"
    logger.error("retry_exhausted", target=target, attempts=attempts, error=error_text)
    return RetryResult(
        success=False,
        error=error_text,
        attempts=attempts,
        last_error=last_error,
        total_duration_ms=(time.monotonic() - start) * 1000,
        delays_ms=delays,
    )


def _describe(exc: BaseException | None, config: RetryConfig) -> str:
    if exc is None:
        return ""
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)) and not str(exc):
        return f"Request timeout after {config.timeout_ms}ms"
    return str(exc) or type(exc).__name__


def _status_of(exc: BaseException | None) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    return status if isinstance(status, int) else None


def _retry_after_header(exc: BaseException | None) -> str | None:
    """Pull ``Retry-After`` from an exception that wraps an HTTP response."""
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    try:
        return headers.get("retry-after")
    except AttributeError:
        return None
