"""Fixed-window rate limiter with a penalty block and a local fallback.

Algorithm per client id (all timestamps epoch milliseconds):

1. ``blocked_until`` in the future -> deny until then.
2. No entry, an expired window, or an expired block -> start a new window
   with count 1.
3. Count already at ``max_requests`` -> set ``blocked_until = now +
   block_duration`` and deny.  The block is longer than a window so that
   abusive clients are penalized beyond one period.
4. Otherwise increment the count and allow.

:class:`DistributedRateLimiter` applies the algorithm through a shared
store (:class:`~src.providers.store.sqlite_rate_limit_store.SQLiteRateLimitStore`)
and falls back to :class:`InMemoryRateLimitStore` when that store raises.
The fallback still enforces limits per instance; it never fails open.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable, Mapping

import structlog

from src.interfaces.rate_limit_store import IRateLimitStore
from src.models.resilience import RateLimitConfig, RateLimitEntry, RateLimitResult

logger = structlog.get_logger(logger_name=__name__)

# Share of calls that also sweep expired entries out of the local map.
_CLEANUP_PROBABILITY = 0.1

_CLIENT_ID_HEADERS = ("x-client-id", "x-forwarded-for", "cf-connecting-ip", "x-real-ip")


def get_client_id(headers: Mapping[str, str]) -> str:
    """Resolve the rate-limit key for a request.

    Priority: ``x-client-id``, first hop of ``x-forwarded-for``,
    ``cf-connecting-ip``, ``x-real-ip``, then ``"anonymous"``.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    for header in _CLIENT_ID_HEADERS:
        value = lowered.get(header)
        if not value:
            continue
        if header == "x-forwarded-for":
            value = value.split(",")[0]
        value = value.strip()
        if value:
            return value
    return "anonymous"


def apply_window(
    entry: RateLimitEntry | None,
    client_id: str,
    config: RateLimitConfig,
    now_ms: int,
) -> tuple[RateLimitEntry, RateLimitResult]:
    """Apply one request to *entry* and return the updated entry and decision.

    Shared by every store so local and shared counters behave identically.
    """
    if entry is not None and entry.blocked_until is not None and entry.blocked_until > now_ms:
        return entry, RateLimitResult(allowed=False, remaining=0, reset_at=entry.blocked_until)

    window_expired = entry is None or now_ms - entry.window_start >= config.window_ms
    block_expired = entry is not None and entry.blocked_until is not None
    if window_expired or block_expired:
        fresh = RateLimitEntry(client_id=client_id, request_count=1, window_start=now_ms)
        return fresh, RateLimitResult(
            allowed=True,
            remaining=config.max_requests - 1,
            reset_at=now_ms + config.window_ms,
        )

    assert entry is not None
    if entry.request_count >= config.max_requests:
        blocked = entry.model_copy(update={"blocked_until": now_ms + config.block_duration_ms})
        return blocked, RateLimitResult(allowed=False, remaining=0, reset_at=blocked.blocked_until)

    counted = entry.model_copy(update={"request_count": entry.request_count + 1})
    return counted, RateLimitResult(
        allowed=True,
        remaining=config.max_requests - counted.request_count,
        reset_at=entry.window_start + config.window_ms,
    )


class InMemoryRateLimitStore(IRateLimitStore):
    """Process-local counters; consistent only within one running instance.

    Parameters
    ----------
    rand:
        Uniform [0, 1) source deciding when to sweep expired entries.
    """

    def __init__(self, rand: Callable[[], float] = random.random) -> None:
        self._entries: dict[str, RateLimitEntry] = {}
        self._rand = rand

    async def hit(
        self,
        client_id: str,
        config: RateLimitConfig,
        now_ms: int,
    ) -> RateLimitResult:
        if self._rand() < _CLEANUP_PROBABILITY:
            self.cleanup(config, now_ms)
        entry, result = apply_window(self._entries.get(client_id), client_id, config, now_ms)
        self._entries[client_id] = entry
        return result

    def cleanup(self, config: RateLimitConfig, now_ms: int) -> int:
        """Drop entries whose window and block have both expired."""
        expired = [
            key
            for key, entry in self._entries.items()
            if now_ms - entry.window_start >= config.window_ms
            and (entry.blocked_until is None or entry.blocked_until <= now_ms)
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def get_entry(self, client_id: str) -> RateLimitEntry | None:
        return self._entries.get(client_id)

    def get_provider_name(self) -> str:
        return "memory_rate_limit"


class DistributedRateLimiter:
    """Rate limiter backed by a shared store with an in-memory fallback.

    Parameters
    ----------
    store:
        Shared counter store, or ``None`` to use the local map only.
    fallback:
        Local store used when *store* is missing or raises.
    default_config:
        Limits applied when :meth:`check` is called without a config.
    clock:
        Wall clock in seconds since the epoch; injectable for tests.
    """

    def __init__(
        self,
        store: IRateLimitStore | None = None,
        fallback: InMemoryRateLimitStore | None = None,
        default_config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._fallback = fallback or InMemoryRateLimitStore()
        self._default_config = default_config or RateLimitConfig()
        self._clock = clock

    @property
    def default_config(self) -> RateLimitConfig:
        return self._default_config

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def check(
        self,
        client_id: str,
        config: RateLimitConfig | None = None,
    ) -> RateLimitResult:
        """Count a request for *client_id* and return the decision."""
        cfg = config or self._default_config
        now_ms = self.now_ms()

        result: RateLimitResult | None = None
        if self._store is not None:
            try:
                result = await self._store.hit(client_id, cfg, now_ms)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "rate_limit_store_unavailable",
                    store=self._store.get_provider_name(),
                    error=str(exc),
                )
        if result is None:
            result = await self._fallback.hit(client_id, cfg, now_ms)

        if not result.allowed:
            logger.warning(
                "rate_limit_exceeded",
                client_id=client_id,
                reset_at=result.reset_at,
            )
        return result
