"""Resilience primitives wrapped around every outbound call.

    - retry.py            -- ResilientCaller (httpx) and with_retry (any awaitable)
    - circuit_breaker.py  -- CircuitBreakerRegistry, one per process
    - rate_limiter.py     -- DistributedRateLimiter with an in-memory fallback
    - json_parser.py      -- layered recovery for malformed LLM JSON

The registry and limiter objects are built once in main.py and stored on
``app.state`` so their state is shared by reference, not module globals.
"""

from src.resilience.circuit_breaker import CircuitBreakerRegistry
from src.resilience.json_parser import (
    ParseResult,
    parse_json,
    parse_json_or_default,
    parse_json_with_schema,
)
from src.resilience.rate_limiter import (
    DistributedRateLimiter,
    InMemoryRateLimitStore,
    get_client_id,
)
from src.resilience.retry import (
    RETRY_PRESETS,
    ResilientCaller,
    cap_timeout,
    compute_backoff,
    get_retry_preset,
    with_retry,
)

__all__ = [
    "CircuitBreakerRegistry",
    "DistributedRateLimiter",
    "InMemoryRateLimitStore",
    "ParseResult",
    "RETRY_PRESETS",
    "ResilientCaller",
    "cap_timeout",
    "compute_backoff",
    "get_client_id",
    "get_retry_preset",
    "parse_json",
    "parse_json_or_default",
    "parse_json_with_schema",
    "with_retry",
]
