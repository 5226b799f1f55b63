"""Unit tests for the fixed-window rate limiter and its stores."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.models.resilience import RateLimitConfig, RateLimitEntry, RateLimitResult
from src.providers.store.sqlite_rate_limit_store import SQLiteRateLimitStore
from src.resilience.rate_limiter import (
    DistributedRateLimiter,
    InMemoryRateLimitStore,
    apply_window,
    get_client_id,
)

CONFIG = RateLimitConfig(max_requests=3, window_ms=1000, block_duration_ms=5000)


class _WallClock:
    def __init__(self, start_s: float = 1_700_000_000.0) -> None:
        self.now = start_s

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000


class _BrokenStore(InMemoryRateLimitStore):
    async def hit(self, client_id, config, now_ms) -> RateLimitResult:  # noqa: ANN001
        raise OSError("database is locked")

    def get_provider_name(self) -> str:
        return "broken"


def _never_cleanup() -> float:
    return 0.99


# ======================================================================
# Client identification
# ======================================================================


class TestGetClientId:
    def test_explicit_client_id_wins(self) -> None:
        headers = {"X-Client-Id": "acme", "X-Forwarded-For": "1.2.3.4"}
        assert get_client_id(headers) == "acme"

    def test_first_forwarded_hop(self) -> None:
        assert get_client_id({"x-forwarded-for": " 10.0.0.1 , 10.0.0.2"}) == "10.0.0.1"

    def test_cloudflare_then_real_ip(self) -> None:
        assert get_client_id({"cf-connecting-ip": "5.5.5.5", "x-real-ip": "6.6.6.6"}) == "5.5.5.5"
        assert get_client_id({"x-real-ip": "6.6.6.6"}) == "6.6.6.6"

    def test_anonymous_fallback(self) -> None:
        assert get_client_id({}) == "anonymous"
        assert get_client_id({"x-client-id": "   "}) == "anonymous"


# ======================================================================
# Window algorithm
# ======================================================================


class TestApplyWindow:
    def test_first_request_opens_window(self) -> None:
        entry, result = apply_window(None, "c", CONFIG, now_ms=10_000)
        assert result.allowed is True
        assert result.remaining == 2
        assert result.reset_at == 11_000
        assert entry.request_count == 1
        assert entry.window_start == 10_000

    def test_counts_within_window(self) -> None:
        entry = RateLimitEntry(client_id="c", request_count=1, window_start=10_000)
        entry, result = apply_window(entry, "c", CONFIG, now_ms=10_500)
        assert result.allowed is True
        assert result.remaining == 1
        assert result.reset_at == 11_000

    def test_over_limit_blocks(self) -> None:
        entry = RateLimitEntry(client_id="c", request_count=3, window_start=10_000)
        entry, result = apply_window(entry, "c", CONFIG, now_ms=10_500)
        assert result.allowed is False
        assert result.remaining == 0
        assert entry.blocked_until == 15_500
        assert result.reset_at == 15_500

    def test_block_outlasts_window(self) -> None:
        entry = RateLimitEntry(
            client_id="c", request_count=3, window_start=10_000, blocked_until=15_500
        )
        _, result = apply_window(entry, "c", CONFIG, now_ms=12_000)
        assert result.allowed is False
        assert result.reset_at == 15_500

    def test_expired_block_starts_fresh_window(self) -> None:
        entry = RateLimitEntry(
            client_id="c", request_count=3, window_start=10_000, blocked_until=15_500
        )
        entry, result = apply_window(entry, "c", CONFIG, now_ms=15_500)
        assert result.allowed is True
        assert entry.request_count == 1
        assert entry.blocked_until is None

    def test_expired_window_resets(self) -> None:
        entry = RateLimitEntry(client_id="c", request_count=2, window_start=10_000)
        entry, result = apply_window(entry, "c", CONFIG, now_ms=11_000)
        assert result.remaining == 2
        assert entry.window_start == 11_000


# ======================================================================
# In-memory store
# ======================================================================


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_cleanup_drops_expired_entries(self) -> None:
        store = InMemoryRateLimitStore(rand=_never_cleanup)
        await store.hit("a", CONFIG, 1_000)
        await store.hit("b", CONFIG, 1_900)

        removed = store.cleanup(CONFIG, now_ms=2_500)

        assert removed == 1
        assert store.get_entry("a") is None
        assert store.get_entry("b") is not None

    @pytest.mark.asyncio
    async def test_cleanup_keeps_blocked_entries(self) -> None:
        store = InMemoryRateLimitStore(rand=_never_cleanup)
        for _ in range(4):
            await store.hit("a", CONFIG, 1_000)

        assert store.cleanup(CONFIG, now_ms=3_000) == 0
        assert store.get_entry("a").blocked_until == 6_000


# ======================================================================
# Limiter
# ======================================================================


class TestDistributedRateLimiter:
    @pytest.mark.asyncio
    async def test_allows_up_to_limit_then_blocks(self) -> None:
        clock = _WallClock()
        limiter = DistributedRateLimiter(default_config=CONFIG, clock=clock)

        results = [await limiter.check("client") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[3].reset_at == limiter.now_ms() + CONFIG.block_duration_ms

    @pytest.mark.asyncio
    async def test_block_persists_past_window(self) -> None:
        clock = _WallClock()
        limiter = DistributedRateLimiter(default_config=CONFIG, clock=clock)
        for _ in range(4):
            await limiter.check("client")

        clock.advance_ms(2_000)
        assert (await limiter.check("client")).allowed is False

        clock.advance_ms(3_001)
        assert (await limiter.check("client")).allowed is True

    @pytest.mark.asyncio
    async def test_clients_counted_separately(self) -> None:
        limiter = DistributedRateLimiter(default_config=CONFIG, clock=_WallClock())
        for _ in range(3):
            await limiter.check("a")
        assert (await limiter.check("b")).allowed is True

    @pytest.mark.asyncio
    async def test_per_call_config_overrides_default(self) -> None:
        limiter = DistributedRateLimiter(default_config=CONFIG, clock=_WallClock())
        strict = RateLimitConfig(max_requests=1, window_ms=1000, block_duration_ms=1000)

        assert (await limiter.check("a", strict)).allowed is True
        assert (await limiter.check("a", strict)).allowed is False

    @pytest.mark.asyncio
    async def test_store_failure_falls_back_to_local_limits(self) -> None:
        fallback = InMemoryRateLimitStore(rand=_never_cleanup)
        limiter = DistributedRateLimiter(
            store=_BrokenStore(), fallback=fallback, default_config=CONFIG, clock=_WallClock()
        )

        results = [await limiter.check("client") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert fallback.get_entry("client") is not None

    @pytest.mark.asyncio
    async def test_uses_shared_store_when_healthy(self) -> None:
        shared = InMemoryRateLimitStore(rand=_never_cleanup)
        fallback = InMemoryRateLimitStore(rand=_never_cleanup)
        limiter = DistributedRateLimiter(
            store=shared, fallback=fallback, default_config=CONFIG, clock=_WallClock()
        )

        await limiter.check("client")

        assert shared.get_entry("client").request_count == 1
        assert fallback.get_entry("client") is None


# ======================================================================
# SQLite store
# ======================================================================


class TestSQLiteRateLimitStore:
    @pytest.mark.asyncio
    async def test_counts_persist_across_store_instances(self, tmp_path: Path) -> None:
        db_path = tmp_path / "limits.db"
        first = SQLiteRateLimitStore(db_path=db_path)
        await first.initialize()
        second = SQLiteRateLimitStore(db_path=db_path)

        await first.hit("client", CONFIG, 10_000)
        await second.hit("client", CONFIG, 10_100)
        result = await first.hit("client", CONFIG, 10_200)

        assert result.allowed is True
        assert result.remaining == 0
        entry = await second.get_entry("client")
        assert entry.request_count == 3

    @pytest.mark.asyncio
    async def test_blocks_after_limit(self, tmp_path: Path) -> None:
        store = SQLiteRateLimitStore(db_path=tmp_path / "limits.db")
        await store.initialize()
        for offset in range(3):
            await store.hit("client", CONFIG, 10_000 + offset)

        result = await store.hit("client", CONFIG, 10_010)

        assert result.allowed is False
        assert result.reset_at == 15_010
        assert (await store.get_entry("client")).blocked_until == 15_010

    @pytest.mark.asyncio
    async def test_unknown_client(self, tmp_path: Path) -> None:
        store = SQLiteRateLimitStore(db_path=tmp_path / "limits.db")
        await store.initialize()
        assert await store.get_entry("nobody") is None

    @pytest.mark.asyncio
    async def test_limiter_over_sqlite(self, tmp_path: Path) -> None:
        store = SQLiteRateLimitStore(db_path=tmp_path / "limits.db")
        await store.initialize()
        limiter = DistributedRateLimiter(store=store, default_config=CONFIG, clock=_WallClock())

        results = [await limiter.check("client") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
