"""SQLite-backed shared rate-limit store.

Keeps one ``rate_limits`` row per client so every worker process of the
service sees the same counters.  Each hit runs inside a ``BEGIN IMMEDIATE``
transaction so the read-modify-write of a row is serialized across
connections.  Uses ``aiosqlite`` for async I/O.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import structlog

from src.interfaces.rate_limit_store import IRateLimitStore
from src.models.resilience import RateLimitConfig, RateLimitEntry, RateLimitResult
from src.resilience.rate_limiter import apply_window

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/rate_limits.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS rate_limits (
    client_id      TEXT    PRIMARY KEY,
    request_count  INTEGER NOT NULL DEFAULT 0,
    window_start   INTEGER NOT NULL,
    blocked_until  INTEGER
);
"""

_SELECT_SQL = """\
SELECT client_id, request_count, window_start, blocked_until
FROM rate_limits
WHERE client_id = ?;
"""

_UPSERT_SQL = """\
INSERT INTO rate_limits (client_id, request_count, window_start, blocked_until)
VALUES (?, ?, ?, ?)
ON CONFLICT(client_id)
DO UPDATE SET request_count = excluded.request_count,
              window_start  = excluded.window_start,
              blocked_until = excluded.blocked_until;
"""


class SQLiteRateLimitStore(IRateLimitStore):
    """Shared fixed-window counters persisted in SQLite."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH, timeout_s: float = 5.0) -> None:
        self._db_path = Path(db_path)
        self._timeout_s = timeout_s

    async def initialize(self) -> None:
        """Create the rate_limits table if it doesn't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_TABLE_SQL)
            await db.commit()
        logger.info("rate_limit_db_initialized", path=str(self._db_path))

    async def hit(
        self,
        client_id: str,
        config: RateLimitConfig,
        now_ms: int,
    ) -> RateLimitResult:
        async with aiosqlite.connect(
            str(self._db_path), timeout=self._timeout_s, isolation_level=None
        ) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(_SELECT_SQL, (client_id,))
                row = await cursor.fetchone()
                current = RateLimitEntry(**dict(row)) if row is not None else None
                entry, result = apply_window(current, client_id, config, now_ms)
                if entry is not current:
                    await db.execute(
                        _UPSERT_SQL,
                        (
                            entry.client_id,
                            entry.request_count,
                            entry.window_start,
                            entry.blocked_until,
                        ),
                    )
                await db.execute("COMMIT")
            except BaseException:
                await db.execute("ROLLBACK")
                raise
        return result

    async def get_entry(self, client_id: str) -> RateLimitEntry | None:
        """Return the stored entry for *client_id*, if any."""
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_SQL, (client_id,))
            row = await cursor.fetchone()
        return RateLimitEntry(**dict(row)) if row is not None else None

    def get_provider_name(self) -> str:
        return "sqlite_rate_limit"
