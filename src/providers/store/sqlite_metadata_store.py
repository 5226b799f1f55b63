"""SQLite-backed knowledge-base store.

Persists regulatory sources, their retrieval chunks and the classification
code evidence found in them.  Uses ``aiosqlite`` for async I/O and
``PRAGMA journal_mode=WAL`` so the API can read while an ingestion writes.

Tables:
    legal_sources  -- one row per document, unique on
                      (country_code, source_type, source_ref)
    legal_chunks   -- retrieval chunks, unique on (source_id, chunk_index);
                      embedding / keywords / codes stored as JSON text
    hs_evidence    -- (code, source, page, context) rows, unique on
                      (source_id, national code or else HS-6)

Every write method runs in a single transaction: a chunk batch is either
stored completely or not at all.  ``aiosqlite.Error`` is re-raised as
:class:`StorageError` so the caller's retry policy can match on the
message (e.g. "database is locked").
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite
import structlog

from src.interfaces.metadata_store import IMetadataStore
from src.models.legal import EvidenceRow, LegalSource, TextChunk
from src.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/legal_sources.db")

_EXCERPT_CHARS = 500

# ── Schema DDL ────────────────────────────────────────────────────────

_CREATE_SOURCES_TABLE = """\
CREATE TABLE IF NOT EXISTS legal_sources (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    country_code  TEXT    NOT NULL DEFAULT 'MA',
    source_type   TEXT    NOT NULL,
    source_ref    TEXT    NOT NULL,
    title         TEXT,
    issuer        TEXT,
    source_date   TEXT,
    source_url    TEXT,
    full_text     TEXT    NOT NULL DEFAULT '',
    excerpt       TEXT    NOT NULL DEFAULT '',
    total_chunks  INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT    NOT NULL DEFAULT (datetime('now')),
    updated_at    TEXT    NOT NULL DEFAULT (datetime('now')),
    UNIQUE(country_code, source_type, source_ref)
);
"""

_CREATE_CHUNKS_TABLE = """\
CREATE TABLE IF NOT EXISTS legal_chunks (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id           INTEGER NOT NULL REFERENCES legal_sources(id),
    chunk_index         INTEGER NOT NULL,
    text                TEXT    NOT NULL,
    page_number         INTEGER,
    char_start          INTEGER NOT NULL DEFAULT 0,
    char_end            INTEGER NOT NULL DEFAULT 0,
    embedding           TEXT,
    article_number      TEXT,
    section_title       TEXT,
    parent_section      TEXT,
    chunk_type          TEXT    NOT NULL DEFAULT 'general',
    hierarchy_path      TEXT,
    keywords            TEXT,
    mentioned_hs_codes  TEXT,
    UNIQUE(source_id, chunk_index)
);
"""

_CREATE_EVIDENCE_TABLE = """\
CREATE TABLE IF NOT EXISTS hs_evidence (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    country_code   TEXT    NOT NULL,
    national_code  TEXT,
    hs_code_6      TEXT    NOT NULL,
    source_id      INTEGER NOT NULL REFERENCES legal_sources(id),
    page_number    INTEGER,
    evidence_text  TEXT    NOT NULL DEFAULT '',
    confidence     TEXT    NOT NULL,
    created_at     TEXT    NOT NULL DEFAULT (datetime('now'))
);
"""

_CREATE_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_chunks_source ON legal_chunks(source_id, chunk_index);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_type ON legal_chunks(chunk_type);",
    "CREATE INDEX IF NOT EXISTS idx_evidence_hs6 ON hs_evidence(hs_code_6);",
    "CREATE INDEX IF NOT EXISTS idx_evidence_national ON hs_evidence(national_code);",
    "CREATE INDEX IF NOT EXISTS idx_evidence_source ON hs_evidence(source_id);",
    # One evidence row per code per source: national line, else HS-6.
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_evidence_unique "
    "ON hs_evidence(source_id, COALESCE(national_code, hs_code_6));",
]

# Rows written before the unique index existed; keeps the longest context.
_DEDUPE_EVIDENCE = """\
DELETE FROM hs_evidence
WHERE id NOT IN (
    SELECT id FROM (
        SELECT id, ROW_NUMBER() OVER (
            PARTITION BY source_id, COALESCE(national_code, hs_code_6)
            ORDER BY LENGTH(evidence_text) DESC, id
        ) AS pos
        FROM hs_evidence
    )
    WHERE pos = 1
);
"""

# ── DML ───────────────────────────────────────────────────────────────

_UPSERT_SOURCE = """\
INSERT INTO legal_sources (country_code, source_type, source_ref, title, issuer,
                           source_date, source_url, full_text, excerpt)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(country_code, source_type, source_ref)
DO UPDATE SET title       = COALESCE(excluded.title, legal_sources.title),
              issuer      = COALESCE(excluded.issuer, legal_sources.issuer),
              source_date = COALESCE(excluded.source_date, legal_sources.source_date),
              source_url  = COALESCE(excluded.source_url, legal_sources.source_url),
              full_text   = excluded.full_text,
              excerpt     = excluded.excerpt,
              updated_at  = datetime('now');
"""

_SELECT_SOURCE_ID = """\
SELECT id FROM legal_sources
WHERE country_code = ? AND source_type = ? AND source_ref = ?;
"""

_SELECT_SOURCE = """\
SELECT id, country_code, source_type, source_ref, title, issuer, source_date,
       source_url, full_text, excerpt, total_chunks
FROM legal_sources
WHERE id = ?;
"""

_APPEND_SOURCE_TEXT = """\
UPDATE legal_sources
SET full_text = CASE WHEN full_text = '' THEN ? ELSE full_text || ? || ? END,
    updated_at = datetime('now')
WHERE id = ?;
"""

_DELETE_CHUNKS = "DELETE FROM legal_chunks WHERE source_id = ?;"

_INSERT_CHUNK = """\
INSERT INTO legal_chunks (source_id, chunk_index, text, page_number, char_start, char_end,
                          embedding, article_number, section_title, parent_section,
                          chunk_type, hierarchy_path, keywords, mentioned_hs_codes)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_MAX_CHUNK_INDEX = "SELECT MAX(chunk_index) FROM legal_chunks WHERE source_id = ?;"

_COUNT_CHUNKS = "SELECT COUNT(*) FROM legal_chunks WHERE source_id = ?;"

_SELECT_CHUNKS = """\
SELECT source_id, chunk_index, text, page_number, char_start, char_end, embedding,
       article_number, section_title, parent_section, chunk_type, hierarchy_path,
       keywords, mentioned_hs_codes
FROM legal_chunks
WHERE source_id = ?
ORDER BY chunk_index;
"""

_UPDATE_TOTAL_CHUNKS = """\
UPDATE legal_sources SET total_chunks = ?, updated_at = datetime('now') WHERE id = ?;
"""

_INSERT_EVIDENCE = """\
INSERT INTO hs_evidence (country_code, national_code, hs_code_6, source_id,
                         page_number, evidence_text, confidence)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(source_id, COALESCE(national_code, hs_code_6))
DO UPDATE SET page_number   = CASE WHEN LENGTH(excluded.evidence_text) > LENGTH(hs_evidence.evidence_text)
                                   THEN excluded.page_number ELSE hs_evidence.page_number END,
              evidence_text = CASE WHEN LENGTH(excluded.evidence_text) > LENGTH(hs_evidence.evidence_text)
                                   THEN excluded.evidence_text ELSE hs_evidence.evidence_text END,
              confidence    = excluded.confidence;
"""

_DELETE_EVIDENCE = "DELETE FROM hs_evidence WHERE source_id = ?;"

_SELECT_EVIDENCE = """\
SELECT country_code, national_code, hs_code_6, source_id, page_number,
       evidence_text, confidence
FROM hs_evidence
WHERE source_id = ?
ORDER BY id;
"""


class SQLiteMetadataStore(IMetadataStore):
    """Sources, chunks and code evidence persisted in ``data/legal_sources.db``."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH, timeout_s: float = 5.0) -> None:
        self._db_path = Path(db_path)
        self._timeout_s = timeout_s

    @asynccontextmanager
    async def _connect(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection; commit on success, roll back and wrap errors otherwise."""
        try:
            async with aiosqlite.connect(str(self._db_path), timeout=self._timeout_s) as db:
                db.row_factory = aiosqlite.Row
                try:
                    yield db
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
        except aiosqlite.Error as exc:
            logger.error("metadata_store_error", operation=operation, error=str(exc))
            raise StorageError(
                message=f"{operation} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def initialize(self) -> None:
        """Create all knowledge-base tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect("initialize") as db:
            # WAL mode enables concurrent readers while a writer is active.
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_SOURCES_TABLE)
            await db.execute(_CREATE_CHUNKS_TABLE)
            await db.execute(_CREATE_EVIDENCE_TABLE)
            await db.execute(_DEDUPE_EVIDENCE)
            for idx_sql in _CREATE_INDICES:
                await db.execute(idx_sql)
        logger.info("metadata_db_initialized", path=str(self._db_path))

    def get_provider_name(self) -> str:
        return "sqlite_metadata"

    # ── Sources ────────────────────────────────────────────────────────

    async def upsert_source(self, source: LegalSource) -> int:
        key = (source.country_code, source.source_type, source.source_ref)
        excerpt = source.excerpt or source.full_text[:_EXCERPT_CHARS]
        async with self._connect("upsert_source") as db:
            await db.execute(
                _UPSERT_SOURCE,
                (
                    *key,
                    source.title,
                    source.issuer,
                    source.source_date,
                    source.source_url,
                    source.full_text,
                    excerpt,
                ),
            )
            cursor = await db.execute(_SELECT_SOURCE_ID, key)
            row = await cursor.fetchone()
        if row is None:
            raise StorageError(
                message=f"Source {source.source_ref} not found after upsert",
                provider_name=self.get_provider_name(),
            )
        return int(row["id"])

    async def get_source(self, source_id: int) -> LegalSource | None:
        async with self._connect("get_source") as db:
            cursor = await db.execute(_SELECT_SOURCE, (source_id,))
            row = await cursor.fetchone()
        if row is None:
            return None
        return LegalSource(**dict(row))

    async def append_source_text(self, source_id: int, text: str, separator: str) -> None:
        async with self._connect("append_source_text") as db:
            await db.execute(_APPEND_SOURCE_TEXT, (text, separator, text, source_id))

    async def update_total_chunks(self, source_id: int, total: int) -> None:
        async with self._connect("update_total_chunks") as db:
            await db.execute(_UPDATE_TOTAL_CHUNKS, (total, source_id))

    # ── Chunks ─────────────────────────────────────────────────────────

    async def replace_chunks(self, source_id: int, chunks: list[TextChunk]) -> int:
        async with self._connect("replace_chunks") as db:
            await db.execute(_DELETE_CHUNKS, (source_id,))
            await db.executemany(_INSERT_CHUNK, [_chunk_params(source_id, c) for c in chunks])
        logger.info("chunks_replaced", source_id=source_id, count=len(chunks))
        return len(chunks)

    async def append_chunks(self, source_id: int, chunks: list[TextChunk]) -> int:
        if not chunks:
            return 0
        async with self._connect("append_chunks") as db:
            await db.executemany(_INSERT_CHUNK, [_chunk_params(source_id, c) for c in chunks])
        logger.info(
            "chunks_appended",
            source_id=source_id,
            count=len(chunks),
            first_index=chunks[0].chunk_index,
        )
        return len(chunks)

    async def get_max_chunk_index(self, source_id: int) -> int | None:
        async with self._connect("get_max_chunk_index") as db:
            cursor = await db.execute(_SELECT_MAX_CHUNK_INDEX, (source_id,))
            row = await cursor.fetchone()
        return row[0] if row is not None and row[0] is not None else None

    async def count_chunks(self, source_id: int) -> int:
        async with self._connect("count_chunks") as db:
            cursor = await db.execute(_COUNT_CHUNKS, (source_id,))
            row = await cursor.fetchone()
        return int(row[0]) if row is not None else 0

    async def list_chunks(self, source_id: int) -> list[TextChunk]:
        async with self._connect("list_chunks") as db:
            cursor = await db.execute(_SELECT_CHUNKS, (source_id,))
            rows = await cursor.fetchall()
        return [_row_to_chunk(row) for row in rows]

    # ── Evidence ───────────────────────────────────────────────────────

    async def insert_evidence(self, rows: list[EvidenceRow]) -> int:
        """Insert or merge evidence rows; an existing row keeps the longer context."""
        if not rows:
            return 0
        async with self._connect("insert_evidence") as db:
            await db.executemany(
                _INSERT_EVIDENCE,
                [
                    (
                        r.country_code,
                        r.national_code,
                        r.hs_code_6,
                        r.source_id,
                        r.page_number,
                        r.evidence_text,
                        r.confidence,
                    )
                    for r in rows
                ],
            )
        return len(rows)

    async def delete_evidence(self, source_id: int) -> int:
        async with self._connect("delete_evidence") as db:
            cursor = await db.execute(_DELETE_EVIDENCE, (source_id,))
            deleted = cursor.rowcount
        logger.info("evidence_cleared", source_id=source_id, count=deleted)
        return deleted

    async def list_evidence(self, source_id: int) -> list[EvidenceRow]:
        async with self._connect("list_evidence") as db:
            cursor = await db.execute(_SELECT_EVIDENCE, (source_id,))
            rows = await cursor.fetchall()
        return [EvidenceRow(**dict(row)) for row in rows]


# ── Row mapping ───────────────────────────────────────────────────────

def _chunk_params(source_id: int, chunk: TextChunk) -> tuple:
    return (
        source_id,
        chunk.chunk_index,
        chunk.text,
        chunk.page_number,
        chunk.char_start,
        chunk.char_end,
        json.dumps(chunk.embedding) if chunk.embedding is not None else None,
        chunk.article_number,
        chunk.section_title,
        chunk.parent_section,
        chunk.chunk_type,
        chunk.hierarchy_path,
        json.dumps(chunk.keywords, ensure_ascii=False),
        json.dumps(chunk.mentioned_hs_codes),
    )


def _row_to_chunk(row: aiosqlite.Row) -> TextChunk:
    data = dict(row)
    data["embedding"] = json.loads(data["embedding"]) if data["embedding"] else None
    data["keywords"] = json.loads(data["keywords"]) if data["keywords"] else []
    data["mentioned_hs_codes"] = (
        json.loads(data["mentioned_hs_codes"]) if data["mentioned_hs_codes"] else []
    )
    return TextChunk(**data)
