"""Shared pytest fixtures for the regulatory ingestion test suite."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import pytest

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.extraction_provider import IExtractionProvider
from src.interfaces.metadata_store import IMetadataStore
from src.models.legal import EvidenceRow, ExtractedPage, LegalSource, TextChunk

# ---------------------------------------------------------------------------
# Sample content
# ---------------------------------------------------------------------------

SAMPLE_CIRCULAR = """\
ROYAUME DU MAROC
Administration des Douanes et Impôts Indirects

Circulaire n° 4601/311 du 15 mars 2024

OBJET : Classement tarifaire des appareils de traitement de l'information.

TITRE II - DISPOSITIONS TARIFAIRES

Article 1
Les machines automatiques de traitement de l'information relèvent de la
position 8471.30 du tarif. La sous-position nationale 8471300000 s'applique
aux machines portatives d'un poids n'excédant pas 10 kg.

Article 2
Les droits d'importation applicables sont fixés à 2,5% ad valorem. Le code
0101210000 reste inchangé pour les chevaux reproducteurs de race pure.
"""


def page_text(page_number: int) -> str:
    """Deterministic page body of ~700 chars with one article heading."""
    filler = (
        "Les marchandises déclarées sous ce régime sont soumises au contrôle "
        "documentaire préalable du bureau de dédouanement compétent. "
    )
    return (
        f"Article {page_number}\n"
        f"Dispositions applicables à la page {page_number}.\n\n"
        + filler * 3
        + f"\n\nLe code 8471.30.00.{page_number % 100:02d} est visé par la présente."
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeExtractionProvider(IExtractionProvider):
    """Returns one deterministic page per page of the submitted PDF."""

    def __init__(self) -> None:
        self.calls: list[tuple[int, int]] = []

    async def extract(self, document: bytes, start_page: int = 1) -> list[ExtractedPage]:
        with fitz.open(stream=document, filetype="pdf") as doc:
            count = doc.page_count
        self.calls.append((start_page, count))
        return [
            ExtractedPage(page_number=start_page + i, text=page_text(start_page + i))
            for i in range(count)
        ]

    def get_provider_name(self) -> str:
        return "fake-extraction"

    def is_available(self) -> bool:
        return True


class FakeEmbeddingProvider(IEmbeddingProvider):
    """Returns a fixed 3-dim vector; can be told to fail."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_single(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        self.calls += 1
        if self.fail:
            from src.utils.errors import EmbeddingError

            raise EmbeddingError(message="boom", provider_name="fake-embedding", status_code=400)
        return [0.1, 0.2, float(len(text) % 7)]

    def get_dimension(self) -> int:
        return 3

    def get_provider_name(self) -> str:
        return "fake-embedding"

    def is_available(self) -> bool:
        return True


class InMemoryMetadataStore(IMetadataStore):
    """Dict-backed IMetadataStore with the same keying rules as SQLite."""

    def __init__(self) -> None:
        self.sources: dict[int, LegalSource] = {}
        self.chunks: dict[int, list[TextChunk]] = {}
        self.evidence: list[EvidenceRow] = []
        self._next_id = 1

    async def initialize(self) -> None:
        return None

    async def upsert_source(self, source: LegalSource) -> int:
        key = (source.country_code, source.source_type, source.source_ref)
        for sid, existing in self.sources.items():
            if (existing.country_code, existing.source_type, existing.source_ref) == key:
                self.sources[sid] = source.model_copy(update={"id": sid})
                return sid
        sid = self._next_id
        self._next_id += 1
        self.sources[sid] = source.model_copy(update={"id": sid})
        return sid

    async def get_source(self, source_id: int) -> LegalSource | None:
        return self.sources.get(source_id)

    async def append_source_text(self, source_id: int, text: str, separator: str) -> None:
        src = self.sources[source_id]
        full = f"{src.full_text}{separator}{text}" if src.full_text else text
        self.sources[source_id] = src.model_copy(update={"full_text": full})

    async def replace_chunks(self, source_id: int, chunks: list[TextChunk]) -> int:
        self.chunks[source_id] = list(chunks)
        return len(chunks)

    async def append_chunks(self, source_id: int, chunks: list[TextChunk]) -> int:
        self.chunks.setdefault(source_id, []).extend(chunks)
        return len(chunks)

    async def get_max_chunk_index(self, source_id: int) -> int | None:
        existing = self.chunks.get(source_id) or []
        return max((c.chunk_index for c in existing), default=None)

    async def count_chunks(self, source_id: int) -> int:
        return len(self.chunks.get(source_id) or [])

    async def list_chunks(self, source_id: int) -> list[TextChunk]:
        return sorted(self.chunks.get(source_id) or [], key=lambda c: c.chunk_index)

    async def update_total_chunks(self, source_id: int, total: int) -> None:
        src = self.sources[source_id]
        self.sources[source_id] = src.model_copy(update={"total_chunks": total})

    async def insert_evidence(self, rows: list[EvidenceRow]) -> int:
        for row in rows:
            key = (row.source_id, row.national_code or row.hs_code_6)
            for i, existing in enumerate(self.evidence):
                if (existing.source_id, existing.national_code or existing.hs_code_6) != key:
                    continue
                if len(row.evidence_text) <= len(existing.evidence_text):
                    row = row.model_copy(
                        update={
                            "evidence_text": existing.evidence_text,
                            "page_number": existing.page_number,
                        }
                    )
                self.evidence[i] = row
                break
            else:
                self.evidence.append(row)
        return len(rows)

    async def delete_evidence(self, source_id: int) -> int:
        before = len(self.evidence)
        self.evidence = [r for r in self.evidence if r.source_id != source_id]
        return before - len(self.evidence)

    async def list_evidence(self, source_id: int) -> list[EvidenceRow]:
        return [r for r in self.evidence if r.source_id == source_id]

    def get_provider_name(self) -> str:
        return "memory-metadata"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_circular() -> str:
    """A short French customs circular with a reference, date and codes."""
    return SAMPLE_CIRCULAR


@pytest.fixture
def make_pdf() -> Callable[[int], bytes]:
    """Factory building an in-memory PDF with *n* text pages."""

    def _make(n_pages: int) -> bytes:
        with fitz.open() as doc:
            for i in range(1, n_pages + 1):
                page = doc.new_page()
                page.insert_text((72, 72), f"Page {i}")
            return doc.tobytes()

    return _make


@pytest.fixture
def fake_extraction() -> FakeExtractionProvider:
    return FakeExtractionProvider()


@pytest.fixture
def fake_embeddings() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def memory_store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Awaitable sleep replacement recording requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def mock_ingestion_service() -> Any:
    """MagicMock standing in for IngestionService in API / CLI tests."""
    from src.services.ingestion.ingestion_service import IngestionService

    mock = MagicMock(spec=IngestionService)
    mock.ingest = AsyncMock()
    mock.get_source_summary = AsyncMock(return_value=None)
    return mock
