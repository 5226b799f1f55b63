"""Integration tests for the ingestion pipeline.

Runs IngestionService end to end against real in-memory PDFs, a fake
extraction provider, fake embeddings and a dict-backed metadata store.
"""

from __future__ import annotations

import base64
from unittest.mock import AsyncMock

import httpx
import pytest

from src.models.legal import IngestionRequest, LegalSource, TextChunk
from src.providers.store.sqlite_metadata_store import SQLiteMetadataStore
from src.services.ingestion.ingestion_service import (
    BATCH_SEPARATOR,
    PAGE_SEPARATOR,
    IngestionService,
)
from src.utils.errors import ExtractionError, ValidationError


def _service(extraction, embeddings, store, no_sleep: AsyncMock, **kwargs) -> IngestionService:
    return IngestionService(
        extraction_provider=extraction,
        embedding_provider=embeddings,
        metadata_store=store,
        pages_per_batch=5,
        sleep=no_sleep,
        **kwargs,
    )


def _request(pdf: bytes, **overrides) -> IngestionRequest:
    fields = {
        "source_type": "decree",
        "source_ref": "2-24-123",
        "pdf_base64": base64.b64encode(pdf).decode("ascii"),
    }
    fields.update(overrides)
    return IngestionRequest(**fields)


# ======================================================================
# Full-document mode
# ======================================================================


class TestFullDocument:
    @pytest.mark.asyncio
    async def test_large_document_split_into_sub_batches(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(_request(make_pdf(12)))

        assert fake_extraction.calls == [(1, 5), (6, 5), (11, 2)]
        assert result.success is True
        assert result.pages_processed == 12
        assert result.total_pages == 12
        assert result.batch_start is None

        chunks = await memory_store.list_chunks(result.source_id)
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert result.chunks_created == len(chunks)
        assert {c.page_number for c in chunks} >= {1, 12}
        assert memory_store.sources[result.source_id].total_chunks == len(chunks)

        full_text = memory_store.sources[result.source_id].full_text
        positions = [full_text.index(f"Dispositions applicables à la page {n}.") for n in range(1, 13)]
        assert positions == sorted(positions)
        assert full_text.count(PAGE_SEPARATOR) == 11

    @pytest.mark.asyncio
    async def test_small_document_single_call(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(_request(make_pdf(3)))

        assert fake_extraction.calls == [(1, 3)]
        assert result.pages_processed == 3

    @pytest.mark.asyncio
    async def test_reingest_replaces_chunks(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        first = await service.ingest(_request(make_pdf(6)))
        second = await service.ingest(_request(make_pdf(2)))

        assert second.source_id == first.source_id
        chunks = await memory_store.list_chunks(second.source_id)
        assert {c.page_number for c in chunks} <= {1, 2}

    @pytest.mark.asyncio
    async def test_reingest_does_not_duplicate_evidence(
        self, fake_extraction, fake_embeddings, no_sleep, make_pdf, tmp_path
    ) -> None:
        store = SQLiteMetadataStore(db_path=tmp_path / "legal.db")
        await store.initialize()
        service = _service(fake_extraction, fake_embeddings, store, no_sleep)

        first = await service.ingest(_request(make_pdf(3)))
        before = await store.list_evidence(first.source_id)
        second = await service.ingest(_request(make_pdf(3)))
        after = await store.list_evidence(second.source_id)

        assert second.source_id == first.source_id
        assert len(before) == first.evidence_created > 0
        assert sorted(r.national_code or r.hs_code_6 for r in after) == sorted(
            r.national_code or r.hs_code_6 for r in before
        )

    @pytest.mark.asyncio
    async def test_reingest_drops_evidence_no_longer_in_document(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        await service.ingest(_request(make_pdf(3)))
        result = await service.ingest(_request(make_pdf(1)))

        national = {r.national_code for r in await memory_store.list_evidence(result.source_id)}
        assert "8471300003" not in national
        assert "8471300001" in national

    @pytest.mark.asyncio
    async def test_codes_recorded_as_evidence(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(_request(make_pdf(2)))

        national = {row.national_code for row in memory_store.evidence}
        assert {"8471300001", "8471300002"} <= national
        assert result.evidence_created == len(memory_store.evidence)
        assert all(row.source_id == result.source_id for row in memory_store.evidence)

    @pytest.mark.asyncio
    async def test_code_detection_can_be_disabled(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(_request(make_pdf(2), detect_hs_codes=False))

        assert result.detected_codes_count == 0
        assert memory_store.evidence == []


# ======================================================================
# Batch mode
# ======================================================================


class TestBatchMode:
    @staticmethod
    async def _seed(store, chunk_count: int) -> int:
        source_id = await store.upsert_source(
            LegalSource(source_type="decree", source_ref="2-24-123", full_text="premier lot")
        )
        await store.replace_chunks(
            source_id,
            [
                TextChunk(chunk_index=i, text=f"old {i}", page_number=1, source_id=source_id)
                for i in range(chunk_count)
            ],
        )
        return source_id

    @pytest.mark.asyncio
    async def test_append_continues_chunk_indices(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        source_id = await self._seed(memory_store, 8)
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(
            _request(make_pdf(12), batch_mode=True, start_page=6, end_page=10, source_id=source_id)
        )

        assert fake_extraction.calls == [(6, 5)]
        assert result.source_id == source_id
        assert (result.batch_start, result.batch_end) == (6, 10)

        chunks = await memory_store.list_chunks(source_id)
        assert [c.text for c in chunks[:8]] == [f"old {i}" for i in range(8)]
        new_indices = [c.chunk_index for c in chunks[8:]]
        assert new_indices == list(range(8, 8 + result.chunks_created))
        assert all(6 <= c.page_number <= 10 for c in chunks[8:])

        source = memory_store.sources[source_id]
        assert source.full_text.startswith("premier lot" + BATCH_SEPARATOR)
        assert source.total_chunks == len(chunks)

    @pytest.mark.asyncio
    async def test_end_page_clamped_to_document(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        source_id = await self._seed(memory_store, 1)
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(
            _request(make_pdf(12), batch_mode=True, start_page=11, end_page=15, source_id=source_id)
        )

        assert fake_extraction.calls == [(11, 2)]
        assert result.batch_end == 12
        assert result.pages_processed == 2

    @pytest.mark.asyncio
    async def test_first_batch_without_source_creates_one(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(
            _request(make_pdf(12), batch_mode=True, start_page=1, end_page=5)
        )

        assert result.source_id in memory_store.sources
        chunks = await memory_store.list_chunks(result.source_id)
        assert chunks[0].chunk_index == 0

    @pytest.mark.asyncio
    async def test_start_beyond_document_is_already_complete(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        source_id = await self._seed(memory_store, 3)
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(
            _request(make_pdf(12), batch_mode=True, start_page=16, end_page=20, source_id=source_id)
        )

        assert result.already_complete is True
        assert result.chunks_created == 0
        assert result.total_pages == 12
        assert fake_extraction.calls == []
        assert await memory_store.count_chunks(source_id) == 3
        assert memory_store.sources[source_id].full_text == "premier lot"

    @pytest.mark.asyncio
    async def test_unknown_source_rejected(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        with pytest.raises(ValidationError, match="Source 42 introuvable"):
            await service.ingest(
                _request(make_pdf(12), batch_mode=True, start_page=6, end_page=10, source_id=42)
            )
        assert fake_extraction.calls == []


# ======================================================================
# Validation
# ======================================================================


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "fields, message",
        [
            ({"source_type": "", "source_ref": "1", "raw_text": "x"}, "source_type et source_ref"),
            ({"source_type": "note", "source_ref": "1"}, "pdf_base64, pdf_url ou raw_text"),
            (
                {
                    "source_type": "note",
                    "source_ref": "1",
                    "raw_text": "x",
                    "batch_mode": True,
                    "start_page": 8,
                    "end_page": 3,
                },
                "Plage de pages invalide",
            ),
            (
                {"source_type": "note", "source_ref": "1", "pdf_base64": "pas du base64 !"},
                "pdf_base64 invalide",
            ),
            (
                {"source_type": "note", "source_ref": "1", "raw_text": "x", "batch_mode": True,
                 "start_page": 1},
                "batch_mode exige start_page et end_page",
            ),
            (
                {"source_type": "note", "source_ref": "1", "raw_text": "x", "batch_mode": True},
                "batch_mode exige start_page et end_page",
            ),
            (
                {"source_type": "note", "source_ref": "1", "raw_text": "x", "start_page": 6,
                 "end_page": 10},
                "start_page et end_page exigent batch_mode",
            ),
            (
                {"source_type": "note", "source_ref": "1", "raw_text": "x", "batch_mode": True,
                 "start_page": 0, "end_page": 5},
                "Plage de pages invalide",
            ),
        ],
    )
    async def test_rejected_requests(
        self, fake_extraction, memory_store, no_sleep, fields, message
    ) -> None:
        service = _service(fake_extraction, None, memory_store, no_sleep)

        with pytest.raises(ValidationError, match=message):
            await service.ingest(IngestionRequest(**fields))
        assert memory_store.sources == {}



# ======================================================================
# URL downloads
# ======================================================================


class TestDownload:
    @pytest.mark.asyncio
    async def test_download_timeouts_share_invocation_ceiling(
        self, fake_extraction, memory_store, no_sleep, make_pdf
    ) -> None:
        caller = AsyncMock()
        caller.call.return_value = httpx.Response(200, content=make_pdf(2))
        service = _service(
            fake_extraction, None, memory_store, no_sleep,
            caller=caller, invocation_timeout_ms=150_000,
        )

        result = await service.ingest(
            IngestionRequest(
                source_type="circular", source_ref="4601/311", pdf_url="https://example.org/c.pdf"
            )
        )

        assert result.pages_processed == 2
        config = caller.call.await_args.args[2]
        assert config.timeout_ms * (config.max_retries + 1) < 150_000

    @pytest.mark.asyncio
    async def test_download_timeout_without_ceiling(
        self, fake_extraction, memory_store, no_sleep, make_pdf
    ) -> None:
        caller = AsyncMock()
        caller.call.return_value = httpx.Response(200, content=make_pdf(1))
        service = _service(fake_extraction, None, memory_store, no_sleep, caller=caller)

        await service.ingest(
            IngestionRequest(source_type="note", source_ref="7", pdf_url="https://example.org/n.pdf")
        )

        assert caller.call.await_args.args[2].timeout_ms == 60_000

    @pytest.mark.asyncio
    async def test_failed_download_raises_extraction_error(
        self, fake_extraction, memory_store, no_sleep
    ) -> None:
        caller = AsyncMock()
        caller.call.return_value = httpx.Response(404)
        service = _service(fake_extraction, None, memory_store, no_sleep, caller=caller)

        with pytest.raises(ExtractionError, match="HTTP 404"):
            await service.ingest(
                IngestionRequest(source_type="note", source_ref="7", pdf_url="https://example.org/x")
            )
        assert memory_store.sources == {}


# ======================================================================
# Raw text, embeddings, summaries
# ======================================================================


class TestRawTextAndEmbeddings:
    @pytest.mark.asyncio
    async def test_raw_text_is_single_page(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, sample_circular
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(
            IngestionRequest(source_type="circular", source_ref="provisoire", raw_text=sample_circular)
        )

        assert fake_extraction.calls == []
        assert result.total_pages == 1
        source = memory_store.sources[result.source_id]
        assert source.source_ref == "4601/311"
        assert source.source_date == "2024-03-15"
        assert source.title.startswith("Classement tarifaire")
        assert "8471300000" in {row.national_code for row in memory_store.evidence}

    @pytest.mark.asyncio
    async def test_chunks_embedded(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, sample_circular
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(
            IngestionRequest(source_type="circular", source_ref="x", raw_text=sample_circular)
        )

        chunks = await memory_store.list_chunks(result.source_id)
        assert all(c.embedding is not None and len(c.embedding) == 3 for c in chunks)

    @pytest.mark.asyncio
    async def test_embedding_failure_does_not_fail_ingestion(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, make_pdf
    ) -> None:
        fake_embeddings.fail = True
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(_request(make_pdf(2)))

        assert result.success is True
        chunks = await memory_store.list_chunks(result.source_id)
        assert chunks
        assert all(c.embedding is None for c in chunks)

    @pytest.mark.asyncio
    async def test_embeddings_skipped_when_disabled(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, sample_circular
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)

        result = await service.ingest(
            IngestionRequest(
                source_type="circular",
                source_ref="x",
                raw_text=sample_circular,
                generate_embeddings=False,
            )
        )

        assert fake_embeddings.calls == 0
        chunks = await memory_store.list_chunks(result.source_id)
        assert all(c.embedding is None for c in chunks)

    @pytest.mark.asyncio
    async def test_source_summary(
        self, fake_extraction, fake_embeddings, memory_store, no_sleep, sample_circular
    ) -> None:
        service = _service(fake_extraction, fake_embeddings, memory_store, no_sleep)
        result = await service.ingest(
            IngestionRequest(source_type="circular", source_ref="x", raw_text=sample_circular)
        )

        summary = await service.get_source_summary(result.source_id)

        assert summary.total_chunks == await memory_store.count_chunks(result.source_id)
        assert summary.full_text == ""
        assert await service.get_source_summary(999) is None
