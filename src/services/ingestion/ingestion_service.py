"""Orchestrator for the regulatory document ingestion pipeline.

Pipeline stages: **resolve -> count -> extract -> chunk -> detect -> store**.

The :class:`IngestionService` implements the **Orchestrator pattern**: it
coordinates the extraction provider, chunker, code detector, embedding
provider and metadata store without any of them knowing about each other.

Large PDFs are the reason this module exists.  One invocation must finish
under a hard execution-time ceiling, so documents above the per-call page
cap are split into consecutive sub-documents that are extracted one after
the other.  Documents too large even for that are driven by an external
caller in **batch mode**: each invocation passes ``start_page`` /
``end_page`` plus the ``source_id`` created by the first batch, and the
resulting text and chunks are appended to that source instead of
replacing it.

Every outbound call is protected: extraction and embeddings run under
named circuits of the shared :class:`CircuitBreakerRegistry`; embeddings
and store writes go through :func:`with_retry`; URL downloads go through
the :class:`ResilientCaller`.  Embedding failures never fail ingestion.

All dependencies are injected via constructor (Dependency Injection), so
providers can be swapped in tests without network access.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from src.models.legal import (
    ExtractedPage,
    IngestionRequest,
    IngestionResult,
    LegalSource,
    TextChunk,
)
from src.models.resilience import RetryConfig
from src.resilience.circuit_breaker import CircuitBreakerRegistry
from src.resilience.retry import Sleeper, cap_timeout, get_retry_preset, with_retry
from src.services.codes.detector import CodeDetector, build_evidence_rows
from src.services.ingestion.chunker import TextChunker
from src.services.ingestion.document_metadata import extract_document_metadata
from src.services.ingestion.pdf_splitter import PdfSplitter, page_ranges
from src.utils.errors import (
    ConfigurationError,
    EmbeddingError,
    ExtractionError,
    RegDocError,
    StorageError,
    ValidationError,
)

if TYPE_CHECKING:
    from src.interfaces.embedding_provider import IEmbeddingProvider
    from src.interfaces.extraction_provider import IExtractionProvider
    from src.interfaces.metadata_store import IMetadataStore
    from src.resilience.retry import ResilientCaller

logger = structlog.get_logger(logger_name=__name__)

PAGE_SEPARATOR = "\n\n---PAGE---\n\n"
BATCH_SEPARATOR = "\n\n---BATCH---\n\n"

EXTRACTION_CIRCUIT = "extraction"
EMBEDDINGS_CIRCUIT = "embeddings"

_EMBEDDING_INPUT_CHARS = 8000
_DOWNLOAD_TIMEOUT_MS = 60_000


class IngestionService:
    """Ingests one document (or one page batch of it) into the knowledge base.

    Parameters
    ----------
    extraction_provider:
        Turns PDF bytes into per-page text, tables and image descriptions.
    embedding_provider:
        Optional; when ``None`` chunks are stored without embeddings.
    metadata_store:
        Persists sources, chunks and code evidence.
    chunker / detector / splitter:
        Pure helpers; defaults are built when omitted.
    caller:
        Resilient HTTP caller used to download ``pdf_url`` payloads.
    circuit_breakers:
        Shared registry holding the ``extraction`` and ``embeddings`` circuits.
    pages_per_batch:
        Maximum pages sent to the extraction provider in one call.
    store_retry / embedding_retry:
        Retry policies; default to the ``metadata_store`` and ``embeddings``
        presets.
    invocation_timeout_ms:
        Wall-clock ceiling of the hosting invocation.  ``pdf_url`` downloads
        share it across every attempt; ``None`` means no ceiling.
    sleep:
        Backoff sleep, injectable so tests never wait.
    """

    def __init__(
        self,
        extraction_provider: IExtractionProvider,
        embedding_provider: IEmbeddingProvider | None,
        metadata_store: IMetadataStore,
        chunker: TextChunker | None = None,
        detector: CodeDetector | None = None,
        splitter: PdfSplitter | None = None,
        caller: ResilientCaller | None = None,
        circuit_breakers: CircuitBreakerRegistry | None = None,
        pages_per_batch: int = 5,
        store_retry: RetryConfig | None = None,
        embedding_retry: RetryConfig | None = None,
        invocation_timeout_ms: int | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if pages_per_batch < 1:
            raise ValueError("pages_per_batch must be >= 1")
        self._extraction_provider = extraction_provider
        self._embedding_provider = embedding_provider
        self._store = metadata_store
        self._chunker = chunker or TextChunker()
        self._detector = detector or CodeDetector()
        self._splitter = splitter or PdfSplitter()
        self._caller = caller
        self._breakers = circuit_breakers or CircuitBreakerRegistry()
        self._pages_per_batch = pages_per_batch
        self._store_retry = store_retry or get_retry_preset("metadata_store")
        self._embedding_retry = embedding_retry or get_retry_preset("embeddings")
        self._download_retry = cap_timeout(
            get_retry_preset("extraction", timeout_ms=_DOWNLOAD_TIMEOUT_MS),
            invocation_timeout_ms,
            per_attempt=False,
        )
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(self, request: IngestionRequest) -> IngestionResult:
        """Run the full pipeline for *request*.

        Returns
        -------
        IngestionResult
            Counts for this invocation.  In batch mode a ``start_page``
            beyond the document's last page yields ``already_complete=True``
            with zero counts and no writes.

        Raises
        ------
        ValidationError
            Missing fields, an invalid page range, an oversized PDF, or a
            batch append against an unknown ``source_id``.
        ExtractionError / CircuitOpenError / StorageError
            When a dependency fails after its retry allowance.
        """
        start = time.monotonic()
        self._validate(request)

        append_mode = request.is_batch and request.source_id is not None
        if append_mode:
            existing = await self._store_call(
                "get_source", lambda: self._store.get_source(request.source_id)
            )
            if existing is None:
                raise ValidationError(message=f"Source {request.source_id} introuvable")

        # Steps 1-3: resolve the payload, count pages, extract.
        if request.raw_text:
            total_pages = 1
            first, last = self._page_window(request, total_pages)
            if first > total_pages:
                return self._already_complete(request, total_pages, start)
            pages = [ExtractedPage(page_number=1, text=request.raw_text)]
        else:
            document = await self._resolve_document(request)
            info = self._splitter.inspect(document)
            total_pages = info.page_count
            first, last = self._page_window(request, total_pages)
            if first > total_pages:
                return self._already_complete(request, total_pages, start)
            pages = await self._extract_pages(document, first, last, total_pages, info.splittable)

        logger.info(
            "pages_extracted",
            source_ref=request.source_ref,
            pages=len(pages),
            total_pages=total_pages,
            batch_start=first if request.is_batch else None,
            batch_end=last if request.is_batch else None,
        )

        # Step 4: assemble text and create / extend the source.
        full_text = PAGE_SEPARATOR.join(page.text for page in pages)
        if append_mode:
            source_id = request.source_id
            await self._store_call(
                "append_source_text",
                lambda: self._store.append_source_text(source_id, full_text, BATCH_SEPARATOR),
            )
            max_index = await self._store_call(
                "get_max_chunk_index", lambda: self._store.get_max_chunk_index(source_id)
            )
            start_index = 0 if max_index is None else max_index + 1
        else:
            source = self._build_source(request, full_text)
            source_id = await self._store_call("upsert_source", lambda: self._store.upsert_source(source))
            start_index = 0

        # Step 5: chunk, embed, store.
        chunks = self._chunker.chunk(pages, start_index=start_index)
        if request.generate_embeddings and self._embedding_provider is not None:
            chunks = await self._embed_chunks(chunks)
        chunks = [chunk.model_copy(update={"source_id": source_id}) for chunk in chunks]

        if append_mode:
            created = await self._store_call(
                "append_chunks", lambda: self._store.append_chunks(source_id, chunks)
            )
        else:
            created = await self._store_call(
                "replace_chunks", lambda: self._store.replace_chunks(source_id, chunks)
            )
            # A re-ingested document is re-scanned in full below.
            await self._store_call(
                "delete_evidence", lambda: self._store.delete_evidence(source_id)
            )

        # Step 6: detect codes and record evidence.
        codes = self._detector.detect(pages) if request.detect_hs_codes else []
        evidence = build_evidence_rows(codes, request.country_code, source_id)
        evidence_created = 0
        if evidence:
            evidence_created = await self._store_call(
                "insert_evidence", lambda: self._store.insert_evidence(evidence)
            )

        total_chunks = await self._store_call("count_chunks", lambda: self._store.count_chunks(source_id))
        await self._store_call(
            "update_total_chunks", lambda: self._store.update_total_chunks(source_id, total_chunks)
        )

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            "ingestion_complete",
            source_id=source_id,
            source_ref=request.source_ref,
            mode="append" if append_mode else "replace",
            pages_processed=len(pages),
            chunks_created=created,
            total_chunks=total_chunks,
            detected_codes=len(codes),
            evidence_created=evidence_created,
            duration_ms=round(duration_ms),
        )

        return IngestionResult(
            success=True,
            source_id=source_id,
            pages_processed=len(pages),
            chunks_created=created,
            detected_codes_count=len(codes),
            evidence_created=evidence_created,
            total_pages=total_pages,
            batch_start=first if request.is_batch else None,
            batch_end=last if request.is_batch else None,
            duration_ms=duration_ms,
        )

    async def get_source_summary(self, source_id: int) -> LegalSource | None:
        """Return the stored source with an up-to-date chunk count, or ``None``."""
        source = await self._store_call("get_source", lambda: self._store.get_source(source_id))
        if source is None:
            return None
        count = await self._store_call("count_chunks", lambda: self._store.count_chunks(source_id))
        return source.model_copy(update={"total_chunks": count, "full_text": ""})

    # ------------------------------------------------------------------
    # Validation / payload resolution
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(request: IngestionRequest) -> None:
        if not request.source_type or not request.source_ref:
            raise ValidationError(message="source_type et source_ref sont requis")
        if not (request.pdf_base64 or request.pdf_url or request.raw_text):
            raise ValidationError(message="pdf_base64, pdf_url ou raw_text est requis")
        has_range = request.start_page is not None and request.end_page is not None
        if request.batch_mode and not has_range:
            raise ValidationError(message="batch_mode exige start_page et end_page")
        if not request.batch_mode and (
            request.start_page is not None or request.end_page is not None
        ):
            raise ValidationError(message="start_page et end_page exigent batch_mode")
        if request.batch_mode:
            if request.start_page < 1 or request.start_page > request.end_page:
                raise ValidationError(
                    message=(
                        f"Plage de pages invalide: {request.start_page}-{request.end_page} "
                        "(start_page doit être >= 1 et <= end_page)"
                    )
                )

    def _page_window(self, request: IngestionRequest, total_pages: int) -> tuple[int, int]:
        """Clamp the requested batch range to the document; full mode covers every page."""
        if not request.is_batch:
            return 1, total_pages
        return max(1, request.start_page), min(request.end_page, total_pages)

    async def _resolve_document(self, request: IngestionRequest) -> bytes:
        if request.pdf_base64:
            try:
                return base64.b64decode(request.pdf_base64, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValidationError(message="pdf_base64 invalide") from exc
        assert request.pdf_url is not None
        return await self._download(request.pdf_url)

    async def _download(self, url: str) -> bytes:
        if self._caller is None:
            raise ConfigurationError(message="No HTTP caller configured for pdf_url downloads")
        try:
            response = await self._caller.call(
                "GET",
                url,
                self._download_retry,
                target="pdf_download",
                follow_redirects=True,
            )
        except httpx.HTTPError as exc:
            raise ExtractionError(
                message=f"Failed to fetch PDF: {exc}",
                provider_name="pdf_download",
            ) from exc
        if not response.is_success:
            raise ExtractionError(
                message=f"Failed to fetch PDF: HTTP {response.status_code}",
                provider_name="pdf_download",
                status_code=response.status_code,
            )
        logger.info("pdf_downloaded", url=url, size_kb=len(response.content) // 1024)
        return response.content

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def _extract_pages(
        self,
        document: bytes,
        first: int,
        last: int,
        total_pages: int,
        splittable: bool,
    ) -> list[ExtractedPage]:
        """Extract pages *first*..*last*, at most ``pages_per_batch`` per call.

        A document PyMuPDF cannot parse is sent whole in one call; in batch
        mode only the pages inside the requested window are kept.
        """
        if not splittable:
            logger.warning("pdf_not_splittable", estimated_pages=total_pages)
            pages = await self._extract_part(document, 1)
            if first == 1 and last == total_pages:
                return pages
            return [p for p in pages if first <= p.page_number <= last]

        whole_document = first == 1 and last == total_pages
        if whole_document and total_pages <= self._pages_per_batch:
            return await self._extract_part(document, 1)

        pages: list[ExtractedPage] = []
        ranges = page_ranges(first, last, self._pages_per_batch)
        for index, (range_start, range_end) in enumerate(ranges, start=1):
            logger.info(
                "extraction_sub_batch",
                batch=index,
                batches=len(ranges),
                start_page=range_start,
                end_page=range_end,
            )
            part = self._splitter.split(document, range_start, range_end)
            pages.extend(await self._extract_part(part, range_start))
        return pages

    async def _extract_part(self, document: bytes, start_page: int) -> list[ExtractedPage]:
        return await self._breakers.wrap(
            EXTRACTION_CIRCUIT,
            lambda: self._extraction_provider.extract(document, start_page=start_page),
        )

    # ------------------------------------------------------------------
    # Embeddings (best effort)
    # ------------------------------------------------------------------

    async def _embed_chunks(self, chunks: list[TextChunk]) -> list[TextChunk]:
        embedded: list[TextChunk] = []
        failures = 0
        for chunk in chunks:
            vector = await self._embed_one(chunk)
            if vector is None:
                failures += 1
            embedded.append(chunk.model_copy(update={"embedding": vector}))
        if failures:
            logger.warning("embeddings_degraded", failed=failures, total=len(chunks))
        return embedded

    async def _embed_one(self, chunk: TextChunk) -> list[float] | None:
        text = chunk.contextual_text[:_EMBEDDING_INPUT_CHARS]
        try:
            return await self._breakers.wrap(EMBEDDINGS_CIRCUIT, lambda: self._embed_with_retry(text))
        except RegDocError as exc:
            logger.warning("embedding_failed", chunk_index=chunk.chunk_index, error=str(exc))
            return None

    async def _embed_with_retry(self, text: str) -> list[float]:
        assert self._embedding_provider is not None
        provider = self._embedding_provider
        result = await with_retry(
            lambda: provider.embed_single(text),
            self._embedding_retry,
            target=EMBEDDINGS_CIRCUIT,
            sleep=self._sleep,
        )
        if not result.success:
            raise EmbeddingError(
                message=result.error or "Embedding failed",
                provider_name=provider.get_provider_name(),
            ) from result.last_error
        return result.data

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    async def _store_call(self, operation: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run a metadata-store call under the store retry policy."""
        result = await with_retry(
            fn,
            self._store_retry,
            target=f"metadata_store.{operation}",
            sleep=self._sleep,
        )
        if result.success:
            return result.data
        if isinstance(result.last_error, RegDocError):
            raise result.last_error
        raise StorageError(
            message=f"{operation} failed: {result.error}",
            provider_name=self._store.get_provider_name(),
        ) from result.last_error

    @staticmethod
    def _build_source(request: IngestionRequest, full_text: str) -> LegalSource:
        """Fill missing ref / title / date / issuer from the document itself.

        A reference found in the document wins over the supplied one so the
        same circular is keyed identically however it was submitted.
        """
        meta = extract_document_metadata(full_text, request.source_type)
        return LegalSource(
            country_code=request.country_code,
            source_type=request.source_type,
            source_ref=meta.ref or request.source_ref,
            title=request.title or meta.title,
            issuer=request.issuer or meta.issuer,
            source_date=request.source_date or meta.date,
            source_url=request.source_url or request.pdf_url,
            full_text=full_text,
        )

    @staticmethod
    def _already_complete(
        request: IngestionRequest, total_pages: int, start: float
    ) -> IngestionResult:
        logger.info(
            "batch_already_complete",
            source_id=request.source_id,
            start_page=request.start_page,
            total_pages=total_pages,
        )
        return IngestionResult(
            success=True,
            source_id=request.source_id,
            total_pages=total_pages,
            batch_start=request.start_page,
            batch_end=request.end_page,
            already_complete=True,
            duration_ms=(time.monotonic() - start) * 1000,
        )
