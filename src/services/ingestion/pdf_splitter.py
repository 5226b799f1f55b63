"""Page discovery and page-range splitting for PDF payloads.

Uses PyMuPDF (fitz) to count pages and to copy a page range into a new,
smaller PDF that can be sent to the extraction service on its own.

Some scanned or malformed PDFs cannot be parsed.  For those the page count
is estimated from the raw bytes (``/Type /Page`` objects, then roughly one
page per 30 KB) and the document is reported as not splittable, so the
caller sends it whole in a single extraction call.
"""

from __future__ import annotations

import math
import re

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog
from pydantic import BaseModel, ConfigDict

from src.utils.errors import PipelineError, ValidationError

logger = structlog.get_logger(logger_name=__name__)

MAX_PDF_SIZE_BYTES = 15 * 1024 * 1024
_BYTES_PER_PAGE_ESTIMATE = 30_000
# "/Type /Page" or "/Type/Page", but not the "/Type /Pages" tree node.
_PAGE_OBJECT = re.compile(rb"/Type\s*/Page(?!s)")


class PdfInfo(BaseModel):
    """What is known about a PDF before extraction."""

    model_config = ConfigDict(frozen=True)

    page_count: int
    splittable: bool
    size_bytes: int


def estimate_page_count(data: bytes) -> int:
    """Estimate the page count of a PDF PyMuPDF could not open."""
    count = len(_PAGE_OBJECT.findall(data))
    if count > 0:
        logger.info("page_count_estimated", method="page_objects", pages=count)
        return count
    estimated = max(1, math.ceil(len(data) / _BYTES_PER_PAGE_ESTIMATE))
    logger.info("page_count_estimated", method="size", pages=estimated, size_kb=len(data) // 1024)
    return estimated


class PdfSplitter:
    """Counts and splits PDF documents held in memory.

    Parameters
    ----------
    max_size_bytes:
        Documents larger than this are rejected before parsing.
    """

    def __init__(self, max_size_bytes: int = MAX_PDF_SIZE_BYTES) -> None:
        self._max_size_bytes = max_size_bytes

    def check_size(self, data: bytes) -> None:
        """Raise :class:`ValidationError` when *data* exceeds the size cap."""
        if len(data) > self._max_size_bytes:
            raise ValidationError(
                message=(
                    f"PDF trop volumineux ({len(data) / 1024 / 1024:.1f}MB). "
                    f"Max: {self._max_size_bytes / 1024 / 1024:.0f}MB"
                ),
                provider_name="pdf_splitter",
            )

    def inspect(self, data: bytes) -> PdfInfo:
        """Return the page count and whether the document can be split."""
        self.check_size(data)
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                page_count = doc.page_count
        except (RuntimeError, ValueError) as exc:
            logger.warning("pdf_parse_failed", error=str(exc), size_kb=len(data) // 1024)
            return PdfInfo(
                page_count=estimate_page_count(data),
                splittable=False,
                size_bytes=len(data),
            )
        return PdfInfo(page_count=page_count, splittable=True, size_bytes=len(data))

    def split(self, data: bytes, start_page: int, end_page: int) -> bytes:
        """Return a new PDF holding pages *start_page*..*end_page* (1-based, inclusive).

        The range is clamped to the document.

        Raises
        ------
        PipelineError
            If the range lies outside the document or PyMuPDF fails.
        """
        try:
            with fitz.open(stream=data, filetype="pdf") as src:
                total = src.page_count
                first = max(0, start_page - 1)
                last = min(total - 1, end_page - 1)
                if first > last or first >= total:
                    raise PipelineError(
                        message=f"Page range {start_page}-{end_page} out of bounds (total: {total})",
                        provider_name="pdf_splitter",
                    )
                with fitz.open() as out:
                    out.insert_pdf(src, from_page=first, to_page=last)
                    part = out.tobytes(garbage=3, deflate=True)
        except (RuntimeError, ValueError) as exc:
            raise PipelineError(
                message=f"PDF split failed: {exc}",
                provider_name="pdf_splitter",
            ) from exc

        logger.debug(
            "pdf_split",
            start_page=first + 1,
            end_page=last + 1,
            total_pages=total,
            size_kb=len(part) // 1024,
        )
        return part


def page_ranges(first_page: int, last_page: int, pages_per_batch: int) -> list[tuple[int, int]]:
    """Consecutive inclusive ranges covering *first_page*..*last_page*.

    ``page_ranges(1, 12, 5)`` -> ``[(1, 5), (6, 10), (11, 12)]``.
    """
    if pages_per_batch < 1:
        raise ValueError("pages_per_batch must be >= 1")
    ranges: list[tuple[int, int]] = []
    current = first_page
    while current <= last_page:
        end = min(current + pages_per_batch - 1, last_page)
        ranges.append((current, end))
        current = end + 1
    return ranges
