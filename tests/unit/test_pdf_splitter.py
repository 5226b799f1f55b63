"""Unit tests for PdfSplitter and page_ranges."""

from __future__ import annotations

from collections.abc import Callable

import fitz  # PyMuPDF
import pytest

from src.services.ingestion.pdf_splitter import PdfSplitter, estimate_page_count, page_ranges
from src.utils.errors import PipelineError, ValidationError


def _page_count(data: bytes) -> int:
    with fitz.open(stream=data, filetype="pdf") as doc:
        return doc.page_count


class TestPageRanges:
    def test_even_and_remainder(self) -> None:
        assert page_ranges(1, 12, 5) == [(1, 5), (6, 10), (11, 12)]

    def test_window_inside_document(self) -> None:
        assert page_ranges(6, 10, 5) == [(6, 10)]

    def test_single_page(self) -> None:
        assert page_ranges(3, 3, 5) == [(3, 3)]

    def test_empty_when_first_after_last(self) -> None:
        assert page_ranges(4, 3, 5) == []

    def test_rejects_zero_batch(self) -> None:
        with pytest.raises(ValueError):
            page_ranges(1, 10, 0)


class TestInspect:
    def test_parses_page_count(self, make_pdf: Callable[[int], bytes]) -> None:
        data = make_pdf(3)
        info = PdfSplitter().inspect(data)

        assert info.page_count == 3
        assert info.splittable is True
        assert info.size_bytes == len(data)

    def test_size_cap(self) -> None:
        splitter = PdfSplitter(max_size_bytes=10)
        with pytest.raises(ValidationError, match="PDF trop volumineux"):
            splitter.inspect(b"x" * 11)

    def test_unparseable_document_is_estimated(self) -> None:
        data = b"this is not a pdf /Type /Page /Type /Pages /Type/Page"
        info = PdfSplitter().inspect(data)

        assert info.splittable is False
        assert info.page_count == 2


class TestEstimatePageCount:
    def test_counts_page_objects_not_tree_nodes(self) -> None:
        assert estimate_page_count(b"/Type /Pages /Type /Page /Type/Page /Type /Page") == 3

    def test_falls_back_to_size(self) -> None:
        assert estimate_page_count(b"\0" * 65_000) == 3
        assert estimate_page_count(b"") == 1


class TestSplit:
    def test_extracts_requested_range(self, make_pdf: Callable[[int], bytes]) -> None:
        part = PdfSplitter().split(make_pdf(12), 6, 10)

        assert _page_count(part) == 5
        with fitz.open(stream=part, filetype="pdf") as doc:
            assert "Page 6" in doc[0].get_text()
            assert "Page 10" in doc[4].get_text()

    def test_end_clamped_to_document(self, make_pdf: Callable[[int], bytes]) -> None:
        assert _page_count(PdfSplitter().split(make_pdf(3), 2, 99)) == 2

    def test_out_of_bounds(self, make_pdf: Callable[[int], bytes]) -> None:
        with pytest.raises(PipelineError, match="out of bounds"):
            PdfSplitter().split(make_pdf(3), 5, 8)

    def test_broken_pdf(self) -> None:
        with pytest.raises(PipelineError, match="PDF split failed"):
            PdfSplitter().split(b"not a pdf", 1, 2)
