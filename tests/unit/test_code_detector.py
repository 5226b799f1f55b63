"""Unit tests for src.services.codes.detector."""

from __future__ import annotations

from src.models.legal import DetectedCode, ExtractedPage
from src.services.codes.detector import (
    CodeDetector,
    build_evidence_rows,
    extract_mentioned_codes,
)


def _page(text: str, number: int = 1) -> ExtractedPage:
    return ExtractedPage(page_number=number, text=text)


class TestCodeDetector:
    def test_detects_codes_in_circular(self, sample_circular: str) -> None:
        codes = CodeDetector().detect([_page(sample_circular, 3)])

        national = {c.national_code for c in codes if c.national_code}
        hs6 = {c.hs_code_6 for c in codes if c.hs_code_6}
        assert national == {"8471300000", "0101210000"}
        assert "847130" in hs6
        assert all(c.page_number == 3 for c in codes)

    def test_dotted_national_line(self) -> None:
        codes = CodeDetector().detect([_page("Le bateau relève du 8903.11.00.00 du tarif.")])
        assert codes[0].raw == "8903.11.00.00"
        assert codes[0].national_code == "8903110000"
        assert codes[0].hs_code_6 == "890311"

    def test_fragments_of_dotted_line_not_reported(self) -> None:
        codes = CodeDetector().detect([_page("Le bateau relève du 8903.11.00.00 du tarif.")])

        assert [(c.hs_code_6, c.national_code) for c in codes] == [("890311", "8903110000")]

    def test_fragments_of_spaced_line_not_reported(self) -> None:
        codes = CodeDetector().detect([_page("Position 89 03 11 00 00 : yachts à voile.")])

        assert [c.national_code for c in codes] == ["8903110000"]
        rows = build_evidence_rows(codes, country_code="MA", source_id=1)
        assert [(r.hs_code_6, r.national_code) for r in rows] == [("890311", "8903110000")]

    def test_repeated_line_fragments_not_reported(self) -> None:
        text = "Le 8903.11.00.00 vise les yachts ; le 8903.11.00.00 reste inchangé."
        codes = CodeDetector().detect([_page(text)])

        assert [c.raw for c in codes] == ["8903.11.00.00"]

    def test_short_codes_never_become_national(self) -> None:
        codes = CodeDetector().detect([_page("Position 8903.11 : bateaux de plaisance.")])
        assert codes[0].hs_code_6 == "890311"
        assert codes[0].national_code is None

    def test_years_skipped(self) -> None:
        codes = CodeDetector().detect([_page("Loi de finances 2024 - dispositions diverses")])
        assert codes == []

    def test_same_digits_reported_once(self) -> None:
        pages = [_page("code 8471300000 ici", 1), _page("encore 8471300000 ici", 2)]
        codes = CodeDetector().detect(pages)
        assert len(codes) == 1
        assert codes[0].page_number == 1

    def test_context_collapses_whitespace(self) -> None:
        codes = CodeDetector(context_radius=10).detect(
            [_page("avant\n\n   le code 8471300000   \n  puis après")]
        )
        assert "\n" not in codes[0].context
        assert "8471300000" in codes[0].context


class TestBuildEvidenceRows:
    def test_keeps_longest_context_per_key(self) -> None:
        codes = [
            DetectedCode(raw="8471300000", hs_code_6="847130", national_code="8471300000",
                         page_number=1, context="court"),
            DetectedCode(raw="8471.30.00.00", hs_code_6="847130", national_code="8471300000",
                         page_number=2, context="un contexte nettement plus long"),
        ]

        rows = build_evidence_rows(codes, country_code="MA", source_id=7)

        assert len(rows) == 1
        assert rows[0].page_number == 2
        assert rows[0].source_id == 7
        assert rows[0].confidence == "auto_detected_10"

    def test_hs6_only_rows_and_skips(self) -> None:
        codes = [
            DetectedCode(raw="8471.30", hs_code_6="847130", page_number=1, context="x"),
            DetectedCode(raw="8471", page_number=1, context="heading only"),
        ]

        rows = build_evidence_rows(codes, country_code="MA", source_id=1)

        assert len(rows) == 1
        assert rows[0].national_code is None
        assert rows[0].hs_code_6 == "847130"
        assert rows[0].confidence == "auto_detected_6"

    def test_empty(self) -> None:
        assert build_evidence_rows([], country_code="MA", source_id=1) == []


class TestExtractMentionedCodes:
    def test_plain_and_formatted(self) -> None:
        codes = extract_mentioned_codes("voir 8471300000 et 8471.30.00 ainsi que 84.71")
        assert codes == ["8471300000", "84713000"]

    def test_capped_at_twenty(self) -> None:
        text = " ".join(f"84713000{i:02d}" for i in range(25))
        assert len(extract_mentioned_codes(text)) == 20
