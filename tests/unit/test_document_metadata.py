"""Unit tests for document-level metadata extraction."""

from __future__ import annotations

import pytest

from src.services.ingestion.document_metadata import (
    ADII,
    OFFICE_DES_CHANGES,
    extract_date,
    extract_document_metadata,
    extract_issuer,
    extract_reference,
    extract_title,
)


class TestReference:
    def test_circular_heading(self) -> None:
        assert extract_reference("CIRCULAIRE N° 4591 / 312\nObjet", "circular") == "4591/312"

    def test_type_specific_pattern(self) -> None:
        assert extract_reference("Décision n° 12/2023 relative à ...", "decision") == "12/2023"

    def test_other_types_tried_as_fallback(self) -> None:
        assert extract_reference("Décret n° 2-24-123 du 3 mars 2024", "circular") == "2-24-123"

    def test_no_reference(self) -> None:
        assert extract_reference("Texte sans numéro.", "note") is None


class TestTitle:
    def test_objet_line(self, sample_circular: str) -> None:
        assert extract_title(sample_circular) == (
            "Classement tarifaire des appareils de traitement de l'information"
        )

    def test_spaced_letters(self) -> None:
        assert extract_title("O.B.J.E.T : Régime de l'admission temporaire\n") == (
            "Régime de l'admission temporaire"
        )

    def test_missing(self) -> None:
        assert extract_title("Aucun objet ici") is None


class TestDate:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Rabat, le 15 janvier 2024", "2024-01-15"),
            ("en date du 3 août 2019", "2019-08-03"),
            ("Fait le 05/06/2022", "2022-06-05"),
            ("الرباط في 12 ماي 2021", "2021-05-12"),
            ("Version 2023-11-30", "2023-11-30"),
        ],
    )
    def test_formats(self, text: str, expected: str) -> None:
        assert extract_date(text) == expected

    def test_out_of_range_year_skipped(self) -> None:
        assert extract_date("le 1 mars 1998") is None

    def test_impossible_date_falls_through(self) -> None:
        assert extract_date("le 31 février 2024, diffusée le 01/03/2024") == "2024-03-01"


class TestIssuer:
    def test_customs(self, sample_circular: str) -> None:
        assert extract_issuer(sample_circular) == ADII

    def test_arabic_customs(self) -> None:
        assert extract_issuer("إدارة الجمارك والضرائب غير المباشرة") == ADII

    def test_exchange_office(self) -> None:
        assert extract_issuer("OFFICE DES CHANGES\nCirculaire") == OFFICE_DES_CHANGES

    def test_unknown(self) -> None:
        assert extract_issuer("Une société privée") is None


def test_extract_document_metadata(sample_circular: str) -> None:
    metadata = extract_document_metadata(sample_circular, "circular")

    assert metadata.ref == "4601/311"
    assert metadata.title.startswith("Classement tarifaire")
    assert metadata.date == "2024-03-15"
    assert metadata.issuer == ADII
