"""Unit tests for the strict code validators in src.services.codes.normalizer."""

from __future__ import annotations

import pytest

from src.services.codes.normalizer import (
    clean_code,
    digits_only,
    extract_hs6,
    format_hs_code,
    get_hs_level,
    is_valid_hs6,
    is_valid_national_code,
    normalize_2_strict,
    normalize_4_strict,
    normalize_6_strict,
    normalize_10_strict,
    parse_detected_code,
)


class TestCleaning:
    def test_digits_only(self) -> None:
        assert digits_only("8903.11 00-00") == "8903110000"
        assert digits_only(None) == ""

    def test_clean_code_strips_separators(self) -> None:
        assert clean_code("8471.30") == "847130"
        assert clean_code("84 71–30") == "847130"
        assert clean_code("") == ""

    def test_clean_code_dash_separators(self) -> None:
        assert clean_code("8903–11–00") == "89031100"
        assert clean_code("8903—11-00") == "89031100"
        assert normalize_6_strict("8903–11") == "890311"


class TestStrictNormalizers:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("8903110000", "8903110000"),
            ("8903.11.00.00", "8903110000"),
            ("89 03 11 00 00", "8903110000"),
            ("890311", None),
            ("89031100001", None),
            ("0012345678", None),
            (None, None),
        ],
    )
    def test_normalize_10(self, raw: str | None, expected: str | None) -> None:
        assert normalize_10_strict(raw) == expected

    def test_normalize_6_never_pads_or_truncates(self) -> None:
        assert normalize_6_strict("8471.30") == "847130"
        assert normalize_6_strict("8471.3") is None
        assert normalize_6_strict("8471.30.00") is None

    def test_normalize_4_and_2(self) -> None:
        assert normalize_4_strict("84.71") == "8471"
        assert normalize_4_strict("847") is None
        assert normalize_2_strict("84") == "84"
        assert normalize_2_strict("00") is None
        assert normalize_2_strict("8") is None

    def test_validity_predicates(self) -> None:
        assert is_valid_national_code("8471.30.00.00") is True
        assert is_valid_national_code("847130") is False
        assert is_valid_hs6("847130") is True
        assert is_valid_hs6("8471300000") is False


class TestHierarchy:
    def test_extract_hs6_from_longer_code(self) -> None:
        assert extract_hs6("8903.11.00.00") == "890311"
        assert extract_hs6("84713000") == "847130"

    def test_extract_hs6_refuses_short_codes(self) -> None:
        assert extract_hs6("8903") is None
        assert extract_hs6("00123456") is None

    @pytest.mark.parametrize(
        "raw, level",
        [
            ("84", "chapter"),
            ("8471", "heading"),
            ("847130", "subheading"),
            ("84713000", "tariff_item"),
            ("8471300000", "national_line"),
        ],
    )
    def test_levels(self, raw: str, level: str) -> None:
        assert get_hs_level(raw) == level

    def test_format(self) -> None:
        assert format_hs_code("8471300000") == "8471.30.00.00"
        assert format_hs_code("84713000") == "8471.30.00"
        assert format_hs_code("847130") == "8471.30"
        assert format_hs_code("8471") == "84.71"
        assert format_hs_code("84") == "84"


class TestParseDetectedCode:
    def test_full_national_line(self) -> None:
        parsed = parse_detected_code("8471.30.00.00")
        assert parsed.national_code == "8471300000"
        assert parsed.hs_code_6 == "847130"
        assert parsed.level == "national_line"
        assert parsed.is_complete is True

    def test_subheading_has_no_national_code(self) -> None:
        parsed = parse_detected_code("847130")
        assert parsed.hs_code_6 == "847130"
        assert parsed.national_code is None
        assert parsed.is_complete is False

    def test_heading_has_neither(self) -> None:
        parsed = parse_detected_code("8471")
        assert parsed.hs_code_6 is None
        assert parsed.national_code is None
        assert parsed.level == "heading"
