"""Unit tests for src.resilience.json_parser."""

from __future__ import annotations

import json

from src.resilience.json_parser import (
    extract_fenced_block,
    extract_largest_object,
    extract_partial_fields,
    parse_json,
    parse_json_or_default,
    parse_json_with_schema,
    repair_truncated_json,
)


class TestHelpers:
    def test_repair_closes_brackets_in_order(self) -> None:
        assert json.loads(repair_truncated_json('{"a": [1, 2,')) == {"a": [1, 2]}

    def test_repair_drops_dangling_key(self) -> None:
        assert json.loads(repair_truncated_json('{"a": 1, "b":')) == {"a": 1}

    def test_repair_removes_trailing_comma_before_closer(self) -> None:
        assert json.loads(repair_truncated_json('{"a": [1, 2,]}')) == {"a": [1, 2]}

    def test_fenced_json_block(self) -> None:
        assert extract_fenced_block('x\n```json\n{"a": 1}\n```\ny') == '{"a": 1}'

    def test_generic_fence_must_look_like_json(self) -> None:
        assert extract_fenced_block("```\n[1, 2]\n```") == "[1, 2]"
        assert extract_fenced_block("```\nprint('hi')\n```") is None

    def test_largest_object_wins(self) -> None:
        text = 'a {"x": 1} b {"y": {"z": 2}} c'
        assert extract_largest_object(text) == '{"y": {"z": 2}}'

    def test_braces_inside_strings_ignored(self) -> None:
        text = 'noise {"text": "a } b"} tail'
        assert extract_largest_object(text) == '{"text": "a } b"}'

    def test_partial_fields(self) -> None:
        fields = extract_partial_fields('"ref": "4601/311", "pages": 12, "ok": true, "x": null')
        assert fields == {"ref": "4601/311", "pages": 12, "ok": True, "x": None}


class TestParseJson:
    def test_clean_json_is_not_partial(self) -> None:
        result = parse_json('{"pages": [{"page_number": 1, "text": "abc"}]}')
        assert result.success is True
        assert result.partial is False
        assert result.data["pages"][0]["text"] == "abc"

    def test_markdown_fence(self) -> None:
        result = parse_json('Voici le JSON :\n```json\n{"pages": []}\n```')
        assert result.success is True
        assert result.data == {"pages": []}

    def test_truncated_output_repaired(self) -> None:
        result = parse_json('{"pages": [{"page_number": 1, "text": "Article 1 les march')
        assert result.success is True
        assert result.partial is True
        assert result.recovered_fields == ["repaired_truncation"]
        assert result.data["pages"][0]["page_number"] == 1

    def test_object_surrounded_by_prose(self) -> None:
        result = parse_json('Voici le résultat : {"a": 1} merci.')
        assert result.success is True
        assert result.data == {"a": 1}
        assert result.recovered_fields == ["extracted_object"]

    def test_field_extraction_as_last_resort(self) -> None:
        result = parse_json('"title": "Circulaire", "count": 3')
        assert result.success is True
        assert result.partial is True
        assert result.data == {"title": "Circulaire", "count": 3}
        assert result.error == "Partial extraction only"

    def test_total_failure(self) -> None:
        result = parse_json("nothing to see here")
        assert result.success is False
        assert result.error == "All parsing strategies failed"

    def test_invalid_input(self) -> None:
        assert parse_json(None).error == "Invalid input"
        assert parse_json("").success is False
        assert parse_json(42).success is False


class TestParseJsonWithSchema:
    def test_required_fields_present(self) -> None:
        result = parse_json_with_schema('{"pages": [1]}', ["pages"])
        assert result.success is True
        assert result.partial is False

    def test_missing_required_field_flags_partial(self) -> None:
        result = parse_json_with_schema('{"other": 1}', ["pages", "ref"])
        assert result.success is True
        assert result.partial is True
        assert result.error == "Missing required fields: pages, ref"

    def test_defaults_fill_missing_fields(self) -> None:
        result = parse_json_with_schema('{"other": 1}', ["pages"], {"pages": []})
        assert result.data == {"pages": [], "other": 1}
        assert result.partial is False

    def test_parsed_fields_override_defaults(self) -> None:
        result = parse_json_with_schema('{"pages": [1]}', ["pages"], {"pages": []})
        assert result.data["pages"] == [1]

    def test_defaults_used_on_total_failure(self) -> None:
        result = parse_json_with_schema("garbage", ["pages"], {"pages": []})
        assert result.success is True
        assert result.partial is True
        assert result.data == {"pages": []}

    def test_failure_without_defaults(self) -> None:
        assert parse_json_with_schema("garbage", ["pages"]).success is False

    def test_non_object_rejected(self) -> None:
        result = parse_json_with_schema("[1, 2]", ["pages"])
        assert result.success is False
        assert result.error == "Parsed value is not an object"


def test_parse_json_or_default() -> None:
    assert parse_json_or_default('{"a": 1}', {}) == {"a": 1}
    assert parse_json_or_default("garbage", {"fallback": True}) == {"fallback": True}
