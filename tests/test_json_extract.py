"""Tests for pulling JSON objects out of model output."""

from __future__ import annotations

from resale.utils.json_extract import extract_json_object, strip_code_fence


class TestStripCodeFence:
    def test_plain_text_unchanged(self) -> None:
        assert strip_code_fence('{"a": 1}') == '{"a": 1}'

    def test_json_fence(self) -> None:
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self) -> None:
        assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'


class TestExtractJsonObject:
    def test_pure_json(self) -> None:
        assert extract_json_object('{"low": 10, "high": 20}') == {"low": 10, "high": 20}

    def test_fenced_json(self) -> None:
        text = '```json\n{"confidence": 0.7}\n```'
        assert extract_json_object(text) == {"confidence": 0.7}

    def test_json_surrounded_by_prose(self) -> None:
        text = 'Here is my analysis:\n{"marketActivity": "hot"}\nLet me know if you need more.'
        assert extract_json_object(text) == {"marketActivity": "hot"}

    def test_nested_objects(self) -> None:
        text = 'Result: {"range": {"low": 1, "high": 2}, "insights": ["a"]} done'
        assert extract_json_object(text) == {"range": {"low": 1, "high": 2}, "insights": ["a"]}

    def test_braces_inside_strings_ignored(self) -> None:
        text = 'x {"title": "Fleece {size M}", "note": "escaped \\" quote }"} y'
        assert extract_json_object(text) == {"title": "Fleece {size M}", "note": 'escaped " quote }'}

    def test_skips_unparseable_leading_braces(self) -> None:
        text = "Use {curly} braces. {\"ok\": true}"
        assert extract_json_object(text) == {"ok": True}

    def test_no_object(self) -> None:
        assert extract_json_object("no json here") is None

    def test_empty(self) -> None:
        assert extract_json_object("") is None

    def test_unbalanced(self) -> None:
        assert extract_json_object('{"a": 1') is None

    def test_top_level_array_is_not_an_object(self) -> None:
        assert extract_json_object("[1, 2, 3]") is None
