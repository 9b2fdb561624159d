"""Tests for the tolerant JSON extractor."""

from __future__ import annotations

import pytest
from pydantic import BaseModel

from clinical_rag.errors import JSONExtractionError
from clinical_rag.llm.json_extract import (
    extract_json,
    parse_llm_list,
    parse_llm_model,
    preview,
    strip_fences,
)


class _Item(BaseModel):
    name: str
    score: int = 0


@pytest.mark.parametrize(
    "text",
    [
        '```json\n{"a":1}\n```',
        'prefix {"a":1} suffix',
        '{"a":1,}',
        '```\n{"a": 1}\n```',
        'Here you go:\n```JSON\n{"a": 1,\n}\n```\nLet me know!',
    ],
)
def test_extract_json_recovers_object(text: str) -> None:
    assert extract_json(text) == {"a": 1}


def test_extract_json_array_with_trailing_comma() -> None:
    assert extract_json('[{"a": 1}, {"a": 2},]') == [{"a": 1}, {"a": 2}]


def test_extract_json_picks_first_opener() -> None:
    assert extract_json('Scores: [1, 2] and {"x": 1}', container="array") == [1, 2]
    assert extract_json('[1, 2] then {"x": 1}', container="object") == {"x": 1}


def test_strip_fences_removes_unclosed_fence() -> None:
    assert strip_fences('```json\n{"a": 1}') == '{"a": 1}'


@pytest.mark.parametrize("text", ["", "   ", "no json here", "{broken", '{"a": }'])
def test_extract_json_raises(text: str) -> None:
    with pytest.raises(JSONExtractionError):
        extract_json(text)


def test_parse_llm_model_validates() -> None:
    item = parse_llm_model('Sure! {"name": "x", "score": 3}', _Item)
    assert item == _Item(name="x", score=3)


def test_parse_llm_model_schema_mismatch() -> None:
    with pytest.raises(JSONExtractionError, match="_Item"):
        parse_llm_model('{"score": 3}', _Item)


def test_parse_llm_list_unwraps_single_list() -> None:
    items = parse_llm_list('{"results": [{"name": "a"}, {"name": "b"}]}', _Item)
    assert [i.name for i in items] == ["a", "b"]


def test_parse_llm_list_rejects_ambiguous_object() -> None:
    with pytest.raises(JSONExtractionError):
        parse_llm_list('{"a": [], "b": []}', _Item)


def test_parse_llm_list_rejects_bad_element() -> None:
    with pytest.raises(JSONExtractionError):
        parse_llm_list('[{"name": "a"}, {"score": 1}]', _Item)


def test_preview_truncates() -> None:
    assert preview("abc", limit=5) == "abc"
    assert preview("abcdefgh", limit=5) == "abcde..."
