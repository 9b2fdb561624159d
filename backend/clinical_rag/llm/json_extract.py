"""Tolerant extraction of JSON payloads from free-text LLM responses.

Models asked for JSON still wrap it in Markdown fences, prepend a sentence of
prose or leave a trailing comma behind. ``extract_json`` undoes those habits
and nothing more: anything it cannot turn into valid JSON raises
``JSONExtractionError`` and the caller applies its own fallback.
"""

from __future__ import annotations

import json
import re
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ValidationError

from clinical_rag.errors import JSONExtractionError


ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCED_BLOCK = re.compile(r"```(?:json)?[ \t]*\n?([\s\S]*?)```", re.IGNORECASE)
_STRAY_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")

_CLOSERS = {"{": "}", "[": "]"}


def strip_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text minus stray fences."""
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    return _STRAY_FENCE.sub("", text).strip()


def _locate_payload(text: str, container: Literal["object", "array"] | None) -> str:
    if container == "object":
        openers = "{"
    elif container == "array":
        openers = "["
    else:
        openers = "{["

    positions = [i for i in (text.find(c) for c in openers) if i != -1]
    if not positions:
        raise JSONExtractionError("No JSON object or array found in response")
    start = min(positions)
    end = text.rfind(_CLOSERS[text[start]])
    if end <= start:
        raise JSONExtractionError("Unterminated JSON payload in response")
    return text[start : end + 1]


def remove_trailing_commas(payload: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", payload)


def extract_json(
    text: str, *, container: Literal["object", "array"] | None = None
) -> Any:
    """Pull the first JSON object/array out of ``text``.

    ``container`` restricts the search to objects or arrays when the caller
    knows which one to expect.
    """
    if not text or not text.strip():
        raise JSONExtractionError("Empty response")

    payload = _locate_payload(strip_fences(text), container)
    try:
        return json.loads(payload)
    except json.JSONDecodeError:
        pass

    repaired = remove_trailing_commas(payload)
    try:
        return json.loads(repaired)
    except json.JSONDecodeError as e:
        raise JSONExtractionError(f"Invalid JSON in response: {e}") from e


def parse_llm_model(text: str, model: type[ModelT]) -> ModelT:
    """Extract a JSON object from ``text`` and validate it as ``model``."""
    data = extract_json(text, container="object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise JSONExtractionError(
            f"Response does not match {model.__name__}: {e.error_count()} errors"
        ) from e


def parse_llm_list(text: str, model: type[ModelT]) -> list[ModelT]:
    """Extract a JSON array from ``text`` and validate every element as ``model``.

    A single object wrapping exactly one list (``{"results": [...]}``) is
    unwrapped, since models drift into that shape despite instructions.
    """
    data = extract_json(text)
    if isinstance(data, dict):
        lists = [v for v in data.values() if isinstance(v, list)]
        if len(lists) != 1:
            raise JSONExtractionError("Expected a JSON array in response")
        data = lists[0]
    if not isinstance(data, list):
        raise JSONExtractionError("Expected a JSON array in response")
    try:
        return [model.model_validate(item) for item in data]
    except ValidationError as e:
        raise JSONExtractionError(
            f"Array element does not match {model.__name__}: {e.error_count()} errors"
        ) from e


def preview(text: str, limit: int = 200) -> str:
    """Shorten a response for log lines."""
    return text[:limit] + ("..." if len(text) > limit else "")
