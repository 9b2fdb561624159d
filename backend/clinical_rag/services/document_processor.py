"""Turn guideline sources (JSON export, Markdown) into GuidelineChunks."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from clinical_rag.models.rag import (
    UNKNOWN,
    ChunkMetadata,
    GuidelineChunk,
    GuidelineExportItem,
    GuidelineExportMetadata,
)

logger = logging.getLogger(__name__)

_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")


def chunk_key(source: str, chunk_id: int, subchunk_id: int = 0) -> str:
    """Natural key of a chunk; the store derives its point id from it."""
    return f"{source}:{chunk_id}:{subchunk_id}"


def metadata_from_export(meta: GuidelineExportMetadata) -> ChunkMetadata:
    return ChunkMetadata(
        title=meta.header1 or meta.header3 or UNKNOWN,
        section=meta.header4 or meta.header3 or UNKNOWN,
        source=meta.source or UNKNOWN,
        reference=meta.reference,
    )


def parse_guideline_export(
    items: Iterable[Any],
) -> tuple[list[GuidelineChunk], list[str]]:
    """Validate export rows one by one.

    Returns the usable chunks and one error string per rejected row.
    """
    chunks: list[GuidelineChunk] = []
    errors: list[str] = []
    for index, raw in enumerate(items):
        try:
            item = GuidelineExportItem.model_validate(raw)
        except ValidationError as e:
            errors.append(f"Item {index}: invalid chunk structure ({e.error_count()} errors)")
            continue
        if not item.text.strip():
            errors.append(f"Item {index}: empty text")
            continue
        meta = item.metadata
        chunks.append(
            GuidelineChunk(
                id=chunk_key(meta.source, meta.chunk_id, meta.subchunk_id),
                content=item.text,
                metadata=metadata_from_export(meta),
            )
        )
    if errors:
        logger.warning("Skipped %d invalid guideline rows", len(errors))
    return chunks, errors


def load_guideline_export(path: Path) -> tuple[list[GuidelineChunk], list[str]]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path.name}: JSON must contain an array of guideline chunks")
    return parse_guideline_export(data)


# --- Markdown ---


class Section:
    """Body text under one heading, with the headings above it."""

    def __init__(self, path: list[str], body: str) -> None:
        self.path = path
        self.body = body

    @property
    def heading(self) -> str:
        return self.path[-1] if self.path else ""


def parse_markdown(text: str) -> list[Section]:
    """Split Markdown into sections keyed by their heading path."""
    sections: list[Section] = []
    stack: list[tuple[int, str]] = []
    body: list[str] = []

    def flush() -> None:
        content = "\n".join(body).strip()
        if content:
            sections.append(Section([h for _, h in stack], content))
        body.clear()

    for line in text.splitlines():
        match = _HEADING.match(line)
        if not match:
            body.append(line)
            continue
        flush()
        level = len(match.group(1))
        while stack and stack[-1][0] >= level:
            stack.pop()
        stack.append((level, match.group(2)))
    flush()
    return sections


def _split_paragraphs(body: str, max_chars: int) -> list[str]:
    parts: list[str] = []
    current = ""
    for para in re.split(r"\n\s*\n", body):
        if current and len(current) + len(para) + 2 > max_chars:
            parts.append(current)
            current = para
        else:
            current = f"{current}\n\n{para}" if current else para
    if current:
        parts.append(current)
    return parts


def chunk_markdown(
    text: str, *, source: str, max_tokens: int = 800
) -> list[GuidelineChunk]:
    """Chunk a Markdown guideline; oversized sections split at paragraph breaks.

    Token counts are estimated at ~4 characters per token.
    """
    chunks: list[GuidelineChunk] = []
    for chunk_id, section in enumerate(parse_markdown(text)):
        title = section.path[0] if section.path else UNKNOWN
        heading = section.heading if len(section.path) > 1 else UNKNOWN
        for subchunk_id, part in enumerate(_split_paragraphs(section.body, max_tokens * 4)):
            chunks.append(
                GuidelineChunk(
                    id=chunk_key(source, chunk_id, subchunk_id),
                    content=part,
                    metadata=ChunkMetadata(title=title, section=heading, source=source),
                )
            )
    return chunks


def parse_and_chunk_file(path: Path) -> tuple[list[GuidelineChunk], list[str]]:
    """Load a ``.json`` export or a ``.md`` guideline into chunks."""
    suffix = path.suffix.lower()
    if suffix == ".json":
        return load_guideline_export(path)
    if suffix in (".md", ".markdown"):
        return chunk_markdown(path.read_text(encoding="utf-8"), source=path.name), []
    raise ValueError(f"Unsupported guideline file type: {path.name}")
