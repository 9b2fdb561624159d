"""Serialization of patients and guideline chunks into prompt text."""

from __future__ import annotations

import json
from collections.abc import Sequence

from clinical_rag.models.rag import GuidelineChunk, RankedChunk
from clinical_rag.models.schemas import Patient


def format_patient(patient: Patient) -> str:
    return patient.model_dump_json(exclude_none=True)


def _truncate(text: str, limit: int | None) -> str:
    if limit is None or len(text) <= limit:
        return text
    return text[:limit] + "..."


def format_chunks(
    chunks: Sequence[GuidelineChunk], *, preview_chars: int | None = None
) -> str:
    """Render chunks as a JSON array, optionally truncating their content."""
    rendered = []
    for chunk in chunks:
        item = {
            "id": chunk.id,
            "title": chunk.metadata.title,
            "section": chunk.metadata.section,
            "source": chunk.metadata.source,
            "evidence_level": chunk.metadata.evidence_level,
            "content": _truncate(chunk.content, preview_chars),
        }
        if isinstance(chunk, RankedChunk):
            item["relevance_score"] = chunk.relevance_score
            item["key_points"] = chunk.key_points
        rendered.append(item)
    return json.dumps(rendered, indent=2)
