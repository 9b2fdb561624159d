"""CLI script to ingest therapeutic guidelines into Qdrant.

Accepts the guidelines JSON export (an array of ``{text, metadata}`` rows)
and Markdown files.

Usage:
    python scripts/ingest_guidelines.py --file data/therapeutic_guidelines.json
    python scripts/ingest_guidelines.py --directory data/guidelines/ --clear
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from clinical_rag.config import settings
from clinical_rag.dependencies import build_embedder, build_qdrant_client, build_store
from clinical_rag.models.rag import GuidelineChunk
from clinical_rag.services.document_processor import parse_and_chunk_file
from clinical_rag.services.ingestion_service import ingest_chunks

SUPPORTED_SUFFIXES = (".json", ".md", ".markdown")


def collect(paths: list[Path]) -> tuple[list[GuidelineChunk], list[str]]:
    chunks: list[GuidelineChunk] = []
    rejected: list[str] = []
    for path in paths:
        file_chunks, file_errors = parse_and_chunk_file(path)
        print(f"  Chunked {path.name} -> {len(file_chunks)} chunks ({len(file_errors)} skipped)")
        chunks.extend(file_chunks)
        rejected.extend(f"{path.name}: {e}" for e in file_errors)
    return chunks, rejected


async def run(paths: list[Path], clear: bool) -> int:
    qdrant = build_qdrant_client(settings)
    store = build_store(settings, qdrant)
    try:
        print("Ensuring Qdrant collection exists...")
        await store.ensure_collection()
        chunks, rejected = collect(paths)
        if not chunks:
            print("No guideline chunks found")
            return 1
        summary = await ingest_chunks(
            chunks,
            build_embedder(settings),
            store,
            batch_size=settings.store_insert_batch_size,
            clear_existing=clear,
            rejected=rejected,
        )
    finally:
        await qdrant.close()

    print(
        f"\nDone! Stored {summary.successful}/{summary.total} chunks "
        f"in {summary.total_batches} batches ({summary.failed} failed)."
    )
    for error in summary.errors:
        print(f"  - {error}")
    return 0 if summary.failed == 0 else 2


def main() -> None:
    parser = argparse.ArgumentParser(description="Ingest therapeutic guidelines into Qdrant")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--directory", type=Path, help="Directory of .json/.md guideline files")
    group.add_argument("--file", type=Path, help="Single guideline file to ingest")
    parser.add_argument(
        "--clear", action="store_true", help="Delete existing guidelines before ingesting"
    )
    args = parser.parse_args()

    if args.file:
        if not args.file.exists():
            print(f"Error: File not found: {args.file}")
            sys.exit(1)
        paths = [args.file]
    else:
        if not args.directory.exists():
            print(f"Error: Directory not found: {args.directory}")
            sys.exit(1)
        paths = sorted(
            p for p in args.directory.iterdir() if p.suffix.lower() in SUPPORTED_SUFFIXES
        )
        if not paths:
            print(f"No guideline files found in {args.directory}")
            sys.exit(1)
        print(f"Found {len(paths)} guideline files")

    sys.exit(asyncio.run(run(paths, args.clear)))


if __name__ == "__main__":
    main()
