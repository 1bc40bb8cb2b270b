"""Seed the reference knowledge base from a directory of documents.

Every .md / .txt file in the directory becomes one legal document. The title is
taken from the first markdown heading, falling back to the file name.

Usage:
    uv run python scripts/seed_legal_docs.py <directory> --doc-type safe_template \
        [--jurisdiction Delaware] [--chunking hierarchical|overlap]

Examples:
    # Seed YC SAFE templates
    uv run python scripts/seed_legal_docs.py docs/reference/safe --doc-type safe_template

    # Seed market benchmark notes with overlapping chunks
    uv run python scripts/seed_legal_docs.py docs/reference/market \
        --doc-type market_data --chunking overlap
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from counsel_engine.core.ingest import LegalDocumentInput, ingest_batch

SUPPORTED_SUFFIXES = {".md", ".txt"}


def _title_for(path: Path, content: str) -> str:
    for line in content.splitlines():
        if line.startswith("# "):
            return line[2:].strip()
    return path.stem.replace("_", " ").replace("-", " ").title()


def load_documents(
    directory: Path, doc_type: str, jurisdiction: str | None, chunking: str
) -> list[LegalDocumentInput]:
    documents = []
    for path in sorted(directory.iterdir()):
        if path.suffix.lower() not in SUPPORTED_SUFFIXES:
            continue
        content = path.read_text(encoding="utf-8")
        if not content.strip():
            print(f"  Skipping empty file {path.name}")
            continue
        documents.append(
            LegalDocumentInput(
                title=_title_for(path, content),
                content=content,
                doc_type=doc_type,
                jurisdiction=jurisdiction,
                chunking=chunking,
                metadata={"source_file": path.name},
            )
        )
    return documents


async def seed(args: argparse.Namespace) -> int:
    directory = Path(args.directory)
    if not directory.is_dir():
        print(f"ERROR: {directory} is not a directory")
        return 1

    documents = load_documents(directory, args.doc_type, args.jurisdiction, args.chunking)
    if not documents:
        print(f"No .md or .txt documents found in {directory}")
        return 1

    print(f"Ingesting {len(documents)} documents as {args.doc_type}...")
    results = await ingest_batch(documents)

    for result in results:
        print(f"  {result.title}: {result.chunks_created} chunks ({result.document_id})")
    print(f"\nIngested {len(results)}/{len(documents)} documents")
    return 0 if len(results) == len(documents) else 2


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the legal reference knowledge base")
    parser.add_argument("directory", help="Directory of .md / .txt reference documents")
    parser.add_argument("--doc-type", required=True, help="doc_type tag, e.g. safe_template")
    parser.add_argument("--jurisdiction", default=None)
    parser.add_argument("--chunking", choices=["hierarchical", "overlap"], default="hierarchical")
    args = parser.parse_args()
    sys.exit(asyncio.run(seed(args)))


if __name__ == "__main__":
    main()
