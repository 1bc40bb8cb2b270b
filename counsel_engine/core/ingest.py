"""Knowledge-base ingestion: chunk, embed and store reference documents."""

import asyncio
from typing import Any, Literal

from pydantic import BaseModel, Field

from counsel_engine.core.chunking import chunk_legal_document, chunk_with_overlap
from counsel_engine.core.config import get_settings
from counsel_engine.core.embeddings import embed_texts_async
from counsel_engine.core.logging import get_logger
from counsel_engine.db.vector_store import get_vector_store

logger = get_logger(__name__)

DocumentSource = Literal[
    "statute",
    "case_law",
    "standard_form",
    "practice_guide",
    "firm_knowledge",
    "regulation",
    "safe_template",
    "term_sheet",
    "market_data",
    "precedent",
    "other",
]


class LegalDocumentInput(BaseModel):
    """A reference document submitted for ingestion."""

    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    doc_type: DocumentSource
    jurisdiction: str | None = None
    effective_date: str | None = None
    citation: str | None = None
    chunking: Literal["hierarchical", "overlap"] = Field(
        default="hierarchical",
        description="hierarchical for structured legal text, overlap for free-form material",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestionResult(BaseModel):
    document_id: str
    chunks_created: int
    title: str


def _chunk_document(doc: LegalDocumentInput) -> list[dict[str, Any]]:
    chunk_meta = {
        "doc_type": doc.doc_type,
        "jurisdiction": doc.jurisdiction,
        "citation": doc.citation,
    }
    if doc.chunking == "overlap":
        return chunk_with_overlap(doc.content, metadata=chunk_meta)
    return chunk_legal_document(doc.content, metadata=chunk_meta)


async def ingest_legal_document(doc: LegalDocumentInput) -> IngestionResult:
    """
    Chunk, embed and store one reference document.

    Embeddings are requested in batches of INGEST_BATCH_SIZE with a short
    pause between batches.

    Raises:
        ValueError: If the document produces no chunks
        EmbeddingError: If an embedding batch fails
    """
    settings = get_settings()
    chunks = _chunk_document(doc)
    if not chunks:
        raise ValueError(f"No chunks generated from document {doc.title}")

    batch_size = settings.INGEST_BATCH_SIZE
    embeddings: list[list[float]] = []
    for start in range(0, len(chunks), batch_size):
        batch = chunks[start : start + batch_size]
        embeddings.extend(await embed_texts_async([c["content"] for c in batch]))
        if start + batch_size < len(chunks):
            await asyncio.sleep(settings.INGEST_BATCH_DELAY_SECONDS)

    doc_metadata = {
        "jurisdiction": doc.jurisdiction,
        "effective_date": doc.effective_date,
        "citation": doc.citation,
        **doc.metadata,
    }
    store = get_vector_store()
    document_id = await asyncio.to_thread(
        store.store_document,
        doc.title,
        doc.content,
        doc.doc_type,
        doc_metadata,
        chunks,
        embeddings,
    )

    logger.info(
        f"Ingested {doc.title} ({len(chunks)} chunks)",
        extra={"document_id": document_id, "doc_type": doc.doc_type},
    )
    return IngestionResult(document_id=document_id, chunks_created=len(chunks), title=doc.title)


async def ingest_batch(documents: list[LegalDocumentInput]) -> list[IngestionResult]:
    """Ingest documents one after another. Failed documents are logged and skipped."""
    settings = get_settings()
    results: list[IngestionResult] = []

    for i, doc in enumerate(documents):
        try:
            results.append(await ingest_legal_document(doc))
        except Exception as e:
            logger.error(f"Failed to ingest {doc.title}: {e}")
        if i < len(documents) - 1:
            await asyncio.sleep(settings.INGEST_DOCUMENT_DELAY_SECONDS)

    return results


async def list_legal_documents(
    doc_type: str | None = None, limit: int = 100, offset: int = 0
) -> list[dict[str, Any]]:
    return await asyncio.to_thread(get_vector_store().list_documents, doc_type, limit, offset)


async def get_document_stats() -> dict[str, int]:
    return await asyncio.to_thread(get_vector_store().document_stats)


async def delete_legal_document(document_id: str) -> bool:
    return await asyncio.to_thread(get_vector_store().delete_document, document_id)
