"""API endpoints for the reference knowledge base."""

from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from counsel_engine.core.ingest import (
    IngestionResult,
    LegalDocumentInput,
    delete_legal_document,
    get_document_stats,
    ingest_batch,
    list_legal_documents,
)
from counsel_engine.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


class IngestLegalDocsRequest(BaseModel):
    documents: list[LegalDocumentInput] = Field(..., min_length=1)


class IngestLegalDocsResponse(BaseModel):
    results: list[IngestionResult]
    requested: int
    ingested: int
    total_chunks: int


@router.post("/legal-docs", response_model=IngestLegalDocsResponse)
async def ingest_legal_docs(request: IngestLegalDocsRequest) -> IngestLegalDocsResponse:
    """
    Ingest reference documents into the knowledge base.

    Documents that fail are skipped; the response reports how many made it.
    """
    results = await ingest_batch(request.documents)
    logger.info(
        f"Ingested {len(results)}/{len(request.documents)} legal documents",
        extra={"chunks": sum(r.chunks_created for r in results)},
    )
    return IngestLegalDocsResponse(
        results=results,
        requested=len(request.documents),
        ingested=len(results),
        total_chunks=sum(r.chunks_created for r in results),
    )


@router.get("/legal-docs")
async def get_legal_docs(
    stats: bool = Query(False, description="Return per-doc-type counts instead of a listing"),
    doc_type: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    try:
        if stats:
            return {"stats": await get_document_stats()}
        documents = await list_legal_documents(doc_type, limit, offset)
    except Exception as e:
        logger.error(f"Failed to read legal documents: {e}")
        raise HTTPException(status_code=500, detail="Failed to read legal documents") from e
    return {"documents": documents, "count": len(documents)}


@router.delete("/legal-docs/{document_id}")
async def delete_legal_doc(document_id: str) -> dict[str, Any]:
    if not await delete_legal_document(document_id):
        raise HTTPException(status_code=404, detail="Document not found")
    return {"deleted": True, "id": document_id}
