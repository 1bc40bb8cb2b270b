"""API endpoints for legal review matters."""

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response

from counsel_engine.core.config import get_settings
from counsel_engine.core.logging import get_logger
from counsel_engine.core.schemas_matter import (
    CreateMatterRequest,
    CreateMatterResponse,
    Matter,
    MatterSummary,
)
from counsel_engine.db.matters import create_matter, get_matter, list_matters
from counsel_engine.graphs.review_pipeline import launch_pipeline

logger = get_logger(__name__)

router = APIRouter()


@router.post("/matters", response_model=CreateMatterResponse, status_code=201)
async def create_matter_endpoint(request: CreateMatterRequest) -> CreateMatterResponse:
    """
    Create a matter and start its review pipeline in the background.

    Raises:
        HTTPException 400: If the document is blank
        HTTPException 413: If the document exceeds MAX_DOCUMENT_CHARS
        HTTPException 500: If the matter cannot be stored
    """
    settings = get_settings()

    if not request.document_text.strip():
        raise HTTPException(status_code=400, detail="document_text is empty")
    if len(request.document_text) > settings.MAX_DOCUMENT_CHARS:
        raise HTTPException(
            status_code=413,
            detail=f"document_text exceeds {settings.MAX_DOCUMENT_CHARS} characters",
        )

    try:
        matter = await create_matter(request)
    except Exception as e:
        logger.error(f"Failed to create matter: {e}")
        raise HTTPException(status_code=500, detail="Failed to create matter") from e

    launch_pipeline(matter.id)
    logger.info(
        "Created matter and launched review pipeline",
        extra={"matter_id": matter.id, "doc_type": matter.doc_type},
    )
    return CreateMatterResponse(id=matter.id)


@router.get("/matters", response_model=list[MatterSummary])
async def list_matters_endpoint(limit: int = Query(50, ge=1, le=200)) -> list[MatterSummary]:
    matters = await list_matters(limit)
    return [
        MatterSummary(
            id=m.id,
            created_at=m.created_at,
            doc_type=m.doc_type,
            file_name=m.file_name,
            status=m.status,
            current_stage=m.current_stage,
            issue_count=len(m.issues),
        )
        for m in matters
    ]


@router.get("/matters/{matter_id}", response_model=Matter)
async def get_matter_endpoint(matter_id: str) -> Matter:
    """Current snapshot of a matter; poll this to follow pipeline progress."""
    matter = await get_matter(matter_id)
    if matter is None:
        raise HTTPException(status_code=404, detail="Matter not found")
    return matter


@router.get("/matters/{matter_id}/deliverables/{deliverable_id}")
async def download_deliverable(matter_id: str, deliverable_id: str) -> Response:
    matter = await get_matter(matter_id)
    if matter is None:
        raise HTTPException(status_code=404, detail="Matter not found")

    deliverable = next((d for d in matter.deliverables if d.id == deliverable_id), None)
    if deliverable is None:
        raise HTTPException(status_code=404, detail="Deliverable not found")

    is_json = deliverable.format == "JSON"
    filename = f"{deliverable.name.replace(' ', '_')}.{'json' if is_json else 'md'}"
    return Response(
        content=deliverable.content,
        media_type="application/json" if is_json else "text/markdown",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
