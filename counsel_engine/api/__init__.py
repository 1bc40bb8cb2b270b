"""API router for v1 endpoints."""

from fastapi import APIRouter

from counsel_engine.api import legal_docs, matters

router = APIRouter()

# Matter intake, progress polling and deliverable downloads
router.include_router(matters.router, tags=["matters"])

# Reference knowledge base management
router.include_router(legal_docs.router, tags=["legal_docs"])
