"""Citation trail: which knowledge-base chunks informed which issue."""

import asyncio

from counsel_engine.core.config import get_settings
from counsel_engine.core.logging import get_logger
from counsel_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _insert_citation(
    matter_id: str,
    issue_id: str,
    chunk_id: str,
    relevance_score: float,
    citation_text: str,
) -> None:
    if get_settings().STORE_BACKEND != "supabase":
        logger.debug(f"Citation {chunk_id} for issue {issue_id} not persisted (memory backend)")
        return
    supabase = get_supabase()
    supabase.table("issue_citations").insert(
        {
            "matter_id": matter_id,
            "issue_id": issue_id,
            "chunk_id": chunk_id,
            "relevance_score": relevance_score,
            "citation_text": citation_text,
        }
    ).execute()


async def store_citation(
    matter_id: str,
    issue_id: str,
    chunk_id: str,
    relevance_score: float,
    citation_text: str,
) -> None:
    """Record a citation. Never raises: the trail is non-critical."""
    try:
        await asyncio.to_thread(
            _insert_citation, matter_id, issue_id, chunk_id, relevance_score, citation_text
        )
    except Exception as e:
        logger.warning(
            f"Failed to store citation for issue {issue_id}: {e}",
            extra={"matter_id": matter_id, "chunk_id": chunk_id},
        )
