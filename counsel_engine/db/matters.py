"""Matter persistence.

Every write is a whole-matter upsert and the last write wins. There is no
partial-update primitive: ``update_matter`` reads, merges and writes back.
"""

import asyncio
import copy
import threading
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any

from counsel_engine.core.config import get_settings
from counsel_engine.core.logging import get_logger
from counsel_engine.core.schemas_matter import (
    CreateMatterRequest,
    Issue,
    Matter,
    StageData,
    StageInfo,
    utc_now_iso,
)
from counsel_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

STAGE_ORDER: tuple[str, ...] = (
    "intake",
    "parsing",
    "issue_analysis",
    "research",
    "synthesis",
    "drafting",
    "adversarial_review",
    "guardrails",
    "deliverables",
)

STAGE_LABELS: dict[str, str] = {
    "intake": "Intake & Scoping",
    "parsing": "Document Parsing",
    "issue_analysis": "Issue Analysis",
    "research": "Legal Research",
    "synthesis": "Synthesis & Reasoning",
    "drafting": "Drafting",
    "adversarial_review": "Adversarial Review",
    "guardrails": "Guardrails & Approval",
    "deliverables": "Final Deliverables",
}


def _serialize(matter: Matter) -> dict[str, Any]:
    return matter.model_dump(mode="json", by_alias=True)


def merge_matter(matter: Matter, updates: dict[str, Any]) -> Matter:
    """Shallow-merge top-level ``updates`` over ``matter`` and revalidate."""
    unknown = set(updates) - set(Matter.model_fields)
    if unknown:
        raise ValueError(f"Unknown matter fields in update: {sorted(unknown)}")
    return Matter.model_validate({**matter.model_dump(by_alias=True), **updates})


class MatterStore(ABC):
    """Key-value store of matters keyed by id."""

    @abstractmethod
    def get(self, matter_id: str) -> Matter | None:
        """Return the stored matter, or None if absent."""

    @abstractmethod
    def set(self, matter: Matter) -> None:
        """Upsert the whole matter."""

    @abstractmethod
    def list_recent(self, limit: int = 50) -> list[Matter]:
        """Most recently created matters first."""

    def update(self, matter_id: str, updates: dict[str, Any]) -> Matter | None:
        current = self.get(matter_id)
        if current is None:
            return None
        merged = merge_matter(current, updates)
        self.set(merged)
        return merged


class InMemoryMatterStore(MatterStore):
    """Process-local store. Holds serialized copies so callers never share state."""

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, matter_id: str) -> Matter | None:
        with self._lock:
            row = self._rows.get(matter_id)
            row = copy.deepcopy(row) if row is not None else None
        return Matter.model_validate(row) if row is not None else None

    def set(self, matter: Matter) -> None:
        row = _serialize(matter)
        with self._lock:
            self._rows[matter.id] = row

    def list_recent(self, limit: int = 50) -> list[Matter]:
        with self._lock:
            rows = copy.deepcopy(list(self._rows.values()))
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return [Matter.model_validate(r) for r in rows[:limit]]

    def delete(self, matter_id: str) -> None:
        with self._lock:
            self._rows.pop(matter_id, None)


class SupabaseMatterStore(MatterStore):
    """Matters stored as one jsonb document per row in the ``matters`` table."""

    table = "matters"

    def get(self, matter_id: str) -> Matter | None:
        supabase = get_supabase()
        try:
            response = (
                supabase.table(self.table)
                .select("data")
                .eq("id", matter_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to get matter {matter_id}: {e}", extra={"matter_id": matter_id})
            raise

        if not response.data:
            return None
        return Matter.model_validate(response.data[0]["data"])

    def set(self, matter: Matter) -> None:
        supabase = get_supabase()
        try:
            supabase.table(self.table).upsert(
                {
                    "id": matter.id,
                    "status": matter.status,
                    "created_at": matter.created_at,
                    "updated_at": utc_now_iso(),
                    "data": _serialize(matter),
                }
            ).execute()
        except Exception as e:
            logger.error(f"Failed to save matter {matter.id}: {e}", extra={"matter_id": matter.id})
            raise

    def list_recent(self, limit: int = 50) -> list[Matter]:
        supabase = get_supabase()
        try:
            response = (
                supabase.table(self.table)
                .select("data")
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to list matters: {e}")
            raise
        return [Matter.model_validate(row["data"]) for row in response.data or []]


@lru_cache(maxsize=1)
def get_matter_store() -> MatterStore:
    """Return the configured matter store (cached singleton)."""
    backend = get_settings().STORE_BACKEND
    if backend == "memory":
        return InMemoryMatterStore()
    if backend == "supabase":
        return SupabaseMatterStore()
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")


def new_matter(request: CreateMatterRequest) -> Matter:
    """Build a matter with all nine stages pending."""
    return Matter(
        doc_type=request.doc_type,
        jurisdiction=request.jurisdiction,
        risk_tolerance=request.risk_tolerance,
        audience=request.audience,
        document_text=request.document_text,
        file_name=request.file_name,
        stages=[StageInfo(id=stage_id, label=STAGE_LABELS[stage_id]) for stage_id in STAGE_ORDER],
    )


async def get_matter(matter_id: str) -> Matter | None:
    return await asyncio.to_thread(get_matter_store().get, matter_id)


async def set_matter(matter: Matter) -> None:
    await asyncio.to_thread(get_matter_store().set, matter)


async def update_matter(matter_id: str, updates: dict[str, Any]) -> Matter | None:
    """Read-merge-write convenience. Same last-writer-wins semantics as set_matter."""
    return await asyncio.to_thread(get_matter_store().update, matter_id, updates)


async def list_matters(limit: int = 50) -> list[Matter]:
    return await asyncio.to_thread(get_matter_store().list_recent, limit)


async def create_matter(request: CreateMatterRequest) -> Matter:
    """Persist a fresh matter and return it."""
    matter = new_matter(request)
    await set_matter(matter)
    logger.info(
        f"Created matter {matter.id}",
        extra={"matter_id": matter.id, "doc_type": matter.doc_type},
    )
    return matter


def splice_issues(current: list[Issue], updated: list[Issue]) -> list[Issue]:
    """Replace issues in ``current`` by id with their versions from ``updated``."""
    by_id = {issue.id: issue for issue in updated}
    return [by_id.get(issue.id, issue) for issue in current]


async def save_stage_progress(
    matter_id: str,
    stage_id: str,
    data: StageData,
    *,
    issues: list[Issue] | None = None,
    updates: dict[str, Any] | None = None,
) -> Matter | None:
    """
    Persist a mid-stage snapshot so pollers see partial results.

    Re-fetches the matter, splices ``issues`` in by id, applies ``updates``
    and replaces the stage's progress payload. Returns None if the matter
    is gone.
    """
    current = await get_matter(matter_id)
    if current is None:
        logger.warning(
            f"Matter vanished while saving {stage_id} progress", extra={"matter_id": matter_id}
        )
        return None

    merged_updates = dict(updates or {})
    if issues is not None:
        merged_updates["issues"] = splice_issues(current.issues, issues)
    merged = merge_matter(current, merged_updates)
    merged.get_stage(stage_id).data = data
    await set_matter(merged)
    return merged
