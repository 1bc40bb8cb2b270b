"""Knowledge-base storage: reference documents, their chunks and embeddings."""

import threading
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from functools import lru_cache
from typing import Any

import numpy as np

from counsel_engine.core.config import get_settings
from counsel_engine.core.logging import get_logger
from counsel_engine.core.schemas_matter import RetrievedChunk, utc_now_iso
from counsel_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)


class VectorStore(ABC):
    """Persists chunk embeddings and ranks them by cosine similarity."""

    @abstractmethod
    def store_document(
        self,
        title: str,
        content: str,
        doc_type: str,
        metadata: dict[str, Any],
        chunks: list[dict[str, Any]],
        embeddings: list[list[float]],
    ) -> str:
        """Store a document with its chunks; returns the document id."""

    @abstractmethod
    def search(
        self,
        embedding: list[float],
        top_k: int = 10,
        doc_type: str | None = None,
        section: str | None = None,
        min_score: float = 0.7,
    ) -> list[RetrievedChunk]:
        """Return up to ``top_k`` chunks scoring at least ``min_score``, best first."""

    @abstractmethod
    def list_documents(
        self, doc_type: str | None = None, limit: int = 100, offset: int = 0
    ) -> list[dict[str, Any]]:
        """Documents newest first, each with its chunk count."""

    @abstractmethod
    def document_stats(self) -> dict[str, int]:
        """Document count per doc_type."""

    @abstractmethod
    def delete_document(self, document_id: str) -> bool:
        """Delete a document and its chunks. Returns False if it did not exist."""


class InMemoryVectorStore(VectorStore):
    """numpy-backed store for development and tests."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._chunks: list[dict[str, Any]] = []
        self._matrix: np.ndarray | None = None
        self._lock = threading.Lock()

    def _rebuild(self) -> None:
        if not self._chunks:
            self._matrix = None
            return
        matrix = np.array([c["embedding"] for c in self._chunks], dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        self._matrix = matrix / norms

    def store_document(self, title, content, doc_type, metadata, chunks, embeddings) -> str:
        if len(chunks) != len(embeddings):
            raise ValueError(f"Got {len(chunks)} chunks but {len(embeddings)} embeddings")

        document_id = str(uuid.uuid4())
        with self._lock:
            self._documents[document_id] = {
                "id": document_id,
                "title": title,
                "doc_type": doc_type,
                "content": content,
                "metadata": dict(metadata),
                "created_at": utc_now_iso(),
            }
            for chunk, embedding in zip(chunks, embeddings, strict=True):
                self._chunks.append(
                    {
                        "id": str(uuid.uuid4()),
                        "document_id": document_id,
                        "chunk_index": chunk["chunk_index"],
                        "content": chunk["content"],
                        "metadata": dict(chunk.get("metadata") or {}),
                        "embedding": embedding,
                    }
                )
            self._rebuild()
        return document_id

    def search(self, embedding, top_k=10, doc_type=None, section=None, min_score=0.7):
        with self._lock:
            if self._matrix is None:
                return []
            query = np.asarray(embedding, dtype=np.float32)
            norm = np.linalg.norm(query)
            if norm == 0:
                return []
            scores = self._matrix @ (query / norm)
            candidates = list(zip(self._chunks, scores.tolist(), strict=True))

        results = []
        for chunk, score in sorted(candidates, key=lambda pair: pair[1], reverse=True):
            if score < min_score:
                break
            meta = chunk["metadata"]
            if doc_type and meta.get("doc_type") != doc_type:
                continue
            if section and meta.get("section") != section:
                continue
            results.append(
                RetrievedChunk(
                    id=chunk["id"],
                    content=chunk["content"],
                    metadata=meta,
                    relevance_score=min(1.0, max(0.0, score)),
                    document_title=self._documents[chunk["document_id"]]["title"],
                    section=meta.get("section"),
                )
            )
            if len(results) >= top_k:
                break
        return results

    def list_documents(self, doc_type=None, limit=100, offset=0):
        with self._lock:
            counts = Counter(c["document_id"] for c in self._chunks)
            docs = [
                {
                    "id": d["id"],
                    "title": d["title"],
                    "doc_type": d["doc_type"],
                    "metadata": d["metadata"],
                    "created_at": d["created_at"],
                    "chunk_count": counts.get(d["id"], 0),
                }
                for d in self._documents.values()
                if doc_type is None or d["doc_type"] == doc_type
            ]
        docs.sort(key=lambda d: d["created_at"], reverse=True)
        return docs[offset : offset + limit]

    def document_stats(self):
        with self._lock:
            return dict(Counter(d["doc_type"] for d in self._documents.values()))

    def delete_document(self, document_id):
        with self._lock:
            if self._documents.pop(document_id, None) is None:
                return False
            self._chunks = [c for c in self._chunks if c["document_id"] != document_id]
            self._rebuild()
        return True


class SupabaseVectorStore(VectorStore):
    """pgvector-backed store (``legal_documents`` and ``document_chunks`` tables)."""

    def store_document(self, title, content, doc_type, metadata, chunks, embeddings) -> str:
        if len(chunks) != len(embeddings):
            raise ValueError(f"Got {len(chunks)} chunks but {len(embeddings)} embeddings")

        supabase = get_supabase()
        try:
            doc_response = (
                supabase.table("legal_documents")
                .insert(
                    {
                        "title": title,
                        "doc_type": doc_type,
                        "content": content,
                        "metadata": metadata,
                    }
                )
                .execute()
            )
            if not doc_response.data:
                raise ValueError("No data returned from legal_documents insert")
            document_id = doc_response.data[0]["id"]

            rows = [
                {
                    "document_id": document_id,
                    "chunk_index": chunk["chunk_index"],
                    "content": chunk["content"],
                    "embedding": embedding,
                    "metadata": chunk.get("metadata") or {},
                }
                for chunk, embedding in zip(chunks, embeddings, strict=True)
            ]
            if rows:
                supabase.table("document_chunks").insert(rows).execute()

            logger.info(
                f"Stored document {title} with {len(rows)} chunks",
                extra={"document_id": document_id, "doc_type": doc_type},
            )
            return document_id

        except Exception as e:
            logger.error(f"Failed to store legal document {title}: {e}")
            raise

    def search(self, embedding, top_k=10, doc_type=None, section=None, min_score=0.7):
        supabase = get_supabase()
        try:
            response = supabase.rpc(
                "match_document_chunks",
                {
                    "query_embedding": embedding,
                    "match_count": top_k,
                    "filter_doc_type": doc_type,
                    "filter_section": section,
                    "min_score": min_score,
                },
            ).execute()
        except Exception as e:
            logger.error(f"Failed to search document chunks: {e}")
            raise

        if not response.data:
            logger.info("No matching chunks found")
            return []

        return [
            RetrievedChunk(
                id=str(row["id"]),
                content=row["content"],
                metadata=row.get("metadata") or {},
                relevance_score=min(1.0, max(0.0, float(row["relevance_score"]))),
                document_title=row.get("document_title"),
                section=row.get("section"),
            )
            for row in response.data
        ]

    def list_documents(self, doc_type=None, limit=100, offset=0):
        supabase = get_supabase()
        try:
            query = supabase.table("legal_documents").select(
                "id, title, doc_type, metadata, created_at, document_chunks(count)"
            )
            if doc_type:
                query = query.eq("doc_type", doc_type)
            response = (
                query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
            )
        except Exception as e:
            logger.error(f"Failed to list legal documents: {e}")
            raise

        documents = []
        for row in response.data or []:
            counts = row.pop("document_chunks", None) or [{"count": 0}]
            documents.append({**row, "chunk_count": int(counts[0].get("count", 0))})
        return documents

    def document_stats(self):
        supabase = get_supabase()
        try:
            response = supabase.table("legal_documents").select("doc_type").execute()
        except Exception as e:
            logger.error(f"Failed to load document stats: {e}")
            raise
        return dict(Counter(row["doc_type"] for row in response.data or []))

    def delete_document(self, document_id):
        supabase = get_supabase()
        try:
            response = (
                supabase.table("legal_documents").delete().eq("id", document_id).execute()
            )
        except Exception as e:
            logger.error(f"Failed to delete legal document {document_id}: {e}")
            raise
        return bool(response.data)


@lru_cache(maxsize=1)
def get_vector_store() -> VectorStore:
    """Return the configured vector store (cached singleton)."""
    backend = get_settings().STORE_BACKEND
    if backend == "memory":
        return InMemoryVectorStore()
    if backend == "supabase":
        return SupabaseVectorStore()
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")
