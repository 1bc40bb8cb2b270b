"""Tests for knowledge-base ingestion into the in-memory vector store."""

from unittest.mock import AsyncMock, patch

import pytest

from counsel_engine.core.ingest import (
    LegalDocumentInput,
    delete_legal_document,
    get_document_stats,
    ingest_batch,
    ingest_legal_document,
    list_legal_documents,
)
from counsel_engine.core.retrieval import semantic_search


async def _unit_embeddings(texts):
    return [[1.0, 0.0, 0.0] for _ in texts]


@pytest.mark.asyncio
async def test_ingest_then_search_by_doc_type(sample_safe):
    doc = LegalDocumentInput(
        title="YC Post-Money SAFE",
        content=sample_safe,
        doc_type="safe_template",
        jurisdiction="Delaware",
    )

    with (
        patch("counsel_engine.core.ingest.embed_texts_async", side_effect=_unit_embeddings),
        patch(
            "counsel_engine.core.retrieval.embed_text_async",
            AsyncMock(return_value=[1.0, 0.0, 0.0]),
        ),
    ):
        result = await ingest_legal_document(doc)
        hits = await semantic_search("valuation cap", top_k=10, doc_type="safe_template")
        misses = await semantic_search("valuation cap", doc_type="market_data")

    assert result.title == "YC Post-Money SAFE"
    assert result.chunks_created == 4
    assert len(hits) == 4
    assert all(h.metadata["doc_type"] == "safe_template" for h in hits)
    assert all(h.metadata["jurisdiction"] == "Delaware" for h in hits)
    assert all(h.document_title == "YC Post-Money SAFE" for h in hits)
    assert misses == []


@pytest.mark.asyncio
async def test_ingest_embeds_in_batches(sample_safe):
    doc = LegalDocumentInput(title="SAFE", content=sample_safe, doc_type="safe_template")

    with (
        patch("counsel_engine.core.ingest.get_settings") as mock_settings,
        patch(
            "counsel_engine.core.ingest.embed_texts_async", side_effect=_unit_embeddings
        ) as mock_embed,
    ):
        mock_settings.return_value.INGEST_BATCH_SIZE = 3
        mock_settings.return_value.INGEST_BATCH_DELAY_SECONDS = 0
        await ingest_legal_document(doc)

    assert [len(c.args[0]) for c in mock_embed.await_args_list] == [3, 1]


@pytest.mark.asyncio
async def test_ingest_overlap_chunking():
    doc = LegalDocumentInput(
        title="Market notes",
        content="Median valuation caps rose in 2024. " * 60,
        doc_type="market_data",
        chunking="overlap",
    )

    with patch("counsel_engine.core.ingest.embed_texts_async", side_effect=_unit_embeddings):
        result = await ingest_legal_document(doc)

    assert result.chunks_created > 1


@pytest.mark.asyncio
async def test_ingest_rejects_document_without_chunks():
    doc = LegalDocumentInput(title="Stub", content="Too short.", doc_type="other")

    with pytest.raises(ValueError, match="No chunks generated"):
        await ingest_legal_document(doc)


@pytest.mark.asyncio
async def test_ingest_batch_skips_failures(sample_safe):
    docs = [
        LegalDocumentInput(title="Good", content=sample_safe, doc_type="safe_template"),
        LegalDocumentInput(title="Stub", content="Too short.", doc_type="other"),
        LegalDocumentInput(title="Also good", content=sample_safe, doc_type="term_sheet"),
    ]

    with patch("counsel_engine.core.ingest.embed_texts_async", side_effect=_unit_embeddings):
        results = await ingest_batch(docs)

    assert [r.title for r in results] == ["Good", "Also good"]
    assert await get_document_stats() == {"safe_template": 1, "term_sheet": 1}

    listed = await list_legal_documents(doc_type="term_sheet")
    assert [d["title"] for d in listed] == ["Also good"]
    assert await delete_legal_document(listed[0]["id"]) is True
    assert await get_document_stats() == {"safe_template": 1}
