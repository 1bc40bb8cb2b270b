"""Tests for the in-memory vector store."""

import pytest

from counsel_engine.db.vector_store import InMemoryVectorStore


def _chunk(index: int, content: str, **metadata) -> dict:
    return {"chunk_index": index, "content": content, "metadata": metadata}


@pytest.fixture
def store():
    store = InMemoryVectorStore()
    store.store_document(
        "YC Post-Money SAFE",
        "safe text",
        "safe_template",
        {"jurisdiction": "Delaware"},
        [
            _chunk(0, "Valuation cap clause", doc_type="safe_template", section="Valuation Cap"),
            _chunk(1, "Discount clause", doc_type="safe_template", section="Discount"),
        ],
        [[1.0, 0.0, 0.0], [0.8, 0.6, 0.0]],
    )
    store.store_document(
        "Market Data 2024",
        "market text",
        "market_data",
        {},
        [_chunk(0, "Median cap is $10M", doc_type="market_data", section="Benchmarks")],
        [[0.9, 0.0, 0.1]],
    )
    return store


def test_search_ranks_by_cosine_similarity(store):
    results = store.search([1.0, 0.0, 0.0], top_k=10, min_score=0.0)

    assert [r.content for r in results] == [
        "Valuation cap clause",
        "Median cap is $10M",
        "Discount clause",
    ]
    assert results[0].relevance_score == pytest.approx(1.0)
    assert results[0].document_title == "YC Post-Money SAFE"
    assert results[0].section == "Valuation Cap"


def test_search_applies_min_score(store):
    results = store.search([1.0, 0.0, 0.0], top_k=10, min_score=0.9)
    assert all(r.relevance_score >= 0.9 for r in results)
    assert "Discount clause" not in [r.content for r in results]


def test_search_filters_by_doc_type_and_section(store):
    by_type = store.search([1.0, 0.0, 0.0], doc_type="market_data", min_score=0.0)
    assert [r.content for r in by_type] == ["Median cap is $10M"]

    by_section = store.search([1.0, 0.0, 0.0], section="Discount", min_score=0.0)
    assert [r.content for r in by_section] == ["Discount clause"]


def test_search_respects_top_k(store):
    assert len(store.search([1.0, 0.0, 0.0], top_k=1, min_score=0.0)) == 1


def test_search_empty_store():
    assert InMemoryVectorStore().search([1.0, 0.0, 0.0]) == []


def test_list_documents_and_stats(store):
    docs = store.list_documents()
    counts = {d["title"]: d["chunk_count"] for d in docs}
    assert counts == {"YC Post-Money SAFE": 2, "Market Data 2024": 1}

    assert [d["title"] for d in store.list_documents(doc_type="market_data")] == [
        "Market Data 2024"
    ]
    assert store.document_stats() == {"safe_template": 1, "market_data": 1}


def test_delete_document(store):
    doc_id = next(d["id"] for d in store.list_documents() if d["doc_type"] == "market_data")

    assert store.delete_document(doc_id) is True
    assert store.delete_document(doc_id) is False
    assert store.search([1.0, 0.0, 0.0], doc_type="market_data", min_score=0.0) == []


def test_store_document_rejects_mismatched_embeddings():
    with pytest.raises(ValueError):
        InMemoryVectorStore().store_document(
            "Doc", "text", "other", {}, [_chunk(0, "a"), _chunk(1, "b")], [[1.0, 0.0]]
        )
