"""Tests for retrieval recipes, multi-query merging and context compression."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from counsel_engine.core.llm import GenerationError
from counsel_engine.core.reranker import compress_context
from counsel_engine.core.retrieval import (
    RetrievalOptions,
    format_chunks_for_prompt,
    generate_query_variations,
    multi_query_retrieval,
    retrieve_general_issue_context,
    retrieve_legal_context,
    retrieve_research_context,
)
from counsel_engine.core.schemas_matter import RetrievedChunk
from counsel_engine.core.schemas_stages import RankedChunks


def _chunk(chunk_id: str, score: float, **kwargs) -> RetrievedChunk:
    return RetrievedChunk(
        id=chunk_id, content=f"content {chunk_id}", relevance_score=score, **kwargs
    )


@pytest.mark.asyncio
async def test_multi_query_keeps_best_score_per_chunk():
    by_query = {
        (1.0, 0.0, 0.0): [_chunk("a", 0.8), _chunk("b", 0.75)],
        (0.0, 1.0, 0.0): [_chunk("a", 0.9)],
        (0.0, 0.0, 1.0): [_chunk("c", 0.85)],
    }
    store = MagicMock()
    store.search.side_effect = lambda embedding, *args: by_query[tuple(embedding)]

    with (
        patch(
            "counsel_engine.core.retrieval.generate_query_variations",
            AsyncMock(return_value=["variant one", "variant two"]),
        ),
        patch(
            "counsel_engine.core.retrieval.embed_texts_async",
            AsyncMock(return_value=[list(k) for k in by_query]),
        ) as mock_embed,
        patch("counsel_engine.core.retrieval.get_vector_store", return_value=store),
    ):
        results = await multi_query_retrieval("valuation cap", top_k=10, doc_type="market_data")

    assert [(c.id, c.relevance_score) for c in results] == [("a", 0.9), ("c", 0.85), ("b", 0.75)]
    mock_embed.assert_awaited_once_with(["valuation cap", "variant one", "variant two"])
    assert store.search.call_count == 3
    for call in store.search.call_args_list:
        assert call.args[1] == 20
        assert call.args[2] == "market_data"


@pytest.mark.asyncio
async def test_multi_query_truncates_to_top_k():
    store = MagicMock()
    store.search.return_value = [_chunk(str(i), 0.9 - i * 0.01) for i in range(6)]

    with (
        patch(
            "counsel_engine.core.retrieval.generate_query_variations", AsyncMock(return_value=[])
        ),
        patch(
            "counsel_engine.core.retrieval.embed_texts_async", AsyncMock(return_value=[[1.0]])
        ),
        patch("counsel_engine.core.retrieval.get_vector_store", return_value=store),
    ):
        results = await multi_query_retrieval("pro rata", top_k=3)

    assert [c.id for c in results] == ["0", "1", "2"]


@pytest.mark.asyncio
async def test_query_variations_empty_on_llm_failure():
    with patch(
        "counsel_engine.core.retrieval.generate_structured",
        AsyncMock(side_effect=GenerationError("down")),
    ):
        assert await generate_query_variations("board seats", 3) == []


@pytest.mark.asyncio
async def test_retrieve_legal_context_compresses_then_filters(make_matter):
    matter = make_matter(persist=False)
    retrieved = [_chunk(str(i), 0.95 - i * 0.02) for i in range(10)]
    compressed = [retrieved[3], _chunk("low", 0.5), retrieved[0]]

    with (
        patch(
            "counsel_engine.core.retrieval.multi_query_retrieval",
            AsyncMock(return_value=retrieved),
        ) as mock_multi,
        patch(
            "counsel_engine.core.retrieval.compress_context", AsyncMock(return_value=compressed)
        ) as mock_compress,
    ):
        results = await retrieve_legal_context(
            "liquidation preference", matter, RetrievalOptions(top_k=4)
        )

    assert [c.id for c in results] == ["3", "0"]
    assert mock_multi.await_args.kwargs["top_k"] == 8
    assert mock_multi.await_args.kwargs["doc_type"] == "safe_template"
    mock_compress.assert_awaited_once_with(retrieved, "liquidation preference", 4)


@pytest.mark.asyncio
async def test_retrieve_legal_context_passes_floor_to_multi_query(make_matter):
    matter = make_matter(persist=False)

    with patch(
        "counsel_engine.core.retrieval.multi_query_retrieval",
        AsyncMock(return_value=[_chunk("a", 0.55)]),
    ) as mock_multi:
        results = await retrieve_legal_context(
            "pro rata rights", matter, RetrievalOptions(min_relevance=0.5, use_compression=False)
        )

    assert [c.id for c in results] == ["a"]
    assert mock_multi.await_args.kwargs["min_score"] == 0.5


@pytest.mark.asyncio
async def test_general_issue_context_uses_plain_search(make_matter):
    matter = make_matter(persist=False, doc_type="term_sheet")

    with patch(
        "counsel_engine.core.retrieval.semantic_search",
        AsyncMock(return_value=[_chunk("a", 0.65), _chunk("b", 0.55)]),
    ) as mock_search:
        results = await retrieve_general_issue_context(matter)

    assert [c.id for c in results] == ["a"]
    kwargs = mock_search.await_args.kwargs
    assert kwargs == {"top_k": 10, "doc_type": "term_sheet", "min_score": 0.6}


@pytest.mark.asyncio
async def test_research_context_targets_perspective_doc_type(make_matter):
    matter = make_matter(persist=False)

    with patch(
        "counsel_engine.core.retrieval.retrieve_legal_context", AsyncMock(return_value=[])
    ) as mock_retrieve:
        await retrieve_research_context("Uncapped MFN", "market_norms", matter)

    query, _, options = mock_retrieve.await_args.args
    assert query.startswith("Uncapped MFN market standards")
    assert options.doc_type == "market_data"
    assert options.top_k == 4


@pytest.mark.asyncio
async def test_compress_context_within_cap_skips_model():
    chunks = [_chunk("a", 0.9), _chunk("b", 0.8)]
    with patch("counsel_engine.core.reranker.generate_structured", AsyncMock()) as mock_llm:
        assert await compress_context(chunks, "query", max_chunks=5) == chunks
        mock_llm.assert_not_awaited()


@pytest.mark.asyncio
async def test_compress_context_drops_invalid_and_repeated_indices():
    chunks = [_chunk(str(i), 0.9) for i in range(8)]
    with patch(
        "counsel_engine.core.reranker.generate_structured",
        AsyncMock(return_value=RankedChunks(ranked_ids=[99, 2, 2, 0, 5])),
    ):
        results = await compress_context(chunks, "query", max_chunks=2)

    assert [c.id for c in results] == ["2", "0"]


@pytest.mark.asyncio
async def test_compress_context_falls_back_to_score_order():
    chunks = [_chunk("low", 0.71), _chunk("high", 0.99), _chunk("mid", 0.8)]
    with patch(
        "counsel_engine.core.reranker.generate_structured",
        AsyncMock(side_effect=GenerationError("down")),
    ):
        results = await compress_context(chunks, "query", max_chunks=2)

    assert [c.id for c in results] == ["high", "mid"]


def test_ranked_chunks_coerces_strings():
    assert RankedChunks(ranked_ids=["3", 1, "x"]).ranked_ids == [3, 1]


def test_format_chunks_for_prompt():
    text = format_chunks_for_prompt(
        [
            _chunk("a", 0.875, document_title="NVCA Term Sheet", section="Liquidation"),
            _chunk("b", 0.8),
        ]
    )

    first, second = text.split("\n\n---\n\n")
    assert first.startswith("## Reference 1: NVCA Term Sheet\nSection: Liquidation\n")
    assert first.endswith("Relevance: 87.5%")
    assert second.startswith("## Reference 2: Legal Document\n")
