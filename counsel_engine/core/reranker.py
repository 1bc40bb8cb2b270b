"""Context compression: LLM listwise re-ranking of retrieved chunks.

Falls back to relevance-score order when the ranking call fails or returns
nothing usable.
"""

from counsel_engine.core.config import get_settings
from counsel_engine.core.llm import LLMCallError, generate_structured
from counsel_engine.core.logging import get_logger
from counsel_engine.core.schemas_matter import RetrievedChunk
from counsel_engine.core.schemas_stages import RankedChunks

logger = get_logger(__name__)

RANK_SYSTEM_PROMPT = (
    "You are a relevance ranking specialist. Rank document chunks by relevance to a query."
)

PREVIEW_CHARS = 200


def _score_order(chunks: list[RetrievedChunk], max_chunks: int) -> list[RetrievedChunk]:
    return sorted(chunks, key=lambda c: c.relevance_score, reverse=True)[:max_chunks]


def _build_rank_prompt(chunks: list[RetrievedChunk], query: str, max_chunks: int) -> str:
    listing = "\n\n".join(
        f"{i}: {chunk.content[:PREVIEW_CHARS]}..." for i, chunk in enumerate(chunks)
    )
    return (
        f'Rank these document chunks by relevance to this query: "{query}"\n\n'
        f"Chunks:\n{listing}\n\n"
        f'Return JSON with the top {max_chunks} chunk indices, best first: '
        '{"ranked_ids": [0, 2, ...]}'
    )


async def compress_context(
    chunks: list[RetrievedChunk],
    query: str,
    max_chunks: int = 5,
) -> list[RetrievedChunk]:
    """
    Keep the ``max_chunks`` chunks most relevant to ``query``.

    Chunk lists already within the cap are returned unchanged. Out-of-range
    and repeated indices from the model are dropped.
    """
    if len(chunks) <= max_chunks:
        return chunks

    settings = get_settings()
    try:
        ranking = await generate_structured(
            RANK_SYSTEM_PROMPT,
            _build_rank_prompt(chunks, query, max_chunks),
            RankedChunks,
            model=settings.RETRIEVAL_MODEL,
            temperature=0.2,
            max_tokens=500,
        )
    except LLMCallError as e:
        logger.info(f"Chunk ranking failed, keeping score order: {e}")
        return _score_order(chunks, max_chunks)

    kept: list[RetrievedChunk] = []
    seen: set[int] = set()
    for idx in ranking.ranked_ids:
        if 0 <= idx < len(chunks) and idx not in seen:
            kept.append(chunks[idx])
            seen.add(idx)
        if len(kept) >= max_chunks:
            break

    if not kept:
        logger.info("Chunk ranking returned no valid indices, keeping score order")
        return _score_order(chunks, max_chunks)

    logger.debug(f"Compressed {len(chunks)} -> {len(kept)} chunks")
    return kept
