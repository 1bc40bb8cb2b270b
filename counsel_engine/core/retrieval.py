"""Knowledge-base retrieval for pipeline stages.

Each call site composes the same steps: retrieve (plain semantic search or
multi-query expansion), optionally compress, then drop chunks below the
relevance floor. Call sites differ only in flags, ``top_k`` and doc type.
"""

import asyncio
from dataclasses import dataclass
from typing import Literal

from counsel_engine.core.config import get_settings
from counsel_engine.core.embeddings import embed_text_async, embed_texts_async
from counsel_engine.core.llm import LLMCallError, generate_structured
from counsel_engine.core.logging import get_logger
from counsel_engine.core.reranker import compress_context
from counsel_engine.core.schemas_matter import Matter, RetrievedChunk
from counsel_engine.core.schemas_stages import QueryVariations
from counsel_engine.db.vector_store import get_vector_store

logger = get_logger(__name__)

ResearchType = Literal["market_norms", "risk_impact", "negotiation_leverage"]

RESEARCH_QUERIES: dict[str, str] = {
    "market_norms": "{title} market standards YC NVCA benchmarks",
    "risk_impact": "{title} risk analysis dilution impact founder equity",
    "negotiation_leverage": "{title} negotiation strategy counter-proposal leverage",
}

RESEARCH_DOC_TYPES: dict[str, str] = {
    "market_norms": "market_data",
    "risk_impact": "precedent",
    "negotiation_leverage": "precedent",
}

EXPANSION_SYSTEM_PROMPT = (
    "You are a query expansion specialist. Generate alternative phrasings of legal queries."
)


@dataclass
class RetrievalOptions:
    """Knobs for one retrieve_legal_context call."""

    use_multi_query: bool = True
    use_compression: bool = True
    top_k: int = 8
    doc_type: str | None = None
    min_relevance: float = 0.7


def default_doc_type(matter: Matter) -> str:
    return "safe_template" if matter.doc_type == "safe" else "term_sheet"


async def semantic_search(
    query: str,
    top_k: int = 10,
    doc_type: str | None = None,
    section: str | None = None,
    min_score: float = 0.7,
) -> list[RetrievedChunk]:
    """Embed ``query`` and rank stored chunks by cosine similarity."""
    embedding = await embed_text_async(query)
    store = get_vector_store()
    return await asyncio.to_thread(store.search, embedding, top_k, doc_type, section, min_score)


async def generate_query_variations(query: str, num_variations: int) -> list[str]:
    """Ask the model for paraphrases of ``query``. Returns [] if expansion fails."""
    settings = get_settings()
    user_prompt = (
        f"Generate {num_variations} alternative phrasings of this legal query that would "
        f'help retrieve relevant documents:\n\nQuery: "{query}"\n\n'
        'Return JSON: {"variations": ["variation1", "variation2", ...]}'
    )
    try:
        result = await generate_structured(
            EXPANSION_SYSTEM_PROMPT,
            user_prompt,
            QueryVariations,
            model=settings.RETRIEVAL_MODEL,
            temperature=0.7,
            max_tokens=200,
        )
    except LLMCallError as e:
        logger.warning(f"Query expansion failed, searching original query only: {e}")
        return []

    variations = [v.strip() for v in result.variations if v and v.strip() and v.strip() != query]
    return variations[:num_variations]


async def multi_query_retrieval(
    query: str,
    top_k: int = 10,
    doc_type: str | None = None,
    num_queries: int = 3,
    min_score: float = 0.7,
) -> list[RetrievedChunk]:
    """
    Search the original query plus ``num_queries`` paraphrases.

    All queries are embedded in one batch. Each is searched for ``top_k * 2``
    hits; duplicates collapse to the highest score seen for that chunk id,
    and the merged list is cut to ``top_k`` by score.
    """
    variations = await generate_query_variations(query, num_queries)
    queries = [query, *variations]
    embeddings = await embed_texts_async(queries)

    store = get_vector_store()
    per_query = await asyncio.gather(
        *[
            asyncio.to_thread(store.search, embedding, top_k * 2, doc_type, None, min_score)
            for embedding in embeddings
        ]
    )

    best: dict[str, RetrievedChunk] = {}
    for results in per_query:
        for chunk in results:
            existing = best.get(chunk.id)
            if existing is None or chunk.relevance_score > existing.relevance_score:
                best[chunk.id] = chunk

    ranked = sorted(best.values(), key=lambda c: c.relevance_score, reverse=True)[:top_k]
    logger.debug(
        f"Multi-query retrieval: {len(queries)} queries -> {len(best)} unique -> {len(ranked)}",
        extra={"doc_type": doc_type},
    )
    return ranked


async def retrieve_legal_context(
    query: str,
    matter: Matter,
    options: RetrievalOptions | None = None,
) -> list[RetrievedChunk]:
    """Retrieve, optionally compress, then filter by the relevance floor."""
    opts = options or RetrievalOptions()
    doc_type = opts.doc_type or default_doc_type(matter)

    if opts.use_multi_query:
        chunks = await multi_query_retrieval(
            query,
            top_k=opts.top_k * 2,
            doc_type=doc_type,
            num_queries=3,
            min_score=opts.min_relevance,
        )
    else:
        chunks = await semantic_search(
            query, top_k=opts.top_k * 2, doc_type=doc_type, min_score=opts.min_relevance
        )

    if opts.use_compression and len(chunks) > opts.top_k:
        chunks = await compress_context(chunks, query, opts.top_k)

    return [c for c in chunks if c.relevance_score >= opts.min_relevance]


async def retrieve_general_issue_context(matter: Matter) -> list[RetrievedChunk]:
    """Broad reference context for the initial issue scan."""
    query = f"{matter.doc_label} legal issues market standards best practices"
    return await retrieve_legal_context(
        query,
        matter,
        RetrievalOptions(
            use_multi_query=False,
            use_compression=False,
            top_k=5,
            doc_type=default_doc_type(matter),
            min_relevance=0.6,
        ),
    )


async def retrieve_issue_context(
    issue_title: str, clause_ref: str, matter: Matter
) -> list[RetrievedChunk]:
    """Context for one specific issue."""
    query = f"{issue_title} {clause_ref} {matter.doc_label} market standards"
    return await retrieve_legal_context(
        query,
        matter,
        RetrievalOptions(top_k=5, doc_type=default_doc_type(matter)),
    )


async def retrieve_research_context(
    issue_title: str, research_type: ResearchType, matter: Matter
) -> list[RetrievedChunk]:
    """Context for one of the three research perspectives on an issue."""
    return await retrieve_legal_context(
        RESEARCH_QUERIES[research_type].format(title=issue_title),
        matter,
        RetrievalOptions(top_k=4, doc_type=RESEARCH_DOC_TYPES[research_type]),
    )


def format_chunks_for_prompt(chunks: list[RetrievedChunk]) -> str:
    """Render chunks as numbered reference blocks for a prompt."""
    blocks = []
    for idx, chunk in enumerate(chunks, start=1):
        section = f"Section: {chunk.section}\n" if chunk.section else ""
        blocks.append(
            f"## Reference {idx}: {chunk.document_title or 'Legal Document'}\n"
            f"{section}\n"
            f"{chunk.content}\n\n"
            f"Relevance: {chunk.relevance_score * 100:.1f}%"
        )
    return "\n\n---\n\n".join(blocks)
