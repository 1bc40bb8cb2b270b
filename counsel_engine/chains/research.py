"""Legal research chain: three research perspectives per issue, batched."""

import asyncio

from counsel_engine.core.batching import ItemResult, batched, gather_items
from counsel_engine.core.config import get_settings
from counsel_engine.core.llm import generate_structured
from counsel_engine.core.logging import get_logger
from counsel_engine.core.retrieval import (
    ResearchType,
    format_chunks_for_prompt,
    retrieve_research_context,
)
from counsel_engine.core.review_inputs import document_excerpt, issue_block
from counsel_engine.core.schemas_matter import (
    Issue,
    Matter,
    ResearchData,
    RetrievedChunk,
    StageOutput,
)
from counsel_engine.core.schemas_stages import ResearchOutput
from counsel_engine.db.citations import store_citation
from counsel_engine.db.matters import save_stage_progress

logger = get_logger(__name__)

PERSPECTIVES: tuple[ResearchType, ...] = ("market_norms", "risk_impact", "negotiation_leverage")

SYSTEM_PROMPT = """You are a legal research specialist. You analyze startup financing issues
from three perspectives: market norms, risk impact and negotiation leverage.
Use the provided references and market data where they are relevant.

You MUST output ONLY valid JSON:
{
  "research": {
    "market_norms": "3-4 sentences on current market standards with citations",
    "risk_impact": "3-4 sentences on concrete risks, quantified where possible",
    "negotiation_leverage": "3-4 sentences on leverage and standard counter-proposals",
    "precedents": "relevant legal authority or precedent, or null"
  }
}
"""


async def _context(issue: Issue, perspective: ResearchType, matter: Matter) -> list[RetrievedChunk]:
    try:
        return await retrieve_research_context(issue.title, perspective, matter)
    except Exception as e:
        logger.warning(
            f"{perspective} retrieval failed for issue {issue.id}: {e}",
            extra={"matter_id": matter.id},
        )
        return []


async def research_issue(issue: Issue, matter: Matter) -> Issue:
    """Research one issue. Raises if the research call fails."""
    market, risk, leverage = await asyncio.gather(
        *[_context(issue, perspective, matter) for perspective in PERSPECTIVES]
    )

    user_prompt = (
        f"Research this legal issue in the context of a {matter.doc_label}:\n\n"
        f"{issue_block(issue)}\n\n"
        f"**Document Context:**\n{document_excerpt(matter, 2000)}\n\n"
        f"**Market Norms References:**\n{format_chunks_for_prompt(market) or 'None'}\n\n"
        f"**Risk Analysis References:**\n{format_chunks_for_prompt(risk) or 'None'}\n\n"
        f"**Negotiation References:**\n{format_chunks_for_prompt(leverage) or 'None'}"
    )
    result = await generate_structured(
        SYSTEM_PROMPT, user_prompt, ResearchOutput, temperature=0.4, max_tokens=1500
    )

    for chunk in [*market, *risk, *leverage]:
        await store_citation(
            matter.id,
            issue.id,
            chunk.id,
            chunk.relevance_score,
            f"Used in {issue.title} research",
        )

    return issue.model_copy(update={"research": result.research})


async def run_research(matter: Matter) -> StageOutput:
    """
    Research every issue in concurrent batches.

    An issue whose research fails is returned unresearched; the stage still
    succeeds. Progress is persisted after each batch.
    """
    settings = get_settings()
    issues = list(matter.issues)
    done: list[ItemResult[Issue]] = []
    researched: dict[str, Issue] = {}

    for batch in batched(issues, settings.RESEARCH_BATCH_SIZE):
        results = await gather_items(
            batch,
            key=lambda issue: issue.id,
            worker=lambda issue: research_issue(issue, matter),
            label="research",
        )
        done.extend(results)
        researched.update({r.item_id: r.value for r in results if r.ok})

        await save_stage_progress(
            matter.id,
            "research",
            _progress(issues, done),
            issues=list(researched.values()),
        )

    final_issues = [researched.get(issue.id, issue) for issue in issues]
    data = _progress(issues, done)
    logger.info(
        f"Researched {data.issues_researched}/{len(issues)} issues",
        extra={"matter_id": matter.id, "failed": len(data.failed_issue_ids)},
    )
    return StageOutput(updates={"issues": final_issues}, data=data)


def _progress(issues: list[Issue], done: list[ItemResult[Issue]]) -> ResearchData:
    succeeded = sum(1 for r in done if r.ok)
    return ResearchData(
        completed_agents=succeeded * len(PERSPECTIVES),
        total_agents=len(issues) * len(PERSPECTIVES),
        parallel_runs=len(PERSPECTIVES),
        issues_researched=succeeded,
        failed_issue_ids=[r.item_id for r in done if not r.ok],
    )
