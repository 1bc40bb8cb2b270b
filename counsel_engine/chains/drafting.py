"""Drafting chain: redline suggestions styled for the matter's audience."""

from counsel_engine.core.batching import batched, gather_items
from counsel_engine.core.config import get_settings
from counsel_engine.core.llm import generate
from counsel_engine.core.logging import get_logger
from counsel_engine.core.retrieval import format_chunks_for_prompt, retrieve_issue_context
from counsel_engine.core.review_inputs import issue_block
from counsel_engine.core.schemas_matter import DraftingData, Issue, Matter, StageOutput

logger = get_logger(__name__)

NO_CHANGES_MARKER = "No changes needed"

FOUNDER_SYSTEM_PROMPT = f"""You write redline suggestions for startup founders.
Use plain English. For each issue give:
- CURRENT: what the document says now, quoted
- PROPOSED: the replacement language
- WHY: one or two sentences on what the change protects
- HOW TO ASK: a short script for raising it with the investor
If the clause is acceptable as written, reply with "{NO_CHANGES_MARKER}" and one sentence why.
"""

LAWYER_SYSTEM_PROMPT = f"""You draft redlines for legal counsel.
Use legal-technical markup: [DELETE: ...] and [INSERT: ...] against the exact clause text,
followed by a short drafting note citing the relevant NVCA/YC model language or statute.
If the clause is acceptable as written, reply with "{NO_CHANGES_MARKER}" and the basis.
"""


async def draft_redline(issue: Issue, matter: Matter) -> str:
    """Draft one redline. Raises if generation fails."""
    try:
        references = await retrieve_issue_context(issue.title, issue.clause_ref, matter)
    except Exception as e:
        logger.warning(f"Drafting retrieval failed for issue {issue.id}: {e}")
        references = []

    system_prompt = FOUNDER_SYSTEM_PROMPT if matter.audience == "founder" else LAWYER_SYSTEM_PROMPT
    user_prompt = (
        f"Draft a redline for this issue in a {matter.doc_label} "
        f"governed by {matter.jurisdiction} law.\n\n{issue_block(issue)}"
    )
    if references:
        user_prompt += f"\n\n**Model Language References:**\n{format_chunks_for_prompt(references)}"

    redline = await generate(system_prompt, user_prompt, temperature=0.3, max_tokens=1200)
    return redline.strip()


async def run_drafting(matter: Matter) -> StageOutput:
    """Draft redlines for every synthesized issue; failed drafts are skipped."""
    settings = get_settings()
    issues = list(matter.issues)
    drafted: dict[str, str] = {}
    failed: list[str] = []

    candidates = [issue for issue in issues if issue.synthesis]
    for batch in batched(candidates, settings.DRAFTING_BATCH_SIZE):
        results = await gather_items(
            batch,
            key=lambda issue: issue.id,
            worker=lambda issue: draft_redline(issue, matter),
            label="drafting",
        )
        for r in results:
            if r.ok:
                drafted[r.item_id] = r.value
            else:
                failed.append(r.item_id)

    final_issues = [
        issue.model_copy(update={"redline": drafted[issue.id]}) if issue.id in drafted else issue
        for issue in issues
    ]
    total_redlines = sum(1 for text in drafted.values() if NO_CHANGES_MARKER not in text)

    logger.info(
        f"Drafted {len(drafted)}/{len(candidates)} redlines",
        extra={"matter_id": matter.id, "audience": matter.audience, "failed": len(failed)},
    )
    return StageOutput(
        updates={"issues": final_issues},
        data=DraftingData(
            audience=matter.audience,
            total_redlines=total_redlines,
            failed_issue_ids=failed,
        ),
    )
