"""Issue analysis chain: the primary issue-generation stage.

Issues are streamed into the matter store one at a time so the UI can show
them appearing before the stage completes.
"""

import asyncio

from counsel_engine.core.config import get_settings
from counsel_engine.core.llm import LLMCallError, generate_structured
from counsel_engine.core.logging import get_logger
from counsel_engine.core.retrieval import format_chunks_for_prompt, retrieve_general_issue_context
from counsel_engine.core.review_inputs import doc_name, matter_context
from counsel_engine.core.schemas_matter import (
    SEVERITY_ORDER,
    Issue,
    IssueAnalysisData,
    Matter,
    RetrievedChunk,
    StageOutput,
)
from counsel_engine.core.schemas_stages import IssueAnalysisOutput
from counsel_engine.db.matters import save_stage_progress

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a senior venture financing partner reviewing a client document.

Apply this framework to every clause:
1. Market standard deviation against YC SAFE / NVCA model forms and current benchmarks.
2. Economic impact: dilution, liquidation waterfall, control.
3. Hidden risks: interactions BETWEEN clauses, missing protections, ambiguous language.
4. Severity: critical (deal-breaker), high (material), medium (worth discussing),
   low (minor), info (standard or better than standard).
5. Confidence calibration: 0.95+ black-letter or mathematical; 0.85-0.94 strong basis;
   0.75-0.84 reasonable lawyers could disagree; below 0.65 flag for human review.

You MUST output ONLY valid JSON:
{
  "issues": [
    {
      "title": "specific, actionable title",
      "severity": "critical|high|medium|low|info",
      "clause_ref": "Section X.Y - clause name",
      "explanation": "4-6 sentences: what it says, deviation, impact, why it matters here",
      "confidence": 0.0,
      "category": "economics|control|governance|protective_provisions|information_rights|transfer_restrictions|exit_mechanisms|representations|missing_provision|definitional|procedural|other",
      "interaction_effects": ["how this clause interacts with others"],
      "statutory_basis": "string or null",
      "standard_form_deviation": "string or null"
    }
  ]
}

Order issues by severity, critical first. Reference a SPECIFIC clause for each issue.
Do NOT fabricate terms that are not in the document. DO flag missing protections.
"""


def _structure_digest(matter: Matter) -> str:
    parts = []
    if matter.parsed_sections:
        parts.append(
            "**Parsed Sections:**\n"
            + "\n".join(f"- {s.heading}: {s.content[:300]}" for s in matter.parsed_sections)
        )
    if matter.defined_terms:
        parts.append(
            "**Defined Terms:**\n"
            + "\n".join(
                f"- {t.term}: {t.definition[:200]}"
                + (f" (concern: {t.concerns})" if t.concerns else "")
                for t in matter.defined_terms
            )
        )
    if matter.missing_provisions:
        parts.append(
            "**Missing Provisions:**\n"
            + "\n".join(
                f"- {p.provision} [{p.importance}]: {p.explanation}"
                for p in matter.missing_provisions
            )
        )
    if matter.inconsistencies:
        parts.append(
            "**Inconsistencies:**\n" + "\n".join(f"- {i}" for i in matter.inconsistencies)
        )
    return "\n\n".join(parts)


def order_by_severity(issues: list[Issue]) -> list[Issue]:
    """Stable sort, critical first."""
    return sorted(issues, key=lambda issue: SEVERITY_ORDER[issue.severity])


async def _reference_context(matter: Matter) -> list[RetrievedChunk]:
    try:
        return await retrieve_general_issue_context(matter)
    except Exception as e:
        logger.warning(
            f"Reference retrieval failed, continuing without context: {e}",
            extra={"matter_id": matter.id},
        )
        return []


async def run_issue_analysis(matter: Matter) -> StageOutput:
    """
    Produce the severity-ordered issue list and stream it into the store.

    A failed analysis call yields an empty issue list rather than a blocked stage.
    """
    settings = get_settings()
    references = await _reference_context(matter)
    context_text = ""
    if references:
        context_text = (
            "\n\n**Reference Legal Documents & Market Data:**\n"
            + format_chunks_for_prompt(references)
        )

    user_prompt = (
        f"Perform a clause-by-clause legal analysis of this {doc_name(matter)}.\n\n"
        f"{matter_context(matter)}\n\n"
        f"{_structure_digest(matter)}\n\n"
        f"**COMPLETE DOCUMENT TEXT:**\n{matter.document_text}"
        f"{context_text}"
    )

    try:
        result = await generate_structured(
            SYSTEM_PROMPT, user_prompt, IssueAnalysisOutput, temperature=0.2, max_tokens=6000
        )
    except LLMCallError as e:
        logger.error(f"Issue analysis failed: {e}", extra={"matter_id": matter.id})
        return StageOutput(
            updates={"issues": []},
            data=IssueAnalysisData(references_used=len(references), analysis_failed=True),
        )

    issues = order_by_severity([Issue(**analyzed.model_dump()) for analyzed in result.issues])

    for i in range(len(issues)):
        await save_stage_progress(
            matter.id,
            "issue_analysis",
            IssueAnalysisData(issues_found=i + 1, references_used=len(references)),
            updates={"issues": issues[: i + 1]},
        )
        if i < len(issues) - 1:
            await asyncio.sleep(settings.ISSUE_STREAM_DELAY_SECONDS)

    logger.info(
        f"Identified {len(issues)} issues",
        extra={"matter_id": matter.id, "references": len(references)},
    )

    return StageOutput(
        updates={"issues": issues},
        data=IssueAnalysisData(issues_found=len(issues), references_used=len(references)),
    )
