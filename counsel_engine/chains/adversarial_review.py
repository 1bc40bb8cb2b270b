"""Adversarial review chain: a red-team critique of the whole analysis package."""

from counsel_engine.core.llm import generate_structured
from counsel_engine.core.logging import get_logger
from counsel_engine.core.review_inputs import (
    doc_name,
    document_excerpt,
    issues_summary,
    severity_counts,
)
from counsel_engine.core.schemas_matter import AdversarialReviewData, Matter, StageOutput
from counsel_engine.core.schemas_stages import AdversarialOutput

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are opposing counsel and a senior reviewing partner rolled into one.
Review the complete analysis package before it reaches the client, at three levels:

LEVEL 1, accuracy: are the issues real, correctly located and correctly characterized?
LEVEL 2, completeness: what material issues or interactions were missed?
LEVEL 3, advice quality: are recommendations actionable, calibrated and safe to send?

Set "draft_revised" to true ONLY for material errors that could harm the client
(a mischaracterized term, a missed critical issue, a recommendation that would backfire).
Stylistic concerns never justify it.

You MUST output ONLY valid JSON:
{
  "critiques": ["[LEVEL X - Category] finding, evidence, suggested fix"],
  "draft_revised": false,
  "revision_reason": "string if draft_revised is true, otherwise null"
}
"""


async def run_adversarial_review(matter: Matter) -> StageOutput:
    """
    Critique the issue, recommendation and redline set as a whole.

    Raises:
        LLMCallError: If the review call fails (aborts the pipeline)
    """
    counts = severity_counts(matter.issues)
    user_prompt = (
        f"Conduct an adversarial review of this {doc_name(matter)} analysis.\n\n"
        f"- Risk Tolerance: {matter.risk_tolerance}\n"
        f"- Audience: {matter.audience}\n"
        f"- Issues Found: {len(matter.issues)}\n"
        f"- Overall Confidence: {round(matter.overall_confidence * 100)}%\n"
        f"- Severity Distribution: "
        + ", ".join(f"{severity} {count}" for severity, count in counts.items())
        + f"\n\n**ORIGINAL DOCUMENT:**\n{document_excerpt(matter, 3000)}\n\n"
        f"**ANALYSIS TO REVIEW:**\n{issues_summary(matter.issues, include_redlines=True)}"
    )

    result = await generate_structured(
        SYSTEM_PROMPT, user_prompt, AdversarialOutput, temperature=0.4, max_tokens=3500
    )

    if result.draft_revised:
        logger.warning(
            f"Adversarial review flagged material concerns: {result.revision_reason}",
            extra={"matter_id": matter.id},
        )

    return StageOutput(
        updates={
            "adversarial_critiques": result.critiques,
            "draft_revised": result.draft_revised,
        },
        data=AdversarialReviewData(
            critiques_count=len(result.critiques),
            critiques=result.critiques,
            draft_revised=result.draft_revised,
            revision_reason=result.revision_reason,
        ),
    )
