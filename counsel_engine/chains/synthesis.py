"""Synthesis chain: one recommendation per researched issue plus a running confidence."""

from counsel_engine.core.batching import capture
from counsel_engine.core.llm import generate_structured
from counsel_engine.core.logging import get_logger
from counsel_engine.core.review_inputs import AUDIENCE_GUIDANCE, RISK_GUIDANCE, issue_block
from counsel_engine.core.schemas_matter import (
    Issue,
    IssueSynthesis,
    Matter,
    StageOutput,
    SynthesisData,
)
from counsel_engine.core.schemas_stages import SynthesisOutput
from counsel_engine.db.matters import save_stage_progress

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are the partner-in-charge signing off on advice for a venture financing.

Synthesis protocol:
1. Triangulate the research: where perspectives agree, be decisive; where they disagree,
   say which you weight more heavily and why.
2. Decision architecture: primary recommendation, fallback position, walk-away threshold.
3. Confidence: start from the market base rate; raise it when research aligns and is
   well supported; lower it for novel structures or scenario-dependent impact.
   Below 0.62 means human attorney review is recommended.

You MUST output ONLY valid JSON:
{
  "recommendation": "4-6 sentences",
  "primary_action": "one sentence starting with an action verb",
  "fallback_position": "acceptable compromise if the primary ask is rejected",
  "walk_away_threshold": "point at which to refuse, or null",
  "priority_rank": 1,
  "confidence": 0.0,
  "reasoning": "3-4 sentences on evidence, downside of inaction, caveats"
}
"""


def mean_confidence(issues: list[Issue]) -> float:
    """Mean synthesis confidence over issues that have one; 0.0 if none do."""
    scores = [issue.synthesis.confidence for issue in issues if issue.synthesis]
    return sum(scores) / len(scores) if scores else 0.0


async def synthesize_issue(issue: Issue, matter: Matter) -> Issue:
    """Synthesize one researched issue. Raises if the call fails."""
    position = next((n for n, i in enumerate(matter.issues, start=1) if i.id == issue.id), 0)
    user_prompt = (
        f"Synthesize the research into one authoritative recommendation.\n\n"
        f"{issue_block(issue)}\n\n"
        f"**Deal Context:**\n"
        f"- Document Type: {matter.doc_label}\n"
        f"- Risk Tolerance: {matter.risk_tolerance.upper()}. "
        f"{RISK_GUIDANCE[matter.risk_tolerance]}\n"
        f"- Audience: {AUDIENCE_GUIDANCE[matter.audience]}\n"
        f"- This issue is {position} of {len(matter.issues)}"
    )
    result = await generate_structured(
        SYSTEM_PROMPT, user_prompt, SynthesisOutput, temperature=0.2, max_tokens=2000
    )
    return issue.model_copy(update={"synthesis": IssueSynthesis(**result.model_dump())})


async def run_synthesis(matter: Matter) -> StageOutput:
    """
    Synthesize every researched issue in order.

    Failures are logged and skipped. After each issue the running
    overall_confidence is recomputed and persisted with the issue.
    """
    issues = list(matter.issues)
    candidates = [issue for issue in issues if issue.research]
    synthesized: dict[str, Issue] = {}
    failed: list[str] = []
    overall = 0.0

    for issue in candidates:
        result = await capture(issue.id, synthesize_issue(issue, matter), label="synthesis")
        if result.ok:
            synthesized[issue.id] = result.value
        else:
            failed.append(issue.id)

        overall = mean_confidence(list(synthesized.values()))
        await save_stage_progress(
            matter.id,
            "synthesis",
            SynthesisData(
                synthesized=len(synthesized),
                total=len(candidates),
                overall_confidence=overall,
                failed_issue_ids=failed,
            ),
            issues=list(synthesized.values()),
            updates={"overall_confidence": overall},
        )

    logger.info(
        f"Synthesized {len(synthesized)}/{len(candidates)} issues",
        extra={"matter_id": matter.id, "overall_confidence": round(overall, 3)},
    )
    return StageOutput(
        updates={
            "issues": [synthesized.get(issue.id, issue) for issue in issues],
            "overall_confidence": overall,
        },
        data=SynthesisData(
            synthesized=len(synthesized),
            total=len(candidates),
            overall_confidence=overall,
            failed_issue_ids=failed,
        ),
    )
