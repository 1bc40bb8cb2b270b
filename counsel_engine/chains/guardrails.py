"""Guardrails chain: final quality gate before deliverables are produced.

The model proposes the check outcomes; the confidence threshold and the
escalation overrides are computed here and cannot be changed by the model.
"""

from counsel_engine.core.llm import generate_structured
from counsel_engine.core.logging import get_logger
from counsel_engine.core.review_inputs import doc_name, issues_summary, severity_counts
from counsel_engine.core.schemas_matter import (
    ConfidenceThreshold,
    GuardrailResult,
    GuardrailsData,
    Matter,
    RiskTolerance,
    StageOutput,
)
from counsel_engine.core.schemas_stages import GuardrailAssessment

logger = get_logger(__name__)

CONFIDENCE_THRESHOLDS: dict[RiskTolerance, float] = {
    "low": 0.90,
    "medium": 0.80,
    "high": 0.70,
}

SYSTEM_PROMPT = """You are the quality-control reviewer for a legal AI system. Nothing reaches
the client until it passes your checks.

1. Jurisdiction: every statutory reference and legal standard must fit the stated jurisdiction.
2. Citation completeness: every recommendation must rest on identifiable legal reasoning.
   pass = fully supported, warning = minor gaps, fail = unsupported factual claims.
3. Hallucination: flag terms, clauses or numbers that are not in the document.
4. Scope compliance: the analysis must stay within the engagement scope.
5. Ethics: no advice that would breach professional responsibility rules.
6. Escalation: require human review for any failed check or any material doubt.

You MUST output ONLY valid JSON:
{
  "jurisdiction_check": "pass|fail",
  "citation_completeness": "pass|warning|fail",
  "hallucination_check": "pass|warning|fail",
  "scope_compliance_check": "pass|warning|fail",
  "ethics_check": "pass|warning|fail",
  "escalation_required": false,
  "escalation_reason": "string or null"
}
"""


def threshold_for(risk_tolerance: RiskTolerance) -> float:
    return CONFIDENCE_THRESHOLDS[risk_tolerance]


def apply_overrides(assessment: GuardrailAssessment, matter: Matter) -> GuardrailResult:
    """
    Combine the model's assessment with the deterministic rules.

    Escalation is forced when risk tolerance is low and a critical issue
    exists, when adversarial review revised the draft, or when overall
    confidence misses the threshold. Reasons are appended after the model's.
    """
    score = matter.overall_confidence
    required = threshold_for(matter.risk_tolerance)
    threshold = ConfidenceThreshold(score=score, required=required, pass_=score >= required)

    escalate = assessment.escalation_required
    reasons = [assessment.escalation_reason] if assessment.escalation_reason else []

    critical = severity_counts(matter.issues)["critical"]
    if matter.risk_tolerance == "low" and critical > 0:
        escalate = True
        reasons.append(
            f"Low risk tolerance with {critical} critical issue(s); "
            f"human review recommended before proceeding"
        )

    if matter.draft_revised:
        escalate = True
        reasons.append("Adversarial review flagged material concerns requiring human oversight")

    if not threshold.pass_:
        escalate = True
        reasons.append(
            f"Overall confidence {round(score * 100)}% is below the required "
            f"{round(required * 100)}% threshold for {matter.risk_tolerance} risk tolerance"
        )

    return GuardrailResult(
        jurisdiction_check=assessment.jurisdiction_check,
        citation_completeness=assessment.citation_completeness,
        confidence_threshold=threshold,
        escalation_required=escalate,
        escalation_reason="; ".join(reasons) if reasons else None,
        hallucination_check=assessment.hallucination_check,
        scope_compliance_check=assessment.scope_compliance_check,
        ethics_check=assessment.ethics_check,
    )


async def run_guardrails(matter: Matter) -> StageOutput:
    """Run the guardrail checks. A failed model call propagates."""
    required = threshold_for(matter.risk_tolerance)
    scope = matter.engagement_scope
    scope_text = ", ".join(scope.scope_of_work) if scope and scope.scope_of_work else "not recorded"
    user_prompt = (
        f"Run quality checks on this {doc_name(matter)} analysis.\n\n"
        f"- Jurisdiction: {matter.jurisdiction}\n"
        f"- Risk Tolerance: {matter.risk_tolerance} (required confidence {round(required * 100)}%)\n"
        f"- Overall Confidence: {round(matter.overall_confidence * 100)}%\n"
        f"- Adversarial Review Revised Draft: {'yes' if matter.draft_revised else 'no'}\n"
        f"- Engagement Scope: {scope_text}\n\n"
        f"**ISSUES AND RECOMMENDATIONS:**\n{issues_summary(matter.issues)}\n\n"
        f"**ADVERSARIAL CRITIQUES:**\n"
        + ("\n".join(f"- {c}" for c in matter.adversarial_critiques) or "None")
    )

    assessment = await generate_structured(
        SYSTEM_PROMPT, user_prompt, GuardrailAssessment, temperature=0.1, max_tokens=1500
    )
    result = apply_overrides(assessment, matter)

    log = logger.warning if result.escalation_required else logger.info
    log(
        f"Guardrails {'escalated' if result.escalation_required else 'passed'}",
        extra={
            "matter_id": matter.id,
            "score": round(result.confidence_threshold.score, 3),
            "required": result.confidence_threshold.required,
        },
    )

    return StageOutput(updates={"guardrails": result}, data=GuardrailsData(result=result))
