"""Intake & scoping chain: classify the document, clear conflicts, define scope."""

from counsel_engine.core.llm import generate_structured
from counsel_engine.core.logging import get_logger
from counsel_engine.core.review_inputs import doc_name, document_excerpt, matter_context
from counsel_engine.core.schemas_matter import IntakeData, Matter, StageOutput
from counsel_engine.core.schemas_stages import IntakeOutput

logger = get_logger(__name__)

INTAKE_PREVIEW_CHARS = 5000

SYSTEM_PROMPT = """You are a legal intake specialist at a venture financing practice.
You have reviewed thousands of SAFEs, convertible notes and term sheets.

Your intake covers:
1. Document authentication: confirm the instrument is what the client says it is.
2. Jurisdiction: identify governing law from the document; default to Delaware if silent.
3. Complexity triage: note non-standard provisions, side letters or amendments.
4. Scope definition: map every substantive clause to a specific analysis workstream.
5. Preliminary red flags visible before deep analysis.
6. Party identification and a simulated conflict check against those parties.
7. A written engagement scope with limitations and assumptions.

You MUST output ONLY valid JSON with these keys:
{
  "detected_doc_type": "string",
  "jurisdiction_confirmed": "string",
  "jurisdiction_locked": true,
  "allowed_scope": ["10-15 specific analysis workstreams"],
  "matter_accepted": true,
  "refusal_reason": null,
  "risk_profile": "string",
  "audience_mode": "string",
  "document_complexity": "simple|moderate|complex",
  "estimated_issues": 0,
  "key_parties": ["string"],
  "document_date": "string or null",
  "investment_amount": "string or null",
  "preliminary_flags": ["2-4 visible concerns"],
  "conflict_check": {
    "cleared": true,
    "parties_checked": ["string"],
    "potential_conflicts": ["string"],
    "waiver_required": false,
    "notes": "string"
  },
  "engagement_scope": {
    "client_name": "string",
    "matter_description": "string",
    "scope_of_work": ["string"],
    "limitations": ["string"],
    "assumptions": ["string"],
    "estimated_timeline": "string",
    "qualifications": ["string"]
  }
}
"""


async def run_intake(matter: Matter) -> StageOutput:
    """
    Classify the submitted document and define the engagement.

    Returns descriptive metadata only; issues are not touched.

    Raises:
        LLMCallError: If the intake call fails (aborts the pipeline)
    """
    user_prompt = (
        f"Perform an intake assessment on this submitted {doc_name(matter)}.\n\n"
        f"{matter_context(matter)}\n\n"
        f"**DOCUMENT TEXT:**\n{document_excerpt(matter, INTAKE_PREVIEW_CHARS)}"
    )

    result = await generate_structured(
        SYSTEM_PROMPT, user_prompt, IntakeOutput, temperature=0.1, max_tokens=2500
    )

    logger.info(
        f"Intake complete: {result.detected_doc_type}",
        extra={
            "matter_id": matter.id,
            "complexity": result.document_complexity,
            "conflicts_cleared": result.conflict_check.cleared,
        },
    )

    data = IntakeData(
        **result.model_dump(exclude={"conflict_check", "engagement_scope"}),
    )
    return StageOutput(
        updates={
            "conflict_check": result.conflict_check,
            "engagement_scope": result.engagement_scope,
        },
        data=data,
    )
