"""Deliverables chain: package the review into downloadable work product."""

import asyncio
import json

from counsel_engine.core.llm import generate
from counsel_engine.core.logging import get_logger
from counsel_engine.core.review_inputs import document_excerpt, severity_counts
from counsel_engine.core.schemas_matter import (
    Deliverable,
    DeliverablesData,
    Matter,
    StageOutput,
    utc_now_iso,
)

logger = get_logger(__name__)

MEMO_SYSTEM_PROMPT = "You are a legal document generator creating professional legal memoranda."

ANNOTATION_SYSTEM_PROMPT = (
    "You annotate legal documents. Reproduce the document and insert each suggested change "
    "inline as a blockquote directly under the clause it affects, with its legal basis."
)

DISCLAIMER = (
    "These deliverables are generated by AI and should be reviewed by qualified legal "
    "counsel before taking action."
)


def format_size(content: str) -> str:
    return f"{len(content) / 1024:.1f} KB"


def _issue_digest(matter: Matter) -> str:
    lines = []
    for issue in matter.issues:
        synthesis = issue.synthesis
        lines.append(
            f"- {issue.title} ({issue.severity}): {issue.explanation}\n"
            f"  Recommendation: {synthesis.recommendation if synthesis else 'N/A'}\n"
            f"  Confidence: {round((synthesis.confidence if synthesis else 0) * 100)}%"
        )
    return "\n\n".join(lines)


async def _memo(matter: Matter) -> str:
    escalation = "None"
    if matter.guardrails and matter.guardrails.escalation_required:
        escalation = matter.guardrails.escalation_reason or "Escalation required"

    user_prompt = (
        f"Generate a comprehensive legal issue memorandum for this {matter.doc_label} review.\n\n"
        f"Jurisdiction: {matter.jurisdiction}\n"
        f"Risk Tolerance: {matter.risk_tolerance}\n"
        f"Overall Confidence: {round(matter.overall_confidence * 100)}%\n"
        f"Escalation: {escalation}\n\n"
        f"Issues:\n{_issue_digest(matter)}\n\n"
        f"Format as a professional legal memorandum with:\n"
        f"- Executive Summary\n"
        f"- Detailed analysis per issue\n"
        f"- Recommendations\n"
        f"- Guardrail assessment\n"
        f"- Standard legal disclaimers"
    )
    return await generate(MEMO_SYSTEM_PROMPT, user_prompt, temperature=0.3, max_tokens=4000)


async def _annotated_document(matter: Matter) -> str:
    redlines = "\n\n".join(
        f"### {issue.title} ({issue.clause_ref})\n{issue.redline}"
        for issue in matter.issues
        if issue.redline
    )
    user_prompt = (
        f"Annotate this {matter.doc_label} with the suggested changes below.\n\n"
        f"**DOCUMENT:**\n{document_excerpt(matter, 12000)}\n\n"
        f"**SUGGESTED CHANGES:**\n{redlines or 'No redlines were drafted.'}"
    )
    return await generate(ANNOTATION_SYSTEM_PROMPT, user_prompt, temperature=0.3, max_tokens=4000)


def build_risk_summary(matter: Matter, generated_at: str) -> str:
    """Structured JSON risk assessment."""
    counts = severity_counts(matter.issues)
    summary = {
        "matter_id": matter.id,
        "doc_type": matter.doc_type,
        "jurisdiction": matter.jurisdiction,
        "risk_tolerance": matter.risk_tolerance,
        "overall_confidence": matter.overall_confidence,
        "issues_summary": {"total": len(matter.issues), **counts},
        "guardrails": (
            matter.guardrails.model_dump(mode="json", by_alias=True) if matter.guardrails else None
        ),
        "generated_at": generated_at,
    }
    return json.dumps(summary, indent=2)


def build_audit_log(matter: Matter, generated_at: str) -> str:
    """Markdown table of every audit entry so far."""
    rows = "\n".join(
        f"| {e.timestamp} | {e.stage} | {e.action} | {e.detail} |" for e in matter.audit_log
    )
    return (
        f"# Audit Log: Matter {matter.id}\n\n"
        f"Generated: {generated_at}\n\n"
        f"| Timestamp | Stage | Action | Detail |\n"
        f"|-----------|-------|--------|--------|\n"
        f"{rows}"
    )


async def run_deliverables(matter: Matter) -> StageOutput:
    """Generate the memo and annotated document, then assemble all four deliverables."""
    now = utc_now_iso()
    memo, annotated = await asyncio.gather(_memo(matter), _annotated_document(matter))
    risk_summary = build_risk_summary(matter, now)
    audit_log = build_audit_log(matter, now)
    memo = f"{memo}\n\n---\n\n_{DISCLAIMER}_"

    deliverables = [
        Deliverable(
            name="Issue Memorandum",
            description=(
                "Comprehensive legal analysis with findings, recommendations, "
                "and redlines for each identified issue."
            ),
            format="Markdown",
            size=format_size(memo),
            timestamp=now,
            content=memo,
        ),
        Deliverable(
            name="Annotated Document",
            description=(
                "Original document with inline annotations showing all suggested "
                "changes and their legal basis."
            ),
            format="Markdown",
            size=format_size(annotated),
            timestamp=now,
            content=annotated,
        ),
        Deliverable(
            name="Risk Summary",
            description=(
                "Structured risk assessment data including severity distribution "
                "and confidence scores."
            ),
            format="JSON",
            size=format_size(risk_summary),
            timestamp=now,
            content=risk_summary,
        ),
        Deliverable(
            name="Audit Log",
            description=(
                "Complete pipeline execution log with timestamps, actions, "
                "and stage transitions."
            ),
            format="Markdown",
            size=format_size(audit_log),
            timestamp=now,
            content=audit_log,
        ),
    ]

    logger.info(f"Generated {len(deliverables)} deliverables", extra={"matter_id": matter.id})
    return StageOutput(
        updates={"deliverables": deliverables},
        data=DeliverablesData(
            deliverable_ids=[d.id for d in deliverables],
            names=[d.name for d in deliverables],
        ),
    )
