"""Prompt input preparation shared by the review stages."""

from counsel_engine.core.schemas_matter import Issue, Matter

RISK_GUIDANCE: dict[str, str] = {
    "low": (
        "Conservative. Flag all deviations from YC/NVCA standard forms, including minor ones. "
        "Include informational notes about terms that are at or better than market."
    ),
    "medium": (
        "Balanced. Flag issues that materially affect economics, control or legal risk. "
        "Skip purely cosmetic points."
    ),
    "high": (
        "Aggressive. Flag only critical and high-severity issues that could cause serious "
        "economic harm, loss of control or legal liability."
    ),
}

AUDIENCE_GUIDANCE: dict[str, str] = {
    "founder": (
        "Startup founder (non-lawyer). Plain English, no undefined jargon, "
        "economic impact in practical dollar terms."
    ),
    "lawyer": (
        "Legal counsel. Technical analysis with statutory references, NVCA/YC benchmarks "
        "and proposed counter-language."
    ),
}


def doc_name(matter: Matter) -> str:
    """Long-form name of the instrument under review."""
    if matter.doc_type == "safe":
        return "SAFE (Simple Agreement for Future Equity)"
    return "Series A Preferred Stock Term Sheet"


def matter_context(matter: Matter) -> str:
    """Header block describing the engagement, used at the top of user prompts."""
    return (
        f"**Document Type:** {doc_name(matter)}\n"
        f"**Jurisdiction:** {matter.jurisdiction}\n"
        f"**Risk Tolerance:** {matter.risk_tolerance.upper()}. "
        f"{RISK_GUIDANCE[matter.risk_tolerance]}\n"
        f"**Audience:** {AUDIENCE_GUIDANCE[matter.audience]}"
    )


def document_excerpt(matter: Matter, max_chars: int | None = None) -> str:
    if max_chars is None or len(matter.document_text) <= max_chars:
        return matter.document_text
    return matter.document_text[:max_chars] + "\n... (truncated)"


def issue_block(issue: Issue) -> str:
    """Render one issue with whatever research and synthesis it has so far."""
    lines = [
        f"**Issue:** {issue.title}",
        f"**Severity:** {issue.severity}",
        f"**Category:** {issue.category}",
        f"**Clause Reference:** {issue.clause_ref}",
        f"**Explanation:** {issue.explanation}",
    ]
    if issue.standard_form_deviation:
        lines.append(f"**Standard Form Deviation:** {issue.standard_form_deviation}")
    if issue.interaction_effects:
        lines.append(f"**Cross-Clause Interactions:** {'; '.join(issue.interaction_effects)}")
    if issue.research:
        lines.extend(
            [
                f"**Market Norms:** {issue.research.market_norms}",
                f"**Risk Impact:** {issue.research.risk_impact}",
                f"**Negotiation Leverage:** {issue.research.negotiation_leverage}",
                f"**Precedents:** {issue.research.precedents or 'None identified'}",
            ]
        )
    if issue.synthesis:
        lines.extend(
            [
                f"**Recommendation:** {issue.synthesis.recommendation}",
                f"**Primary Action:** {issue.synthesis.primary_action}",
                f"**Fallback Position:** {issue.synthesis.fallback_position}",
                f"**Confidence:** {round(issue.synthesis.confidence * 100)}%",
            ]
        )
    return "\n".join(lines)


def issues_summary(issues: list[Issue], include_redlines: bool = False) -> str:
    """Numbered list of issues for holistic prompts."""
    if not issues:
        return "No issues identified."
    parts = []
    for n, issue in enumerate(issues, start=1):
        entry = f"### {n}. [{issue.severity.upper()}] {issue.title}\n{issue_block(issue)}"
        if include_redlines and issue.redline:
            entry += f"\n**Redline:** {issue.redline}"
        parts.append(entry)
    return "\n\n".join(parts)


def severity_counts(issues: list[Issue]) -> dict[str, int]:
    counts = {"critical": 0, "high": 0, "medium": 0, "low": 0, "info": 0}
    for issue in issues:
        counts[issue.severity] += 1
    return counts
