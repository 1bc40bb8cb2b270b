"""Pydantic schemas for structured model outputs, one per stage call."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from counsel_engine.core.schemas_matter import (
    CheckOutcome,
    ConflictCheck,
    DefinedTerm,
    EngagementScope,
    IssueCategory,
    IssueResearch,
    MissingProvision,
    ParsedSection,
    Severity,
)

_CATEGORIES = set(IssueCategory.__args__)


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, value))


class IntakeOutput(BaseModel):
    """Intake assessment returned by the model."""

    detected_doc_type: str = Field(..., description="Formal name of the instrument detected")
    jurisdiction_confirmed: str = Field(default="Delaware", description="Governing law found")
    jurisdiction_locked: bool = True
    allowed_scope: list[str] = Field(default_factory=list, description="Analysis workstreams")
    matter_accepted: bool = True
    refusal_reason: str | None = None
    risk_profile: str = ""
    audience_mode: str = ""
    document_complexity: Literal["simple", "moderate", "complex"] = "moderate"
    estimated_issues: int = 0
    key_parties: list[str] = Field(default_factory=list)
    document_date: str | None = None
    investment_amount: str | None = None
    preliminary_flags: list[str] = Field(default_factory=list)
    conflict_check: ConflictCheck = Field(default_factory=ConflictCheck)
    engagement_scope: EngagementScope = Field(default_factory=EngagementScope)


class ParsingOutput(BaseModel):
    """Structural breakdown of the document."""

    sections: list[ParsedSection] = Field(..., description="Sections in document order")
    defined_terms: list[DefinedTerm] = Field(default_factory=list)
    missing_provisions: list[MissingProvision] = Field(default_factory=list)
    inconsistencies: list[str] = Field(
        default_factory=list, description="Internal inconsistencies between provisions"
    )


class AnalyzedIssue(BaseModel):
    """One issue as proposed by the model, before an id is assigned."""

    title: str = Field(..., description="Specific, actionable issue title")
    severity: Severity
    clause_ref: str = Field(..., description="Reference locating the clause in the document")
    explanation: str
    confidence: float = Field(default=0.5, description="Calibrated confidence in [0, 1]")
    category: IssueCategory = "other"
    interaction_effects: list[str] = Field(default_factory=list)
    statutory_basis: str | None = None
    standard_form_deviation: str | None = None

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        return _clamp_unit(v)

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, v: object) -> object:
        if isinstance(v, str) and v not in _CATEGORIES:
            return "other"
        return v


class IssueAnalysisOutput(BaseModel):
    issues: list[AnalyzedIssue] = Field(default_factory=list)


class ResearchOutput(BaseModel):
    research: IssueResearch


class SynthesisOutput(BaseModel):
    recommendation: str
    confidence: float
    reasoning: str
    primary_action: str = ""
    fallback_position: str = ""
    walk_away_threshold: str | None = None
    priority_rank: int | None = None

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        return _clamp_unit(v)


class AdversarialOutput(BaseModel):
    critiques: list[str] = Field(default_factory=list)
    draft_revised: bool = False
    revision_reason: str | None = None


class GuardrailAssessment(BaseModel):
    """The model's guardrail verdict. Any confidence figures it returns are ignored."""

    jurisdiction_check: Literal["pass", "fail"] = "pass"
    citation_completeness: CheckOutcome = "pass"
    escalation_required: bool = False
    escalation_reason: str | None = None
    hallucination_check: CheckOutcome | None = None
    scope_compliance_check: CheckOutcome | None = None
    ethics_check: CheckOutcome | None = None


class QueryVariations(BaseModel):
    variations: list[str] = Field(default_factory=list)


class RankedChunks(BaseModel):
    ranked_ids: list[int] = Field(default_factory=list, description="Chunk indices, best first")

    @field_validator("ranked_ids", mode="before")
    @classmethod
    def coerce_ids(cls, v: object) -> object:
        # Models often return indices as strings ("0", "2")
        if isinstance(v, list):
            out = []
            for item in v:
                try:
                    out.append(int(item))
                except (TypeError, ValueError):
                    continue
            return out
        return v
