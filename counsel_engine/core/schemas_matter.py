"""Pydantic schemas for matters and the review pipeline state they carry."""

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

StageId = Literal[
    "intake",
    "parsing",
    "issue_analysis",
    "research",
    "synthesis",
    "drafting",
    "adversarial_review",
    "guardrails",
    "deliverables",
]
StageStatus = Literal["pending", "running", "complete", "warning", "blocked"]
MatterStatus = Literal["processing", "complete", "error"]
DocType = Literal["safe", "term_sheet"]
RiskTolerance = Literal["low", "medium", "high"]
Audience = Literal["founder", "lawyer"]
Severity = Literal["critical", "high", "medium", "low", "info"]
CheckOutcome = Literal["pass", "warning", "fail"]
IssueCategory = Literal[
    "economics",
    "control",
    "governance",
    "protective_provisions",
    "information_rights",
    "transfer_restrictions",
    "exit_mechanisms",
    "representations",
    "missing_provision",
    "definitional",
    "procedural",
    "other",
]

SEVERITY_ORDER: dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3, "info": 4}


def utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def generate_short_id() -> str:
    """Eight-character id used for issues and deliverables."""
    return uuid.uuid4().hex[:8]


# ============================================================================
# Intake and parsing records
# ============================================================================


class ConflictCheck(BaseModel):
    """Simulated conflict-of-interest check run at intake."""

    cleared: bool = True
    parties_checked: list[str] = Field(default_factory=list)
    potential_conflicts: list[str] = Field(default_factory=list)
    waiver_required: bool = False
    notes: str = ""


class EngagementScope(BaseModel):
    """Scope of the engagement defined at intake."""

    client_name: str = ""
    matter_description: str = ""
    scope_of_work: list[str] = Field(default_factory=list)
    limitations: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    estimated_timeline: str = ""
    qualifications: list[str] = Field(default_factory=list)


class ParsedSection(BaseModel):
    heading: str
    clause_count: int = 0
    content: str = ""
    operative_verbs: list[str] = Field(default_factory=list)
    cross_references: list[str] = Field(default_factory=list)
    blank_fields: list[str] = Field(default_factory=list)
    deviation_from_standard: str | None = None


class DefinedTerm(BaseModel):
    term: str
    definition: str
    section: str = ""
    cross_references: list[str] = Field(default_factory=list)
    is_standard: bool = True
    concerns: str | None = None


class MissingProvision(BaseModel):
    provision: str
    importance: Literal[
        "critical", "high", "medium", "low", "important", "recommended", "optional"
    ] = "medium"
    explanation: str = ""
    standard_language: str | None = None


# ============================================================================
# Issues
# ============================================================================


class IssueResearch(BaseModel):
    market_norms: str
    risk_impact: str
    negotiation_leverage: str
    precedents: str | None = None


class IssueSynthesis(BaseModel):
    recommendation: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    primary_action: str = ""
    fallback_position: str = ""
    walk_away_threshold: str | None = None
    priority_rank: int | None = None


class Issue(BaseModel):
    """One legal concern found in the source document."""

    id: str = Field(default_factory=generate_short_id)
    title: str
    severity: Severity
    clause_ref: str
    explanation: str
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    category: IssueCategory = "other"
    interaction_effects: list[str] = Field(default_factory=list)
    statutory_basis: str | None = None
    standard_form_deviation: str | None = None
    research: IssueResearch | None = None
    synthesis: IssueSynthesis | None = None
    redline: str | None = None


# ============================================================================
# Guardrails, deliverables, audit
# ============================================================================


class ConfidenceThreshold(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    score: float
    required: float
    pass_: bool = Field(..., alias="pass")


class GuardrailResult(BaseModel):
    """Final verdict of the guardrails stage. Written once per run."""

    jurisdiction_check: Literal["pass", "fail"]
    citation_completeness: CheckOutcome
    confidence_threshold: ConfidenceThreshold
    escalation_required: bool
    escalation_reason: str | None = None
    hallucination_check: CheckOutcome | None = None
    scope_compliance_check: CheckOutcome | None = None
    ethics_check: CheckOutcome | None = None


class Deliverable(BaseModel):
    id: str = Field(default_factory=generate_short_id)
    name: str
    description: str
    format: str
    size: str
    timestamp: str
    content: str


class AuditEntry(BaseModel):
    timestamp: str = Field(default_factory=utc_now_iso)
    stage: StageId
    action: str
    detail: str


# ============================================================================
# Per-stage payloads (tagged by stage id)
# ============================================================================


class IntakeData(BaseModel):
    stage: Literal["intake"] = "intake"
    detected_doc_type: str = ""
    jurisdiction_confirmed: str = ""
    jurisdiction_locked: bool = True
    allowed_scope: list[str] = Field(default_factory=list)
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


class ParsingData(BaseModel):
    stage: Literal["parsing"] = "parsing"
    section_count: int = 0
    total_clauses: int = 0
    defined_term_count: int = 0
    missing_provision_count: int = 0
    inconsistencies: list[str] = Field(default_factory=list)


class IssueAnalysisData(BaseModel):
    stage: Literal["issue_analysis"] = "issue_analysis"
    issues_found: int = 0
    references_used: int = 0
    analysis_failed: bool = False


class ResearchData(BaseModel):
    stage: Literal["research"] = "research"
    completed_agents: int = 0
    total_agents: int = 0
    parallel_runs: int = 3
    issues_researched: int = 0
    failed_issue_ids: list[str] = Field(default_factory=list)


class SynthesisData(BaseModel):
    stage: Literal["synthesis"] = "synthesis"
    synthesized: int = 0
    total: int = 0
    overall_confidence: float = 0.0
    failed_issue_ids: list[str] = Field(default_factory=list)


class DraftingData(BaseModel):
    stage: Literal["drafting"] = "drafting"
    audience: Audience = "founder"
    total_redlines: int = 0
    failed_issue_ids: list[str] = Field(default_factory=list)


class AdversarialReviewData(BaseModel):
    stage: Literal["adversarial_review"] = "adversarial_review"
    critiques_count: int = 0
    critiques: list[str] = Field(default_factory=list)
    draft_revised: bool = False
    revision_reason: str | None = None


class GuardrailsData(BaseModel):
    stage: Literal["guardrails"] = "guardrails"
    result: GuardrailResult


class DeliverablesData(BaseModel):
    stage: Literal["deliverables"] = "deliverables"
    deliverable_ids: list[str] = Field(default_factory=list)
    names: list[str] = Field(default_factory=list)


StageData = Annotated[
    Union[
        IntakeData,
        ParsingData,
        IssueAnalysisData,
        ResearchData,
        SynthesisData,
        DraftingData,
        AdversarialReviewData,
        GuardrailsData,
        DeliverablesData,
    ],
    Field(discriminator="stage"),
]


class StageInfo(BaseModel):
    id: StageId
    label: str
    status: StageStatus = "pending"
    started_at: str | None = None
    completed_at: str | None = None
    data: StageData | None = None


class StageOutput(BaseModel):
    """What a stage runner hands back to the pipeline engine.

    ``updates`` is the partial matter to shallow-merge; ``data`` is echoed
    onto the stage's StageInfo.
    """

    updates: dict[str, Any] = Field(default_factory=dict)
    data: StageData


# ============================================================================
# Matter
# ============================================================================


class Matter(BaseModel):
    """The unit of work driven through the review pipeline."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = Field(default_factory=utc_now_iso)

    doc_type: DocType
    jurisdiction: str = "Delaware"
    risk_tolerance: RiskTolerance
    audience: Audience
    document_text: str
    file_name: str | None = None

    stages: list[StageInfo] = Field(default_factory=list)
    current_stage: StageId | None = None
    overall_confidence: float = 0.0

    conflict_check: ConflictCheck | None = None
    engagement_scope: EngagementScope | None = None

    parsed_sections: list[ParsedSection] = Field(default_factory=list)
    defined_terms: list[DefinedTerm] = Field(default_factory=list)
    missing_provisions: list[MissingProvision] = Field(default_factory=list)
    inconsistencies: list[str] = Field(default_factory=list)

    issues: list[Issue] = Field(default_factory=list)
    guardrails: GuardrailResult | None = None
    deliverables: list[Deliverable] = Field(default_factory=list)
    audit_log: list[AuditEntry] = Field(default_factory=list)

    adversarial_critiques: list[str] = Field(default_factory=list)
    draft_revised: bool = False

    status: MatterStatus = "processing"

    def get_stage(self, stage_id: str) -> StageInfo:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        raise KeyError(f"Matter {self.id} has no stage {stage_id}")

    @property
    def doc_label(self) -> str:
        return "SAFE" if self.doc_type == "safe" else "term sheet"


# ============================================================================
# API models
# ============================================================================


class CreateMatterRequest(BaseModel):
    doc_type: DocType
    risk_tolerance: RiskTolerance
    audience: Audience
    document_text: str = Field(..., min_length=1)
    jurisdiction: str = "Delaware"
    file_name: str | None = None


class CreateMatterResponse(BaseModel):
    id: str


class MatterSummary(BaseModel):
    id: str
    created_at: str
    doc_type: DocType
    file_name: str | None = None
    status: MatterStatus
    current_stage: StageId | None = None
    issue_count: int = 0


class RetrievedChunk(BaseModel):
    """A chunk returned by the knowledge base for one query."""

    id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    document_title: str | None = None
    section: str | None = None
