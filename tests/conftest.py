"""Pytest configuration and fixtures."""

import os

# Settings are cached on first use, which can happen at import time.
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ["SUPABASE_URL"] = "https://test.supabase.co"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
os.environ["REVIEW_ENGINE_ENV"] = "test"
os.environ["STORE_BACKEND"] = "memory"
os.environ["STAGE_PACING_SECONDS"] = "0"
os.environ["ISSUE_STREAM_DELAY_SECONDS"] = "0"
os.environ["INGEST_BATCH_DELAY_SECONDS"] = "0"
os.environ["INGEST_DOCUMENT_DELAY_SECONDS"] = "0"

import pytest  # noqa: E402

from counsel_engine.core.schemas_matter import (  # noqa: E402
    CreateMatterRequest,
    Issue,
    IssueResearch,
    IssueSynthesis,
    Matter,
)
from counsel_engine.db.matters import get_matter_store, new_matter  # noqa: E402
from counsel_engine.db.vector_store import get_vector_store  # noqa: E402

SAMPLE_SAFE = """# Post-Money SAFE

## 1. Events

1. Equity Financing. If there is an Equity Financing before the termination of this Safe, the Company will automatically issue shares of Safe Preferred Stock to the Investor.
2. Liquidity Event. If there is a Liquidity Event before the termination of this Safe, the Investor will receive a cash payment equal to the Purchase Amount.

## 2. Valuation Cap

The Valuation Cap for this Safe is $10,000,000 and the Investor's shares convert at the lower of the cap price or the price per share in the Equity Financing.
"""


@pytest.fixture
def sample_safe() -> str:
    return SAMPLE_SAFE


@pytest.fixture(autouse=True)
def fresh_stores():
    """Give every test empty in-memory matter and vector stores."""
    get_matter_store.cache_clear()
    get_vector_store.cache_clear()
    yield
    get_matter_store.cache_clear()
    get_vector_store.cache_clear()


@pytest.fixture
def make_matter():
    """Build (and optionally persist) a matter with all stages pending."""

    def _make(persist: bool = True, issues: list[Issue] | None = None, **overrides) -> Matter:
        request = CreateMatterRequest(
            doc_type=overrides.pop("doc_type", "safe"),
            risk_tolerance=overrides.pop("risk_tolerance", "medium"),
            audience=overrides.pop("audience", "founder"),
            document_text=overrides.pop("document_text", SAMPLE_SAFE),
            file_name=overrides.pop("file_name", "safe.md"),
        )
        matter = new_matter(request)
        if issues is not None:
            matter.issues = issues
        for field, value in overrides.items():
            setattr(matter, field, value)
        if persist:
            get_matter_store().set(matter)
        return matter

    return _make


@pytest.fixture
def make_issue():
    """Build an issue; research and synthesis are attached on request."""

    def _make(
        title: str = "Uncapped MFN clause",
        severity: str = "medium",
        researched: bool = False,
        confidence: float | None = None,
        **overrides,
    ) -> Issue:
        issue = Issue(
            title=title,
            severity=severity,
            clause_ref=overrides.pop("clause_ref", "Section 5 - Most Favored Nation"),
            explanation=overrides.pop("explanation", "The MFN clause has no expiry."),
            **overrides,
        )
        if researched or confidence is not None:
            issue.research = IssueResearch(
                market_norms="Most post-money SAFEs include an MFN only when uncapped.",
                risk_impact="Later SAFEs with better terms flow back to this investor.",
                negotiation_leverage="Ask to limit MFN to the next financing.",
            )
        if confidence is not None:
            issue.synthesis = IssueSynthesis(
                recommendation="Limit the MFN to securities issued before the next priced round.",
                confidence=confidence,
                reasoning="Market practice supports a sunset.",
            )
        return issue

    return _make
