"""Tests for the drafting stage."""

from unittest.mock import AsyncMock, patch

import pytest

from counsel_engine.chains.drafting import (
    FOUNDER_SYSTEM_PROMPT,
    LAWYER_SYSTEM_PROMPT,
    run_drafting,
)
from counsel_engine.core.llm import GenerationError
from counsel_engine.core.schemas_matter import RetrievedChunk


async def _fake_generate(system_prompt, user_prompt, **kwargs):
    if "**Issue:** Broken" in user_prompt:
        raise GenerationError("timeout")
    if "**Issue:** Fine as is" in user_prompt:
        return "No changes needed. The clause matches the YC form."
    return "  CURRENT: ...\nPROPOSED: ...  "


@pytest.mark.asyncio
async def test_drafting_skips_failures_and_counts_redlines(make_matter, make_issue):
    issues = [
        make_issue(title="Pro rata", confidence=0.8),
        make_issue(title="Broken", confidence=0.8),
        make_issue(title="Fine as is", confidence=0.9),
        make_issue(title="Not synthesized", researched=True),
    ]
    matter = make_matter(issues=issues, audience="founder")

    with (
        patch(
            "counsel_engine.chains.drafting.retrieve_issue_context",
            AsyncMock(side_effect=RuntimeError("vector store offline")),
        ),
        patch(
            "counsel_engine.chains.drafting.generate", side_effect=_fake_generate
        ) as mock_generate,
    ):
        output = await run_drafting(matter)

    final = output.updates["issues"]
    assert [i.id for i in final] == [i.id for i in issues]
    assert final[0].redline == "CURRENT: ...\nPROPOSED: ..."
    assert final[1].redline is None
    assert final[2].redline.startswith("No changes needed")
    assert final[3].redline is None

    assert output.data.audience == "founder"
    assert output.data.total_redlines == 1
    assert output.data.failed_issue_ids == [issues[1].id]
    assert mock_generate.await_count == 3
    assert all(c.args[0] == FOUNDER_SYSTEM_PROMPT for c in mock_generate.await_args_list)


@pytest.mark.asyncio
async def test_drafting_lawyer_style_with_references(make_matter, make_issue):
    matter = make_matter(issues=[make_issue(title="Pro rata", confidence=0.8)], audience="lawyer")

    reference = RetrievedChunk(
        id="c1", content="NVCA pro rata language", relevance_score=0.9, document_title="NVCA"
    )
    with (
        patch(
            "counsel_engine.chains.drafting.retrieve_issue_context",
            AsyncMock(return_value=[reference]),
        ),
        patch(
            "counsel_engine.chains.drafting.generate", AsyncMock(return_value="[DELETE: x]")
        ) as mock_generate,
    ):
        output = await run_drafting(matter)

    system_prompt, user_prompt = mock_generate.await_args.args
    assert system_prompt == LAWYER_SYSTEM_PROMPT
    assert "NVCA pro rata language" in user_prompt
    assert output.data.total_redlines == 1
