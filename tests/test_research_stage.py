"""Tests for the batched research stage."""

from unittest.mock import AsyncMock, patch

import pytest

from counsel_engine.chains import research
from counsel_engine.chains.research import run_research
from counsel_engine.core.llm import GenerationError
from counsel_engine.core.schemas_matter import IssueResearch, RetrievedChunk
from counsel_engine.core.schemas_stages import ResearchOutput
from counsel_engine.db.matters import get_matter


def _fake_research(fail_titles: set[str]):
    async def _generate(system_prompt, user_prompt, output_model, **kwargs):
        if any(title in user_prompt for title in fail_titles):
            raise GenerationError("timeout")
        return ResearchOutput(
            research=IssueResearch(
                market_norms="Standard.", risk_impact="Moderate.", negotiation_leverage="Some."
            )
        )

    return _generate


@pytest.mark.asyncio
async def test_research_keeps_every_issue_and_skips_failures(make_matter, make_issue):
    titles = ["Alpha clause", "Bravo clause", "Charlie clause", "Delta clause"]
    matter = make_matter(issues=[make_issue(title=t) for t in titles])
    real_save = research.save_stage_progress
    snapshots = []

    async def _recording_save(matter_id, stage_id, data, **kwargs):
        snapshots.append(data.issues_researched)
        return await real_save(matter_id, stage_id, data, **kwargs)

    with (
        patch(
            "counsel_engine.chains.research.retrieve_research_context",
            AsyncMock(return_value=[]),
        ),
        patch(
            "counsel_engine.chains.research.generate_structured",
            side_effect=_fake_research({"Bravo clause"}),
        ),
        patch("counsel_engine.chains.research.save_stage_progress", side_effect=_recording_save),
    ):
        output = await run_research(matter)

    final = output.updates["issues"]
    assert [i.id for i in final] == [i.id for i in matter.issues]
    assert [i.research is not None for i in final] == [True, False, True, True]

    assert output.data.issues_researched == 3
    assert output.data.total_agents == 12
    assert output.data.completed_agents == 9
    assert output.data.failed_issue_ids == [matter.issues[1].id]

    # Batches of three: two progress writes, never shrinking
    assert snapshots == [2, 3]

    stored = await get_matter(matter.id)
    assert sum(1 for i in stored.issues if i.research) == 3


@pytest.mark.asyncio
async def test_research_stores_citations_for_used_chunks(make_matter, make_issue):
    matter = make_matter(issues=[make_issue(title="Pro rata rights")])
    chunk = RetrievedChunk(id="chunk-1", content="Pro rata is standard", relevance_score=0.82)

    with (
        patch(
            "counsel_engine.chains.research.retrieve_research_context",
            AsyncMock(return_value=[chunk]),
        ),
        patch(
            "counsel_engine.chains.research.generate_structured",
            side_effect=_fake_research(set()),
        ),
        patch("counsel_engine.chains.research.store_citation", AsyncMock()) as mock_citation,
    ):
        await run_research(matter)

    # One citation per perspective that returned the chunk
    assert mock_citation.await_count == 3
    args = mock_citation.await_args.args
    assert args[0] == matter.id
    assert args[2] == "chunk-1"
    assert args[3] == 0.82


@pytest.mark.asyncio
async def test_research_with_no_issues(make_matter):
    matter = make_matter()

    output = await run_research(matter)

    assert output.updates == {"issues": []}
    assert output.data.total_agents == 0
