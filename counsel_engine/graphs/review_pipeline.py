"""Review pipeline graph.

10-node LangGraph StateGraph:
1-9. one node per review stage, intake through deliverables
10. finalize: mark the matter complete

Each stage node is bracketed by a re-fetch of the matter so that progress
written by the stage itself (streamed issues, batch checkpoints) is never
clobbered. A failing stage blocks the pipeline and routes to END; later
stages stay pending.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from langgraph.graph import END, StateGraph

from counsel_engine.chains.adversarial_review import run_adversarial_review
from counsel_engine.chains.deliverables import run_deliverables
from counsel_engine.chains.drafting import run_drafting
from counsel_engine.chains.guardrails import run_guardrails
from counsel_engine.chains.intake import run_intake
from counsel_engine.chains.issue_analysis import run_issue_analysis
from counsel_engine.chains.parsing import run_parsing
from counsel_engine.chains.research import run_research
from counsel_engine.chains.synthesis import run_synthesis
from counsel_engine.core.config import get_settings
from counsel_engine.core.logging import get_logger
from counsel_engine.core.schemas_matter import (
    AuditEntry,
    GuardrailsData,
    Matter,
    StageId,
    StageOutput,
    utc_now_iso,
)
from counsel_engine.db.matters import (
    STAGE_LABELS,
    STAGE_ORDER,
    get_matter,
    merge_matter,
    set_matter,
)

logger = get_logger(__name__)

StageRunner = Callable[[Matter], Awaitable[StageOutput]]

STAGE_RUNNERS: dict[str, StageRunner] = {
    "intake": run_intake,
    "parsing": run_parsing,
    "issue_analysis": run_issue_analysis,
    "research": run_research,
    "synthesis": run_synthesis,
    "drafting": run_drafting,
    "adversarial_review": run_adversarial_review,
    "guardrails": run_guardrails,
    "deliverables": run_deliverables,
}

# Strong references to detached runs so they are not garbage collected mid-flight
_running_tasks: set[asyncio.Task] = set()


@dataclass
class ReviewPipelineState:
    """State for the review pipeline graph."""

    matter_id: str = ""
    started_at: float = 0.0
    step_count: int = 0
    halted_at: str | None = None


def _audit(matter: Matter, stage_id: StageId, action: str, detail: str) -> None:
    matter.audit_log.append(AuditEntry(stage=stage_id, action=action, detail=detail))


async def _block(matter_id: str, stage_id: StageId, error: Exception) -> None:
    """Mark the stage blocked and the matter errored."""
    logger.error(
        f"Stage {stage_id} failed: {error}",
        extra={"matter_id": matter_id, "stage": stage_id},
        exc_info=error,
    )
    failed = await get_matter(matter_id)
    if failed is None:
        return
    failed_stage = failed.get_stage(stage_id)
    failed_stage.status = "blocked"
    failed_stage.completed_at = utc_now_iso()
    failed.status = "error"
    _audit(failed, stage_id, "error", f"Stage {STAGE_LABELS[stage_id]} failed: {error}")
    await set_matter(failed)


async def _complete(
    matter_id: str, stage_id: StageId, output: StageOutput, elapsed: float
) -> bool:
    latest = await get_matter(matter_id)
    if latest is None:
        logger.warning(f"Matter vanished during stage {stage_id}", extra={"matter_id": matter_id})
        return False

    merged = merge_matter(latest, output.updates)
    done = merged.get_stage(stage_id)
    escalated = isinstance(output.data, GuardrailsData) and output.data.result.escalation_required
    done.status = "warning" if escalated else "complete"
    done.completed_at = utc_now_iso()
    done.data = output.data
    _audit(
        merged,
        stage_id,
        "completed",
        f"Stage {STAGE_LABELS[stage_id]} completed in {elapsed:.1f}s",
    )
    await set_matter(merged)

    logger.info(
        f"Stage {stage_id} {done.status}",
        extra={"matter_id": matter_id, "stage": stage_id, "elapsed_s": round(elapsed, 2)},
    )
    return True


async def run_stage(matter_id: str, stage_id: StageId) -> bool:
    """
    Run a single stage against the persisted matter.

    Any failure after the stage is marked running, including merging or
    persisting its output, blocks the stage.

    Returns:
        True if the stage completed, False if it failed or the matter vanished
    """
    settings = get_settings()
    runner = STAGE_RUNNERS[stage_id]

    matter = await get_matter(matter_id)
    if matter is None:
        logger.warning(f"Matter vanished before stage {stage_id}", extra={"matter_id": matter_id})
        return False

    stage = matter.get_stage(stage_id)
    stage.status = "running"
    stage.started_at = utc_now_iso()
    matter.current_stage = stage_id
    _audit(matter, stage_id, "started", f"Stage {STAGE_LABELS[stage_id]} started")
    await set_matter(matter)

    await asyncio.sleep(settings.STAGE_PACING_SECONDS)
    start = time.monotonic()

    try:
        output = await runner(matter)
        return await _complete(matter_id, stage_id, output, time.monotonic() - start)
    except Exception as e:
        await _block(matter_id, stage_id, e)
        return False


# ==========================================================================
# Graph Construction
# ==========================================================================


def _stage_node(
    stage_id: StageId,
) -> Callable[[ReviewPipelineState], Awaitable[dict[str, Any]]]:
    async def node(state: ReviewPipelineState) -> dict[str, Any]:
        ok = await run_stage(state.matter_id, stage_id)
        return {"step_count": state.step_count + 1, "halted_at": None if ok else stage_id}

    node.__name__ = f"run_{stage_id}"
    return node


async def finalize(state: ReviewPipelineState) -> dict[str, Any]:
    """Mark the matter complete once every stage has run."""
    matter = await get_matter(state.matter_id)
    if matter is None:
        return {"halted_at": "finalize"}

    elapsed = time.monotonic() - state.started_at
    matter.current_stage = None
    matter.status = "complete"
    _audit(matter, "deliverables", "pipeline_complete", f"Pipeline completed in {elapsed:.1f}s")
    await set_matter(matter)
    logger.info(
        "Review pipeline complete",
        extra={"matter_id": state.matter_id, "elapsed_s": round(elapsed, 2)},
    )
    return {"step_count": state.step_count + 1}


def _continue_to(next_node: str) -> Callable[[ReviewPipelineState], str]:
    def route(state: ReviewPipelineState) -> str:
        if state.halted_at:
            return END
        return next_node

    return route


def build_review_pipeline_graph() -> StateGraph:
    """Build the stage-by-stage review graph."""
    graph = StateGraph(ReviewPipelineState)

    for stage_id in STAGE_ORDER:
        graph.add_node(stage_id, _stage_node(stage_id))
    graph.add_node("finalize", finalize)

    graph.set_entry_point(STAGE_ORDER[0])

    # Each stage continues to the next only if it completed
    successors = [*STAGE_ORDER[1:], "finalize"]
    for stage_id, next_node in zip(STAGE_ORDER, successors, strict=True):
        graph.add_conditional_edges(
            stage_id,
            _continue_to(next_node),
            {next_node: next_node, END: END},
        )
    graph.add_edge("finalize", END)

    return graph


# Compiled graph singleton
_review_graph = None


def get_review_pipeline_graph():
    """Get the compiled review pipeline graph."""
    global _review_graph
    if _review_graph is None:
        _review_graph = build_review_pipeline_graph().compile()
    return _review_graph


async def run_pipeline(matter_id: str) -> None:
    """Run every stage in order, stopping at the first failure."""
    logger.info("Starting review pipeline", extra={"matter_id": matter_id})

    graph = get_review_pipeline_graph()
    initial_state = ReviewPipelineState(matter_id=matter_id, started_at=time.monotonic())
    result = await graph.ainvoke(initial_state)

    halted_at = result.get("halted_at")
    if halted_at:
        logger.warning(f"Pipeline stopped at {halted_at}", extra={"matter_id": matter_id})


def _on_pipeline_done(task: asyncio.Task) -> None:
    _running_tasks.discard(task)
    if task.cancelled():
        logger.warning(f"Pipeline task {task.get_name()} was cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Pipeline task {task.get_name()} crashed: {exc}", exc_info=exc)


def launch_pipeline(matter_id: str) -> asyncio.Task:
    """
    Start run_pipeline detached from the caller.

    Must be called from a running event loop. The caller is not expected to
    await the task; progress is observed by re-reading the matter. A process
    exit abandons the run with no recovery.
    """
    task = asyncio.create_task(run_pipeline(matter_id), name=f"review-pipeline-{matter_id}")
    _running_tasks.add(task)
    task.add_done_callback(_on_pipeline_done)
    return task
