"""
LangGraph Workflow Graph - Main workflow definition.

Defines the StateGraph that drives a research run and ResearchWorkflow, the
entry point used by callers: run, cancel, progress, streaming.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, AsyncIterator, TypedDict

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, StateGraph

from adaptive_research.config.settings import Settings, get_settings
from adaptive_research.errors import MaxIterationsError, WorkflowCancelledError
from adaptive_research.workflow.conditions import route_from_router
from adaptive_research.workflow.executor import StepExecutor
from adaptive_research.workflow.models import (
    PromptConfig,
    QualityAssessment,
    RunOutcome,
    UserProfile,
    WorkItem,
)
from adaptive_research.workflow.nodes import NodeContext
from adaptive_research.workflow.quality import QualityAssessor
from adaptive_research.workflow.router import Router
from adaptive_research.workflow.steps import StepRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# STATE DEFINITION
# =============================================================================


class WorkflowState(TypedDict, total=False):
    """
    State schema for the LangGraph workflow.

    The WorkItem carries everything about the run; the other keys are the
    routing hand-off between the two nodes.
    """

    item: WorkItem
    current_step: str | None
    next_steps: list[str]
    reason: str


# =============================================================================
# GRAPH BUILDER
# =============================================================================


def build_workflow(context: NodeContext) -> StateGraph:
    """
    Build the route/execute graph.

    Args:
        context: NodeContext holding the router and executor

    Returns:
        Uncompiled LangGraph StateGraph
    """
    graph = StateGraph(WorkflowState)

    graph.add_node("route", context.route_node)
    graph.add_node("execute", context.execute_node)

    # Entry point: ask the router first
    graph.set_entry_point("route")

    graph.add_conditional_edges(
        "route",
        route_from_router,
        {
            "execute": "execute",
            "end": END,
        },
    )

    # Every execution goes back to the router
    graph.add_edge("execute", "route")

    return graph


def create_initial_item(
    session_id: str,
    query: str,
    user_profile: UserProfile | None = None,
    prompt_config: PromptConfig | dict[str, Any] | None = None,
) -> WorkItem:
    """
    Create the WorkItem a run starts from.

    Args:
        session_id: Stable identifier of the run
        query: The user request
        user_profile: Optional profile influencing reasoning selection
        prompt_config: Opaque configuration handed to downstream steps

    Returns:
        Fresh WorkItem with empty evidence and bookkeeping
    """
    if not session_id:
        raise ValueError("session_id must not be empty")
    if not query or not query.strip():
        raise ValueError("query must not be empty")
    if isinstance(prompt_config, dict):
        prompt_config = PromptConfig(**prompt_config)
    return WorkItem(
        session_id=session_id,
        query=query,
        user_profile=user_profile,
        prompt_config=prompt_config or PromptConfig(),
    )


# =============================================================================
# PROGRESS TRACKING
# =============================================================================


@dataclass(frozen=True)
class ProgressSnapshot:
    """Bookkeeping view of a run, safe to hand to other tasks."""

    session_id: str
    current_step: str | None
    next_steps: tuple[str, ...]
    iteration_count: int
    visited_steps: frozenset[str]
    retry_counts: dict[str, int]
    citation_count: int
    latest_quality: QualityAssessment | None
    is_running: bool
    outcome: RunOutcome


@dataclass
class _Session:
    item: WorkItem
    current_step: str | None = None
    next_steps: tuple[str, ...] = ()
    task: asyncio.Task | None = None
    running: bool = True
    cancel_requested: bool = False


# =============================================================================
# WORKFLOW RUNNER
# =============================================================================


class ResearchWorkflow:
    """
    High-level interface for running research workflows.

    One instance can drive many concurrent runs, one per session id.
    """

    def __init__(
        self,
        registry: StepRegistry,
        router: Router | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the workflow.

        Args:
            registry: Steps by name (frozen here, read-only afterwards)
            router: Custom router (defaults to one built from settings)
            settings: Configuration (defaults to the global settings)

        Raises:
            ValueError: If a required step is missing from the registry
        """
        self.settings = settings or get_settings()
        self.router = router or Router(
            self.settings.workflow,
            QualityAssessor.from_config(self.settings.quality),
        )
        if not self.router.validate_registry(registry):
            raise ValueError(f"Registry is missing required steps (has: {registry.names()})")

        self.registry = registry.freeze()
        self.executor = StepExecutor(
            registry,
            self.router,
            self.settings.retry,
            self.settings.execution,
            self.settings.workflow.convergence_step,
        )
        self._context = NodeContext(self.router, self.executor, self._on_progress)
        self._compiled = build_workflow(self._context).compile()
        self._sessions: OrderedDict[str, _Session] = OrderedDict()
        self._closed = False

        logger.info("Workflow prepared with steps: %s", ", ".join(registry.names()))

    @property
    def recursion_limit(self) -> int:
        # Two supersteps (route + execute) per routing decision, plus the reset call
        return 2 * (self.router.max_total_iterations + 1) + 5

    def _graph_config(self) -> dict[str, Any]:
        return {"recursion_limit": self.recursion_limit}

    def _on_progress(self, item: WorkItem, current_step: str | None, next_steps) -> None:
        session = self._sessions.get(item.session_id)
        if session is None:
            return
        session.item = item
        if current_step is not None:
            session.current_step = current_step
        session.next_steps = tuple(next_steps)

    def _register(self, session_id: str, item: WorkItem) -> _Session:
        if self._closed:
            raise RuntimeError("Workflow has been shut down")
        existing = self._sessions.get(session_id)
        if existing is not None and existing.running:
            raise ValueError(f"Session already running: {session_id}")
        session = _Session(item=item)
        self._sessions.pop(session_id, None)
        self._sessions[session_id] = session
        return session

    def _evict_finished(self) -> None:
        finished = [sid for sid, s in self._sessions.items() if not s.running]
        excess = len(finished) - self.settings.execution.max_retained_sessions
        for sid in finished[: max(excess, 0)]:
            del self._sessions[sid]

    def forget(self, session_id: str) -> bool:
        """Drop a finished session from the progress bookkeeping."""
        session = self._sessions.get(session_id)
        if session is None or session.running:
            return False
        del self._sessions[session_id]
        return True

    # =========================================================================
    # RUN
    # =========================================================================

    async def run(
        self,
        session_id: str,
        query: str,
        user_profile: UserProfile | None = None,
        prompt_config: PromptConfig | dict[str, Any] | None = None,
    ) -> WorkItem:
        """
        Execute a research run to a terminal WorkItem.

        Step failures do not raise: they end up in ``WorkItem.error``.

        Returns:
            Terminal WorkItem; check ``outcome`` for succeeded, failed,
            cancelled or exhausted
        """
        item = create_initial_item(session_id, query, user_profile, prompt_config)
        session = self._register(session_id, item)

        logger.info("Starting workflow [%s]: %s", session_id, query[:100])
        session.task = asyncio.create_task(self._drive(item), name=f"research-{session_id}")

        try:
            final = await session.task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if not session.cancel_requested or (current and current.cancelling()):
                raise
            logger.warning("Workflow cancelled [%s]", session_id)
            final = session.item.with_error(WorkflowCancelledError(session_id))
        finally:
            session.running = False

        final = self._finalize(final)
        session.item = final
        session.task = None
        self._evict_finished()
        self._log_summary(final)
        return final

    async def _drive(self, item: WorkItem) -> WorkItem:
        state = WorkflowState(item=item, current_step=None, next_steps=[], reason="")
        try:
            final_state = await self._compiled.ainvoke(state, self._graph_config())
        except GraphRecursionError:
            logger.error("Graph recursion limit hit [%s]", item.session_id)
            latest = self._sessions[item.session_id].item
            return latest.with_error(MaxIterationsError(self.router.max_total_iterations))
        return final_state["item"]

    def _finalize(self, item: WorkItem) -> WorkItem:
        if item.has_error or item.is_complete:
            return item
        if item.final_response is not None:
            return item.mark_complete()
        logger.warning("Workflow [%s] gave up without an answer", item.session_id)
        return item.mark_finished("gave up without answer")

    def run_blocking(
        self,
        session_id: str,
        query: str,
        user_profile: UserProfile | None = None,
        prompt_config: PromptConfig | dict[str, Any] | None = None,
    ) -> WorkItem:
        """Blocking wrapper around ``run`` for callers without an event loop."""
        return asyncio.run(self.run(session_id, query, user_profile, prompt_config))

    async def stream(
        self,
        session_id: str,
        query: str,
        user_profile: UserProfile | None = None,
        prompt_config: PromptConfig | dict[str, Any] | None = None,
    ) -> AsyncIterator[WorkItem]:
        """
        Execute a run and yield the WorkItem after every node.

        The last item yielded is the finalized terminal item.
        """
        item = create_initial_item(session_id, query, user_profile, prompt_config)
        session = self._register(session_id, item)
        latest = item

        logger.info("Starting streaming workflow [%s]", session_id)
        try:
            async for state in self._compiled.astream(
                WorkflowState(item=item, current_step=None, next_steps=[], reason=""),
                self._graph_config(),
                stream_mode="values",
            ):
                current = state.get("item")
                if current is not None and current is not latest:
                    latest = current
                    yield current
        except GraphRecursionError:
            latest = latest.with_error(MaxIterationsError(self.router.max_total_iterations))
        finally:
            session.running = False

        final = self._finalize(latest)
        session.item = final
        self._evict_finished()
        yield final

    # =========================================================================
    # CONTROL AND INSPECTION
    # =========================================================================

    def cancel(self, session_id: str) -> bool:
        """
        Request cancellation of a running session.

        In-flight steps, fan-out branches included, receive CancelledError.
        ``run`` then returns a terminal item carrying WorkflowCancelledError.

        Returns:
            True if a running session was found and cancelled
        """
        session = self._sessions.get(session_id)
        if session is None or session.task is None or session.task.done():
            return False
        session.cancel_requested = True
        session.task.cancel()
        logger.info("Cancellation requested [%s]", session_id)
        return True

    def get_progress(self, session_id: str) -> ProgressSnapshot | None:
        """Snapshot of the bookkeeping of a running or finished session."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        item = session.item
        return ProgressSnapshot(
            session_id=session_id,
            current_step=session.current_step,
            next_steps=session.next_steps,
            iteration_count=item.iteration_count,
            visited_steps=item.visited_steps,
            retry_counts=dict(item.retry_counts),
            citation_count=item.citation_count,
            latest_quality=item.latest_quality,
            is_running=session.running,
            outcome=item.outcome,
        )

    def active_sessions(self) -> list[str]:
        return [sid for sid, session in self._sessions.items() if session.running]

    def get_summary(self, item: WorkItem) -> dict[str, Any]:
        """
        Generate a summary of a run.

        Args:
            item: Terminal WorkItem

        Returns:
            Summary dictionary with statistics
        """
        return {
            "session_id": item.session_id,
            "outcome": item.outcome.value,
            "total_iterations": item.iteration_count,
            "visited_steps": sorted(item.visited_steps),
            "retry_counts": dict(item.retry_counts),
            "citation_count": item.citation_count,
            "reasoning_method": (
                item.selected_reasoning_method.value if item.selected_reasoning_method else None
            ),
            "has_response": item.final_response is not None,
            "error": f"{type(item.error).__name__}: {item.error}" if item.error else None,
            "processing_time_s": round(item.processing_time.total_seconds(), 3),
            "processing_steps": len(item.processing_steps),
        }

    def is_healthy(self) -> bool:
        if self._closed or not self.registry.frozen:
            return False
        return self.router.validate_registry(self.registry)

    def shutdown(self) -> int:
        """Cancel every running session and refuse new runs.

        Returns:
            Number of sessions cancelled
        """
        cancelled = sum(1 for session_id in list(self._sessions) if self.cancel(session_id))
        self._closed = True
        logger.info("Workflow shut down (%d session(s) cancelled)", cancelled)
        return cancelled

    def _log_summary(self, item: WorkItem) -> None:
        logger.info("Workflow finished [%s]", item.session_id)
        logger.info("  Outcome: %s", item.outcome.value)
        logger.info("  Iterations: %d", item.iteration_count)
        logger.info("  Citations: %d", item.citation_count)
        if item.error is not None:
            logger.info("  Error: %s", item.error)
