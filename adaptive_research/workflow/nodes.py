"""
LangGraph Node Functions - Routing and execution nodes.

Each node:
1. Receives the current WorkflowState
2. Asks the Router, or runs the named steps through the StepExecutor
3. Returns the state update
"""

import logging
from typing import Callable

from adaptive_research.errors import NoNextStepError, UnknownStepError
from adaptive_research.workflow.executor import StepExecutor
from adaptive_research.workflow.models import StepName, WorkItem
from adaptive_research.workflow.router import Router

logger = logging.getLogger(__name__)

# (item, current_step, next_steps)
ProgressCallback = Callable[[WorkItem, str | None, tuple[str, ...]], None]


# =============================================================================
# NODE CONTEXT - Shared across nodes
# =============================================================================


class NodeContext:
    """
    Shared context for the nodes of one compiled graph.

    Holds the router, the executor and an optional progress callback. The
    node functions are bound methods, so several workflows can live in one
    process.
    """

    def __init__(
        self,
        router: Router,
        executor: StepExecutor,
        on_progress: ProgressCallback | None = None,
    ):
        self.router = router
        self.executor = executor
        self.on_progress = on_progress

    def _publish(self, item: WorkItem | None, current_step: str | None, next_steps) -> None:
        if self.on_progress is not None and item is not None:
            self.on_progress(item, current_step, tuple(next_steps))

    # =========================================================================
    # ROUTE NODE
    # =========================================================================

    async def route_node(self, state: dict) -> dict:
        """
        Router node - decides which step(s) run next.

        Updates state with:
        - item: bookkeeping updated by the router
        - next_steps: the step names to execute
        - reason: why the router chose them
        """
        item: WorkItem | None = state.get("item")
        current_step = state.get("current_step")

        if item is not None and item.has_error:
            return {"next_steps": [], "reason": "error attached"}

        logger.info("=" * 50)
        logger.info("ROUTE NODE - Iteration %d", (item.iteration_count + 1) if item else 0)
        logger.info("=" * 50)

        decision = self.router.next(item, current_step)
        item = decision.item
        next_steps = list(decision.next_steps)

        if item is not None:
            if not next_steps and current_step != StepName.END:
                item = item.with_error(NoNextStepError(current_step or StepName.START))
            for name in next_steps:
                if name != StepName.END and name not in self.executor.registry:
                    item = item.with_error(UnknownStepError(name))
                    break

        logger.info("Router decision: %s", ", ".join(next_steps) or "<none>")
        self._publish(item, current_step, next_steps)
        return {"item": item, "next_steps": next_steps, "reason": decision.reason}

    # =========================================================================
    # EXECUTE NODE
    # =========================================================================

    async def execute_node(self, state: dict) -> dict:
        """
        Execution node - runs the step(s) the router chose.

        Updates state with:
        - item: the step result (merged result for a fan-out)
        - current_step: the step the router should continue from
        """
        next_steps = state.get("next_steps") or []
        item, current_step = await self.executor.execute_next(next_steps, state["item"])
        self._publish(item, current_step, ())
        return {"item": item, "current_step": current_step}
