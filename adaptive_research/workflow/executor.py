"""
Step Executor - Runs the steps the router names.

Single step: skip when ``should_run`` is false, otherwise run it under a
timeout. A failure is offered to ``Router.should_retry``; a retryable one
charges the step's retry count, backs off and runs the step again, anything
else is attached to the WorkItem. Step exceptions never escape.

Several steps (fan-out): every branch runs concurrently against the same
snapshot, the executor waits for all of them and folds the branch results
into one WorkItem. The merge is the only place branch results meet.
"""

import asyncio
import logging
from typing import Sequence

from adaptive_research.config.settings import ExecutionConfig, RetryConfig
from adaptive_research.errors import (
    RateLimitError,
    StepError,
    StepNotFoundError,
    StepTimeoutError,
)
from adaptive_research.utils.rate_limiter import calculate_backoff, extract_retry_delay
from adaptive_research.workflow.models import WorkItem
from adaptive_research.workflow.router import Router
from adaptive_research.workflow.steps import StepRegistry

logger = logging.getLogger(__name__)


class StepExecutor:
    """
    Executes named steps from a registry.

    The executor performs no iteration bound of its own: termination is the
    router's iteration cap.
    """

    def __init__(
        self,
        registry: StepRegistry,
        router: Router,
        retry_config: RetryConfig | None = None,
        execution_config: ExecutionConfig | None = None,
        convergence_step: str | None = None,
    ):
        self.registry = registry
        self.router = router
        self.retry_config = retry_config or RetryConfig()
        self.execution_config = execution_config or ExecutionConfig()
        self.convergence_step = convergence_step or router.config.convergence_step

    # =========================================================================
    # SINGLE STEP
    # =========================================================================

    async def execute(self, step_name: str, item: WorkItem) -> WorkItem:
        """
        Run one step to a result.

        Returns:
            The step's WorkItem, the input unchanged when the step does not
            need to run, or the input with ``error`` set
        """
        try:
            step = self.registry.get(step_name)
        except StepNotFoundError as e:
            logger.error("Step not registered: %s", step_name)
            return item.with_error(e)

        if not step.should_run(item):
            logger.info("Skipping %s (nothing to do)", step_name)
            return item

        logger.info("-" * 40)
        logger.info("STEP %s", step_name.upper())
        logger.info("-" * 40)

        attempt = 0
        while True:
            try:
                result = await self._run_with_timeout(step, step_name, item)
            except Exception as e:
                if not self.router.should_retry(item, step_name, e):
                    logger.error("Step %s failed: %s", step_name, e)
                    return item.with_error(e)

                item = self.router.increment_retry_count(item, step_name)
                delay = self._retry_delay(e, attempt)
                logger.warning(
                    "Step %s failed (retry %d/%d): %s. Retrying in %.2fs",
                    step_name,
                    item.retry_count(step_name),
                    self.router.max_retries,
                    e,
                    delay,
                )
                attempt += 1
                if delay > 0:
                    await asyncio.sleep(delay)
                continue

            if not isinstance(result, WorkItem):
                error = StepError(
                    step_name,
                    f"Step '{step_name}' returned {type(result).__name__}, expected WorkItem",
                    retryable=False,
                )
                logger.error("%s", error)
                return item.with_error(error)

            logger.info("Step %s completed", step_name)
            return result

    async def _run_with_timeout(self, step, step_name: str, item: WorkItem) -> WorkItem:
        timeout = self.execution_config.step_timeout_s
        if not timeout:
            return await step.run(item)
        try:
            return await asyncio.wait_for(step.run(item), timeout)
        except asyncio.TimeoutError:
            raise StepTimeoutError(step_name, timeout) from None

    def _retry_delay(self, error: BaseException, attempt: int) -> float:
        cfg = self.retry_config
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(error.retry_after, cfg.max_delay)
        suggested = extract_retry_delay(str(error))
        if suggested is not None:
            return min(suggested, cfg.max_delay)
        return calculate_backoff(attempt, cfg.base_delay, cfg.max_delay, cfg.jitter)

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    async def execute_many(self, step_names: Sequence[str], item: WorkItem) -> WorkItem:
        """Run ``step_names`` concurrently against one snapshot and merge."""
        semaphore = asyncio.Semaphore(self.execution_config.max_concurrency)

        async def branch(step_name: str) -> WorkItem:
            async with semaphore:
                return await self.execute(step_name, item.isolated())

        logger.info("Fan-out: %s", ", ".join(step_names))
        # Cancelling this coroutine cancels every branch through gather
        results = await asyncio.gather(*(branch(name) for name in step_names))
        return self.merge_branches(item, results)

    def merge_branches(self, base: WorkItem, results: Sequence[WorkItem]) -> WorkItem:
        """
        Fold branch results into one WorkItem.

        - Any branch error wins (first one in branch order)
        - Citations come from the last branch that produced any
        - Metadata is merged key-wise, later branches overwrite earlier ones
        - Bookkeeping: max iteration, union of visited steps, max retry count
          per step, union of quality history
        - Analysis, reasoning method and response come from the branch that
          set them
        """
        for result in results:
            if result.error is not None:
                logger.error("Fan-out branch failed: %s", result.error)
                return base.with_error(result.error)

        merged = base
        metadata = dict(base.metadata)
        retry_counts = dict(base.retry_counts)
        quality_history = dict(base.quality_history)
        visited = set(base.visited_steps)
        iteration = base.iteration_count

        for result in results:
            if result.citations and result.citations != base.citations:
                merged = merged.with_citations(result.citations)
            if result.query_analysis is not None and result.query_analysis != base.query_analysis:
                merged = merged.with_query_analysis(result.query_analysis)
            if (
                result.selected_reasoning_method is not None
                and result.selected_reasoning_method != base.selected_reasoning_method
            ):
                merged = merged.with_reasoning(result.selected_reasoning_method)
            if (
                result.final_response is not None
                and result.final_response is not base.final_response
            ):
                merged = merged.with_response(result.final_response)
            if result.signals != base.signals:
                merged = merged.with_signals(**result.signals.model_dump())

            metadata.update(result.metadata)
            for step_name, count in result.retry_counts.items():
                retry_counts[step_name] = max(retry_counts.get(step_name, 0), count)
            quality_history.update(result.quality_history)
            visited |= result.visited_steps
            iteration = max(iteration, result.iteration_count)

        if metadata != base.metadata:
            merged = merged.with_metadata(metadata)
        return merged.with_bookkeeping(
            iteration_count=iteration,
            visited_steps=visited,
            retry_counts=retry_counts,
            quality_history=quality_history,
        )

    # =========================================================================
    # DISPATCH
    # =========================================================================

    async def execute_next(
        self, step_names: Sequence[str], item: WorkItem
    ) -> tuple[WorkItem, str]:
        """
        Execute what the router returned.

        Returns:
            (result, step to report to the router next). A fan-out reports the
            convergence step instead of any branch.
        """
        if len(step_names) == 1:
            return await self.execute(step_names[0], item), step_names[0]
        return await self.execute_many(step_names, item), self.convergence_step
