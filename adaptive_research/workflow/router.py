"""
Router - Decides which step(s) run next.

Transitions are computed from WorkItem contents, not looked up in a table.
Every call to ``Router.next`` increments the iteration count before anything
else; once it reaches the cap the router answers ``end`` no matter what the
quality heuristics want. That cap is the termination guarantee for the
quality-driven loops.

The router never mutates a WorkItem. Bookkeeping updates (iteration count,
visited steps, retry counts, quality history, routing signals) come back in
the RoutingDecision as a new item.

Retry budgets count executions: the first run of a step uses one unit, so a
budget of 3 allows two loop-backs. A loop-back charges the target step and
is only taken while budget remains, which keeps every retry count at or
below ``max_retries``.
"""

import logging
from dataclasses import dataclass

from adaptive_research.config.settings import WorkflowConfig
from adaptive_research.errors import is_retryable_error
from adaptive_research.workflow.models import QualityAssessment, StepName, WorkItem
from adaptive_research.workflow.quality import QualityAssessor, format_quality

logger = logging.getLogger(__name__)

MAX_TOTAL_ITERATIONS = 15
MAX_RETRIES = 3

# Transitions the router is allowed to produce. Any step may go to END.
VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    StepName.START: frozenset({StepName.QUERY_ANALYSIS}),
    StepName.QUERY_ANALYSIS: frozenset({StepName.CITATION_FETCH}),
    StepName.CITATION_FETCH: frozenset({StepName.CITATION_FETCH, StepName.REASONING_SELECTION}),
    StepName.REASONING_SELECTION: frozenset(
        {StepName.CITATION_FETCH, StepName.REASONING_EXECUTION}
    ),
    StepName.REASONING_EXECUTION: frozenset(
        {StepName.CITATION_FETCH, StepName.REASONING_SELECTION}
    ),
    StepName.END: frozenset(),
}


@dataclass(frozen=True)
class RoutingDecision:
    """Outcome of one routing call."""

    next_steps: tuple[str, ...]
    item: WorkItem | None
    quality: QualityAssessment | None = None
    reason: str = ""

    @property
    def is_terminal(self) -> bool:
        return not self.next_steps or self.next_steps == (StepName.END,)

    @property
    def is_fan_out(self) -> bool:
        return len(self.next_steps) > 1


class Router:
    """
    Decision engine over the step names in ``StepName``.

    Routing is a function of ``(item, current_step)``: it can be tested
    without executing any step.
    """

    def __init__(
        self,
        config: WorkflowConfig | None = None,
        assessor: QualityAssessor | None = None,
    ):
        self.config = config or WorkflowConfig(
            max_total_iterations=MAX_TOTAL_ITERATIONS,
            max_retries=MAX_RETRIES,
        )
        self.assessor = assessor or QualityAssessor()

    @property
    def max_total_iterations(self) -> int:
        return self.config.max_total_iterations

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    # =========================================================================
    # ROUTING
    # =========================================================================

    def next(self, item: WorkItem | None, current_step: str | None) -> RoutingDecision:
        """
        Decide the next step(s) after ``current_step``.

        Args:
            item: Current WorkItem (None ends the workflow)
            current_step: Step that just ran, or None for a fresh run

        Returns:
            RoutingDecision with the next step names and the item carrying
            updated bookkeeping
        """
        if item is None:
            logger.warning("Routing without a work item, ending workflow")
            return RoutingDecision((StepName.END,), None, reason="no work item")

        if current_step is None:
            item = item.with_bookkeeping(
                iteration_count=0,
                visited_steps=frozenset(),
                retry_counts={},
                quality_history={},
            )
            logger.info("Routing [%s]: start -> %s", item.session_id, StepName.QUERY_ANALYSIS)
            return RoutingDecision((StepName.QUERY_ANALYSIS,), item, reason="workflow start")

        iteration = item.iteration_count + 1
        if iteration >= self.max_total_iterations:
            item = item.with_bookkeeping(iteration_count=iteration)
            logger.warning(
                "Routing [%s]: iteration cap reached (%d/%d), forcing end",
                item.session_id,
                iteration,
                self.max_total_iterations,
            )
            return RoutingDecision((StepName.END,), item, reason="iteration cap reached")

        quality = self.assessor.assess(item.citations, context=current_step)
        history = dict(item.quality_history)
        history.pop(current_step, None)
        history[current_step] = quality
        item = item.with_bookkeeping(
            iteration_count=iteration,
            visited_steps=item.visited_steps | {current_step},
            quality_history=history,
        )

        next_steps, item, reason = self._dispatch(item, current_step, quality)

        logger.info(
            "Routing [%s] iteration %d: %s -> %s (%s)",
            item.session_id,
            iteration,
            current_step,
            ", ".join(next_steps) or "<terminal>",
            reason,
        )
        logger.debug("Quality after %s: %s", current_step, format_quality(quality))
        return RoutingDecision(next_steps, item, quality, reason)

    def _dispatch(
        self, item: WorkItem, current_step: str, quality: QualityAssessment
    ) -> tuple[tuple[str, ...], WorkItem, str]:
        if current_step == StepName.START:
            return (StepName.QUERY_ANALYSIS,), item, "start"
        if current_step == StepName.QUERY_ANALYSIS:
            # Citation fetching is always attempted; complexity matters later
            return (StepName.CITATION_FETCH,), item, "analysis done"
        if current_step == StepName.CITATION_FETCH:
            return self._route_after_citations(item, quality)
        if current_step == StepName.REASONING_SELECTION:
            return self._route_after_selection(item, quality)
        if current_step == StepName.REASONING_EXECUTION:
            return self._route_after_execution(item, quality)
        if current_step == StepName.END:
            return (), item, "terminal"

        logger.warning("Unknown step '%s', ending workflow", current_step)
        return (StepName.END,), item, f"unknown step {current_step}"

    def _route_after_citations(self, item: WorkItem, quality: QualityAssessment):
        cfg = self.config
        step = StepName.CITATION_FETCH

        if item.requires_citations:
            if (
                self.is_complex_query(item)
                and (
                    item.citation_count < cfg.min_citations
                    or quality.avg_relevance < cfg.relevance_threshold
                )
                and self._budget_left(item, step, self.max_retries)
            ):
                item = self.increment_retry_count(item, step)
                return (step,), item, "complex query needs more sources"

            if item.citation_count < cfg.min_citations_simple and self._budget_left(
                item, step, cfg.secondary_retry_budget
            ):
                return (step,), self.increment_retry_count(item, step), "too few sources"

        return (StepName.REASONING_SELECTION,), item, "sources accepted"

    def _route_after_selection(self, item: WorkItem, quality: QualityAssessment):
        if item.selected_reasoning_method is None:
            return (StepName.END,), item, "no reasoning method selected"

        if item.requires_citations and self._information_insufficient(item, quality):
            item = self.increment_retry_count(item, StepName.CITATION_FETCH)
            return (StepName.CITATION_FETCH,), item, "information insufficient"

        return (StepName.REASONING_EXECUTION,), item, f"method {item.selected_reasoning_method.value}"

    def _information_insufficient(self, item: WorkItem, quality: QualityAssessment) -> bool:
        cfg = self.config
        step = StepName.CITATION_FETCH

        if (
            self.is_complex_query(item)
            and quality.overall < cfg.sufficiency_threshold
            and self._budget_left(item, step, self.max_retries)
        ):
            return True

        intent = item.query_analysis.intent if item.query_analysis else ""
        return (
            intent == "research"
            and item.citation_count < cfg.research_min_citations
            and self._budget_left(item, step, cfg.secondary_retry_budget)
        )

    def _route_after_execution(self, item: WorkItem, quality: QualityAssessment):
        cfg = self.config

        if item.final_response is None:
            step = StepName.REASONING_SELECTION
            if self._budget_left(item, step, self.max_retries):
                return (step,), self.increment_retry_count(item, step), "no response, reselecting"
            return (StepName.END,), item, "no response and no retries left"

        if not item.requires_citations or not self._budget_left(
            item, StepName.REASONING_EXECUTION, self.max_retries
        ):
            return (StepName.END,), item, "response accepted"

        low_quality = (
            quality.overall < cfg.response_quality_threshold
            and not item.signals.quality_improvement_done
        )
        thin_evidence = (
            self.is_complex_query(item)
            and item.citation_count < cfg.improvement_min_citations
            and self._budget_left(item, StepName.CITATION_FETCH, cfg.secondary_retry_budget)
        )
        if not (low_quality or thin_evidence):
            return (StepName.END,), item, "response accepted"

        item = self.increment_retry_count(item, StepName.REASONING_EXECUTION)
        if low_quality:
            item = item.with_signals(quality_improvement_done=True)

        if quality.avg_relevance < cfg.relevance_threshold:
            item = item.with_signals(citation_improvement_round=True)
            return (StepName.CITATION_FETCH,), item, "improving response: relevance bottleneck"
        return (StepName.REASONING_SELECTION,), item, "improving response"

    # =========================================================================
    # RETRY BOOKKEEPING
    # =========================================================================

    @staticmethod
    def _budget_left(item: WorkItem, step_name: str, budget: int) -> bool:
        """True while another execution of ``step_name`` fits in ``budget``."""
        return 1 + item.retry_count(step_name) < budget

    def increment_retry_count(self, item: WorkItem, step_name: str) -> WorkItem:
        counts = dict(item.retry_counts)
        counts[step_name] = counts.get(step_name, 0) + 1
        logger.debug("Retry count for %s: %d/%d", step_name, counts[step_name], self.max_retries)
        return item.with_bookkeeping(retry_counts=counts)

    def get_retry_count(self, item: WorkItem, step_name: str) -> int:
        return item.retry_count(step_name)

    def reset_retry_count(self, item: WorkItem, step_name: str) -> WorkItem:
        counts = dict(item.retry_counts)
        counts.pop(step_name, None)
        return item.with_bookkeeping(retry_counts=counts)

    def should_retry(self, item: WorkItem, step_name: str, error: BaseException) -> bool:
        """
        Transport retry policy for a step that raised.

        Pure: the executor charges the retry count when it acts on a True.
        """
        if item.retry_count(step_name) >= self.max_retries:
            logger.warning("Retry budget exhausted for %s", step_name)
            return False
        if item.iteration_count >= self.max_total_iterations:
            return False
        return is_retryable_error(error)

    # =========================================================================
    # HEURISTICS AND VALIDATION
    # =========================================================================

    def is_complex_query(self, item: WorkItem) -> bool:
        """Complexity score at or above the threshold, or a long / comparative query."""
        cfg = self.config
        analysis = item.query_analysis
        if analysis is not None and analysis.complexity_score >= cfg.complexity_threshold:
            return True

        query = item.query.lower()
        if len(query) > cfg.complex_query_length:
            return True
        return any(keyword in query for keyword in cfg.complex_query_keywords)

    @staticmethod
    def is_valid_transition(source: str, target: str) -> bool:
        if target == StepName.END:
            return source != StepName.END
        return target in VALID_TRANSITIONS.get(source, frozenset())

    def validate_registry(self, registry) -> bool:
        """Check that every step the router can name is registered."""
        missing = [name for name in StepName.REQUIRED if name not in registry]
        if missing:
            logger.error("Missing required steps: %s", ", ".join(missing))
            return False
        return True
