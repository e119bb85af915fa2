"""Fake steps and collaborators shared by the test modules."""

from __future__ import annotations

import asyncio

from adaptive_research.config.settings import (
    ExecutionConfig,
    RetryConfig,
    Settings,
    WorkflowConfig,
)
from adaptive_research.workflow.models import (
    Citation,
    QueryAnalysis,
    ReasoningOutput,
    WorkItem,
)


def make_citation(
    index: int = 0,
    relevance: float = 0.9,
    domain: str | None = None,
    content_chars: int = 200,
) -> Citation:
    domain = domain or f"source{index}.example.com"
    return Citation(
        title=f"Source {index}",
        url=f"https://{domain}/doc/{index}",
        content="x" * content_chars,
        relevance_score=relevance,
    )


def make_item(query: str = "What is a monad?", analysis: QueryAnalysis | None = None, **fields):
    item = WorkItem(session_id=fields.pop("session_id", "s1"), query=query, **fields)
    if analysis is not None:
        item = item.with_query_analysis(analysis)
    return item


def fast_settings(execution: dict | None = None, **workflow) -> Settings:
    """Settings with no back-off and no step timeout."""
    return Settings(
        workflow=WorkflowConfig(**workflow),
        retry=RetryConfig(base_delay=0.0, max_delay=0.0, jitter=False),
        execution=ExecutionConfig(step_timeout_s=None, max_concurrency=4, **(execution or {})),
    )


# =============================================================================
# STEPS
# =============================================================================


class ScriptedStep:
    """Step whose run() plays back a script of outcomes.

    Each outcome is an exception to raise, a callable ``item -> result`` or
    None for the default result (the item with a run counter in metadata).
    Once the script is used up every call gives the default result.
    """

    def __init__(self, name: str, outcomes=None, should_run=True, delay: float = 0.0):
        self.name = name
        self.outcomes = list(outcomes or [])
        self._should_run = should_run
        self.delay = delay
        self.calls = 0
        self.seen: list[WorkItem] = []

    def should_run(self, item: WorkItem) -> bool:
        if callable(self._should_run):
            return self._should_run(item)
        return self._should_run

    async def run(self, item: WorkItem):
        self.calls += 1
        self.seen.append(item)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(item)
        return item.with_metadata({f"{self.name}_runs": self.calls})


class PassthroughStep(ScriptedStep):
    """Runs but changes nothing."""

    async def run(self, item: WorkItem):
        self.calls += 1
        self.seen.append(item)
        return item


# =============================================================================
# COLLABORATORS
# =============================================================================


class FakeAnalyzer:
    def __init__(self, analysis=None, errors=()):
        self.analysis = analysis
        self.errors = list(errors)
        self.calls = 0

    async def analyze(self, query: str):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.analysis


class FakeCitationSource:
    """Returns the same citations for every search; errors are raised first."""

    def __init__(self, citations=(), errors=()):
        self.citations = list(citations)
        self.errors = list(errors)
        self.queries: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.queries)

    async def search(self, query: str):
        self.queries.append(query)
        if self.errors:
            raise self.errors.pop(0)
        return list(self.citations)


class FakeReasoningProvider:
    def __init__(self, text: str = "An answer.", errors=()):
        self.text = text
        self.errors = list(errors)
        self.contexts: list[dict] = []

    async def complete(self, prompt_context):
        self.contexts.append(dict(prompt_context))
        if self.errors:
            raise self.errors.pop(0)
        return ReasoningOutput(raw_text=self.text)


class SlowReasoningProvider:
    """Blocks until cancelled; ``started`` is set once completion begins."""

    def __init__(self, seconds: float = 10.0):
        self.seconds = seconds
        self.started = asyncio.Event()
        self.cancelled = False

    async def complete(self, prompt_context):
        self.started.set()
        try:
            await asyncio.sleep(self.seconds)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return ReasoningOutput(raw_text="too late")


class BlockingStep(ScriptedStep):
    """Sleeps until cancelled; ``started`` is set once run() begins."""

    def __init__(self, name: str, seconds: float = 10.0):
        super().__init__(name)
        self.seconds = seconds
        self.started = asyncio.Event()
        self.cancelled = False

    async def run(self, item: WorkItem):
        self.calls += 1
        self.started.set()
        try:
            await asyncio.sleep(self.seconds)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return item
