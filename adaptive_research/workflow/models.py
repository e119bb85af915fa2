"""
Workflow Data Models - The WorkItem and the value objects it carries.

A WorkItem represents one research run. It is frozen: every transition
(``with_citations``, ``with_reasoning``, ``with_response``, ``with_error``...)
returns a new WorkItem that copies the prior evidence and bookkeeping,
applies exactly one change and appends one audit record.
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping, Sequence
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from adaptive_research.errors import WorkflowCancelledError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# STEP NAMES
# =============================================================================


class StepName:
    """Names the router and executor use to address steps."""

    START = "start"
    QUERY_ANALYSIS = "query_analysis"
    CITATION_FETCH = "citation_fetch"
    REASONING_SELECTION = "reasoning_selection"
    REASONING_EXECUTION = "reasoning_execution"
    END = "end"

    ALL = (START, QUERY_ANALYSIS, CITATION_FETCH, REASONING_SELECTION, REASONING_EXECUTION, END)

    # Steps that must be registered before a run can start
    REQUIRED = (QUERY_ANALYSIS, CITATION_FETCH, REASONING_SELECTION, REASONING_EXECUTION)


# =============================================================================
# ENUMS
# =============================================================================


class ReasoningMethod(str, Enum):
    """Reasoning strategies a ReasoningProvider can be asked to follow."""

    CHAIN_OF_THOUGHT = "chain_of_thought"
    CHAIN_OF_IDEAS = "chain_of_ideas"
    CHAIN_OF_TABLE = "chain_of_table"


class OutputFormat(str, Enum):
    MARKDOWN = "markdown"
    JSON = "json"
    TABLE = "table"
    TEXT = "text"


class RunOutcome(str, Enum):
    """User-visible outcome of a run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"  # ended without an answer and without an error


# =============================================================================
# EVIDENCE
# =============================================================================


class Citation(BaseModel):
    """A single source returned by a CitationSource."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    url: str = ""
    content: str = ""
    relevance_score: float = 0.0
    domain: str = ""
    retrieved_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="before")
    @classmethod
    def _derive_domain(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("domain") and data.get("url"):
            data = {**data, "domain": urlparse(data["url"]).netloc.lower()}
        return data

    @field_validator("relevance_score")
    @classmethod
    def _clamp_relevance(cls, value: float) -> float:
        return max(0.0, min(1.0, value))


class QueryAnalysis(BaseModel):
    """Result of the query analysis step.

    Accepts both snake_case and camelCase keys so that JSON produced by a
    language model (``complexityScore``, ``requiresCitations``) validates as is.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    intent: str = "research"
    complexity_score: int = 5
    requires_citations: bool = True
    topics: tuple[str, ...] = ()
    suggested_reasoning: str | None = None

    @field_validator("complexity_score", mode="before")
    @classmethod
    def _clamp_complexity(cls, value: Any) -> int:
        return max(0, min(10, int(round(float(value)))))

    @field_validator("intent", mode="before")
    @classmethod
    def _normalize_intent(cls, value: Any) -> str:
        return str(value or "research").strip().lower()


class UserProfile(BaseModel):
    """Who is asking. Influences reasoning selection and prompt context."""

    model_config = ConfigDict(frozen=True)

    user_id: str = "anonymous"
    domain: str = "general"
    expertise_level: str = "intermediate"
    preferences: tuple[str, ...] = ("balanced",)
    topic_interests: dict[str, int] = Field(default_factory=dict)
    previous_queries: tuple[str, ...] = ()
    preferred_format: OutputFormat = OutputFormat.MARKDOWN

    def has_preference(self, preference: str) -> bool:
        return preference in self.preferences

    def topic_weight(self, topic: str) -> int:
        return self.topic_interests.get(topic.lower(), 0)


class PromptConfig(BaseModel):
    """Opaque configuration handed to downstream steps."""

    model_config = ConfigDict(frozen=True, extra="allow")

    system_prompt: str | None = None
    output_format: OutputFormat | None = None
    max_citations: int = 10
    temperature: float | None = None


class ReasoningOutput(BaseModel):
    """What a ReasoningProvider returns."""

    model_config = ConfigDict(frozen=True)

    raw_text: str = ""
    structured_output: Any = None


class QualityAssessment(BaseModel):
    """Aggregate signal describing how sufficient the gathered evidence is."""

    model_config = ConfigDict(frozen=True)

    avg_relevance: float = 0.0
    source_diversity: float = 0.0
    content_richness: float = 0.0
    overall: float = 0.0
    citation_count: int = 0
    context: str = ""


class RoutingSignals(BaseModel):
    """Typed breadcrumbs steps and router leave for each other."""

    model_config = ConfigDict(frozen=True)

    # Set by the router when it sends the run back for better sources;
    # the citation step broadens its query while this is on.
    citation_improvement_round: bool = False
    # The low-quality response improvement loop runs at most once
    quality_improvement_done: bool = False


class ProcessingStep(BaseModel):
    """Audit record of one WorkItem transition."""

    model_config = ConfigDict(frozen=True)

    action: str
    detail: str = ""
    at: datetime = Field(default_factory=_utcnow)

    def __str__(self) -> str:
        return f"{self.action}: {self.detail} at {self.at.isoformat()}"


# =============================================================================
# WORK ITEM
# =============================================================================

# Dict fields copied on every transition
_MAPPING_FIELDS = ("metadata", "retry_counts", "quality_history")


class WorkItem(BaseModel):
    """
    State threaded through the workflow.

    Bookkeeping fields (iteration_count, visited_steps, retry_counts,
    quality_history) are owned by the router and executor. Steps only touch
    evidence and decision fields through the ``with_*`` transitions.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    # Identity
    session_id: str
    query: str
    user_profile: UserProfile | None = None
    prompt_config: PromptConfig = Field(default_factory=PromptConfig)

    # Evidence and decisions
    citations: tuple[Citation, ...] = ()
    query_analysis: QueryAnalysis | None = None
    selected_reasoning_method: ReasoningMethod | None = None
    final_response: Any = None

    # Bookkeeping
    iteration_count: int = 0
    visited_steps: frozenset[str] = frozenset()
    retry_counts: dict[str, int] = Field(default_factory=dict)
    quality_history: dict[str, QualityAssessment] = Field(default_factory=dict)
    signals: RoutingSignals = Field(default_factory=RoutingSignals)

    # Outcome
    error: BaseException | None = None
    is_complete: bool = False
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: datetime | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)
    processing_steps: tuple[ProcessingStep, ...] = ()

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _transition(self, action: str, detail: Any, **changes: Any) -> "WorkItem":
        """Copy with ``changes`` applied and one audit record appended."""
        record = ProcessingStep(action=action, detail=str(detail))
        changes["processing_steps"] = self.processing_steps + (record,)
        # model_copy is shallow; successors never share a dict with this item
        for field in _MAPPING_FIELDS:
            changes.setdefault(field, dict(getattr(self, field)))
        return self.model_copy(update=changes)

    def isolated(self) -> "WorkItem":
        """Copy that shares no mutable mapping with this item (fan-out snapshots)."""
        return self.model_copy(update={f: dict(getattr(self, f)) for f in _MAPPING_FIELDS})

    def with_query_analysis(self, analysis: QueryAnalysis) -> "WorkItem":
        return self._transition(
            "query_analysis",
            f"{analysis.intent} (complexity {analysis.complexity_score})",
            query_analysis=analysis,
        )

    def with_citations(self, citations: Sequence[Citation]) -> "WorkItem":
        citations = tuple(citations)
        return self._transition("citations_fetched", len(citations), citations=citations)

    def with_reasoning(self, method: ReasoningMethod | str) -> "WorkItem":
        method = ReasoningMethod(method)
        return self._transition("reasoning_selected", method.value, selected_reasoning_method=method)

    def with_response(self, response: Any) -> "WorkItem":
        return self._transition("response_generated", type(response).__name__, final_response=response)

    def with_error(self, error: BaseException) -> "WorkItem":
        return self._transition(
            "error_occurred",
            f"{type(error).__name__}: {error}",
            error=error,
            end_time=_utcnow(),
        )

    def with_metadata(self, updates: Mapping[str, Any] | None = None, **entries: Any) -> "WorkItem":
        metadata = dict(self.metadata)
        metadata.update(updates or {})
        metadata.update(entries)
        keys = sorted(set(updates or {}) | set(entries))
        return self._transition("metadata_updated", ", ".join(keys), metadata=metadata)

    def with_signals(self, **changes: Any) -> "WorkItem":
        signals = self.signals.model_copy(update=changes)
        detail = ", ".join(f"{k}={v}" for k, v in sorted(changes.items()))
        return self._transition("signals_updated", detail, signals=signals)

    def with_bookkeeping(
        self,
        *,
        iteration_count: int | None = None,
        visited_steps: frozenset[str] | set[str] | None = None,
        retry_counts: Mapping[str, int] | None = None,
        quality_history: Mapping[str, QualityAssessment] | None = None,
    ) -> "WorkItem":
        """Router/executor only: replace bookkeeping fields."""
        changes: dict[str, Any] = {}
        if iteration_count is not None:
            changes["iteration_count"] = iteration_count
        if visited_steps is not None:
            changes["visited_steps"] = frozenset(visited_steps)
        if retry_counts is not None:
            changes["retry_counts"] = dict(retry_counts)
        if quality_history is not None:
            changes["quality_history"] = dict(quality_history)
        iteration = changes.get("iteration_count", self.iteration_count)
        return self._transition("bookkeeping", f"iteration={iteration}", **changes)

    def mark_complete(self) -> "WorkItem":
        return self._transition("completed", "success", is_complete=True, end_time=_utcnow())

    def mark_finished(self, reason: str) -> "WorkItem":
        """Stop the clock without claiming success."""
        return self._transition("finished", reason, end_time=self.end_time or _utcnow())

    # -------------------------------------------------------------------------
    # Derived views
    # -------------------------------------------------------------------------

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def is_terminal(self) -> bool:
        return self.has_error or self.is_complete

    @property
    def citation_count(self) -> int:
        return len(self.citations)

    @property
    def requires_citations(self) -> bool:
        """Whether the analysis leaves room for evidence gathering."""
        return self.query_analysis is None or self.query_analysis.requires_citations

    @property
    def latest_quality(self) -> QualityAssessment | None:
        if not self.quality_history:
            return None
        return list(self.quality_history.values())[-1]

    @property
    def outcome(self) -> RunOutcome:
        if isinstance(self.error, WorkflowCancelledError):
            return RunOutcome.CANCELLED
        if self.error is not None:
            return RunOutcome.FAILED
        if self.is_complete:
            return RunOutcome.SUCCEEDED
        if self.end_time is not None:
            return RunOutcome.EXHAUSTED
        return RunOutcome.RUNNING

    @property
    def processing_time(self) -> timedelta:
        return (self.end_time or _utcnow()) - self.start_time

    def retry_count(self, step_name: str) -> int:
        return self.retry_counts.get(step_name, 0)

    def __repr__(self) -> str:
        return (
            f"WorkItem(session={self.session_id!r}, iteration={self.iteration_count}, "
            f"citations={self.citation_count}, outcome={self.outcome.value})"
        )
