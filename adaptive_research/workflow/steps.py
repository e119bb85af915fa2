"""
Workflow Steps - The Step contract, the registry and the adapter steps.

A step is anything with a ``name``, a pure ``should_run(item)`` predicate and
an ``async run(item)`` that returns a new WorkItem. The router and executor
only ever address steps by name through a StepRegistry.

The adapter steps bind an external collaborator (QueryAnalyzer,
CitationSource, ReasoningProvider) to a step name and touch exactly the
WorkItem fields that step is responsible for.
"""

import logging
import re
from typing import Any, Iterator, Protocol, runtime_checkable

from adaptive_research.errors import (
    ProviderError,
    RegistryFrozenError,
    StepError,
    StepNotFoundError,
    is_retryable_error,
)
from adaptive_research.providers.base import (
    CitationSource,
    QueryAnalyzer,
    ReasoningProvider,
    maybe_await,
)
from adaptive_research.workflow.models import (
    Citation,
    OutputFormat,
    QueryAnalysis,
    ReasoningMethod,
    ReasoningOutput,
    StepName,
    UserProfile,
    WorkItem,
)

logger = logging.getLogger(__name__)


# =============================================================================
# STEP CONTRACT
# =============================================================================


@runtime_checkable
class Step(Protocol):
    """A named unit of workflow logic."""

    name: str

    def should_run(self, item: WorkItem) -> bool: ...

    async def run(self, item: WorkItem) -> WorkItem: ...


class StepRegistry:
    """
    Name -> Step mapping.

    Steps are registered before execution begins; ``freeze()`` makes the
    registry read-only so concurrent lookups need no locking.
    """

    def __init__(self, steps: dict[str, Step] | None = None):
        self._steps: dict[str, Step] = {}
        self._frozen = False
        for name, step in (steps or {}).items():
            self.register(name, step)

    def register(self, name: str, step: Step) -> "StepRegistry":
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register '{name}': registry is frozen")
        if not name or not isinstance(name, str):
            raise ValueError("Step name must be a non-empty string")
        if step is None:
            raise ValueError(f"Step '{name}' cannot be None")
        if not isinstance(step, Step):
            raise TypeError(
                f"Step '{name}' must provide should_run(item) and async run(item), "
                f"got {type(step).__name__}"
            )
        if name in self._steps:
            logger.warning("Replacing registered step '%s'", name)
        self._steps[name] = step
        logger.debug("Registered step '%s' (%s)", name, type(step).__name__)
        return self

    def get(self, name: str) -> Step:
        try:
            return self._steps[name]
        except KeyError:
            raise StepNotFoundError(name) from None

    def freeze(self) -> "StepRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> list[str]:
        return list(self._steps)

    def __contains__(self, name: object) -> bool:
        return name in self._steps

    def __iter__(self) -> Iterator[str]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)


# =============================================================================
# HEURISTIC QUERY ANALYSIS
# =============================================================================

_INTENT_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("comparison", ("compare", "versus", r"\bvs\b", "difference", "better", "pros and cons")),
    ("creative", ("how to", "tutorial", "guide", "step by step", "implementation")),
    ("analysis", ("analyze", "evaluate", "assess", "best practices", "architecture")),
    ("explanation", ("what is", "explain", "how does", "why", "define")),
]

_TOPIC_PATTERNS: list[tuple[str, str]] = [
    ("software development", r"\b(java|python|javascript|react|angular|vue|spring|microservices)\b"),
    (
        "artificial intelligence",
        r"\b(machine learning|ai|artificial intelligence|neural network|deep learning)\b",
    ),
    ("cloud computing", r"\b(cloud|aws|azure|kubernetes|docker|devops)\b"),
    ("business", r"\b(market|business|strategy|finance|investment|startup)\b"),
    ("management", r"\b(management|leadership|productivity|workflow|process)\b"),
    ("academic research", r"\b(research|study|paper|publication|academic|scientific)\b"),
]


def detect_intent(query: str) -> str:
    query = query.lower()
    for intent, keywords in _INTENT_KEYWORDS:
        if any(re.search(keyword, query) for keyword in keywords):
            return intent
    return "research"


def complexity_score(query: str, profile: UserProfile | None = None) -> int:
    """Score 1-10 from length, technical vocabulary, concept count and expertise."""
    query = query.lower()
    score = 3

    if len(query) > 200:
        score += 2
    elif len(query) > 100:
        score += 1

    if re.search(r"\b(algorithm|implementation|architecture|framework|methodology)\b", query):
        score += 2
    if re.search(r"\b(optimization|performance|scalability|security|integration)\b", query):
        score += 1

    concepts = [part for part in re.split(r"\band\b|\bor\b|,", query) if part.strip()]
    if len(concepts) > 3:
        score += 2
    elif len(concepts) > 2:
        score += 1

    if re.search(r"\b(comprehensive|detailed|in-depth|thorough|extensive)\b", query):
        score += 1
    if re.search(r"\b(latest|recent|current|modern|state-of-the-art)\b", query):
        score += 1

    if profile is not None:
        if profile.expertise_level == "expert":
            score += 1
        elif profile.expertise_level == "beginner":
            score = max(1, score - 1)

    return min(10, max(1, score))


def extract_topics(query: str, profile: UserProfile | None = None) -> list[str]:
    query = query.lower()
    topics = [topic for topic, pattern in _TOPIC_PATTERNS if re.search(pattern, query)]

    if profile is not None and profile.domain != "general" and profile.domain not in topics:
        topics.append(profile.domain)

    if not topics:
        topics.append("general knowledge")
        if len(query) > 50:
            topics.append("comprehensive analysis")
    return topics


def requires_citations(intent: str) -> bool:
    """Creative requests (how-to, tutorials) are answered without sources."""
    return intent != "creative"


def heuristic_query_analysis(query: str, profile: UserProfile | None = None) -> QueryAnalysis:
    """Keyword-based analysis used when the QueryAnalyzer cannot answer."""
    intent = detect_intent(query)
    analysis = QueryAnalysis(
        intent=intent,
        complexity_score=complexity_score(query, profile),
        requires_citations=requires_citations(intent),
        topics=tuple(extract_topics(query, profile)),
        suggested_reasoning=select_reasoning_method(query, intent, profile).value,
    )
    logger.info(
        "Heuristic analysis: %s (complexity %d, citations %s)",
        analysis.intent,
        analysis.complexity_score,
        "required" if analysis.requires_citations else "not required",
    )
    return analysis


# =============================================================================
# REASONING SELECTION
# =============================================================================


def score_reasoning_methods(
    query: str,
    intent: str | None,
    profile: UserProfile | None = None,
) -> dict[ReasoningMethod, int]:
    """Score each reasoning method from intent, query wording and user profile."""
    query = query.lower()
    scores = {method: 10 for method in ReasoningMethod}

    intent_bonus = {
        "comparison": ReasoningMethod.CHAIN_OF_TABLE,
        "creative": ReasoningMethod.CHAIN_OF_IDEAS,
        "analysis": ReasoningMethod.CHAIN_OF_THOUGHT,
        "research": ReasoningMethod.CHAIN_OF_THOUGHT,
    }
    if intent in intent_bonus:
        scores[intent_bonus[intent]] += 30

    if any(word in query for word in ("compare", "versus", "difference")):
        scores[ReasoningMethod.CHAIN_OF_TABLE] += 20
    if any(word in query for word in ("creative", "idea", "brainstorm")):
        scores[ReasoningMethod.CHAIN_OF_IDEAS] += 20
    if any(word in query for word in ("analyze", "explain", "why")):
        scores[ReasoningMethod.CHAIN_OF_THOUGHT] += 20

    if profile is not None:
        if profile.has_preference("detailed"):
            scores[ReasoningMethod.CHAIN_OF_THOUGHT] += 15
        if profile.has_preference("visual") or profile.preferred_format == OutputFormat.TABLE:
            scores[ReasoningMethod.CHAIN_OF_TABLE] += 15

        domain_bonus = {
            "business": ReasoningMethod.CHAIN_OF_TABLE,
            "academic": ReasoningMethod.CHAIN_OF_THOUGHT,
            "creative": ReasoningMethod.CHAIN_OF_IDEAS,
        }
        if profile.domain in domain_bonus:
            scores[domain_bonus[profile.domain]] += 10

    return scores


def select_reasoning_method(
    query: str,
    intent: str | None,
    profile: UserProfile | None = None,
) -> ReasoningMethod:
    scores = score_reasoning_methods(query, intent, profile)
    # max() keeps the first of equal scores, so ties go to chain of thought
    return max(scores, key=scores.get)


# =============================================================================
# ADAPTER STEPS
# =============================================================================


class QueryAnalysisStep:
    """Classifies the query through a QueryAnalyzer."""

    name = StepName.QUERY_ANALYSIS

    def __init__(self, analyzer: QueryAnalyzer | None = None):
        self.analyzer = analyzer

    def should_run(self, item: WorkItem) -> bool:
        return bool(item.query.strip()) and item.query_analysis is None

    async def run(self, item: WorkItem) -> WorkItem:
        if self.analyzer is None:
            return item.with_query_analysis(heuristic_query_analysis(item.query, item.user_profile))

        try:
            analysis = await maybe_await(self.analyzer.analyze(item.query))
        except ProviderError as e:
            if is_retryable_error(e):
                raise
            logger.warning("Query analyzer failed (%s), using heuristic analysis", e)
            analysis = heuristic_query_analysis(item.query, item.user_profile)

        if analysis is None:
            logger.warning("Query analyzer returned nothing, using heuristic analysis")
            analysis = heuristic_query_analysis(item.query, item.user_profile)
        elif not isinstance(analysis, QueryAnalysis):
            analysis = QueryAnalysis.model_validate(analysis)

        return item.with_query_analysis(analysis)


class CitationFetchStep:
    """Gathers sources through a CitationSource and appends them to the item."""

    name = StepName.CITATION_FETCH

    def __init__(self, source: CitationSource, max_topics: int = 3):
        self.source = source
        self.max_topics = max_topics

    def should_run(self, item: WorkItem) -> bool:
        return item.requires_citations

    def build_query(self, item: WorkItem) -> str:
        """Search query for this round; improvement rounds add the analysis topics."""
        if not item.signals.citation_improvement_round or item.query_analysis is None:
            return item.query
        topics = [t for t in item.query_analysis.topics if t.lower() not in item.query.lower()]
        if not topics:
            return item.query
        return f"{item.query} {' '.join(topics[: self.max_topics])}"

    async def run(self, item: WorkItem) -> WorkItem:
        query = self.build_query(item)
        logger.info("Searching citations for: %s", _truncate(query, 100))

        found = await maybe_await(self.source.search(query))
        citations = [
            c if isinstance(c, Citation) else Citation.model_validate(c) for c in found or ()
        ]
        logger.info("Citation source returned %d result(s)", len(citations))

        item = item.with_citations(item.citations + tuple(citations))
        if item.signals.citation_improvement_round:
            item = item.with_signals(citation_improvement_round=False)
        return item


class ReasoningSelectionStep:
    """Chooses a reasoning method. Pure scoring, no collaborator."""

    name = StepName.REASONING_SELECTION

    def should_run(self, item: WorkItem) -> bool:
        return not item.is_terminal

    async def run(self, item: WorkItem) -> WorkItem:
        intent = item.query_analysis.intent if item.query_analysis else None
        method = select_reasoning_method(item.query, intent, item.user_profile)
        logger.info("Selected reasoning method: %s", method.value)
        return item.with_reasoning(method)


class ReasoningExecutionStep:
    """Produces the final response through a ReasoningProvider."""

    name = StepName.REASONING_EXECUTION

    def __init__(self, provider: ReasoningProvider):
        self.provider = provider

    def should_run(self, item: WorkItem) -> bool:
        return item.selected_reasoning_method is not None

    def build_prompt_context(self, item: WorkItem) -> dict[str, Any]:
        return {
            "session_id": item.session_id,
            "query": item.query,
            "reasoning_method": item.selected_reasoning_method,
            "citations": list(item.citations),
            "query_analysis": item.query_analysis,
            "user_profile": item.user_profile,
            "prompt_config": item.prompt_config,
        }

    async def run(self, item: WorkItem) -> WorkItem:
        output = await maybe_await(self.provider.complete(self.build_prompt_context(item)))
        if output is None:
            raise StepError(self.name, "Reasoning provider returned no output", retryable=False)
        if not isinstance(output, ReasoningOutput):
            output = ReasoningOutput.model_validate(output)
        return item.with_response(output)


def build_default_registry(
    analyzer: QueryAnalyzer | None,
    source: CitationSource,
    provider: ReasoningProvider,
) -> StepRegistry:
    """Registry with the four adapter steps bound to their step names."""
    registry = StepRegistry()
    for step in (
        QueryAnalysisStep(analyzer),
        CitationFetchStep(source),
        ReasoningSelectionStep(),
        ReasoningExecutionStep(provider),
    ):
        registry.register(step.name, step)
    return registry


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."
