"""
Collaborator interfaces consumed by the workflow steps.

The orchestrator never talks to a search API or a language model directly.
Steps bind one of these collaborators to a step name. Implementations may be
synchronous or asynchronous; steps call them through ``maybe_await``.
"""

import inspect
from typing import Any, Awaitable, Mapping, Protocol, Sequence, TypeVar, runtime_checkable

from adaptive_research.workflow.models import Citation, QueryAnalysis, ReasoningOutput

T = TypeVar("T")


async def maybe_await(value: T | Awaitable[T]) -> T:
    """Resolve ``value`` whether a collaborator returned it directly or as an awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


@runtime_checkable
class QueryAnalyzer(Protocol):
    """Classifies a query. Raises ProviderError on transport or parsing failure."""

    def analyze(self, query: str) -> QueryAnalysis | Awaitable[QueryAnalysis]: ...


@runtime_checkable
class CitationSource(Protocol):
    """Searches for sources. May return fewer results than requested.

    Raises CitationError, retryable for timeouts, connection failures and
    rate limits, fatal for authentication or configuration problems.
    """

    def search(self, query: str) -> Sequence[Citation] | Awaitable[Sequence[Citation]]: ...


@runtime_checkable
class ReasoningProvider(Protocol):
    """Produces the final answer. Raises CompletionError on failure."""

    def complete(
        self, prompt_context: Mapping[str, Any]
    ) -> ReasoningOutput | Awaitable[ReasoningOutput]: ...
