"""
Chat model adapters for the QueryAnalyzer and ReasoningProvider interfaces.

Any LangChain chat model (``BaseChatModel``) can back a workflow: the
adapters send a system + human message pair through ``ainvoke``, pull JSON out
of the reply where one is expected and translate failures into the workflow
error taxonomy, keeping the retryable/fatal classification.
"""

import json
import logging
import re
from typing import Any, Mapping

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from adaptive_research.config.settings import Settings, get_settings
from adaptive_research.errors import CompletionError, ProviderError, is_retryable_error
from adaptive_research.utils.rate_limiter import RateLimiter
from adaptive_research.workflow.models import (
    Citation,
    QueryAnalysis,
    ReasoningMethod,
    ReasoningOutput,
    UserProfile,
)

logger = logging.getLogger(__name__)


# =============================================================================
# PROMPTS
# =============================================================================

ANALYSIS_SYSTEM_PROMPT = """You classify research queries.
Return ONLY a JSON object with these keys:
- "intent": one of "research", "comparison", "explanation", "creative", "analysis"
- "complexityScore": integer from 1 (trivial) to 10 (very complex)
- "requiresCitations": true if the answer should be backed by external sources
- "topics": list of short topic names
- "suggestedReasoning": one of "chain_of_thought", "chain_of_ideas", "chain_of_table"
"""

REASONING_SYSTEM_PROMPT = "You are a careful research assistant. {method_instructions}"

METHOD_INSTRUCTIONS = {
    ReasoningMethod.CHAIN_OF_THOUGHT: (
        "Reason step by step. State each intermediate conclusion before the final answer."
    ),
    ReasoningMethod.CHAIN_OF_IDEAS: (
        "Generate several distinct ideas, develop the strongest ones and combine them."
    ),
    ReasoningMethod.CHAIN_OF_TABLE: (
        "Organize the comparison as a table. Return a JSON object with a "
        '"table" key (list of rows) and a "summary" key.'
    ),
}

MAX_CITATION_CHARS = 500


# =============================================================================
# HELPERS
# =============================================================================


def extract_json(text: str) -> str | None:
    """Extract a JSON object or array from a model reply (code fences allowed)."""
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    if fenced:
        text = fenced.group(1)

    obj_match = re.search(r"\{[\s\S]*\}", text)
    if obj_match:
        return obj_match.group()

    arr_match = re.search(r"\[[\s\S]*\]", text)
    if arr_match:
        return arr_match.group()

    return None


def _message_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        # Multi-part replies: keep the text parts
        parts = [p.get("text", "") if isinstance(p, dict) else str(p) for p in content]
        return "".join(parts)
    return str(content)


def format_citations(citations: list[Citation]) -> str:
    if not citations:
        return "(no sources)"
    lines = []
    for i, c in enumerate(citations, 1):
        content = c.content[:MAX_CITATION_CHARS]
        lines.append(f"[{i}] {c.title} ({c.url})\n{content}")
    return "\n\n".join(lines)


def format_profile(profile: UserProfile | None) -> str:
    if profile is None:
        return ""
    return (
        f"Audience: {profile.expertise_level} level, domain {profile.domain}, "
        f"preferred format {profile.preferred_format.value}."
    )


# =============================================================================
# ADAPTERS
# =============================================================================


class _ChatAdapter:
    """Shared invocation path: optional throttling, error translation."""

    error_class: type = ProviderError

    def __init__(self, model: BaseChatModel, rate_limiter: RateLimiter | None = None):
        self.model = model
        self.rate_limiter = rate_limiter

    @classmethod
    def from_settings(cls, model: BaseChatModel, settings: Settings | None = None, **kwargs):
        """Build with the rate limiting configured in the ``llm`` settings section."""
        settings = settings or get_settings()
        limits = settings.llm.rate_limiting
        rate_limiter = RateLimiter.from_config(limits) if limits.enabled else None
        return cls(model, rate_limiter=rate_limiter, **kwargs)

    async def _invoke(self, messages: list[BaseMessage]) -> str:
        try:
            if self.rate_limiter:
                await self.rate_limiter.acquire()
            response = await self.model.ainvoke(messages)
        except Exception as e:
            retryable = is_retryable_error(e)
            logger.warning(
                "Chat model call failed (%s): %s",
                "retryable" if retryable else "fatal",
                e,
            )
            raise self.error_class(f"Chat model call failed: {e}", retryable=retryable) from e
        return _message_text(response)


class ChatQueryAnalyzer(_ChatAdapter):
    """QueryAnalyzer backed by a chat model that answers in JSON."""

    error_class = ProviderError

    def __init__(
        self,
        model: BaseChatModel,
        rate_limiter: RateLimiter | None = None,
        system_prompt: str = ANALYSIS_SYSTEM_PROMPT,
    ):
        super().__init__(model, rate_limiter)
        self.system_prompt = system_prompt

    async def analyze(self, query: str) -> QueryAnalysis:
        messages = [
            SystemMessage(content=self.system_prompt),
            HumanMessage(content=f"Query: {query}"),
        ]
        text = await self._invoke(messages)

        json_str = extract_json(text)
        if json_str is None:
            raise ProviderError("Query analysis reply contained no JSON", retryable=False)
        try:
            analysis = QueryAnalysis.model_validate(json.loads(json_str))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ProviderError(f"Invalid query analysis: {e}", retryable=False) from e

        logger.info(
            "Query analysis: %s (complexity %d)", analysis.intent, analysis.complexity_score
        )
        return analysis


class ChatReasoningProvider(_ChatAdapter):
    """ReasoningProvider backed by a chat model."""

    error_class = CompletionError

    def build_messages(self, prompt_context: Mapping[str, Any]) -> list[BaseMessage]:
        method = prompt_context.get("reasoning_method") or ReasoningMethod.CHAIN_OF_THOUGHT
        method = ReasoningMethod(method)
        prompt_config = prompt_context.get("prompt_config")

        custom_prompt = getattr(prompt_config, "system_prompt", None)
        if custom_prompt:
            system = f"{custom_prompt}\n\n{METHOD_INSTRUCTIONS[method]}"
        else:
            system = REASONING_SYSTEM_PROMPT.format(method_instructions=METHOD_INSTRUCTIONS[method])

        human = (
            f"Question: {prompt_context.get('query', '')}\n\n"
            f"Sources:\n{format_citations(list(prompt_context.get('citations') or []))}\n\n"
            f"{format_profile(prompt_context.get('user_profile'))}"
        ).strip()
        return [SystemMessage(content=system), HumanMessage(content=human)]

    async def complete(self, prompt_context: Mapping[str, Any]) -> ReasoningOutput:
        text = await self._invoke(self.build_messages(prompt_context))
        if not text.strip():
            raise CompletionError("Chat model returned an empty reply", retryable=False)

        structured = None
        json_str = extract_json(text)
        if json_str is not None:
            try:
                structured = json.loads(json_str)
            except json.JSONDecodeError:
                logger.debug("Reply looked like JSON but did not parse, keeping raw text")

        return ReasoningOutput(raw_text=text, structured_output=structured)
