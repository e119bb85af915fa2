import asyncio

import pytest
from langchain_core.language_models import FakeListChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from adaptive_research.config.settings import LLMConfig, RateLimitingConfig, Settings
from adaptive_research.errors import CompletionError, ProviderError
from adaptive_research.providers import ChatQueryAnalyzer, ChatReasoningProvider, extract_json
from adaptive_research.providers.base import CitationSource, QueryAnalyzer, ReasoningProvider
from adaptive_research.utils.rate_limiter import RateLimiter
from adaptive_research.workflow.models import PromptConfig, ReasoningMethod, UserProfile
from fakes import FakeCitationSource, make_citation


class FailingChatModel:
    def __init__(self, error):
        self.error = error

    async def ainvoke(self, messages):
        raise self.error


def test_extract_json_handles_fences_and_prose():
    assert extract_json('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert extract_json('Sure! {"intent": "research"} Hope that helps.') == '{"intent": "research"}'
    assert extract_json("[1, 2]") == "[1, 2]"
    assert extract_json("no json here") is None


def test_chat_analyzer_parses_camel_case_json():
    model = FakeListChatModel(
        responses=[
            '```json\n{"intent": "comparison", "complexityScore": 7, '
            '"requiresCitations": true, "topics": ["databases"]}\n```'
        ]
    )
    analyzer = ChatQueryAnalyzer(model)

    analysis = asyncio.run(analyzer.analyze("Compare Postgres and MySQL"))

    assert isinstance(analyzer, QueryAnalyzer)
    assert analysis.intent == "comparison"
    assert analysis.complexity_score == 7
    assert analysis.topics == ("databases",)


def test_chat_analyzer_reports_unparseable_replies_as_fatal():
    analyzer = ChatQueryAnalyzer(FakeListChatModel(responses=["I cannot help with that."]))

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(analyzer.analyze("anything"))

    assert excinfo.value.retryable is False


def test_transport_errors_keep_their_classification():
    transient = ChatQueryAnalyzer(FailingChatModel(ConnectionError("connection reset")))
    fatal = ChatQueryAnalyzer(FailingChatModel(PermissionError("invalid api key")))

    with pytest.raises(ProviderError) as transient_error:
        asyncio.run(transient.analyze("q"))
    with pytest.raises(ProviderError) as fatal_error:
        asyncio.run(fatal.analyze("q"))

    assert transient_error.value.retryable is True
    assert fatal_error.value.retryable is False


def test_reasoning_provider_builds_method_specific_messages():
    provider = ChatReasoningProvider(FakeListChatModel(responses=["ok"]))
    messages = provider.build_messages(
        {
            "query": "Compare REST and gRPC",
            "reasoning_method": ReasoningMethod.CHAIN_OF_TABLE,
            "citations": [make_citation(1)],
            "user_profile": UserProfile(expertise_level="beginner"),
            "prompt_config": PromptConfig(),
        }
    )

    assert isinstance(messages[0], SystemMessage)
    assert isinstance(messages[1], HumanMessage)
    assert "table" in messages[0].content
    assert "[1] Source 1" in messages[1].content
    assert "beginner" in messages[1].content


def test_custom_system_prompt_keeps_method_instructions():
    provider = ChatReasoningProvider(FakeListChatModel(responses=["ok"]))
    messages = provider.build_messages(
        {
            "query": "q",
            "reasoning_method": "chain_of_ideas",
            "prompt_config": PromptConfig(system_prompt="You write for engineers."),
        }
    )

    assert messages[0].content.startswith("You write for engineers.")
    assert "ideas" in messages[0].content
    assert "(no sources)" in messages[1].content


def test_reasoning_provider_returns_structured_output_when_present():
    model = FakeListChatModel(responses=['Here: {"table": [["a", "b"]], "summary": "s"}'])
    provider = ChatReasoningProvider(model, rate_limiter=RateLimiter(requests_per_minute=60))

    output = asyncio.run(provider.complete({"query": "q", "reasoning_method": "chain_of_table"}))

    assert isinstance(provider, ReasoningProvider)
    assert output.structured_output == {"table": [["a", "b"]], "summary": "s"}
    assert provider.rate_limiter.total_requests == 1


def test_reasoning_provider_keeps_plain_text():
    provider = ChatReasoningProvider(FakeListChatModel(responses=["Just prose."]))
    output = asyncio.run(provider.complete({"query": "q"}))

    assert output.raw_text == "Just prose."
    assert output.structured_output is None


def test_reasoning_provider_wraps_failures():
    provider = ChatReasoningProvider(FailingChatModel(TimeoutError("timed out")))

    with pytest.raises(CompletionError) as excinfo:
        asyncio.run(provider.complete({"query": "q"}))

    assert excinfo.value.retryable is True


def test_fake_source_satisfies_the_citation_source_interface():
    assert isinstance(FakeCitationSource(), CitationSource)


def test_from_settings_applies_configured_rate_limiting():
    settings = Settings(
        llm=LLMConfig(rate_limiting=RateLimitingConfig(enabled=True, requests_per_minute=42))
    )
    model = FakeListChatModel(responses=["ok"])

    limited = ChatReasoningProvider.from_settings(model, settings)
    unlimited = ChatQueryAnalyzer.from_settings(model, Settings(), system_prompt="Classify.")

    assert limited.rate_limiter.requests_per_minute == 42
    assert unlimited.rate_limiter is None
    assert unlimited.system_prompt == "Classify."
