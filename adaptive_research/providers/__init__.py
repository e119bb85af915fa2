"""
Adaptive research - Collaborator interfaces and chat model adapters.
"""

from .base import CitationSource, QueryAnalyzer, ReasoningProvider, maybe_await
from .chat import ChatQueryAnalyzer, ChatReasoningProvider, extract_json

__all__ = [
    "ChatQueryAnalyzer",
    "ChatReasoningProvider",
    "CitationSource",
    "QueryAnalyzer",
    "ReasoningProvider",
    "extract_json",
    "maybe_await",
]
