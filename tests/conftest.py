"""
Pytest configuration and fixtures for athlete agent tests.

Provides shared fixtures for:
- Environment isolation (no real keys or endpoints leak into tests)
- Conversation state and retrieved document builders
- Mock language-model collaborators
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

from athlete_agent.schemas.agent_state import (
    ChatMessage,
    ConversationState,
    DocumentMetadata,
    RetrievedDocument,
)
from libs.common.settings import get_settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Strip agent configuration from the environment for every test."""
    for key in list(os.environ):
        if key.startswith("ATHLETE_AGENT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("TAVILY_API_KEY", raising=False)
    monkeypatch.setenv("LANGCHAIN_TRACING_V2", "false")
    monkeypatch.setenv("LANGSMITH_TRACING", "false")
    monkeypatch.setenv("ATHLETE_AGENT_APP_ENV", "test")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_state():
    """Build a ConversationState whose latest user turn is ``message``."""

    def _make(message="What are the team selection criteria?", history=None, **fields):
        messages = [ChatMessage(role=m["role"], content=m["content"]) for m in (history or [])]
        if message is not None:
            messages.append(ChatMessage(role="user", content=message))
        return ConversationState(messages=messages, **fields)

    return _make


@pytest.fixture
def make_document():
    """Build a RetrievedDocument with flat keyword metadata."""

    def _make(content="Chunk text", score=0.8, fused_score=None, **metadata):
        return RetrievedDocument(
            content=content,
            score=score,
            fused_score=score if fused_score is None else fused_score,
            metadata=DocumentMetadata(**metadata),
        )

    return _make


@pytest.fixture
def mock_llm():
    """Language-model collaborator with an AsyncMock ``invoke``."""
    llm = MagicMock()
    llm.invoke = AsyncMock(return_value="")
    return llm
