"""Tests for the language-model adapter."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from athlete_agent.llm.client import (
    ChatModelClient,
    create_chat_client,
    extract_text,
    parse_json_response,
)
from libs.common.resilience import CircuitBreaker, CircuitOpenError


class TestParsing:
    """Test reply text helpers."""

    def test_parse_fenced_json(self):
        raw = '```json\n{"queryIntent": "factual"}\n```'
        assert parse_json_response(raw) == {"queryIntent": "factual"}

    def test_parse_plain_json(self):
        assert parse_json_response('  ["a", "b"] ') == ["a", "b"]

    def test_parse_invalid_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            parse_json_response("Sure! Here is the classification.")

    def test_extract_text_from_content_blocks(self):
        content = [{"type": "text", "text": "Hello "}, {"type": "image_url"}, "world"]
        assert extract_text(content) == "Hello world"


class TestChatModelClient:
    """Test invoke behavior and failure mapping."""

    @pytest.mark.asyncio
    async def test_invoke_returns_reply_text(self):
        client = ChatModelClient(FakeListChatModel(responses=["The deadline is 21 days."]), name="test")

        assert await client.invoke("When is the deadline?") == "The deadline is 21 days."

    @pytest.mark.asyncio
    async def test_rate_limit_maps_to_circuit_open(self):
        chat_model = MagicMock()
        chat_model.ainvoke = AsyncMock(
            side_effect=openai.RateLimitError(
                "Rate limit reached",
                response=httpx.Response(429, request=httpx.Request("POST", "https://api.openai.com/v1/chat")),
                body=None,
            )
        )
        client = ChatModelClient(chat_model, name="test")

        with pytest.raises(CircuitOpenError):
            await client.invoke("prompt")

    @pytest.mark.asyncio
    async def test_open_breaker_skips_model(self):
        chat_model = MagicMock()
        chat_model.ainvoke = AsyncMock()
        breaker = CircuitBreaker("test", failure_threshold=1)
        breaker.record_failure()
        client = ChatModelClient(chat_model, name="test", breaker=breaker)

        with pytest.raises(CircuitOpenError):
            await client.invoke("prompt")
        chat_model.ainvoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_errors_propagate_and_count(self):
        chat_model = MagicMock()
        chat_model.ainvoke = AsyncMock(side_effect=ValueError("bad request"))
        breaker = CircuitBreaker("test", failure_threshold=3)
        client = ChatModelClient(chat_model, name="test", breaker=breaker)

        with pytest.raises(ValueError):
            await client.invoke("prompt")
        assert breaker.failure_count == 1

    def test_create_chat_client(self):
        client = create_chat_client("classifier", "gpt-4o-mini", "sk-test", failure_threshold=2, reset_timeout=5.0)

        assert client.name == "classifier"
        assert client.breaker.failure_threshold == 2
        assert client.breaker.reset_timeout == 5.0
