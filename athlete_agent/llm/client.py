"""Language-model collaborator used by the classifier, planner and writers.

The graph only depends on ``invoke(prompt) -> text``. This adapter puts a
LangChain chat model behind a circuit breaker and reports rate limiting as
``CircuitOpenError`` so stages can tell "back off" apart from other failures.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

import openai
import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI

from libs.common.resilience import CircuitBreaker, CircuitOpenError

logger = structlog.get_logger(__name__)

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")


class ChatModelClient:
    """Prompt-in, text-out wrapper around a chat model."""

    def __init__(self, chat_model: BaseChatModel, name: str, breaker: Optional[CircuitBreaker] = None):
        self.chat_model = chat_model
        self.name = name
        self.breaker = breaker or CircuitBreaker(name)

    async def invoke(self, prompt: str) -> str:
        """Send ``prompt`` as a single user message and return the reply text.

        Raises:
            CircuitOpenError: the circuit is open or the provider rate limited us.
        """
        try:
            response = await self.breaker.call(
                lambda: self.chat_model.ainvoke([HumanMessage(content=prompt)])
            )
        except openai.RateLimitError as e:
            logger.warning("Language model rate limited", model=self.name)
            raise CircuitOpenError(self.name, "Rate limited by provider") from e
        return extract_text(response.content)


def extract_text(content: Any) -> str:
    """Flatten LangChain message content (string or content blocks) into text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return str(content)


def strip_code_fences(text: str) -> str:
    return _FENCE_PATTERN.sub("", text.strip()).strip()


def parse_json_response(text: str) -> Any:
    """Decode a JSON reply, tolerating surrounding Markdown code fences.

    Raises:
        json.JSONDecodeError: the reply is not valid JSON.
    """
    return json.loads(strip_code_fences(text))


def create_chat_client(
    name: str,
    model: str,
    api_key: Optional[str],
    temperature: float = 0.1,
    max_tokens: int = 2000,
    failure_threshold: int = 5,
    reset_timeout: float = 30.0,
) -> ChatModelClient:
    """Build a ChatOpenAI-backed client with its own circuit breaker."""
    chat_model = ChatOpenAI(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        api_key=api_key,
        max_retries=0,
    )
    breaker = CircuitBreaker(name, failure_threshold=failure_threshold, reset_timeout=reset_timeout)
    return ChatModelClient(chat_model, name=name, breaker=breaker)
