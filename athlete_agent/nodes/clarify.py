"""Clarify stage: ask the athlete for the missing detail."""

from typing import Any, Dict

import structlog

from athlete_agent.schemas.agent_state import ConversationState

logger = structlog.get_logger(__name__)

DEFAULT_CLARIFICATION = (
    "Could you tell me a bit more about your situation? For example, which sport or "
    "organization is involved and what you would like to know."
)


class ClarifyNode:
    async def __call__(self, state: ConversationState) -> Dict[str, Any]:
        question = (state.clarification_question or "").strip() or DEFAULT_CLARIFICATION
        logger.info("clarify completed", used_default=question == DEFAULT_CLARIFICATION, trace_id=state.trace_id)
        return {"answer": question, "disclaimer_required": False}
