"""Classifier stage: turn the latest message into a structured intent record.

The language model is asked for JSON. Its output is never trusted as-is:
unknown enum values fall back to safe defaults, unrecognized organization
ids are dropped, and every repair is recorded as a warning. A failed or
rate-limited model call yields the default record instead of failing the
turn.
"""

from __future__ import annotations

import time
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

import structlog
from langsmith import traceable
from pydantic import BaseModel, Field

from athlete_agent.composer.prompts import CLASSIFIER_TEMPLATE
from athlete_agent.llm.client import ChatModelClient, parse_json_response
from athlete_agent.schemas.agent_state import ConversationState
from athlete_agent.schemas.taxonomy import (
    DEFAULT_ORG_IDS,
    EMOTIONAL_STATES,
    filter_org_ids,
    normalize_domain,
    normalize_intent,
)
from libs.common.resilience import CircuitOpenError

logger = structlog.get_logger(__name__)


class ClassifierOutput(BaseModel):
    """Validated classifier result."""

    topic_domain: Optional[str] = None
    detected_org_ids: List[str] = Field(default_factory=list)
    query_intent: str = "general"
    has_time_constraint: bool = False
    emotional_state: str = "neutral"
    should_escalate: bool = False
    escalation_reason: Optional[str] = None
    needs_clarification: bool = False
    clarification_question: Optional[str] = None

    def to_patch(self) -> Dict[str, Any]:
        return {
            "topic_domain": self.topic_domain,
            "detected_org_ids": list(self.detected_org_ids),
            "query_intent": self.query_intent,
            "has_time_constraint": self.has_time_constraint,
            "emotional_state": self.emotional_state,
            "escalation_reason": self.escalation_reason,
            "needs_clarification": self.needs_clarification,
            "clarification_question": self.clarification_question,
        }


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_classifier_response(
    raw: str, known_org_ids: FrozenSet[str] = DEFAULT_ORG_IDS
) -> Tuple[ClassifierOutput, List[str]]:
    """Parse and repair a classifier reply.

    Returns the validated output and the list of repairs made.

    Raises:
        ValueError: the reply is not a JSON object (json.JSONDecodeError included).
    """
    parsed = parse_json_response(raw)
    if not isinstance(parsed, dict):
        raise ValueError("Classifier response is not a JSON object")

    warnings: List[str] = []

    raw_domain = parsed.get("topicDomain")
    topic_domain = normalize_domain(raw_domain)
    if raw_domain is not None and topic_domain is None:
        warnings.append(f"Invalid topicDomain {raw_domain!r}; cleared")

    raw_intent = parsed.get("queryIntent")
    query_intent = normalize_intent(raw_intent)
    if query_intent is None:
        warnings.append(f"Invalid queryIntent {raw_intent!r}; defaulted to 'general'")
        query_intent = "general"

    raw_emotion = parsed.get("emotionalState", "neutral")
    emotional_state = raw_emotion if raw_emotion in EMOTIONAL_STATES else "neutral"
    if emotional_state != raw_emotion:
        warnings.append(f"Invalid emotionalState {raw_emotion!r}; defaulted to 'neutral'")

    raw_org_ids = parsed.get("detectedOrgIds", parsed.get("detectedNgbIds", []))
    org_ids, rejected = filter_org_ids(raw_org_ids, known_org_ids)
    if rejected:
        warnings.append(f"Dropped unrecognized organization ids: {', '.join(rejected)}")

    should_escalate = parsed.get("shouldEscalate") is True
    if should_escalate:
        query_intent = "escalation"

    needs_clarification = parsed.get("needsClarification") is True

    output = ClassifierOutput(
        topic_domain=topic_domain,
        detected_org_ids=org_ids,
        query_intent=query_intent,
        has_time_constraint=parsed.get("hasTimeConstraint") is True,
        emotional_state=emotional_state,
        should_escalate=should_escalate,
        escalation_reason=_optional_text(parsed.get("escalationReason")) if should_escalate else None,
        needs_clarification=needs_clarification,
        clarification_question=(
            _optional_text(parsed.get("clarificationQuestion")) if needs_clarification else None
        ),
    )
    return output, warnings


class ClassifierNode:
    """Graph stage that classifies the latest user message."""

    def __init__(self, llm: ChatModelClient, known_org_ids: Optional[Iterable[str]] = None):
        self.llm = llm
        self.known_org_ids = frozenset(known_org_ids) if known_org_ids is not None else DEFAULT_ORG_IDS

    @traceable(run_type="chain", name="classifier", tags=["classification"])
    async def __call__(self, state: ConversationState) -> Dict[str, Any]:
        start_time = time.time()
        message = state.current_message
        if not message:
            logger.info("classifier skipped, empty message", trace_id=state.trace_id)
            return {**ClassifierOutput().to_patch(), "warnings": []}

        prompt = CLASSIFIER_TEMPLATE.format(
            summary=state.conversation_summary or "None",
            history=state.history_text() or "None",
            sport=state.user_sport or "Not specified",
            message=message,
        )

        try:
            raw = await self.llm.invoke(prompt)
            output, warnings = parse_classifier_response(raw, self.known_org_ids)
        except CircuitOpenError:
            logger.warning("classifier circuit open, using defaults", trace_id=state.trace_id)
            output, warnings = ClassifierOutput(), ["Classifier unavailable (circuit open); defaults used"]
        except Exception as e:
            logger.error("classifier failed", error=str(e), trace_id=state.trace_id)
            output, warnings = ClassifierOutput(), [f"Classifier failed ({type(e).__name__}); defaults used"]

        for warning in warnings:
            logger.warning("classifier output repaired", warning=warning, trace_id=state.trace_id)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "classifier completed",
            topic_domain=output.topic_domain,
            query_intent=output.query_intent,
            org_ids=output.detected_org_ids,
            emotional_state=output.emotional_state,
            should_escalate=output.should_escalate,
            needs_clarification=output.needs_clarification,
            duration_ms=round(duration_ms, 2),
            trace_id=state.trace_id,
        )
        return {**output.to_patch(), "warnings": warnings}
