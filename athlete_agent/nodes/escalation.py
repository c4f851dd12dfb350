"""Escalate stage: refer the athlete to the authority that can act."""

from __future__ import annotations

import time
from typing import Any, Dict

import structlog
from langsmith import traceable

from athlete_agent.composer.disclaimers import with_empathy
from athlete_agent.composer.escalation_targets import (
    DEFAULT_ESCALATION_DOMAIN,
    build_escalation_info,
    build_referral_message,
    determine_urgency,
    get_escalation_targets,
)
from athlete_agent.composer.prompts import ESCALATION_TEMPLATE
from athlete_agent.llm.client import ChatModelClient
from athlete_agent.schemas.agent_state import ConversationState
from libs.common.resilience import CircuitOpenError

logger = structlog.get_logger(__name__)

DEFAULT_REASON = "The situation needs direct help from an organization that can act on it."


class EscalateNode:
    """Graph stage for the escalation path.

    Always produces an ``escalation`` record and an answer. The referral text
    comes from the model when it is available and from the verified contact
    list otherwise.
    """

    def __init__(self, llm: ChatModelClient):
        self.llm = llm

    @traceable(run_type="chain", name="escalate", tags=["escalation"])
    async def __call__(self, state: ConversationState) -> Dict[str, Any]:
        start_time = time.time()
        domain = state.topic_domain or DEFAULT_ESCALATION_DOMAIN
        targets = get_escalation_targets(domain)
        urgency = determine_urgency(domain, state.has_time_constraint)
        reason = state.escalation_reason or DEFAULT_REASON

        prompt = ESCALATION_TEMPLATE.format(
            contacts="\n\n".join(target.contact_block() for target in targets),
            urgency=urgency,
            reason=reason,
            message=state.current_message or "(no message)",
        )

        try:
            answer = (await self.llm.invoke(prompt)).strip()
            if not answer:
                raise ValueError("Empty referral from language model")
        except CircuitOpenError:
            logger.warning("escalate circuit open, using referral template", trace_id=state.trace_id)
            answer = build_referral_message(targets, urgency)
        except Exception as e:
            logger.error("escalate failed, using referral template", error=str(e), trace_id=state.trace_id)
            answer = build_referral_message(targets, urgency)

        escalation = build_escalation_info(domain, reason, urgency)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "escalate completed",
            target=escalation.target,
            urgency=urgency,
            domain=domain,
            duration_ms=round(duration_ms, 2),
            trace_id=state.trace_id,
        )
        return {
            "escalation": escalation,
            "answer": with_empathy(answer, state.emotional_state),
            "disclaimer_required": True,
        }
