"""Stage names and the conditional routers between them.

Routers are pure functions of the state and the active feature flags, so the
same inputs always pick the same branch.
"""

from __future__ import annotations

from enum import Enum

from athlete_agent.orchestrators.feature_flags import FeatureFlags
from athlete_agent.schemas.agent_state import ConversationState

CONFIDENCE_THRESHOLD = 0.5
GRAY_ZONE_UPPER = 0.75
MAX_QUALITY_RETRIES = 2


class Stage(str, Enum):
    CLASSIFIER = "classifier"
    CLARIFY = "clarify"
    QUERY_PLANNER = "query_planner"
    RETRIEVER = "retriever"
    RETRIEVAL_EXPANDER = "retrieval_expander"
    RESEARCHER = "researcher"
    SYNTHESIZER = "synthesizer"
    QUALITY_CHECKER = "quality_checker"
    ESCALATE = "escalate"
    CITATION_BUILDER = "citation_builder"
    DISCLAIMER_GUARD = "disclaimer_guard"


def route_by_domain(state: ConversationState, flags: FeatureFlags) -> Stage:
    """After classification: clarify, escalate, or start retrieval."""
    if state.needs_clarification:
        return Stage.CLARIFY
    if state.query_intent == "escalation":
        return Stage.ESCALATE
    if flags.query_planner:
        return Stage.QUERY_PLANNER
    return Stage.RETRIEVER


def route_by_confidence(state: ConversationState, flags: FeatureFlags, allow_expansion: bool = True) -> Stage:
    """After retrieval (or expansion): synthesize now, or gather more context first.

    ``allow_expansion`` is False when routing out of the expander so a turn
    can visit it at most once.
    """
    confidence = state.retrieval_confidence
    if confidence >= GRAY_ZONE_UPPER:
        return Stage.SYNTHESIZER
    if state.web_search_results:
        return Stage.SYNTHESIZER
    if confidence >= CONFIDENCE_THRESHOLD:
        return Stage.RESEARCHER if flags.parallel_research else Stage.SYNTHESIZER
    if allow_expansion and flags.retrieval_expansion and not state.expansion_attempted:
        return Stage.RETRIEVAL_EXPANDER
    return Stage.RESEARCHER


def route_by_quality(state: ConversationState, flags: FeatureFlags) -> Stage:
    # Fails open: a missing verdict counts as a pass.
    result = state.quality_check_result
    if result is None or result.passed:
        return Stage.CITATION_BUILDER
    if state.quality_retry_count >= MAX_QUALITY_RETRIES:
        return Stage.CITATION_BUILDER
    return Stage.SYNTHESIZER
