"""Query planner stage: split multi-domain questions into sub-queries."""

from __future__ import annotations

import time
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

import structlog
from langsmith import traceable
from pydantic import BaseModel, Field

from athlete_agent.composer.prompts import QUERY_PLANNER_TEMPLATE
from athlete_agent.llm.client import ChatModelClient, parse_json_response
from athlete_agent.schemas.agent_state import ConversationState, SubQuery
from athlete_agent.schemas.taxonomy import DEFAULT_ORG_IDS, filter_org_ids, normalize_domain, normalize_intent
from libs.common.resilience import CircuitOpenError

logger = structlog.get_logger(__name__)

MAX_SUB_QUERIES = 4
MIN_SUB_QUERIES = 2


class PlannerOutput(BaseModel):
    is_complex_query: bool = False
    sub_queries: List[SubQuery] = Field(default_factory=list)

    def to_patch(self) -> Dict[str, Any]:
        return {"is_complex_query": self.is_complex_query, "sub_queries": list(self.sub_queries)}


def parse_query_planner_response(
    raw: str, known_org_ids: FrozenSet[str] = DEFAULT_ORG_IDS
) -> Tuple[PlannerOutput, List[str]]:
    """Parse and validate a planner reply.

    A decomposition with fewer than two valid sub-queries is discarded.

    Raises:
        ValueError: the reply is not a JSON object.
    """
    parsed = parse_json_response(raw)
    if not isinstance(parsed, dict):
        raise ValueError("Query planner response is not a JSON object")

    warnings: List[str] = []
    if parsed.get("isComplex") is not True:
        return PlannerOutput(), warnings

    raw_sub_queries = parsed.get("subQueries")
    if not isinstance(raw_sub_queries, list):
        warnings.append("subQueries missing or not a list; treated as simple query")
        return PlannerOutput(), warnings

    sub_queries: List[SubQuery] = []
    for position, item in enumerate(raw_sub_queries):
        if len(sub_queries) >= MAX_SUB_QUERIES:
            warnings.append(f"More than {MAX_SUB_QUERIES} sub-queries; extra entries ignored")
            break
        if not isinstance(item, dict):
            warnings.append(f"Sub-query {position} is not an object; skipped")
            continue

        query = item.get("query")
        if not isinstance(query, str) or not query.strip():
            warnings.append(f"Sub-query {position} has no query text; skipped")
            continue

        domain = normalize_domain(item.get("domain"))
        if domain is None:
            warnings.append(f"Sub-query {position} has invalid domain {item.get('domain')!r}; skipped")
            continue

        intent = normalize_intent(item.get("intent"))
        if intent is None:
            warnings.append(f"Sub-query {position} has invalid intent {item.get('intent')!r}; defaulted to 'general'")
            intent = "general"

        org_ids, rejected = filter_org_ids(item.get("ngbIds", item.get("orgIds", [])), known_org_ids)
        if rejected:
            warnings.append(f"Sub-query {position} dropped unrecognized organization ids: {', '.join(rejected)}")

        sub_queries.append(SubQuery(query=query.strip(), domain=domain, intent=intent, org_ids=org_ids))

    if len(sub_queries) < MIN_SUB_QUERIES:
        warnings.append(f"Only {len(sub_queries)} valid sub-queries; decomposition discarded")
        return PlannerOutput(), warnings

    return PlannerOutput(is_complex_query=True, sub_queries=sub_queries), warnings


class QueryPlannerNode:
    """Graph stage that decides between single-query and sub-query retrieval."""

    def __init__(self, llm: ChatModelClient, known_org_ids: Optional[Iterable[str]] = None):
        self.llm = llm
        self.known_org_ids = frozenset(known_org_ids) if known_org_ids is not None else DEFAULT_ORG_IDS

    @traceable(run_type="chain", name="query_planner", tags=["planning"])
    async def __call__(self, state: ConversationState) -> Dict[str, Any]:
        start_time = time.time()
        message = state.current_message
        if not message:
            return {**PlannerOutput().to_patch(), "warnings": []}

        prompt = QUERY_PLANNER_TEMPLATE.format(
            max_sub_queries=MAX_SUB_QUERIES,
            domain=state.topic_domain or "not classified",
            intent=state.query_intent or "not classified",
            message=message,
        )

        try:
            raw = await self.llm.invoke(prompt)
            output, warnings = parse_query_planner_response(raw, self.known_org_ids)
        except CircuitOpenError:
            logger.warning("query_planner circuit open, using simple query", trace_id=state.trace_id)
            output, warnings = PlannerOutput(), []
        except Exception as e:
            logger.error("query_planner failed", error=str(e), trace_id=state.trace_id)
            output, warnings = PlannerOutput(), [f"Query planner failed ({type(e).__name__}); simple query used"]

        for warning in warnings:
            logger.warning("query_planner output repaired", warning=warning, trace_id=state.trace_id)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "query_planner completed",
            is_complex=output.is_complex_query,
            sub_queries=len(output.sub_queries),
            duration_ms=round(duration_ms, 2),
            trace_id=state.trace_id,
        )
        return {**output.to_patch(), "warnings": warnings}
