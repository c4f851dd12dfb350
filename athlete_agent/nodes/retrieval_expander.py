"""Retrieval expander: retry low-confidence retrieval with reformulated queries.

Runs at most once per turn; it always marks ``expansion_attempted`` so the
confidence router never sends the turn back here.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List

import structlog
from langsmith import traceable

from athlete_agent.composer.prompts import RETRIEVAL_EXPANDER_TEMPLATE
from athlete_agent.llm.client import ChatModelClient, parse_json_response
from athlete_agent.nodes.retriever import (
    BROADEN_TOP_K,
    FINAL_TOP_K,
    build_broad_filter,
    finalize_documents,
)
from athlete_agent.schemas.agent_state import ConversationState
from athlete_agent.tools.retrieval_engine import HybridSearchGateway, merge_by_content
from libs.common.resilience import CircuitOpenError

logger = structlog.get_logger(__name__)

MAX_REFORMULATIONS = 3


def parse_reformulations(raw: str, original: str) -> List[str]:
    """Distinct reformulated queries, excluding the original."""
    parsed = parse_json_response(raw)
    if not isinstance(parsed, list):
        raise ValueError("Expander response is not a JSON array")
    seen = {original.strip().lower()}
    queries: List[str] = []
    for item in parsed:
        if not isinstance(item, str) or not item.strip():
            continue
        key = item.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        queries.append(item.strip())
        if len(queries) >= MAX_REFORMULATIONS:
            break
    return queries


class RetrievalExpanderNode:
    """Graph stage that widens a weak retrieval with model-written queries."""

    def __init__(
        self,
        llm: ChatModelClient,
        gateway: HybridSearchGateway,
        broaden_top_k: int = BROADEN_TOP_K,
        top_k: int = FINAL_TOP_K,
    ):
        self.llm = llm
        self.gateway = gateway
        self.broaden_top_k = broaden_top_k
        self.top_k = top_k

    @traceable(run_type="retriever", name="retrieval_expander", tags=["retrieval", "expansion"])
    async def __call__(self, state: ConversationState) -> Dict[str, Any]:
        start_time = time.time()
        patch: Dict[str, Any] = {"expansion_attempted": True}
        message = state.current_message
        if not message:
            return patch

        titles = [doc.metadata.document_title for doc in state.retrieved_documents if doc.metadata.document_title]
        existing_titles = ""
        if titles:
            existing_titles = "\nDocuments already retrieved (low relevance):\n" + "\n".join(f"- {t}" for t in titles[:5]) + "\n"

        prompt = RETRIEVAL_EXPANDER_TEMPLATE.format(
            query=message,
            domain=state.topic_domain or "general",
            existing_titles=existing_titles,
        )

        try:
            queries = parse_reformulations(await self.llm.invoke(prompt), message)
        except CircuitOpenError:
            logger.warning("retrieval_expander circuit open, skipping", trace_id=state.trace_id)
            return patch
        except Exception as e:
            logger.error("retrieval_expander failed", error=str(e), trace_id=state.trace_id)
            return patch

        if not queries:
            return patch

        try:
            search_filter = build_broad_filter(state)
            results = await asyncio.gather(
                *(self.gateway.search(q, search_filter, self.broaden_top_k, state.query_intent) for q in queries)
            )
        except Exception as e:
            logger.error("retrieval_expander search failed", error=str(e), trace_id=state.trace_id)
            return patch

        merged = merge_by_content(state.retrieved_documents, *(documents for documents, _ in results))
        expanded = finalize_documents(merged, state.query_intent, self.top_k)

        duration_ms = (time.time() - start_time) * 1000
        improved = expanded["retrieval_confidence"] > state.retrieval_confidence
        logger.info(
            "retrieval_expander completed",
            queries=len(queries),
            documents=len(expanded["retrieved_documents"]),
            previous_confidence=state.retrieval_confidence,
            confidence=expanded["retrieval_confidence"],
            improved=improved,
            duration_ms=round(duration_ms, 2),
            trace_id=state.trace_id,
        )
        if not improved:
            return patch
        return {**expanded, **patch}
