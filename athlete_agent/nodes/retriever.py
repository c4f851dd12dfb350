"""Retriever stage: narrow/broaden hybrid search and sub-query fan-out.

Single-query mode searches with the classifier's organization and domain
filter first. When that narrow pass returns fewer than
``MIN_NARROW_RESULTS`` documents, one broaden pass runs with a relaxed
filter (matching organization or organization-agnostic, no topic filter).
Sub-query mode runs one search per planned sub-query concurrently.

Whatever happens, the stage returns a patch: an unexpected failure yields
``retrieval_status="error"`` with no documents and zero confidence.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional

import structlog
from langsmith import traceable

from athlete_agent.schemas.agent_state import ConversationState, RetrievedDocument
from athlete_agent.tools.retrieval_engine import (
    HybridSearchGateway,
    SearchFilter,
    compute_confidence,
    merge_by_content,
    rank_documents,
)

logger = structlog.get_logger(__name__)

# Business policy, not derived from data.
MIN_NARROW_RESULTS = 2
NARROW_TOP_K = 5
BROADEN_TOP_K = 10
FINAL_TOP_K = 10


def build_search_query(state: ConversationState) -> str:
    """Latest user message, with the sport hint appended when it adds context."""
    query = state.current_message
    sport = (state.user_sport or "").strip()
    if sport and sport.lower() not in query.lower():
        query = f"{query} ({sport})"
    return query


def build_filter(state: ConversationState) -> Optional[SearchFilter]:
    """Narrow filter from detected organizations and topic domain, None when neither is known."""
    if not state.detected_org_ids and state.topic_domain is None:
        return None
    return SearchFilter(org_ids=list(state.detected_org_ids), topic_domain=state.topic_domain)


def build_broad_filter(state: ConversationState) -> Optional[SearchFilter]:
    """Relaxed filter: organization match or organization-agnostic; topic dropped."""
    if not state.detected_org_ids:
        return None
    return SearchFilter(org_ids=list(state.detected_org_ids), include_org_agnostic=True)


def finalize_documents(
    documents: List[RetrievedDocument], intent: Optional[str], top_k: int
) -> Dict[str, Any]:
    ranked = rank_documents(documents, intent)[:top_k]
    return {
        "retrieved_documents": ranked,
        "retrieval_confidence": compute_confidence(ranked),
        "retrieval_status": "success",
    }


class RetrieverNode:
    """Graph stage wrapping the hybrid search gateway."""

    def __init__(
        self,
        gateway: HybridSearchGateway,
        narrow_top_k: int = NARROW_TOP_K,
        broaden_top_k: int = BROADEN_TOP_K,
        top_k: int = FINAL_TOP_K,
    ):
        self.gateway = gateway
        self.narrow_top_k = narrow_top_k
        self.broaden_top_k = broaden_top_k
        self.top_k = top_k

    @traceable(run_type="retriever", name="retriever", tags=["retrieval", "hybrid"])
    async def __call__(self, state: ConversationState) -> Dict[str, Any]:
        start_time = time.time()
        try:
            if state.is_complex_query and state.sub_queries:
                documents = await self._search_sub_queries(state)
                mode = "sub_query"
            else:
                documents = await self._search_single(state)
                mode = "single"

            patch = finalize_documents(documents, state.query_intent, self.top_k)
            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "retriever completed",
                mode=mode,
                candidates=len(documents),
                documents=len(patch["retrieved_documents"]),
                confidence=patch["retrieval_confidence"],
                duration_ms=round(duration_ms, 2),
                trace_id=state.trace_id,
            )
            return patch
        except Exception as e:
            logger.error("retriever failed", error=str(e), trace_id=state.trace_id)
            return {
                "retrieved_documents": [],
                "retrieval_confidence": 0.0,
                "retrieval_status": "error",
            }

    async def _search_single(self, state: ConversationState) -> List[RetrievedDocument]:
        query = build_search_query(state)
        if not query:
            return []
        intent = state.query_intent
        narrow_filter = build_filter(state)

        if narrow_filter is None:
            # Nothing to relax, so a single unfiltered search is the broad search.
            documents, _ = await self.gateway.search(query, None, self.broaden_top_k, intent)
            return documents

        narrow, _ = await self.gateway.search(query, narrow_filter, self.narrow_top_k, intent)
        if len(narrow) >= MIN_NARROW_RESULTS:
            return narrow

        broad_filter = build_broad_filter(state)
        logger.info(
            "retriever broadening search",
            narrow_results=len(narrow),
            broad_filter=broad_filter.model_dump() if broad_filter else None,
            trace_id=state.trace_id,
        )
        broad, _ = await self.gateway.search(query, broad_filter, self.broaden_top_k, intent)
        return merge_by_content(narrow, broad)

    async def _search_sub_queries(self, state: ConversationState) -> List[RetrievedDocument]:
        searches = [
            self.gateway.search(
                sub_query.query,
                SearchFilter(org_ids=list(sub_query.org_ids), topic_domain=sub_query.domain),
                self.narrow_top_k,
                sub_query.intent,
            )
            for sub_query in state.sub_queries
        ]
        results = await asyncio.gather(*searches)
        return merge_by_content(*(documents for documents, _ in results))
