"""Researcher stage: web search fallback when the knowledge base is not enough."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional

import structlog
from langsmith import traceable

from athlete_agent.composer.prompts import RESEARCHER_TEMPLATE
from athlete_agent.llm.client import ChatModelClient, parse_json_response
from athlete_agent.schemas.agent_state import ConversationState
from athlete_agent.schemas.taxonomy import DOMAIN_LABELS
from athlete_agent.tools.web_search import TavilyWebSearch
from libs.common.resilience import with_fallback

logger = structlog.get_logger(__name__)

MAX_WEB_RESULTS = 5
MAX_SEARCH_QUERIES = 3


def default_search_query(state: ConversationState) -> str:
    """Latest message prefixed with the domain label."""
    message = state.current_message
    label = DOMAIN_LABELS.get(state.topic_domain or "")
    return f"{label} {message}" if label else message


class ResearcherNode:
    """Graph stage that collects web results for the synthesizer."""

    def __init__(self, web_search: Optional[TavilyWebSearch], llm: Optional[ChatModelClient] = None):
        self.web_search = web_search
        self.llm = llm

    async def _build_queries(self, state: ConversationState) -> List[str]:
        fallback = [default_search_query(state)]
        if self.llm is None:
            return fallback
        prompt = RESEARCHER_TEMPLATE.format(
            domain=state.topic_domain or "general",
            message=state.current_message,
            history=state.history_text() or "None",
        )
        try:
            parsed = parse_json_response(await self.llm.invoke(prompt))
        except Exception as e:
            logger.warning("researcher query generation failed", error=str(e), trace_id=state.trace_id)
            return fallback
        if not isinstance(parsed, list):
            return fallback
        queries = [q.strip() for q in parsed if isinstance(q, str) and q.strip()]
        return queries[:MAX_SEARCH_QUERIES] or fallback

    @traceable(run_type="tool", name="researcher", tags=["research", "web"])
    async def __call__(self, state: ConversationState) -> Dict[str, Any]:
        start_time = time.time()
        if self.web_search is None or not state.current_message:
            logger.info("researcher skipped", configured=self.web_search is not None, trace_id=state.trace_id)
            return {"web_search_results": []}

        queries = await self._build_queries(state)
        batches = await asyncio.gather(
            *(
                with_fallback(
                    lambda q=q: self.web_search.search(q, MAX_WEB_RESULTS),
                    [],
                    operation_name="web_search",
                )
                for q in queries
            )
        )

        results: List[str] = []
        for batch in batches:
            for item in batch:
                if item not in results:
                    results.append(item)
        results = results[:MAX_WEB_RESULTS]

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "researcher completed",
            queries=len(queries),
            results=len(results),
            duration_ms=round(duration_ms, 2),
            trace_id=state.trace_id,
        )
        return {"web_search_results": results}
