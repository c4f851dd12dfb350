"""Web search used by the research fallback (Tavily)."""

from __future__ import annotations

import time
from typing import List, Optional, Sequence

import structlog
from tavily import AsyncTavilyClient

logger = structlog.get_logger(__name__)

MAX_RESULT_CHARS = 500


class TavilyWebSearch:
    """Thin async wrapper returning one text block per search result."""

    def __init__(
        self,
        api_key: str,
        search_depth: str = "advanced",
        include_domains: Optional[Sequence[str]] = None,
        client: Optional[AsyncTavilyClient] = None,
    ):
        self.client = client or AsyncTavilyClient(api_key=api_key)
        self.search_depth = search_depth
        self.include_domains = list(include_domains) if include_domains else None

    async def search(self, query: str, max_results: int = 5) -> List[str]:
        start_time = time.time()
        response = await self.client.search(
            query=query,
            search_depth=self.search_depth,
            max_results=max_results,
            include_domains=self.include_domains,
        )
        results = []
        for item in response.get("results", []):
            content = (item.get("content") or "").strip()
            if not content:
                continue
            title = item.get("title") or "Untitled"
            url = item.get("url") or ""
            results.append(f"[{title}]({url}): {content[:MAX_RESULT_CHARS]}")

        logger.info(
            "Web search completed",
            results=len(results),
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return results
