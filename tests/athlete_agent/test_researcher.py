"""Tests for the researcher stage and the Tavily wrapper."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from athlete_agent.nodes.researcher import MAX_WEB_RESULTS, ResearcherNode, default_search_query
from athlete_agent.tools.web_search import MAX_RESULT_CHARS, TavilyWebSearch


def make_web_search(*batches):
    web_search = MagicMock()
    web_search.search = AsyncMock(side_effect=list(batches))
    return web_search


class TestResearcherNode:
    """Test web fallback behavior."""

    @pytest.mark.asyncio
    async def test_no_client_returns_empty(self, make_state):
        assert await ResearcherNode(None)(make_state()) == {"web_search_results": []}

    @pytest.mark.asyncio
    async def test_default_query_without_llm(self, make_state):
        web_search = make_web_search(["[USOPC](https://usopc.org): Selection"])
        state = make_state("How are teams chosen?", topic_domain="team_selection")

        patch = await ResearcherNode(web_search)(state)

        web_search.search.assert_awaited_once_with("Team Selection How are teams chosen?", MAX_WEB_RESULTS)
        assert patch["web_search_results"] == ["[USOPC](https://usopc.org): Selection"]

    def test_default_query_without_domain(self, make_state):
        assert default_search_query(make_state("Is this allowed?")) == "Is this allowed?"

    @pytest.mark.asyncio
    async def test_model_queries_deduplicated_and_failures_skipped(self, make_state, mock_llm):
        mock_llm.invoke.return_value = json.dumps(["query one", "query two", "query three"])
        web_search = make_web_search(["a", "b"], RuntimeError("rate limited"), ["b", "c"])

        patch = await ResearcherNode(web_search, mock_llm)(make_state())

        assert web_search.search.await_count == 3
        assert patch["web_search_results"] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_bad_model_reply_falls_back_to_default_query(self, make_state, mock_llm):
        mock_llm.invoke.return_value = "search for selection rules"
        web_search = make_web_search([])

        patch = await ResearcherNode(web_search, mock_llm)(make_state("Selection rules?"))

        web_search.search.assert_awaited_once_with("Selection rules?", MAX_WEB_RESULTS)
        assert patch["web_search_results"] == []


class TestTavilyWebSearch:
    """Test result formatting."""

    @pytest.mark.asyncio
    async def test_formats_results(self):
        client = MagicMock()
        client.search = AsyncMock(
            return_value={
                "results": [
                    {"title": "SafeSport Code", "url": "https://uscenterforsafesport.org", "content": "x" * 800},
                    {"title": "Empty", "url": "https://example.org", "content": "   "},
                    {"url": "https://usada.org", "content": "TUE process"},
                ]
            }
        )
        web_search = TavilyWebSearch("tvly-test", include_domains=["usopc.org"], client=client)

        results = await web_search.search("safesport reporting", 3)

        assert results[0] == "[SafeSport Code](https://uscenterforsafesport.org): " + "x" * MAX_RESULT_CHARS
        assert results[1] == "[Untitled](https://usada.org): TUE process"
        assert len(results) == 2
        client.search.assert_awaited_once_with(
            query="safesport reporting",
            search_depth="advanced",
            max_results=3,
            include_domains=["usopc.org"],
        )
