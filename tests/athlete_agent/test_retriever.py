"""Tests for the retriever stage."""

from unittest.mock import AsyncMock, MagicMock, call

import pytest

from athlete_agent.nodes.retriever import (
    BROADEN_TOP_K,
    NARROW_TOP_K,
    RetrieverNode,
    build_broad_filter,
    build_filter,
    build_search_query,
)
from athlete_agent.schemas.agent_state import SubQuery
from athlete_agent.tools.retrieval_engine import (
    HybridSearchGateway,
    SearchFilter,
    TextSearchBackend,
    VectorHit,
    VectorSearchBackend,
)


def make_gateway(*results):
    """Gateway double whose successive searches return ``results``."""
    gateway = MagicMock()
    gateway.search = AsyncMock(side_effect=[(docs, 0.0) for docs in results])
    return gateway


class TestFilters:
    """Test query and filter construction."""

    def test_sport_appended_once(self, make_state):
        assert build_search_query(make_state("Selection rules?", user_sport="Swimming")) == "Selection rules? (Swimming)"
        assert build_search_query(make_state("Swimming selection rules?", user_sport="swimming")) == (
            "Swimming selection rules?"
        )

    def test_no_classification_means_no_filter(self, make_state):
        state = make_state()
        assert build_filter(state) is None
        assert build_broad_filter(state) is None

    def test_narrow_and_broad_filters(self, make_state):
        state = make_state(detected_org_ids=["usa_swimming"], topic_domain="team_selection")

        assert build_filter(state) == SearchFilter(org_ids=["usa_swimming"], topic_domain="team_selection")
        assert build_broad_filter(state) == SearchFilter(org_ids=["usa_swimming"], include_org_agnostic=True)

    def test_domain_only_broadens_to_unfiltered(self, make_state):
        state = make_state(topic_domain="anti_doping")

        assert build_filter(state) == SearchFilter(topic_domain="anti_doping")
        assert build_broad_filter(state) is None


class TestSingleQuery:
    """Test narrow-then-broaden retrieval."""

    @pytest.mark.asyncio
    async def test_enough_narrow_results_skip_broadening(self, make_state, make_document):
        docs = [make_document("a", 0.9), make_document("b", 0.8)]
        gateway = make_gateway(docs)
        state = make_state(detected_org_ids=["usa_swimming"], topic_domain="team_selection", query_intent="procedural")

        patch = await RetrieverNode(gateway)(state)

        assert gateway.search.await_count == 1
        assert gateway.search.await_args == call(
            state.current_message,
            SearchFilter(org_ids=["usa_swimming"], topic_domain="team_selection"),
            NARROW_TOP_K,
            "procedural",
        )
        assert [d.content for d in patch["retrieved_documents"]] == ["a", "b"]
        assert patch["retrieval_status"] == "success"

    @pytest.mark.asyncio
    async def test_sparse_narrow_results_broaden_once(self, make_state, make_document):
        narrow = [make_document("shared", 0.7)]
        broad = [make_document("shared", 0.7), make_document("broad only", 0.6, fused_score=0.5)]
        gateway = make_gateway(narrow, broad)
        state = make_state(detected_org_ids=["usa_swimming"], topic_domain="team_selection")

        patch = await RetrieverNode(gateway)(state)

        assert gateway.search.await_count == 2
        broad_call = gateway.search.await_args_list[1]
        assert broad_call.args[1] == SearchFilter(org_ids=["usa_swimming"], include_org_agnostic=True)
        assert broad_call.args[2] == BROADEN_TOP_K
        assert [d.content for d in patch["retrieved_documents"]] == ["shared", "broad only"]

    @pytest.mark.asyncio
    async def test_unclassified_query_is_one_unfiltered_search(self, make_state, make_document):
        gateway = make_gateway([make_document("only", 0.5)])
        state = make_state()

        await RetrieverNode(gateway)(state)

        gateway.search.assert_awaited_once_with(state.current_message, None, BROADEN_TOP_K, None)

    @pytest.mark.asyncio
    async def test_single_vector_hit_confidence(self, make_state):
        vector_backend = VectorSearchBackend()
        vector_backend.similarity_search = AsyncMock(
            return_value=[VectorHit("Selection criteria text", {"chunk_id": "c1"}, 0.4)]
        )
        text_backend = TextSearchBackend()
        text_backend.text_search = AsyncMock(return_value=[])
        gateway = HybridSearchGateway(vector_backend, text_backend)

        patch = await RetrieverNode(gateway)(make_state())

        assert vector_backend.similarity_search.await_count == 1
        assert len(patch["retrieved_documents"]) == 1
        assert patch["retrieved_documents"][0].score == pytest.approx(0.6)
        assert patch["retrieval_confidence"] == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_empty_message_returns_nothing(self, make_state):
        gateway = make_gateway()

        patch = await RetrieverNode(gateway)(make_state(None))

        gateway.search.assert_not_awaited()
        assert patch["retrieved_documents"] == []
        assert patch["retrieval_confidence"] == 0.0

    @pytest.mark.asyncio
    async def test_failure_reports_error_status(self, make_state):
        gateway = MagicMock()
        gateway.search = AsyncMock(side_effect=RuntimeError("boom"))

        patch = await RetrieverNode(gateway)(make_state())

        assert patch == {"retrieved_documents": [], "retrieval_confidence": 0.0, "retrieval_status": "error"}


class TestSubQueries:
    """Test concurrent sub-query fan-out."""

    @pytest.mark.asyncio
    async def test_one_search_per_sub_query(self, make_state, make_document):
        gateway = make_gateway(
            [make_document("selection", 0.8), make_document("shared", 0.6)],
            [make_document("shared", 0.6), make_document("tue", 0.7)],
        )
        state = make_state(
            is_complex_query=True,
            sub_queries=[
                SubQuery(query="How is selection done?", domain="team_selection", intent="procedural", org_ids=["usa_swimming"]),
                SubQuery(query="Do I need a TUE?", domain="anti_doping"),
            ],
        )

        patch = await RetrieverNode(gateway)(state)

        assert gateway.search.await_count == 2
        first, second = gateway.search.await_args_list
        assert first.args == (
            "How is selection done?",
            SearchFilter(org_ids=["usa_swimming"], topic_domain="team_selection"),
            NARROW_TOP_K,
            "procedural",
        )
        assert second.args[1] == SearchFilter(topic_domain="anti_doping")
        contents = [d.content for d in patch["retrieved_documents"]]
        assert sorted(contents) == ["selection", "shared", "tue"]
