"""Tests for citation, disclaimer and clarification stages."""

import pytest

from athlete_agent.composer.disclaimers import (
    DISCLAIMER_SEPARATOR,
    GENERAL_DISCLAIMER,
    get_disclaimer,
    with_disclaimer,
    with_empathy,
)
from athlete_agent.nodes.clarify import DEFAULT_CLARIFICATION, ClarifyNode
from athlete_agent.nodes.postprocess import (
    SNIPPET_LENGTH,
    CitationBuilderNode,
    DisclaimerGuardNode,
    build_citations,
    make_snippet,
)


class TestCitations:
    """Test citation building."""

    def test_snippet_truncation(self):
        assert make_snippet("  short  ") == "short"
        long_text = "a" * (SNIPPET_LENGTH + 50)
        assert make_snippet(long_text) == "a" * SNIPPET_LENGTH + "..."

    def test_deduplicates_same_section(self, make_document):
        docs = [
            make_document("chunk 1", document_title="Bylaws", section_title="9.1", source_url="https://usopc.org/b"),
            make_document("chunk 2", document_title="Bylaws", section_title="9.1", source_url="https://usopc.org/b"),
            make_document("chunk 3", document_title="Bylaws", section_title="9.2", source_url="https://usopc.org/b"),
            make_document("chunk 4"),
        ]

        citations = build_citations(docs)

        assert [(c.title, c.section) for c in citations] == [
            ("Bylaws", "9.1"),
            ("Bylaws", "9.2"),
            ("Untitled document", None),
        ]
        assert citations[0].snippet == "chunk 1"

    @pytest.mark.asyncio
    async def test_node_patch(self, make_state, make_document):
        state = make_state(retrieved_documents=[make_document("text", document_title="Code", authority_level="law")])

        patch = await CitationBuilderNode()(state)

        assert patch["citations"][0].title == "Code"
        assert patch["citations"][0].authority_level == "law"

    @pytest.mark.asyncio
    async def test_no_documents_no_citations(self, make_state):
        assert await CitationBuilderNode()(make_state()) == {"citations": []}


class TestDisclaimers:
    def test_domain_and_general(self):
        assert get_disclaimer(None) == GENERAL_DISCLAIMER
        assert get_disclaimer("unknown") == GENERAL_DISCLAIMER
        assert "833-587-7233" in get_disclaimer("safesport")

    def test_with_disclaimer(self):
        assert with_disclaimer("Answer", "anti_doping") == "Answer" + DISCLAIMER_SEPARATOR + get_disclaimer("anti_doping")

    def test_neutral_has_no_preamble(self):
        assert with_empathy("Answer", "neutral") == "Answer"
        assert with_empathy("Answer", None) == "Answer"
        assert with_empathy("Answer", "distressed").endswith("Answer")


class TestDisclaimerGuardNode:
    """Test disclaimer application."""

    @pytest.mark.asyncio
    async def test_appends_domain_disclaimer(self, make_state):
        state = make_state(answer="You may file a grievance.", topic_domain="dispute_resolution")

        patch = await DisclaimerGuardNode()(state)

        assert patch["answer"] == with_disclaimer("You may file a grievance.", "dispute_resolution")

    @pytest.mark.asyncio
    async def test_skipped_when_not_required(self, make_state):
        assert await DisclaimerGuardNode()(make_state(answer="Which sport?", disclaimer_required=False)) == {}
        assert await DisclaimerGuardNode()(make_state(answer=None)) == {}


class TestClarifyNode:
    @pytest.mark.asyncio
    async def test_uses_classifier_question(self, make_state):
        patch = await ClarifyNode()(make_state(clarification_question="Which sport do you compete in?"))

        assert patch == {"answer": "Which sport do you compete in?", "disclaimer_required": False}

    @pytest.mark.asyncio
    async def test_default_question(self, make_state):
        assert (await ClarifyNode()(make_state(clarification_question="  ")))["answer"] == DEFAULT_CLARIFICATION
