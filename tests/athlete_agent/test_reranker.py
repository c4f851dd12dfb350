"""Tests for authority-aware reranking."""

import pytest

from athlete_agent.schemas.taxonomy import AUTHORITY_LEVELS
from athlete_agent.tools.reranker import (
    MAX_AUTHORITY_BOOST,
    apply_authority_boost,
    authority_boost,
    rerank_by_authority,
)


def rerank(candidates, intent=None, lower_is_better=False):
    return rerank_by_authority(
        candidates,
        intent,
        score=lambda c: c["score"],
        authority_level=lambda c: c["tier"],
        lower_is_better=lower_is_better,
    )


class TestAuthorityBoost:
    """Test boost magnitudes."""

    def test_no_tag_means_no_boost(self):
        assert authority_boost(None, "escalation") == 0.0
        assert authority_boost("unknown_tier", "escalation") == 0.0

    def test_top_tier_escalation_gets_max_boost(self):
        assert authority_boost("law", "escalation") == pytest.approx(MAX_AUTHORITY_BOOST)

    def test_bottom_tier_gets_no_boost(self):
        assert authority_boost(AUTHORITY_LEVELS[-1], "escalation") == 0.0

    def test_boost_decreases_down_the_tiers(self):
        boosts = [authority_boost(level, "factual") for level in AUTHORITY_LEVELS]
        assert boosts == sorted(boosts, reverse=True)

    def test_escalation_to_general_ratio(self):
        """Escalation boost is 1.0/0.3 times the general boost for the same tier."""
        ratio = authority_boost("usopc_governance", "escalation") / authority_boost("usopc_governance", "general")
        assert ratio == pytest.approx(1.0 / 0.3)

    def test_default_multiplier_for_unspecified_intent(self):
        assert authority_boost("law", None) == pytest.approx(MAX_AUTHORITY_BOOST * 0.5)
        assert authority_boost("law", "procedural") == pytest.approx(MAX_AUTHORITY_BOOST * 0.5)

    def test_boost_polarity(self):
        assert apply_authority_boost(0.5, "law", "escalation") == pytest.approx(0.8)
        assert apply_authority_boost(0.5, "law", "escalation", lower_is_better=True) == pytest.approx(0.2)


class TestRerankByAuthority:
    """Test ordering behavior."""

    def test_near_tie_goes_to_higher_authority(self):
        candidates = [
            {"id": "guidance", "score": 0.801, "tier": "educational_guidance"},
            {"id": "law", "score": 0.800, "tier": "law"},
        ]
        assert [c["id"] for c in rerank(candidates, "factual")] == ["law", "guidance"]

    def test_near_tie_with_distances(self):
        candidates = [
            {"id": "guidance", "score": 0.199, "tier": "educational_guidance"},
            {"id": "law", "score": 0.200, "tier": "law"},
        ]
        ranked = rerank(candidates, "factual", lower_is_better=True)
        assert [c["id"] for c in ranked] == ["law", "guidance"]

    def test_large_gap_is_preserved(self):
        candidates = [
            {"id": "guidance", "score": 0.95, "tier": "educational_guidance"},
            {"id": "law", "score": 0.40, "tier": "law"},
        ]
        for intent in ("escalation", "general", None):
            assert [c["id"] for c in rerank(candidates, intent)][0] == "guidance"

    def test_equal_composites_keep_input_order(self):
        candidates = [
            {"id": "first", "score": 0.5, "tier": None},
            {"id": "second", "score": 0.5, "tier": None},
        ]
        assert [c["id"] for c in rerank(candidates)] == ["first", "second"]
