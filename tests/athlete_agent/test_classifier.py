"""Tests for the classifier stage."""

import json

import pytest

from athlete_agent.nodes.classifier import ClassifierNode, parse_classifier_response
from libs.common.resilience import CircuitOpenError


def reply(**fields):
    base = {
        "topicDomain": "team_selection",
        "detectedOrgIds": ["usa_swimming"],
        "queryIntent": "procedural",
        "hasTimeConstraint": False,
        "emotionalState": "neutral",
        "shouldEscalate": False,
        "needsClarification": False,
    }
    base.update(fields)
    return json.dumps(base)


class TestParseClassifierResponse:
    """Test parsing and repair of the model reply."""

    def test_valid_reply(self):
        output, warnings = parse_classifier_response(reply())

        assert output.topic_domain == "team_selection"
        assert output.detected_org_ids == ["usa_swimming"]
        assert output.query_intent == "procedural"
        assert warnings == []

    def test_invalid_enums_repaired_with_warnings(self):
        output, warnings = parse_classifier_response(
            reply(topicDomain="tax_law", queryIntent="chitchat", emotionalState="angry")
        )

        assert output.topic_domain is None
        assert output.query_intent == "general"
        assert output.emotional_state == "neutral"
        assert len(warnings) == 3

    def test_unknown_org_ids_filtered(self):
        output, warnings = parse_classifier_response(reply(detectedOrgIds=["usa_swimming", "fifa"]))

        assert output.detected_org_ids == ["usa_swimming"]
        assert any("fifa" in warning for warning in warnings)

    def test_legacy_org_key_accepted(self):
        raw = json.dumps({"queryIntent": "factual", "detectedNgbIds": ["us_rowing"]})
        output, _ = parse_classifier_response(raw)
        assert output.detected_org_ids == ["us_rowing"]

    def test_should_escalate_overrides_intent(self):
        output, _ = parse_classifier_response(
            reply(
                topicDomain="safesport",
                queryIntent="factual",
                shouldEscalate=True,
                escalationReason="Coach harassment reported",
            )
        )

        assert output.query_intent == "escalation"
        assert output.escalation_reason == "Coach harassment reported"

    def test_truthy_strings_are_not_true(self):
        output, _ = parse_classifier_response(reply(shouldEscalate="yes", needsClarification="true"))

        assert output.should_escalate is False
        assert output.needs_clarification is False

    def test_clarification_question_kept_only_when_needed(self):
        output, _ = parse_classifier_response(
            reply(needsClarification=True, clarificationQuestion="Which sport are you in?")
        )
        assert output.clarification_question == "Which sport are you in?"

    def test_non_object_raises(self):
        with pytest.raises(ValueError):
            parse_classifier_response('["not", "an", "object"]')


class TestClassifierNode:
    """Test the graph stage."""

    @pytest.mark.asyncio
    async def test_patch_from_model_reply(self, make_state, mock_llm):
        mock_llm.invoke.return_value = f"```json\n{reply()}\n```"
        node = ClassifierNode(mock_llm)

        patch = await node(make_state("How are swimmers picked for nationals?", user_sport="swimming"))

        assert patch["topic_domain"] == "team_selection"
        assert patch["query_intent"] == "procedural"
        assert patch["warnings"] == []
        prompt = mock_llm.invoke.await_args.args[0]
        assert "How are swimmers picked for nationals?" in prompt
        assert "swimming" in prompt

    @pytest.mark.asyncio
    async def test_malformed_json_degrades_to_defaults(self, make_state, mock_llm):
        mock_llm.invoke.return_value = "I think this is about selection."
        node = ClassifierNode(mock_llm)

        patch = await node(make_state())

        assert patch["query_intent"] == "general"
        assert patch["emotional_state"] == "neutral"
        assert patch["topic_domain"] is None
        assert patch["needs_clarification"] is False
        assert len(patch["warnings"]) == 1

    @pytest.mark.asyncio
    async def test_circuit_open_degrades_to_defaults(self, make_state, mock_llm):
        mock_llm.invoke.side_effect = CircuitOpenError("classifier")
        node = ClassifierNode(mock_llm)

        patch = await node(make_state())

        assert patch["query_intent"] == "general"
        assert "circuit open" in patch["warnings"][0]

    @pytest.mark.asyncio
    async def test_empty_message_skips_model(self, make_state, mock_llm):
        node = ClassifierNode(mock_llm)

        patch = await node(make_state(None))

        assert patch["query_intent"] == "general"
        mock_llm.invoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_known_org_ids(self, make_state, mock_llm):
        mock_llm.invoke.return_value = reply(detectedOrgIds=["usa_swimming", "local_club"])
        node = ClassifierNode(mock_llm, known_org_ids=["local_club"])

        patch = await node(make_state())

        assert patch["detected_org_ids"] == ["local_club"]
