"""Tests for LLM-backed conversational and copy capabilities."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from property_sales.capabilities.content import LLMCopywriter, TemplateCopywriter
from property_sales.capabilities.conversation import (
    LLMLeadResponder,
    LLMResponseInterpreter,
    fallback_lead_reply,
)
from property_sales.errors import AgentExecutionError
from property_sales.llm import Task
from property_sales.routing import NegotiationDecision
from property_sales.state import LeadConversation, utcnow


@pytest.fixture
def mock_llm():
    llm = MagicMock()
    llm.generate = AsyncMock()
    return llm


class TestResponseInterpreter:
    async def test_valid_decision(self, mock_llm):
        mock_llm.generate.return_value = (
            '```json\n{"decision": "approve", "response": "Done", "reasoning": "clear yes"}\n```'
        )
        interpreter = LLMResponseInterpreter(mock_llm)

        result = await interpreter.interpret(
            "negotiation",
            "yes, accept it",
            list(NegotiationDecision),
            "Offer at 92%",
            fallback=NegotiationDecision.DISCUSS,
        )

        assert result.decision == "APPROVE"
        assert result.response == "Done"
        assert mock_llm.generate.call_args.args[0] is Task.INTERPRET
        assert mock_llm.generate.call_args.kwargs["stage"] == "negotiation"

    async def test_out_of_set_decision_uses_fallback(self, mock_llm):
        mock_llm.generate.return_value = '{"decision": "SELL_NOW", "response": "ok"}'
        interpreter = LLMResponseInterpreter(mock_llm)

        result = await interpreter.interpret(
            "negotiation",
            "sell",
            list(NegotiationDecision),
            "",
            fallback=NegotiationDecision.DISCUSS,
        )

        assert result.decision == NegotiationDecision.DISCUSS

    async def test_unreadable_output_uses_fallback(self, mock_llm):
        mock_llm.generate.return_value = "I think they want to approve"
        interpreter = LLMResponseInterpreter(mock_llm)

        result = await interpreter.interpret(
            "legal", "ok", ["APPROVE", "REVISE", "DISCUSS"], "", fallback="DISCUSS"
        )

        assert result.decision == "DISCUSS"

    async def test_provider_failure_raises_agent_error(self, mock_llm):
        mock_llm.generate.side_effect = RuntimeError("all providers down")
        interpreter = LLMResponseInterpreter(mock_llm)

        with pytest.raises(AgentExecutionError, match="all providers down"):
            await interpreter.interpret("closure", "done", ["COMPLETE"], "", fallback="DISCUSS")

    async def test_extract_modifications(self, mock_llm):
        mock_llm.generate.return_value = (
            '{"summary": "Counter at 340k", "specific_changes": ["price"], '
            '"counter_amount": 340000}'
        )
        interpreter = LLMResponseInterpreter(mock_llm)

        mods = await interpreter.extract_modifications("counter at 340k", {"offer_amount": 322000})

        assert mods.counter_amount == 340_000
        assert mods.summary == "Counter at 340k"

    async def test_unreadable_modifications_keep_message(self, mock_llm):
        mock_llm.generate.return_value = "not json"
        interpreter = LLMResponseInterpreter(mock_llm)

        mods = await interpreter.extract_modifications("make it 340k", {})

        assert mods.summary == "make it 340k"
        assert mods.counter_amount is None


class TestLeadResponder:
    async def test_score_change_clamped(self, mock_llm, complete_property):
        mock_llm.generate.return_value = (
            '{"message": "Sure!", "score_change": 40, '
            '"ready_for_offer": false, "reasoning": "keen"}'
        )
        responder = LLMLeadResponder(mock_llm)
        conversation = LeadConversation.open("lead_1", None, utcnow())

        reply = await responder.respond(conversation, complete_property, "Is it still available?")

        assert reply.message == "Sure!"
        assert reply.score_change == 10

    async def test_failure_returns_fallback(self, mock_llm, complete_property):
        mock_llm.generate.side_effect = RuntimeError("down")
        responder = LLMLeadResponder(mock_llm)
        conversation = LeadConversation.open("lead_1", None, utcnow())

        reply = await responder.respond(conversation, complete_property, "Hi")

        assert reply == fallback_lead_reply(complete_property)
        assert reply.ready_for_offer is False


class TestCopywriter:
    async def test_llm_post(self, mock_llm, complete_property):
        mock_llm.generate.return_value = (
            "Meet your new home in Springfield! #JustListed #Springfield"
        )
        post, from_template = await LLMCopywriter(mock_llm).write_post(
            complete_property, "facebook", "community", "desc"
        )
        assert from_template is False
        assert post.hashtags == ["#JustListed", "#Springfield"]
        assert post.image_url == complete_property.images[0]
        assert mock_llm.generate.call_args.kwargs == {
            "property_id": complete_property.id,
            "stage": "marketing",
        }

    async def test_llm_failure_falls_back_to_template(self, mock_llm, complete_property):
        mock_llm.generate.side_effect = RuntimeError("down")
        post, from_template = await LLMCopywriter(mock_llm).write_post(
            complete_property, "twitter", "casual", None
        )
        assert from_template is True
        assert post.platform == "twitter"
        assert len(post.content) <= 280

    async def test_template_copywriter(self, complete_property):
        post, from_template = await TemplateCopywriter().write_post(
            complete_property, "linkedin", "professional", None
        )
        assert from_template is True
        assert post.platform == "linkedin"
