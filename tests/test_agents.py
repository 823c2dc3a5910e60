"""Tests for input validation, marketing and lead management agents."""

import pytest

from property_sales.agents import input_validation_agent, lead_management_agent, marketing_agent
from property_sales.agents import lead_management as lead_management_module
from property_sales.agents.lead_management import (
    conversation_status,
    detect_pre_approval,
    extract_timeline,
    preferred_channel,
)
from property_sales.capabilities.sources import LeadSource
from property_sales.errors import AgentExecutionError
from property_sales.routing import Node, Redirect, Update
from property_sales.state import (
    InputValidationResult,
    Lead,
    LeadConversation,
    LeadManagementResult,
    MarketingResult,
    WorkflowStage,
    apply_update,
    utcnow,
)


class BrowserOnlySource(LeadSource):
    async def fetch_inquiries(self, prop):
        return [
            Lead(
                id="lead_email_mike",
                property_id=prop.id,
                name="Mike Chen",
                email="mike.chen@email.com",
                phone="+1987654321",
                source="whatsapp",
                notes="Just browsing, might be interested in 6 months",
            )
        ]


class TestInputValidationAgent:
    async def test_complete_listing_advances(self, make_state, agent_context):
        directive = await input_validation_agent(make_state(), agent_context)

        assert isinstance(directive, Update)
        assert directive.values["stage"] is WorkflowStage.MARKETING
        output = directive.values["agent_outputs"]["input_validation"]
        assert isinstance(output.data, InputValidationResult)
        assert output.data.quality_score == 100
        assert output.data.suggested_price is None
        assert directive.values["property"].ai_enhanced_description

    async def test_incomplete_listing_parks_for_human(
        self, make_state, make_property, agent_context
    ):
        state = make_state(make_property(images=[], videos=[]))

        directive = await input_validation_agent(state, agent_context)

        assert isinstance(directive, Redirect)
        assert directive.goto == Node.HUMAN
        assert directive.values["stage"] is WorkflowStage.INPUT_VALIDATION
        next_action = directive.values["agent_outputs"]["input_validation"].next_action
        assert "Add more images" in next_action

    async def test_human_proceed_overrides(self, make_state, make_property, agent_context):
        state = make_state(
            make_property(images=[], videos=[]),
            human_response="Proceed anyway",
            human_role="broker",
        )

        directive = await input_validation_agent(state, agent_context)

        assert isinstance(directive, Update)
        assert directive.values["agent_outputs"]["input_validation"].data.human_override is True

    async def test_human_stay_keeps_result(self, make_state, make_property, agent_context):
        state = make_state(
            make_property(images=[], videos=[]), human_response="stay here", human_role="broker"
        )

        directive = await input_validation_agent(state, agent_context)

        assert isinstance(directive, Redirect)


class TestMarketingAgent:
    async def test_generates_content_and_advances(self, make_state, agent_context):
        directive = await marketing_agent(make_state(stage=WorkflowStage.MARKETING), agent_context)

        assert isinstance(directive, Update)
        assert directive.values["stage"] is WorkflowStage.LEAD_MANAGEMENT
        content = directive.values["marketing_content"]
        assert {p.platform for p in content.social_posts} == {
            "facebook",
            "instagram",
            "linkedin",
            "twitter",
        }
        assert content.email_campaign is not None
        result = directive.values["agent_outputs"]["marketing"].data
        assert isinstance(result, MarketingResult)
        assert result.primary_voice == "community"
        assert result.fallback_posts == 4

    async def test_luxury_listing_uses_professional_voice(
        self, make_state, make_property, agent_context
    ):
        state = make_state(make_property(price=2_500_000), stage=WorkflowStage.MARKETING)
        directive = await marketing_agent(state, agent_context)
        assert directive.values["agent_outputs"]["marketing"].data.primary_voice == "professional"


class TestLeadHelpers:
    def test_detect_pre_approval(self):
        assert detect_pre_approval("Have pre-approval from bank")
        assert not detect_pre_approval(None)

    def test_extract_timeline(self):
        assert extract_timeline("Buy ASAP") == "immediately"
        assert extract_timeline("in 6 months") == "1-3 months"
        assert extract_timeline("someday") == "flexible"

    @pytest.mark.parametrize(
        ("score", "ready", "status"),
        [
            (90, True, "ready_for_offer"),
            (80, False, "qualified"),
            (20, False, "cold"),
            (50, False, "active"),
        ],
    )
    def test_conversation_status(self, score, ready, status):
        assert conversation_status(score, ready) == status

    def test_preferred_channel(self):
        base = {"id": "l", "property_id": "p", "name": "N"}
        assert preferred_channel(Lead(**base, source="whatsapp", phone="1")) == "whatsapp"
        assert preferred_channel(Lead(**base, phone="1")) == "sms"
        assert preferred_channel(Lead(**base, email="a@b.co")) == "email"


class TestLeadManagementAgent:
    async def test_hot_lead_moves_to_negotiation(self, make_state, agent_context):
        state = make_state(stage=WorkflowStage.LEAD_MANAGEMENT)

        directive = await lead_management_agent(state, agent_context)

        assert isinstance(directive, Update)
        assert directive.values["stage"] is WorkflowStage.NEGOTIATION
        result = directive.values["agent_outputs"]["lead_management"].data
        assert isinstance(result, LeadManagementResult)
        assert result.total_leads == 2
        assert result.hot_leads == 1
        assert result.visits_scheduled == 2
        assert result.ready_for_negotiation is True
        assert len(agent_context.calendar.bookings) == 2
        assert {r.channel for r in agent_context.messenger.sent} == {"sms", "whatsapp"}

    async def test_known_leads_not_reprocessed(self, make_state, agent_context):
        state = make_state(stage=WorkflowStage.LEAD_MANAGEMENT)
        first = await lead_management_agent(state, agent_context)
        state = apply_update(state, first.values)

        second = await lead_management_agent(state, agent_context)

        assert len(second.values["leads"]) == 2
        assert second.values["agent_outputs"]["lead_management"].data.visits_scheduled == 0

    async def test_no_hot_lead_parks_for_broker(self, make_state, make_context):
        ctx = make_context(lead_source=BrowserOnlySource())
        state = make_state(stage=WorkflowStage.LEAD_MANAGEMENT)
        directive = await lead_management_agent(state, ctx)

        assert isinstance(directive, Redirect)
        assert directive.goto == Node.HUMAN
        assert directive.values["stage"] is WorkflowStage.LEAD_MANAGEMENT

    async def test_broker_proceed_overrides(self, make_state, make_context):
        ctx = make_context(lead_source=BrowserOnlySource())
        state = make_state(
            stage=WorkflowStage.LEAD_MANAGEMENT, human_response="proceed", human_role="broker"
        )

        directive = await lead_management_agent(state, ctx)

        assert isinstance(directive, Update)
        assert directive.values["stage"] is WorkflowStage.NEGOTIATION
        assert directive.values["agent_outputs"]["lead_management"].data.human_override is True

    async def test_broker_question_gets_reply(self, make_state, make_context):
        ctx = make_context(lead_source=BrowserOnlySource())
        state = make_state(
            stage=WorkflowStage.LEAD_MANAGEMENT,
            human_response="How many people asked?",
            human_role="broker",
        )

        directive = await lead_management_agent(state, ctx)

        assert isinstance(directive, Redirect)
        assert directive.values["messages"][-1].role == "assistant"

    async def test_lead_conversation_turn(self, make_state, agent_context):
        lead_id = "lead_email_ana_b_co"
        state = make_state(
            stage=WorkflowStage.LEAD_MANAGEMENT,
            human_response="Does it have a garage?",
            human_role="lead",
            current_lead_id=lead_id,
            lead_conversations={lead_id: LeadConversation.open(lead_id, None, utcnow())},
        )

        directive = await lead_management_agent(state, agent_context)

        assert isinstance(directive, Redirect)
        conversation = directive.values["lead_conversations"][lead_id]
        assert conversation.qualification_score == 55
        assert conversation.messages[-1].role == "assistant"

    async def test_lead_ready_for_offer_converts(self, make_state, agent_context):
        lead_id = "lead_email_ana_b_co"
        state = make_state(
            stage=WorkflowStage.LEAD_MANAGEMENT,
            human_response="I'd like to make an offer",
            human_role="lead",
            current_lead_id=lead_id,
        )

        directive = await lead_management_agent(state, agent_context)

        assert isinstance(directive, Update)
        assert directive.values["stage"] is WorkflowStage.NEGOTIATION
        converted = next(lead for lead in directive.values["leads"] if lead.id == lead_id)
        assert converted.status == "offer_made"
        result = directive.values["agent_outputs"]["lead_management"].data
        assert result.lead_converted is True
        assert result.ready_for_negotiation is True

    async def test_lead_message_without_lead_id(self, make_state, agent_context):
        state = make_state(
            stage=WorkflowStage.LEAD_MANAGEMENT, human_response="Hello?", human_role="lead"
        )

        with pytest.raises(AgentExecutionError, match="no lead id"):
            await lead_management_module._handle_lead_message(state, agent_context)
