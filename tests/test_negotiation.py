"""Tests for the negotiation agent."""

import pytest

from property_sales.agents import negotiation_agent
from property_sales.agents import negotiation as negotiation_module
from property_sales.capabilities.analysis import MarketData
from property_sales.capabilities.sources import OfferSource
from property_sales.routing import Node, Redirect, Update
from property_sales.state import (
    AgentOutput,
    Lead,
    NegotiationResult,
    Offer,
    WorkflowStage,
    apply_update,
)


class NoOffers(OfferSource):
    async def next_offer(self, prop, lead_id, now):
        return None


def stable_market(address, property_type, **kwargs):
    return MarketData(
        location=f"{address.city}, {address.state}",
        property_type=property_type,
        comparables=[],
        average_price=350_000,
        price_per_sqft=194,
        average_days_on_market=40,
        trend="stable",
    )


@pytest.fixture
def buyer() -> Lead:
    return Lead(
        id="lead_email_sarah_j_email_com",
        property_id="prop-1",
        name="Sarah Johnson",
        email="sarah.j@email.com",
        phone="+1234567890",
        qualification_score=100,
        status="visit_scheduled",
    )


@pytest.fixture
def negotiation_state(make_state, buyer):
    def factory(**overrides):
        values = {
            "stage": WorkflowStage.NEGOTIATION,
            "leads": [buyer],
            "qualified_leads": [buyer],
        }
        values.update(overrides)
        return make_state(**values)

    return factory


def pending_offer(amount: float, lead_id: str = "lead_email_sarah_j_email_com") -> Offer:
    return Offer(
        property_id="prop-1",
        lead_id=lead_id,
        amount=amount,
        conditions=["Inspection contingency"],
    )


class TestOfferReview:
    async def test_near_asking_rejection_needs_broker_confirmation(
        self, negotiation_state, agent_context
    ):
        directive = await negotiation_agent(negotiation_state(), agent_context)

        assert isinstance(directive, Redirect)
        assert directive.goto == Node.HUMAN
        offer = directive.values["current_offer"]
        assert offer.status == "pending"
        assert offer.amount == pytest.approx(322_000)
        assert offer.lead_id == "lead_email_sarah_j_email_com"
        result = directive.values["agent_outputs"]["negotiation"].data
        assert isinstance(result, NegotiationResult)
        assert result.recommendation == "reject"
        assert result.market_trend == "hot"
        assert result.requires_broker_confirmation is True
        assert result.auto_executed is False
        assert agent_context.messenger.sent == []

    async def test_low_ball_offer_rejected_automatically(self, negotiation_state, make_context):
        ctx = make_context(offer_ratio=0.6)

        directive = await negotiation_agent(negotiation_state(), ctx)

        assert isinstance(directive, Update)
        assert directive.values["stage"] is WorkflowStage.NEGOTIATION
        assert directive.values["current_offer"].status == "rejected"
        assert len(directive.values["offer_history"]) == 1
        assert directive.values["agent_outputs"]["negotiation"].data.auto_executed is True
        assert [r.channel for r in ctx.messenger.sent] == ["email"]

    async def test_strong_offer_needs_broker_approval(self, negotiation_state, make_context):
        directive = await negotiation_agent(negotiation_state(), make_context(offer_ratio=0.98))

        assert isinstance(directive, Redirect)
        assert directive.goto == Node.HUMAN
        assert directive.values["current_offer"].status == "pending"
        output = directive.values["agent_outputs"]["negotiation"]
        assert output.data.requires_broker_approval is True
        assert output.next_action.startswith("BROKER APPROVAL REQUIRED")

    async def test_counter_offer_sent_in_stable_market(
        self, negotiation_state, agent_context, monkeypatch
    ):
        monkeypatch.setattr(negotiation_module, "fetch_market_data", stable_market)

        directive = await negotiation_agent(negotiation_state(), agent_context)

        assert isinstance(directive, Update)
        offer = directive.values["current_offer"]
        assert offer.status == "counter_offered"
        assert offer.counter_offer_amount == pytest.approx(339_500)
        assert directive.values["agent_outputs"]["negotiation"].data.auto_executed is True
        assert len(agent_context.messenger.sent) == 1

    async def test_waits_when_no_offer(self, negotiation_state, make_context):
        directive = await negotiation_agent(
            negotiation_state(), make_context(offer_source=NoOffers())
        )

        assert isinstance(directive, Update)
        assert directive.values["agent_outputs"]["negotiation"].next_action == "Waiting for offers"
        assert "current_offer" not in directive.values

    async def test_buyer_without_contact_is_skipped(self, make_state, make_context):
        ctx = make_context(offer_ratio=0.6)

        directive = await negotiation_agent(make_state(stage=WorkflowStage.NEGOTIATION), ctx)

        assert ctx.messenger.sent == []
        calls = directive.values["agent_outputs"]["negotiation"].tool_calls
        assert {"tool": "notify_buyer", "lead_id": "lead_simulated", "skipped": True} in calls

    @pytest.mark.parametrize("ratio", [0.5, 0.8, 0.92, 0.96, 1.0, 1.1])
    async def test_offer_never_accepted_autonomously(self, negotiation_state, make_context, ratio):
        directive = await negotiation_agent(negotiation_state(), make_context(offer_ratio=ratio))

        offer = directive.values["current_offer"]
        assert offer.status != "accepted"
        assert directive.values["stage"] is WorkflowStage.NEGOTIATION
        assert getattr(directive, "goto", None) != Node.LEGAL


class TestBrokerReply:
    @pytest.fixture
    def awaiting(self, negotiation_state):
        def factory(reply: str):
            offer = pending_offer(322_000)
            return negotiation_state(
                current_offer=offer,
                human_response=reply,
                human_role="broker",
                agent_outputs={
                    "negotiation": AgentOutput(
                        agent_name="negotiation",
                        data=NegotiationResult(offer_id=offer.id, recommendation="reject"),
                        next_action="BROKER CONFIRMATION REQUIRED",
                    )
                },
            )

        return factory

    async def test_approve_accepts_and_moves_to_legal(self, awaiting, agent_context):
        directive = await negotiation_agent(awaiting("Approve it"), agent_context)

        assert isinstance(directive, Redirect)
        assert directive.goto == Node.LEGAL
        assert directive.values["stage"] is WorkflowStage.LEGAL
        assert directive.values["current_offer"].status == "accepted"
        assert directive.values["offer_history"][-1].status == "accepted"
        assert [r.recipient for r in agent_context.messenger.sent] == ["sarah.j@email.com"]

    async def test_reject_ends_run_at_negotiation(self, awaiting, agent_context):
        directive = await negotiation_agent(awaiting("Reject, too low"), agent_context)

        assert isinstance(directive, Update)
        assert directive.values["stage"] is WorkflowStage.NEGOTIATION
        assert directive.values["current_offer"].status == "rejected"
        assert directive.values["agent_outputs"]["negotiation"].data.human_decision == "REJECT"

    async def test_modify_records_counter_and_asks_again(self, awaiting, agent_context):
        directive = await negotiation_agent(
            awaiting("Modify: counter at $340,000"), agent_context
        )

        assert isinstance(directive, Redirect)
        assert directive.goto == Node.HUMAN
        offer = directive.values["current_offer"]
        assert offer.status == "pending"
        assert offer.counter_offer_amount == 340_000
        result = directive.values["agent_outputs"]["negotiation"].data
        assert result.counter_offer_amount == 340_000
        assert result.requires_broker_approval is True

    async def test_question_gets_answer_and_keeps_offer_pending(self, awaiting, agent_context):
        state = awaiting("Why would you turn this down?")

        directive = await negotiation_agent(state, agent_context)

        assert isinstance(directive, Redirect)
        assert directive.goto == Node.HUMAN
        assert "current_offer" not in directive.values
        assert len(directive.values["messages"]) == len(state.messages) + 1
        merged = apply_update(state, directive.values)
        assert merged.current_offer.status == "pending"

    async def test_lead_reply_cannot_approve(self, negotiation_state, agent_context):
        offer = pending_offer(322_000)
        state = negotiation_state(
            current_offer=offer, human_response="I APPROVE", human_role="lead"
        )

        directive = await negotiation_agent(state, agent_context)

        assert getattr(directive, "goto", None) != Node.LEGAL
        assert directive.values["current_offer"].status != "accepted"
        assert directive.values["stage"] is WorkflowStage.NEGOTIATION
