"""Tests for state models and the update merge."""

import pytest
from pydantic import ValidationError

from property_sales.state import (
    AgentOutput,
    LeadContact,
    LeadConversation,
    LegalDocuments,
    NegotiationResult,
    Offer,
    WorkflowStage,
    WorkflowState,
    apply_update,
    derive_lead_id,
    utcnow,
)


class TestWorkflowStage:
    def test_canonical_order(self):
        assert WorkflowStage.INPUT_VALIDATION.order == 0
        assert WorkflowStage.NEGOTIATION.order < WorkflowStage.LEGAL.order
        assert WorkflowStage.COMPLETED.order == len(WorkflowStage) - 1


class TestModels:
    def test_offer_requires_positive_amount(self):
        with pytest.raises(ValidationError):
            Offer(property_id="p", lead_id="l", amount=0)

    def test_offer_defaults(self):
        offer = Offer(property_id="p", lead_id="l", amount=100_000)
        assert offer.status == "pending"
        assert offer.id.startswith("offer_")

    def test_legal_document_count(self):
        docs = LegalDocuments(
            contract_template="c.pdf",
            disclosures=["a.pdf", "b.pdf"],
            inspection_checklist=["i.pdf"],
            closing_checklist=["x.pdf"],
        )
        assert docs.document_count == 5

    def test_conversation_open_uses_contact(self):
        now = utcnow()
        conversation = LeadConversation.open(
            "lead_email_a_b_co", LeadContact(name="Ana", email="a@b.co"), now
        )
        assert conversation.lead_name == "Ana"
        assert conversation.lead_email == "a@b.co"
        assert conversation.qualification_score == 50
        assert conversation.last_contact == now

    def test_conversation_open_without_contact(self):
        conversation = LeadConversation.open("lead_phone_5551234", None, utcnow())
        assert conversation.lead_name == "Lead 1234"


class TestAgentOutputSerialization:
    def test_tagged_result_round_trips(self, make_state):
        state = make_state(
            agent_outputs={
                "negotiation": AgentOutput(
                    agent_name="negotiation",
                    data=NegotiationResult(offer_amount=322_000, recommendation="reject"),
                )
            }
        )
        restored = WorkflowState.model_validate(state.model_dump(mode="json"))
        data = restored.agent_outputs["negotiation"].data
        assert isinstance(data, NegotiationResult)
        assert data.offer_amount == 322_000


class TestApplyUpdate:
    def test_top_level_keys_replace(self, make_state):
        state = make_state(errors=["old"])
        updated = apply_update(state, {"errors": ["new"], "stage": WorkflowStage.MARKETING})
        assert updated.errors == ["new"]
        assert updated.stage is WorkflowStage.MARKETING
        assert state.stage is WorkflowStage.INPUT_VALIDATION

    def test_agent_outputs_merge_per_key(self, make_state):
        state = make_state(agent_outputs={"marketing": AgentOutput(agent_name="marketing")})
        updated = apply_update(
            state, {"agent_outputs": {"legal": AgentOutput(agent_name="legal")}}
        )
        assert set(updated.agent_outputs) == {"marketing", "legal"}

    def test_lead_conversations_merge_per_key(self, make_state):
        now = utcnow()
        state = make_state(lead_conversations={"a": LeadConversation.open("a", None, now)})
        updated = apply_update(
            state, {"lead_conversations": {"b": LeadConversation.open("b", None, now)}}
        )
        assert set(updated.lead_conversations) == {"a", "b"}

    def test_unknown_field_rejected(self, make_state):
        with pytest.raises(KeyError):
            apply_update(make_state(), {"not_a_field": 1})


class TestDeriveLeadId:
    def test_email_preferred(self):
        assert derive_lead_id("sarah.j@email.com", "+1234") == "lead_email_sarah_j_email_com"

    def test_phone_digits(self):
        assert derive_lead_id(None, "+1 (555) 123-4567") == "lead_phone_15551234567"

    def test_generated_when_no_contact(self):
        first = derive_lead_id()
        assert first.startswith("lead_")
        assert first != derive_lead_id()
