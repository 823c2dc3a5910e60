"""Workflow state models.

One WorkflowState exists per property sale. Agents never mutate it in place:
they return partial updates that the engine merges with ``apply_update``.
"""

import re
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


class WorkflowStage(StrEnum):
    """Pipeline phases in canonical order."""

    INPUT_VALIDATION = "input_validation"
    MARKETING = "marketing"
    LEAD_MANAGEMENT = "lead_management"
    NEGOTIATION = "negotiation"
    LEGAL = "legal"
    CLOSURE = "closure"
    COMPLETED = "completed"

    @property
    def order(self) -> int:
        return list(WorkflowStage).index(self)


PropertyType = Literal["house", "apartment", "condo", "townhouse", "land", "commercial"]
HumanRole = Literal["broker", "lead"]
LeadChannel = Literal["whatsapp", "email", "web", "referral"]
LeadStatus = Literal["new", "qualified", "contacted", "visit_scheduled", "offer_made", "rejected"]
OfferStatus = Literal["pending", "accepted", "rejected", "counter_offered"]
ConversationStatus = Literal["active", "waiting_response", "qualified", "ready_for_offer", "cold"]
SocialPlatform = Literal["facebook", "instagram", "twitter", "linkedin"]
DocumentStatus = Literal["draft", "review", "ready"]


class Address(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "US"

    def one_line(self) -> str:
        return f"{self.street}, {self.city}, {self.state} {self.zip_code}"


class PropertySnapshot(BaseModel):
    """Listing attributes the agents need, copied in when the workflow starts."""

    id: str
    title: str
    description: str | None = None
    address: Address
    price: float = Field(ge=0)
    bedrooms: int | None = Field(default=None, ge=0)
    bathrooms: float | None = Field(default=None, ge=0)
    square_feet: int | None = Field(default=None, ge=0)
    property_type: PropertyType = "house"
    year_built: int | None = None
    images: list[str] = Field(default_factory=list)
    videos: list[str] = Field(default_factory=list)
    ai_enhanced_description: str | None = None
    ai_suggested_price: float | None = None


class Lead(BaseModel):
    id: str
    property_id: str
    name: str
    email: str | None = None
    phone: str | None = None
    source: LeadChannel = "web"
    qualification_score: int = Field(default=0, ge=0, le=100)
    status: LeadStatus = "new"
    notes: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    last_contacted_at: datetime | None = None


class LeadContact(BaseModel):
    """Contact details supplied with an inbound lead message."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None


class Offer(BaseModel):
    id: str = Field(default_factory=lambda: f"offer_{uuid.uuid4().hex[:12]}")
    property_id: str
    lead_id: str
    amount: float = Field(gt=0)
    conditions: list[str] = Field(default_factory=list)
    earnest_money: float | None = Field(default=None, ge=0)
    status: OfferStatus = "pending"
    counter_offer_amount: float | None = None
    counter_offer_conditions: list[str] | None = None
    expires_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class SocialPost(BaseModel):
    platform: SocialPlatform
    content: str
    hashtags: list[str] = Field(default_factory=list)
    image_url: str | None = None


class EmailCampaign(BaseModel):
    subject: str
    body: str
    target_audience: str


class MarketingContent(BaseModel):
    social_posts: list[SocialPost] = Field(default_factory=list)
    listing_description: str
    seo_keywords: list[str] = Field(default_factory=list)
    email_campaign: EmailCampaign | None = None


class LegalDocuments(BaseModel):
    contract_template: str | None = None
    disclosures: list[str] = Field(default_factory=list)
    inspection_checklist: list[str] = Field(default_factory=list)
    closing_checklist: list[str] = Field(default_factory=list)
    status: DocumentStatus = "draft"

    @property
    def document_count(self) -> int:
        contract = 1 if self.contract_template else 0
        return (
            contract
            + len(self.disclosures)
            + len(self.inspection_checklist)
            + len(self.closing_checklist)
        )


class ConversationMessage(BaseModel):
    role: Literal["human", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    agent_name: str | None = None


class LeadConversation(BaseModel):
    """Transcript and qualification state for one lead."""

    lead_id: str
    lead_name: str
    lead_email: str | None = None
    lead_phone: str | None = None
    messages: list[ConversationMessage] = Field(default_factory=list)
    last_contact: datetime = Field(default_factory=utcnow)
    status: ConversationStatus = "active"
    qualification_score: int = Field(default=50, ge=0, le=100)

    @classmethod
    def open(cls, lead_id: str, contact: LeadContact | None, now: datetime) -> "LeadConversation":
        contact = contact or LeadContact()
        return cls(
            lead_id=lead_id,
            lead_name=contact.name or f"Lead {lead_id[-4:]}",
            lead_email=contact.email,
            lead_phone=contact.phone,
            last_contact=now,
        )


# Per-stage agent results. The ``kind`` tag keeps each payload statically typed
# and lets checkpoints round-trip through JSON.


class InputValidationResult(BaseModel):
    kind: Literal["input_validation"] = "input_validation"
    completeness_score: int
    quality_score: int
    validation_passed: bool
    quality_check_passed: bool
    missing_fields: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    market_average_price: float | None = None
    suggested_price: float | None = None
    human_override: bool = False


class MarketingResult(BaseModel):
    kind: Literal["marketing"] = "marketing"
    primary_voice: str
    platforms: list[SocialPlatform] = Field(default_factory=list)
    seo_keywords: list[str] = Field(default_factory=list)
    email_subject: str | None = None
    fallback_posts: int = 0


class LeadManagementResult(BaseModel):
    kind: Literal["lead_management"] = "lead_management"
    total_leads: int = 0
    qualified_leads: int = 0
    hot_leads: int = 0
    visits_scheduled: int = 0
    nurture_sequences_started: int = 0
    ready_for_negotiation: bool = False
    human_override: bool = False
    conversation_mode: bool = False
    lead_id: str | None = None
    agent_response: str | None = None
    lead_status: ConversationStatus | None = None
    qualification_score: int | None = None
    lead_converted: bool = False


class NegotiationResult(BaseModel):
    kind: Literal["negotiation"] = "negotiation"
    offer_id: str | None = None
    offer_amount: float | None = None
    percentage_of_asking: float | None = None
    recommendation: str | None = None
    market_trend: str | None = None
    auto_executed: bool = False
    requires_broker_approval: bool = False
    requires_broker_confirmation: bool = False
    counter_offer_amount: float | None = None
    human_decision: str | None = None
    modifications: str | None = None
    reasoning: list[str] = Field(default_factory=list)


class LegalResult(BaseModel):
    kind: Literal["legal"] = "legal"
    documents_generated: int = 0
    contract_url: str | None = None
    disclosures_generated: int = 0
    status: DocumentStatus = "draft"
    human_approved: bool = False
    revision_notes: str | None = None


class ClosureResult(BaseModel):
    kind: Literal["closure"] = "closure"
    ready_for_closing: bool = False
    all_tasks_complete: bool = False
    completed_items: list[str] = Field(default_factory=list)
    pending_items: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    next_step: str | None = None
    human_confirmed: bool = False


AgentResult = Annotated[
    InputValidationResult
    | MarketingResult
    | LeadManagementResult
    | NegotiationResult
    | LegalResult
    | ClosureResult,
    Field(discriminator="kind"),
]


class AgentOutput(BaseModel):
    """Audit record of an agent's latest execution."""

    agent_name: str
    timestamp: datetime = Field(default_factory=utcnow)
    success: bool = True
    data: AgentResult | None = None
    errors: list[str] = Field(default_factory=list)
    next_action: str | None = None
    last_response: str | None = None
    # Raw capability call log shown in the UI; intentionally untyped
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)


class WorkflowState(BaseModel):
    """Complete state of one property's journey through the sale pipeline."""

    property_id: str
    property: PropertySnapshot
    stage: WorkflowStage = WorkflowStage.INPUT_VALIDATION
    human_intervention_required: bool = False

    # Transient resume inputs, cleared after the resumed agent consumes them
    human_response: str | None = None
    human_role: HumanRole | None = None
    current_lead_id: str | None = None
    current_lead_contact: LeadContact | None = None

    agent_outputs: dict[str, AgentOutput] = Field(default_factory=dict)
    leads: list[Lead] = Field(default_factory=list)
    qualified_leads: list[Lead] = Field(default_factory=list)
    lead_conversations: dict[str, LeadConversation] = Field(default_factory=dict)
    current_offer: Offer | None = None
    offer_history: list[Offer] = Field(default_factory=list)
    marketing_content: MarketingContent | None = None
    legal_documents: LegalDocuments | None = None
    messages: list[ConversationMessage] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    retry_count: int = Field(default=0, ge=0)
    # Stage node waiting on the human node, set while the thread is suspended
    suspended_node: str | None = None

    workflow_started_at: datetime = Field(default_factory=utcnow)
    workflow_completed_at: datetime | None = None

    def find_lead(self, lead_id: str | None) -> Lead | None:
        if lead_id is None:
            return None
        return next((lead for lead in self.leads if lead.id == lead_id), None)


StateUpdate = dict[str, Any]

# Keys whose values are merged per entry instead of replaced wholesale
_NESTED_MERGE_KEYS = frozenset({"agent_outputs", "lead_conversations"})

TRANSIENT_FIELDS: StateUpdate = {
    "human_response": None,
    "human_role": None,
    "current_lead_id": None,
    "current_lead_contact": None,
}


def apply_update(state: WorkflowState, update: StateUpdate) -> WorkflowState:
    """Merge a partial update into state.

    Top-level keys replace the existing value, except ``agent_outputs`` and
    ``lead_conversations`` which are merged key by key.
    """
    changes: StateUpdate = {}
    for key, value in update.items():
        if key not in WorkflowState.model_fields:
            raise KeyError(f"Unknown state field: {key}")
        if key in _NESTED_MERGE_KEYS:
            changes[key] = {**getattr(state, key), **value}
        else:
            changes[key] = value
    return state.model_copy(update=changes)


def derive_lead_id(email: str | None = None, phone: str | None = None) -> str:
    """Stable lead identifier from the lead's contact details."""
    if email:
        return "lead_email_" + re.sub(r"[^a-zA-Z0-9]", "_", email)
    if phone:
        return "lead_phone_" + re.sub(r"[^0-9]", "", phone)
    return f"lead_{uuid.uuid4().hex[:12]}"


def state_changes(before: WorkflowState, after: WorkflowState) -> StateUpdate:
    """Fields of ``after`` that differ from ``before``, as a graph node update."""
    return {
        name: getattr(after, name)
        for name in WorkflowState.model_fields
        if getattr(after, name) != getattr(before, name)
    }
