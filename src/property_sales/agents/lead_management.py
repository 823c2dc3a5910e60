"""Lead management agent - qualifies inquiries, books visits and talks to buyers."""

import logging
from datetime import timedelta

from opentelemetry import trace

from property_sales.agents.base import (
    AgentContext,
    ToolLog,
    agent_output,
    assistant_message,
    discuss_reply,
)
from property_sales.capabilities.analysis import qualify_lead
from property_sales.capabilities.messaging import MessageChannel, SequenceType
from property_sales.errors import AgentExecutionError
from property_sales.routing import Directive, LeadBrokerDecision, Node, Redirect, Update
from property_sales.state import (
    ConversationStatus,
    Lead,
    LeadConversation,
    LeadManagementResult,
    LeadStatus,
    PropertySnapshot,
    WorkflowStage,
    WorkflowState,
)


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_PRE_APPROVAL_MARKERS = ("pre-approval", "preapproval", "pre-approved")
_TIER_STATUS: dict[str, LeadStatus] = {
    "hot": "qualified",
    "qualified": "qualified",
    "needs_nurturing": "contacted",
    "cold": "new",
}


def detect_pre_approval(notes: str | None) -> bool:
    lowered = (notes or "").lower()
    return any(marker in lowered for marker in _PRE_APPROVAL_MARKERS)


def estimate_budget(notes: str | None, price: float) -> float:
    return price if detect_pre_approval(notes) else price * 0.85


def extract_timeline(notes: str | None) -> str:
    lowered = (notes or "").lower()
    if "asap" in lowered or "immediately" in lowered:
        return "immediately"
    if "month" in lowered:
        return "1-3 months"
    return "flexible"


def conversation_status(score: int, ready_for_offer: bool) -> ConversationStatus:
    if ready_for_offer:
        return "ready_for_offer"
    if score >= 75:
        return "qualified"
    if score < 30:
        return "cold"
    return "active"


def preferred_channel(lead: Lead) -> MessageChannel:
    if lead.source == "whatsapp":
        return "whatsapp"
    return "sms" if lead.phone else "email"


def _stats(leads: list[Lead], ctx: AgentContext) -> dict[str, int]:
    return {
        "total_leads": len(leads),
        "qualified_leads": sum(
            1 for lead in leads if lead.qualification_score >= ctx.settings.qualified_lead_score
        ),
        "hot_leads": sum(
            1 for lead in leads if lead.qualification_score >= ctx.settings.hot_lead_score
        ),
    }


async def _send_immediate_response(
    lead: Lead, prop: PropertySnapshot, ctx: AgentContext, tools: ToolLog
) -> None:
    channel = preferred_channel(lead)
    city = prop.address.city
    if channel == "whatsapp":
        receipt = await ctx.messenger.send_whatsapp(
            lead.phone or "",
            f"Hi {lead.name}! Thanks for your interest in the {prop.property_type} in {city}. "
            "I have availability tomorrow at 2 PM to show it to you. Does that work?",
            lead_id=lead.id,
            property_id=prop.id,
        )
    elif channel == "sms":
        receipt = await ctx.messenger.send_sms(
            lead.phone or "",
            f"Hi {lead.name}, thanks for asking about the {city} property! I'd love to show "
            "it to you tomorrow at 2 PM. Reply YES if that works.",
            lead_id=lead.id,
            property_id=prop.id,
        )
    else:
        receipt = await ctx.messenger.send_email(
            lead.email or "",
            f"Your inquiry about {city} property",
            f"Hi {lead.name},\n\nThank you for your interest in the {prop.property_type} at "
            f"{prop.address.one_line()}, priced at ${prop.price:,.0f}. I have availability "
            "tomorrow at 2 PM for a private showing, or I can work around your schedule.",
            lead_id=lead.id,
            property_id=prop.id,
        )
    tools.record("send_message", channel=channel, lead_id=lead.id, message_id=receipt.message_id)


async def _handle_lead_message(state: WorkflowState, ctx: AgentContext) -> Directive:
    lead_id = state.current_lead_id
    if lead_id is None:
        raise AgentExecutionError(
            "Lead message has no lead id", node=Node.LEAD_MANAGEMENT.value
        )
    message = state.human_response or ""
    prop = state.property
    now = ctx.now()

    conversation = state.lead_conversations.get(lead_id) or LeadConversation.open(
        lead_id, state.current_lead_contact, now
    )
    reply = await ctx.lead_responder.respond(conversation, prop, message)
    score = max(0, min(100, conversation.qualification_score + reply.score_change))
    status = conversation_status(score, reply.ready_for_offer)
    conversation = conversation.model_copy(
        update={
            "messages": [
                *conversation.messages,
                assistant_message(reply.message, Node.LEAD_MANAGEMENT, ctx),
            ],
            "qualification_score": score,
            "status": status,
            "last_contact": now,
        }
    )
    logger.info(
        "Lead %s replied: score %d (%+d), status %s", lead_id, score, reply.score_change, status
    )

    result = LeadManagementResult(
        conversation_mode=True,
        lead_id=lead_id,
        agent_response=reply.message,
        lead_status=status,
        qualification_score=score,
    )

    if not reply.ready_for_offer:
        return Redirect(
            {
                "stage": WorkflowStage.LEAD_MANAGEMENT,
                "lead_conversations": {lead_id: conversation},
                "agent_outputs": agent_output(
                    Node.LEAD_MANAGEMENT, result, reply.message, ctx, last_response=reply.message
                ),
            },
            goto=Node.HUMAN,
        )

    existing = state.find_lead(lead_id)
    if existing is None:
        existing = Lead(
            id=lead_id,
            property_id=prop.id,
            name=conversation.lead_name,
            email=conversation.lead_email,
            phone=conversation.lead_phone,
            notes="Lead became qualified through conversation. Ready to make offer.",
            created_at=now,
        )
        leads = [*state.leads, existing]
    else:
        leads = list(state.leads)
    converted = existing.model_copy(
        update={"status": "offer_made", "qualification_score": score, "last_contacted_at": now}
    )
    leads = [converted if lead.id == lead_id else lead for lead in leads]

    logger.info("Lead %s is ready to make an offer", lead_id)
    return Update(
        {
            "stage": WorkflowStage.NEGOTIATION,
            "leads": leads,
            "lead_conversations": {lead_id: conversation},
            "agent_outputs": agent_output(
                Node.LEAD_MANAGEMENT,
                result.model_copy(
                    update={"ready_for_negotiation": True, "lead_converted": True}
                ),
                f"Lead {lead_id} is ready to make an offer. Proceeding to Negotiation Agent.",
                ctx,
                last_response=reply.message,
            ),
        }
    )


async def _handle_broker_reply(state: WorkflowState, ctx: AgentContext) -> Directive | None:
    stats = _stats(state.leads, ctx)
    context = (
        f"Lead management for {state.property.title}. Leads: {stats['total_leads']} total, "
        f"{stats['qualified_leads']} qualified, {stats['hot_leads']} hot. "
        "PROCEED moves to negotiation, WAIT keeps working the leads, "
        "DISCUSS answers a question."
    )
    interpretation = await ctx.interpreter.interpret(
        "lead_management",
        state.human_response or "",
        list(LeadBrokerDecision),
        context,
        fallback=LeadBrokerDecision.DISCUSS,
    )
    decision = LeadBrokerDecision(interpretation.decision)
    logger.info("Broker lead decision for %s: %s", state.property_id, decision)

    if decision is LeadBrokerDecision.PROCEED:
        result = LeadManagementResult(
            **stats, ready_for_negotiation=True, human_override=True
        )
        return Update(
            {
                "stage": WorkflowStage.NEGOTIATION,
                "agent_outputs": agent_output(
                    Node.LEAD_MANAGEMENT,
                    result,
                    "Proceeding to Negotiation Agent (broker override)",
                    ctx,
                ),
            }
        )

    if decision is LeadBrokerDecision.DISCUSS:
        reply = discuss_reply(interpretation)
        return Redirect(
            {
                "stage": WorkflowStage.LEAD_MANAGEMENT,
                "messages": [
                    *state.messages,
                    assistant_message(reply, Node.LEAD_MANAGEMENT, ctx),
                ],
                "agent_outputs": agent_output(
                    Node.LEAD_MANAGEMENT,
                    LeadManagementResult(**stats, conversation_mode=True),
                    f"Responded: {reply[:80]}",
                    ctx,
                    last_response=reply,
                ),
            },
            goto=Node.HUMAN,
        )

    return None


async def _process_inquiries(state: WorkflowState, ctx: AgentContext) -> Directive:
    settings = ctx.settings
    prop = state.property
    now = ctx.now()
    tools = ToolLog()

    known = {lead.id for lead in state.leads}
    incoming: list[Lead] = []
    for lead in await ctx.lead_source.fetch_inquiries(prop):
        if lead.id not in known:
            known.add(lead.id)
            incoming.append(lead)
    logger.info("Processing %d new inquiries for %s", len(incoming), prop.id)

    processed: list[Lead] = []
    qualified: list[Lead] = []
    visits = 0
    sequences = 0
    for lead in incoming:
        qualification = qualify_lead(
            property_price=prop.price,
            email=lead.email,
            phone=lead.phone,
            message=lead.notes,
            budget=estimate_budget(lead.notes, prop.price),
            timeline=extract_timeline(lead.notes),
            pre_approved=detect_pre_approval(lead.notes),
        )
        tools.record("qualify_lead", lead_id=lead.id, score=qualification.score)
        lead = lead.model_copy(
            update={
                "qualification_score": qualification.score,
                "status": _TIER_STATUS[qualification.tier],
            }
        )

        if qualification.tier in ("hot", "qualified"):
            visit_at = (now + timedelta(days=1)).replace(hour=14, minute=0, second=0, microsecond=0)
            booking = await ctx.calendar.schedule_visit(
                lead_id=lead.id,
                lead_name=lead.name,
                property_id=prop.id,
                location=prop.address.one_line(),
                starts_at=visit_at,
                duration_minutes=60,
            )
            tools.record("schedule_visit", lead_id=lead.id, event_id=booking.event_id)
            await _send_immediate_response(lead, prop, ctx, tools)
            lead = lead.model_copy(update={"status": "visit_scheduled", "last_contacted_at": now})
            visits += 1
            qualified.append(lead)
        else:
            sequence_type: SequenceType
            channel: MessageChannel
            if qualification.tier == "needs_nurturing":
                sequence_type = "initial_contact"
                channel = "whatsapp" if lead.source == "whatsapp" else "email"
            else:
                sequence_type, channel = "nurture", "email"
            receipt = await ctx.messenger.start_followup_sequence(
                lead.id, sequence_type, channel, property_id=prop.id
            )
            tools.record("start_followup_sequence", lead_id=lead.id, sequence=receipt.sequence_id)
            sequences += 1
        processed.append(lead)

    leads = [*state.leads, *processed]
    ready = any(lead.qualification_score >= settings.hot_lead_score for lead in leads)
    result = LeadManagementResult(
        **_stats(leads, ctx),
        visits_scheduled=visits,
        nurture_sequences_started=sequences,
        ready_for_negotiation=ready,
    )

    values = {
        "leads": leads,
        "qualified_leads": [*state.qualified_leads, *qualified],
    }
    if ready:
        return Update(
            {
                **values,
                "stage": WorkflowStage.NEGOTIATION,
                "agent_outputs": agent_output(
                    Node.LEAD_MANAGEMENT,
                    result,
                    "Hot lead detected - proceeding to negotiation automatically",
                    ctx,
                    tools=tools,
                ),
            }
        )
    return Redirect(
        {
            **values,
            "stage": WorkflowStage.LEAD_MANAGEMENT,
            "agent_outputs": agent_output(
                Node.LEAD_MANAGEMENT, result, "Continue nurturing leads", ctx, tools=tools
            ),
        },
        goto=Node.HUMAN,
    )


async def lead_management_agent(state: WorkflowState, ctx: AgentContext) -> Directive:
    """Route lead messages, broker replies, or a fresh inquiry sweep."""
    with tracer.start_as_current_span("agent.lead_management") as span:
        span.set_attribute("property.id", state.property_id)
        span.set_attribute("leads.known", len(state.leads))

        if state.human_response and state.human_role == "lead" and state.current_lead_id:
            span.set_attribute("lead_management.mode", "conversation")
            return await _handle_lead_message(state, ctx)

        if state.human_response and state.human_role == "broker":
            span.set_attribute("lead_management.mode", "broker")
            directive = await _handle_broker_reply(state, ctx)
            if directive is not None:
                return directive

        span.set_attribute("lead_management.mode", "inquiries")
        return await _process_inquiries(state, ctx)
