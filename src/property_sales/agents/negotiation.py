"""Negotiation agent - analyzes offers and routes them for broker decisions.

An offer is never accepted autonomously. Offers the analysis would accept, and
rejections close enough to asking to be worth a second look, suspend for the
broker. Counter offers and low-ball rejections execute directly.
"""

import logging

from opentelemetry import metrics, trace

from property_sales.agents.base import (
    AgentContext,
    ToolLog,
    agent_output,
    assistant_message,
    broker_reply,
    discuss_reply,
)
from property_sales.capabilities.analysis import OfferAnalysis, analyze_offer, fetch_market_data
from property_sales.routing import Directive, NegotiationDecision, Node, Redirect, Update
from property_sales.state import (
    NegotiationResult,
    Offer,
    PropertySnapshot,
    StateUpdate,
    WorkflowStage,
    WorkflowState,
)


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)
meter = metrics.get_meter(__name__)

_offer_decisions = meter.create_counter(
    name="workflow.offer.decisions",
    description="Offer recommendations by outcome",
    unit="{offer}",
)


def _analyze(offer: Offer, prop: PropertySnapshot, ctx: AgentContext) -> tuple[OfferAnalysis, str]:
    market = fetch_market_data(
        prop.address,
        prop.property_type,
        square_feet=prop.square_feet,
        default_price=ctx.settings.default_market_price,
    )
    analysis = analyze_offer(
        offer_amount=offer.amount,
        asking_price=prop.price,
        conditions=offer.conditions,
        earnest_money=(
            offer.earnest_money if offer.earnest_money is not None else offer.amount * 0.01
        ),
        market_trend=market.trend,
        days_on_market=market.average_days_on_market,
    )
    return analysis, market.trend


def _result(
    offer: Offer, analysis: OfferAnalysis | None, trend: str | None, **extra
) -> NegotiationResult:
    return NegotiationResult(
        offer_id=offer.id,
        offer_amount=offer.amount,
        percentage_of_asking=analysis.percentage if analysis else None,
        recommendation=analysis.recommendation if analysis else None,
        market_trend=trend,
        reasoning=analysis.factors if analysis else [],
        **extra,
    )


async def _notify_buyer(
    state: WorkflowState, offer: Offer, subject: str, body: str, ctx: AgentContext, tools: ToolLog
) -> None:
    prop = state.property
    lead = state.find_lead(offer.lead_id)
    if lead and lead.email:
        receipt = await ctx.messenger.send_email(
            lead.email, subject, body, lead_id=lead.id, property_id=prop.id
        )
    elif lead and lead.phone:
        receipt = await ctx.messenger.send_sms(
            lead.phone, f"{subject}. {body}"[:320], lead_id=lead.id, property_id=prop.id
        )
    else:
        logger.warning("No contact details for buyer %s, notification skipped", offer.lead_id)
        tools.record("notify_buyer", lead_id=offer.lead_id, skipped=True)
        return
    tools.record("notify_buyer", lead_id=offer.lead_id, message_id=receipt.message_id)


def _rejection_body(prop: PropertySnapshot, reasoning: str) -> str:
    return (
        f"Thank you for your interest in the property at {prop.address.one_line()}.\n\n"
        "After careful consideration, we are unable to accept your offer at this time.\n\n"
        f"{reasoning}\n\n"
        "We encourage you to submit a revised offer if you remain interested."
    )


def _close_offer(state: WorkflowState, offer: Offer) -> StateUpdate:
    return {"current_offer": offer, "offer_history": [*state.offer_history, offer]}


async def _handle_broker_reply(
    state: WorkflowState, offer: Offer, ctx: AgentContext
) -> Directive:
    prop = state.property
    tools = ToolLog()
    previous = state.agent_outputs.get(Node.NEGOTIATION.value)
    context = (
        f"Offer of ${offer.amount:,.0f} on {prop.title} (asking ${prop.price:,.0f}), "
        f"conditions: {', '.join(offer.conditions) or 'none'}. "
        f"Agent recommendation: {previous.next_action if previous else 'none'}"
    )
    interpretation = await ctx.interpreter.interpret(
        "negotiation",
        state.human_response or "",
        list(NegotiationDecision),
        context,
        fallback=NegotiationDecision.DISCUSS,
    )
    decision = NegotiationDecision(interpretation.decision)
    logger.info("Broker decision on offer %s: %s", offer.id, decision)

    if decision is NegotiationDecision.APPROVE:
        accepted = offer.model_copy(update={"status": "accepted"})
        await _notify_buyer(
            state,
            accepted,
            f"Offer Accepted - {prop.address.city} Property",
            f"Your offer of ${accepted.amount:,.0f} on {prop.address.one_line()} has been "
            "accepted. Our legal team will prepare the purchase contract within 24-48 hours.",
            ctx,
            tools,
        )
        _offer_decisions.add(1, {"recommendation": "accept", "auto_executed": False})
        return Redirect(
            {
                **_close_offer(state, accepted),
                "stage": WorkflowStage.LEGAL,
                "agent_outputs": agent_output(
                    Node.NEGOTIATION,
                    _result(accepted, None, None, human_decision=decision.value),
                    "Proceeding to Legal Agent for contract preparation (human approved)",
                    ctx,
                    last_response=interpretation.response or None,
                    tools=tools,
                ),
            },
            goto=Node.LEGAL,
        )

    if decision is NegotiationDecision.REJECT:
        rejected = offer.model_copy(update={"status": "rejected"})
        await _notify_buyer(
            state,
            rejected,
            f"Offer Response - {prop.address.city} Property",
            _rejection_body(
                prop,
                interpretation.reasoning or "The offer does not meet the seller's expectations.",
            ),
            ctx,
            tools,
        )
        _offer_decisions.add(1, {"recommendation": "reject", "auto_executed": False})
        return Update(
            {
                **_close_offer(state, rejected),
                "stage": WorkflowStage.NEGOTIATION,
                "agent_outputs": agent_output(
                    Node.NEGOTIATION,
                    _result(rejected, None, None, human_decision=decision.value),
                    "Offer rejected per broker decision. Waiting for new offers.",
                    ctx,
                    last_response=interpretation.response or None,
                    tools=tools,
                ),
            }
        )

    if decision is NegotiationDecision.MODIFY:
        current = previous.data.model_dump(mode="json") if previous and previous.data else {}
        modifications = await ctx.interpreter.extract_modifications(
            state.human_response or "", current
        )
        analysis, trend = _analyze(offer, prop, ctx)
        revised = offer.model_copy(
            update={
                "status": "pending",
                "counter_offer_amount": modifications.counter_amount
                or offer.counter_offer_amount,
                "counter_offer_conditions": modifications.conditions
                or offer.counter_offer_conditions,
            }
        )
        return Redirect(
            {
                "current_offer": revised,
                "stage": WorkflowStage.NEGOTIATION,
                "agent_outputs": agent_output(
                    Node.NEGOTIATION,
                    _result(
                        revised,
                        analysis,
                        trend,
                        human_decision=decision.value,
                        modifications=modifications.summary,
                        counter_offer_amount=revised.counter_offer_amount,
                        requires_broker_approval=True,
                    ),
                    f"Re-analyzed offer based on your feedback: {modifications.summary}. "
                    "Please review updated recommendation.",
                    ctx,
                ),
            },
            goto=Node.HUMAN,
        )

    reply = discuss_reply(interpretation)
    return Redirect(
        {
            "stage": WorkflowStage.NEGOTIATION,
            "messages": [*state.messages, assistant_message(reply, Node.NEGOTIATION, ctx)],
            "agent_outputs": agent_output(
                Node.NEGOTIATION,
                _result(offer, None, None, human_decision=decision.value),
                f"Responded to broker: {reply[:80]}",
                ctx,
                last_response=reply,
            ),
        },
        goto=Node.HUMAN,
    )


def _top_lead_id(state: WorkflowState) -> str | None:
    if not state.qualified_leads:
        return None
    return max(state.qualified_leads, key=lambda lead: lead.qualification_score).id


async def _review_offer(state: WorkflowState, ctx: AgentContext) -> Directive:
    prop = state.property
    tools = ToolLog()

    offer = state.current_offer
    if offer is None or offer.status != "pending":
        offer = await ctx.offer_source.next_offer(prop, _top_lead_id(state), ctx.now())
        if offer is None:
            logger.info("No offers yet for %s", prop.id)
            return Update(
                {
                    "stage": WorkflowStage.NEGOTIATION,
                    "agent_outputs": agent_output(
                        Node.NEGOTIATION,
                        NegotiationResult(),
                        "Waiting for offers",
                        ctx,
                    ),
                }
            )

    analysis, trend = _analyze(offer, prop, ctx)
    ratio = offer.amount / prop.price
    tools.record(
        "analyze_offer", recommendation=analysis.recommendation, percentage=analysis.percentage
    )
    logger.info(
        "Offer %s at %.1f%% of asking: %s (%s market)",
        offer.id,
        analysis.percentage,
        analysis.recommendation,
        trend,
    )

    if analysis.recommendation == "accept":
        _offer_decisions.add(1, {"recommendation": "accept", "auto_executed": False})
        pending = offer.model_copy(update={"status": "pending"})
        return Redirect(
            {
                "current_offer": pending,
                "stage": WorkflowStage.NEGOTIATION,
                "agent_outputs": agent_output(
                    Node.NEGOTIATION,
                    _result(pending, analysis, trend, requires_broker_approval=True),
                    f"BROKER APPROVAL REQUIRED: Agent recommends ACCEPTING this offer of "
                    f"${offer.amount:,.0f}. {analysis.reasoning}",
                    ctx,
                    tools=tools,
                ),
            },
            goto=Node.HUMAN,
        )

    if analysis.recommendation == "counter_offer":
        countered = offer.model_copy(
            update={
                "status": "counter_offered",
                "counter_offer_amount": analysis.suggested_counter,
                "counter_offer_conditions": offer.conditions,
            }
        )
        await _notify_buyer(
            state,
            countered,
            f"Counter-Offer - {prop.address.city} Property",
            f"Thank you for your offer on {prop.address.one_line()}.\n\n"
            f"Original Offer: ${offer.amount:,.0f}\n"
            f"Counter-Offer: ${analysis.suggested_counter or 0:,.0f}\n\n"
            f"{analysis.reasoning}\n\nThis counter-offer is valid for 48 hours.",
            ctx,
            tools,
        )
        _offer_decisions.add(1, {"recommendation": "counter_offer", "auto_executed": True})
        return Update(
            {
                **_close_offer(state, countered),
                "stage": WorkflowStage.NEGOTIATION,
                "agent_outputs": agent_output(
                    Node.NEGOTIATION,
                    _result(
                        countered,
                        analysis,
                        trend,
                        auto_executed=True,
                        counter_offer_amount=analysis.suggested_counter,
                    ),
                    f"Counter-offer of ${analysis.suggested_counter or 0:,.0f} sent to buyer.",
                    ctx,
                    tools=tools,
                ),
            }
        )

    if ratio < ctx.settings.auto_reject_ratio:
        rejected = offer.model_copy(update={"status": "rejected"})
        await _notify_buyer(
            state,
            rejected,
            f"Offer Response - {prop.address.city} Property",
            _rejection_body(prop, analysis.reasoning),
            ctx,
            tools,
        )
        _offer_decisions.add(1, {"recommendation": "reject", "auto_executed": True})
        return Update(
            {
                **_close_offer(state, rejected),
                "stage": WorkflowStage.NEGOTIATION,
                "agent_outputs": agent_output(
                    Node.NEGOTIATION,
                    _result(rejected, analysis, trend, auto_executed=True),
                    f"Low-ball offer rejected automatically (below "
                    f"{ctx.settings.auto_reject_ratio:.0%} of asking).",
                    ctx,
                    tools=tools,
                ),
            }
        )

    _offer_decisions.add(1, {"recommendation": "reject", "auto_executed": False})
    pending = offer.model_copy(update={"status": "pending"})
    return Redirect(
        {
            "current_offer": pending,
            "stage": WorkflowStage.NEGOTIATION,
            "agent_outputs": agent_output(
                Node.NEGOTIATION,
                _result(pending, analysis, trend, requires_broker_confirmation=True),
                f"BROKER CONFIRMATION REQUIRED: Agent recommends REJECTING this offer of "
                f"${offer.amount:,.0f}. {analysis.reasoning}",
                ctx,
                tools=tools,
            ),
        },
        goto=Node.HUMAN,
    )


async def negotiation_agent(state: WorkflowState, ctx: AgentContext) -> Directive:
    with tracer.start_as_current_span("agent.negotiation") as span:
        span.set_attribute("property.id", state.property_id)
        offer = state.current_offer
        if broker_reply(state) and offer is not None and offer.status == "pending":
            span.set_attribute("negotiation.mode", "broker")
            return await _handle_broker_reply(state, offer, ctx)

        span.set_attribute("negotiation.mode", "review")
        return await _review_offer(state, ctx)
