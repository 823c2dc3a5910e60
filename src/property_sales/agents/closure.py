"""Closure agent - tracks the closing checklist until the broker confirms completion."""

import logging

from langgraph.graph import END
from opentelemetry import trace
from pydantic import BaseModel

from property_sales.agents.base import (
    AgentContext,
    ToolLog,
    agent_output,
    assistant_message,
    broker_reply,
    discuss_reply,
)
from property_sales.errors import AgentExecutionError
from property_sales.routing import ClosureDecision, Directive, Node, Redirect
from property_sales.state import ClosureResult, LegalDocuments, Offer, WorkflowStage, WorkflowState


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ChecklistItem(BaseModel):
    task: str
    completed: bool
    blocker: bool


def closing_checklist(docs: LegalDocuments) -> list[ChecklistItem]:
    """Closing tasks. Only items the workflow itself can observe start completed."""
    return [
        ChecklistItem(
            task="Attorney document review", completed=docs.status == "ready", blocker=True
        ),
        ChecklistItem(task="Purchase contract signed", completed=False, blocker=True),
        ChecklistItem(task="Buyer financing approved", completed=False, blocker=True),
        ChecklistItem(task="Home inspection completed", completed=False, blocker=False),
        ChecklistItem(task="Title search completed", completed=False, blocker=True),
        ChecklistItem(task="Homeowners insurance obtained", completed=False, blocker=True),
        ChecklistItem(task="Final walkthrough completed", completed=False, blocker=False),
        ChecklistItem(task="Closing date scheduled", completed=True, blocker=False),
    ]


def determine_next_action(items: list[ChecklistItem]) -> str:
    for item in items:
        if item.blocker and not item.completed:
            return item.task
    for item in items:
        if not item.completed:
            return item.task
    return "Close the transaction"


def _result(items: list[ChecklistItem], human_confirmed: bool = False) -> ClosureResult:
    pending = [i.task for i in items if not i.completed]
    blockers = [i.task for i in items if i.blocker and not i.completed]
    return ClosureResult(
        ready_for_closing=not blockers,
        all_tasks_complete=not pending,
        completed_items=[i.task for i in items if i.completed],
        pending_items=pending,
        blockers=blockers,
        next_step=determine_next_action(items),
        human_confirmed=human_confirmed,
    )


async def _send_status_update(
    state: WorkflowState, offer: Offer, result: ClosureResult, ctx: AgentContext, tools: ToolLog
) -> None:
    lead = state.find_lead(offer.lead_id)
    if lead is None or not lead.email:
        logger.info("No buyer email for %s, closing update not sent", offer.lead_id)
        return
    prop = state.property
    body = (
        f"Closing progress for {prop.address.one_line()}:\n\n"
        f"Completed: {', '.join(result.completed_items) or 'none'}\n"
        f"Pending: {', '.join(result.pending_items) or 'none'}\n\n"
        f"Next step: {result.next_step}"
    )
    receipt = await ctx.messenger.send_email(
        lead.email,
        f"Closing Update - {prop.address.city} Property",
        body,
        lead_id=lead.id,
        property_id=prop.id,
    )
    tools.record("send_email", lead_id=lead.id, message_id=receipt.message_id)


async def closure_agent(state: WorkflowState, ctx: AgentContext) -> Directive:
    with tracer.start_as_current_span("agent.closure") as span:
        span.set_attribute("property.id", state.property_id)
        offer = state.current_offer
        docs = state.legal_documents
        if offer is None or offer.status != "accepted":
            raise AgentExecutionError("Closure requires an accepted offer", node=Node.CLOSURE.value)
        if docs is None or docs.status == "draft":
            raise AgentExecutionError(
                "Closure requires reviewed legal documents", node=Node.CLOSURE.value
            )

        items = closing_checklist(docs)
        result = _result(items)

        reply = broker_reply(state)
        if reply:
            interpretation = await ctx.interpreter.interpret(
                "closure",
                reply,
                list(ClosureDecision),
                f"Closing checklist: pending {', '.join(result.pending_items) or 'none'}. "
                f"Next step: {result.next_step}",
                fallback=ClosureDecision.DISCUSS,
            )
            decision = ClosureDecision(interpretation.decision)
            logger.info("Closure decision for %s: %s", state.property_id, decision)

            if decision is ClosureDecision.COMPLETE:
                span.set_attribute("closure.completed", True)
                return Redirect(
                    {
                        "stage": WorkflowStage.COMPLETED,
                        "workflow_completed_at": ctx.now(),
                        "agent_outputs": agent_output(
                            Node.CLOSURE,
                            _result(items, human_confirmed=True),
                            "Transaction completed",
                            ctx,
                            last_response=interpretation.response or None,
                        ),
                    },
                    goto=END,
                )

            if decision is ClosureDecision.DISCUSS:
                reply = discuss_reply(interpretation)
                return Redirect(
                    {
                        "stage": WorkflowStage.CLOSURE,
                        "messages": [*state.messages, assistant_message(reply, Node.CLOSURE, ctx)],
                        "agent_outputs": agent_output(
                            Node.CLOSURE,
                            result,
                            f"Responded to broker: {reply[:80]}",
                            ctx,
                            last_response=reply,
                        ),
                    },
                    goto=Node.HUMAN,
                )

        tools = ToolLog()
        await _send_status_update(state, offer, result, ctx, tools)
        span.set_attribute("closure.blockers", len(result.blockers))
        return Redirect(
            {
                "stage": WorkflowStage.CLOSURE,
                "agent_outputs": agent_output(
                    Node.CLOSURE,
                    result,
                    f"CLOSING IN PROGRESS: next step is '{result.next_step}'. "
                    f"{len(result.pending_items)} tasks pending. Confirm when the transaction "
                    "is complete.",
                    ctx,
                    tools=tools,
                ),
            },
            goto=Node.HUMAN,
        )
