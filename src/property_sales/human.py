"""Human interaction node.

The node holds no decision logic. On suspension the engine asks it for a
display prompt; on resume it records the human's reply and sends control back
to the stage node that asked. Only a lead replying to the lead conversation
loop writes into a lead's transcript.
"""

import logging
from datetime import datetime

from opentelemetry import trace
from pydantic import BaseModel

from property_sales.routing import Node, Redirect
from property_sales.state import (
    ConversationMessage,
    HumanRole,
    LeadContact,
    LeadConversation,
    LeadManagementResult,
    StateUpdate,
    WorkflowState,
    utcnow,
)


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_TRANSCRIPT_TAIL = 6


def _lead_conversation_prompt(state: WorkflowState, conversation: LeadConversation) -> str:
    lines = [
        f"Lead Conversation - {conversation.lead_name}",
        f"Property: {state.property.title} (${state.property.price:,.0f})",
        f"Status: {conversation.status} | "
        f"Qualification score: {conversation.qualification_score}/100",
        "",
    ]
    for message in conversation.messages[-_TRANSCRIPT_TAIL:]:
        speaker = conversation.lead_name if message.role == "human" else "Agent"
        lines.append(f"{speaker}: {message.content}")
    lines += ["", "Waiting for the lead's next message."]
    return "\n".join(lines)


def _lead_dashboard_prompt(state: WorkflowState) -> str:
    output = state.agent_outputs.get(Node.LEAD_MANAGEMENT.value)
    lines = [
        "Broker Dashboard - Lead Management",
        f"Property: {state.property.title}",
        f"Leads: {len(state.leads)} total, {len(state.qualified_leads)} qualified",
    ]
    for lead in sorted(state.leads, key=lambda lead: lead.qualification_score, reverse=True)[:5]:
        lines.append(f"  - {lead.name}: score {lead.qualification_score}, {lead.status}")
    if state.lead_conversations:
        lines.append(f"Active conversations: {len(state.lead_conversations)}")
    if output and output.next_action:
        lines += ["", f"Agent: {output.next_action}"]
    lines += [
        "",
        "Reply PROCEED to move to negotiation, WAIT to keep nurturing, or ask a question.",
    ]
    return "\n".join(lines)


def _agent_dashboard_prompt(state: WorkflowState, node: Node) -> str:
    output = state.agent_outputs.get(node.value)
    lines = [
        f"Broker Dashboard - {node.value.replace('_', ' ').title()} agent",
        f"Property: {state.property.title} (${state.property.price:,.0f})",
        f"Stage: {state.stage.value}",
    ]
    if output is not None:
        if not output.success:
            lines.append(f"Agent failed: {'; '.join(output.errors)}")
        if output.next_action:
            lines.append(f"Agent: {output.next_action}")
    return "\n".join(lines)


def build_prompt(state: WorkflowState, node: Node) -> str:
    """Context text shown to whoever must answer the suspended node."""
    if node is Node.LEAD_MANAGEMENT:
        output = state.agent_outputs.get(node.value)
        data = output.data if output else None
        if (
            isinstance(data, LeadManagementResult)
            and data.conversation_mode
            and data.lead_id in state.lead_conversations
        ):
            return _lead_conversation_prompt(state, state.lead_conversations[data.lead_id])
        return _lead_dashboard_prompt(state)
    return _agent_dashboard_prompt(state, node)


class HumanReply(BaseModel):
    """Resume value handed back to the interrupted human node."""

    response: str
    role: HumanRole = "broker"
    lead_id: str | None = None
    contact: LeadContact | None = None


def human_node(
    state: WorkflowState, target: Node, reply: HumanReply, now: datetime | None = None
) -> Redirect:
    """Record ``reply`` and hand control back to ``target``."""
    with tracer.start_as_current_span("human.resume") as span:
        span.set_attribute("human.role", reply.role)
        span.set_attribute("workflow.resume_target", target.value)

        now = now or utcnow()
        message = ConversationMessage(role="human", content=reply.response, timestamp=now)
        values: StateUpdate = {
            "human_response": reply.response,
            "human_role": reply.role,
            "current_lead_id": reply.lead_id,
            "current_lead_contact": reply.contact,
            "messages": [*state.messages, message],
            "human_intervention_required": False,
            "suspended_node": None,
        }

        if reply.role == "lead" and reply.lead_id and target is Node.LEAD_MANAGEMENT:
            conversation = state.lead_conversations.get(reply.lead_id) or LeadConversation.open(
                reply.lead_id, reply.contact, now
            )
            values["lead_conversations"] = {
                reply.lead_id: conversation.model_copy(
                    update={
                        "messages": [*conversation.messages, message],
                        "last_contact": now,
                        "status": "active",
                    }
                )
            }
            logger.info("Lead %s message routed to %s", reply.lead_id, target)
        else:
            logger.info("%s reply routed to %s", reply.role.title(), target)

        return Redirect(values, goto=target)
