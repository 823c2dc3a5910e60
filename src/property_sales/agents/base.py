"""Shared plumbing for stage agents.

Agents are plain async functions ``(state, ctx) -> Directive``. Everything with
a side effect or an LLM behind it reaches them through ``AgentContext`` so the
engine and tests can swap implementations.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from property_sales.capabilities.calendar import CalendarService, SimulatedCalendar
from property_sales.capabilities.content import Copywriter, LLMCopywriter
from property_sales.capabilities.conversation import (
    Interpretation,
    LeadResponder,
    LLMLeadResponder,
    LLMResponseInterpreter,
    ResponseInterpreter,
)
from property_sales.capabilities.documents import DocumentService, SimulatedDocumentService
from property_sales.capabilities.messaging import Messenger, SimulatedMessenger
from property_sales.capabilities.sources import (
    LeadSource,
    OfferSource,
    SimulatedLeadSource,
    SimulatedOfferSource,
)
from property_sales.config import Settings
from property_sales.llm import LLMClient
from property_sales.routing import Node
from property_sales.state import (
    AgentOutput,
    AgentResult,
    ConversationMessage,
    WorkflowState,
    utcnow,
)


@dataclass
class AgentContext:
    settings: Settings
    interpreter: ResponseInterpreter
    copywriter: Copywriter
    lead_responder: LeadResponder
    messenger: Messenger
    calendar: CalendarService
    documents: DocumentService
    lead_source: LeadSource
    offer_source: OfferSource
    clock: Callable[[], datetime] = field(default=utcnow)

    def now(self) -> datetime:
        return self.clock()


def build_agent_context(settings: Settings, llm: LLMClient | None = None) -> AgentContext:
    """Wire LLM-backed conversation and copy with simulated external services."""
    llm = llm or LLMClient(settings)
    return AgentContext(
        settings=settings,
        interpreter=LLMResponseInterpreter(llm),
        copywriter=LLMCopywriter(llm),
        lead_responder=LLMLeadResponder(llm),
        messenger=SimulatedMessenger(),
        calendar=SimulatedCalendar(),
        documents=SimulatedDocumentService(),
        lead_source=SimulatedLeadSource(),
        offer_source=SimulatedOfferSource(
            settings.simulated_offer_ratio, settings.offer_expiry_days
        ),
    )


class ToolLog:
    """Collects capability calls for the agent's audit record."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def record(self, tool: str, **details: Any) -> None:
        self.calls.append({"tool": tool, **details})


def agent_output(
    node: Node,
    data: AgentResult,
    next_action: str,
    ctx: AgentContext,
    *,
    last_response: str | None = None,
    tools: ToolLog | None = None,
) -> dict[str, AgentOutput]:
    """``agent_outputs`` update entry for a successful execution."""
    return {
        node.value: AgentOutput(
            agent_name=node.value,
            timestamp=ctx.now(),
            data=data,
            next_action=next_action,
            last_response=last_response,
            tool_calls=tools.calls if tools else [],
        )
    }


def assistant_message(content: str, node: Node, ctx: AgentContext) -> ConversationMessage:
    return ConversationMessage(
        role="assistant", content=content, timestamp=ctx.now(), agent_name=node.value
    )


def discuss_reply(interpretation: Interpretation) -> str:
    return interpretation.response or (
        "Could you tell me a bit more about how you'd like to proceed?"
    )


def broker_reply(state: WorkflowState) -> str | None:
    """The pending human reply, if the broker sent it.

    Approvals, sign-offs and completion only act on broker replies.
    """
    if state.human_role == "broker" and state.human_response:
        return state.human_response
    return None
