"""Conversational capabilities: reading human replies and talking to leads.

The interpreter maps a broker's free-text reply onto a stage's fixed decision
set. Anything it cannot read with confidence becomes the caller's safe
fallback decision, so no gated action runs on an ambiguous reply.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from property_sales.errors import AgentExecutionError
from property_sales.llm import Task, strip_markdown_json
from property_sales.prompts import format_prompt
from property_sales.state import LeadConversation, PropertySnapshot


if TYPE_CHECKING:
    from property_sales.llm import LLMClient


logger = logging.getLogger(__name__)

MAX_SCORE_CHANGE = 10


class Interpretation(BaseModel):
    decision: str
    response: str = ""
    reasoning: str = ""


class Modifications(BaseModel):
    summary: str
    specific_changes: list[str] = Field(default_factory=list)
    counter_amount: float | None = Field(default=None, gt=0)
    conditions: list[str] | None = None


class LeadReply(BaseModel):
    message: str
    score_change: int = 0
    ready_for_offer: bool = False
    reasoning: str = ""


class ResponseInterpreter(ABC):
    @abstractmethod
    async def interpret(
        self,
        stage: str,
        message: str,
        decisions: Sequence[str],
        context: str,
        fallback: str,
    ) -> Interpretation:
        """Classify ``message`` into one of ``decisions`` and draft a reply."""

    @abstractmethod
    async def extract_modifications(
        self, message: str, current: dict[str, Any]
    ) -> Modifications:
        """Pull concrete change requests out of a MODIFY or REVISE reply."""


class LeadResponder(ABC):
    @abstractmethod
    async def respond(
        self, conversation: LeadConversation, prop: PropertySnapshot, message: str
    ) -> LeadReply: ...


def fallback_lead_reply(prop: PropertySnapshot) -> LeadReply:
    return LeadReply(
        message=(
            f"Thank you for your interest in this {prop.property_type}! I'd be happy to "
            "help answer any questions. What would you like to know more about?"
        ),
        reasoning="Reply generation unavailable",
    )


def _parse_json(content: str) -> dict[str, Any]:
    data = json.loads(strip_markdown_json(content))
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


class LLMResponseInterpreter(ResponseInterpreter):
    def __init__(self, llm: "LLMClient") -> None:
        self._llm = llm

    async def interpret(
        self,
        stage: str,
        message: str,
        decisions: Sequence[str],
        context: str,
        fallback: str,
    ) -> Interpretation:
        try:
            content = await self._llm.generate(
                Task.INTERPRET,
                format_prompt("interpret", "system", stage=stage),
                format_prompt(
                    "interpret",
                    "user",
                    context=context,
                    message=message,
                    decisions=", ".join(decisions),
                ),
                stage=stage,
            )
        except Exception as e:
            raise AgentExecutionError(f"Could not interpret human response: {e}") from e

        try:
            data = _parse_json(content)
            result = Interpretation.model_validate(data)
        except (ValueError, PydanticValidationError) as e:
            logger.warning("Unreadable interpretation for %s, using %s: %s", stage, fallback, e)
            return Interpretation(decision=fallback, reasoning="Unreadable model output")

        decision = result.decision.strip().upper()
        if decision not in decisions:
            logger.warning(
                "Interpretation %r for %s is outside %s, using %s",
                decision,
                stage,
                list(decisions),
                fallback,
            )
            return result.model_copy(update={"decision": fallback})

        logger.info("Interpreted %s reply as %s: %s", stage, decision, result.reasoning)
        return result.model_copy(update={"decision": decision})

    async def extract_modifications(
        self, message: str, current: dict[str, Any]
    ) -> Modifications:
        try:
            content = await self._llm.generate(
                Task.MODIFICATIONS,
                format_prompt("modifications", "system"),
                format_prompt(
                    "modifications",
                    "user",
                    current=json.dumps(current, indent=2, default=str),
                    message=message,
                ),
            )
        except Exception as e:
            raise AgentExecutionError(f"Could not extract modifications: {e}") from e

        try:
            return Modifications.model_validate(_parse_json(content))
        except (ValueError, PydanticValidationError) as e:
            logger.warning("Unreadable modifications, keeping raw message: %s", e)
            return Modifications(summary=message, specific_changes=[message])


class LLMLeadResponder(LeadResponder):
    """Answers buyer questions and rescores the lead after each message."""

    def __init__(self, llm: "LLMClient") -> None:
        self._llm = llm

    async def respond(
        self, conversation: LeadConversation, prop: PropertySnapshot, message: str
    ) -> LeadReply:
        history = "\n".join(
            f"{'Lead' if m.role == 'human' else 'Agent'}: {m.content}"
            for m in conversation.messages
        )
        prompt = format_prompt(
            "lead_reply",
            "user",
            address=prop.address.one_line(),
            property_type=prop.property_type,
            price=f"${prop.price:,.0f}",
            bedrooms=prop.bedrooms if prop.bedrooms is not None else "N/A",
            bathrooms=prop.bathrooms if prop.bathrooms is not None else "N/A",
            square_feet=prop.square_feet if prop.square_feet is not None else "N/A",
            description=prop.ai_enhanced_description or prop.description or "Beautiful property",
            score=conversation.qualification_score,
            status=conversation.status,
            history=history or "This is the first message",
            message=message,
        )
        try:
            content = await self._llm.generate(
                Task.LEAD_REPLY,
                format_prompt("lead_reply", "system"),
                prompt,
                property_id=prop.id,
                stage="lead_management",
            )
            reply = LeadReply.model_validate(_parse_json(content))
        except Exception as e:
            logger.error("Lead reply generation failed for %s: %s", conversation.lead_id, e)
            return fallback_lead_reply(prop)

        change = max(-MAX_SCORE_CHANGE, min(MAX_SCORE_CHANGE, reply.score_change))
        return reply.model_copy(update={"score_change": change})
