"""Orchestration facade used by the HTTP layer.

Translates property-level requests into engine operations and projects
checkpoints into status and history views.
"""

import logging
from datetime import datetime

from opentelemetry import trace
from pydantic import BaseModel, Field

from property_sales.checkpoint import Checkpoint
from property_sales.engine import WorkflowEngine, thread_id_for
from property_sales.errors import NotFoundError, StageConflictError, ValidationError
from property_sales.repository import PropertyRepository
from property_sales.state import (
    AgentOutput,
    HumanRole,
    LeadContact,
    LeadConversation,
    Offer,
    PropertySnapshot,
    WorkflowStage,
    WorkflowState,
    derive_lead_id,
)


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class WorkflowStatus(BaseModel):
    property_id: str
    current_stage: WorkflowStage
    completed: bool
    human_intervention_required: bool
    started_at: datetime
    completed_at: datetime | None = None
    error: str | None = None
    agent_outputs: dict[str, AgentOutput] = Field(default_factory=dict)
    pending_prompt: str | None = None
    suspended_node: str | None = None
    expired: bool = False


class HistoryEntry(BaseModel):
    timestamp: datetime
    step: int
    node: str
    stage: WorkflowStage
    human_intervention_required: bool
    agent_outputs: dict[str, AgentOutput] = Field(default_factory=dict)


class WorkflowOrchestrator:
    def __init__(self, engine: WorkflowEngine, properties: PropertyRepository) -> None:
        self._engine = engine
        self._properties = properties

    def _status(self, checkpoint: Checkpoint) -> WorkflowStatus:
        state = checkpoint.state
        suspension = checkpoint.suspension
        return WorkflowStatus(
            property_id=state.property_id,
            current_stage=state.stage,
            completed=state.stage is WorkflowStage.COMPLETED,
            human_intervention_required=checkpoint.interrupted,
            started_at=state.workflow_started_at,
            completed_at=state.workflow_completed_at,
            error=state.errors[-1] if state.errors else None,
            agent_outputs=state.agent_outputs,
            pending_prompt=suspension.prompt if suspension else None,
            suspended_node=suspension.node.value if suspension else None,
            expired=self._engine.is_expired(checkpoint),
        )

    async def _latest(self, property_id: str) -> Checkpoint:
        checkpoint = await self._engine.latest(thread_id_for(property_id))
        if checkpoint is None:
            raise NotFoundError(f"No workflow for property {property_id}")
        return checkpoint

    async def start_workflow(
        self, property_id: str, snapshot: PropertySnapshot | None = None
    ) -> WorkflowStatus:
        """Start a workflow from the stored listing, or from ``snapshot`` if given."""
        if snapshot is None:
            snapshot = await self._properties.find_by_id(property_id)
            if snapshot is None:
                raise NotFoundError(f"Property {property_id} not found")
        elif snapshot.id != property_id:
            raise ValidationError("Snapshot id does not match property id")

        state = WorkflowState(property_id=property_id, property=snapshot)
        checkpoint = await self._engine.start(state)
        return self._status(checkpoint)

    async def get_status(self, property_id: str) -> WorkflowStatus:
        return self._status(await self._latest(property_id))

    async def resume_workflow(
        self,
        property_id: str,
        human_response: str,
        human_role: HumanRole = "broker",
        lead_id: str | None = None,
        lead_email: str | None = None,
        lead_phone: str | None = None,
        lead_name: str | None = None,
    ) -> WorkflowStatus:
        if not human_response or not human_response.strip():
            raise ValidationError("human_response is required")
        contact = None
        if human_role == "lead":
            if not (lead_id or lead_email or lead_phone):
                raise ValidationError("Lead replies require lead_id, lead_email or lead_phone")
            lead_id = lead_id or derive_lead_id(lead_email, lead_phone)
            contact = LeadContact(name=lead_name, email=lead_email, phone=lead_phone)

        with tracer.start_as_current_span("orchestrator.resume") as span:
            span.set_attribute("property.id", property_id)
            span.set_attribute("human.role", human_role)
            checkpoint = await self._engine.resume(
                thread_id_for(property_id), human_response, human_role, lead_id, contact
            )
        return self._status(checkpoint)

    async def get_history(self, property_id: str) -> list[HistoryEntry]:
        """Node executions oldest first."""
        entries = [
            HistoryEntry(
                timestamp=checkpoint.created_at,
                step=checkpoint.step,
                node=checkpoint.node or "unknown",
                stage=checkpoint.state.stage,
                human_intervention_required=checkpoint.state.human_intervention_required,
                agent_outputs=checkpoint.state.agent_outputs,
            )
            async for checkpoint in self._engine.history(thread_id_for(property_id))
        ]
        if not entries:
            raise NotFoundError(f"No workflow for property {property_id}")
        entries.reverse()
        return entries

    async def submit_offer(
        self,
        property_id: str,
        amount: float,
        conditions: list[str] | None = None,
        lead_id: str | None = None,
    ) -> WorkflowStatus:
        """Record a buyer's offer and let the negotiation agent evaluate it."""
        if amount <= 0:
            raise ValidationError("Offer amount must be greater than zero")
        checkpoint = await self._latest(property_id)
        state = checkpoint.state
        if state.stage is not WorkflowStage.NEGOTIATION:
            raise StageConflictError(
                f"Offers are accepted during negotiation, workflow is at {state.stage}"
            )
        if checkpoint.interrupted:
            raise StageConflictError("An offer is already awaiting a broker decision")

        offer = Offer(
            property_id=property_id,
            lead_id=lead_id or "lead_direct",
            amount=amount,
            conditions=conditions or [],
        )
        logger.info("Offer %s of %.0f submitted for %s", offer.id, amount, property_id)
        checkpoint = await self._engine.advance(
            thread_id_for(property_id), {"current_offer": offer}
        )
        return self._status(checkpoint)

    async def receive_lead_message(
        self,
        property_id: str,
        message: str,
        lead_email: str | None = None,
        lead_phone: str | None = None,
        lead_name: str | None = None,
    ) -> WorkflowStatus:
        """Feed an inbound lead message into the lead conversation loop."""
        if not message or not message.strip():
            raise ValidationError("message is required")
        if not (lead_email or lead_phone):
            raise ValidationError("lead_email or lead_phone is required")
        checkpoint = await self._latest(property_id)
        if checkpoint.state.stage is not WorkflowStage.LEAD_MANAGEMENT:
            raise StageConflictError(
                f"Lead messages are handled during lead management, "
                f"workflow is at {checkpoint.state.stage}"
            )
        return await self.resume_workflow(
            property_id,
            message,
            human_role="lead",
            lead_id=derive_lead_id(lead_email, lead_phone),
            lead_email=lead_email,
            lead_phone=lead_phone,
            lead_name=lead_name,
        )

    async def get_lead_conversation(self, property_id: str, lead_id: str) -> LeadConversation:
        checkpoint = await self._latest(property_id)
        conversation = checkpoint.state.lead_conversations.get(lead_id)
        if conversation is None:
            raise NotFoundError(f"No conversation for lead {lead_id}")
        return conversation

    async def health_check(self) -> bool:
        return await self._engine.store.health_check()
