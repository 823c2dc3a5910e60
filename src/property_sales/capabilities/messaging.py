"""Outbound messaging to buyers: WhatsApp, SMS, email and follow-up sequences."""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from property_sales.errors import ExternalToolError


logger = logging.getLogger(__name__)

MessageChannel = Literal["whatsapp", "sms", "email"]
SequenceType = Literal["initial_contact", "post_visit", "offer_reminder", "nurture"]


class MessageReceipt(BaseModel):
    message_id: str
    channel: MessageChannel
    recipient: str
    sent_at: datetime


class SequenceStep(BaseModel):
    delay_hours: int
    message: str


class SequenceReceipt(BaseModel):
    sequence_id: str
    sequence_type: SequenceType
    lead_id: str
    channel: MessageChannel
    steps: list[SequenceStep] = Field(default_factory=list)
    started_at: datetime


FOLLOWUP_SEQUENCES: dict[SequenceType, list[SequenceStep]] = {
    "initial_contact": [
        SequenceStep(delay_hours=0, message="Thank you for your interest!"),
        SequenceStep(delay_hours=24, message="Would you like to schedule a visit?"),
        SequenceStep(
            delay_hours=72, message="Still interested? Let me know if you have questions."
        ),
    ],
    "post_visit": [
        SequenceStep(delay_hours=2, message="Thank you for visiting! Any questions?"),
        SequenceStep(delay_hours=48, message="Would you like to make an offer?"),
    ],
    "offer_reminder": [
        SequenceStep(delay_hours=0, message="Your offer has been received!"),
        SequenceStep(delay_hours=24, message="Update on your offer status..."),
    ],
    "nurture": [
        SequenceStep(delay_hours=0, message="Checking in on your home search!"),
        SequenceStep(delay_hours=168, message="New properties matching your criteria..."),
    ],
}


class Messenger(ABC):
    """Side-effecting message delivery. Each call sends at most once."""

    @abstractmethod
    async def send_whatsapp(
        self, to: str, message: str, *, lead_id: str, property_id: str
    ) -> MessageReceipt: ...

    @abstractmethod
    async def send_sms(
        self, to: str, message: str, *, lead_id: str, property_id: str
    ) -> MessageReceipt: ...

    @abstractmethod
    async def send_email(
        self, to: str, subject: str, body: str, *, lead_id: str | None, property_id: str
    ) -> MessageReceipt: ...

    @abstractmethod
    async def start_followup_sequence(
        self,
        lead_id: str,
        sequence_type: SequenceType,
        channel: MessageChannel,
        *,
        property_id: str,
    ) -> SequenceReceipt: ...


class SimulatedMessenger(Messenger):
    """Records messages in memory instead of calling a delivery provider."""

    def __init__(self) -> None:
        self.sent: list[MessageReceipt] = []
        self.sequences: list[SequenceReceipt] = []

    def _deliver(self, channel: MessageChannel, to: str, lead_id: str | None) -> MessageReceipt:
        if not to:
            raise ExternalToolError(f"send_{channel}", f"no recipient for lead {lead_id}")
        receipt = MessageReceipt(
            message_id=f"{channel}_{uuid.uuid4().hex[:12]}",
            channel=channel,
            recipient=to,
            sent_at=datetime.now(UTC),
        )
        self.sent.append(receipt)
        logger.info("Sent %s message %s for lead %s", channel, receipt.message_id, lead_id)
        return receipt

    async def send_whatsapp(
        self, to: str, message: str, *, lead_id: str, property_id: str
    ) -> MessageReceipt:
        return self._deliver("whatsapp", to, lead_id)

    async def send_sms(
        self, to: str, message: str, *, lead_id: str, property_id: str
    ) -> MessageReceipt:
        return self._deliver("sms", to, lead_id)

    async def send_email(
        self, to: str, subject: str, body: str, *, lead_id: str | None, property_id: str
    ) -> MessageReceipt:
        return self._deliver("email", to, lead_id)

    async def start_followup_sequence(
        self,
        lead_id: str,
        sequence_type: SequenceType,
        channel: MessageChannel,
        *,
        property_id: str,
    ) -> SequenceReceipt:
        receipt = SequenceReceipt(
            sequence_id=f"seq_{lead_id}_{sequence_type}_{uuid.uuid4().hex[:8]}",
            sequence_type=sequence_type,
            lead_id=lead_id,
            channel=channel,
            steps=FOLLOWUP_SEQUENCES[sequence_type],
            started_at=datetime.now(UTC),
        )
        self.sequences.append(receipt)
        logger.info(
            "Started %s sequence for lead %s with %d steps",
            sequence_type,
            lead_id,
            len(receipt.steps),
        )
        return receipt
