"""Inbound buyer activity: lead inquiries and purchase offers."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from property_sales.state import Lead, Offer, PropertySnapshot, derive_lead_id


logger = logging.getLogger(__name__)

SIMULATED_OFFER_CONDITIONS = ["Inspection contingency", "Financing contingency"]


class LeadSource(ABC):
    @abstractmethod
    async def fetch_inquiries(self, prop: PropertySnapshot) -> list[Lead]:
        """New inquiries for the listing since the last fetch."""


class OfferSource(ABC):
    @abstractmethod
    async def next_offer(
        self, prop: PropertySnapshot, lead_id: str | None, now: datetime
    ) -> Offer | None:
        """Next buyer offer awaiting review, or None when nothing has arrived."""


class SimulatedLeadSource(LeadSource):
    """Two canned inquiries: one hot, pre-approved buyer and one browser."""

    async def fetch_inquiries(self, prop: PropertySnapshot) -> list[Lead]:
        inquiries = [
            ("Sarah Johnson", "sarah.j@email.com", "+1234567890", "web",
             "Very interested! Looking to buy ASAP. Have pre-approval from bank."),
            ("Mike Chen", "mike.chen@email.com", "+1987654321", "whatsapp",
             "Just browsing, might be interested in 6 months"),
        ]  # fmt: skip
        return [
            Lead(
                id=derive_lead_id(email, phone),
                property_id=prop.id,
                name=name,
                email=email,
                phone=phone,
                source=source,
                notes=notes,
            )
            for name, email, phone, source, notes in inquiries
        ]


class SimulatedOfferSource(OfferSource):
    """Produces one offer at a fixed ratio of the asking price."""

    def __init__(self, ratio: float, expiry_days: int = 7) -> None:
        self._ratio = ratio
        self._expiry_days = expiry_days

    async def next_offer(
        self, prop: PropertySnapshot, lead_id: str | None, now: datetime
    ) -> Offer | None:
        amount = round(prop.price * self._ratio, 2)
        if amount <= 0:
            return None
        offer = Offer(
            property_id=prop.id,
            lead_id=lead_id or "lead_simulated",
            amount=amount,
            conditions=list(SIMULATED_OFFER_CONDITIONS),
            earnest_money=round(amount * 0.01, 2),
            expires_at=now + timedelta(days=self._expiry_days),
            created_at=now,
        )
        logger.info("Simulated offer %s at %.0f for property %s", offer.id, amount, prop.id)
        return offer
