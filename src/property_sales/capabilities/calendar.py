"""Property visit scheduling."""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


class VisitBooking(BaseModel):
    event_id: str
    lead_id: str
    property_id: str
    starts_at: datetime
    ends_at: datetime
    location: str
    calendar_link: str


class AvailabilityWindow(BaseModel):
    day: date
    slots: list[str] = Field(default_factory=list)


class CalendarService(ABC):
    @abstractmethod
    async def schedule_visit(
        self,
        *,
        lead_id: str,
        lead_name: str,
        property_id: str,
        location: str,
        starts_at: datetime,
        duration_minutes: int = 60,
    ) -> VisitBooking: ...

    @abstractmethod
    async def check_availability(self, start: date, end: date) -> list[AvailabilityWindow]: ...


class SimulatedCalendar(CalendarService):
    """In-memory calendar that accepts every booking."""

    def __init__(self) -> None:
        self.bookings: list[VisitBooking] = []

    async def schedule_visit(
        self,
        *,
        lead_id: str,
        lead_name: str,
        property_id: str,
        location: str,
        starts_at: datetime,
        duration_minutes: int = 60,
    ) -> VisitBooking:
        event_id = f"visit_{property_id}_{lead_id}_{int(starts_at.timestamp())}"
        booking = VisitBooking(
            event_id=event_id,
            lead_id=lead_id,
            property_id=property_id,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(minutes=duration_minutes),
            location=location,
            calendar_link=f"https://calendar.google.com/event?eid={event_id}",
        )
        self.bookings.append(booking)
        logger.info("Scheduled visit %s for %s at %s", event_id, lead_name, starts_at.isoformat())
        return booking

    async def check_availability(self, start: date, end: date) -> list[AvailabilityWindow]:
        return [
            AvailabilityWindow(day=start, slots=["10:00", "14:00", "16:00"]),
            AvailabilityWindow(day=end, slots=["09:00", "11:00", "15:00"]),
        ]
