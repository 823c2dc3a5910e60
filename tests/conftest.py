"""Pytest fixtures for property sales workflow tests."""

import os
import re
from collections.abc import Sequence
from typing import Any
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from langgraph.checkpoint.sqlite.aio import AsyncSqliteSaver
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool


os.environ["OTEL_ENABLED"] = "false"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from property_sales.agents.base import AgentContext  # noqa: E402
from property_sales.capabilities.calendar import SimulatedCalendar  # noqa: E402
from property_sales.capabilities.content import TemplateCopywriter  # noqa: E402
from property_sales.capabilities.conversation import (  # noqa: E402
    Interpretation,
    LeadReply,
    LeadResponder,
    Modifications,
    ResponseInterpreter,
)
from property_sales.capabilities.documents import SimulatedDocumentService  # noqa: E402
from property_sales.capabilities.messaging import SimulatedMessenger  # noqa: E402
from property_sales.capabilities.sources import (  # noqa: E402
    SimulatedLeadSource,
    SimulatedOfferSource,
)
from property_sales.checkpoint import CheckpointStore  # noqa: E402
from property_sales.config import Settings  # noqa: E402
from property_sales.database import Base, create_session_factory  # noqa: E402
from property_sales.engine import WorkflowEngine  # noqa: E402
from property_sales.orchestrator import WorkflowOrchestrator  # noqa: E402
from property_sales.repository import PropertyRepository  # noqa: E402
from property_sales.state import (  # noqa: E402
    Address,
    LeadConversation,
    PropertySnapshot,
    WorkflowState,
)


class KeywordInterpreter(ResponseInterpreter):
    """Picks the first decision named in the reply, else the fallback."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def interpret(
        self,
        stage: str,
        message: str,
        decisions: Sequence[str],
        context: str,
        fallback: str,
    ) -> Interpretation:
        self.calls.append((stage, message))
        lowered = message.lower()
        for decision in decisions:
            if str(decision).lower() in lowered:
                return Interpretation(decision=str(decision), response=f"Noted: {decision}")
        return Interpretation(decision=str(fallback), response="Happy to talk it through.")

    async def extract_modifications(self, message: str, current: dict[str, Any]) -> Modifications:
        amounts = re.findall(r"\$?(\d[\d,]{4,})", message)
        counter = float(amounts[0].replace(",", "")) if amounts else None
        return Modifications(summary=message, counter_amount=counter)


class KeywordResponder(LeadResponder):
    """Lead is ready once they mention an offer."""

    async def respond(
        self, conversation: LeadConversation, prop: PropertySnapshot, message: str
    ) -> LeadReply:
        ready = "offer" in message.lower()
        return LeadReply(
            message="Great, let's get your offer started!" if ready else "Happy to help!",
            score_change=10 if ready else 5,
            ready_for_offer=ready,
        )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        otel_enabled=False,
    )


@pytest.fixture
def make_context(settings):
    """Factory for agent contexts wired to deterministic fakes."""

    def factory(offer_ratio: float = 0.92, **overrides: Any) -> AgentContext:
        values: dict[str, Any] = {
            "settings": settings,
            "interpreter": KeywordInterpreter(),
            "copywriter": TemplateCopywriter(),
            "lead_responder": KeywordResponder(),
            "messenger": SimulatedMessenger(),
            "calendar": SimulatedCalendar(),
            "documents": SimulatedDocumentService(),
            "lead_source": SimulatedLeadSource(),
            "offer_source": SimulatedOfferSource(offer_ratio, settings.offer_expiry_days),
        }
        values.update(overrides)
        return AgentContext(**values)

    return factory


@pytest.fixture
def agent_context(make_context) -> AgentContext:
    return make_context()


@pytest.fixture
async def async_engine():
    """Create async SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return create_session_factory(async_engine)


@pytest.fixture
async def saver():
    """In-memory LangGraph checkpointer."""
    async with AsyncSqliteSaver.from_conn_string(":memory:") as saver:
        yield saver


@pytest.fixture
def store(saver) -> CheckpointStore:
    return CheckpointStore(saver, timeout=5.0)


@pytest.fixture
def workflow_engine(store, agent_context) -> WorkflowEngine:
    return WorkflowEngine(store, agent_context)


@pytest.fixture
def orchestrator(workflow_engine, session_factory) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(workflow_engine, PropertyRepository(session_factory))


@pytest.fixture
def make_property():
    """Factory for complete listings; override any field."""

    def factory(**overrides: Any) -> PropertySnapshot:
        values: dict[str, Any] = {
            "id": "prop-1",
            "title": "Charming Family Home with Garden",
            "description": (
                "Bright three bedroom home on a quiet street with a renovated kitchen, "
                "hardwood floors and a large back garden."
            ),
            "address": Address(
                street="123 Maple Street", city="Springfield", state="IL", zip_code="62701"
            ),
            "price": 350_000.0,
            "bedrooms": 3,
            "bathrooms": 2.0,
            "square_feet": 1800,
            "property_type": "house",
            "year_built": 1995,
            "images": [f"https://images.local/{i}.jpg" for i in range(5)],
            "videos": ["https://videos.local/tour.mp4"],
        }
        values.update(overrides)
        return PropertySnapshot(**values)

    return factory


@pytest.fixture
def complete_property(make_property) -> PropertySnapshot:
    return make_property()


@pytest.fixture
def make_state(make_property):
    def factory(prop: PropertySnapshot | None = None, **overrides: Any) -> WorkflowState:
        prop = prop or make_property()
        return WorkflowState(property_id=prop.id, property=prop, **overrides)

    return factory


@pytest.fixture
def client(make_context):
    """API client backed by in-memory databases and fake agent services."""

    def in_memory_engine(settings):
        return create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    with (
        patch("property_sales.main.create_engine", in_memory_engine),
        patch("property_sales.main.setup_telemetry") as mock_telemetry,
        patch("property_sales.main.build_agent_context", lambda settings: make_context()),
    ):
        mock_telemetry.return_value = (None, None)
        from property_sales.main import app

        with TestClient(app) as test_client:
            yield test_client
