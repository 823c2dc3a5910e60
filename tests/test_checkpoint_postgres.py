"""Workflow checkpoints against a real PostgreSQL.

Uses testcontainers for PostgreSQL.
Run with: pytest -m integration
"""

import pytest
from langgraph.checkpoint.postgres.aio import AsyncPostgresSaver
from testcontainers.postgres import PostgresContainer

from property_sales.checkpoint import open_checkpoint_store
from property_sales.engine import WorkflowEngine


pytestmark = pytest.mark.integration


@pytest.fixture(scope="module")
def postgres_url():
    """Start PostgreSQL container."""
    container = PostgresContainer(
        image="postgres:18",
        username="test",
        password="test",
        dbname="test_db",
    )
    container.start()
    host = container.get_container_host_ip()
    port = container.get_exposed_port(5432)
    yield f"postgresql+asyncpg://test:test@{host}:{port}/test_db"
    container.stop()


@pytest.fixture
def pg_settings(settings, postgres_url):
    return settings.model_copy(update={"database_url": postgres_url})


async def test_opens_postgres_saver(pg_settings):
    async with open_checkpoint_store(pg_settings) as store:
        assert isinstance(store.saver, AsyncPostgresSaver)
        assert await store.health_check() is True


async def test_workflow_survives_engine_restart(
    pg_settings, make_context, make_property, make_state
):
    state = make_state(make_property(id="prop-restart"))
    async with open_checkpoint_store(pg_settings) as store:
        suspended = await WorkflowEngine(store, make_context()).start(state)
    assert suspended.suspension.node == "negotiation"

    async with open_checkpoint_store(pg_settings) as store:
        restarted = WorkflowEngine(store, make_context())
        checkpoint = await restarted.resume("property_prop-restart", "approve", "broker")

    assert checkpoint.suspension.node == "legal"
    assert checkpoint.state.current_offer.status == "accepted"
    assert checkpoint.state.property == state.property
