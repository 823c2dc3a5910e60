"""Durable checkpoints for workflow threads.

LangGraph's checkpointer persists a snapshot after every graph step:
AsyncPostgresSaver in production, AsyncSqliteSaver for local runs and tests.
This module owns the saver's lifecycle, maps driver failures onto the
service's storage errors, and projects LangGraph snapshots into the
``Checkpoint`` view the engine and HTTP layer read.
"""

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import psycopg
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.types import StateSnapshot
from opentelemetry import trace
from psycopg_pool import PoolTimeout
from pydantic import BaseModel
from sqlalchemy.engine import make_url

from property_sales.config import Settings
from property_sales.errors import StorageError, StorageTimeoutError
from property_sales.routing import Node
from property_sales.state import WorkflowState


logger = logging.getLogger(__name__)
tracer = trace.get_tracer("property_sales.checkpoint")

_TIMEOUT_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    PoolTimeout,
    psycopg.errors.QueryCanceled,
    psycopg.OperationalError,
    sqlite3.OperationalError,
)
_STORAGE_ERRORS: tuple[type[BaseException], ...] = (psycopg.Error, sqlite3.Error)


class Suspension(BaseModel):
    """Interrupt payload raised by the human node."""

    node: Node
    prompt: str
    expires_at: datetime | None = None


class Checkpoint(BaseModel):
    """Read view of one persisted graph step."""

    thread_id: str
    checkpoint_id: str
    step: int
    source: str
    created_at: datetime
    state: WorkflowState
    next: tuple[str, ...] = ()
    # Node whose execution produced this checkpoint; only resolved in history
    node: str | None = None
    suspension: Suspension | None = None

    @property
    def interrupted(self) -> bool:
        return self.suspension is not None

    @classmethod
    def from_snapshot(cls, snapshot: StateSnapshot, node: str | None = None) -> "Checkpoint":
        configurable = snapshot.config["configurable"]
        metadata: dict[str, Any] = dict(snapshot.metadata or {})
        suspension = next(
            (
                Suspension.model_validate(interrupt.value)
                for task in snapshot.tasks
                for interrupt in task.interrupts
            ),
            None,
        )
        return cls(
            thread_id=configurable["thread_id"],
            checkpoint_id=configurable["checkpoint_id"],
            step=metadata.get("step", -1),
            source=metadata.get("source", "loop"),
            created_at=snapshot.created_at,
            state=WorkflowState.model_validate(snapshot.values),
            next=tuple(snapshot.next),
            node=node,
            suspension=suspension,
        )


class CheckpointStore:
    """Owns the LangGraph saver and bounds every read against it."""

    def __init__(self, saver: BaseCheckpointSaver, timeout: float = 30.0) -> None:
        self.saver = saver
        self._timeout = timeout

    @asynccontextmanager
    async def guard(
        self, operation: str, thread_id: str | None, bounded: bool = True
    ) -> AsyncIterator[None]:
        """Translate driver errors, and bound the call in time when ``bounded``.

        Graph passes run unbounded here: they include model calls, and the
        saver's own statements are capped by the connection's statement
        timeout and the pool timeout.
        """
        try:
            if bounded:
                async with asyncio.timeout(self._timeout):
                    yield
            else:
                yield
        except _TIMEOUT_ERRORS as e:
            logger.warning("Checkpoint %s timed out for %s: %s", operation, thread_id, e)
            raise StorageTimeoutError(
                f"Checkpoint store {operation} timed out", thread_id=thread_id
            ) from e
        except _STORAGE_ERRORS as e:
            logger.error("Checkpoint %s failed for %s: %s", operation, thread_id, e)
            raise StorageError(
                f"Checkpoint store {operation} failed", thread_id=thread_id
            ) from e

    async def health_check(self) -> bool:
        """Liveness check: one checkpoint lookup against the saver."""
        with tracer.start_as_current_span("checkpoint.health_check"):
            try:
                async with self.guard("health_check", None):
                    await self.saver.aget_tuple({"configurable": {"thread_id": "__health__"}})
            except StorageError as e:
                logger.warning("Checkpoint store health check failed: %s", e)
                return False
        return True


def postgres_conninfo(database_url: str) -> str:
    """libpq connection string for a SQLAlchemy-style URL."""
    url = make_url(database_url).set(drivername="postgresql")
    return url.render_as_string(hide_password=False)


@asynccontextmanager
async def open_checkpoint_store(settings: Settings) -> AsyncIterator[CheckpointStore]:
    """Open the saver named by ``settings.database_url`` and create its tables."""
    url = make_url(settings.database_url)
    timeout = settings.checkpoint_timeout_seconds
    if url.get_backend_name() == "sqlite":
        from langgraph.checkpoint.sqlite.aio import AsyncSqliteSaver

        async with AsyncSqliteSaver.from_conn_string(url.database or ":memory:") as saver:
            await saver.setup()
            logger.info("Checkpoint store ready (sqlite)")
            yield CheckpointStore(saver, timeout=timeout)
        return

    from langgraph.checkpoint.postgres.aio import AsyncPostgresSaver
    from psycopg.rows import dict_row
    from psycopg_pool import AsyncConnectionPool

    pool = AsyncConnectionPool(
        conninfo=postgres_conninfo(settings.database_url),
        max_size=settings.db_pool_size,
        timeout=settings.db_pool_timeout,
        max_lifetime=settings.db_pool_recycle,
        kwargs={
            "autocommit": True,
            "prepare_threshold": 0,
            "row_factory": dict_row,
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        },
        open=False,
    )
    async with pool:
        saver = AsyncPostgresSaver(pool)
        await saver.setup()
        logger.info("Checkpoint store ready (postgres)")
        yield CheckpointStore(saver, timeout=timeout)
