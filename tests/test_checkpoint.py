"""Tests for the checkpoint store wrapper."""

import asyncio
import sqlite3
from unittest.mock import AsyncMock, MagicMock

import psycopg
import pytest
from langgraph.checkpoint.sqlite.aio import AsyncSqliteSaver
from psycopg_pool import PoolTimeout

from property_sales.checkpoint import CheckpointStore, open_checkpoint_store, postgres_conninfo
from property_sales.errors import StorageError, StorageTimeoutError


class TestGuard:
    async def test_locked_database_is_timeout(self, store):
        with pytest.raises(StorageTimeoutError) as exc_info:
            async with store.guard("load_latest", "t"):
                raise sqlite3.OperationalError("database is locked")
        assert exc_info.value.thread_id == "t"

    async def test_pool_exhaustion_is_timeout(self, store):
        with pytest.raises(StorageTimeoutError):
            async with store.guard("pass", "t", bounded=False):
                raise PoolTimeout("couldn't get a connection after 10.00 sec")

    async def test_driver_error_is_storage_error(self, store):
        with pytest.raises(StorageError) as exc_info:
            async with store.guard("pass", "t"):
                raise psycopg.IntegrityError("duplicate key")
        assert not isinstance(exc_info.value, StorageTimeoutError)

    async def test_slow_call_times_out(self, saver):
        store = CheckpointStore(saver, timeout=0.01)
        with pytest.raises(StorageTimeoutError):
            async with store.guard("load_latest", "t"):
                await asyncio.sleep(1)

    async def test_unbounded_call_is_not_timed(self, saver):
        store = CheckpointStore(saver, timeout=0.01)
        async with store.guard("pass", "t", bounded=False):
            await asyncio.sleep(0.05)

    async def test_other_errors_pass_through(self, store):
        with pytest.raises(ValueError):
            async with store.guard("pass", "t"):
                raise ValueError("not storage")

    async def test_timeout_is_storage_error(self):
        assert issubclass(StorageTimeoutError, StorageError)


class TestHealth:
    async def test_health_check(self, store):
        assert await store.health_check() is True

    async def test_health_check_failure(self):
        saver = MagicMock()
        saver.aget_tuple = AsyncMock(side_effect=sqlite3.OperationalError("disk I/O error"))
        assert await CheckpointStore(saver).health_check() is False


class TestOpen:
    async def test_sqlite_file_store(self, settings, tmp_path):
        path = tmp_path / "checkpoints.db"
        settings = settings.model_copy(update={"database_url": f"sqlite+aiosqlite:///{path}"})

        async with open_checkpoint_store(settings) as store:
            assert isinstance(store.saver, AsyncSqliteSaver)
            assert await store.health_check() is True

        assert path.exists()

    def test_postgres_conninfo_drops_driver(self):
        conninfo = postgres_conninfo("postgresql+asyncpg://user:secret@db:5432/sales")
        assert conninfo == "postgresql://user:secret@db:5432/sales"
