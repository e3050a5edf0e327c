"""Pytest fixtures for integration tests against a live PostgreSQL server."""

import os
import uuid
from typing import Any, AsyncGenerator, Callable

import asyncpg
import pytest
import pytest_asyncio

from tablemover.config import MoverConfig

DB_HOST = os.getenv("TABLEMOVER_TEST_HOST", "localhost")
DB_PORT = int(os.getenv("TABLEMOVER_TEST_PORT", "5432"))
DB_USER = os.getenv("TABLEMOVER_TEST_USER", "tablemover")
DB_NAME = os.getenv("TABLEMOVER_TEST_DATABASE", "test_db")
PASSWORD_ENV = "TABLEMOVER_TEST_PASSWORD"
ARCHIVE_SCHEMA = "archive"


@pytest_asyncio.fixture
async def db_connection() -> AsyncGenerator[asyncpg.Connection, None]:
    """Create database connection for testing, skipping when the server is down."""
    os.environ.setdefault(PASSWORD_ENV, "tablemover_password")
    try:
        conn = await asyncpg.connect(
            host=DB_HOST,
            port=DB_PORT,
            user=DB_USER,
            password=os.environ[PASSWORD_ENV],
            database=DB_NAME,
        )
    except (OSError, asyncpg.PostgresError) as e:
        pytest.skip(f"PostgreSQL not available: {e}")

    try:
        await conn.execute(f"CREATE SCHEMA IF NOT EXISTS {ARCHIVE_SCHEMA}")
        yield conn
    finally:
        await conn.close()


@pytest_asyncio.fixture
async def table_pair(db_connection: asyncpg.Connection) -> AsyncGenerator[Callable[..., Any], None]:
    """Create a source table in public and an identical one in the archive schema.

    Yields a coroutine function taking the column DDL (and optional extra
    DDL run against the source) that returns the generated table name.
    """
    created: list[str] = []

    async def create(columns: str, *source_ddl: str) -> str:
        name = f"events_{uuid.uuid4().hex[:8]}"
        await db_connection.execute(f"CREATE TABLE public.{name} ({columns})")
        await db_connection.execute(f"CREATE TABLE {ARCHIVE_SCHEMA}.{name} ({columns})")
        for ddl in source_ddl:
            await db_connection.execute(ddl.format(table=f"public.{name}"))
        created.append(name)
        return name

    try:
        yield create
    finally:
        for name in created:
            await db_connection.execute(f"DROP TABLE IF EXISTS public.{name}")
            await db_connection.execute(f"DROP TABLE IF EXISTS {ARCHIVE_SCHEMA}.{name}")


@pytest.fixture
def make_config() -> Callable[..., MoverConfig]:
    """Build a configuration moving public.<table> to archive.<table>."""

    def build(table: str, batch_size: int = 3, where: str | None = None) -> MoverConfig:
        return MoverConfig.model_validate(
            {
                "source": {
                    "host": DB_HOST,
                    "port": DB_PORT,
                    "user": DB_USER,
                    "password_env": PASSWORD_ENV,
                    "database": DB_NAME,
                    "schema": "public",
                    "table": table,
                    "where": where,
                    "batch_size": batch_size,
                },
                "target": {"schema": ARCHIVE_SCHEMA},
                "job": {"progress_interval": 0, "control_enabled": False},
            }
        )

    return build
