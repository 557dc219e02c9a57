"""Integration test fixtures providing ephemeral PostgreSQL via testcontainers.

The PostgresContainer is session-scoped to avoid the Docker startup cost per
test. The schema is dropped and recreated per test (function-scoped
``store`` fixture) for isolation.
"""

from __future__ import annotations

import json

import asyncpg
import pytest
from pydantic import SecretStr
from testcontainers.postgres import PostgresContainer

from relayguard.core.pool import DatabaseConfig, Pool, PoolConfig
from relayguard.core.store import ModerationStore
from relayguard.models import Event


# ---------------------------------------------------------------------------
# Session-scoped container
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_container():
    """Spawn an ephemeral PostgreSQL 16 container for the test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        yield pg


@pytest.fixture(scope="session")
def pg_url(pg_container: PostgresContainer) -> str:
    host = pg_container.get_container_host_ip()
    port = int(pg_container.get_exposed_port(5432))
    return (
        f"postgresql://{pg_container.username}:{pg_container.password}"
        f"@{host}:{port}/{pg_container.dbname}"
    )


# ---------------------------------------------------------------------------
# Function-scoped store with fresh schema
# ---------------------------------------------------------------------------


@pytest.fixture
async def store(pg_url: str):
    """Provide a connected ModerationStore over an empty, initialized schema."""
    conn = await asyncpg.connect(pg_url)
    try:
        await conn.execute("DROP SCHEMA public CASCADE")
        await conn.execute("CREATE SCHEMA public")
    finally:
        await conn.close()

    pool = Pool(config=PoolConfig(database=DatabaseConfig(url=SecretStr(pg_url))))
    store_instance = ModerationStore(pool=pool)
    async with store_instance:
        await store_instance.init()
        yield store_instance


# ---------------------------------------------------------------------------
# Relay engine event table
# ---------------------------------------------------------------------------

EVENT_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS event (
    id TEXT NOT NULL,
    pubkey TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    kind INTEGER NOT NULL,
    tags JSONB NOT NULL,
    content TEXT NOT NULL,
    sig TEXT NOT NULL
)
"""


@pytest.fixture
async def event_table(store: ModerationStore):
    """Create the khatru-style ``event`` table next to the moderation tables.

    Yields an async callable that inserts an Event.
    """
    await store.pool.execute(EVENT_TABLE_DDL)

    async def insert(event: Event) -> None:
        await store.pool.execute(
            "INSERT INTO event (id, pubkey, created_at, kind, tags, content, sig)"
            " VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7)",
            event.id,
            event.pubkey,
            event.created_at,
            event.kind,
            json.dumps([list(tag) for tag in event.tags]),
            event.content,
            event.sig,
        )

    return insert
