"""
Relay event storage on PostgreSQL, as seen by the ban cascade.

The relay engine persists events in its own table (``event`` for the
khatru PostgreSQL backend) on the same database as the moderation tables.
[PostgresEventStore][relayguard.core.event_store.PostgresEventStore] reads
and deletes rows of that table over the shared
[Pool][relayguard.core.pool.Pool], so a ban from the management API
removes the stored copy of the event.

The table is owned by the relay engine; this module never creates it.

Examples:
    ```python
    event_store = PostgresEventStore(store.pool)
    for event in await event_store.query(Filter(ids=[event_id])):
        await event_store.delete(event)
    ```
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from relayguard.models import Event

from .logger import Logger


if TYPE_CHECKING:
    from relayguard.models import Filter

    from .pool import Pool


class EventStoreConfig(BaseModel):
    """Location of the relay engine's event table.

    Attributes:
        enabled: Register the table with the ban cascade.
        table: Table name, optionally schema-qualified.
        timeout: Per-statement timeout in seconds (None = no limit).
    """

    enabled: bool = Field(default=True)
    table: str = Field(default="event", pattern=r"^[a-z_][a-z0-9_]*(\.[a-z_][a-z0-9_]*)?$")
    timeout: float | None = Field(default=30.0, ge=0.1)


class PostgresEventStore:
    """The relay engine's event table, queried and pruned by id.

    Supports the ``ids``, ``authors``, ``kinds``, ``since``, ``until`` and
    ``limit`` filter fields. Tag constraints are not supported.
    """

    def __init__(self, pool: Pool, config: EventStoreConfig | None = None) -> None:
        self._pool = pool
        self._config = config or EventStoreConfig()
        self._logger = Logger("event_store")

    @property
    def config(self) -> EventStoreConfig:
        return self._config

    async def query(self, filter: Filter) -> list[Event]:  # noqa: A002
        """Return the stored events matching *filter*, newest first.

        Raises:
            ValueError: If the filter has tag constraints.
            DatabaseError: If the query fails.
        """
        if filter.tags:
            raise ValueError("tag filters are not supported")

        clauses: list[str] = []
        args: list[Any] = []

        def bind(value: Any) -> str:
            args.append(value)
            return f"${len(args)}"

        if filter.ids is not None:
            clauses.append(f"id = ANY({bind(filter.ids)}::text[])")
        if filter.authors is not None:
            clauses.append(f"pubkey = ANY({bind(filter.authors)}::text[])")
        if filter.kinds is not None:
            clauses.append(f"kind = ANY({bind(filter.kinds)}::int[])")
        if filter.since is not None:
            clauses.append(f"created_at >= {bind(filter.since)}")
        if filter.until is not None:
            clauses.append(f"created_at <= {bind(filter.until)}")

        sql = f"SELECT id, pubkey, created_at, kind, tags, content, sig FROM {self._config.table}"  # noqa: S608
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC"
        if filter.limit is not None:
            sql += f" LIMIT {bind(filter.limit)}"

        rows = await self._pool.fetch(sql, *args, timeout=self._config.timeout)
        return [_row_to_event(row) for row in rows]

    async def delete(self, event: Event) -> None:
        """Delete the stored copy of *event*.

        Raises:
            DatabaseError: If the statement fails.
        """
        status = await self._pool.execute(
            f"DELETE FROM {self._config.table} WHERE id = $1",  # noqa: S608
            event.id,
            timeout=self._config.timeout,
        )
        self._logger.debug("event_deleted", event_id=event.id, status=status)

    def __repr__(self) -> str:
        return f"PostgresEventStore(table={self._config.table!r})"


def _row_to_event(row: Any) -> Event:
    tags = row["tags"]
    if isinstance(tags, str):
        tags = json.loads(tags)
    return Event.from_dict(
        {
            "id": row["id"],
            "pubkey": row["pubkey"],
            "created_at": row["created_at"],
            "kind": row["kind"],
            "tags": tags,
            "content": row["content"],
            "sig": row["sig"],
        }
    )
