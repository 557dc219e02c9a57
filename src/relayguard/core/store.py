"""
Durable moderation state on PostgreSQL.

[ModerationStore][relayguard.core.store.ModerationStore] owns every SQL
statement in the package: the allow and ban lists for public keys and
events, and the NIP-56 ``reports`` table that backs the moderation queue.

Every method runs a single statement, so concurrent callers rely on
PostgreSQL's per-statement atomicity and ``ON CONFLICT`` resolution; no
in-process locking is needed. The only multi-statement operation is
[init()][relayguard.core.store.ModerationStore.init], which creates the
schema inside one transaction.

Uses composition with [Pool][relayguard.core.pool.Pool] and implements an
async context manager for the pool lifecycle.

Examples:
    ```python
    store = ModerationStore.from_yaml("config/store.yaml")

    async with store:
        await store.init()
        await store.upsert_banned_pubkey(pubkey, "spam")
        await store.get_banned_pubkey_reason(pubkey)  # "spam"
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final

from pydantic import BaseModel, Field

from relayguard.models import IdReason, PubKeyReason

from .logger import Logger
from .pool import Pool
from .yaml import load_yaml


if TYPE_CHECKING:
    from relayguard.models import Report


SCHEMA: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS allowed_pubkeys (
        pubkey TEXT PRIMARY KEY,
        reason TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS banned_pubkeys (
        pubkey TEXT PRIMARY KEY,
        reason TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reports (
        id TEXT PRIMARY KEY,
        reporter_pubkey TEXT NOT NULL,
        reported_event_id TEXT,
        reported_pubkey TEXT NOT NULL,
        report_type TEXT NOT NULL,
        content TEXT,
        resolved BOOLEAN NOT NULL DEFAULT FALSE,
        resolution TEXT,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS banned_events (
        event_id TEXT PRIMARY KEY,
        reason TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS allowed_events (
        event_id TEXT PRIMARY KEY,
        reason TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS reports_unresolved_idx
        ON reports (created_at DESC) WHERE resolved = FALSE
    """,
)

# Table -> key column. Table names are interpolated into SQL, never user input.
_PUBKEY_TABLES: Final[dict[str, str]] = {"allowed_pubkeys": "pubkey", "banned_pubkeys": "pubkey"}
_EVENT_TABLES: Final[dict[str, str]] = {"allowed_events": "event_id", "banned_events": "event_id"}


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class StoreTimeoutsConfig(BaseModel):
    """Client-side timeouts for store operations (seconds, None = no limit).

    ``lookup`` guards the per-event ban checks on the relay's hot path and
    is kept short; a lookup that times out is treated as "not banned" by
    the policies.
    """

    lookup: float | None = Field(default=2.0, ge=0.1)
    query: float | None = Field(default=30.0, ge=0.1)
    write: float | None = Field(default=30.0, ge=0.1)


class StoreConfig(BaseModel):
    """Aggregate configuration for the moderation store."""

    timeouts: StoreTimeoutsConfig = Field(default_factory=StoreTimeoutsConfig)


# ---------------------------------------------------------------------------
# ModerationStore
# ---------------------------------------------------------------------------


class ModerationStore:
    """Typed access to the allow/ban lists and the reports table.

    Errors from the pool propagate as
    [ConnectionPoolError][relayguard.core.exceptions.ConnectionPoolError] or
    [QueryError][relayguard.core.exceptions.QueryError]; deciding whether a
    failure fails open (admission policies) or surfaces (management API)
    is the caller's job.
    """

    def __init__(self, pool: Pool | None = None, config: StoreConfig | None = None) -> None:
        self._pool = pool or Pool()
        self._config = config or StoreConfig()
        self._logger = Logger("store")

    @property
    def pool(self) -> Pool:
        return self._pool

    @property
    def config(self) -> StoreConfig:
        """The store configuration (read-only)."""
        return self._config

    @classmethod
    def from_yaml(cls, config_path: str) -> ModerationStore:
        """Create a store from a YAML file with a ``pool`` key and optional ``timeouts``."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> ModerationStore:
        """Create a store from a configuration dictionary.

        The ``pool`` key builds the [Pool][relayguard.core.pool.Pool]; the
        remaining keys are [StoreConfig][relayguard.core.store.StoreConfig]
        fields.
        """
        pool = Pool.from_dict(config_dict["pool"]) if "pool" in config_dict else None
        store_dict = {k: v for k, v in config_dict.items() if k != "pool"}
        config = StoreConfig(**store_dict) if store_dict else None
        return cls(pool=pool, config=config)

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    async def init(self) -> None:
        """Create the moderation tables if they do not exist.

        Safe to call on every start. Any failure propagates: the relay must
        not serve traffic without its moderation state.
        """
        async with self._pool.transaction() as conn:
            for statement in SCHEMA:
                await conn.execute(statement, timeout=self._config.timeouts.write)
        self._logger.info("schema_initialized", statements=len(SCHEMA))

    # -------------------------------------------------------------------------
    # Public key lists
    # -------------------------------------------------------------------------

    async def _upsert(self, table: str, key_column: str, key: str, reason: str) -> None:
        await self._pool.execute(
            f"""
            INSERT INTO {table} ({key_column}, reason, created_at)
            VALUES ($1, $2, NOW())
            ON CONFLICT ({key_column}) DO UPDATE
                SET reason = EXCLUDED.reason, created_at = EXCLUDED.created_at
            """,  # noqa: S608
            key,
            reason,
            timeout=self._config.timeouts.write,
        )
        self._logger.debug("list_upserted", table=table, key=key)

    async def _list(self, table: str, key_column: str) -> list[tuple[str, str]]:
        rows = await self._pool.fetch(
            f"SELECT {key_column}, reason FROM {table} ORDER BY created_at DESC",  # noqa: S608
            timeout=self._config.timeouts.query,
        )
        return [(row[key_column], row["reason"]) for row in rows]

    async def upsert_allowed_pubkey(self, pubkey: str, reason: str) -> None:
        """Add *pubkey* to the allow list, or refresh its reason and timestamp."""
        await self._upsert("allowed_pubkeys", _PUBKEY_TABLES["allowed_pubkeys"], pubkey, reason)

    async def upsert_banned_pubkey(self, pubkey: str, reason: str) -> None:
        """Add *pubkey* to the ban list, or refresh its reason and timestamp."""
        await self._upsert("banned_pubkeys", _PUBKEY_TABLES["banned_pubkeys"], pubkey, reason)

    async def get_banned_pubkey_reason(self, pubkey: str) -> str | None:
        """Return the ban reason for *pubkey*, or None if it is not banned."""
        reason: str | None = await self._pool.fetchval(
            "SELECT reason FROM banned_pubkeys WHERE pubkey = $1",
            pubkey,
            timeout=self._config.timeouts.lookup,
        )
        return reason

    async def list_allowed_pubkeys(self) -> list[PubKeyReason]:
        """Allowed keys, newest first."""
        return [PubKeyReason(*row) for row in await self._list("allowed_pubkeys", "pubkey")]

    async def list_banned_pubkeys(self) -> list[PubKeyReason]:
        """Banned keys, newest first."""
        return [PubKeyReason(*row) for row in await self._list("banned_pubkeys", "pubkey")]

    # -------------------------------------------------------------------------
    # Event lists
    # -------------------------------------------------------------------------

    async def upsert_allowed_event(self, event_id: str, reason: str) -> None:
        """Add *event_id* to the allowed events, or refresh its reason and timestamp."""
        await self._upsert("allowed_events", _EVENT_TABLES["allowed_events"], event_id, reason)

    async def upsert_banned_event(self, event_id: str, reason: str) -> None:
        """Add *event_id* to the banned events, or refresh its reason and timestamp."""
        await self._upsert("banned_events", _EVENT_TABLES["banned_events"], event_id, reason)

    async def get_banned_event_reason(self, event_id: str) -> str | None:
        """Return the ban reason for *event_id*, or None if it is not banned."""
        reason: str | None = await self._pool.fetchval(
            "SELECT reason FROM banned_events WHERE event_id = $1",
            event_id,
            timeout=self._config.timeouts.lookup,
        )
        return reason

    async def list_allowed_events(self) -> list[IdReason]:
        """Allowed event ids, newest first."""
        return [IdReason(*row) for row in await self._list("allowed_events", "event_id")]

    async def list_banned_events(self) -> list[IdReason]:
        """Banned event ids, newest first."""
        return [IdReason(*row) for row in await self._list("banned_events", "event_id")]

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    async def insert_report(self, report: Report) -> bool:
        """Record a report. The first report for a given id wins.

        Returns:
            True if a row was created, False if the id was already recorded.
        """
        params = report.to_db_params()
        status = await self._pool.execute(
            """
            INSERT INTO reports (
                id, reporter_pubkey, reported_event_id, reported_pubkey,
                report_type, content, created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (id) DO NOTHING
            """,
            *params,
            timeout=self._config.timeouts.write,
        )
        return _affected_rows(status) > 0

    async def list_unresolved_reports(self) -> list[IdReason]:
        """The moderation queue, newest first.

        Each entry pairs the subject (reported event id, else reported key)
        with a ``"<type>: <content> (reported by <reporter>)"`` summary.
        """
        rows = await self._pool.fetch(
            """
            SELECT
                COALESCE(NULLIF(reported_event_id, ''), reported_pubkey) AS subject,
                CONCAT(report_type, ': ', content, ' (reported by ', reporter_pubkey, ')')
                    AS summary
            FROM reports
            WHERE resolved = FALSE
            ORDER BY created_at DESC
            """,
            timeout=self._config.timeouts.query,
        )
        return [IdReason(row["subject"], row["summary"]) for row in rows]

    async def count_unresolved_reports(self) -> int:
        """Size of the moderation queue."""
        count: int = await self._pool.fetchval(
            "SELECT COUNT(*) FROM reports WHERE resolved = FALSE",
            timeout=self._config.timeouts.query,
        )
        return count

    async def resolve_reports(self, subject_id: str, resolution: str) -> int:
        """Resolve every open report about *subject_id*.

        *subject_id* is matched against both the reported event id and the
        reported key, so operators can act on either with one identifier.

        Returns:
            Number of reports resolved.
        """
        status = await self._pool.execute(
            """
            UPDATE reports
            SET resolved = TRUE, resolution = $2
            WHERE resolved = FALSE
              AND (reported_event_id = $1 OR reported_pubkey = $1)
            """,
            subject_id,
            resolution,
            timeout=self._config.timeouts.write,
        )
        return _affected_rows(status)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        await self._pool.connect()

    async def close(self) -> None:
        await self._pool.close()

    async def __aenter__(self) -> ModerationStore:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"ModerationStore(pool={self._pool!r})"


def _affected_rows(status: str) -> int:
    """Parse the row count from a command tag such as ``"INSERT 0 1"`` or ``"UPDATE 3"``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0
