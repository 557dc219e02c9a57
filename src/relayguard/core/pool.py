"""
Bounded async PostgreSQL connection pool built on asyncpg.

One pool is shared by the admission policies, the report hook and the
management API. Its size and idle-connection lifetime are capped so a burst
of concurrent relay traffic cannot exhaust the database, and connection
acquisition has a timeout so a saturated pool fails the individual call
instead of blocking it.

Query methods ([fetch()][relayguard.core.pool.Pool.fetch],
[fetchrow()][relayguard.core.pool.Pool.fetchrow],
[fetchval()][relayguard.core.pool.Pool.fetchval],
[execute()][relayguard.core.pool.Pool.execute]) run exactly once. Failures
are translated into the exception hierarchy:

* connection loss, acquisition timeout, statement timeout ->
  [ConnectionPoolError][relayguard.core.exceptions.ConnectionPoolError]
* any other server error -> [QueryError][relayguard.core.exceptions.QueryError]

Only [connect()][relayguard.core.pool.Pool.connect] retries, with backoff,
so a relay started before its database comes up can still boot.

Examples:
    ```python
    pool = Pool.from_yaml("config/pool.yaml")

    async with pool:
        reason = await pool.fetchval(
            "SELECT reason FROM banned_pubkeys WHERE pubkey = $1", pubkey
        )
    ```
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator  # noqa: TC003
from contextlib import asynccontextmanager
from typing import Any, Literal, cast

import asyncpg
from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator, model_validator

from .config import DEFAULT_DATABASE_URL
from .exceptions import ConnectionPoolError, QueryError
from .logger import Logger
from .yaml import load_yaml


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """PostgreSQL connection string.

    The DSN is read from the environment variable named by ``url_env``
    (default ``DATABASE_URL``) unless given explicitly, and falls back to
    the relay's documented default. It is a ``SecretStr`` because DSNs
    usually embed a password.
    """

    url_env: str = Field(default="DATABASE_URL", min_length=1)
    url: SecretStr = Field(description="PostgreSQL DSN (loaded from url_env)")

    @model_validator(mode="before")
    @classmethod
    def resolve_url(cls, data: Any) -> Any:
        """Resolve the DSN from the environment variable."""
        if isinstance(data, dict) and not data.get("url"):
            env_var = data.get("url_env", "DATABASE_URL")
            data = {**data, "url": SecretStr(os.getenv(env_var) or DEFAULT_DATABASE_URL)}
        return data

    @property
    def host(self) -> str:
        """Host part of the DSN, for logging without credentials."""
        dsn = self.url.get_secret_value()
        netloc = dsn.split("://", 1)[-1].split("/", 1)[0]
        return netloc.rsplit("@", 1)[-1]


class PoolLimitsConfig(BaseModel):
    """Connection pool size and lifetime limits."""

    min_size: int = Field(default=1, ge=0, le=100, description="Minimum connections")
    max_size: int = Field(default=10, ge=1, le=200, description="Maximum connections")
    max_queries: int = Field(default=50_000, ge=100, description="Queries before recycling")
    max_inactive_connection_lifetime: float = Field(
        default=300.0, ge=0.0, description="Idle connection lifetime (seconds)"
    )

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int, info: ValidationInfo) -> int:
        """Ensure max_size >= min_size."""
        min_size = info.data.get("min_size", 1)
        if v < min_size:
            raise ValueError(f"max_size ({v}) must be >= min_size ({min_size})")
        return v


class PoolTimeoutsConfig(BaseModel):
    """Timeout settings for pool operations (seconds)."""

    connect: float = Field(default=10.0, ge=0.1, description="Connection establishment timeout")
    acquisition: float = Field(default=5.0, ge=0.1, description="Connection acquisition timeout")


class PoolRetryConfig(BaseModel):
    """Backoff for the initial pool creation in [connect()][relayguard.core.pool.Pool.connect]."""

    max_attempts: int = Field(default=3, ge=1, le=10, description="Max connect attempts")
    initial_delay: float = Field(default=1.0, ge=0.1, description="Initial retry delay")
    max_delay: float = Field(default=10.0, ge=0.1, description="Maximum retry delay")
    exponential_backoff: bool = Field(default=True, description="Use exponential backoff")

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        """Ensure max_delay >= initial_delay."""
        initial_delay = info.data.get("initial_delay", 1.0)
        if v < initial_delay:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({initial_delay})")
        return v


class ServerSettingsConfig(BaseModel):
    """PostgreSQL session settings applied to every pooled connection.

    ``statement_timeout`` is in milliseconds and bounds every statement on
    the server side; ``0`` disables it.
    """

    application_name: str = Field(default="relayguard")
    timezone: str = Field(default="UTC")
    statement_timeout: int = Field(default=30_000, ge=0)


class PoolConfig(BaseModel):
    """Aggregate configuration for the connection pool."""

    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig.model_validate({}))
    limits: PoolLimitsConfig = Field(default_factory=PoolLimitsConfig)
    timeouts: PoolTimeoutsConfig = Field(default_factory=PoolTimeoutsConfig)
    retry: PoolRetryConfig = Field(default_factory=PoolRetryConfig)
    server_settings: ServerSettingsConfig = Field(default_factory=ServerSettingsConfig)


# ---------------------------------------------------------------------------
# Pool Class
# ---------------------------------------------------------------------------


class Pool:
    """Async PostgreSQL connection pool manager.

    Wraps ``asyncpg.Pool`` with bounded acquisition, error translation and
    a transactional context manager. Created disconnected; call
    [connect()][relayguard.core.pool.Pool.connect] or use ``async with``.

    Note:
        Components never use ``Pool`` for domain operations directly. They
        go through [ModerationStore][relayguard.core.store.ModerationStore],
        which owns all moderation SQL.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self._config = config or PoolConfig()
        self._pool: asyncpg.Pool[asyncpg.Record] | None = None
        self._connection_lock = asyncio.Lock()
        self._logger = Logger("pool")

    @classmethod
    def from_yaml(cls, config_path: str) -> Pool:
        """Create a Pool from a YAML configuration file (not yet connected)."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Pool:
        """Create a Pool from a configuration dictionary (not yet connected)."""
        return cls(config=PoolConfig(**config_dict))

    def _retry_delay(self, attempt: int) -> float:
        retry = self._config.retry
        if retry.exponential_backoff:
            delay = retry.initial_delay * (2**attempt)
        else:
            delay = retry.initial_delay * (attempt + 1)
        return float(min(delay, retry.max_delay))

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the asyncpg pool, retrying with backoff on failure.

        Idempotent and guarded by a lock against concurrent creation.

        Raises:
            ConnectionPoolError: If every attempt fails.
        """
        async with self._connection_lock:
            if self._pool is not None:
                return

            db = self._config.database
            limits = self._config.limits
            settings = self._config.server_settings
            self._logger.info("connection_starting", host=db.host)

            for attempt in range(self._config.retry.max_attempts):
                try:
                    self._pool = await asyncpg.create_pool(
                        dsn=db.url.get_secret_value(),
                        min_size=limits.min_size,
                        max_size=limits.max_size,
                        max_queries=limits.max_queries,
                        max_inactive_connection_lifetime=limits.max_inactive_connection_lifetime,
                        timeout=self._config.timeouts.connect,
                        server_settings={
                            "application_name": settings.application_name,
                            "timezone": settings.timezone,
                            "statement_timeout": str(settings.statement_timeout),
                        },
                    )
                    self._logger.info("connection_established", max_size=limits.max_size)
                    return

                except (asyncpg.PostgresError, OSError, TimeoutError) as e:
                    if attempt + 1 >= self._config.retry.max_attempts:
                        self._logger.error("connection_failed", attempts=attempt + 1, error=str(e))
                        raise ConnectionPoolError(
                            f"Failed to connect after {attempt + 1} attempts: {e}"
                        ) from e

                    delay = self._retry_delay(attempt)
                    self._logger.warning(
                        "connection_retry", attempt=attempt + 1, delay=delay, error=str(e)
                    )
                    await asyncio.sleep(delay)

    async def close(self) -> None:
        """Close the pool and release all connections. Idempotent."""
        async with self._connection_lock:
            if self._pool is not None:
                try:
                    await self._pool.close()
                    self._logger.info("connection_closed")
                finally:
                    self._pool = None

    # -------------------------------------------------------------------------
    # Connection Acquisition
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Acquire a connection, waiting at most ``timeouts.acquisition``.

        Raises:
            RuntimeError: If the pool has not been connected.
            ConnectionPoolError: If no connection frees up in time.
        """
        if self._pool is None:
            raise RuntimeError("Pool not connected. Call connect() first.")
        try:
            conn = await self._pool.acquire(timeout=self._config.timeouts.acquisition)
        except TimeoutError as e:
            raise ConnectionPoolError("Timed out waiting for a pooled connection") from e
        try:
            yield conn
        finally:
            await self._pool.release(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Acquire a connection with an active transaction.

        Commits on normal exit, rolls back if an exception propagates.
        """
        async with self.acquire() as conn, conn.transaction():
            yield conn

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    async def _run(
        self,
        operation: Literal["fetch", "fetchrow", "fetchval", "execute"],
        query: str,
        args: tuple[Any, ...],
        timeout: float | None,  # noqa: ASYNC109
    ) -> Any:
        """Run one asyncpg operation on a pooled connection, translating errors."""
        try:
            async with self.acquire() as conn:
                method = getattr(conn, operation)
                return await method(query, *args, timeout=timeout)
        except (
            asyncpg.InterfaceError,
            asyncpg.PostgresConnectionError,
            asyncpg.QueryCanceledError,
            OSError,
            TimeoutError,
        ) as e:
            self._logger.warning("query_unavailable", operation=operation, error=str(e))
            raise ConnectionPoolError(f"{operation} failed: {e}") from e
        except asyncpg.PostgresError as e:
            self._logger.error("query_failed", operation=operation, error=str(e))
            raise QueryError(f"{operation} failed: {e}") from e

    async def fetch(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        """Execute a query and return all matching rows."""
        return cast("list[asyncpg.Record]", await self._run("fetch", query, args, timeout))

    async def fetchrow(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> asyncpg.Record | None:
        """Execute a query and return the first row, or None."""
        return cast("asyncpg.Record | None", await self._run("fetchrow", query, args, timeout))

    async def fetchval(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> Any:
        """Execute a query and return the first column of the first row, or None."""
        return await self._run("fetchval", query, args, timeout)

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str:  # noqa: ASYNC109
        """Execute a statement and return the command status tag (e.g. ``"UPDATE 3"``)."""
        return cast("str", await self._run("execute", query, args, timeout))

    # -------------------------------------------------------------------------
    # Properties / Context Manager
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """Whether the underlying asyncpg pool exists."""
        return self._pool is not None

    @property
    def config(self) -> PoolConfig:
        """The pool configuration (read-only)."""
        return self._config

    async def __aenter__(self) -> Pool:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"Pool(host={self._config.database.host}, connected={self.is_connected})"
