"""Core layer: database access, configuration, logging and metrics.

Depends only on ``relayguard.models`` and is depended upon by the policy,
moderation and service layers.

Attributes:
    Pool: Bounded async PostgreSQL connection pool with error translation.
        See [Pool][relayguard.core.pool.Pool].
    ModerationStore: Allow/ban lists and reports. Components use
        [ModerationStore][relayguard.core.store.ModerationStore], never
        [Pool][relayguard.core.pool.Pool] directly.
    PostgresEventStore: The relay engine's event table, pruned by the ban
        cascade.
    RelaySettings: Relay identity and limits read from the environment.
    BaseService: Abstract generic base class with lifecycle management and
        Prometheus metrics integration.
    Logger: Structured logger supporting key=value and JSON output modes.
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.
    load_yaml: Safe YAML loading with ``yaml.safe_load()``.
"""

from .base_service import BaseService, BaseServiceConfig, ConfigT
from .config import RelaySettings
from .event_store import EventStoreConfig, PostgresEventStore
from .exceptions import (
    AUTH_REQUIRED_PREFIX,
    AuthRequiredError,
    ConfigurationError,
    ConnectionPoolError,
    DatabaseError,
    ManagementError,
    QueryError,
    RelayGuardError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CYCLE_DURATION_SECONDS,
    MODERATION_ACTIONS,
    POLICY_DECISIONS,
    REPORTS_RECEIVED,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
    MetricsServer,
)
from .pool import (
    DatabaseConfig,
    Pool,
    PoolConfig,
    PoolLimitsConfig,
    PoolRetryConfig,
    PoolTimeoutsConfig,
    ServerSettingsConfig,
)
from .store import ModerationStore, StoreConfig, StoreTimeoutsConfig
from .yaml import load_yaml


__all__ = [
    "AUTH_REQUIRED_PREFIX",
    "CYCLE_DURATION_SECONDS",
    "MODERATION_ACTIONS",
    "POLICY_DECISIONS",
    "REPORTS_RECEIVED",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "AuthRequiredError",
    "BaseService",
    "BaseServiceConfig",
    "ConfigT",
    "ConfigurationError",
    "ConnectionPoolError",
    "DatabaseConfig",
    "DatabaseError",
    "EventStoreConfig",
    "Logger",
    "ManagementError",
    "MetricsConfig",
    "MetricsServer",
    "ModerationStore",
    "Pool",
    "PostgresEventStore",
    "PoolConfig",
    "PoolLimitsConfig",
    "PoolRetryConfig",
    "PoolTimeoutsConfig",
    "QueryError",
    "RelayGuardError",
    "RelaySettings",
    "ServerSettingsConfig",
    "StoreConfig",
    "StoreTimeoutsConfig",
    "StructuredFormatter",
    "format_kv_pairs",
    "load_yaml",
]
