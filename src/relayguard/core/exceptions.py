"""relayguard exception hierarchy.

Exception hierarchy:

```text
RelayGuardError (base -- never raised directly)
├── ConfigurationError       -- bad YAML, invalid settings
├── DatabaseError            -- pool/store failures
│   ├── ConnectionPoolError  -- transient: pool exhausted, connection lost, timeout
│   └── QueryError           -- permanent: bad SQL, constraint violation
└── ManagementError          -- unknown NIP-86 method or invalid params
    └── AuthRequiredError    -- caller is not the relay owner
```

Read-path policy checks catch
[DatabaseError][relayguard.core.exceptions.DatabaseError] and fail open.
Administrative operations let it propagate to the caller unchanged.
"""

from __future__ import annotations


AUTH_REQUIRED_PREFIX = "auth-required:"


class RelayGuardError(Exception):
    """Base exception for all relayguard errors."""


class ConfigurationError(RelayGuardError):
    """Invalid or missing configuration (YAML, environment, CLI flags)."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DatabaseError(RelayGuardError):
    """Base for all database-related errors."""


class ConnectionPoolError(DatabaseError):
    """Transient database error: pool exhausted, connection refused, timeout.

    Raised by [Pool][relayguard.core.pool.Pool] query methods. Queries are
    not retried; callers decide.
    """


class QueryError(DatabaseError):
    """Permanent database error: bad SQL, constraint violation."""


# ---------------------------------------------------------------------------
# Management API
# ---------------------------------------------------------------------------


class ManagementError(RelayGuardError):
    """A NIP-86 call could not be served (unknown method, bad params)."""


class AuthRequiredError(ManagementError):
    """The caller is not authorized to use the management API.

    The message always starts with ``auth-required:`` so relay clients know
    to authenticate and retry rather than give up.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(f"{AUTH_REQUIRED_PREFIX} {detail}")
