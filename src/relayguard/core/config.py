"""Relay-level settings read from the environment.

Each setting is read from one environment variable and falls back to a
documented default when the variable is unset:

| Variable            | Field          | Default                                  |
|---------------------|----------------|------------------------------------------|
| ``RELAY_NAME``        | ``name``         | ``layer.systems relay``                  |
| ``RELAY_PUBKEY``      | ``pubkey``       | ``480ec1a7...c838`` (relay owner)        |
| ``RELAY_DESCRIPTION`` | ``description``  | ``this is a public relay``               |
| ``RELAY_ICON``        | ``icon``         | static icon URL                          |
| ``DATABASE_URL``      | ``database_url`` | ``postgresql://postgres:postgres@db:5432/khatru-relay?sslmode=disable`` |
| ``QUERY_LIMIT``       | ``query_limit``  | ``100``                                  |

``pubkey`` doubles as the owner identity checked by the management API
gate.
"""

from __future__ import annotations

import os
import re
from typing import Any, ClassVar

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator


_HEX_PUBKEY = re.compile(r"^[0-9a-f]{64}$")

DEFAULT_DATABASE_URL = (
    "postgresql://postgres:postgres@db:5432/khatru-relay?sslmode=disable"  # pragma: allowlist secret
)
DEFAULT_RELAY_PUBKEY = "480ec1a7516406090dc042ddf67780ef30f26f3a864e83b417c053a5a611c838"
DEFAULT_RELAY_ICON = (
    "https://external-content.duckduckgo.com/iu/?u=https%3A%2F%2Fliquipedia.net%2Fcommons"
    "%2Fimages%2F3%2F35%2FSCProbe.jpg&f=1&nofb=1"
    "&ipt=0cbbfef25bce41da63d910e86c3c343e6c3b9d63194ca9755351bb7c2efa3359&ipo=images"
)


class RelaySettings(BaseModel):
    """Relay identity, owner key, database location and query limit.

    Build with [from_env()][relayguard.core.config.RelaySettings.from_env]
    to apply the environment, or construct directly in tests.
    """

    ENV_VARS: ClassVar[dict[str, str]] = {
        "name": "RELAY_NAME",
        "pubkey": "RELAY_PUBKEY",
        "description": "RELAY_DESCRIPTION",
        "icon": "RELAY_ICON",
        "database_url": "DATABASE_URL",
        "query_limit": "QUERY_LIMIT",
    }

    name: str = Field(default="layer.systems relay", min_length=1)
    pubkey: str = Field(default=DEFAULT_RELAY_PUBKEY, description="Relay owner public key (hex)")
    description: str = Field(default="this is a public relay")
    icon: str = Field(default=DEFAULT_RELAY_ICON)
    database_url: SecretStr = Field(default=SecretStr(DEFAULT_DATABASE_URL))
    query_limit: int = Field(default=100, ge=1, le=100_000)

    @field_validator("pubkey")
    @classmethod
    def _validate_pubkey(cls, v: str) -> str:
        v = v.strip().lower()
        if not _HEX_PUBKEY.match(v):
            raise ValueError("pubkey must be a 64-character hex public key")
        return v

    @model_validator(mode="before")
    @classmethod
    def _strip_empty(cls, data: Any) -> Any:
        """Treat empty strings as unset so defaults apply."""
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v != ""}
        return data

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> RelaySettings:
        """Build settings from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``.
            **overrides: Field values that take precedence over the
                environment.
        """
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {
            field: env[var] for field, var in cls.ENV_VARS.items() if var in env
        }
        data.update(overrides)
        return cls(**data)
