"""Management service configuration models.

See Also:
    [Management][relayguard.services.management.Management]: The service
        class that consumes these configurations.
    [BaseServiceConfig][relayguard.core.base_service.BaseServiceConfig]:
        Base class providing ``interval``, ``max_consecutive_failures``,
        and ``metrics`` fields.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from relayguard.core.base_service import BaseServiceConfig
from relayguard.core.event_store import EventStoreConfig


class AuthConfig(BaseModel):
    """NIP-98 HTTP authentication settings.

    Attributes:
        max_age: Accepted clock skew, in seconds, between the auth event's
            ``created_at`` and the server clock (both directions).
        public_url: URL the ``u`` tag must match. Set it when the service
            runs behind a reverse proxy; when unset, the request URL as
            seen by the service is used.
        require_payload: Reject requests whose auth event carries no
            ``payload`` tag. NIP-86 requires it.
    """

    max_age: int = Field(default=60, ge=1, le=3600)
    public_url: str | None = Field(default=None)
    require_payload: bool = Field(default=True)

    @field_validator("public_url")
    @classmethod
    def _strip_public_url(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class ManagementConfig(BaseServiceConfig):
    """Configuration for the NIP-86 management service.

    Attributes:
        host: Bind address for the HTTP server.
        port: Port for the HTTP server.
        owner_pubkey: Key allowed to call the API. Defaults to
            ``RELAY_PUBKEY`` from the environment.
        auth: NIP-98 authentication settings.
        max_body_size: Largest accepted request body, in bytes.
        event_store: The relay engine's event table, pruned when an event
            is banned.
    """

    host: str = Field(default="0.0.0.0", min_length=1, description="HTTP bind address")  # noqa: S104
    port: int = Field(default=3335, ge=1, le=65535, description="HTTP port")
    owner_pubkey: str | None = Field(default=None)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    max_body_size: int = Field(default=65_536, ge=1024)
    event_store: EventStoreConfig = Field(default_factory=EventStoreConfig)
