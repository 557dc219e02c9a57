"""
NIP-98 HTTP authentication for the management endpoint.

A client proves its key by sending ``Authorization: Nostr <base64>``, where
the base64 payload is a signed kind 27235 event whose tags bind it to one
request:

* ``u``: the absolute request URL,
* ``method``: the HTTP method,
* ``payload``: hex SHA-256 of the request body; required unless
  ``require_payload`` is turned off.

The event must be fresh: its ``created_at`` has to fall within
``max_age`` seconds of the server clock.

[authenticate()][relayguard.services.management.auth.authenticate] never
raises on bad credentials. It returns None and the management API's owner
gate answers with ``auth-required:``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import time
from typing import TYPE_CHECKING, Final

from nostr_sdk import Event as NostrEvent

from relayguard.core.logger import Logger
from relayguard.models import Event
from relayguard.models.constants import EventKind


if TYPE_CHECKING:
    from .configs import AuthConfig


AUTH_SCHEME: Final = "Nostr"

_logger = Logger("management.auth")


def _normalize_url(url: str) -> str:
    return url.rstrip("/")


def decode_authorization(header: str | None) -> dict[str, object]:
    """Decode the event carried by a ``Nostr`` Authorization header.

    Raises:
        ValueError: If the scheme is not ``Nostr`` or the payload is not
            base64-encoded JSON.
    """
    if not header:
        raise ValueError("missing authorization header")
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != AUTH_SCHEME.lower() or not token.strip():
        raise ValueError("authorization scheme must be Nostr")
    try:
        raw = base64.b64decode(token.strip(), validate=True)
        data = json.loads(raw)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"malformed authorization token: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("authorization token is not an event object")
    return data


def verify_auth_event(
    data: dict[str, object],
    *,
    url: str,
    method: str,
    body: bytes,
    config: AuthConfig,
    now: float | None = None,
) -> Event:
    """Check an auth event against the request it claims to authorize.

    Returns:
        The verified event; its ``pubkey`` is the authenticated key.

    Raises:
        ValueError: Describing the first check that failed.
    """
    try:
        nostr_event = NostrEvent.from_json(json.dumps(data))
    except Exception as e:  # Intentionally broad: nostr_sdk parse errors
        raise ValueError(f"invalid event: {e}") from e
    if not nostr_event.verify():
        raise ValueError("invalid signature")

    event = Event.from_dict(data)  # type: ignore[arg-type]
    if event.kind != EventKind.HTTP_AUTH:
        raise ValueError(f"wrong kind {event.kind}")

    current = time.time() if now is None else now
    if abs(current - event.created_at) > config.max_age:
        raise ValueError("auth event expired")

    u_tag = event.first_tag("u")
    expected_url = config.public_url or url
    if u_tag is None or _normalize_url(u_tag[1]) != _normalize_url(expected_url):
        raise ValueError("url mismatch")

    method_tag = event.first_tag("method")
    if method_tag is None or method_tag[1].upper() != method.upper():
        raise ValueError("method mismatch")

    payload_tag = event.first_tag("payload")
    if payload_tag is None:
        if config.require_payload:
            raise ValueError("missing payload tag")
    elif payload_tag[1].lower() != hashlib.sha256(body).hexdigest():
        raise ValueError("payload mismatch")

    return event


def authenticate(
    header: str | None,
    *,
    url: str,
    method: str,
    body: bytes,
    config: AuthConfig,
    now: float | None = None,
) -> str | None:
    """Return the public key proven by *header*, or None."""
    if not header:
        return None
    try:
        data = decode_authorization(header)
        event = verify_auth_event(
            data, url=url, method=method, body=body, config=config, now=now
        )
    except (ValueError, TypeError, KeyError) as e:
        _logger.warning("auth_rejected", error=str(e))
        return None
    return event.pubkey
