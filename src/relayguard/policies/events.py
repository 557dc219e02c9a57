"""
Event admission policies.

Evaluated in this order by the default chain:

1. [ValidateKind][relayguard.policies.events.ValidateKind]: structural
   checks on kinds the relay interprets.
2. [RejectBannedPubkey][relayguard.policies.events.RejectBannedPubkey]:
   the author is on the ban list.
3. [RejectBannedEvent][relayguard.policies.events.RejectBannedEvent]:
   the event id is on the ban list.

Store lookups fail open: when the moderation store cannot answer, the event
is accepted and a warning is logged.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from relayguard.core.exceptions import DatabaseError
from relayguard.core.logger import Logger
from relayguard.models.constants import EVENT_KIND_MAX, EventKind

from .base import ACCEPT, Decision, EventPolicy, EventPolicyChain, RequestContext


if TYPE_CHECKING:
    from relayguard.core.store import ModerationStore
    from relayguard.models import Event


_logger = Logger("policies.event")


class ValidateKind(EventPolicy):
    """Reject events whose content or tags contradict their kind.

    * kind above 65535: invalid kind
    * kind 0 (metadata): content must be a JSON object
    * kind 3 (contacts): content must be empty or valid JSON
    * kind 1984 (report): at least one ``p`` tag
    """

    async def evaluate(self, ctx: RequestContext, subject: Event) -> Decision:
        event = subject
        if event.kind > EVENT_KIND_MAX:
            return Decision.deny(f"invalid: kind {event.kind} out of range")

        if event.kind == EventKind.SET_METADATA:
            try:
                metadata = json.loads(event.content)
            except ValueError:
                return Decision.deny("invalid: metadata content is not valid JSON")
            if not isinstance(metadata, dict):
                return Decision.deny("invalid: metadata content must be a JSON object")

        elif event.kind == EventKind.CONTACTS and event.content:
            try:
                json.loads(event.content)
            except ValueError:
                return Decision.deny("invalid: contact list content is not valid JSON")

        elif event.kind == EventKind.REPORT and event.first_tag("p") is None:
            return Decision.deny("invalid: report must reference a pubkey with a p tag")

        return ACCEPT


class RejectBannedPubkey(EventPolicy):
    """Reject events authored by a banned public key."""

    def __init__(self, store: ModerationStore) -> None:
        self._store = store

    async def evaluate(self, ctx: RequestContext, subject: Event) -> Decision:
        try:
            reason = await self._store.get_banned_pubkey_reason(subject.pubkey)
        except DatabaseError as e:
            _logger.warning("pubkey_lookup_failed", pubkey=subject.pubkey, error=str(e))
            return ACCEPT
        if reason is None:
            return ACCEPT
        return Decision.deny(f"pubkey {subject.pubkey} banned: {reason}")


class RejectBannedEvent(EventPolicy):
    """Reject resubmission of a banned event id."""

    def __init__(self, store: ModerationStore) -> None:
        self._store = store

    async def evaluate(self, ctx: RequestContext, subject: Event) -> Decision:
        try:
            reason = await self._store.get_banned_event_reason(subject.id)
        except DatabaseError as e:
            _logger.warning("event_lookup_failed", event_id=subject.id, error=str(e))
            return ACCEPT
        if reason is None:
            return ACCEPT
        return Decision.deny(f"event {subject.id} banned: {reason}")


def default_event_chain(store: ModerationStore) -> EventPolicyChain:
    """Build the standard admission chain backed by *store*."""
    return EventPolicyChain(
        [
            ValidateKind(),
            RejectBannedPubkey(store),
            RejectBannedEvent(store),
        ]
    )
