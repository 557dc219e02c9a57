"""
NIP-86 relay management API.

[ManagementApi][relayguard.moderation.api.ManagementApi] lets the relay
owner curate the allow and ban lists and work through the moderation
queue. Every operation first checks that the request is authenticated as
the owner key and raises
[AuthRequiredError][relayguard.core.exceptions.AuthRequiredError]
otherwise.

Banning an event is a three-step, non-transactional operation:

1. resolve every open report about the id with ``"banned: <reason>"``;
2. record the id on the ban list, which blocks resubmission;
3. delete the stored copy from the external event store (the cascade).

A failure in step 1 or 2 raises. A failure in step 3 leaves the ban in
place and is reported through
[BanEventResult.cascade_error][relayguard.models.BanEventResult].

[dispatch()][relayguard.moderation.api.ManagementApi.dispatch] maps NIP-86
JSON-RPC method names onto these operations.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

from relayguard.core.exceptions import AuthRequiredError, ManagementError
from relayguard.core.logger import Logger
from relayguard.core.metrics import MODERATION_ACTIONS
from relayguard.models import BanEventResult, Filter
from relayguard.policies.base import RequestContext, get_authed


if TYPE_CHECKING:
    from relayguard.core.store import ModerationStore
    from relayguard.models import Event, IdReason, PubKeyReason


OWNER_ONLY_DETAIL: Final = "only relay owner can access management API"

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


@runtime_checkable
class EventStore(Protocol):
    """The subset of an external event store the ban cascade needs."""

    async def query(self, filter: Filter) -> list[Event]:  # noqa: A002
        ...

    async def delete(self, event: Event) -> None: ...


class ManagementApi:
    """Owner-gated moderation operations backed by a
    [ModerationStore][relayguard.core.store.ModerationStore].

    Args:
        store: Moderation state.
        owner_pubkey: The only key allowed to call the API.
        event_stores: External event stores consulted, in order, by the
            ban cascade. More can be added with
            [register_event_store()][relayguard.moderation.api.ManagementApi.register_event_store].
    """

    def __init__(
        self,
        store: ModerationStore,
        owner_pubkey: str,
        event_stores: Iterable[EventStore] = (),
    ) -> None:
        self._store = store
        self._owner_pubkey = owner_pubkey.lower()
        self._event_stores: list[EventStore] = list(event_stores)
        self._logger = Logger("moderation.api")
        self._methods: dict[str, Callable[[RequestContext, list[Any]], Awaitable[Any]]] = {
            "supportedmethods": self._rpc_supported_methods,
            "banpubkey": self._rpc_ban_pubkey,
            "allowpubkey": self._rpc_allow_pubkey,
            "listbannedpubkeys": self._rpc_list_banned_pubkeys,
            "listallowedpubkeys": self._rpc_list_allowed_pubkeys,
            "listeventsneedingmoderation": self._rpc_list_events_needing_moderation,
            "allowevent": self._rpc_allow_event,
            "banevent": self._rpc_ban_event,
            "listbannedevents": self._rpc_list_banned_events,
            "listallowedevents": self._rpc_list_allowed_events,
        }

    @property
    def owner_pubkey(self) -> str:
        return self._owner_pubkey

    @property
    def event_stores(self) -> Sequence[EventStore]:
        return tuple(self._event_stores)

    def register_event_store(self, event_store: EventStore) -> None:
        """Append *event_store* to the stores consulted by the ban cascade."""
        self._event_stores.append(event_store)

    def authorize(self, ctx: RequestContext | None) -> None:
        """Raise unless *ctx* is authenticated as the relay owner.

        Raises:
            AuthRequiredError: With an ``auth-required:`` message.
        """
        authed = get_authed(ctx)
        if authed is None or authed.lower() != self._owner_pubkey:
            raise AuthRequiredError(OWNER_ONLY_DETAIL)

    # -------------------------------------------------------------------------
    # Public keys
    # -------------------------------------------------------------------------

    async def allow_pubkey(self, ctx: RequestContext, pubkey: str, reason: str) -> None:
        """Add *pubkey* to the allow list. An existing ban stays in force."""
        self.authorize(ctx)
        pubkey = normalize_key(pubkey, "pubkey")
        await self._store.upsert_allowed_pubkey(pubkey, reason)
        self._logger.info("pubkey_allowed", pubkey=pubkey, reason=reason)
        MODERATION_ACTIONS.labels(action="allow_pubkey").inc()

    async def ban_pubkey(self, ctx: RequestContext, pubkey: str, reason: str) -> None:
        """Ban *pubkey*; its future events are rejected."""
        self.authorize(ctx)
        pubkey = normalize_key(pubkey, "pubkey")
        await self._store.upsert_banned_pubkey(pubkey, reason)
        self._logger.info("pubkey_banned", pubkey=pubkey, reason=reason)
        MODERATION_ACTIONS.labels(action="ban_pubkey").inc()

    async def list_allowed_pubkeys(self, ctx: RequestContext) -> list[PubKeyReason]:
        self.authorize(ctx)
        return await self._store.list_allowed_pubkeys()

    async def list_banned_pubkeys(self, ctx: RequestContext) -> list[PubKeyReason]:
        self.authorize(ctx)
        return await self._store.list_banned_pubkeys()

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def list_events_needing_moderation(self, ctx: RequestContext) -> list[IdReason]:
        """Open reports as ``(subject, summary)`` pairs, newest first."""
        self.authorize(ctx)
        return await self._store.list_unresolved_reports()

    async def allow_event(self, ctx: RequestContext, event_id: str, reason: str) -> None:
        """Close the reports about *event_id* and record it as allowed.

        An event already deleted by an earlier ban is not restored.
        """
        self.authorize(ctx)
        event_id = normalize_key(event_id, "event id")
        resolved = await self._store.resolve_reports(event_id, f"allowed: {reason}")
        await self._store.upsert_allowed_event(event_id, reason)
        self._logger.info("event_allowed", event_id=event_id, reports_resolved=resolved)
        MODERATION_ACTIONS.labels(action="allow_event").inc()

    async def ban_event(self, ctx: RequestContext, event_id: str, reason: str) -> BanEventResult:
        """Ban *event_id* and delete its stored copy.

        Raises:
            AuthRequiredError: If the caller is not the owner.
            ManagementError: If *event_id* is not a hex event id.
            DatabaseError: If resolving reports or recording the ban fails.
                Nothing after the failing step has run.
        """
        self.authorize(ctx)
        event_id = normalize_key(event_id, "event id")
        resolved = await self._store.resolve_reports(event_id, f"banned: {reason}")
        await self._store.upsert_banned_event(event_id, reason)

        deleted, cascade_error = await self._cascade_delete(event_id)
        result = BanEventResult(
            event_id=event_id,
            reports_resolved=resolved,
            deleted=deleted,
            cascade_error=cascade_error,
        )
        MODERATION_ACTIONS.labels(action="ban_event").inc()
        if result.ok:
            self._logger.info(
                "event_banned", event_id=event_id, reports_resolved=resolved, deleted=deleted
            )
        else:
            self._logger.warning("cascade_failed", event_id=event_id, error=cascade_error)
            MODERATION_ACTIONS.labels(action="cascade_failed").inc()
        return result

    async def _cascade_delete(self, event_id: str) -> tuple[int, str | None]:
        """Delete *event_id* from the first event store that holds it.

        Returns:
            ``(deleted, error)``. ``error`` is set when a delete failed, or
            when no store matched and at least one query failed.
        """
        if not self._event_stores:
            self._logger.warning("cascade_skipped", event_id=event_id, reason="no event store")
            return 0, None

        query_errors: list[str] = []
        for event_store in self._event_stores:
            try:
                matches = await event_store.query(Filter(ids=[event_id]))
            except Exception as e:  # Intentionally broad: external store boundary
                self._logger.warning("cascade_query_failed", event_id=event_id, error=str(e))
                query_errors.append(str(e))
                continue

            if not matches:
                continue

            deleted = 0
            for event in matches:
                try:
                    await event_store.delete(event)
                except Exception as e:  # Intentionally broad: external store boundary
                    return deleted, f"failed to delete event: {e}"
                deleted += 1
            return deleted, None

        if query_errors:
            return 0, f"failed to query event store: {'; '.join(query_errors)}"
        return 0, None

    async def list_banned_events(self, ctx: RequestContext) -> list[IdReason]:
        self.authorize(ctx)
        return await self._store.list_banned_events()

    async def list_allowed_events(self, ctx: RequestContext) -> list[IdReason]:
        self.authorize(ctx)
        return await self._store.list_allowed_events()

    # -------------------------------------------------------------------------
    # NIP-86 JSON-RPC
    # -------------------------------------------------------------------------

    def supported_methods(self) -> list[str]:
        return list(self._methods)

    async def dispatch(self, ctx: RequestContext, method: str, params: list[Any] | None) -> Any:
        """Run one NIP-86 call and return its JSON-serializable result.

        Raises:
            AuthRequiredError: If the caller is not the owner.
            ManagementError: If the method is unknown, its params are
                invalid, or a ban cascade failed.
            DatabaseError: If the store failed.
        """
        self.authorize(ctx)
        handler = self._methods.get(method.lower() if isinstance(method, str) else "")
        if handler is None:
            raise ManagementError(f"method not supported: {method}")
        if params is None:
            params = []
        if not isinstance(params, list):
            raise ManagementError("params must be a list")
        return await handler(ctx, params)

    async def _rpc_supported_methods(self, ctx: RequestContext, params: list[Any]) -> list[str]:
        return self.supported_methods()

    async def _rpc_ban_pubkey(self, ctx: RequestContext, params: list[Any]) -> bool:
        pubkey, reason = _key_and_reason(params, "pubkey")
        await self.ban_pubkey(ctx, pubkey, reason)
        return True

    async def _rpc_allow_pubkey(self, ctx: RequestContext, params: list[Any]) -> bool:
        pubkey, reason = _key_and_reason(params, "pubkey")
        await self.allow_pubkey(ctx, pubkey, reason)
        return True

    async def _rpc_list_banned_pubkeys(
        self, ctx: RequestContext, params: list[Any]
    ) -> list[dict[str, str]]:
        return [entry._asdict() for entry in await self.list_banned_pubkeys(ctx)]

    async def _rpc_list_allowed_pubkeys(
        self, ctx: RequestContext, params: list[Any]
    ) -> list[dict[str, str]]:
        return [entry._asdict() for entry in await self.list_allowed_pubkeys(ctx)]

    async def _rpc_list_events_needing_moderation(
        self, ctx: RequestContext, params: list[Any]
    ) -> list[dict[str, str]]:
        return [entry._asdict() for entry in await self.list_events_needing_moderation(ctx)]

    async def _rpc_allow_event(self, ctx: RequestContext, params: list[Any]) -> bool:
        event_id, reason = _key_and_reason(params, "event id")
        await self.allow_event(ctx, event_id, reason)
        return True

    async def _rpc_ban_event(self, ctx: RequestContext, params: list[Any]) -> bool:
        event_id, reason = _key_and_reason(params, "event id")
        result = await self.ban_event(ctx, event_id, reason)
        if not result.ok:
            raise ManagementError(f"event banned but not deleted: {result.cascade_error}")
        return True

    async def _rpc_list_banned_events(
        self, ctx: RequestContext, params: list[Any]
    ) -> list[dict[str, str]]:
        return [entry._asdict() for entry in await self.list_banned_events(ctx)]

    async def _rpc_list_allowed_events(
        self, ctx: RequestContext, params: list[Any]
    ) -> list[dict[str, str]]:
        return [entry._asdict() for entry in await self.list_allowed_events(ctx)]


def _key_and_reason(params: list[Any], what: str) -> tuple[str, str]:
    """Parse ``[<hex id>, <reason>?]`` params."""
    if not params or not isinstance(params[0], str):
        raise ManagementError(f"missing {what}")
    key = normalize_key(params[0], what)
    reason = params[1] if len(params) > 1 else ""
    if not isinstance(reason, str):
        raise ManagementError("reason must be a string")
    return key, reason


def normalize_key(key: str, what: str) -> str:
    """Return *key* as 64 lowercase hex characters.

    Raises:
        ManagementError: If *key* is not a hex public key or event id.
    """
    normalized = key.strip().lower()
    if not _HEX64.match(normalized):
        raise ManagementError(f"invalid {what}: {key}")
    return normalized
