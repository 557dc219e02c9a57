"""
Composition root wiring the moderation layer for a relay engine.

[RelayGuard][relayguard.guard.RelayGuard] owns one
[ModerationStore][relayguard.core.store.ModerationStore] and builds the
event chain, the filter chain, the report hook and the management API on
top of it. A relay engine needs only four calls:

* [reject_event()][relayguard.guard.RelayGuard.reject_event] before
  storing an event,
* [reject_filter()][relayguard.guard.RelayGuard.reject_filter] before
  running a subscription filter,
* [on_stored()][relayguard.guard.RelayGuard.on_stored] after an event is
  stored,
* [management][relayguard.guard.RelayGuard.management] for NIP-86 calls.

Examples:
    ```python
    guard = RelayGuard.from_settings(RelaySettings.from_env())
    guard.register_event_store(other_store)

    async with guard:
        decision = await guard.reject_event(RequestContext(authed), event)
        if decision.reject:
            return ["OK", event.id, False, decision.reason]
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from relayguard.core.config import RelaySettings
from relayguard.core.event_store import EventStoreConfig, PostgresEventStore
from relayguard.core.logger import Logger
from relayguard.core.pool import DatabaseConfig, Pool, PoolConfig
from relayguard.core.store import ModerationStore, StoreConfig
from relayguard.moderation import EventStore, ManagementApi, ReportIntake
from relayguard.policies import (
    EventPolicyChain,
    FilterPolicyChain,
    default_event_chain,
    default_filter_chain,
)


if TYPE_CHECKING:
    from types import TracebackType

    from relayguard.models import Event, Filter, Report
    from relayguard.policies import Decision, RequestContext


class RelayGuard:
    """Moderation layer for one relay.

    Args:
        store: Moderation state shared by every component.
        settings: Relay identity; ``settings.pubkey`` is the management
            API owner and ``settings.query_limit`` caps filter limits.
        event_stores: External event stores for the ban cascade.
    """

    def __init__(
        self,
        store: ModerationStore,
        settings: RelaySettings | None = None,
        event_stores: list[EventStore] | None = None,
    ) -> None:
        self._settings = settings or RelaySettings()
        self._store = store
        self._logger = Logger("guard")

        self.event_chain: EventPolicyChain = default_event_chain(store)
        self.filter_chain: FilterPolicyChain = default_filter_chain(self._settings.query_limit)
        self.report_intake = ReportIntake(store)
        self._management = ManagementApi(store, self._settings.pubkey, event_stores or ())

    @classmethod
    def from_settings(
        cls,
        settings: RelaySettings,
        pool_config: dict[str, Any] | None = None,
        store_config: dict[str, Any] | None = None,
        event_store_config: dict[str, Any] | None = None,
    ) -> RelayGuard:
        """Build a guard whose pool connects to ``settings.database_url``.

        The relay engine's event table on the same database is registered
        with the ban cascade unless ``event_store_config`` disables it.

        Args:
            settings: Relay settings, typically ``RelaySettings.from_env()``.
            pool_config: Optional ``PoolConfig`` fields (limits, timeouts, ...).
                A ``database`` entry here overrides ``settings.database_url``.
            store_config: Optional ``StoreConfig`` fields.
            event_store_config: Optional ``EventStoreConfig`` fields.
        """
        pool_dict = dict(pool_config or {})
        pool_dict.setdefault("database", DatabaseConfig(url=settings.database_url))
        pool = Pool(PoolConfig(**pool_dict))
        store = ModerationStore(pool=pool, config=StoreConfig(**(store_config or {})))
        event_store = EventStoreConfig(**(event_store_config or {}))
        event_stores: list[EventStore] = []
        if event_store.enabled:
            event_stores.append(PostgresEventStore(pool, event_store))
        return cls(store, settings=settings, event_stores=event_stores)

    @property
    def settings(self) -> RelaySettings:
        return self._settings

    @property
    def store(self) -> ModerationStore:
        return self._store

    @property
    def management(self) -> ManagementApi:
        return self._management

    def register_event_store(self, event_store: EventStore) -> None:
        """Let the ban cascade delete events from *event_store*."""
        self._management.register_event_store(event_store)

    # -------------------------------------------------------------------------
    # Relay engine hooks
    # -------------------------------------------------------------------------

    async def reject_event(self, ctx: RequestContext, event: Event) -> Decision:
        """Run the admission chain on an inbound event."""
        return await self.event_chain.evaluate(ctx, event)

    async def reject_filter(self, ctx: RequestContext, filter: Filter) -> Decision:  # noqa: A002
        """Run the filter chain; *filter* may be rewritten in place."""
        return await self.filter_chain.evaluate(ctx, filter)

    async def on_stored(self, ctx: RequestContext | None, event: Event) -> Report | None:
        """Record *event* as a report if it is one."""
        return await self.report_intake.on_stored(ctx, event)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> RelayGuard:
        await self._store.connect()
        try:
            await self._store.init()
        except BaseException:
            await self._store.close()
            raise
        self._logger.info(
            "guard_started",
            relay=self._settings.name,
            owner=self._settings.pubkey,
            event_policies=len(self.event_chain),
            filter_policies=len(self.filter_chain),
        )
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self._store.close()
        self._logger.info("guard_stopped")
