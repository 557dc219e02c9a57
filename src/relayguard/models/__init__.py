"""Pure dataclasses with zero I/O for events, filters and moderation records.

The models layer is the foundation of the package and depends only on the
standard library (``nostr_sdk`` is referenced for type conversion only).
Validation happens in ``__post_init__`` so invalid instances never escape
their constructor.

Attributes:
    Event: Immutable Nostr event with tuple-normalized tags.
    Filter: Mutable NIP-01 subscription filter, rewritable by filter policies.
    Report: NIP-56 abuse report row.
    PubKeyReason: ``(pubkey, reason)`` list entry.
    IdReason: ``(id, reason)`` list entry.
    BanEventResult: Step-by-step outcome of an event ban.
    EventKind: Event kinds inspected by the policies.
"""

from .constants import EVENT_KIND_MAX, EventKind, ServiceName
from .event import Event, Tag
from .filter import Filter
from .moderation import BanEventResult, IdReason, PubKeyReason, Report, ReportDbParams


__all__ = [
    "EVENT_KIND_MAX",
    "BanEventResult",
    "Event",
    "EventKind",
    "Filter",
    "IdReason",
    "PubKeyReason",
    "Report",
    "ReportDbParams",
    "ServiceName",
    "Tag",
]
