"""Admission policies for inbound events and subscription filters.

Attributes:
    Decision: ``(reject, reason)`` result of a policy.
    RequestContext: Authenticated identity of the current request.
    EventPolicyChain: Ordered event admission chain.
    FilterPolicyChain: Ordered filter gating chain (may rewrite filters).
"""

from .base import (
    ACCEPT,
    Decision,
    EventPolicy,
    EventPolicyChain,
    FilterPolicy,
    FilterPolicyChain,
    Policy,
    PolicyChain,
    RequestContext,
    get_authed,
)
from .events import (
    RejectBannedEvent,
    RejectBannedPubkey,
    ValidateKind,
    default_event_chain,
)
from .filters import (
    GIFT_WRAP_AUTH_REASON,
    ClampQueryLimit,
    RejectUnauthenticatedGiftWrap,
    default_filter_chain,
)


__all__ = [
    "ACCEPT",
    "GIFT_WRAP_AUTH_REASON",
    "ClampQueryLimit",
    "Decision",
    "EventPolicy",
    "EventPolicyChain",
    "FilterPolicy",
    "FilterPolicyChain",
    "Policy",
    "PolicyChain",
    "RejectBannedEvent",
    "RejectBannedPubkey",
    "RejectUnauthenticatedGiftWrap",
    "RequestContext",
    "ValidateKind",
    "default_event_chain",
    "default_filter_chain",
    "get_authed",
]
