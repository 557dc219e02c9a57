"""
Subscription filter policies.

[RejectUnauthenticatedGiftWrap][relayguard.policies.filters.RejectUnauthenticatedGiftWrap]
keeps NIP-17 gift wraps (kind 1059) private: a filter asking for them is
served only to an authenticated client, and only for wraps addressed to
that client. [ClampQueryLimit][relayguard.policies.filters.ClampQueryLimit]
caps the number of events a single filter may return.

Both policies rewrite the filter in place rather than rejecting it where
they can.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from relayguard.core.exceptions import AUTH_REQUIRED_PREFIX
from relayguard.models.constants import EventKind

from .base import ACCEPT, Decision, FilterPolicy, FilterPolicyChain, RequestContext, get_authed


if TYPE_CHECKING:
    from relayguard.models import Filter


GIFT_WRAP_AUTH_REASON = (
    f"{AUTH_REQUIRED_PREFIX} authentication required to query direct messages"
)


class RejectUnauthenticatedGiftWrap(FilterPolicy):
    """Serve gift-wrap queries only to their authenticated recipient.

    1. A filter that does not ask for kind 1059 passes untouched.
    2. Without authentication the filter is rejected with an
       ``auth-required:`` reason.
    3. If the authenticated key is already among the ``#p`` values the
       filter passes untouched.
    4. Otherwise ``#p`` is replaced by exactly the authenticated key, so
       the client never sees wraps addressed to anyone else.
    """

    async def evaluate(self, ctx: RequestContext, subject: Filter) -> Decision:
        if not subject.requests_kind(EventKind.GIFT_WRAP):
            return ACCEPT

        authed = get_authed(ctx)
        if authed is None:
            return Decision.deny(GIFT_WRAP_AUTH_REASON)

        if authed in subject.tags.get("p", ()):
            return ACCEPT

        subject.tags["p"] = [authed]
        return ACCEPT


class ClampQueryLimit(FilterPolicy):
    """Cap ``limit`` at *max_limit*; a missing limit becomes *max_limit*."""

    def __init__(self, max_limit: int) -> None:
        if max_limit < 1:
            raise ValueError(f"max_limit must be >= 1, got {max_limit}")
        self._max_limit = max_limit

    @property
    def max_limit(self) -> int:
        return self._max_limit

    async def evaluate(self, ctx: RequestContext, subject: Filter) -> Decision:
        if subject.limit is None or subject.limit > self._max_limit:
            subject.limit = self._max_limit
        return ACCEPT


def default_filter_chain(query_limit: int) -> FilterPolicyChain:
    """Build the standard filter chain with the given per-query limit."""
    return FilterPolicyChain(
        [
            RejectUnauthenticatedGiftWrap(),
            ClampQueryLimit(query_limit),
        ]
    )
