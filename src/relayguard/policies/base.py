"""
Policy contracts and the ordered chains that evaluate them.

A policy is a small object with one coroutine, ``evaluate(ctx, subject)``,
that returns a [Decision][relayguard.policies.base.Decision]. Chains run
their policies in registration order and stop at the first rejection.

A policy that raises never aborts the chain: the exception is logged, the
policy counts as accepting, and evaluation continues. This keeps relay
traffic flowing when the moderation store is degraded.

See Also:
    [relayguard.policies.events][relayguard.policies.events]: Event
        admission policies.
    [relayguard.policies.filters][relayguard.policies.filters]: Filter
        privacy policies.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Generic, NamedTuple, TypeVar

from relayguard.core.logger import Logger
from relayguard.core.metrics import POLICY_DECISIONS


if TYPE_CHECKING:
    from relayguard.models import Event, Filter


class Decision(NamedTuple):
    """Result of a policy evaluation.

    ``reason`` is empty when ``reject`` is False. A reason starting with
    ``auth-required:`` tells the client to authenticate and retry.
    """

    reject: bool
    reason: str = ""

    @classmethod
    def accept(cls) -> Decision:
        return ACCEPT

    @classmethod
    def deny(cls, reason: str) -> Decision:
        return cls(True, reason)


ACCEPT = Decision(False, "")


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Per-request state handed over by the relay engine.

    Attributes:
        authed_pubkey: Public key proven by NIP-42 (or NIP-98 for HTTP
            requests), or None for an unauthenticated connection.
    """

    authed_pubkey: str | None = None


def get_authed(ctx: RequestContext | None) -> str | None:
    """Return the authenticated public key of *ctx*, or None."""
    if ctx is None or not ctx.authed_pubkey:
        return None
    return ctx.authed_pubkey


SubjectT = TypeVar("SubjectT")


class Policy(ABC, Generic[SubjectT]):
    """A single admission check.

    ``name`` labels the policy in logs and metrics and defaults to the
    class name.
    """

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def evaluate(self, ctx: RequestContext, subject: SubjectT) -> Decision: ...


class EventPolicy(Policy["Event"]):
    """Decides whether an inbound event is accepted for storage."""


class FilterPolicy(Policy["Filter"]):
    """Decides whether a subscription filter is served.

    Filter policies may rewrite the filter in place before accepting it.
    """


PolicyT = TypeVar("PolicyT", bound="Policy[Any]")


class PolicyChain(Generic[PolicyT, SubjectT]):
    """Ordered list of policies; the first rejection wins."""

    CHAIN: ClassVar[str]

    def __init__(self, policies: Iterable[PolicyT] = ()) -> None:
        self._policies: list[PolicyT] = list(policies)
        self._logger = Logger(f"policies.{self.CHAIN}")

    @property
    def policies(self) -> Sequence[PolicyT]:
        return tuple(self._policies)

    def append(self, policy: PolicyT) -> None:
        self._policies.append(policy)

    async def evaluate(self, ctx: RequestContext, subject: SubjectT) -> Decision:
        """Run every policy in order and return the first rejection, or accept."""
        for policy in self._policies:
            try:
                decision = await policy.evaluate(ctx, subject)
            except Exception as e:  # Intentionally broad: policy error boundary
                self._logger.error("policy_failed", policy=policy.name, error=str(e))
                POLICY_DECISIONS.labels(chain=self.CHAIN, policy=policy.name, outcome="error").inc()
                continue

            if decision.reject:
                self._logger.debug("policy_rejected", policy=policy.name, reason=decision.reason)
                POLICY_DECISIONS.labels(
                    chain=self.CHAIN, policy=policy.name, outcome="reject"
                ).inc()
                return decision

            POLICY_DECISIONS.labels(chain=self.CHAIN, policy=policy.name, outcome="accept").inc()
        return ACCEPT

    def __len__(self) -> int:
        return len(self._policies)

    def __repr__(self) -> str:
        names = ", ".join(p.name for p in self._policies)
        return f"{type(self).__name__}([{names}])"


class EventPolicyChain(PolicyChain[EventPolicy, "Event"]):
    """Admission chain for inbound events."""

    CHAIN: ClassVar[str] = "event"


class FilterPolicyChain(PolicyChain[FilterPolicy, "Filter"]):
    """Gating chain for inbound subscription filters."""

    CHAIN: ClassVar[str] = "filter"
