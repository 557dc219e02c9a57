"""
Unit tests for policies.base and policies.events modules.

Tests:
- Decision helpers and RequestContext
- Chain ordering, first-rejection-wins and error isolation
- ValidateKind structural checks
- RejectBannedPubkey / RejectBannedEvent reasons and fail-open behavior
"""

from unittest.mock import AsyncMock

import pytest

from relayguard.core.exceptions import ConnectionPoolError, QueryError
from relayguard.policies import (
    ACCEPT,
    Decision,
    EventPolicy,
    EventPolicyChain,
    RejectBannedEvent,
    RejectBannedPubkey,
    RequestContext,
    ValidateKind,
    default_event_chain,
    get_authed,
)
from tests.conftest import ALICE, BOB, EVENT_ID, make_event


class _Fixed(EventPolicy):
    def __init__(self, decision: Decision) -> None:
        self.decision = decision
        self.calls = 0

    async def evaluate(self, ctx, subject):
        self.calls += 1
        return self.decision


class _Broken(EventPolicy):
    async def evaluate(self, ctx, subject):
        raise RuntimeError("policy bug")


# ============================================================================
# Base
# ============================================================================


class TestDecision:
    def test_accept(self):
        assert Decision.accept() == ACCEPT
        assert not ACCEPT.reject
        assert ACCEPT.reason == ""

    def test_deny(self):
        decision = Decision.deny("blocked")
        assert decision.reject
        assert decision.reason == "blocked"


class TestGetAuthed:
    def test_authenticated(self):
        assert get_authed(RequestContext(authed_pubkey=ALICE)) == ALICE

    @pytest.mark.parametrize("ctx", [None, RequestContext(), RequestContext(authed_pubkey="")])
    def test_unauthenticated(self, ctx):
        assert get_authed(ctx) is None


class TestEventPolicyChain:
    async def test_empty_chain_accepts(self, anon_ctx, sample_event):
        assert await EventPolicyChain().evaluate(anon_ctx, sample_event) == ACCEPT

    async def test_first_rejection_wins(self, anon_ctx, sample_event):
        first = _Fixed(ACCEPT)
        second = _Fixed(Decision.deny("second"))
        third = _Fixed(Decision.deny("third"))
        chain = EventPolicyChain([first, second, third])
        decision = await chain.evaluate(anon_ctx, sample_event)
        assert decision.reason == "second"
        assert (first.calls, second.calls, third.calls) == (1, 1, 0)

    async def test_raising_policy_is_skipped(self, anon_ctx, sample_event):
        last = _Fixed(Decision.deny("last"))
        chain = EventPolicyChain([_Broken(), last])
        decision = await chain.evaluate(anon_ctx, sample_event)
        assert decision.reason == "last"

    async def test_raising_policy_alone_accepts(self, anon_ctx, sample_event):
        assert await EventPolicyChain([_Broken()]).evaluate(anon_ctx, sample_event) == ACCEPT

    def test_append_and_len(self):
        chain = EventPolicyChain()
        chain.append(ValidateKind())
        assert len(chain) == 1
        assert "ValidateKind" in repr(chain)

    def test_default_chain_order(self, store_double):
        chain = default_event_chain(store_double)
        assert [p.name for p in chain.policies] == [
            "ValidateKind",
            "RejectBannedPubkey",
            "RejectBannedEvent",
        ]


# ============================================================================
# ValidateKind
# ============================================================================


class TestValidateKind:
    @pytest.fixture
    def policy(self) -> ValidateKind:
        return ValidateKind()

    async def test_plain_note(self, policy, anon_ctx, sample_event):
        assert await policy.evaluate(anon_ctx, sample_event) == ACCEPT

    async def test_kind_out_of_range(self, policy, anon_ctx):
        decision = await policy.evaluate(anon_ctx, make_event(kind=70_000))
        assert decision.reject
        assert "kind" in decision.reason

    async def test_metadata_object(self, policy, anon_ctx):
        event = make_event(kind=0, content='{"name": "alice"}')
        assert await policy.evaluate(anon_ctx, event) == ACCEPT

    @pytest.mark.parametrize("content", ["not json", "[1, 2]", ""])
    async def test_metadata_invalid(self, policy, anon_ctx, content):
        decision = await policy.evaluate(anon_ctx, make_event(kind=0, content=content))
        assert decision.reject
        assert decision.reason.startswith("invalid:")

    @pytest.mark.parametrize("content", ["", '{"wss://relay": {"read": true}}'])
    async def test_contacts_valid(self, policy, anon_ctx, content):
        assert await policy.evaluate(anon_ctx, make_event(kind=3, content=content)) == ACCEPT

    async def test_contacts_invalid(self, policy, anon_ctx):
        decision = await policy.evaluate(anon_ctx, make_event(kind=3, content="{oops"))
        assert decision.reject

    async def test_report_requires_p_tag(self, policy, anon_ctx):
        decision = await policy.evaluate(anon_ctx, make_event(kind=1984, tags=[["e", EVENT_ID]]))
        assert decision.reject
        assert "p tag" in decision.reason

    async def test_report_with_p_tag(self, policy, anon_ctx, report_event):
        assert await policy.evaluate(anon_ctx, report_event) == ACCEPT


# ============================================================================
# Ban checks
# ============================================================================


class TestRejectBannedPubkey:
    async def test_not_banned(self, store_double, anon_ctx, sample_event):
        policy = RejectBannedPubkey(store_double)
        assert await policy.evaluate(anon_ctx, sample_event) == ACCEPT
        store_double.get_banned_pubkey_reason.assert_awaited_once_with(ALICE)

    async def test_banned(self, store_double, anon_ctx, sample_event):
        store_double.get_banned_pubkey_reason.return_value = "spam"
        decision = await RejectBannedPubkey(store_double).evaluate(anon_ctx, sample_event)
        assert decision == Decision(True, f"pubkey {ALICE} banned: spam")

    @pytest.mark.parametrize("error", [ConnectionPoolError("timeout"), QueryError("bad")])
    async def test_store_error_fails_open(self, store_double, anon_ctx, sample_event, error):
        store_double.get_banned_pubkey_reason = AsyncMock(side_effect=error)
        assert await RejectBannedPubkey(store_double).evaluate(anon_ctx, sample_event) == ACCEPT

    async def test_other_author_unaffected(self, store_double, anon_ctx):
        store_double.get_banned_pubkey_reason.side_effect = lambda pk: "spam" if pk == BOB else None
        policy = RejectBannedPubkey(store_double)
        assert await policy.evaluate(anon_ctx, make_event(pubkey=ALICE)) == ACCEPT
        assert (await policy.evaluate(anon_ctx, make_event(pubkey=BOB))).reject


class TestRejectBannedEvent:
    async def test_not_banned(self, store_double, anon_ctx, sample_event):
        assert await RejectBannedEvent(store_double).evaluate(anon_ctx, sample_event) == ACCEPT

    async def test_banned(self, store_double, anon_ctx, sample_event):
        store_double.get_banned_event_reason.return_value = "illegal"
        decision = await RejectBannedEvent(store_double).evaluate(anon_ctx, sample_event)
        assert decision == Decision(True, f"event {EVENT_ID} banned: illegal")

    async def test_store_error_fails_open(self, store_double, anon_ctx, sample_event):
        store_double.get_banned_event_reason = AsyncMock(side_effect=ConnectionPoolError("x"))
        assert await RejectBannedEvent(store_double).evaluate(anon_ctx, sample_event) == ACCEPT


class TestDefaultChain:
    async def test_banned_author_rejected_with_reason(self, store_double, anon_ctx, sample_event):
        store_double.get_banned_pubkey_reason.return_value = "spam"
        decision = await default_event_chain(store_double).evaluate(anon_ctx, sample_event)
        assert decision.reject
        assert "spam" in decision.reason

    async def test_invalid_kind_short_circuits(self, store_double, anon_ctx):
        await default_event_chain(store_double).evaluate(anon_ctx, make_event(kind=0, content="x"))
        store_double.get_banned_pubkey_reason.assert_not_called()

    async def test_store_down_accepts(self, store_double, anon_ctx, sample_event):
        store_double.get_banned_pubkey_reason.side_effect = ConnectionPoolError("down")
        store_double.get_banned_event_reason.side_effect = ConnectionPoolError("down")
        assert await default_event_chain(store_double).evaluate(anon_ctx, sample_event) == ACCEPT
