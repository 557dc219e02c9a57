"""Unit tests for moderation.reports module."""

import pytest

from relayguard.core.exceptions import QueryError
from relayguard.core.metrics import REPORTS_RECEIVED
from relayguard.moderation import ReportIntake, extract_report
from tests.conftest import ALICE, BOB, EVENT_ID, REPORT_ID, make_event


def _report_event(tags, content="why"):
    return make_event(event_id=REPORT_ID, pubkey=ALICE, kind=1984, tags=tags, content=content)


class TestExtractReport:
    def test_event_report(self, report_event):
        report = extract_report(report_event)
        assert report is not None
        assert report.id == REPORT_ID
        assert report.reporter_pubkey == ALICE
        assert report.reported_pubkey == BOB
        assert report.reported_event_id == EVENT_ID
        assert report.report_type == "spam"
        assert report.content == "buy my coin"
        assert report.created_at == 1_700_000_000
        assert report.subject == EVENT_ID

    def test_pubkey_only_report(self):
        report = extract_report(_report_event([["p", BOB, "impersonation"]]))
        assert report is not None
        assert report.reported_event_id is None
        assert report.subject == BOB

    def test_type_from_e_tag(self):
        report = extract_report(_report_event([["p", BOB], ["e", EVENT_ID, "illegal"]]))
        assert report is not None
        assert report.report_type == "illegal"

    def test_p_tag_type_wins(self):
        report = extract_report(_report_event([["e", EVENT_ID, "illegal"], ["p", BOB, "spam"]]))
        assert report is not None
        assert report.report_type == "spam"

    def test_first_p_tag_used(self):
        report = extract_report(_report_event([["p", BOB, "spam"], ["p", ALICE, "nudity"]]))
        assert report is not None
        assert report.reported_pubkey == BOB

    @pytest.mark.parametrize(
        "tags",
        [
            [["e", EVENT_ID, "spam"]],
            [["p", BOB]],
            [["p", BOB], ["e", EVENT_ID]],
            [],
        ],
    )
    def test_incomplete_report_dropped(self, tags):
        assert extract_report(_report_event(tags)) is None

    def test_non_report(self, sample_event):
        assert extract_report(sample_event) is None


class TestReportIntake:
    async def test_stores_report(self, store_double, anon_ctx, report_event):
        report = await ReportIntake(store_double).on_stored(anon_ctx, report_event)
        assert report is not None
        store_double.insert_report.assert_awaited_once_with(report)

    async def test_duplicate_still_returns_report(self, store_double, anon_ctx, report_event):
        store_double.insert_report.return_value = False
        report = await ReportIntake(store_double).on_stored(anon_ctx, report_event)
        assert report is not None

    async def test_ignores_other_kinds(self, store_double, anon_ctx, sample_event):
        assert await ReportIntake(store_double).on_stored(anon_ctx, sample_event) is None
        store_double.insert_report.assert_not_called()

    async def test_drops_incomplete(self, store_double, anon_ctx):
        event = _report_event([["p", BOB]])
        assert await ReportIntake(store_double).on_stored(anon_ctx, event) is None
        store_double.insert_report.assert_not_called()

    async def test_accepts_missing_context(self, store_double, report_event):
        assert await ReportIntake(store_double).on_stored(None, report_event) is not None

    async def test_store_error_propagates(self, store_double, anon_ctx, report_event):
        store_double.insert_report.side_effect = QueryError("boom")
        with pytest.raises(QueryError):
            await ReportIntake(store_double).on_stored(anon_ctx, report_event)

    async def test_counts_outcomes(self, store_double, anon_ctx, report_event):
        stored = REPORTS_RECEIVED.labels(outcome="stored")
        duplicate = REPORTS_RECEIVED.labels(outcome="duplicate")
        before = (stored._value.get(), duplicate._value.get())

        intake = ReportIntake(store_double)
        await intake.on_stored(anon_ctx, report_event)
        store_double.insert_report.return_value = False
        await intake.on_stored(anon_ctx, report_event)

        assert stored._value.get() == before[0] + 1
        assert duplicate._value.get() == before[1] + 1
