"""
NIP-56 report intake.

Reports are kind 1984 events. [extract_report()][relayguard.moderation.reports.extract_report]
reads the subject from the event tags:

* the first ``p`` tag gives the reported public key and, as its third
  element, the report type (``spam``, ``impersonation``, ...);
* the first ``e`` tag gives the reported event id and, when the ``p`` tag
  carried no type, the report type.

A report without a reported key or a type is dropped. Everything else is
stored by [ReportIntake][relayguard.moderation.reports.ReportIntake] after
the relay engine has persisted the event, and shows up in the moderation
queue until an operator allows or bans its subject.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from relayguard.core.logger import Logger
from relayguard.core.metrics import REPORTS_RECEIVED
from relayguard.models import Report
from relayguard.models.constants import EventKind


if TYPE_CHECKING:
    from relayguard.core.store import ModerationStore
    from relayguard.models import Event
    from relayguard.policies import RequestContext


_LABEL_INDEX = 2


def _tag_value(tag: tuple[str, ...] | None, index: int) -> str:
    if tag is None or len(tag) <= index:
        return ""
    return tag[index]


def extract_report(event: Event) -> Report | None:
    """Build a [Report][relayguard.models.Report] from a kind 1984 event.

    Returns:
        The report, or None if the event is not a report or lacks a
        reported key or a report type.
    """
    if event.kind != EventKind.REPORT:
        return None

    p_tag = event.first_tag("p")
    e_tag = event.first_tag("e")

    reported_pubkey = _tag_value(p_tag, 1)
    report_type = _tag_value(p_tag, _LABEL_INDEX) or _tag_value(e_tag, _LABEL_INDEX)
    reported_event_id = _tag_value(e_tag, 1) or None

    if not reported_pubkey or not report_type:
        return None

    return Report(
        id=event.id,
        reporter_pubkey=event.pubkey,
        reported_pubkey=reported_pubkey,
        report_type=report_type,
        content=event.content,
        reported_event_id=reported_event_id,
        created_at=event.created_at,
    )


class ReportIntake:
    """Store-time hook that records NIP-56 reports.

    Storing the same report event twice is a no-op. Database errors
    propagate to the relay engine, which decides whether to surface them.
    """

    def __init__(self, store: ModerationStore) -> None:
        self._store = store
        self._logger = Logger("moderation.reports")

    async def on_stored(self, ctx: RequestContext | None, event: Event) -> Report | None:
        """Persist *event* as a report if it is one.

        Returns:
            The extracted report, or None if nothing was recorded.
        """
        if event.kind != EventKind.REPORT:
            return None

        report = extract_report(event)
        if report is None:
            self._logger.debug("report_dropped", event_id=event.id, reason="missing pubkey or type")
            REPORTS_RECEIVED.labels(outcome="dropped").inc()
            return None

        created = await self._store.insert_report(report)
        if created:
            self._logger.info(
                "report_stored",
                event_id=report.id,
                subject=report.subject,
                report_type=report.report_type,
            )
        else:
            self._logger.debug("report_duplicate", event_id=report.id)
        REPORTS_RECEIVED.labels(outcome="stored" if created else "duplicate").inc()
        return report
