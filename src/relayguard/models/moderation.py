"""
Moderation records: list entries, abuse reports and ban outcomes.

[PubKeyReason][relayguard.models.moderation.PubKeyReason] and
[IdReason][relayguard.models.moderation.IdReason] mirror the NIP-86 result
shapes returned by the list operations.
[Report][relayguard.models.moderation.Report] is one NIP-56 report row and
[BanEventResult][relayguard.models.moderation.BanEventResult] tells a caller
which steps of the non-transactional event ban went through.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import NamedTuple

from ._validation import (
    validate_hex64,
    validate_int,
    validate_str_no_null,
    validate_str_not_empty,
)


class PubKeyReason(NamedTuple):
    """A public key on the allow or ban list, with the operator's reason."""

    pubkey: str
    reason: str


class IdReason(NamedTuple):
    """An event id (or moderation subject) with its reason or report summary."""

    id: str
    reason: str


class ReportDbParams(NamedTuple):
    """Positional parameters for the ``reports`` insert statement."""

    id: str
    reporter_pubkey: str
    reported_event_id: str | None
    reported_pubkey: str
    report_type: str
    content: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class Report:
    """A NIP-56 abuse report extracted from a kind 1984 event.

    Attributes:
        id: Id of the reporting event; one row per reporting event.
        reporter_pubkey: Author of the reporting event.
        reported_pubkey: Key named by the report's first ``p`` tag.
        report_type: Classification label (``spam``, ``nudity``, ...).
        content: Free-text explanation from the reporter.
        reported_event_id: Event named by the first ``e`` tag, if any.
        created_at: Unix timestamp of the reporting event.
    """

    id: str
    reporter_pubkey: str
    reported_pubkey: str
    report_type: str
    content: str = ""
    reported_event_id: str | None = None
    created_at: int = 0

    def __post_init__(self) -> None:
        validate_hex64(self.id, "id")
        validate_hex64(self.reporter_pubkey, "reporter_pubkey")
        validate_str_not_empty(self.reported_pubkey, "reported_pubkey")
        validate_str_not_empty(self.report_type, "report_type")
        validate_str_no_null(self.content, "content")
        if self.reported_event_id is not None:
            validate_str_no_null(self.reported_event_id, "reported_event_id")
            if not self.reported_event_id:
                object.__setattr__(self, "reported_event_id", None)
        validate_int(self.created_at, "created_at")

    @property
    def subject(self) -> str:
        """The moderation subject: the reported event if any, else the reported key."""
        return self.reported_event_id or self.reported_pubkey

    def to_db_params(self) -> ReportDbParams:
        return ReportDbParams(
            id=self.id,
            reporter_pubkey=self.reporter_pubkey,
            reported_event_id=self.reported_event_id,
            reported_pubkey=self.reported_pubkey,
            report_type=self.report_type,
            content=self.content,
            created_at=datetime.fromtimestamp(self.created_at, UTC).replace(tzinfo=None),
        )


@dataclass(frozen=True, slots=True)
class BanEventResult:
    """Outcome of [ManagementApi.ban_event()][relayguard.moderation.api.ManagementApi.ban_event].

    The ban record is committed before the storage cascade runs, so an
    instance always means the ban itself is in place. ``cascade_error`` is
    set when the stored copy of the event could not be looked up or
    deleted.

    Attributes:
        event_id: The banned event id.
        reports_resolved: Number of reports closed by the ban.
        deleted: Number of stored events deleted by the cascade.
        cascade_error: Why the cascade failed, or None.
    """

    event_id: str
    reports_resolved: int = 0
    deleted: int = 0
    cascade_error: str | None = None

    @property
    def ok(self) -> bool:
        """True when the ban and its cascade both completed."""
        return self.cascade_error is None
