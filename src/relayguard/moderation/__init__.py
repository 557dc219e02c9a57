"""Report intake (NIP-56) and the owner-only management API (NIP-86)."""

from .api import OWNER_ONLY_DETAIL, EventStore, ManagementApi
from .reports import ReportIntake, extract_report


__all__ = [
    "OWNER_ONLY_DETAIL",
    "EventStore",
    "ManagementApi",
    "ReportIntake",
    "extract_report",
]
