"""Shared constants for the models layer."""

from __future__ import annotations

from enum import IntEnum, StrEnum


class EventKind(IntEnum):
    """Nostr event kinds the moderation layer inspects.

    Attributes:
        SET_METADATA: Kind 0 -- profile metadata, JSON object content (NIP-01).
        CONTACTS: Kind 3 -- follow list (NIP-02).
        GIFT_WRAP: Kind 1059 -- encrypted envelope for private messages
            (NIP-59, used by NIP-17). Readable only by its ``p``-tagged
            recipient.
        REPORT: Kind 1984 -- abuse report (NIP-56).
        HTTP_AUTH: Kind 27235 -- HTTP request authorization (NIP-98).
    """

    SET_METADATA = 0
    CONTACTS = 3
    GIFT_WRAP = 1059
    REPORT = 1984
    HTTP_AUTH = 27_235


class ServiceName(StrEnum):
    """Service identifiers used in logging and metrics labels."""

    MANAGEMENT = "management"


EVENT_KIND_MAX = 65_535
