"""
Immutable Nostr event as seen by the moderation layer.

The relay engine hands events over after it has verified their signatures,
so this model only checks the shape the policies rely on: hex identifiers,
integer timestamp and kind, and string-only tags. Tags are normalized to
tuples so an [Event][relayguard.models.event.Event] is hashable and cannot
be mutated by a policy.

See Also:
    [Filter][relayguard.models.filter.Filter]: The mutable subscription
        filter evaluated by the filter chain.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ._validation import (
    validate_hex64,
    validate_int,
    validate_str_no_null,
    validate_tags,
)


if TYPE_CHECKING:
    from nostr_sdk import Event as NostrEvent


Tag = tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Event:
    """Immutable Nostr event.

    Attributes:
        id: Event id, 64 lowercase hex characters.
        pubkey: Author public key, 64 lowercase hex characters.
        created_at: Unix timestamp.
        kind: Event kind.
        tags: Tag arrays, each a tuple of strings.
        content: Raw content string.
        sig: Schnorr signature (hex), already verified by the relay engine.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If an identifier is not 64-char hex, a number is
            negative, or a string contains null bytes.

    Examples:
        ```python
        event = Event.from_dict(json.loads(raw))
        event.first_tag("p")  # ("p", "<pubkey>", "spam") or None
        ```
    """

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: tuple[Tag, ...] = ()
    content: str = ""
    sig: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.tags, list):
            object.__setattr__(self, "tags", tuple(tuple(tag) for tag in self.tags))
        validate_hex64(self.id, "id")
        validate_hex64(self.pubkey, "pubkey")
        validate_int(self.created_at, "created_at")
        validate_int(self.kind, "kind")
        validate_tags(self.tags, "tags")
        validate_str_no_null(self.content, "content")
        validate_str_no_null(self.sig, "sig")

    def first_tag(self, name: str) -> Tag | None:
        """Return the first tag whose name is *name* and has a value, or None."""
        for tag in self.tags:
            if len(tag) >= 2 and tag[0] == name:  # noqa: PLR2004
                return tag
        return None

    def tag_values(self, name: str) -> list[str]:
        """Return the first value of every tag named *name*, in order."""
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]  # noqa: PLR2004

    def to_dict(self) -> dict[str, Any]:
        """Return the NIP-01 JSON object representation."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        """Build an Event from a NIP-01 JSON object.

        Raises:
            KeyError: If ``id``, ``pubkey``, ``created_at`` or ``kind`` is missing.
        """
        return cls(
            id=data["id"],
            pubkey=data["pubkey"],
            created_at=data["created_at"],
            kind=data["kind"],
            tags=tuple(tuple(tag) for tag in data.get("tags") or ()),
            content=data.get("content", ""),
            sig=data.get("sig", ""),
        )

    @classmethod
    def from_nostr(cls, event: NostrEvent) -> Event:
        """Convert a ``nostr_sdk.Event`` (as produced by relay engines and clients)."""
        return cls.from_dict(json.loads(event.as_json()))
