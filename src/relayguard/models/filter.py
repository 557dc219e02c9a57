"""
Subscription filter (NIP-01 ``REQ`` filter).

Unlike the other models, [Filter][relayguard.models.filter.Filter] is
mutable: filter policies are allowed to rewrite it in place before the
relay engine runs the query, e.g. to pin the ``#p`` constraint of a
gift-wrap query to the authenticated user.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


_TAG_PREFIX = "#"


@dataclass(slots=True)
class Filter:
    """A NIP-01 subscription filter.

    Attributes:
        ids: Event ids to match.
        authors: Author public keys to match.
        kinds: Event kinds to match.
        since: Lower bound on ``created_at`` (inclusive).
        until: Upper bound on ``created_at`` (inclusive).
        limit: Maximum number of events to return.
        tags: Single-letter tag constraints keyed without the ``#``
            prefix, e.g. ``{"p": ["<pubkey>"]}``.
    """

    ids: list[str] | None = None
    authors: list[str] | None = None
    kinds: list[int] | None = None
    since: int | None = None
    until: int | None = None
    limit: int | None = None
    tags: dict[str, list[str]] = field(default_factory=dict)

    def requests_kind(self, kind: int) -> bool:
        """Whether the filter explicitly asks for *kind*."""
        return self.kinds is not None and kind in self.kinds

    def to_dict(self) -> dict[str, Any]:
        """Return the NIP-01 JSON object, omitting unset fields."""
        data: dict[str, Any] = {}
        for name in ("ids", "authors", "kinds", "since", "until", "limit"):
            value = getattr(self, name)
            if value is not None:
                data[name] = list(value) if isinstance(value, list) else value
        for name, values in self.tags.items():
            data[f"{_TAG_PREFIX}{name}"] = list(values)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Filter:
        """Build a Filter from a NIP-01 JSON object.

        Keys of the form ``#x`` become tag constraints; unknown keys are
        ignored.

        Raises:
            TypeError: If a list field or tag constraint is not a list.
        """
        kwargs: dict[str, Any] = {}
        for name in ("ids", "authors", "kinds"):
            if data.get(name) is not None:
                if not isinstance(data[name], list):
                    raise TypeError(f"{name} must be a list")
                kwargs[name] = list(data[name])
        for name in ("since", "until", "limit"):
            if data.get(name) is not None:
                kwargs[name] = int(data[name])

        tags: dict[str, list[str]] = {}
        for key, values in data.items():
            if key.startswith(_TAG_PREFIX) and len(key) == len(_TAG_PREFIX) + 1:
                if not isinstance(values, list):
                    raise TypeError(f"{key} must be a list")
                tags[key[1:]] = [str(v) for v in values]
        return cls(**kwargs, tags=tags)
