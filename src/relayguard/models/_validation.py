"""Shared validation helpers for the frozen dataclass models.

Private module. Used by ``__post_init__`` methods in sibling modules so
invalid instances never escape their constructor.
"""

from __future__ import annotations

import re
from typing import Any


_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def validate_instance(value: Any, expected: type, name: str) -> None:
    """Raise ``TypeError`` if *value* is not an instance of *expected*."""
    if not isinstance(value, expected):
        article = "an" if expected.__name__[0] in "AEIOUaeiou" else "a"
        raise TypeError(f"{name} must be {article} {expected.__name__}, got {type(value).__name__}")


def validate_int(value: Any, name: str, *, minimum: int = 0, maximum: int | None = None) -> None:
    """Raise if *value* is not an ``int`` (``bool`` excluded) within bounds."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < minimum or (maximum is not None and value > maximum):
        upper = "" if maximum is None else f" and <= {maximum}"
        raise ValueError(f"{name} must be >= {minimum}{upper}, got {value}")


def validate_str_no_null(value: Any, name: str) -> None:
    """Raise if *value* is not a ``str`` or contains null bytes."""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {type(value).__name__}")
    if "\x00" in value:
        raise ValueError(f"{name} contains null bytes")


def validate_str_not_empty(value: Any, name: str) -> None:
    """Raise if *value* is not a non-empty ``str`` without null bytes."""
    validate_str_no_null(value, name)
    if not value:
        raise ValueError(f"{name} must not be empty")


def validate_hex64(value: Any, name: str) -> None:
    """Raise if *value* is not a lowercase 64-character hex string."""
    validate_str_no_null(value, name)
    if not _HEX64.match(value):
        raise ValueError(f"{name} must be 64 lowercase hex characters, got {value!r}")


def validate_tags(value: Any, name: str) -> None:
    """Raise if *value* is not a tuple of tuples of strings."""
    validate_instance(value, tuple, name)
    for i, tag in enumerate(value):
        validate_instance(tag, tuple, f"{name}[{i}]")
        for item in tag:
            validate_str_no_null(item, f"{name}[{i}] item")
