"""
Structured logging with key=value and JSON output support.

Thin layer over the standard library ``logging`` module. Every log call
takes a snake_case event name plus keyword fields, rendered either as
``key=value`` pairs (default) or as one JSON object per line.

The ``StructuredFormatter`` reads the fields from the ``structured_kv``
extra attached by [Logger][relayguard.core.logger.Logger]. Installed on the
root handler by the CLI, it gives plain ``logging.getLogger()`` records the
same ``level name message`` prefix.

Examples:
    ```python
    from relayguard.core.logger import Logger

    logger = Logger("policy")
    logger.warning("pubkey_lookup_failed", pubkey="ab12...", error="timeout")
    # Output: warning policy pubkey_lookup_failed pubkey=ab12... error=timeout
    ```
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import Any


_DEFAULT_MAX_VALUE_LENGTH = 1000


def _truncate(value: str, max_length: int | None) -> str:
    if max_length and len(value) > max_length:
        return value[:max_length] + f"...<truncated {len(value) - max_length} chars>"
    return value


def format_kv_pairs(
    kwargs: dict[str, Any],
    max_value_length: int | None = _DEFAULT_MAX_VALUE_LENGTH,
    prefix: str = " ",
) -> str:
    """Format a dictionary as space-separated key=value pairs.

    Values containing whitespace, equals signs or quotes are escaped and
    wrapped in double quotes; empty values are rendered as ``key=""``.

    Args:
        kwargs: Key-value pairs to format.
        max_value_length: Maximum characters per value before truncation.
            Pass None to disable truncation.
        prefix: String prepended to a non-empty result.

    Returns:
        Formatted string, or ``""`` if *kwargs* is empty.
    """
    if not kwargs:
        return ""

    parts = []
    for key, value in kwargs.items():
        s = _truncate(str(value), max_value_length)
        if not s or any(c in s for c in (" ", "=", '"', "'")):
            escaped = s.replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'{key}="{escaped}"')
        else:
            parts.append(f"{key}={s}")
    return prefix + " ".join(parts)


class StructuredFormatter(logging.Formatter):
    """Render log records as ``level name message key=value ...``."""

    def format(self, record: logging.LogRecord) -> str:
        base = f"{record.levelname.lower()} {record.name} {record.getMessage()}"
        extra: dict[str, Any] = getattr(record, "structured_kv", {})
        if extra:
            base += format_kv_pairs(extra)
        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)
        return base


class Logger:
    """Structured logger that attaches keyword arguments to each record.

    Mirrors the standard logging API (``debug`` through ``critical`` and
    ``exception``), each accepting an event name and arbitrary fields.

    Examples:
        ```python
        logger = Logger("management")
        logger.info("event_banned", event_id="ff00...", deleted=1)
        ```
    """

    def __init__(
        self,
        name: str,
        *,
        json_output: bool = False,
        max_value_length: int | None = _DEFAULT_MAX_VALUE_LENGTH,
    ) -> None:
        """Initialize a structured logger.

        Args:
            name: Name passed to ``logging.getLogger``.
            json_output: Emit JSON objects instead of key=value pairs.
            max_value_length: Truncate individual values beyond this length.
        """
        self._logger = logging.getLogger(name)
        self._json_output = json_output
        self._max_value_length = max_value_length

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, kwargs: dict[str, Any], *, exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        if self._json_output:
            record = {
                "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
                "level": logging.getLevelName(level).lower(),
                "service": self._logger.name,
                "message": msg,
                **kwargs,
            }
            self._logger.log(level, json.dumps(record, default=str), exc_info=exc_info)
            return

        extra = {
            "structured_kv": {
                k: _truncate(str(v), self._max_value_length) for k, v in kwargs.items()
            }
        }
        self._logger.log(level, msg, extra=extra, exc_info=exc_info)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, msg, kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log at ERROR level with the active exception's traceback."""
        self._log(logging.ERROR, msg, kwargs, exc_info=True)
