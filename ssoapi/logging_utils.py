# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""JSON formatter for structured logging output.

Provides :class:`SsoJsonFormatter`, a :class:`logging.Formatter` subclass
that serializes log records as single-line JSON objects.  All ``extra``
fields attached to a record (``server_id``, ``method``, ``error_type``, ...)
are included automatically.

This module is **not** auto-imported by ``ssoapi``; import it explicitly::

    from ssoapi.logging_utils import SsoJsonFormatter
"""

from __future__ import annotations

import json
import logging

__all__ = ["SsoJsonFormatter", "configure_logging"]

# Attribute names every LogRecord has by default; anything else came from ``extra``.
_DEFAULT_RECORD_ATTRS: frozenset[str] = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()) | {
    "message",
    "asctime",
}

_RESERVED_KEYS: frozenset[str] = frozenset({"timestamp", "level", "logger", "message", "exception", "stack_info"})


class SsoJsonFormatter(logging.Formatter):
    """JSON formatter that emits all structured extra fields.

    ``timestamp``, ``level``, ``logger`` and ``message`` are always present
    and cannot be overwritten by extra fields of the same name.  Exception
    text goes under ``"exception"``.  Non-serializable values are coerced
    with ``str``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single-line JSON string."""
        record.message = record.getMessage()
        obj: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            **{k: v for k, v in record.__dict__.items() if k not in _DEFAULT_RECORD_ATTRS and k not in _RESERVED_KEYS},
        }
        if record.exc_info and record.exc_info[1]:
            obj["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            obj["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(obj, default=str)


def configure_logging(*, verbose: bool = False, json_logs: bool = False) -> logging.Handler:
    """Attach a stderr handler to the ``ssoapi`` logger and return it.

    Args:
        verbose: Log at ``DEBUG`` (including ``ssoapi.wire.*``) instead of ``WARNING``.
        json_logs: Use :class:`SsoJsonFormatter` instead of a plain text format.

    """
    handler = logging.StreamHandler()
    if json_logs:
        handler.setFormatter(SsoJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger = logging.getLogger("ssoapi")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    return handler
