"""Debug logging infrastructure for wire protocol diagnostics.

Provides logger instances under the ``ssoapi.wire.*`` hierarchy and
formatting helpers for Arrow IPC objects.  Enabling
``logging.getLogger("ssoapi.wire").setLevel(logging.DEBUG)`` gives full
visibility into the frames crossing the process boundary.

All formatting helpers return ``str`` and never log directly.
They are designed to be called inside ``isEnabledFor`` guards so
there is zero overhead when debug logging is disabled.
"""

from __future__ import annotations

import logging
from typing import Any

import pyarrow as pa

# ---------------------------------------------------------------------------
# Logger hierarchy: ssoapi.wire.*
# ---------------------------------------------------------------------------

wire_frame_logger = logging.getLogger("ssoapi.wire.frame")
"""Frame serialization / deserialization."""

wire_transport_logger = logging.getLogger("ssoapi.wire.transport")
"""Link lifecycle (bind, handshake, loss, unbind)."""

wire_callback_logger = logging.getLogger("ssoapi.wire.callback")
"""Callback deliveries from the service."""

# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 80
"""Maximum repr length for individual values in fmt_metadata / fmt_kwargs."""

_REDACTED_NAMES = frozenset({"password", "session_token"})
"""Parameter and column names whose values never reach a log line."""


def fmt_schema(schema: pa.Schema) -> str:
    """Format an Arrow schema compactly.

    Returns:
        ``"(mail: string, password: string)"`` or ``"(empty)"`` for zero-field schemas.

    """
    if len(schema) == 0:
        return "(empty)"
    fields = ", ".join(f"{f.name}: {f.type}" for f in schema)
    return f"({fields})"


def fmt_metadata(metadata: pa.KeyValueMetadata | None) -> str:
    """Format Arrow custom metadata compactly.

    Returns:
        ``"{ssoapi.frame='call', ssoapi.method='login'}"``
        or ``"None"`` when metadata is absent.

    """
    if metadata is None:
        return "None"
    parts: list[str] = []
    for k, v in metadata.items():
        key = k.decode("utf-8", errors="replace") if isinstance(k, bytes) else k
        val = v.decode("utf-8", errors="replace") if isinstance(v, bytes) else v
        if len(val) > _MAX_VALUE_LEN:
            val = val[:_MAX_VALUE_LEN] + "..."
        parts.append(f"{key}={val!r}")
    return "{" + ", ".join(parts) + "}"


def fmt_batch(batch: pa.RecordBatch) -> str:
    """Format a RecordBatch summary.

    Returns:
        ``"RecordBatch(rows=1, cols=5, schema=(guid: string, ...), bytes=128)"``

    """
    return (
        f"RecordBatch(rows={batch.num_rows}, cols={batch.num_columns}, "
        f"schema={fmt_schema(batch.schema)}, bytes={batch.nbytes})"
    )


def fmt_kwargs(kwargs: dict[str, Any]) -> str:
    """Format keyword arguments compactly, masking credentials.

    Returns:
        ``"mail='a@b.com', password='***'"`` with long repr values truncated.

    """
    if not kwargs:
        return ""
    parts: list[str] = []
    for k, v in kwargs.items():
        r = "'***'" if k in _REDACTED_NAMES else repr(v)
        if len(r) > _MAX_VALUE_LEN:
            r = r[:_MAX_VALUE_LEN] + "..."
        parts.append(f"{k}={r}")
    return ", ".join(parts)
