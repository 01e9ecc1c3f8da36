# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Shared helpers for ``pa.KeyValueMetadata`` used on the SSO wire.

Centralises the well-known frame routing keys (including the wire-protocol
version constant ``REQUEST_VERSION``) and metadata encoding/decoding so the
client link, the service host and the debug helpers agree on one spelling.
"""

from __future__ import annotations

import pyarrow as pa

__all__ = [
    "CALLBACK_ID_KEY",
    "CALL_ID_KEY",
    "ERROR_MESSAGE_KEY",
    "ERROR_TYPE_KEY",
    "FRAME_KEY",
    "RECORD_TYPE_KEY",
    "REQUEST_VERSION",
    "REQUEST_VERSION_KEY",
    "RPC_METHOD_KEY",
    "TARGET_ACTION_KEY",
    "TARGET_CLASS_KEY",
    "TARGET_PACKAGE_KEY",
    "decode_metadata",
    "encode_metadata",
]

# ---------------------------------------------------------------------------
# Well-known metadata keys (bytes, matching what appears on the wire)
# ---------------------------------------------------------------------------

FRAME_KEY = b"ssoapi.frame"
RPC_METHOD_KEY = b"ssoapi.method"
CALL_ID_KEY = b"ssoapi.call_id"
CALLBACK_ID_KEY = b"ssoapi.callback_id"
RECORD_TYPE_KEY = b"ssoapi.record_type"
REQUEST_VERSION_KEY = b"ssoapi.request_version"
REQUEST_VERSION = b"1"

# Bind handshake: the exact target the client asks for
TARGET_PACKAGE_KEY = b"ssoapi.target.package"
TARGET_CLASS_KEY = b"ssoapi.target.class"
TARGET_ACTION_KEY = b"ssoapi.target.action"

# Error frames
ERROR_TYPE_KEY = b"ssoapi.error_type"
ERROR_MESSAGE_KEY = b"ssoapi.error_message"

# ---------------------------------------------------------------------------
# Encode / decode
# ---------------------------------------------------------------------------


def encode_metadata(metadata: dict[str, str] | dict[bytes, bytes]) -> pa.KeyValueMetadata:
    """Encode a plain dict to ``pa.KeyValueMetadata`` with bytes keys/values."""
    return pa.KeyValueMetadata(
        {
            (k if isinstance(k, bytes) else k.encode()): (v if isinstance(v, bytes) else v.encode())
            for k, v in metadata.items()
        }
    )


def decode_metadata(metadata: pa.KeyValueMetadata | None) -> dict[str, str]:
    """Decode ``pa.KeyValueMetadata`` to a ``dict[str, str]`` (empty when ``None``)."""
    if metadata is None:
        return {}
    result: dict[str, str] = {}
    for k, v in metadata.items():
        key = k.decode("utf-8", errors="replace") if isinstance(k, bytes) else k
        val = v.decode("utf-8", errors="replace") if isinstance(v, bytes) else v
        result[key] = val
    return result
