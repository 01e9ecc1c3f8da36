"""Wire protocol read/write helpers and serialization.

Every frame is one complete Arrow IPC stream (schema + 1 batch + EOS)
written to the Link.  Routing lives in the batch's custom metadata:

- ``ssoapi.frame``: the :class:`FrameKind`
- ``ssoapi.request_version``: wire-protocol version, checked on read
- ``ssoapi.method`` / ``ssoapi.call_id``: on ``call``, ``return`` and ``error``
- ``ssoapi.callback_id`` / ``ssoapi.record_type``: on ``callback``
- ``ssoapi.target.*``: on ``bind``

Frame sequence on one Link::

    Client→Service: bind(target)
    Service→Client: bound | refused
    Client→Service: call(method, call_id[, callback_id]) ...
    Service→Client: return(call_id) | error(call_id) ... interleaved with
                    callback(callback_id, on_outcome | on_data_received) ...

Callers are responsible for serialising concurrent writers on one stream.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import pyarrow as pa

from ssoapi.ipc._common import ProtocolError
from ssoapi.ipc._debug import fmt_batch, fmt_kwargs, fmt_metadata, wire_frame_logger
from ssoapi.ipc._types import _EMPTY_SCHEMA, RemoteMethodInfo
from ssoapi.metadata import (
    CALL_ID_KEY,
    CALLBACK_ID_KEY,
    ERROR_MESSAGE_KEY,
    ERROR_TYPE_KEY,
    FRAME_KEY,
    RECORD_TYPE_KEY,
    REQUEST_VERSION,
    REQUEST_VERSION_KEY,
    RPC_METHOD_KEY,
    decode_metadata,
    encode_metadata,
)
from ssoapi.models import Account, AuthResult, SaResultData
from ssoapi.utils import ArrowSerializableDataclass, empty_batch, read_single_record_batch, serialize_record_batch

_RECORD_TYPES: dict[str, type[ArrowSerializableDataclass]] = {
    cls.__name__: cls for cls in (Account, AuthResult, SaResultData)
}


class FrameKind(Enum):
    """Kinds of frames exchanged over a Link."""

    BIND = "bind"
    BOUND = "bound"
    REFUSED = "refused"
    CALL = "call"
    RETURN = "return"
    ERROR = "error"
    CALLBACK = "callback"


@dataclass(frozen=True)
class Frame:
    """One decoded frame: its kind, data batch, and routing metadata."""

    kind: FrameKind
    batch: pa.RecordBatch
    metadata: dict[str, str] = field(default_factory=dict)

    def _get(self, key: bytes) -> str:
        try:
            return self.metadata[key.decode()]
        except KeyError:
            raise ProtocolError(f"{self.kind.value} frame is missing '{key.decode()}'") from None

    @property
    def method(self) -> str:
        """Method name (``call``/``return``/``error``) or callback name (``callback``)."""
        return self._get(RPC_METHOD_KEY)

    @property
    def call_id(self) -> int:
        """Correlation id of a call and its reply."""
        return int(self._get(CALL_ID_KEY))

    @property
    def callback_id(self) -> int:
        """Id of the callback target a ``callback`` frame is addressed to."""
        return int(self._get(CALLBACK_ID_KEY))

    def get(self, key: bytes, default: str | None = None) -> str | None:
        """Return an optional metadata value."""
        return self.metadata.get(key.decode(), default)


def write_frame(
    writer: Any,
    kind: FrameKind,
    batch: pa.RecordBatch | None = None,
    metadata: dict[bytes, bytes] | None = None,
) -> None:
    """Write one frame as a complete IPC stream and flush it."""
    md: dict[bytes, bytes] = {FRAME_KEY: kind.value.encode(), REQUEST_VERSION_KEY: REQUEST_VERSION}
    if metadata:
        md.update(metadata)
    custom_metadata = encode_metadata(md)
    if batch is None:
        batch = empty_batch(_EMPTY_SCHEMA)
    if wire_frame_logger.isEnabledFor(logging.DEBUG):
        wire_frame_logger.debug("Write frame: %s, metadata=%s", fmt_batch(batch), fmt_metadata(custom_metadata))
    serialize_record_batch(writer, batch, custom_metadata)
    flush = getattr(writer, "flush", None)
    if flush is not None:
        flush()


def read_frame(reader: Any) -> Frame:
    """Read the next frame from *reader*.

    Raises:
        EOFError: If the peer closed the stream between frames.
        IPCError: If the bytes are not a valid single-batch IPC stream.
        ProtocolError: If the version or frame kind is missing or unknown.

    """
    batch, custom_metadata = read_single_record_batch(reader, context="frame")
    metadata = decode_metadata(custom_metadata)
    version = metadata.get(REQUEST_VERSION_KEY.decode())
    if version != REQUEST_VERSION.decode():
        raise ProtocolError(f"Unsupported request version {version!r}, expected {REQUEST_VERSION.decode()!r}")
    try:
        kind = FrameKind(metadata.get(FRAME_KEY.decode(), ""))
    except ValueError:
        raise ProtocolError(f"Unknown frame kind in metadata {fmt_metadata(custom_metadata)}") from None
    if wire_frame_logger.isEnabledFor(logging.DEBUG):
        wire_frame_logger.debug("Read frame: %s, metadata=%s", fmt_batch(batch), fmt_metadata(custom_metadata))
    return Frame(kind, batch, metadata)


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------


def write_call(
    writer: Any,
    info: RemoteMethodInfo,
    kwargs: dict[str, str],
    call_id: int,
    callback_id: int | None = None,
) -> None:
    """Write a ``call`` frame carrying *kwargs* as a single-row batch."""
    schema = info.params_schema
    if len(schema) == 0:
        batch = empty_batch(schema)
    else:
        batch = pa.RecordBatch.from_arrays([pa.array([kwargs[f.name]], type=f.type) for f in schema], schema=schema)
    md = {RPC_METHOD_KEY: info.name.encode(), CALL_ID_KEY: str(call_id).encode()}
    if callback_id is not None:
        md[CALLBACK_ID_KEY] = str(callback_id).encode()
    if wire_frame_logger.isEnabledFor(logging.DEBUG):
        wire_frame_logger.debug("Call: method=%s, call_id=%d, kwargs={%s}", info.name, call_id, fmt_kwargs(kwargs))
    write_frame(writer, FrameKind.CALL, batch, md)


def read_call_kwargs(frame: Frame, info: RemoteMethodInfo) -> dict[str, str]:
    """Extract the keyword arguments of a ``call`` frame.

    Raises:
        ProtocolError: If the batch does not match the method's parameters.

    """
    names = info.param_names
    if not names:
        return {}
    if frame.batch.num_rows != 1 or frame.batch.schema.names != names:
        raise ProtocolError(
            f"Malformed arguments for '{info.name}': expected one row of {names}, "
            f"got {frame.batch.num_rows} row(s) of {frame.batch.schema.names}"
        )
    row: dict[str, str] = frame.batch.to_pylist()[0]
    return row


def encode_result(info: RemoteMethodInfo, value: object) -> pa.RecordBatch:
    """Encode a method's return value as the reply batch.

    ``None`` is a zero-row batch; a record is one row; a list is one row per
    element (``None`` elements are dropped).
    """
    record = info.result_record
    if record is None or value is None:
        return empty_batch(info.result_schema)
    if info.result_is_list:
        items = [v for v in value if v is not None]  # type: ignore[attr-defined]
        return record.batch_of(items)
    if not isinstance(value, record):
        raise TypeError(f"'{info.name}' returned {type(value).__name__}, expected {record.__name__}")
    return value.to_batch()


def decode_result(info: RemoteMethodInfo, batch: pa.RecordBatch) -> Any:
    """Decode a reply batch back into the method's return value."""
    record = info.result_record
    if record is None:
        return None
    if info.result_is_list:
        return record.list_from_batch(batch)
    if batch.num_rows == 0:
        return None
    return record.deserialize_from_batch(batch)


def write_return(writer: Any, info: RemoteMethodInfo, call_id: int, value: object) -> None:
    """Write the ``return`` frame for *call_id*."""
    md = {RPC_METHOD_KEY: info.name.encode(), CALL_ID_KEY: str(call_id).encode()}
    write_frame(writer, FrameKind.RETURN, encode_result(info, value), md)


def write_error(writer: Any, method: str, call_id: int, exc: BaseException) -> None:
    """Write an ``error`` frame describing *exc* for *call_id*."""
    md = {
        RPC_METHOD_KEY: method.encode(),
        CALL_ID_KEY: str(call_id).encode(),
        ERROR_TYPE_KEY: type(exc).__name__.encode(),
        ERROR_MESSAGE_KEY: str(exc).encode(),
    }
    write_frame(writer, FrameKind.ERROR, None, md)


def read_error(frame: Frame) -> tuple[str, str]:
    """Return ``(error_type, error_message)`` of an ``error`` frame."""
    return frame.get(ERROR_TYPE_KEY, "RemoteError") or "RemoteError", frame.get(ERROR_MESSAGE_KEY, "") or ""


# ---------------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------------


def write_callback(writer: Any, callback_id: int, method: str, record: ArrowSerializableDataclass) -> None:
    """Write a ``callback`` frame delivering *record* to ``method`` of a callback target."""
    md = {
        RPC_METHOD_KEY: method.encode(),
        CALLBACK_ID_KEY: str(callback_id).encode(),
        RECORD_TYPE_KEY: type(record).__name__.encode(),
    }
    write_frame(writer, FrameKind.CALLBACK, record.to_batch(), md)


def read_callback_record(frame: Frame) -> ArrowSerializableDataclass:
    """Decode the record carried by a ``callback`` frame.

    Raises:
        ProtocolError: If the record type is missing or unknown.

    """
    name = frame.get(RECORD_TYPE_KEY)
    record = _RECORD_TYPES.get(name or "")
    if record is None:
        raise ProtocolError(f"Unknown callback record type {name!r}")
    return record.deserialize_from_batch(frame.batch)
