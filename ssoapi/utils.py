# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""IPC utility functions for Arrow message reading and writing.

This module provides helper functions for the single-batch IPC streams that
make up every SSO wire frame, and the serialization mixin used by the data
transfer entities (``Account``, ``AuthResult``, ``SaResultData``).

KEY FUNCTIONS
-------------
serialize_record_batch(destination, batch, metadata) : Write one IPC stream
serialize_record_batch_bytes(batch, metadata) : Same, returning bytes
deserialize_record_batch(data) : Bytes back to (batch, metadata)
read_single_record_batch(stream, context) : Read and validate one IPC stream
empty_batch(schema) : Zero-row batch for a schema

KEY CLASSES
-----------
ArrowSerializableDataclass : Mixin giving frozen dataclasses an auto-derived
    ``ARROW_SCHEMA`` plus single-row and multi-row (de)serialization.

IPCError : Exception raised on IPC communication errors

"""

import os
import sys
from dataclasses import MISSING
from dataclasses import fields as dataclass_fields
from io import BytesIO
from types import UnionType
from typing import Any, ClassVar, Self, Union, get_args, get_origin, get_type_hints

import pyarrow as pa
import structlog
from pyarrow import ipc

from ssoapi.metadata import decode_metadata

__all__ = [
    "ArrowSerializableDataclass",
    "IPCError",
    "deserialize_record_batch",
    "empty_batch",
    "read_single_record_batch",
    "serialize_record_batch",
    "serialize_record_batch_bytes",
]

# IPC debug logging - enable with SSOAPI_IPC_DEBUG=1
_IPC_DEBUG = os.environ.get("SSOAPI_IPC_DEBUG", "").lower() in ("1", "true", "yes")
_ipc_log: structlog.stdlib.BoundLogger | None = None


def _get_ipc_log() -> structlog.stdlib.BoundLogger:
    """Get or create the IPC debug logger, configured to write to stderr."""
    global _ipc_log
    if _ipc_log is None:
        structlog.configure(
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(0),
            logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        )
        _ipc_log = structlog.get_logger().bind(component="ipc")
    return _ipc_log


def _schema_to_dict(schema: pa.Schema) -> dict[str, str]:
    """Convert Arrow schema to dict of {name: type} for logging."""
    return {field.name: str(field.type) for field in schema}


class IPCError(Exception):
    """Error during IPC message reading or writing."""


def empty_batch(schema: pa.Schema) -> pa.RecordBatch:
    """Return an empty batch conforming to the schema."""
    return pa.RecordBatch.from_arrays(
        [pa.array([], type=field.type) for field in schema],
        schema=schema,
    )


def serialize_record_batch(
    destination: Any,
    batch: pa.RecordBatch,
    custom_metadata: pa.KeyValueMetadata | None = None,
) -> None:
    """Write a RecordBatch as a complete Arrow IPC stream.

    The stream carries the schema, the batch (with *custom_metadata*), and the
    end-of-stream marker, so the reader can consume exactly one frame.

    Args:
        destination: Binary sink (socket file, pipe, ``BytesIO``).
        batch: The RecordBatch to serialize.
        custom_metadata: Optional metadata attached to the batch.

    """
    with ipc.RecordBatchStreamWriter(destination, batch.schema) as writer:
        writer.write_batch(batch, custom_metadata=custom_metadata)

    if _IPC_DEBUG:
        _get_ipc_log().debug(
            "ipc_write",
            num_rows=batch.num_rows,
            schema=_schema_to_dict(batch.schema),
            metadata=decode_metadata(custom_metadata),
        )


def serialize_record_batch_bytes(
    batch: pa.RecordBatch,
    custom_metadata: pa.KeyValueMetadata | None = None,
) -> bytes:
    """Serialize a RecordBatch to bytes in Arrow IPC stream format."""
    buffer = BytesIO()
    serialize_record_batch(buffer, batch, custom_metadata)
    return buffer.getvalue()


def deserialize_record_batch(
    data: bytes,
) -> tuple[pa.RecordBatch, pa.KeyValueMetadata | None]:
    """Deserialize bytes back to a RecordBatch with custom metadata.

    Args:
        data: Bytes containing a serialized RecordBatch in Arrow IPC stream format.

    Returns:
        Tuple of (RecordBatch, custom_metadata).

    Raises:
        IPCError: If no batch is found.

    """
    with ipc.open_stream(pa.BufferReader(data)) as reader:
        try:
            batch, custom_metadata = reader.read_next_batch_with_custom_metadata()
        except StopIteration:
            raise IPCError("No RecordBatch found in provided data") from None

        if _IPC_DEBUG:
            _get_ipc_log().debug(
                "ipc_read",
                num_rows=batch.num_rows,
                schema=_schema_to_dict(batch.schema),
                metadata=decode_metadata(custom_metadata),
                nbytes=len(data),
            )
        return batch, custom_metadata


def read_single_record_batch(
    stream: Any,
    context: str = "frame",
) -> tuple[pa.RecordBatch, pa.KeyValueMetadata | None]:
    """Read exactly one record batch from the next IPC stream on *stream*.

    Args:
        stream: Binary stream to read from (socket file, pipe reader).
        context: Description for error messages (e.g. ``"frame"``).

    Returns:
        Tuple of (RecordBatch, custom_metadata).

    Raises:
        EOFError: If the stream is closed before a new IPC stream starts.
        IPCError: If the stream holds no batch, more than one batch, or is
            not valid Arrow IPC.

    """
    # Buffered socket/pipe readers block in peek() until data or EOF arrives
    peek = getattr(stream, "peek", None)
    if peek is not None and not peek(1):
        raise EOFError(f"{context} stream closed")
    try:
        with ipc.open_stream(stream) as reader:
            try:
                batch, custom_metadata = reader.read_next_batch_with_custom_metadata()
            except StopIteration:
                raise IPCError(f"No record batch found in {context} stream") from None

            try:
                reader.read_next_batch()
            except StopIteration:
                if _IPC_DEBUG:
                    _get_ipc_log().debug(
                        "ipc_read",
                        context=context,
                        num_rows=batch.num_rows,
                        schema=_schema_to_dict(batch.schema),
                        metadata=decode_metadata(custom_metadata),
                    )
                return batch, custom_metadata

            raise IPCError(f"Expected single record batch in {context} stream, but found multiple batches")
    except IPCError:
        raise
    except Exception as e:
        raise IPCError(f"Error reading record batch from {context} stream: {e}") from e


# =============================================================================
# ArrowSerializableDataclass - Auto-serialization mixin for dataclasses
# =============================================================================


def _is_optional_type(python_type: Any) -> tuple[Any, bool]:
    """Check if a type is Optional (X | None) and extract the inner type.

    Returns:
        Tuple of (inner_type, is_nullable).

    """
    origin = get_origin(python_type)
    args = get_args(python_type)

    if origin is UnionType or origin is Union:
        non_none_types = [t for t in args if t is not type(None)]
        if len(non_none_types) == 1 and len(args) == 2:
            return non_none_types[0], True

    return python_type, False


def _infer_arrow_type(python_type: Any) -> pa.DataType:
    """Infer Arrow type from a scalar Python type annotation.

    Raises:
        TypeError: If the type cannot be automatically inferred.

    """
    inner_type, _ = _is_optional_type(python_type)
    if inner_type is not python_type:
        return _infer_arrow_type(inner_type)

    type_map: dict[type, pa.DataType] = {
        str: pa.string(),
        bytes: pa.binary(),
        int: pa.int64(),
        float: pa.float64(),
        bool: pa.bool_(),
    }
    if python_type in type_map:
        return type_map[python_type]

    raise TypeError(f"Cannot infer Arrow type for: {python_type}")


class _ArrowSchemaDescriptor:
    """Descriptor that lazily generates ARROW_SCHEMA on first access.

    The @dataclass decorator runs after class creation, so the fields are
    only known once the schema is first requested.
    """

    def __set_name__(self, owner: type, name: str) -> None:
        self._name = name

    def __get__(self, instance: object | None, owner: type["ArrowSerializableDataclass"]) -> pa.Schema:
        cache_attr = f"_cached_{self._name}"
        if cache_attr in owner.__dict__:
            cached: pa.Schema = owner.__dict__[cache_attr]
            return cached
        schema = self._generate_schema(owner)
        setattr(owner, cache_attr, schema)
        return schema

    def _generate_schema(self, cls: type["ArrowSerializableDataclass"]) -> pa.Schema:
        """Generate ARROW_SCHEMA from dataclass field annotations."""
        type_hints = get_type_hints(cls)
        arrow_fields: list[pa.Field[Any]] = []
        for field in dataclass_fields(cls):  # type: ignore[arg-type]
            field_type = type_hints.get(field.name, field.type)
            _, nullable = _is_optional_type(field_type)
            try:
                arrow_type = _infer_arrow_type(field_type)
            except TypeError as e:
                raise TypeError(f"Cannot generate Arrow schema for {cls.__name__}.{field.name}: {e}") from e
            arrow_fields.append(pa.field(field.name, arrow_type, nullable=nullable))
        return pa.schema(arrow_fields)


class ArrowSerializableDataclass:
    """Mixin for frozen dataclasses with automatic Arrow IPC serialization.

    The ARROW_SCHEMA is generated from field annotations (``str``, ``bytes``,
    ``int``, ``float``, ``bool`` and their ``| None`` forms).  Optional fields
    are marked nullable, so a ``None`` survives the round trip as a null
    rather than an empty string.

    Attributes:
        ARROW_SCHEMA: Auto-generated Arrow schema from field annotations.

    """

    ARROW_SCHEMA: ClassVar[pa.Schema] = _ArrowSchemaDescriptor()  # type: ignore[assignment]

    def _to_row_dict(self) -> dict[str, Any]:
        """Convert instance to a dictionary for Arrow batch construction."""
        return {field.name: getattr(self, field.name) for field in dataclass_fields(self)}  # type: ignore[arg-type]

    def to_batch(self) -> pa.RecordBatch:
        """Serialize this instance to a single-row RecordBatch."""
        return pa.RecordBatch.from_pylist([self._to_row_dict()], schema=self.ARROW_SCHEMA)

    def serialize_to_bytes(self) -> bytes:
        """Serialize this instance to Arrow IPC bytes."""
        return serialize_record_batch_bytes(self.to_batch())

    @classmethod
    def batch_of(cls, instances: list[Self]) -> pa.RecordBatch:
        """Serialize a list of instances to a multi-row RecordBatch (one row each)."""
        return pa.RecordBatch.from_pylist([i._to_row_dict() for i in instances], schema=cls.ARROW_SCHEMA)

    @classmethod
    def _from_row(cls, row: dict[str, Any]) -> Self:
        """Build an instance from one row dict, honouring field defaults."""
        kwargs: dict[str, Any] = {}
        missing: list[str] = []
        for f in dataclass_fields(cls):  # type: ignore[arg-type]
            if f.name in row:
                kwargs[f.name] = row[f.name]
            elif f.default is MISSING and f.default_factory is MISSING:
                missing.append(f.name)
        if missing:
            raise ValueError(f"Missing fields in {cls.__name__} RecordBatch: {missing}. Found: {sorted(row)}")
        return cls(**kwargs)

    @classmethod
    def deserialize_from_batch(cls, batch: pa.RecordBatch) -> Self:
        """Deserialize an instance from a single-row RecordBatch.

        Raises:
            ValueError: If the batch does not hold exactly one row or misses
                a required field.

        """
        if batch.num_rows == 0:
            raise ValueError(f"Cannot deserialize {cls.__name__} from empty RecordBatch")
        if batch.num_rows > 1:
            raise ValueError(
                f"Expected single-row RecordBatch for {cls.__name__} deserialization, got {batch.num_rows} rows"
            )
        return cls._from_row(batch.to_pylist()[0])

    @classmethod
    def list_from_batch(cls, batch: pa.RecordBatch) -> list[Self]:
        """Deserialize every row of *batch* (zero rows gives an empty list)."""
        return [cls._from_row(row) for row in batch.to_pylist()]

    @classmethod
    def deserialize_from_bytes(cls, data: bytes) -> Self:
        """Deserialize an instance from Arrow IPC bytes."""
        batch, _ = deserialize_record_batch(data)
        return cls.deserialize_from_batch(batch)
