# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""IPC utility functions and the Arrow-serializable dataclass mixin.

Every request and response message of the mock service is a frozen
dataclass inheriting :class:`ArrowSerializableDataclass`.  The mixin
derives an Arrow schema from the field annotations and converts an
instance to (and from) a single-row ``RecordBatch``, so messages travel
over the wire as Arrow IPC streams.

KEY FUNCTIONS
-------------
serialize_record_batch(dest, batch, metadata) : Write a one-batch IPC stream
serialize_record_batch_bytes(batch, metadata) : Same, returning bytes
deserialize_record_batch(data) : Read the first batch of an IPC stream
empty_batch(schema) : Zero-row batch conforming to a schema

KEY CLASSES
-----------
ArrowSerializableDataclass : Mixin adding ARROW_SCHEMA and (de)serialization
IPCError : Exception raised on IPC communication errors

"""

import os
import sys
from dataclasses import MISSING
from dataclasses import fields as dataclass_fields
from enum import Enum
from io import BytesIO, IOBase
from types import UnionType
from typing import (
    Any,
    ClassVar,
    Self,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

import pyarrow as pa
import structlog
from pyarrow import ipc

from mockfs.metadata import decode_metadata

__all__ = [
    "ArrowSerializableDataclass",
    "IPCError",
    "deserialize_record_batch",
    "empty_batch",
    "serialize_record_batch",
    "serialize_record_batch_bytes",
]

# IPC debug logging - enable with MOCKFS_IPC_DEBUG=1
_IPC_DEBUG = os.environ.get("MOCKFS_IPC_DEBUG", "").lower() in ("1", "true", "yes")
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
    if len(schema) == 0:
        return pa.RecordBatch.from_pydict({}, schema=schema)
    return pa.RecordBatch.from_arrays(
        [pa.array([], type=field.type) for field in schema],
        schema=schema,
    )


def serialize_record_batch(
    destination: IOBase,
    batch: pa.RecordBatch,
    custom_metadata: pa.KeyValueMetadata | None = None,
) -> None:
    """Serialize a RecordBatch to a complete Arrow IPC stream.

    Args:
        destination: The destination to write to (must support binary writes).
        batch: The RecordBatch to serialize.
        custom_metadata: Optional metadata attached to the batch.

    """
    with ipc.new_stream(destination, batch.schema) as writer:
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
    """Serialize a RecordBatch to bytes in Arrow IPC stream format.

    Returns:
        Complete Arrow IPC stream bytes including EOS marker.

    """
    buffer = BytesIO()
    serialize_record_batch(buffer, batch, custom_metadata)
    return buffer.getvalue()


def deserialize_record_batch(
    data: bytes,
) -> tuple[pa.RecordBatch, pa.KeyValueMetadata | None]:
    """Deserialize bytes back to a RecordBatch with custom metadata.

    A stream holding only a schema (no batches) yields a zero-row batch,
    which is how messages without fields are encoded.

    Args:
        data: Bytes containing an Arrow IPC stream.

    Returns:
        Tuple of (RecordBatch, custom_metadata).

    Raises:
        IPCError: If the bytes are not a readable IPC stream.

    """
    try:
        with ipc.open_stream(pa.BufferReader(data)) as reader:
            try:
                batch, custom_metadata = reader.read_next_batch_with_custom_metadata()
            except StopIteration:
                batch, custom_metadata = empty_batch(reader.schema), None
    except pa.ArrowInvalid as e:
        raise IPCError(f"Error reading record batch: {e}") from e

    if _IPC_DEBUG:
        _get_ipc_log().debug(
            "ipc_read",
            num_rows=batch.num_rows,
            schema=_schema_to_dict(batch.schema),
            metadata=decode_metadata(custom_metadata),
            nbytes=len(data),
        )
    return batch, custom_metadata


def _validate_single_row_batch(
    data: pa.RecordBatch,
    class_name: str,
    required_fields: list[str] | None = None,
) -> dict[str, Any]:
    """Validate a RecordBatch has exactly one row and return it as a dict.

    Raises:
        ValueError: If the batch is empty, has multiple rows, or is missing
            required fields.

    """
    if data.num_rows == 0:
        raise ValueError(f"Cannot deserialize {class_name} from empty RecordBatch")
    if data.num_rows > 1:
        raise ValueError(f"Expected single-row RecordBatch for {class_name} deserialization, got {data.num_rows} rows")

    first_row: dict[str, Any] = data.to_pylist()[0]

    if required_fields:
        found_fields = set(first_row.keys())
        missing = [f for f in required_fields if f not in found_fields]
        if missing:
            raise ValueError(f"Missing fields in {class_name} RecordBatch: {missing}. Found: {sorted(found_fields)}")

    return first_row


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


def _is_message_type(python_type: Any) -> bool:
    return isinstance(python_type, type) and issubclass(python_type, ArrowSerializableDataclass)


def _infer_arrow_type(python_type: Any) -> pa.DataType:
    """Infer Arrow type from Python type annotation.

    Supports:
    - Basic types: str, bytes, int, float, bool
    - Generic types: list[T], dict[K, V]
    - Enum: serializes as its name
    - ArrowSerializableDataclass: serializes as struct

    Raises:
        TypeError: If the type cannot be automatically inferred.

    """
    inner_type, _ = _is_optional_type(python_type)
    if inner_type is not python_type:
        return _infer_arrow_type(inner_type)

    if isinstance(python_type, type) and issubclass(python_type, Enum):
        return pa.string()

    if _is_message_type(python_type):
        struct_fields = [pa.field(f.name, f.type, nullable=f.nullable) for f in python_type.ARROW_SCHEMA]
        return pa.struct(struct_fields)

    origin = get_origin(python_type)
    args = get_args(python_type)

    if origin is list:
        if args:
            return pa.list_(_infer_arrow_type(args[0]))
        return pa.list_(pa.string())

    if origin is dict:
        if len(args) >= 2:
            return pa.map_(_infer_arrow_type(args[0]), _infer_arrow_type(args[1]))
        return pa.map_(pa.string(), pa.string())

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

    The @dataclass decorator runs after the class body, so the fields are
    only known by the time the schema is first requested.
    """

    def __set_name__(self, owner: type, name: str) -> None:
        self._name = name

    def __get__(self, instance: object | None, owner: type["ArrowSerializableDataclass"]) -> pa.Schema:
        # Cache on the owning class itself, not inherited from a parent
        cache_attr = f"_cached_{self._name}"
        cached = owner.__dict__.get(cache_attr)
        if cached is not None:
            return cached

        schema = self._generate_schema(owner)
        setattr(owner, cache_attr, schema)
        return schema

    def _generate_schema(self, cls: type["ArrowSerializableDataclass"]) -> pa.Schema:
        """Generate ARROW_SCHEMA from dataclass field annotations."""
        arrow_fields: list[pa.Field[Any]] = []
        type_hints = get_type_hints(cls)

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
    """Mixin for dataclasses with automatic Arrow IPC serialization.

    Provides automatic schema generation and serialization/deserialization
    for frozen dataclasses. Nested messages become structs, ``list[T]``
    becomes a list column and ``dict[str, T]`` becomes a map column; the
    conversion recurses through all three.

    Optional fields (annotated with ``| None``) are marked as nullable.

    Attributes:
        ARROW_SCHEMA: Auto-generated Arrow schema from field annotations.

    """

    ARROW_SCHEMA: ClassVar[pa.Schema] = _ArrowSchemaDescriptor()  # type: ignore[assignment]

    def _to_row_dict(self) -> dict[str, Any]:
        """Convert instance to a dictionary for Arrow batch construction."""
        return {
            field.name: _convert_value_for_serialization(getattr(self, field.name))
            for field in dataclass_fields(self)  # type: ignore[arg-type]
        }

    def _serialize(self) -> pa.RecordBatch:
        """Serialize this instance to a single-row RecordBatch.

        Messages without fields produce a zero-row batch.
        """
        schema = self.ARROW_SCHEMA
        if len(schema) == 0:
            return empty_batch(schema)
        return pa.RecordBatch.from_pylist([self._to_row_dict()], schema=schema)

    def serialize(self, dest: IOBase) -> None:
        """Serialize this instance to an Arrow IPC stream written to *dest*."""
        serialize_record_batch(dest, self._serialize())

    def serialize_to_bytes(self) -> bytes:
        """Serialize this instance to Arrow IPC bytes.

        Returns:
            Arrow IPC stream bytes containing a single-row RecordBatch.

        """
        return serialize_record_batch_bytes(self._serialize())

    @classmethod
    def deserialize_from_batch(cls, batch: pa.RecordBatch) -> Self:
        """Deserialize an instance from an Arrow RecordBatch.

        Args:
            batch: Single-row RecordBatch containing the serialized data.

        Returns:
            Deserialized instance of this class.

        Raises:
            ValueError: If the batch has the wrong row count or misses
                required fields.

        """
        fields = dataclass_fields(cls)  # type: ignore[arg-type]
        if not fields:
            return cls()

        required_fields = [f.name for f in fields if f.default is MISSING and f.default_factory is MISSING]
        row = _validate_single_row_batch(batch, cls.__name__, required_fields=required_fields)
        return _build_message(cls, row)

    @classmethod
    def deserialize_from_bytes(cls, data: bytes) -> Self:
        """Deserialize an instance from Arrow IPC bytes.

        Raises:
            IPCError: If the bytes are not a readable IPC stream.
            ValueError: If the batch is invalid.

        """
        batch, _ = deserialize_record_batch(data)
        return cls.deserialize_from_batch(batch)


def _convert_value_for_serialization(value: Any) -> Any:
    """Convert a value for Arrow serialization."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, ArrowSerializableDataclass):
        return value._to_row_dict()
    # Map columns take a list of (key, value) tuples
    if isinstance(value, dict):
        return [(k, _convert_value_for_serialization(v)) for k, v in value.items()]
    if isinstance(value, (list, tuple)):
        return [_convert_value_for_serialization(v) for v in value]
    return value


def _build_message[M: ArrowSerializableDataclass](cls: type[M], row: dict[str, Any]) -> M:
    """Rebuild a message of type *cls* from a row dict, using field defaults for absent keys."""
    type_hints = get_type_hints(cls)
    kwargs: dict[str, Any] = {}
    for field in dataclass_fields(cls):  # type: ignore[arg-type]
        if field.name not in row:
            continue
        kwargs[field.name] = _convert_value_for_deserialization(row[field.name], type_hints[field.name])
    return cls(**kwargs)


def _convert_value_for_deserialization(value: Any, field_type: Any) -> Any:
    """Convert a deserialized value back to the expected Python type."""
    if value is None:
        return None

    inner_type, _ = _is_optional_type(field_type)

    if isinstance(inner_type, type) and issubclass(inner_type, Enum):
        return inner_type[value]

    if _is_message_type(inner_type) and isinstance(value, dict):
        return _build_message(inner_type, value)

    origin = get_origin(inner_type)
    args = get_args(inner_type)

    # Map columns come back as a list of (key, value) tuples
    if origin is dict:
        if len(args) >= 2:
            return {
                _convert_value_for_deserialization(k, args[0]): _convert_value_for_deserialization(v, args[1])
                for k, v in value
            }
        return dict(value)

    if origin is list and args and isinstance(value, list):
        return [_convert_value_for_deserialization(v, args[0]) for v in value]

    return value
