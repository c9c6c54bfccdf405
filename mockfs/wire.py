# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Wire protocol read/write helpers.

A call travels as two Arrow IPC streams over the single column schema
``message: binary``:

- The request stream holds one batch with one row: the serialized request
  message.  Its custom metadata carries ``mockfs.method`` and
  ``mockfs.request_version``.
- The response stream holds one single-row batch per response message.  A
  failure ends the stream with a zero-row batch whose metadata carries an
  EXCEPTION :class:`~mockfs.log.Message` (type, text, status code,
  traceback).  Responses already written stay ahead of it, so a client
  sees streamed elements first and then the error.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import Iterator
from contextvars import ContextVar
from io import BytesIO, IOBase
from typing import Any

import pyarrow as pa
from pyarrow import ipc

from mockfs._debug import (
    fmt_batch,
    fmt_metadata,
    wire_batch_logger,
    wire_request_logger,
    wire_response_logger,
)
from mockfs.errors import RpcError, StatusCode, VersionError
from mockfs.log import Level, Message
from mockfs.metadata import (
    LOG_EXTRA_KEY,
    LOG_LEVEL_KEY,
    LOG_MESSAGE_KEY,
    REQUEST_ID_KEY,
    REQUEST_VERSION,
    REQUEST_VERSION_KEY,
    RPC_METHOD_KEY,
    SERVER_ID_KEY,
    encode_metadata,
)
from mockfs.utils import ArrowSerializableDataclass, IPCError, empty_batch

__all__ = [
    "MESSAGE_SCHEMA",
    "current_request_id",
    "error_response_stream",
    "read_request",
    "read_responses",
    "write_error_batch",
    "write_request",
    "write_response",
]

MESSAGE_SCHEMA = pa.schema([pa.field("message", pa.binary(), nullable=False)])

current_request_id: ContextVar[str] = ContextVar("mockfs_request_id", default="")
"""Correlation id of the call being served, written into error batches."""


def _message_batch(message: ArrowSerializableDataclass) -> pa.RecordBatch:
    payload = pa.array([message.serialize_to_bytes()], type=pa.binary())
    return pa.RecordBatch.from_arrays([payload], schema=MESSAGE_SCHEMA)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def write_request(dest: IOBase, method: str, request: ArrowSerializableDataclass) -> None:
    """Write *request* for *method* as a complete IPC stream (schema + 1 batch + EOS)."""
    custom_metadata = pa.KeyValueMetadata({RPC_METHOD_KEY: method.encode(), REQUEST_VERSION_KEY: REQUEST_VERSION})
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug(
            "Write request: method=%s, type=%s, metadata=%s",
            method,
            type(request).__name__,
            fmt_metadata(custom_metadata),
        )
    with ipc.new_stream(dest, MESSAGE_SCHEMA) as writer:
        writer.write_batch(_message_batch(request), custom_metadata=custom_metadata)


def read_request[M: ArrowSerializableDataclass](
    reader: ipc.RecordBatchStreamReader, method: str, request_type: type[M]
) -> M:
    """Read the next request batch from *reader* and decode it.

    Raises:
        IPCError: The stream holds no further batch.
        RpcError: ``mockfs.method`` is missing, or the batch is not a
            single-row message batch.
        VersionError: ``mockfs.request_version`` is missing or unsupported.
        TypeError: The batch names a different method than *method*.

    """
    try:
        batch, custom_metadata = reader.read_next_batch_with_custom_metadata()
    except StopIteration:
        raise IPCError(f"Request stream for {method} ended before a request was read") from None
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug(
            "Read request batch: %s, metadata=%s", fmt_batch(batch), fmt_metadata(custom_metadata)
        )

    method_bytes = custom_metadata.get(RPC_METHOD_KEY) if custom_metadata else None
    if method_bytes is None:
        raise RpcError("ProtocolError", "Missing 'mockfs.method' in request batch custom_metadata", "")
    version_bytes = custom_metadata.get(REQUEST_VERSION_KEY) if custom_metadata else None
    if version_bytes is None:
        raise VersionError("Missing 'mockfs.request_version' in request batch custom_metadata")
    if version_bytes != REQUEST_VERSION:
        raise VersionError(f"Unsupported request version {version_bytes!r}, expected {REQUEST_VERSION!r}")
    if method_bytes.decode() != method:
        raise TypeError(
            f"Method name mismatch: URL path has '{method}' but custom_metadata "
            f"'mockfs.method' has '{method_bytes.decode()}'"
        )
    if batch.schema != MESSAGE_SCHEMA or batch.num_rows != 1:
        raise RpcError(
            "ProtocolError",
            f"Expected one row with schema (message: binary) in request batch, got {fmt_batch(batch)}",
            "",
        )
    return request_type.deserialize_from_bytes(batch.column(0)[0].as_py())


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def write_response(writer: ipc.RecordBatchStreamWriter, message: ArrowSerializableDataclass) -> None:
    """Write one response message batch to an open stream writer."""
    batch = _message_batch(message)
    if wire_response_logger.isEnabledFor(logging.DEBUG):
        wire_response_logger.debug("Write response: %s, type=%s", fmt_batch(batch), type(message).__name__)
    writer.write_batch(batch)


def write_error_batch(writer: ipc.RecordBatchStreamWriter, exc: BaseException, server_id: str | None = None) -> None:
    """Write *exc* as a zero-row batch carrying an EXCEPTION message."""
    if wire_response_logger.isEnabledFor(logging.DEBUG):
        wire_response_logger.debug("Write error batch: %s: %s", type(exc).__name__, str(exc)[:200])
    md = Message.from_exception(exc).add_to_metadata()
    if server_id is not None:
        md[SERVER_ID_KEY.decode()] = server_id
    request_id = current_request_id.get()
    if request_id:
        md[REQUEST_ID_KEY.decode()] = request_id
    writer.write_batch(empty_batch(MESSAGE_SCHEMA), custom_metadata=encode_metadata(md))


def error_response_stream(exc: BaseException, server_id: str | None = None) -> BytesIO:
    """Serialize *exc* as a complete IPC stream, positioned at the start."""
    buf = BytesIO()
    with ipc.new_stream(buf, MESSAGE_SCHEMA) as writer:
        write_error_batch(writer, exc, server_id=server_id)
    buf.seek(0)
    return buf


def _raise_if_error(batch: pa.RecordBatch, custom_metadata: pa.KeyValueMetadata | None) -> bool:
    """Classify a response batch.

    Returns ``False`` for a data batch and ``True`` for a zero-row log
    batch below EXCEPTION level.

    Raises:
        RpcError: For an EXCEPTION batch, rebuilt from its metadata.

    """
    if batch.num_rows != 0 or custom_metadata is None:
        return False
    level_bytes = custom_metadata.get(LOG_LEVEL_KEY)
    message_bytes = custom_metadata.get(LOG_MESSAGE_KEY)
    if level_bytes is None or message_bytes is None:
        return False

    level_str = level_bytes.decode()
    message_str = message_bytes.decode()
    extra: dict[str, Any] = {}
    raw_extra = custom_metadata.get(LOG_EXTRA_KEY)
    if raw_extra is not None:
        with contextlib.suppress(json.JSONDecodeError):
            extra = json.loads(raw_extra.decode())

    if wire_batch_logger.isEnabledFor(logging.DEBUG):
        wire_batch_logger.debug("Classify batch: zero-row -> %s: %s", level_str, message_str[:200])

    if level_str != Level.EXCEPTION.value:
        return True

    code = StatusCode.UNKNOWN
    with contextlib.suppress(KeyError):
        code = StatusCode[str(extra.get("status_code", "UNKNOWN"))]
    request_id_bytes = custom_metadata.get(REQUEST_ID_KEY)
    raise RpcError(
        str(extra.get("exception_type", level_str)),
        message_str,
        str(extra.get("traceback", "")),
        code=code,
        request_id=request_id_bytes.decode() if request_id_bytes is not None else "",
    )


def read_responses[M: ArrowSerializableDataclass](data: bytes, response_type: type[M]) -> Iterator[M]:
    """Decode the response messages of a response stream, in order.

    Raises:
        RpcError: When the error batch is reached, after every message
            before it was yielded.
        IPCError: If *data* is not an IPC stream.

    """
    try:
        reader = ipc.open_stream(pa.BufferReader(data))
    except pa.ArrowInvalid as e:
        raise IPCError(f"Malformed response stream: {e}") from e
    with reader:
        while True:
            try:
                batch, custom_metadata = reader.read_next_batch_with_custom_metadata()
            except StopIteration:
                return
            if _raise_if_error(batch, custom_metadata):
                continue
            yield response_type.deserialize_from_bytes(batch.column(0)[0].as_py())
