"""Tests for mockfs.wire: request and response streams."""

from __future__ import annotations

import json
from io import BytesIO

import pyarrow as pa
import pytest
from pyarrow import ipc

from mockfs.errors import RpcError, StatusCode, StoreError, VersionError
from mockfs.log import Level
from mockfs.messages import Document, Empty, GetDocumentRequest, RunQueryResponse
from mockfs.metadata import (
    LOG_EXTRA_KEY,
    LOG_LEVEL_KEY,
    LOG_MESSAGE_KEY,
    REQUEST_VERSION_KEY,
    RPC_METHOD_KEY,
    SERVER_ID_KEY,
)
from mockfs.utils import IPCError
from mockfs.wire import (
    MESSAGE_SCHEMA,
    current_request_id,
    error_response_stream,
    read_request,
    read_responses,
    write_error_batch,
    write_request,
    write_response,
)


def _request_reader(method: str, request: GetDocumentRequest) -> ipc.RecordBatchStreamReader:
    buf = BytesIO()
    write_request(buf, method, request)
    return ipc.open_stream(pa.BufferReader(buf.getvalue()))


def _raw_request(metadata: dict[bytes, bytes], batch: pa.RecordBatch | None = None) -> ipc.RecordBatchStreamReader:
    if batch is None:
        batch = pa.RecordBatch.from_arrays(
            [pa.array([GetDocumentRequest(name="x").serialize_to_bytes()], type=pa.binary())], schema=MESSAGE_SCHEMA
        )
    buf = BytesIO()
    with ipc.new_stream(buf, batch.schema) as writer:
        writer.write_batch(batch, custom_metadata=pa.KeyValueMetadata(metadata))
    return ipc.open_stream(pa.BufferReader(buf.getvalue()))


def _response_stream(*messages: object, error: BaseException | None = None) -> bytes:
    buf = BytesIO()
    with ipc.new_stream(buf, MESSAGE_SCHEMA) as writer:
        for m in messages:
            write_response(writer, m)  # type: ignore[arg-type]
        if error is not None:
            write_error_batch(writer, error, server_id="srv1")
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestRequest:
    """Writing and reading request streams."""

    def test_round_trip(self) -> None:
        """A written request reads back equal."""
        request = GetDocumentRequest(name="projects/p/databases/d/documents/C/a", transaction=b"t")
        assert read_request(_request_reader("GetDocument", request), "GetDocument", GetDocumentRequest) == request

    def test_metadata(self) -> None:
        """The batch carries the method name and protocol version."""
        reader = _request_reader("GetDocument", GetDocumentRequest())
        _, md = reader.read_next_batch_with_custom_metadata()
        assert md[RPC_METHOD_KEY] == b"GetDocument"
        assert md[REQUEST_VERSION_KEY] == b"1"

    def test_missing_method(self) -> None:
        """A batch without a method name is a protocol error."""
        with pytest.raises(RpcError, match="Missing 'mockfs.method'"):
            read_request(_raw_request({REQUEST_VERSION_KEY: b"1"}), "GetDocument", GetDocumentRequest)

    def test_missing_version(self) -> None:
        """A batch without a version is rejected."""
        with pytest.raises(VersionError, match="Missing"):
            read_request(_raw_request({RPC_METHOD_KEY: b"GetDocument"}), "GetDocument", GetDocumentRequest)

    def test_wrong_version(self) -> None:
        """An unsupported version is rejected."""
        reader = _raw_request({RPC_METHOD_KEY: b"GetDocument", REQUEST_VERSION_KEY: b"99"})
        with pytest.raises(VersionError, match="Unsupported request version"):
            read_request(reader, "GetDocument", GetDocumentRequest)

    def test_method_mismatch(self) -> None:
        """The metadata method must equal the routed one."""
        reader = _request_reader("Commit", GetDocumentRequest())
        with pytest.raises(TypeError, match="Method name mismatch"):
            read_request(reader, "GetDocument", GetDocumentRequest)

    def test_wrong_schema(self) -> None:
        """A batch that is not a single message row is a protocol error."""
        batch = pa.RecordBatch.from_pydict({"x": [1, 2]})
        reader = _raw_request({RPC_METHOD_KEY: b"GetDocument", REQUEST_VERSION_KEY: b"1"}, batch)
        with pytest.raises(RpcError) as e:
            read_request(reader, "GetDocument", GetDocumentRequest)
        assert e.value.error_type == "ProtocolError"

    def test_empty_stream(self) -> None:
        """A stream with no batch raises IPCError."""
        buf = BytesIO()
        with ipc.new_stream(buf, MESSAGE_SCHEMA):
            pass
        with pytest.raises(IPCError, match="ended before a request"):
            read_request(ipc.open_stream(pa.BufferReader(buf.getvalue())), "GetDocument", GetDocumentRequest)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class TestResponses:
    """Writing and reading response streams."""

    def test_messages_in_order(self) -> None:
        """Every response message is yielded in order."""
        messages = [RunQueryResponse(skipped_results=i) for i in range(3)]
        assert list(read_responses(_response_stream(*messages), RunQueryResponse)) == messages

    def test_empty_message_response(self) -> None:
        """A field-less response still travels as one row."""
        assert list(read_responses(_response_stream(Empty()), Empty)) == [Empty()]

    def test_error_after_messages(self) -> None:
        """Messages before the error batch are yielded, then RpcError is raised."""
        it = read_responses(
            _response_stream(Document(name="a"), error=StoreError.not_found("gone")),
            Document,
        )
        assert next(it) == Document(name="a")
        with pytest.raises(RpcError) as e:
            next(it)
        assert e.value.error_type == "StoreError"
        assert e.value.error_message == "gone"
        assert e.value.code is StatusCode.NOT_FOUND
        assert "StoreError" in e.value.remote_traceback

    def test_error_without_code(self) -> None:
        """Exceptions without a status code arrive as UNKNOWN."""
        with pytest.raises(RpcError) as e:
            list(read_responses(_response_stream(error=ValueError("bad")), Document))
        assert e.value.code is StatusCode.UNKNOWN
        assert e.value.error_type == "ValueError"

    def test_error_batch_metadata(self) -> None:
        """The error batch holds the EXCEPTION log fields and server id."""
        reader = ipc.open_stream(pa.BufferReader(_response_stream(error=StoreError.aborted("retry"))))
        batch, md = reader.read_next_batch_with_custom_metadata()
        assert batch.num_rows == 0
        assert md[LOG_LEVEL_KEY] == Level.EXCEPTION.value.encode()
        assert md[LOG_MESSAGE_KEY] == b"retry"
        assert md[SERVER_ID_KEY] == b"srv1"
        extra = json.loads(md[LOG_EXTRA_KEY])
        assert extra["exception_type"] == "StoreError"
        assert extra["status_code"] == "ABORTED"

    def test_request_id_carried(self) -> None:
        """The current request id is written into error batches and restored."""
        token = current_request_id.set("abc123")
        try:
            data = error_response_stream(StoreError.internal("x")).getvalue()
        finally:
            current_request_id.reset(token)
        with pytest.raises(RpcError) as e:
            list(read_responses(data, Document))
        assert e.value.request_id == "abc123"

    def test_non_exception_log_batch_skipped(self) -> None:
        """Zero-row log batches below EXCEPTION level are not data."""
        buf = BytesIO()
        with ipc.new_stream(buf, MESSAGE_SCHEMA) as writer:
            empty = pa.RecordBatch.from_arrays([pa.array([], type=pa.binary())], schema=MESSAGE_SCHEMA)
            md = pa.KeyValueMetadata({LOG_LEVEL_KEY: b"INFO", LOG_MESSAGE_KEY: b"hi"})
            writer.write_batch(empty, custom_metadata=md)
            write_response(writer, Document(name="a"))
        assert list(read_responses(buf.getvalue(), Document)) == [Document(name="a")]

    def test_malformed_stream(self) -> None:
        """Bytes that are not an IPC stream raise IPCError."""
        with pytest.raises(IPCError):
            list(read_responses(b"garbage", Document))
