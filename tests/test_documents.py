"""Tests for the high-level document client in mockfs.documents."""

from __future__ import annotations

import dataclasses
import datetime
from typing import Any

import pytest

from mockfs.client import StoreClient
from mockfs.documents import (
    SERVER_TIMESTAMP,
    Client,
    Increment,
    decode_value,
    encode_value,
    from_timestamp,
    to_timestamp,
)
from mockfs.errors import RpcError, StatusCode, StoreError
from mockfs.messages import (
    BatchGetDocumentsRequest,
    BatchGetDocumentsResponse,
    BeginTransactionRequest,
    BeginTransactionResponse,
    CommitRequest,
    CommitResponse,
    Document,
    DocumentChange,
    DocumentTransform,
    Empty,
    FieldFilter,
    FieldTransform,
    ListenRequest,
    ListenResponse,
    Order,
    Precondition,
    RollbackRequest,
    RunQueryRequest,
    RunQueryResponse,
    StructuredQuery,
    Target,
    TargetChange,
    Timestamp,
    Value,
    Write,
    WriteResult,
)
from mockfs.server import MockServer

DB_PATH = "projects/projectID/databases/(default)"
DOCS = f"{DB_PATH}/documents"
A_TIME = datetime.datetime(2017, 1, 26, tzinfo=datetime.UTC)
A_TIME2 = datetime.datetime(2017, 2, 5, tzinfo=datetime.UTC)


@pytest.fixture
def db(sync_stub: StoreClient) -> Client:
    """A high-level client over the in-process stub."""
    return Client(sync_stub)


def _commit(*writes: Write, transaction: bytes | None = None) -> CommitRequest:
    return CommitRequest(database=DB_PATH, writes=list(writes), transaction=transaction)


def _ok(n: int = 1) -> CommitResponse:
    return CommitResponse(write_results=[WriteResult(update_time=to_timestamp(A_TIME2)) for _ in range(n)])


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------


class TestValues:
    """Python value <-> Value conversion."""

    @pytest.mark.parametrize(
        ("python", "value"),
        [
            (None, Value(null_value=True)),
            (True, Value(boolean_value=True)),
            (3, Value(integer_value=3)),
            (2.5, Value(double_value=2.5)),
            ("s", Value(string_value="s")),
            (b"b", Value(bytes_value=b"b")),
            (A_TIME, Value(timestamp_value=Timestamp(seconds=1485388800))),
        ],
        ids=["null", "bool", "int", "float", "str", "bytes", "timestamp"],
    )
    def test_encode_decode(self, python: Any, value: Value) -> None:
        """Each supported type maps to one Value member and back."""
        assert encode_value(python) == value
        assert decode_value(value) == python

    def test_bool_is_not_int(self) -> None:
        """Booleans are stored as booleans."""
        assert encode_value(False) == Value(boolean_value=False)

    def test_unsupported_type(self) -> None:
        """Types a field cannot hold are rejected."""
        with pytest.raises(TypeError, match="Cannot store value of type set"):
            encode_value({1})

    def test_reference(self, db: Client) -> None:
        """References are stored as resource names."""
        assert encode_value(db.document("C/a")) == Value(reference_value=f"{DOCS}/C/a")

    def test_timestamps(self) -> None:
        """Naive datetimes are UTC; nanoseconds keep microsecond precision."""
        assert to_timestamp(datetime.datetime(2017, 1, 26)) == Timestamp(seconds=1485388800)
        ts = Timestamp(seconds=1485388800, nanos=1_500_999)
        assert from_timestamp(ts) == A_TIME + datetime.timedelta(microseconds=1500)
        assert from_timestamp(None) is None


# ---------------------------------------------------------------------------
# References and reads
# ---------------------------------------------------------------------------


class TestReferences:
    """Resource names built by the client."""

    def test_paths(self, db: Client) -> None:
        """Database, document and subcollection paths."""
        assert db.database_path == DB_PATH
        ref = db.collection("C").document("a")
        assert ref.path == f"{DOCS}/C/a"
        assert ref.id == "a"
        assert ref.parent.id == "C"
        assert ref.collection("sub").document("x").path == f"{DOCS}/C/a/sub/x"
        assert ref == db.document("C/a")

    def test_custom_project(self, sync_stub: StoreClient) -> None:
        """Project and database ids appear in every name."""
        client = Client(sync_stub, project="p1", database="d1")
        assert client.document("C/a").path == "projects/p1/databases/d1/documents/C/a"

    def test_auto_id(self, db: Client) -> None:
        """document() without an id picks 20 random alphanumerics."""
        ref = db.collection("C").document()
        assert len(ref.id) == 20
        assert ref.id.isalnum()
        assert ref.id != db.collection("C").document().id


class TestGet:
    """DocumentReference.get() through BatchGetDocuments."""

    def test_found(self, server: MockServer, db: Client) -> None:
        """A found document yields an existing snapshot with its data and times."""
        path = f"{DOCS}/C/a"
        pdoc = Document(
            name=path,
            create_time=to_timestamp(A_TIME),
            update_time=to_timestamp(A_TIME),
            fields={"f": Value(integer_value=1)},
        )
        server.register(
            "BatchGetDocuments",
            BatchGetDocumentsRequest(database=DB_PATH, documents=[path]),
            [BatchGetDocumentsResponse(found=pdoc, read_time=to_timestamp(A_TIME2))],
        )
        snapshot = db.collection("C").document("a").get()
        assert snapshot.exists
        assert snapshot.to_dict() == {"f": 1}
        assert snapshot.get("f") == 1
        assert snapshot.create_time == A_TIME
        assert snapshot.update_time == A_TIME
        assert snapshot.read_time == A_TIME2
        assert snapshot.reference == db.document("C/a")

    def test_missing(self, server: MockServer, db: Client) -> None:
        """A missing document yields a snapshot that does not exist."""
        path = f"{DOCS}/C/b"
        server.register(
            "BatchGetDocuments",
            BatchGetDocumentsRequest(database=DB_PATH, documents=[path]),
            [BatchGetDocumentsResponse(missing=path, read_time=to_timestamp(A_TIME))],
        )
        snapshot = db.collection("C").document("b").get()
        assert not snapshot.exists
        assert snapshot.to_dict() is None
        with pytest.raises(KeyError):
            snapshot.get("f")

    def test_unscripted(self, server: MockServer, db: Client) -> None:
        """Reading a document nobody scripted fails with UNKNOWN."""
        server.register(
            "BatchGetDocuments",
            BatchGetDocumentsRequest(database=DB_PATH, documents=[f"{DOCS}/C/a"]),
            [BatchGetDocumentsResponse(missing=f"{DOCS}/C/a")],
        )
        with pytest.raises(RpcError) as e:
            db.document("C/zzz").get()
        assert e.value.code is StatusCode.UNKNOWN

    def test_scripted_error(self, server: MockServer, db: Client) -> None:
        """A scripted error reaches the caller with its code."""
        server.register("BatchGetDocuments", None, StoreError.unavailable("down"))
        with pytest.raises(RpcError) as e:
            db.document("C/a").get()
        assert e.value.code is StatusCode.UNAVAILABLE

    def test_empty_stream(self, server: MockServer, db: Client) -> None:
        """A stream without a result is a protocol error."""
        server.register("BatchGetDocuments", None, [])
        with pytest.raises(RpcError, match="no result"):
            db.document("C/a").get()


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestWrites:
    """set(), create(), update(), delete() and add()."""

    def test_set_with_transforms(self, server: MockServer, db: Client) -> None:
        """Sentinel values become a transform write, matched in any order."""
        path = f"{DOCS}/C/a"
        expected = _commit(
            Write(update=Document(name=path, fields={"a": Value(integer_value=1)})),
            Write(
                transform=DocumentTransform(
                    document=path,
                    field_transforms=[
                        FieldTransform(field_path="c", increment=Value(integer_value=5)),
                        FieldTransform(field_path="b", set_to_server_value="REQUEST_TIME"),
                    ],
                )
            ),
        )
        server.register("Commit", expected, _ok(2))
        result = db.document("C/a").set({"a": 1, "b": SERVER_TIMESTAMP, "c": Increment(5)})
        assert from_timestamp(result.update_time) == A_TIME2

    def test_set_only_transforms(self, server: MockServer, db: Client) -> None:
        """A set of only sentinels still writes the (empty) document."""
        path = f"{DOCS}/C/a"
        expected = _commit(
            Write(update=Document(name=path)),
            Write(
                transform=DocumentTransform(
                    document=path,
                    field_transforms=[FieldTransform(field_path="t", set_to_server_value="REQUEST_TIME")],
                )
            ),
        )
        server.register("Commit", expected, _ok(2))
        db.document("C/a").set({"t": SERVER_TIMESTAMP})

    def test_update(self, server: MockServer, db: Client) -> None:
        """update() sends a field mask and requires the document to exist."""
        path = f"{DOCS}/C/a"
        expected = _commit(
            Write(
                update=Document(name=path, fields={"y": Value(string_value="v"), "x": Value(null_value=True)}),
                update_mask=["x", "y"],
                current_document=Precondition(exists=True),
            )
        )
        server.register("Commit", expected, _ok())
        db.document("C/a").update({"y": "v", "x": None})

    def test_delete(self, server: MockServer, db: Client) -> None:
        """delete() sends a delete write."""
        server.register("Commit", _commit(Write(delete=f"{DOCS}/C/a")), _ok())
        db.document("C/a").delete()

    def test_create_conflict(self, server: MockServer, db: Client) -> None:
        """create() surfaces ALREADY_EXISTS from the server."""
        server.register("Commit", None, StoreError.already_exists("C/a exists"))
        with pytest.raises(RpcError) as e:
            db.document("C/a").create({"n": 1})
        assert e.value.code is StatusCode.ALREADY_EXISTS

    def test_add_with_adjust(self, server: MockServer, db: Client) -> None:
        """An adjust hook copies the client-generated id into the expected request."""
        expected = _commit(
            Write(
                update=Document(name=f"{DOCS}/C/PLACEHOLDER", fields={"n": Value(integer_value=1)}),
                current_document=Precondition(exists=False),
            )
        )

        def adjust(want: CommitRequest, got: CommitRequest) -> CommitRequest:
            first = want.writes[0]
            assert first.update is not None and got.writes[0].update is not None
            update = dataclasses.replace(first.update, name=got.writes[0].update.name)
            return dataclasses.replace(want, writes=[dataclasses.replace(first, update=update)])

        server.register_adjust("Commit", expected, _ok(), adjust)
        result, ref = db.collection("C").add({"n": 1})
        assert len(ref.id) == 20
        assert ref.path.startswith(f"{DOCS}/C/")
        assert from_timestamp(result.update_time) == A_TIME2

    def test_add_without_adjust_fails(self, server: MockServer, db: Client) -> None:
        """Without the hook the random id never matches."""
        expected = _commit(
            Write(
                update=Document(name=f"{DOCS}/C/PLACEHOLDER", fields={"n": Value(integer_value=1)}),
                current_document=Precondition(exists=False),
            )
        )
        server.register("Commit", expected, _ok())
        with pytest.raises(RpcError) as e:
            db.collection("C").add({"n": 1})
        assert e.value.error_type == "NoMatchingExpectationError"


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQuery:
    """Query building and RunQuery streaming."""

    def test_request(self, db: Client) -> None:
        """Filters, orderings and the limit land in the structured query."""
        query = db.collection("C").where("n", ">", 1).order_by("n", "DESCENDING").limit(2)
        assert query.to_request() == RunQueryRequest(
            parent=DOCS,
            structured_query=StructuredQuery(
                collection_id="C",
                where=[FieldFilter(field_path="n", op="GREATER_THAN", value=Value(integer_value=1))],
                order_by=[Order(field_path="n", direction="DESCENDING")],
                limit=2,
            ),
        )

    def test_refinement_is_immutable(self, db: Client) -> None:
        """where() returns a new query and leaves the collection untouched."""
        collection = db.collection("C")
        query = collection.where("n", "==", 1)
        assert collection.filters == ()
        assert len(query.filters) == 1

    def test_subcollection_parent(self, db: Client) -> None:
        """A subcollection query is parented on its document."""
        request = db.collection("C/a/sub").to_request()
        assert request.parent == f"{DOCS}/C/a"
        assert request.structured_query is not None
        assert request.structured_query.collection_id == "sub"

    def test_bad_operator(self, db: Client) -> None:
        """Unknown operators are rejected."""
        with pytest.raises(ValueError, match="Unsupported operator"):
            db.collection("C").where("n", "~", 1)

    def test_stream(self, server: MockServer, db: Client) -> None:
        """Documents are yielded as snapshots; progress-only results are skipped."""
        query = db.collection("C").where("n", ">=", 1)
        server.register(
            "RunQuery",
            query.to_request(),
            [
                RunQueryResponse(read_time=to_timestamp(A_TIME), skipped_results=1),
                RunQueryResponse(
                    document=Document(name=f"{DOCS}/C/a", fields={"n": Value(integer_value=2)}),
                    read_time=to_timestamp(A_TIME),
                ),
            ],
        )
        snapshots = list(query.stream())
        assert [s.id for s in snapshots] == ["a"]
        assert snapshots[0].to_dict() == {"n": 2}
        assert snapshots[0].reference == db.document("C/a")


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransaction:
    """Client.transaction() as a context manager."""

    def test_commit_on_success(self, server: MockServer, db: Client) -> None:
        """Reads carry the transaction id; buffered writes commit on exit."""
        path = f"{DOCS}/C/a"
        server.register("BeginTransaction", BeginTransactionRequest(database=DB_PATH), BeginTransactionResponse(b"tx1"))
        server.register(
            "BatchGetDocuments",
            BatchGetDocumentsRequest(database=DB_PATH, documents=[path], transaction=b"tx1"),
            [BatchGetDocumentsResponse(missing=path)],
        )
        server.register(
            "Commit",
            _commit(
                Write(update=Document(name=path, fields={"n": Value(integer_value=1)})),
                Write(delete=f"{DOCS}/C/b"),
                transaction=b"tx1",
            ),
            _ok(2),
        )
        with db.transaction() as txn:
            assert txn.id == b"tx1"
            assert not db.document("C/a").get(transaction=txn).exists
            txn.set(db.document("C/a"), {"n": 1})
            txn.delete(db.document("C/b"))
        assert txn.id is None

    def test_rollback_on_error(self, server: MockServer, db: Client) -> None:
        """An exception in the block rolls back instead of committing."""
        server.register("BeginTransaction", None, BeginTransactionResponse(transaction=b"tx2"))
        server.register("Rollback", RollbackRequest(database=DB_PATH, transaction=b"tx2"), Empty())
        with pytest.raises(RuntimeError, match="abort"), db.transaction() as txn:
            txn.set(db.document("C/a"), {"n": 1})
            raise RuntimeError("abort")
        assert txn.id is None

    def test_read_only(self, server: MockServer, db: Client) -> None:
        """read_only is passed to BeginTransaction."""
        server.register(
            "BeginTransaction",
            BeginTransactionRequest(database=DB_PATH, read_only=True),
            BeginTransactionResponse(b"r"),
        )
        server.register("Commit", _commit(transaction=b"r"), CommitResponse())
        with db.transaction(read_only=True) as txn:
            assert txn.id == b"r"

    def test_commit_requires_begin(self, db: Client) -> None:
        """Committing an inactive transaction is an error."""
        with pytest.raises(ValueError, match="not in progress"):
            db.transaction().commit()


# ---------------------------------------------------------------------------
# Listen
# ---------------------------------------------------------------------------


class TestListen:
    """DocumentReference.listen() through Listen."""

    def test_change_then_delete(self, server: MockServer, db: Client) -> None:
        """Document changes and deletes become snapshots; target changes do not."""
        path = f"{DOCS}/C/a"
        server.register(
            "Listen",
            ListenRequest(database=DB_PATH, add_target=Target(target_id=1, documents=[path])),
            [
                ListenResponse(target_change=TargetChange(target_change_type="ADD", target_ids=[1])),
                ListenResponse(
                    document_change=DocumentChange(
                        document=Document(name=path, fields={"n": Value(integer_value=1)}), target_ids=[1]
                    )
                ),
                ListenResponse(document_delete=path),
            ],
        )
        snapshots = list(db.document("C/a").listen())
        assert [s.exists for s in snapshots] == [True, False]
        assert snapshots[0].to_dict() == {"n": 1}
