# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""High-level document client on top of a :class:`~mockfs.client.StoreClient`.

Mirrors the shape of a typical document-database SDK so code under test
can issue realistic calls against a :class:`~mockfs.server.MockServer`::

    db = Client(connect(host.address))
    snapshot = db.collection("C").document("a").get()
    if snapshot.exists:
        print(snapshot.to_dict())

    with db.transaction() as txn:
        txn.set(db.collection("C").document("b"), {"n": 1})

Every call produces the request a real SDK would send, so tests register
expectations with the resource names built here (see
:attr:`Client.database_path` and :attr:`DocumentReference.path`).
"""

from __future__ import annotations

import datetime
import logging
import secrets
import string
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from mockfs.client import StoreClient
from mockfs.errors import RpcError
from mockfs.messages import (
    REQUEST_TIME,
    BatchGetDocumentsRequest,
    BeginTransactionRequest,
    CommitRequest,
    Document,
    DocumentTransform,
    FieldFilter,
    FieldTransform,
    ListenRequest,
    Order,
    Precondition,
    RollbackRequest,
    RunQueryRequest,
    StructuredQuery,
    Target,
    Timestamp,
    Value,
    Write,
    WriteResult,
)

__all__ = [
    "SERVER_TIMESTAMP",
    "Client",
    "CollectionReference",
    "DocumentReference",
    "DocumentSnapshot",
    "Increment",
    "Query",
    "Transaction",
    "decode_value",
    "encode_value",
    "from_timestamp",
    "to_timestamp",
]

_logger = logging.getLogger("mockfs.documents")

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.UTC)
_ID_ALPHABET = string.ascii_letters + string.digits
_AUTO_ID_LENGTH = 20
_LISTEN_TARGET_ID = 1

_OPERATORS: Mapping[str, str] = {
    "<": "LESS_THAN",
    "<=": "LESS_THAN_OR_EQUAL",
    "==": "EQUAL",
    "!=": "NOT_EQUAL",
    ">": "GREATER_THAN",
    ">=": "GREATER_THAN_OR_EQUAL",
}


# ---------------------------------------------------------------------------
# Sentinels
# ---------------------------------------------------------------------------


class _ServerTimestamp:
    __slots__ = ()

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()
"""Field value asking the server to store the commit time."""


@dataclass(frozen=True)
class Increment:
    """Field value asking the server to add *value* to the stored number."""

    value: int | float


def _auto_id() -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_AUTO_ID_LENGTH))


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------


def to_timestamp(dt: datetime.datetime) -> Timestamp:
    """Convert *dt* to a :class:`Timestamp`; naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.UTC)
    delta = dt - _EPOCH
    return Timestamp(seconds=delta.days * 86400 + delta.seconds, nanos=delta.microseconds * 1000)


def from_timestamp(ts: Timestamp | None) -> datetime.datetime | None:
    """Convert a :class:`Timestamp` to an aware UTC datetime (microsecond precision)."""
    if ts is None:
        return None
    return _EPOCH + datetime.timedelta(seconds=ts.seconds, microseconds=ts.nanos // 1000)


def encode_value(value: Any) -> Value:
    """Convert a Python value to a :class:`Value`.

    Raises:
        TypeError: For a type a field cannot hold.

    """
    if value is None:
        return Value(null_value=True)
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return Value(boolean_value=value)
    if isinstance(value, int):
        return Value(integer_value=value)
    if isinstance(value, float):
        return Value(double_value=value)
    if isinstance(value, datetime.datetime):
        return Value(timestamp_value=to_timestamp(value))
    if isinstance(value, str):
        return Value(string_value=value)
    if isinstance(value, bytes):
        return Value(bytes_value=value)
    if isinstance(value, DocumentReference):
        return Value(reference_value=value.path)
    raise TypeError(f"Cannot store value of type {type(value).__name__}: {value!r}")


def decode_value(value: Value) -> Any:
    """Convert a :class:`Value` back to a Python value; references stay resource names."""
    if value.boolean_value is not None:
        return value.boolean_value
    if value.integer_value is not None:
        return value.integer_value
    if value.double_value is not None:
        return value.double_value
    if value.timestamp_value is not None:
        return from_timestamp(value.timestamp_value)
    if value.string_value is not None:
        return value.string_value
    if value.bytes_value is not None:
        return value.bytes_value
    if value.reference_value is not None:
        return value.reference_value
    return None


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class DocumentSnapshot:
    """The state of a document at a point in time.

    A snapshot of a document that does not exist has ``exists == False``
    and ``to_dict() is None``.
    """

    __slots__ = ("_document", "read_time", "reference")

    def __init__(
        self, reference: DocumentReference, document: Document | None, read_time: Timestamp | None = None
    ) -> None:
        """Wrap *document* (``None`` when missing) read for *reference*."""
        self.reference = reference
        self._document = document
        self.read_time = from_timestamp(read_time)

    @property
    def exists(self) -> bool:
        """Whether the document exists."""
        return self._document is not None

    @property
    def id(self) -> str:
        """The document id, the last segment of its path."""
        return self.reference.id

    @property
    def create_time(self) -> datetime.datetime | None:
        """When the document was created, if it exists."""
        return from_timestamp(self._document.create_time) if self._document is not None else None

    @property
    def update_time(self) -> datetime.datetime | None:
        """When the document was last changed, if it exists."""
        return from_timestamp(self._document.update_time) if self._document is not None else None

    def to_dict(self) -> dict[str, Any] | None:
        """Return the document fields as plain Python values."""
        if self._document is None:
            return None
        return {name: decode_value(value) for name, value in self._document.fields.items()}

    def get(self, field_path: str) -> Any:
        """Return one field value.

        Raises:
            KeyError: If the document does not exist or lacks the field.

        """
        if self._document is None:
            raise KeyError(f"{self.reference.path} does not exist")
        return decode_value(self._document.fields[field_path])

    def __repr__(self) -> str:
        """Return a string representation suitable for debugging."""
        return f"DocumentSnapshot({self.reference.path!r}, exists={self.exists})"


# ---------------------------------------------------------------------------
# Write construction
# ---------------------------------------------------------------------------


def _transform_of(field_path: str, value: Any) -> FieldTransform | None:
    if value is SERVER_TIMESTAMP:
        return FieldTransform(field_path=field_path, set_to_server_value=REQUEST_TIME)
    if isinstance(value, Increment):
        return FieldTransform(field_path=field_path, increment=encode_value(value.value))
    return None


def _build_writes(
    name: str,
    data: Mapping[str, Any],
    *,
    precondition: Precondition | None = None,
    update_mask: bool = False,
) -> list[Write]:
    """Split *data* into an update write and, for sentinel values, a transform write."""
    fields: dict[str, Value] = {}
    transforms: list[FieldTransform] = []
    for field_path, value in data.items():
        transform = _transform_of(field_path, value)
        if transform is not None:
            transforms.append(transform)
        else:
            fields[field_path] = encode_value(value)
    writes: list[Write] = []
    if fields or not transforms or precondition is not None:
        writes.append(
            Write(
                update=Document(name=name, fields=fields),
                update_mask=sorted(fields) if update_mask else None,
                current_document=precondition,
            )
        )
    if transforms:
        writes.append(Write(transform=DocumentTransform(document=name, field_transforms=transforms)))
    return writes


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------


class DocumentReference:
    """A document location: ``{collection}/{id}`` below the database root."""

    __slots__ = ("_client", "_relative")

    def __init__(self, client: Client, relative_path: str) -> None:
        """Point at *relative_path* (e.g. ``"C/a"``) in *client*'s database."""
        self._client = client
        self._relative = relative_path

    @property
    def id(self) -> str:
        """The last path segment."""
        return self._relative.rsplit("/", 1)[-1]

    @property
    def path(self) -> str:
        """Full resource name of the document."""
        return f"{self._client.documents_path}/{self._relative}"

    @property
    def parent(self) -> CollectionReference:
        """The collection holding this document."""
        return CollectionReference(self._client, self._relative.rsplit("/", 1)[0])

    def collection(self, collection_id: str) -> CollectionReference:
        """A subcollection of this document."""
        return CollectionReference(self._client, f"{self._relative}/{collection_id}")

    def get(self, *, transaction: Transaction | None = None) -> DocumentSnapshot:
        """Read the document with ``BatchGetDocuments``.

        Raises:
            RpcError: If the server fails the call or returns no result.

        """
        request = BatchGetDocumentsRequest(
            database=self._client.database_path,
            documents=[self.path],
            transaction=transaction.id if transaction is not None else None,
        )
        for response in self._client.stub.BatchGetDocuments(request):
            if response.found is not None:
                return DocumentSnapshot(self, response.found, response.read_time)
            if response.missing is not None:
                return DocumentSnapshot(self, None, response.read_time)
        raise RpcError("ProtocolError", f"BatchGetDocuments returned no result for {self.path}", "")

    def create(self, data: Mapping[str, Any]) -> WriteResult:
        """Create the document; fails if it already exists."""
        return self._client._commit(_build_writes(self.path, data, precondition=Precondition(exists=False)))

    def set(self, data: Mapping[str, Any]) -> WriteResult:
        """Replace the document's fields with *data*."""
        return self._client._commit(_build_writes(self.path, data))

    def update(self, data: Mapping[str, Any]) -> WriteResult:
        """Change the named fields of an existing document."""
        return self._client._commit(
            _build_writes(self.path, data, precondition=Precondition(exists=True), update_mask=True)
        )

    def delete(self) -> WriteResult:
        """Delete the document."""
        return self._client._commit([Write(delete=self.path)])

    def listen(self) -> Iterator[DocumentSnapshot]:
        """Watch the document and yield a snapshot for every change event."""
        request = ListenRequest(
            database=self._client.database_path,
            add_target=Target(target_id=_LISTEN_TARGET_ID, documents=[self.path]),
        )
        for response in self._client.stub.Listen(request):
            change = response.document_change
            if change is not None and change.document is not None:
                yield DocumentSnapshot(self, change.document)
            elif response.document_delete is not None:
                yield DocumentSnapshot(self, None)

    def __eq__(self, other: object) -> bool:
        """References are equal when they name the same document of the same client."""
        if not isinstance(other, DocumentReference):
            return NotImplemented
        return self._client is other._client and self._relative == other._relative

    def __hash__(self) -> int:
        """Hash by path."""
        return hash(self._relative)

    def __repr__(self) -> str:
        """Return a string representation suitable for debugging."""
        return f"DocumentReference({self._relative!r})"


@dataclass(frozen=True)
class Query:
    """An immutable query over one collection; each refinement returns a new query."""

    client: Client
    collection_path: str
    filters: tuple[FieldFilter, ...] = ()
    orders: tuple[Order, ...] = ()
    limit_to: int | None = None

    def _refine(self, **changes: Any) -> Query:
        current = {
            "filters": self.filters,
            "orders": self.orders,
            "limit_to": self.limit_to,
        }
        return Query(self.client, self.collection_path, **{**current, **changes})

    @property
    def _parent_path(self) -> str:
        head, _, _ = self.collection_path.rpartition("/")
        return f"{self.client.documents_path}/{head}" if head else self.client.documents_path

    @property
    def _collection_id(self) -> str:
        return self.collection_path.rsplit("/", 1)[-1]

    def where(self, field_path: str, op: str, value: Any) -> Query:
        """Add a filter; *op* is one of ``< <= == != > >=``.

        Raises:
            ValueError: For an unsupported operator.

        """
        try:
            op_name = _OPERATORS[op]
        except KeyError:
            raise ValueError(f"Unsupported operator {op!r}, expected one of {sorted(_OPERATORS)}") from None
        condition = FieldFilter(field_path=field_path, op=op_name, value=encode_value(value))
        return self._refine(filters=(*self.filters, condition))

    def order_by(self, field_path: str, direction: str = "ASCENDING") -> Query:
        """Add an ordering."""
        return self._refine(orders=(*self.orders, Order(field_path=field_path, direction=direction)))

    def limit(self, count: int) -> Query:
        """Return at most *count* documents."""
        return self._refine(limit_to=count)

    def to_request(self, transaction: bytes | None = None) -> RunQueryRequest:
        """The ``RunQuery`` request this query sends."""
        return RunQueryRequest(
            parent=self._parent_path,
            structured_query=StructuredQuery(
                collection_id=self._collection_id,
                where=list(self.filters),
                order_by=list(self.orders),
                limit=self.limit_to,
            ),
            transaction=transaction,
        )

    def stream(self, *, transaction: Transaction | None = None) -> Iterator[DocumentSnapshot]:
        """Run the query and yield a snapshot per matching document."""
        request = self.to_request(transaction.id if transaction is not None else None)
        prefix = self.client.documents_path + "/"
        for response in self.client.stub.RunQuery(request):
            if response.document is None:
                continue
            relative = response.document.name.removeprefix(prefix)
            yield DocumentSnapshot(DocumentReference(self.client, relative), response.document, response.read_time)


class CollectionReference(Query):
    """A collection location; also the query over all of its documents."""

    @property
    def id(self) -> str:
        """The collection id, the last path segment."""
        return self._collection_id

    def document(self, document_id: str | None = None) -> DocumentReference:
        """A document of this collection; a random id when *document_id* is ``None``."""
        return DocumentReference(self.client, f"{self.collection_path}/{document_id or _auto_id()}")

    def add(self, data: Mapping[str, Any], document_id: str | None = None) -> tuple[WriteResult, DocumentReference]:
        """Create a new document, by default with a random 20-character id."""
        ref = self.document(document_id)
        return ref.create(data), ref


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class Transaction:
    """Groups reads and buffered writes into one atomic commit.

    Used as a context manager: the transaction begins on entry, commits
    on a clean exit and rolls back when the block raises.
    """

    __slots__ = ("_client", "_id", "_writes", "read_only")

    def __init__(self, client: Client, *, read_only: bool = False) -> None:
        """Create an inactive transaction."""
        self._client = client
        self._id: bytes | None = None
        self._writes: list[Write] = []
        self.read_only = read_only

    @property
    def id(self) -> bytes | None:
        """Server-assigned transaction id, ``None`` until :meth:`begin`."""
        return self._id

    def begin(self) -> None:
        """Start the transaction with ``BeginTransaction``.

        Raises:
            ValueError: If the transaction is already in progress.

        """
        if self._id is not None:
            raise ValueError("Transaction already in progress")
        response = self._client.stub.BeginTransaction(
            BeginTransactionRequest(database=self._client.database_path, read_only=self.read_only)
        )
        self._id = response.transaction

    def _require_active(self) -> bytes:
        if self._id is None:
            raise ValueError("Transaction is not in progress")
        return self._id

    def create(self, reference: DocumentReference, data: Mapping[str, Any]) -> None:
        """Buffer a create."""
        self._writes.extend(_build_writes(reference.path, data, precondition=Precondition(exists=False)))

    def set(self, reference: DocumentReference, data: Mapping[str, Any]) -> None:
        """Buffer a set."""
        self._writes.extend(_build_writes(reference.path, data))

    def update(self, reference: DocumentReference, data: Mapping[str, Any]) -> None:
        """Buffer an update."""
        self._writes.extend(
            _build_writes(reference.path, data, precondition=Precondition(exists=True), update_mask=True)
        )

    def delete(self, reference: DocumentReference) -> None:
        """Buffer a delete."""
        self._writes.append(Write(delete=reference.path))

    def commit(self) -> list[WriteResult]:
        """Commit the buffered writes and end the transaction."""
        transaction = self._require_active()
        writes, self._writes = self._writes, []
        response = self._client.stub.Commit(
            CommitRequest(database=self._client.database_path, writes=writes, transaction=transaction)
        )
        self._id = None
        return response.write_results

    def rollback(self) -> None:
        """Discard the buffered writes and end the transaction."""
        transaction = self._require_active()
        self._writes = []
        self._id = None
        self._client.stub.Rollback(RollbackRequest(database=self._client.database_path, transaction=transaction))

    def __enter__(self) -> Transaction:
        """Begin the transaction."""
        self.begin()
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: object, exc_tb: object) -> None:
        """Commit, or roll back if the block raised."""
        if exc_type is None:
            self.commit()
            return
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Rolling back transaction after %s", exc_type.__name__)
        self.rollback()


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class Client:
    """Entry point: builds references and issues calls through *stub*.

    Args:
        stub: The service stub calls are sent through.
        project: Project id used in resource names.
        database: Database id used in resource names.

    """

    __slots__ = ("database", "project", "stub")

    def __init__(self, stub: StoreClient, project: str = "projectID", database: str = "(default)") -> None:
        """Create a client for *project*/*database*."""
        self.stub = stub
        self.project = project
        self.database = database

    @property
    def database_path(self) -> str:
        """``projects/{project}/databases/{database}``."""
        return f"projects/{self.project}/databases/{self.database}"

    @property
    def documents_path(self) -> str:
        """Root of every document resource name."""
        return f"{self.database_path}/documents"

    def collection(self, collection_path: str) -> CollectionReference:
        """A collection; nested paths such as ``"C/a/sub"`` name subcollections."""
        return CollectionReference(self, collection_path)

    def document(self, document_path: str) -> DocumentReference:
        """A document by its path below the database root, e.g. ``"C/a"``."""
        return DocumentReference(self, document_path)

    def transaction(self, *, read_only: bool = False) -> Transaction:
        """A new transaction, to be used as a context manager."""
        return Transaction(self, read_only=read_only)

    def _commit(self, writes: list[Write]) -> WriteResult:
        response = self.stub.Commit(CommitRequest(database=self.database_path, writes=writes))
        if not response.write_results:
            raise RpcError("ProtocolError", "Commit returned no write results", "")
        return response.write_results[0]

    def close(self) -> None:
        """Close the stub."""
        self.stub.close()
