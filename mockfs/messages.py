# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Request and response messages of the document-store service.

Every message is a frozen dataclass, so ``==`` is deep structural
equality.  Messages inherit :class:`~mockfs.utils.ArrowSerializableDataclass`
and travel over the wire as single-row Arrow IPC streams.

Oneof groups of the service schema are modelled as mutually exclusive
optional fields: set exactly one of them.

``format_message`` renders a message as indented ``field: value`` text,
one field per line with unset fields omitted, which diffs cleanly.
"""

from __future__ import annotations

from dataclasses import MISSING, dataclass, field
from dataclasses import fields as dataclass_fields
from typing import Any

from mockfs.utils import ArrowSerializableDataclass

__all__ = [
    "BatchGetDocumentsRequest",
    "BatchGetDocumentsResponse",
    "BeginTransactionRequest",
    "BeginTransactionResponse",
    "CommitRequest",
    "CommitResponse",
    "Document",
    "DocumentChange",
    "DocumentTransform",
    "Empty",
    "FieldFilter",
    "FieldTransform",
    "GetDocumentRequest",
    "ListenRequest",
    "ListenResponse",
    "Order",
    "Precondition",
    "REQUEST_TIME",
    "RollbackRequest",
    "RunQueryRequest",
    "RunQueryResponse",
    "StructuredQuery",
    "Target",
    "TargetChange",
    "Timestamp",
    "Value",
    "Write",
    "WriteResult",
    "format_message",
]

REQUEST_TIME = "REQUEST_TIME"
"""The only server value a field transform can set."""


# ---------------------------------------------------------------------------
# Values and documents
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Timestamp(ArrowSerializableDataclass):
    """A point in time with nanosecond resolution."""

    seconds: int = 0
    nanos: int = 0


@dataclass(frozen=True)
class Value(ArrowSerializableDataclass):
    """A field value; exactly one member is set (``null_value`` for null)."""

    null_value: bool = False
    boolean_value: bool | None = None
    integer_value: int | None = None
    double_value: float | None = None
    timestamp_value: Timestamp | None = None
    string_value: str | None = None
    bytes_value: bytes | None = None
    reference_value: str | None = None


@dataclass(frozen=True)
class Document(ArrowSerializableDataclass):
    """A stored document: its resource name and field values."""

    name: str = ""
    fields: dict[str, Value] = field(default_factory=dict)
    create_time: Timestamp | None = None
    update_time: Timestamp | None = None


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Precondition(ArrowSerializableDataclass):
    """Condition on the existing document that a write requires."""

    exists: bool | None = None
    update_time: Timestamp | None = None


@dataclass(frozen=True)
class FieldTransform(ArrowSerializableDataclass):
    """A server-side transformation of a single field."""

    field_path: str = ""
    set_to_server_value: str | None = None
    increment: Value | None = None


@dataclass(frozen=True)
class DocumentTransform(ArrowSerializableDataclass):
    """The field transforms applied to one document.

    The order of ``field_transforms`` carries no meaning; clients may
    produce them in any order.
    """

    document: str = ""
    field_transforms: list[FieldTransform] = field(default_factory=list)


@dataclass(frozen=True)
class Write(ArrowSerializableDataclass):
    """One write in a commit; set exactly one of update, delete, transform."""

    update: Document | None = None
    delete: str | None = None
    transform: DocumentTransform | None = None
    update_mask: list[str] | None = None
    current_document: Precondition | None = None


@dataclass(frozen=True)
class WriteResult(ArrowSerializableDataclass):
    """The result of applying one write."""

    update_time: Timestamp | None = None
    transform_results: list[Value] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldFilter(ArrowSerializableDataclass):
    """A filter on a single field, ``op`` being e.g. ``EQUAL`` or ``LESS_THAN``."""

    field_path: str = ""
    op: str = "EQUAL"
    value: Value | None = None


@dataclass(frozen=True)
class Order(ArrowSerializableDataclass):
    """An ordering on a field."""

    field_path: str = ""
    direction: str = "ASCENDING"


@dataclass(frozen=True)
class StructuredQuery(ArrowSerializableDataclass):
    """A query over one collection; filters in ``where`` are ANDed."""

    collection_id: str = ""
    all_descendants: bool = False
    where: list[FieldFilter] = field(default_factory=list)
    order_by: list[Order] = field(default_factory=list)
    limit: int | None = None


# ---------------------------------------------------------------------------
# RPC requests and responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GetDocumentRequest(ArrowSerializableDataclass):
    """Request for ``GetDocument``."""

    name: str = ""
    mask: list[str] | None = None
    transaction: bytes | None = None


@dataclass(frozen=True)
class CommitRequest(ArrowSerializableDataclass):
    """Request for ``Commit``."""

    database: str = ""
    writes: list[Write] = field(default_factory=list)
    transaction: bytes | None = None


@dataclass(frozen=True)
class CommitResponse(ArrowSerializableDataclass):
    """Response for ``Commit``, one ``WriteResult`` per write."""

    write_results: list[WriteResult] = field(default_factory=list)
    commit_time: Timestamp | None = None


@dataclass(frozen=True)
class BatchGetDocumentsRequest(ArrowSerializableDataclass):
    """Request for ``BatchGetDocuments``."""

    database: str = ""
    documents: list[str] = field(default_factory=list)
    mask: list[str] | None = None
    transaction: bytes | None = None


@dataclass(frozen=True)
class BatchGetDocumentsResponse(ArrowSerializableDataclass):
    """One streamed result of ``BatchGetDocuments``: ``found`` or ``missing``."""

    found: Document | None = None
    missing: str | None = None
    transaction: bytes | None = None
    read_time: Timestamp | None = None


@dataclass(frozen=True)
class RunQueryRequest(ArrowSerializableDataclass):
    """Request for ``RunQuery``."""

    parent: str = ""
    structured_query: StructuredQuery | None = None
    transaction: bytes | None = None


@dataclass(frozen=True)
class RunQueryResponse(ArrowSerializableDataclass):
    """One streamed result of ``RunQuery``."""

    document: Document | None = None
    transaction: bytes | None = None
    read_time: Timestamp | None = None
    skipped_results: int = 0


@dataclass(frozen=True)
class BeginTransactionRequest(ArrowSerializableDataclass):
    """Request for ``BeginTransaction``."""

    database: str = ""
    read_only: bool = False


@dataclass(frozen=True)
class BeginTransactionResponse(ArrowSerializableDataclass):
    """Response for ``BeginTransaction``."""

    transaction: bytes = b""


@dataclass(frozen=True)
class RollbackRequest(ArrowSerializableDataclass):
    """Request for ``Rollback``."""

    database: str = ""
    transaction: bytes = b""


@dataclass(frozen=True)
class Empty(ArrowSerializableDataclass):
    """A message with no fields."""


# ---------------------------------------------------------------------------
# Listen
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Target(ArrowSerializableDataclass):
    """What a listener watches: a set of documents or a query."""

    target_id: int = 0
    documents: list[str] = field(default_factory=list)
    parent: str = ""
    query: StructuredQuery | None = None
    resume_token: bytes | None = None


@dataclass(frozen=True)
class ListenRequest(ArrowSerializableDataclass):
    """Initial message of a ``Listen`` call."""

    database: str = ""
    add_target: Target | None = None
    remove_target: int | None = None
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TargetChange(ArrowSerializableDataclass):
    """A change in the state of targets, e.g. ``ADD`` or ``CURRENT``."""

    target_change_type: str = "NO_CHANGE"
    target_ids: list[int] = field(default_factory=list)
    resume_token: bytes | None = None
    read_time: Timestamp | None = None


@dataclass(frozen=True)
class DocumentChange(ArrowSerializableDataclass):
    """A document that changed, and the targets it now matches."""

    document: Document | None = None
    target_ids: list[int] = field(default_factory=list)
    removed_target_ids: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class ListenResponse(ArrowSerializableDataclass):
    """One streamed event of ``Listen``."""

    target_change: TargetChange | None = None
    document_change: DocumentChange | None = None
    document_delete: str | None = None


# ---------------------------------------------------------------------------
# Text rendering
# ---------------------------------------------------------------------------


def format_message(message: ArrowSerializableDataclass) -> str:
    """Render *message* as indented ``field: value`` lines.

    Unset fields (``None`` or the field default) are omitted; map
    entries are sorted by key.  A message with nothing set renders as
    an empty string.
    """
    return "\n".join(_format_fields(message, 0))


def _is_default(value: Any, f: Any) -> bool:
    if value is None:
        return True
    if f.default is not MISSING:
        return bool(value == f.default)
    if f.default_factory is not MISSING:
        return bool(value == f.default_factory())
    return False


def _format_fields(message: ArrowSerializableDataclass, depth: int) -> list[str]:
    lines: list[str] = []
    pad = "  " * depth
    for f in dataclass_fields(message):  # type: ignore[arg-type]
        value = getattr(message, f.name)
        if _is_default(value, f):
            continue
        if isinstance(value, dict):
            for key in sorted(value):
                lines.append(f"{pad}{f.name} {{")
                lines.append(f"{pad}  key: {key!r}")
                lines.extend(_format_entry("value", value[key], depth + 1))
                lines.append(f"{pad}}}")
        elif isinstance(value, list):
            for item in value:
                lines.extend(_format_entry(f.name, item, depth))
        else:
            lines.extend(_format_entry(f.name, value, depth))
    return lines


def _format_entry(name: str, value: Any, depth: int) -> list[str]:
    pad = "  " * depth
    if isinstance(value, ArrowSerializableDataclass):
        return [f"{pad}{name} {{", *_format_fields(value, depth + 1), f"{pad}}}"]
    if isinstance(value, bool):
        return [f"{pad}{name}: {str(value).lower()}"]
    if isinstance(value, (str, bytes)):
        return [f"{pad}{name}: {value!r}"]
    return [f"{pad}{name}: {value}"]
