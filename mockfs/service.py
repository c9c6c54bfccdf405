# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""The document-store service contract.

:class:`DocumentStore` declares every RPC operation with its native
handler signature.  The shape of the signature decides the call kind:

- ``(request) -> Response``: unary.
- ``(request, stream: ServerStream[Response]) -> None``: the handler
  sends any number of responses for one request.
- ``(stream: SubscribeStream[Request, Response]) -> None``: the handler
  first receives the client's initial message, then sends responses.

:func:`rpc_methods` introspects the Protocol into a read-only table of
:class:`RpcMethodInfo`, used by the server, the host and the client.
"""

from __future__ import annotations

import inspect
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol, get_args, get_origin, get_type_hints

from mockfs.messages import (
    BatchGetDocumentsRequest,
    BatchGetDocumentsResponse,
    BeginTransactionRequest,
    BeginTransactionResponse,
    CommitRequest,
    CommitResponse,
    Document,
    Empty,
    GetDocumentRequest,
    ListenRequest,
    ListenResponse,
    RollbackRequest,
    RunQueryRequest,
    RunQueryResponse,
)
from mockfs.utils import ArrowSerializableDataclass

__all__ = [
    "DocumentStore",
    "MethodKind",
    "RpcMethodInfo",
    "ServerStream",
    "SubscribeStream",
    "rpc_methods",
    "validate_implementation",
]


# ---------------------------------------------------------------------------
# Stream handles
# ---------------------------------------------------------------------------


class ServerStream[T](Protocol):
    """Output channel of a server-streaming call."""

    def send(self, response: T) -> None:
        """Deliver one response; raises if the channel is broken."""
        ...


class SubscribeStream[Req, Resp](Protocol):
    """Bidirectional channel of a subscribe-style call."""

    def recv(self) -> Req:
        """Receive the next client message; raises if none can be read."""
        ...

    def send(self, response: Resp) -> None:
        """Deliver one response; raises if the channel is broken."""
        ...


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class DocumentStore(Protocol):
    """RPC operations of the document-store service."""

    def GetDocument(self, request: GetDocumentRequest) -> Document:
        """Fetch a single document."""
        ...

    def Commit(self, request: CommitRequest) -> CommitResponse:
        """Apply a batch of writes atomically."""
        ...

    def BeginTransaction(self, request: BeginTransactionRequest) -> BeginTransactionResponse:
        """Start a transaction and return its id."""
        ...

    def Rollback(self, request: RollbackRequest) -> Empty:
        """Abandon a transaction."""
        ...

    def BatchGetDocuments(
        self, request: BatchGetDocumentsRequest, stream: ServerStream[BatchGetDocumentsResponse]
    ) -> None:
        """Stream one result per requested document."""
        ...

    def RunQuery(self, request: RunQueryRequest, stream: ServerStream[RunQueryResponse]) -> None:
        """Stream the documents a query matches."""
        ...

    def Listen(self, stream: SubscribeStream[ListenRequest, ListenResponse]) -> None:
        """Stream change events for the targets named in the initial message."""
        ...


# ---------------------------------------------------------------------------
# Introspection
# ---------------------------------------------------------------------------


class MethodKind(Enum):
    """Classification of RPC call patterns."""

    UNARY = "unary"
    SERVER_STREAM = "server_stream"
    SUBSCRIBE = "subscribe"


@dataclass(frozen=True)
class RpcMethodInfo:
    """Metadata for a single RPC method, derived from Protocol type hints.

    Attributes:
        name: Method name as it appears on the Protocol and on the wire.
        kind: Call pattern.
        request_type: Message type of the (initial) request.
        response_type: Message type of the response or of each streamed element.
        doc: The method's docstring from the Protocol class.

    """

    name: str
    kind: MethodKind
    request_type: type[ArrowSerializableDataclass]
    response_type: type[ArrowSerializableDataclass]
    doc: str | None = None

    @property
    def streaming(self) -> bool:
        """Whether the call returns a sequence of responses."""
        return self.kind is not MethodKind.UNARY


def _classify(protocol: type, name: str, hints: dict[str, Any]) -> tuple[MethodKind, Any, Any]:
    stream_hint = hints.get("stream")
    if stream_hint is None:
        return MethodKind.UNARY, hints.get("request"), hints.get("return")
    origin = get_origin(stream_hint)
    args = get_args(stream_hint)
    if origin is ServerStream:
        return MethodKind.SERVER_STREAM, hints.get("request"), args[0]
    if origin is SubscribeStream:
        return MethodKind.SUBSCRIBE, args[0], args[1]
    raise TypeError(f"{protocol.__name__}.{name}(): unsupported stream annotation {stream_hint!r}")


def rpc_methods(protocol: type = DocumentStore) -> Mapping[str, RpcMethodInfo]:
    """Introspect a Protocol class and return RpcMethodInfo for each method.

    Skips underscore-prefixed names and non-callable attributes.

    Raises:
        TypeError: If a method's annotations do not describe a known call
            pattern over message types.

    """
    result: dict[str, RpcMethodInfo] = {}
    for name in dir(protocol):
        if name.startswith("_"):
            continue
        attr = getattr(protocol, name, None)
        if attr is None or not callable(attr):
            continue

        try:
            hints = get_type_hints(attr)
        except (NameError, AttributeError) as exc:
            raise TypeError(f"Failed to resolve type hints for {protocol.__name__}.{name}(): {exc}") from exc

        kind, request_type, response_type = _classify(protocol, name, hints)
        for role, message_type in (("request", request_type), ("response", response_type)):
            if not (isinstance(message_type, type) and issubclass(message_type, ArrowSerializableDataclass)):
                raise TypeError(f"{protocol.__name__}.{name}(): {role} type {message_type!r} is not a message")

        result[name] = RpcMethodInfo(
            name=name,
            kind=kind,
            request_type=request_type,
            response_type=response_type,
            doc=inspect.getdoc(attr),
        )
    return MappingProxyType(result)


def validate_implementation(implementation: object, methods: Mapping[str, RpcMethodInfo]) -> None:
    """Check that *implementation* provides a callable handler for every method.

    Raises:
        TypeError: Listing every missing or non-callable handler.

    """
    errors: list[str] = []
    for name in methods:
        handler = getattr(implementation, name, None)
        if handler is None:
            errors.append(f"missing method '{name}'")
        elif not callable(handler):
            errors.append(f"'{name}' exists but is not callable")
    if errors:
        raise TypeError(f"{type(implementation).__name__} does not implement DocumentStore: " + "; ".join(errors))
