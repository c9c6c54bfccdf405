# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""HTTP client stub for a :class:`~mockfs.host.MockHost`.

:func:`connect` returns a :class:`StoreClient` with one method per service
method.  Unary methods return the response message; streaming methods
return an iterator over the streamed messages that raises
:class:`~mockfs.errors.RpcError` when the server's error batch is reached.

Any object with ``post(url, *, content, headers)`` returning something
with ``status_code``, ``headers`` and ``content`` can stand in for the
``httpx.Client``; :func:`mockfs.testing.make_sync_client` builds one that
calls the WSGI app in-process.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from io import BytesIO
from typing import Any, Protocol

import httpx

from mockfs._debug import wire_http_logger
from mockfs.errors import RpcError, StatusCode
from mockfs.host import ARROW_CONTENT_TYPE
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
from mockfs.wire import read_responses, write_request

__all__ = ["StoreClient", "connect"]


class _HttpResponse(Protocol):
    status_code: int
    headers: Any
    content: bytes


class _HttpClient(Protocol):
    def post(self, url: str, *, content: bytes, headers: dict[str, str]) -> _HttpResponse: ...

    def close(self) -> None: ...


class StoreClient:
    """Typed stub for the document-store service.

    Args:
        client: HTTP client whose base URL points at the host.
        prefix: URL prefix of the RPC routes.
        own_client: Close *client* in :meth:`close`.

    """

    __slots__ = ("_client", "_own_client", "_prefix")

    def __init__(self, client: _HttpClient, *, prefix: str = "/mockfs", own_client: bool = False) -> None:
        """Wrap *client*."""
        self._client = client
        self._prefix = prefix
        self._own_client = own_client

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _post(self, method: str, request: ArrowSerializableDataclass) -> bytes:
        """Send one request stream and return the response body."""
        buf = BytesIO()
        write_request(buf, method, request)
        body = buf.getvalue()
        url = f"{self._prefix}/{method}"
        if wire_http_logger.isEnabledFor(logging.DEBUG):
            wire_http_logger.debug("HTTP POST %s: request_bytes=%d", url, len(body))
        resp = self._client.post(url, content=body, headers={"Content-Type": ARROW_CONTENT_TYPE})
        if wire_http_logger.isEnabledFor(logging.DEBUG):
            wire_http_logger.debug(
                "HTTP response %s: status=%d, size=%d", url, resp.status_code, len(resp.content)
            )
        content_type = resp.headers.get("content-type", "")
        if not content_type.startswith(ARROW_CONTENT_TYPE):
            raise RpcError(
                "HttpError",
                f"HTTP {resp.status_code} from {url}: {resp.content[:200].decode(errors='replace')}",
                "",
                code=StatusCode.UNAVAILABLE,
            )
        return resp.content

    def _unary[M: ArrowSerializableDataclass](
        self, method: str, request: ArrowSerializableDataclass, response_type: type[M]
    ) -> M:
        responses = list(read_responses(self._post(method, request), response_type))
        if len(responses) != 1:
            raise RpcError(
                "ProtocolError", f"{method}: expected one response message, got {len(responses)}", ""
            )
        return responses[0]

    # ------------------------------------------------------------------
    # Service methods
    # ------------------------------------------------------------------

    def GetDocument(self, request: GetDocumentRequest) -> Document:
        """Fetch one document."""
        return self._unary("GetDocument", request, Document)

    def Commit(self, request: CommitRequest) -> CommitResponse:
        """Apply a batch of writes."""
        return self._unary("Commit", request, CommitResponse)

    def BeginTransaction(self, request: BeginTransactionRequest) -> BeginTransactionResponse:
        """Start a transaction."""
        return self._unary("BeginTransaction", request, BeginTransactionResponse)

    def Rollback(self, request: RollbackRequest) -> Empty:
        """Abandon a transaction."""
        return self._unary("Rollback", request, Empty)

    def BatchGetDocuments(self, request: BatchGetDocumentsRequest) -> Iterator[BatchGetDocumentsResponse]:
        """Fetch several documents; one result per document, found or missing."""
        return read_responses(self._post("BatchGetDocuments", request), BatchGetDocumentsResponse)

    def RunQuery(self, request: RunQueryRequest) -> Iterator[RunQueryResponse]:
        """Run a query and stream its results."""
        return read_responses(self._post("RunQuery", request), RunQueryResponse)

    def Listen(self, request: ListenRequest) -> Iterator[ListenResponse]:
        """Open a listener with its initial request and stream its events."""
        return read_responses(self._post("Listen", request), ListenResponse)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the underlying HTTP client if this stub created it."""
        if self._own_client:
            self._client.close()

    def __enter__(self) -> StoreClient:
        """Return the stub."""
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Close the stub."""
        self.close()


def connect(
    address: str | None = None,
    *,
    prefix: str = "/mockfs",
    client: _HttpClient | None = None,
    timeout: float = 10.0,
) -> StoreClient:
    """Create a :class:`StoreClient` for the host at *address*.

    Args:
        address: ``host:port`` (as returned by :meth:`MockHost.start`) or a
            base URL.  Required when *client* is ``None``.
        prefix: URL prefix matching the host's prefix.
        client: Optional pre-built HTTP client, e.g. from
            :func:`mockfs.testing.make_sync_client`.  It is not closed by
            the returned stub.
        timeout: Request timeout in seconds for the internally-created client.

    Raises:
        ValueError: If both *address* and *client* are ``None``.

    """
    if client is not None:
        return StoreClient(client, prefix=prefix)
    if address is None:
        raise ValueError("address is required when client is not provided")
    base_url = address if "://" in address else f"http://{address}"
    return StoreClient(
        httpx.Client(base_url=base_url, follow_redirects=True, timeout=timeout), prefix=prefix, own_client=True
    )
