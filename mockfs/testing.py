# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Helpers for tests that talk to a :class:`~mockfs.server.MockServer`.

:func:`new` is the usual entry point: it starts a server on the loopback
and yields a connected :class:`~mockfs.documents.Client` with it::

    with mockfs.testing.new() as (client, server):
        server.register("BatchGetDocuments", None, [BatchGetDocumentsResponse(missing=path)])
        assert not client.collection("C").document("b").get().exists

:func:`make_sync_client` skips the socket and calls the WSGI app
in-process through ``falcon.testing.TestClient``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from urllib.parse import urlparse

import falcon
import falcon.testing

from mockfs.client import StoreClient, connect
from mockfs.documents import Client
from mockfs.host import HostConfig, MockHost, make_wsgi_app
from mockfs.server import MockServer

__all__ = ["make_sync_client", "new"]


class _SyncTestResponse:
    """Minimal response object matching what StoreClient expects from httpx.Response."""

    __slots__ = ("content", "headers", "status_code")

    def __init__(self, status_code: int, content: bytes, headers: dict[str, str]) -> None:
        self.status_code = status_code
        self.content = content
        self.headers = {name.lower(): value for name, value in headers.items()}


class _SyncTestClient:
    """Sync HTTP client that calls a Falcon WSGI app directly via falcon.testing.TestClient."""

    __slots__ = ("_client",)

    def __init__(self, app: falcon.App[falcon.Request, falcon.Response]) -> None:
        self._client = falcon.testing.TestClient(app)

    def post(self, url: str, *, content: bytes, headers: dict[str, str]) -> _SyncTestResponse:
        """Send a synchronous POST using the Falcon test client."""
        result = self._client.simulate_post(urlparse(url).path, body=content, headers=headers)
        return _SyncTestResponse(result.status_code, result.content, dict(result.headers))

    def close(self) -> None:
        """Close the client (no-op for test client)."""


def make_sync_client(server: MockServer, *, prefix: str = "/mockfs") -> StoreClient:
    """Create a :class:`StoreClient` that serves calls in-process.

    Args:
        server: The server to answer calls.
        prefix: URL prefix for the RPC routes.

    """
    return connect(client=_SyncTestClient(make_wsgi_app(server, prefix=prefix)), prefix=prefix)


@contextmanager
def new(
    *,
    ordered: bool = False,
    config: HostConfig | None = None,
    project: str = "projectID",
    database: str = "(default)",
) -> Iterator[tuple[Client, MockServer]]:
    """Start a server on the loopback and yield ``(client, server)``.

    On exit the client is closed and the host stopped.  If the block
    completed, the first harness violation recorded while serving is
    raised.

    Args:
        ordered: Create the server in queue mode.
        config: Listener settings for the host.
        project: Project id of the yielded client.
        database: Database id of the yielded client.

    Raises:
        HarnessError: A call hit an expectation the server could not serve.

    """
    server = MockServer(ordered=ordered)
    host = MockHost(server, config)
    address = host.start()
    try:
        stub = connect(address, prefix=host.config.prefix)
        try:
            yield Client(stub, project=project, database=database), server
        finally:
            stub.close()
    finally:
        host.stop()
    server.check()
