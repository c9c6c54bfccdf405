"""Shared test fixtures for mockfs tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from mockfs.client import StoreClient, connect
from mockfs.documents import Client
from mockfs.host import MockHost
from mockfs.server import MockServer
from mockfs.testing import make_sync_client


@pytest.fixture
def server() -> MockServer:
    """A lookup-mode server with nothing registered."""
    return MockServer()


@pytest.fixture
def ordered_server() -> MockServer:
    """A queue-mode server with nothing registered."""
    return MockServer(ordered=True)


@pytest.fixture
def sync_stub(server: MockServer) -> Iterator[StoreClient]:
    """A stub serving *server* in-process through the Falcon test client."""
    stub = make_sync_client(server)
    yield stub
    stub.close()


@pytest.fixture
def host(server: MockServer) -> Iterator[MockHost]:
    """A running loopback host for *server*."""
    h = MockHost(server)
    h.start()
    yield h
    h.stop()


@pytest.fixture
def stub(host: MockHost) -> Iterator[StoreClient]:
    """An httpx stub connected to *host*."""
    s = connect(host.address)
    yield s
    s.close()


@pytest.fixture
def db(stub: StoreClient) -> Client:
    """A high-level client over the loopback stub."""
    return Client(stub)
