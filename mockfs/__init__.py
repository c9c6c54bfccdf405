# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Scriptable mock of a document-database RPC service for tests."""

import logging

from mockfs.client import StoreClient, connect
from mockfs.documents import SERVER_TIMESTAMP, Client, DocumentReference, DocumentSnapshot, Increment, Transaction
from mockfs.errors import (
    HarnessError,
    MatchError,
    MethodNotRegisteredError,
    NoMatchingExpectationError,
    RequestMismatchError,
    RpcError,
    StatusCode,
    StoreError,
    VersionError,
)
from mockfs.expectations import Adjust
from mockfs.host import HostConfig, MockHost, make_wsgi_app
from mockfs.log import Level, Message
from mockfs.metadata import REQUEST_VERSION
from mockfs.normalize import normalize
from mockfs.server import MockServer
from mockfs.service import DocumentStore, MethodKind, RpcMethodInfo, rpc_methods
from mockfs.testing import make_sync_client, new
from mockfs.utils import ArrowSerializableDataclass, IPCError

__all__ = [
    # Server
    "MockServer",
    "Adjust",
    "normalize",
    # Host
    "MockHost",
    "HostConfig",
    "make_wsgi_app",
    # Service
    "DocumentStore",
    "MethodKind",
    "RpcMethodInfo",
    "rpc_methods",
    # Clients
    "StoreClient",
    "connect",
    "Client",
    "DocumentReference",
    "DocumentSnapshot",
    "Transaction",
    "SERVER_TIMESTAMP",
    "Increment",
    # Testing
    "new",
    "make_sync_client",
    # Errors
    "StatusCode",
    "StoreError",
    "MatchError",
    "MethodNotRegisteredError",
    "NoMatchingExpectationError",
    "RequestMismatchError",
    "HarnessError",
    "RpcError",
    "VersionError",
    "IPCError",
    # Logging
    "Level",
    "Message",
    # Serialization
    "ArrowSerializableDataclass",
    # Protocol version
    "REQUEST_VERSION",
]

# Attach NullHandler to the root logger so library users don't get
# "No handler found" warnings.
logging.getLogger("mockfs").addHandler(logging.NullHandler())
