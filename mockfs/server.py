# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""The scripted document-store server.

:class:`MockServer` implements :class:`~mockfs.service.DocumentStore`.
Each handler asks the matcher for the scripted outcome of the call and
adapts it to the call kind: a single response, a sequence of streamed
responses, or an error.

Typical use::

    server = MockServer()
    server.register("GetDocument", None, Document(name="X"))
    server.register(
        "BatchGetDocuments",
        BatchGetDocumentsRequest(database=db, documents=[path]),
        [BatchGetDocumentsResponse(missing=path)],
    )

Errors a test scripts (``StoreError`` instances, alone or inside a
sequence) are raised to the caller.  A test that scripts something the
server cannot serve gets a :class:`~mockfs.errors.HarnessError`.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from mockfs.errors import HarnessError, StatusCode, status_code_of
from mockfs.expectations import (
    Adjust,
    Expectation,
    ExpectationQueue,
    ExpectationStore,
    Failure,
    Matcher,
    Outcome,
    Reply,
    ReplySequence,
    script,
)
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
from mockfs.service import RpcMethodInfo, ServerStream, SubscribeStream, rpc_methods

__all__ = ["MockServer"]

_logger = logging.getLogger("mockfs.server")


class MockServer:
    """Document-store server that replays registered expectations.

    Args:
        ordered: Use queue mode (one FIFO consumed in call order, a
            mismatch fails the call) instead of the default lookup mode.
            Queue mode only supports one caller at a time.
        server_id: Identifier reported in logs and error batches; a
            random 12-char hex id by default.

    """

    __slots__ = ("_matcher", "_methods", "_violations", "_violations_lock", "ordered", "server_id")

    def __init__(self, *, ordered: bool = False, server_id: str | None = None) -> None:
        """Create a server with an empty expectation store."""
        self.ordered = ordered
        self.server_id = server_id if server_id is not None else uuid.uuid4().hex[:12]
        self._methods = rpc_methods()
        self._matcher: Matcher = ExpectationQueue() if ordered else ExpectationStore()
        self._violations: list[HarnessError] = []
        self._violations_lock = threading.Lock()

    @property
    def methods(self) -> Mapping[str, RpcMethodInfo]:
        """The service methods this server answers."""
        return self._methods

    @property
    def pending(self) -> int:
        """Number of registered expectations (remaining ones, in queue mode)."""
        return len(self._matcher)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, method: str, expected: Any, response: object) -> None:
        """Register a response for calls to *method*.

        Args:
            method: Service method name, e.g. ``"GetDocument"``.
            expected: The request the call must equal, or ``None`` to
                accept any request.
            response: A response message, an exception, or for streaming
                methods a list of messages and exceptions.

        Raises:
            ValueError: If *method* is not a service method, or the
                server is in queue mode.

        """
        self.register_adjust(method, expected, response, None)

    def register_adjust(self, method: str, expected: Any, response: object, adjust: Adjust | None) -> None:
        """Register a response whose expected request is patched per call.

        *adjust* receives ``(expected, actual)`` and returns the request
        to compare against, typically a copy of *expected* with fields
        copied from *actual* that the test cannot predict.
        """
        if self.ordered:
            raise ValueError("Server is in queue mode; use add_rpc()/add_rpc_adjust()")
        if method not in self._methods:
            raise ValueError(f"Unknown method: {method!r}. Available methods: {sorted(self._methods)}")
        self._matcher.register(Expectation(method, expected, script(response), adjust))
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug(
                "Registered %s expectation (%s)",
                method,
                "wildcard" if expected is None else type(expected).__name__,
                extra={"server_id": self.server_id, "method": method},
            )

    def add_rpc(self, expected: Any, response: object) -> None:
        """Queue the next expected call (queue mode only)."""
        self.add_rpc_adjust(expected, response, None)

    def add_rpc_adjust(self, expected: Any, response: object, adjust: Adjust | None) -> None:
        """Queue the next expected call with an adjust hook (queue mode only).

        Raises:
            ValueError: If the server is in lookup mode.

        """
        if not self.ordered:
            raise ValueError("Server is in lookup mode; use register()/register_adjust()")
        self._matcher.register(Expectation(None, expected, script(response), adjust))

    def reset(self) -> None:
        """Drop every registered expectation, matched or not."""
        self._matcher.reset()

    # ------------------------------------------------------------------
    # Harness violations
    # ------------------------------------------------------------------

    def record_violation(self, exc: HarnessError) -> None:
        """Remember a harness violation raised while serving a call."""
        with self._violations_lock:
            self._violations.append(exc)

    @property
    def violations(self) -> list[HarnessError]:
        """Harness violations recorded so far, oldest first."""
        with self._violations_lock:
            return list(self._violations)

    def check(self) -> None:
        """Raise the first recorded harness violation, if any.

        Raises:
            HarnessError: The test scripted something the server could not serve.

        """
        with self._violations_lock:
            if self._violations:
                raise self._violations[0]

    # ------------------------------------------------------------------
    # Outcome adaptation
    # ------------------------------------------------------------------

    def _match(self, method: str, request: Any) -> Outcome:
        return self._matcher.match(method, request)

    def _reply(self, method: str, outcome: Outcome) -> Any:
        info = self._methods[method]
        if not isinstance(outcome, Reply):
            raise HarnessError(f"{method}: expected a single {info.response_type.__name__}, got a sequence")
        if not isinstance(outcome.value, info.response_type):
            raise HarnessError(
                f"{method}: bad response type {type(outcome.value).__name__}, "
                f"expected {info.response_type.__name__}"
            )
        return outcome.value

    def _stream(self, method: str, outcome: Outcome, stream: ServerStream[Any]) -> None:
        info = self._methods[method]
        if not isinstance(outcome, ReplySequence):
            raise HarnessError(
                f"{method}: expected a sequence of {info.response_type.__name__}, "
                f"got {type(outcome.value).__name__}"
            )
        items: Sequence[Reply | Failure] = outcome.items
        for position, item in enumerate(items):
            if isinstance(item, Failure):
                raise item.error.with_traceback(None)
            if not isinstance(item.value, info.response_type):
                raise HarnessError(
                    f"{method}: bad element #{position} of type {type(item.value).__name__}, "
                    f"expected {info.response_type.__name__} or an exception"
                )
            stream.send(item.value)

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    def GetDocument(self, request: GetDocumentRequest) -> Document:
        """Return the scripted document."""
        reply: Document = self._reply("GetDocument", self._match("GetDocument", request))
        return reply

    def Commit(self, request: CommitRequest) -> CommitResponse:
        """Return the scripted commit response."""
        reply: CommitResponse = self._reply("Commit", self._match("Commit", request))
        return reply

    def BeginTransaction(self, request: BeginTransactionRequest) -> BeginTransactionResponse:
        """Return the scripted transaction id."""
        reply: BeginTransactionResponse = self._reply("BeginTransaction", self._match("BeginTransaction", request))
        return reply

    def Rollback(self, request: RollbackRequest) -> Empty:
        """Return the scripted rollback outcome."""
        reply: Empty = self._reply("Rollback", self._match("Rollback", request))
        return reply

    def BatchGetDocuments(
        self, request: BatchGetDocumentsRequest, stream: ServerStream[BatchGetDocumentsResponse]
    ) -> None:
        """Send the scripted results in order, stopping at the first error."""
        self._stream("BatchGetDocuments", self._match("BatchGetDocuments", request), stream)

    def RunQuery(self, request: RunQueryRequest, stream: ServerStream[RunQueryResponse]) -> None:
        """Send the scripted query results in order, stopping at the first error."""
        self._stream("RunQuery", self._match("RunQuery", request), stream)

    def Listen(self, stream: SubscribeStream[ListenRequest, ListenResponse]) -> None:
        """Receive the initial request, then send the scripted events.

        A failure with status ``UNKNOWN`` at match time (no expectation,
        or an unclassified scripted error) means the test never scripted
        this listener; it is raised as a :class:`HarnessError`.
        """
        request = stream.recv()
        try:
            outcome = self._match("Listen", request)
        except HarnessError:
            raise
        except Exception as exc:
            if status_code_of(exc) is StatusCode.UNKNOWN:
                raise HarnessError(f"Listen: {exc}") from exc
            raise
        self._stream("Listen", outcome, stream)
