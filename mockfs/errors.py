# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Status codes and the exception hierarchy of the mock server.

Three kinds of failure are kept apart:

- :class:`StoreError` is a scripted, business-level failure.  Tests
  register instances as responses (or stream elements) and the client
  sees them as the RPC's outcome.
- :class:`MatchError` and its subclasses are reportable failures to find
  a usable expectation.  They are ``StoreError`` instances with status
  ``UNKNOWN`` so an un-mocked call surfaces as a catchable RPC error.
- :class:`HarnessError` signals that the test itself is mis-written
  (empty queue, wrong response type).  It is deliberately *not* a
  ``StoreError`` and is never treated as a simulated remote failure.
"""

from __future__ import annotations

from enum import Enum

__all__ = [
    "HarnessError",
    "MatchError",
    "MethodNotRegisteredError",
    "NoMatchingExpectationError",
    "RequestMismatchError",
    "RpcError",
    "StatusCode",
    "StoreError",
    "VersionError",
    "status_code_of",
]


class StatusCode(Enum):
    """Canonical RPC status codes carried by errors on the wire."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


def status_code_of(exc: BaseException) -> StatusCode:
    """Return the status code an exception carries, ``UNKNOWN`` when it has none."""
    code = getattr(exc, "code", None)
    if isinstance(code, StatusCode):
        return code
    return StatusCode.UNKNOWN


# ---------------------------------------------------------------------------
# Scripted / business errors
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """An error returned by the document store as the outcome of an RPC.

    Attributes:
        code: The status code the caller observes.
        message: Human-readable description.

    """

    def __init__(self, code: StatusCode, message: str) -> None:
        """Initialize with a status code and message."""
        self.code = code
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        """Return a string representation suitable for debugging."""
        return f"{type(self).__name__}({self.code.name}, {self.message!r})"

    @classmethod
    def not_found(cls, message: str) -> StoreError:
        """Create a ``NOT_FOUND`` error."""
        return cls(StatusCode.NOT_FOUND, message)

    @classmethod
    def already_exists(cls, message: str) -> StoreError:
        """Create an ``ALREADY_EXISTS`` error."""
        return cls(StatusCode.ALREADY_EXISTS, message)

    @classmethod
    def invalid_argument(cls, message: str) -> StoreError:
        """Create an ``INVALID_ARGUMENT`` error."""
        return cls(StatusCode.INVALID_ARGUMENT, message)

    @classmethod
    def aborted(cls, message: str) -> StoreError:
        """Create an ``ABORTED`` error."""
        return cls(StatusCode.ABORTED, message)

    @classmethod
    def unavailable(cls, message: str) -> StoreError:
        """Create an ``UNAVAILABLE`` error."""
        return cls(StatusCode.UNAVAILABLE, message)

    @classmethod
    def internal(cls, message: str) -> StoreError:
        """Create an ``INTERNAL`` error."""
        return cls(StatusCode.INTERNAL, message)

    @classmethod
    def unknown(cls, message: str) -> StoreError:
        """Create an ``UNKNOWN`` error."""
        return cls(StatusCode.UNKNOWN, message)


# ---------------------------------------------------------------------------
# Matching failures (reportable)
# ---------------------------------------------------------------------------


class MatchError(StoreError):
    """No usable expectation was found for an incoming request."""

    def __init__(self, message: str) -> None:
        """Initialize with the rendered diagnostic message."""
        super().__init__(StatusCode.UNKNOWN, message)


class MethodNotRegisteredError(MatchError):
    """Nothing has been registered for the called method."""


class NoMatchingExpectationError(MatchError):
    """Expectations exist for the method but none equals the request."""


class RequestMismatchError(MatchError):
    """The head of the ordered queue expected a different request."""


# ---------------------------------------------------------------------------
# Harness misuse (fatal)
# ---------------------------------------------------------------------------


class HarnessError(Exception):
    """The test registered something the mock cannot serve.

    Raised for an exhausted ordered queue, a response of the wrong type,
    or an unclassified failure on the subscribe stream.  These indicate a
    broken test rather than behaviour under test.
    """


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------


class RpcError(Exception):
    """Raised on the client side when the server reports an error."""

    def __init__(
        self,
        error_type: str,
        error_message: str,
        remote_traceback: str,
        *,
        code: StatusCode = StatusCode.UNKNOWN,
        request_id: str = "",
    ) -> None:
        """Initialize with error details from the remote side."""
        self.error_type = error_type
        self.error_message = error_message
        self.remote_traceback = remote_traceback
        self.code = code
        self.request_id = request_id
        super().__init__(f"{error_type}: {error_message}")


class VersionError(Exception):
    """Raised when a request has a missing or incompatible protocol version."""
