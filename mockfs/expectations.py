# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Expectation storage and request matching.

A test scripts the mock by registering :class:`Expectation` entries.
When a call arrives, the matcher picks an entry, compares the request
against it and hands back the scripted outcome.  Two disciplines exist:

- :class:`ExpectationStore` (lookup mode): entries are grouped by method
  and scanned in registration order.  A mismatch moves on to the next
  entry; nothing is consumed, so one entry can serve many calls.
- :class:`ExpectationQueue` (queue mode): a single FIFO across all
  methods.  Every call consumes the head entry and a mismatch fails the
  call.  Calls must arrive one at a time in this mode.

Both guard their backing structure with one lock held for every read
and write.
"""

from __future__ import annotations

import difflib
import logging
import pprint
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from mockfs.errors import HarnessError, MethodNotRegisteredError, NoMatchingExpectationError, RequestMismatchError
from mockfs.messages import format_message
from mockfs.normalize import normalize
from mockfs.utils import ArrowSerializableDataclass

__all__ = [
    "Adjust",
    "Expectation",
    "ExpectationQueue",
    "ExpectationStore",
    "Failure",
    "Matcher",
    "Outcome",
    "Reply",
    "ReplySequence",
    "Scripted",
    "describe_mismatch",
    "script",
]

_logger = logging.getLogger("mockfs.server")

Adjust = Callable[[Any, Any], Any]
"""``(expected, actual) -> adjusted expected``; must return a copy."""


# ---------------------------------------------------------------------------
# Scripted responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Reply:
    """A single response value."""

    value: Any


@dataclass(frozen=True)
class Failure:
    """An error delivered as the call's outcome."""

    error: BaseException


@dataclass(frozen=True)
class ReplySequence:
    """Ordered elements of a streamed response."""

    items: tuple[Reply | Failure, ...]


type Scripted = Reply | Failure | ReplySequence
type Outcome = Reply | ReplySequence


def script(response: object) -> Scripted:
    """Classify a registered response.

    Exceptions become :class:`Failure`, lists and tuples become a
    :class:`ReplySequence` whose elements are classified the same way
    (one level deep), and anything else is a :class:`Reply`.  Already
    classified values pass through.
    """
    if isinstance(response, (Reply, Failure, ReplySequence)):
        return response
    if isinstance(response, BaseException):
        return Failure(response)
    if isinstance(response, (list, tuple)):
        return ReplySequence(tuple(Failure(r) if isinstance(r, BaseException) else Reply(r) for r in response))
    return Reply(response)


@dataclass(frozen=True)
class Expectation:
    """One scripted interaction.

    Attributes:
        method: Service method the entry applies to, ``None`` in queue mode.
        expected: Request the call must equal, or ``None`` to accept any.
        response: The scripted outcome.
        adjust: Optional hook patching ``expected`` from the actual request.

    """

    method: str | None
    expected: Any
    response: Scripted
    adjust: Adjust | None = None

    @property
    def is_wildcard(self) -> bool:
        """Whether the entry accepts any request."""
        return self.expected is None

    def comparison_basis(self, actual: Any) -> Any:
        """Return the normalized request *actual* must equal."""
        want = self.expected if self.adjust is None else self.adjust(self.expected, actual)
        return normalize(want)


def _unwrap(expectation: Expectation) -> Outcome:
    response = expectation.response
    if isinstance(response, Failure):
        raise response.error.with_traceback(None)
    return response


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def _render(value: Any) -> str:
    if isinstance(value, ArrowSerializableDataclass):
        return format_message(value)
    return pprint.pformat(value)


def describe_mismatch(got: Any, want: Any) -> str:
    """Render both requests and a unified diff between them."""
    got_text = _render(got)
    want_text = _render(want)
    diff = difflib.unified_diff(want_text.splitlines(), got_text.splitlines(), "want", "got", lineterm="")
    return (
        f"got: {type(got).__name__}\n{got_text}\n"
        f"want: {type(want).__name__}\n{want_text}\n"
        f"diff (-want +got):\n" + "\n".join(diff)
    )


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------


class Matcher(Protocol):
    """Common surface of both expectation disciplines."""

    def register(self, expectation: Expectation) -> None:
        """Add an expectation."""
        ...

    def match(self, method: str, actual: Any) -> Outcome:
        """Return the scripted outcome for a call, raising scripted errors."""
        ...

    def reset(self) -> None:
        """Drop every registered expectation."""
        ...

    def __len__(self) -> int:
        """Return the number of registered expectations."""
        ...


class ExpectationStore:
    """Lookup-mode matcher: per-method lists, first equal entry wins."""

    __slots__ = ("_by_method", "_lock")

    def __init__(self) -> None:
        """Create an empty store."""
        self._lock = threading.Lock()
        self._by_method: dict[str, list[Expectation]] = {}

    def register(self, expectation: Expectation) -> None:
        """Append *expectation* to its method's list.

        Raises:
            ValueError: If the expectation has no method.

        """
        if expectation.method is None:
            raise ValueError("Lookup mode requires a method name on every expectation")
        with self._lock:
            self._by_method.setdefault(expectation.method, []).append(expectation)

    def match(self, method: str, actual: Any) -> Outcome:
        """Find the first entry for *method* that accepts *actual*.

        Raises:
            MethodNotRegisteredError: Nothing was registered for *method*.
            NoMatchingExpectationError: No entry accepts *actual*.
            BaseException: The scripted error, when the entry holds one.

        """
        got = normalize(actual)
        with self._lock:
            candidates = self._by_method.get(method)
            if candidates is None:
                raise MethodNotRegisteredError(f"No expectations registered for method {method!r}")
            rejected: list[Any] = []
            for index, expectation in enumerate(candidates):
                if expectation.is_wildcard:
                    break
                want = expectation.comparison_basis(actual)
                if want == got:
                    break
                rejected.append(want)
            else:
                raise NoMatchingExpectationError(_describe_no_match(method, got, rejected))
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Matched %s against expectation #%d", method, index, extra={"method": method})
        return _unwrap(expectation)

    def reset(self) -> None:
        """Drop every registered expectation."""
        with self._lock:
            self._by_method.clear()

    def __len__(self) -> int:
        """Return the number of registered expectations."""
        with self._lock:
            return sum(len(entries) for entries in self._by_method.values())


def _describe_no_match(method: str, got: Any, rejected: list[Any]) -> str:
    parts = [f"No registered expectation for method {method!r} matches the request"]
    for position, want in enumerate(rejected, start=1):
        parts.append(f"--- candidate {position} of {len(rejected)} ---")
        parts.append(describe_mismatch(got, want))
    return "\n".join(parts)


class ExpectationQueue:
    """Queue-mode matcher: one FIFO consumed by every call in order."""

    __slots__ = ("_lock", "_queue")

    def __init__(self) -> None:
        """Create an empty queue."""
        self._lock = threading.Lock()
        self._queue: deque[Expectation] = deque()

    def register(self, expectation: Expectation) -> None:
        """Append *expectation* to the queue."""
        with self._lock:
            self._queue.append(expectation)

    def match(self, method: str, actual: Any) -> Outcome:
        """Consume the head entry and check *actual* against it.

        Raises:
            HarnessError: The queue is empty.
            RequestMismatchError: The head entry expects another request.
            BaseException: The scripted error, when the entry holds one.

        """
        with self._lock:
            if not self._queue:
                raise HarnessError(f"Out of expectations: {method} called with\n{_render(actual)}")
            expectation = self._queue.popleft()
        if not expectation.is_wildcard:
            got = normalize(actual)
            want = expectation.comparison_basis(actual)
            if want != got:
                raise RequestMismatchError("Bad request\n" + describe_mismatch(got, want))
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Matched %s against queued expectation", method, extra={"method": method})
        return _unwrap(expectation)

    def reset(self) -> None:
        """Drop every queued expectation."""
        with self._lock:
            self._queue.clear()

    def __len__(self) -> int:
        """Return the number of queued expectations."""
        with self._lock:
            return len(self._queue)
