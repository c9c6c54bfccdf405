# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Log messages carried in Arrow batch metadata.

Errors reach the client as zero-row batches whose custom metadata holds a
:class:`Message`.  ``Message.from_exception`` captures the exception type,
its status code and a truncated traceback:

    md = Message.from_exception(exc).add_to_metadata()
    writer.write_batch(empty_batch(schema), custom_metadata=encode_metadata(md))

KEY CLASSES
-----------
Level : Enum with EXCEPTION, ERROR, WARN, INFO, DEBUG
Message : Log message with level, message text, and optional extras

"""

from __future__ import annotations

import json
import traceback
from enum import Enum
from typing import ClassVar

from mockfs.errors import status_code_of
from mockfs.metadata import LOG_EXTRA_KEY, LOG_LEVEL_KEY, LOG_MESSAGE_KEY

__all__ = [
    "Level",
    "Message",
]


class Level(Enum):
    """Severity levels for messages sent alongside response batches.

    Attributes:
        EXCEPTION: Error that terminated the call; the client raises.
        ERROR: Significant error that did not terminate the call.
        WARN: Potential issue worth reviewing.
        INFO: General informational message.
        DEBUG: Detailed information useful for debugging.

    """

    EXCEPTION = "EXCEPTION"
    ERROR = "ERROR"
    WARN = "WARN"
    INFO = "INFO"
    DEBUG = "DEBUG"


class Message:
    """Log message transmitted to the client as a zero-row batch.

    Attributes:
        level: Severity level indicating the nature of the message.
        message: Human-readable log message text.
        extra: Additional key-value pairs, JSON encoded on the wire.

    """

    __slots__ = ("extra", "level", "message")
    __hash__ = None  # type: ignore[assignment]

    _MAX_TRACEBACK_CHARS: ClassVar[int] = 16_000

    def __init__(self, level: Level, message: str, **kwargs: object) -> None:
        """Create a log message with level, message text, and optional extras."""
        self.level = level
        self.message = message
        self.extra: dict[str, object] | None = kwargs if kwargs else None

    def __eq__(self, other: object) -> bool:
        """Compare log messages by level, message, and extra fields."""
        if not isinstance(other, Message):
            return NotImplemented
        return self.level == other.level and self.message == other.message and self.extra == other.extra

    def __repr__(self) -> str:
        """Return a string representation suitable for debugging."""
        if self.extra:
            return f"Message({self.level!r}, {self.message!r}, **{self.extra!r})"
        return f"Message({self.level!r}, {self.message!r})"

    @classmethod
    def exception(cls, message: str, **kwargs: object) -> Message:
        """Create an EXCEPTION level log message."""
        return cls(Level.EXCEPTION, message, **kwargs)

    def add_to_metadata(self, metadata: dict[str, str] | None = None) -> dict[str, str]:
        """Return a copy of *metadata* with the log fields added.

        The result holds ``mockfs.log_level``, ``mockfs.log_message`` and,
        when extras are present, ``mockfs.log_extra`` as a JSON string.
        """
        result = dict(metadata) if metadata else {}
        result[LOG_LEVEL_KEY.decode()] = self.level.value
        result[LOG_MESSAGE_KEY.decode()] = self.message
        if self.extra:
            result[LOG_EXTRA_KEY.decode()] = json.dumps(self.extra)
        return result

    @classmethod
    def from_exception(cls, exc: BaseException) -> Message:
        """Produce an EXCEPTION message from an exception.

        The text is the exception's own message so the client can rebuild
        the original error; type, status code and traceback go in extras.
        """
        tb_exc = traceback.TracebackException.from_exception(exc, capture_locals=False)

        formatted_tb = "".join(tb_exc.format())
        if len(formatted_tb) > cls._MAX_TRACEBACK_CHARS:
            formatted_tb = formatted_tb[: cls._MAX_TRACEBACK_CHARS] + "\n… <traceback truncated>"

        return cls(
            Level.EXCEPTION,
            str(exc),
            exception_type=type(exc).__name__,
            status_code=status_code_of(exc).name,
            traceback=formatted_tb,
        )
