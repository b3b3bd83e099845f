"""Structured error types for festival progress tracking.

Every error carries a machine-readable code, a human message, the
operation that failed and an optional bag of context fields, so callers
can render them as JSON payloads or plain text.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

ERR_NOT_FOUND = "NOT_FOUND"
ERR_VALIDATION = "VALIDATION"
ERR_IO = "IO"
ERR_PARSE = "PARSE"
ERR_CANCELLED = "CANCELLED"
ERR_INTERNAL = "INTERNAL"


class FestError(Exception):
    """Base error with code, operation and context fields."""

    code = ERR_INTERNAL

    def __init__(
        self,
        message: str,
        *,
        op: Optional[str] = None,
        cause: Optional[BaseException] = None,
        fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.op = op
        self.cause = cause
        self.fields: Dict[str, Any] = dict(fields or {})
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        text = self.message
        if self.op:
            text = f"{self.op}: {text}"
        if self.cause is not None:
            text = f"{text}: {self.cause}"
        return text

    def with_field(self, key: str, value: Any) -> "FestError":
        """Attach a context field and return self for chaining."""
        self.fields[key] = value
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.op:
            data["op"] = self.op
        if self.cause is not None:
            data["cause"] = str(self.cause)
        if self.fields:
            data["fields"] = dict(self.fields)
        return data


class NotFoundError(FestError):
    """A festival root, progress file or task record is missing."""

    code = ERR_NOT_FOUND


class ValidationError(FestError, ValueError):
    """Caller input was rejected (bad percentage, ambiguous task ID, ...)."""

    code = ERR_VALIDATION


class FestIOError(FestError):
    """Reading or writing a file failed."""

    code = ERR_IO


class ParseError(FestError):
    """Persisted progress data is malformed."""

    code = ERR_PARSE


class CancelledError(FestError):
    """The caller cancelled the operation before it started."""

    code = ERR_CANCELLED


def check_cancelled(cancel, op: str) -> None:
    """Raise CancelledError if the cancellation event is set."""
    if cancel is not None and cancel.is_set():
        raise CancelledError("context cancelled", op=op)
