"""Error taxonomy shared by the ledger, the stores and the tool registry.

Persistence problems are raised as exceptions inside the storage layer and
converted to structured values (``ErrorKind`` + message) at the ledger and
tool boundary. Nothing raised here is allowed to escape an orchestration
turn.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_ARGUMENT = "invalid_argument"
    STORAGE_FAILURE = "storage_failure"
    UNKNOWN_TOOL = "unknown_tool"
    UPSTREAM_FAILURE = "upstream_failure"
    CONFLICT = "conflict"


class StorageError(Exception):
    """A persisted collection could not be read or written."""


class VersionConflictError(StorageError):
    """The collection changed on disk since it was read."""

    def __init__(self, path: str, expected: int, actual: int) -> None:
        super().__init__(f"{path}: expected version {expected}, found {actual}")
        self.expected = expected
        self.actual = actual


def error_result(message: str, kind: ErrorKind | None = None, **extra: Any) -> dict[str, Any]:
    """Build the ``{error: ...}`` shape handed back to the reasoning engine."""
    result: dict[str, Any] = {"error": message}
    if kind is not None:
        result["error_kind"] = kind.value
    result.update(extra)
    return result
