"""Exception types and row-error classification for the write path.

Only :class:`StoreConnectionError` ever crosses the template boundary.
Row-level and coercion-level problems are absorbed, logged and bounded by
the retry budget.
"""

from __future__ import annotations

from enum import StrEnum

from kudu_sink.store.base import OperationType

# Substrings Kudu puts in row errors for convergent replays
KEY_ALREADY_PRESENT = "key already present"
KEY_NOT_FOUND = "key not found"


class KuduSinkError(Exception):
    """Base class for all sink errors."""


class StoreConnectionError(KuduSinkError):
    """Table-open, session-create or flush-transport failure."""


class CoercionError(KuduSinkError):
    """A raw value could not be converted to the column's type."""

    def __init__(self, column: str, column_type: str, value: object) -> None:
        self.column = column
        self.column_type = column_type
        self.value = value
        super().__init__(
            f"cannot coerce {value!r} to {column_type} for column '{column}'"
        )


class TruncateIncompleteError(KuduSinkError):
    """The backup-table rename did not complete. Logged, never raised to callers."""


class RowErrorKind(StrEnum):
    BENIGN = "benign"
    REAL = "real"


def classify_row_error(op: OperationType, message: str | None) -> RowErrorKind:
    """Classify a per-row flush error.

    A duplicate-key insert or a missing-key delete is what at-least-once
    replay produces, so neither is treated as a failure.
    """
    if message:
        if op == OperationType.INSERT and KEY_ALREADY_PRESENT in message:
            return RowErrorKind.BENIGN
        if op == OperationType.DELETE and KEY_NOT_FOUND in message:
            return RowErrorKind.BENIGN
    return RowErrorKind.REAL
