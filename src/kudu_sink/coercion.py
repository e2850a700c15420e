"""Type-directed conversion of raw event values into column values."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

from kudu_sink.errors import CoercionError
from kudu_sink.store.base import ColumnType

logger = structlog.get_logger()

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
TIMESTAMP_WIDTH = 19
# Written in place of "0" and unparsable dates so a bad date never blocks a row
SENTINEL_TIMESTAMP = datetime(2099, 11, 11, 11, 11, 11, tzinfo=UTC)

_INT_PATTERN = re.compile(r"^[+-]?\d+$")
_INT_BITS = {
    ColumnType.INT8: 8,
    ColumnType.INT16: 16,
    ColumnType.INT32: 32,
    ColumnType.INT64: 64,
}


class Outcome(StrEnum):
    SET = "set"
    NULL = "null"
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class Coerced:
    outcome: Outcome
    value: Any = None


NULL = Coerced(Outcome.NULL)
SKIP = Coerced(Outcome.SKIP)


def mask(text: str) -> str:
    """Irreversibly hash a value (SHA-256 of its SHA-256 hex digest)."""
    first = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return hashlib.sha256(first.encode("utf-8")).hexdigest()


def to_text(raw: Any) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    if isinstance(raw, bool):
        return "true" if raw else "false"
    return str(raw)


def parse_int(column: str, text: str, column_type: ColumnType) -> int:
    if not _INT_PATTERN.match(text):
        raise CoercionError(column, column_type, text)
    value = int(text)
    bits = _INT_BITS[column_type]
    if not -(1 << (bits - 1)) <= value < (1 << (bits - 1)):
        raise CoercionError(column, column_type, text)
    return value


def parse_float(column: str, text: str, column_type: ColumnType) -> float:
    try:
        return float(text)
    except ValueError:
        raise CoercionError(column, column_type, text) from None


def parse_timestamp(text: str) -> datetime:
    """Parse ``yyyy-MM-dd HH:mm:ss`` as UTC, ignoring anything past 19 chars.

    ``"0"`` and unparsable text resolve to :data:`SENTINEL_TIMESTAMP`.
    """
    if text == "0":
        return SENTINEL_TIMESTAMP
    try:
        parsed = datetime.strptime(text[:TIMESTAMP_WIDTH], TIMESTAMP_FORMAT)
    except ValueError:
        logger.warning("coercion.bad_timestamp", value=text)
        return SENTINEL_TIMESTAMP
    return parsed.replace(tzinfo=UTC)


def coerce_value(
    column: str,
    raw: Any,
    column_type: ColumnType | None,
    *,
    encrypt: bool = False,
) -> Coerced:
    """Convert *raw* for a column of *column_type*.

    Numeric and boolean parse failures leave only this column unset, so the
    other columns of the row (its key included) are still written. Unknown
    types are skipped.
    """
    if column_type is None:
        logger.warning("coercion.unknown_type", column=column)
        return SKIP
    if raw is None:
        return NULL

    text = to_text(raw)
    if encrypt:
        text = mask(text)

    try:
        if column_type in _INT_BITS:
            return Coerced(Outcome.SET, parse_int(column, text, column_type))
        if column_type in (ColumnType.FLOAT, ColumnType.DOUBLE):
            return Coerced(Outcome.SET, parse_float(column, text, column_type))
    except CoercionError as exc:
        logger.error(
            "coercion.failed",
            column=column,
            column_type=str(column_type),
            value=raw,
            error=str(exc),
        )
        return SKIP

    if column_type == ColumnType.BOOL:
        lowered = text.lower()
        if lowered not in ("true", "false"):
            logger.warning("coercion.invalid_bool", column=column, value=raw)
            return SKIP
        return Coerced(Outcome.SET, lowered == "true")
    if column_type == ColumnType.STRING:
        return Coerced(Outcome.SET, text)
    if column_type == ColumnType.BINARY:
        if isinstance(raw, bytes) and not encrypt:
            return Coerced(Outcome.SET, raw)
        return Coerced(Outcome.SET, text.encode("utf-8"))
    if column_type == ColumnType.UNIXTIME_MICROS:
        return Coerced(Outcome.SET, parse_timestamp(text))

    logger.warning("coercion.unknown_type", column=column, column_type=str(column_type))
    return SKIP


def fill_row(
    row: dict[str, Any],
    schema: dict[str, ColumnType | None],
    encryption_columns: frozenset[str] = frozenset(),
) -> dict[str, Any]:
    """Build the column values for one mutation.

    *schema* is keyed by lowercase column name. Columns the target table does
    not have are dropped.
    """
    values: dict[str, Any] = {}
    for name, raw in row.items():
        column = name.lower()
        if column not in schema:
            logger.debug("coercion.column_not_in_schema", column=column)
            continue
        result = coerce_value(
            column, raw, schema[column], encrypt=column in encryption_columns
        )
        if result.outcome == Outcome.NULL:
            values[column] = None
        elif result.outcome == Outcome.SET:
            values[column] = result.value
    return values
