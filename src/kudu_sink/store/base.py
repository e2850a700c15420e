"""Store-client protocol.

The write template talks to the target store only through these protocols,
so the Kudu binding can be swapped for an in-memory fake in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable


class ColumnType(StrEnum):
    """Scalar column types the store supports natively."""

    INT8 = "int8"
    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    BINARY = "binary"
    STRING = "string"
    BOOL = "bool"
    FLOAT = "float"
    DOUBLE = "double"
    UNIXTIME_MICROS = "unixtime_micros"

    @classmethod
    def parse(cls, name: str) -> ColumnType | None:
        """Map a store type name to a ColumnType, or None when unsupported."""
        try:
            return cls(name.lower())
        except ValueError:
            return None


class OperationType(StrEnum):
    INSERT = "insert"
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class RowError:
    """One failed row reported by a session flush."""

    message: str
    operation: OperationType | None = None
    row: dict[str, Any] | None = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class HashPartitioning:
    columns: tuple[str, ...]
    num_buckets: int
    seed: int = 0


@runtime_checkable
class StoreSession(Protocol):
    """A manual-flush write session. Closed exactly once."""

    @property
    def closed(self) -> bool: ...

    def apply(self, operation: Any) -> None:
        """Buffer one mutation."""
        ...

    def flush(self) -> list[RowError]:
        """Send buffered mutations; return the per-row errors."""
        ...

    def close(self) -> None: ...


@runtime_checkable
class StoreTable(Protocol):
    """An open table handle."""

    @property
    def name(self) -> str: ...

    @property
    def schema(self) -> Any:
        """Native schema object, passed back verbatim to ``create_table``."""
        ...

    def column_types(self) -> dict[str, ColumnType | None]:
        """Column name -> type, None for types outside ColumnType."""
        ...

    def primary_keys(self) -> list[str]: ...

    def hash_partitioning(self) -> HashPartitioning | None: ...

    def new_operation(self, op: OperationType, values: dict[str, Any]) -> Any:
        """Build a mutation of kind *op* carrying *values*."""
        ...


@runtime_checkable
class StoreClient(Protocol):
    """Connection to the target store."""

    def open_table(self, name: str) -> StoreTable: ...

    def new_session(self, *, buffer_space: int, timeout_ms: int) -> StoreSession: ...

    def table_exists(self, name: str) -> bool: ...

    def create_table(
        self,
        name: str,
        schema: Any,
        partitioning: HashPartitioning | None,
    ) -> None: ...

    def delete_table(self, name: str) -> None: ...

    def rename_table(self, name: str, new_name: str) -> None: ...

    def alter_done(self, name: str) -> bool: ...

    def count_rows(self, name: str) -> int: ...

    def close(self) -> None: ...
