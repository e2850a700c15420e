"""In-memory store implementing the store-client protocols for tests."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from kudu_sink.errors import StoreConnectionError
from kudu_sink.store.base import (
    ColumnType,
    HashPartitioning,
    OperationType,
    RowError,
)

ALREADY_PRESENT = "Already present: key already present"
NOT_FOUND = "Not found: key not found"


@dataclass
class FakeSchema:
    columns: dict[str, str]
    primary_keys: list[str]


@dataclass
class FakeOperation:
    op: OperationType
    table: FakeTable
    values: dict[str, Any]


@dataclass
class FakeTable:
    name: str
    schema: FakeSchema
    hashing: HashPartitioning | None = None
    rows: dict[tuple[Any, ...], dict[str, Any]] = field(default_factory=dict)

    def column_types(self) -> dict[str, ColumnType | None]:
        return {n: ColumnType.parse(t) for n, t in self.schema.columns.items()}

    def primary_keys(self) -> list[str]:
        return list(self.schema.primary_keys)

    def hash_partitioning(self) -> HashPartitioning | None:
        return self.hashing

    def new_operation(self, op: OperationType, values: dict[str, Any]) -> FakeOperation:
        return FakeOperation(op, self, dict(values))

    def key_of(self, values: dict[str, Any]) -> tuple[Any, ...] | None:
        if any(values.get(pk) is None for pk in self.schema.primary_keys):
            return None
        return tuple(values[pk] for pk in self.schema.primary_keys)


class FakeSession:
    def __init__(self, cluster: FakeCluster, buffer_space: int, timeout_ms: int) -> None:
        self.cluster = cluster
        self.buffer_space = buffer_space
        self.timeout_ms = timeout_ms
        self.pending: list[FakeOperation] = []
        self.applied: list[FakeOperation] = []
        self.flushes: list[int] = []
        self.close_calls = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def apply(self, operation: FakeOperation) -> None:
        if self._closed:
            raise StoreConnectionError("session is closed")
        if len(self.pending) >= self.buffer_space:
            raise StoreConnectionError("mutation buffer full")
        self.pending.append(operation)
        self.applied.append(operation)

    def flush(self) -> list[RowError]:
        if self.cluster.flush_exception is not None:
            raise self.cluster.flush_exception
        batch, self.pending = self.pending, []
        self.flushes.append(len(batch))
        errors: list[RowError] = []
        for operation in batch:
            message = self.cluster.apply(operation)
            if message is not None:
                errors.append(RowError(message, operation.op, operation.values))
        return errors

    def close(self) -> None:
        self.close_calls += 1
        self._closed = True


class FakeClient:
    def __init__(self, cluster: FakeCluster) -> None:
        self.cluster = cluster
        self.closed = False

    def _check(self) -> None:
        if self.closed:
            raise StoreConnectionError("client closed")
        if self.cluster.down:
            raise StoreConnectionError("cluster unreachable")

    def open_table(self, name: str) -> FakeTable:
        self._check()
        self.cluster.opens += 1
        try:
            return self.cluster.tables[name]
        except KeyError:
            raise StoreConnectionError(f"table {name} not found") from None

    def new_session(self, *, buffer_space: int, timeout_ms: int) -> FakeSession:
        self._check()
        session = FakeSession(self.cluster, buffer_space, timeout_ms)
        self.cluster.sessions.append(session)
        return session

    def table_exists(self, name: str) -> bool:
        self._check()
        return name in self.cluster.tables

    def create_table(
        self, name: str, schema: FakeSchema, partitioning: HashPartitioning | None
    ) -> None:
        self._check()
        if name in self.cluster.tables:
            raise StoreConnectionError(f"table {name} already exists")
        self.cluster.tables[name] = FakeTable(name, schema, partitioning)
        self.cluster.created.append((name, partitioning))

    def delete_table(self, name: str) -> None:
        self._check()
        if self.cluster.tables.pop(name, None) is None:
            raise StoreConnectionError(f"table {name} not found")

    def rename_table(self, name: str, new_name: str) -> None:
        self._check()
        table = self.cluster.tables.pop(name)
        table.name = new_name
        if self.cluster.rename_completes:
            self.cluster.tables[new_name] = table

    def alter_done(self, name: str) -> bool:
        self._check()
        return name in self.cluster.tables

    def count_rows(self, name: str) -> int:
        return len(self.open_table(name).rows)

    def close(self) -> None:
        self.closed = True
        self.cluster.closes += 1


class FakeCluster:
    """Shared state behind every FakeClient the factory hands out."""

    def __init__(self) -> None:
        self.tables: dict[str, FakeTable] = {}
        self.sessions: list[FakeSession] = []
        self.created: list[tuple[str, HashPartitioning | None]] = []
        self.connects = 0
        self.closes = 0
        self.opens = 0
        self.down = False
        self.rename_completes = True
        self.flush_exception: Exception | None = None
        # Return an error message to fail a row, None to let the store decide
        self.row_failure: Callable[[FakeOperation], str | None] | None = None

    def factory(self) -> FakeClient:
        if self.down:
            raise StoreConnectionError("cluster unreachable")
        self.connects += 1
        return FakeClient(self)

    def add_table(
        self,
        name: str,
        columns: dict[str, str],
        primary_keys: list[str],
        num_buckets: int = 0,
    ) -> FakeTable:
        hashing = (
            HashPartitioning(tuple(primary_keys), num_buckets) if num_buckets else None
        )
        table = FakeTable(name, FakeSchema(dict(columns), list(primary_keys)), hashing)
        self.tables[name] = table
        return table

    def apply(self, operation: FakeOperation) -> str | None:
        if self.row_failure is not None:
            message = self.row_failure(operation)
            if message is not None:
                return message
        table = operation.table
        key = table.key_of(operation.values)
        if key is None:
            return "Invalid argument: primary key column not set"
        if operation.op == OperationType.INSERT:
            if key in table.rows:
                return ALREADY_PRESENT
            table.rows[key] = dict(operation.values)
        elif operation.op == OperationType.UPSERT:
            table.rows.setdefault(key, {}).update(operation.values)
        else:
            if key not in table.rows:
                return NOT_FOUND
            del table.rows[key]
        return None
