"""Apache Kudu implementation of the store-client protocol (kudu-python)."""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from typing import Any

import structlog

from kudu_sink.config.models import KuduConfig
from kudu_sink.errors import StoreConnectionError
from kudu_sink.store.base import (
    ColumnType,
    HashPartitioning,
    OperationType,
    RowError,
)

logger = structlog.get_logger()

DEFAULT_MASTER_PORT = 7051


def _import_kudu() -> Any:
    try:
        import kudu
    except ImportError:
        msg = (
            "kudu-python is required for the Kudu store. "
            "Install it with: pip install kudu-sink[kudu]"
        )
        raise ImportError(msg) from None
    return kudu


def _kudu_exception() -> type[Exception]:
    from kudu.errors import KuduException

    return KuduException  # type: ignore[no-any-return]


@contextlib.contextmanager
def _translate_errors(action: str, **context: Any) -> Iterator[None]:
    """Re-raise Kudu client exceptions as StoreConnectionError."""
    try:
        yield
    except _kudu_exception() as exc:
        logger.warning("kudu_store.call_failed", action=action, error=str(exc), **context)
        raise StoreConnectionError(f"{action} failed: {exc}") from exc


def parse_masters(masters: list[str]) -> tuple[list[str], list[int]]:
    """Split ``host[:port]`` strings into parallel host and port lists."""
    hosts: list[str] = []
    ports: list[int] = []
    for master in masters:
        host, sep, port = master.rpartition(":")
        if not sep:
            host, port = port, ""
        hosts.append(host)
        ports.append(int(port) if port else DEFAULT_MASTER_PORT)
    return hosts, ports


class KuduSession:
    """Manual-flush session wrapper."""

    def __init__(self, session: Any) -> None:
        self._session: Any = session
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def apply(self, operation: Any) -> None:
        if self._closed:
            msg = "session is closed"
            raise StoreConnectionError(msg)
        with _translate_errors("session.apply"):
            self._session.apply(operation)

    def flush(self) -> list[RowError]:
        if self._closed:
            msg = "session is closed"
            raise StoreConnectionError(msg)
        try:
            self._session.flush()
        except _kudu_exception() as exc:
            errors, overflowed = self._session.get_pending_errors()
            if not errors:
                # No row errors collected: the flush itself failed in transport
                raise StoreConnectionError(f"session.flush failed: {exc}") from exc
            if overflowed:
                logger.warning("kudu_store.pending_errors_overflowed", count=len(errors))
            return [RowError(message=repr(err)) for err in errors]
        return []

    def close(self) -> None:
        # kudu-python sessions have no explicit close; drop the handle so
        # nothing else can be applied to it.
        self._session = None
        self._closed = True


class KuduTableHandle:
    """Open Kudu table."""

    def __init__(self, table: Any) -> None:
        self._table = table

    @property
    def name(self) -> str:
        return str(self._table.name)

    @property
    def schema(self) -> Any:
        return self._table.schema

    def column_types(self) -> dict[str, ColumnType | None]:
        schema = self._table.schema
        return {
            schema[i].name: ColumnType.parse(schema[i].type.name)
            for i in range(len(schema))
        }

    def primary_keys(self) -> list[str]:
        return list(self._table.schema.primary_keys())

    def hash_partitioning(self) -> HashPartitioning | None:
        """Approximate the hash partitioning from the tablet count.

        kudu-python does not expose the partition schema, so the bucket count
        is taken as the number of scan tokens (one per tablet) and the seed
        defaults to 0.
        """
        with _translate_errors("table.scan_tokens", table=self.name):
            tokens = self._table.scan_token_builder().build()
        if len(tokens) <= 1:
            return None
        logger.warning(
            "kudu_store.buckets_inferred",
            table=self.name,
            tablets=len(tokens),
            hint="range-partitioned tables report more tablets than hash buckets",
        )
        return HashPartitioning(
            columns=tuple(self.primary_keys()), num_buckets=len(tokens)
        )

    def new_operation(self, op: OperationType, values: dict[str, Any]) -> Any:
        if op == OperationType.INSERT:
            return self._table.new_insert(values)
        if op == OperationType.UPSERT:
            return self._table.new_upsert(values)
        return self._table.new_delete(values)


class KuduStoreClient:
    """Kudu cluster client built from :class:`KuduConfig`."""

    def __init__(self, config: KuduConfig) -> None:
        kudu = _import_kudu()
        hosts, ports = parse_masters(config.masters)
        with _translate_errors("connect", masters=config.masters):
            self._client = kudu.connect(
                host=hosts,
                port=ports,
                admin_timeout_ms=config.admin_timeout_ms,
                rpc_timeout_ms=config.operation_timeout_ms,
            )
        logger.info("kudu_store.connected", masters=config.masters)

    def open_table(self, name: str) -> KuduTableHandle:
        with _translate_errors("open_table", table=name):
            return KuduTableHandle(self._client.table(name))

    def new_session(self, *, buffer_space: int, timeout_ms: int) -> KuduSession:
        with _translate_errors("new_session"):
            session = self._client.new_session(
                flush_mode="manual", timeout_ms=timeout_ms
            )
            session.set_mutation_buffer_space(buffer_space)
        return KuduSession(session)

    def table_exists(self, name: str) -> bool:
        with _translate_errors("table_exists", table=name):
            return bool(self._client.table_exists(name))

    def create_table(
        self,
        name: str,
        schema: Any,
        partitioning: HashPartitioning | None,
    ) -> None:
        from kudu.client import Partitioning

        parts = Partitioning()
        if partitioning is not None:
            parts.add_hash_partitions(
                column_names=list(partitioning.columns),
                num_buckets=partitioning.num_buckets,
                seed=partitioning.seed,
            )
        parts.set_range_partition_columns([])
        with _translate_errors("create_table", table=name):
            self._client.create_table(name, schema, parts)

    def delete_table(self, name: str) -> None:
        with _translate_errors("delete_table", table=name):
            self._client.delete_table(name)

    def rename_table(self, name: str, new_name: str) -> None:
        with _translate_errors("rename_table", table=name, new_name=new_name):
            alterer = self._client.new_table_alterer(self._client.table(name))
            alterer.rename(new_name)
            alterer.alter()

    def alter_done(self, name: str) -> bool:
        return self.table_exists(name)

    def count_rows(self, name: str) -> int:
        with _translate_errors("count_rows", table=name):
            scanner = self._client.table(name).scanner()
            scanner.open()
            count = 0
            while scanner.has_more_rows():
                count += len(scanner.next_batch().as_tuples())
            return count

    def close(self) -> None:
        with _translate_errors("close"):
            self._client.close()
