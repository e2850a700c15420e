"""Routes mutation events for one table mapping into write-template batches."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import Any

import structlog

from kudu_sink.config.models import MappingConfig
from kudu_sink.errors import StoreConnectionError
from kudu_sink.events import EventType, MutationEvent
from kudu_sink.template import KuduTemplate

logger = structlog.get_logger()

Row = dict[str, Any]

_IGNORED_TYPES = frozenset({EventType.CINDEX, EventType.DINDEX})


def chunk_rows(rows: Iterable[Row], size: int) -> Iterator[list[Row]]:
    """Yield consecutive batches of *size* rows, then any non-empty remainder."""
    batch: list[Row] = []
    for row in rows:
        batch.append(row)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch


def project_primary_key(row: Row, pk_columns: dict[str, str]) -> Row:
    """Keep only primary-key columns, renamed to their target names.

    *pk_columns* maps lowercase source column -> target column.
    """
    projected: Row = {}
    for name, value in row.items():
        target = pk_columns.get(name.lower())
        if target is not None:
            projected[target] = value
    return projected


class SyncService:
    """Applies :class:`MutationEvent` objects for a mapping via a :class:`KuduTemplate`.

    INSERT -> insert, UPDATE -> upsert (so replays converge), DELETE ->
    delete by primary key, TRUNCATE -> truncate. Events for any other
    (database, table) than the mapping's are dropped without touching the
    store.

    Rows go to the template in batches of ``commit_batch``. The trailing
    partial batch is always sent as well, so an event never loses its last
    ``len(data) % commit_batch`` rows. Delete rows that carry none of the
    mapping's key columns are logged and skipped.
    """

    def __init__(self, template: KuduTemplate, *, raise_on_error: bool = False) -> None:
        self._template = template
        self._raise_on_error = raise_on_error

    def sync(self, config: MappingConfig | None, event: MutationEvent) -> None:
        if config is None:
            return
        event_type = event.event_type
        handlers: dict[EventType, Callable[[MappingConfig, MutationEvent], None]] = {
            EventType.INSERT: self._insert,
            EventType.UPDATE: self._upsert,
            EventType.DELETE: self._delete,
            EventType.TRUNCATE: self._truncate,
        }
        handler = handlers.get(event_type) if event_type is not None else None
        if handler is not None:
            try:
                handler(config, event)
            except StoreConnectionError as exc:
                logger.error(
                    "sync.store_error",
                    error=str(exc),
                    target_table=config.target_table,
                    payload=event.to_json(),
                )
                if self._raise_on_error:
                    raise
        elif event_type not in _IGNORED_TYPES:
            logger.error("sync.unexpected_dml", payload=event.to_json())
        logger.debug("sync.event", payload=event.to_json())

    @staticmethod
    def _matches(config: MappingConfig, event: MutationEvent) -> bool:
        return config.table == event.table and config.database == event.database

    def _insert(self, config: MappingConfig, event: MutationEvent) -> None:
        if not self._matches(config, event) or not event.data:
            return
        for batch in chunk_rows(event.data, config.commit_batch):
            self._template.insert(
                config.target_table, config.encryption_columns, batch
            )

    def _upsert(self, config: MappingConfig, event: MutationEvent) -> None:
        if not self._matches(config, event) or not event.data:
            return
        for batch in chunk_rows(event.data, config.commit_batch):
            self._template.upsert(
                config.target_table, config.encryption_columns, batch
            )

    def _delete(self, config: MappingConfig, event: MutationEvent) -> None:
        if not self._matches(config, event) or not event.data:
            return
        pk_columns = config.primary_key_columns()
        keys: list[Row] = []
        for row in event.data:
            key = project_primary_key(row, pk_columns)
            if not key:
                logger.warning(
                    "sync.delete_without_key",
                    target_table=config.target_table,
                    columns=sorted(row),
                )
                continue
            keys.append(key)
        for batch in chunk_rows(keys, config.commit_batch):
            self._template.delete(
                config.target_table, config.encryption_columns, batch
            )

    def _truncate(self, config: MappingConfig, event: MutationEvent) -> None:
        if not self._matches(config, event):
            return
        self._template.truncate(config.target_table)
