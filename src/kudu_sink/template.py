"""Write template: batched Kudu mutations with row-error classification and retry."""

from __future__ import annotations

import contextlib
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from datetime import UTC, datetime
from typing import Any

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential_jitter,
)

from kudu_sink.coercion import fill_row
from kudu_sink.config.models import KuduConfig, RetryConfig, SinkSettings
from kudu_sink.errors import (
    RowErrorKind,
    StoreConnectionError,
    TruncateIncompleteError,
    classify_row_error,
)
from kudu_sink.store.base import (
    HashPartitioning,
    OperationType,
    StoreClient,
    StoreSession,
)
from kudu_sink.store.connection import ConnectionManager

logger = structlog.get_logger()

Row = dict[str, Any]


class KuduTemplate:
    """Turns batches of row dicts into durable Kudu mutations.

    Each call re-reads the table schema, writes through a fresh manual-flush
    session and classifies every row error the flushes report. A batch with
    a real (non-benign) row error is re-applied by a bounded retry loop that
    reconnects periodically; retry outcomes are logged, never raised. Only a
    :class:`StoreConnectionError` from the first attempt reaches the caller.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        kudu_config: KuduConfig | None = None,
        retry_config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._connection = connection
        self._kudu = kudu_config or KuduConfig()
        self._retry = retry_config or RetryConfig()
        self._sleep = sleep
        self._touch_lock = threading.Lock()
        self._touch_bucket = ""
        self._touched: set[str] = set()

    @classmethod
    def from_settings(cls, settings: SinkSettings) -> KuduTemplate:
        """Build a template connected to the Kudu cluster in *settings*."""
        from kudu_sink.store.kudu import KuduStoreClient

        connection = ConnectionManager(lambda: KuduStoreClient(settings.kudu))
        return cls(connection, settings.kudu, settings.retry)

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    # -- write path ------------------------------------------------------------

    def insert(
        self,
        table_name: str,
        encryption_columns: frozenset[str],
        rows: Sequence[Row],
    ) -> None:
        self._write(OperationType.INSERT, table_name, rows, encryption_columns)

    def upsert(
        self,
        table_name: str,
        encryption_columns: frozenset[str],
        rows: Sequence[Row],
    ) -> None:
        self._write(OperationType.UPSERT, table_name, rows, encryption_columns)

    def delete(
        self,
        table_name: str,
        encryption_columns: frozenset[str],
        rows: Sequence[Row],
    ) -> None:
        # Key columns are masked the same way as on insert so the keys match
        self._write(OperationType.DELETE, table_name, rows, encryption_columns)

    def _write(
        self,
        op: OperationType,
        table_name: str,
        rows: Sequence[Row],
        encryption_columns: frozenset[str],
    ) -> None:
        if not rows:
            return
        self._touch(table_name)
        try:
            has_error = self._apply_batch(op, table_name, rows, encryption_columns)
        except StoreConnectionError:
            logger.error(
                "kudu_template.batch_failed",
                table=table_name,
                operation=str(op),
                rows=rows,
            )
            raise
        if has_error:
            logger.info(
                "kudu_template.retry_scheduled",
                table=table_name,
                operation=str(op),
                budget=self._retry.budget,
            )
            self._retry_batch(op, table_name, rows, encryption_columns)

    def _apply_batch(
        self,
        op: OperationType,
        table_name: str,
        rows: Sequence[Row],
        encryption_columns: frozenset[str],
        remaining: int | None = None,
    ) -> bool:
        """Apply and flush one batch; return True if any real row error was seen."""
        client = self._connection.client()
        table = client.open_table(table_name)
        column_types = table.column_types()
        schema = {name.lower(): col_type for name, col_type in column_types.items()}
        names = {name.lower(): name for name in column_types}

        has_error = False
        with self._session(client) as session:
            uncommitted = 0
            for row in rows:
                values = fill_row(row, schema, encryption_columns)
                session.apply(
                    table.new_operation(
                        op, {names[col]: value for col, value in values.items()}
                    )
                )
                uncommitted += 1
                if uncommitted > self._kudu.flush_threshold:
                    has_error |= self._flush(session, op, table_name, remaining)
                    uncommitted = 0
            has_error |= self._flush(session, op, table_name, remaining)
        return has_error

    @contextlib.contextmanager
    def _session(self, client: StoreClient) -> Iterator[StoreSession]:
        session = client.new_session(
            buffer_space=self._kudu.mutation_buffer_space,
            timeout_ms=self._kudu.operation_timeout_ms,
        )
        try:
            yield session
        finally:
            if not session.closed:
                session.close()

    def _flush(
        self,
        session: StoreSession,
        op: OperationType,
        table_name: str,
        remaining: int | None,
    ) -> bool:
        has_error = False
        errors = session.flush()
        for err in errors:
            if classify_row_error(op, err.message) == RowErrorKind.BENIGN:
                logger.warning(
                    "kudu_template.row_conflict",
                    table=table_name,
                    operation=str(op),
                    error=err.message,
                )
                continue
            has_error = True
            log = logger.error if remaining == 1 else logger.warning
            log(
                "kudu_template.row_failed",
                table=table_name,
                operation=str(op),
                error=err.message,
                remaining=remaining,
            )
        logger.debug(
            "kudu_template.flushed",
            table=table_name,
            operation=str(op),
            row_errors=len(errors),
        )
        return has_error

    # -- retry -----------------------------------------------------------------

    def _retry_batch(
        self,
        op: OperationType,
        table_name: str,
        rows: Sequence[Row],
        encryption_columns: frozenset[str],
    ) -> bool:
        """Re-apply *rows* until a clean flush or the budget runs out.

        Attempt *k* runs with ``remaining = budget - k + 1``. The connection
        is rebuilt before every attempt whose remaining count is a multiple of
        ``reconnect_every``, and after any attempt that lost the connection.
        Returns True if the batch eventually went through.
        """
        cfg = self._retry
        budget = cfg.budget
        if budget <= 0:
            self._log_exhausted(op, table_name, rows)
            return False

        def _exhausted(retry_state: RetryCallState) -> None:
            self._log_exhausted(op, table_name, rows)

        retrying = Retrying(
            stop=stop_after_attempt(budget),
            wait=wait_exponential_jitter(
                initial=cfg.initial_wait_seconds,
                max=cfg.max_wait_seconds,
                jitter=cfg.max_wait_seconds if cfg.jitter else 0,
            ),
            retry=retry_if_result(bool) | retry_if_exception_type(StoreConnectionError),
            retry_error_callback=_exhausted,
            sleep=self._sleep,
        )

        succeeded = False
        reconnect_next = False
        for attempt in retrying:
            remaining = budget - attempt.retry_state.attempt_number + 1
            with attempt:
                try:
                    if reconnect_next or remaining % cfg.reconnect_every == 0:
                        reconnect_next = False
                        self._connection.reconnect()
                    if remaining == cfg.escalate_at:
                        logger.error(
                            "kudu_template.retry_escalated",
                            table=table_name,
                            operation=str(op),
                            remaining=remaining,
                        )
                    failed = self._apply_batch(
                        op, table_name, rows, encryption_columns, remaining
                    )
                except StoreConnectionError as exc:
                    reconnect_next = True
                    logger.warning(
                        "kudu_template.retry_connection_lost",
                        table=table_name,
                        operation=str(op),
                        remaining=remaining,
                        error=str(exc),
                    )
                    raise
            logger.info(
                "kudu_template.retry_attempted",
                table=table_name,
                operation=str(op),
                remaining=remaining,
            )
            outcome = attempt.retry_state.outcome
            if outcome is not None and not outcome.failed:
                attempt.retry_state.set_result(failed)
                succeeded = not failed
        return succeeded

    def _log_exhausted(
        self, op: OperationType, table_name: str, rows: Sequence[Row]
    ) -> None:
        logger.error(
            "kudu_template.retry_exhausted",
            table=table_name,
            operation=str(op),
            budget=self._retry.budget,
            rows=len(rows),
        )

    # -- admin -----------------------------------------------------------------

    def truncate(
        self,
        table_name: str,
        partition_columns: Sequence[str] | None = None,
        num_buckets: int | None = None,
    ) -> None:
        """Empty a table by swapping in a fresh copy.

        Kudu has no truncate, so the table is recreated under a backup name
        with the same schema and hash bucket count, the original is dropped
        and the copy renamed into place. Readers can see the table missing
        between the drop and the rename.

        The Kudu client cannot read a table's partition schema back, so the
        bucket count is inferred from its tablet count. That is only right for
        tables that are hash partitioned alone: range partitions multiply the
        tablet count and are not recreated. Pass *num_buckets* for such tables.
        """
        self._touch(table_name)
        client = self._connection.client()
        try:
            table = client.open_table(table_name)
            live = table.hash_partitioning()
            partitioning: HashPartitioning | None = None
            columns = (
                tuple(partition_columns)
                if partition_columns
                else tuple(table.primary_keys())
            )
            if num_buckets is not None and num_buckets > 1:
                partitioning = HashPartitioning(
                    columns=columns,
                    num_buckets=num_buckets,
                    seed=live.seed if live else 0,
                )
            elif num_buckets is None and live is not None:
                partitioning = HashPartitioning(
                    columns=columns, num_buckets=live.num_buckets, seed=live.seed
                )
            backup = f"{table.name}{self._kudu.backup_table_suffix}"
            if client.table_exists(backup):
                logger.warning("kudu_template.stale_backup_dropped", table=backup)
                client.delete_table(backup)
            client.create_table(backup, table.schema, partitioning)
            client.delete_table(table_name)
            logger.info(
                "kudu_template.truncate_swapped",
                table=table_name,
                backup=backup,
                original_exists=client.table_exists(table_name),
            )
            client.rename_table(backup, table_name)
        except StoreConnectionError:
            logger.error("kudu_template.truncate_failed", table=table_name)
            raise

        try:
            self._wait_for_alter(client, table_name)
        except TruncateIncompleteError as exc:
            logger.error(
                "kudu_template.truncate_incomplete", table=table_name, error=str(exc)
            )
            return
        logger.info(
            "kudu_template.truncated",
            table=table_name,
            buckets=partitioning.num_buckets if partitioning else 0,
        )

    def _wait_for_alter(self, client: StoreClient, table_name: str) -> None:
        attempts = self._kudu.truncate_poll_attempts
        for n in range(attempts):
            if client.alter_done(table_name):
                return
            if n < attempts - 1:
                self._sleep(self._kudu.truncate_poll_interval_seconds)
        msg = f"rename to '{table_name}' not done after {attempts} checks"
        raise TruncateIncompleteError(msg)

    def table_exists(self, table_name: str) -> bool:
        """Check table existence; a failed check is reported as existing."""
        try:
            return self._connection.client().table_exists(table_name)
        except StoreConnectionError as exc:
            logger.error("kudu_template.exists_check_failed", table=table_name, error=str(exc))
            return True

    def count_rows(self, table_name: str) -> int:
        """Full-scan row count (diagnostic). Store errors are logged and yield 0."""
        try:
            return self._connection.client().count_rows(table_name)
        except StoreConnectionError as exc:
            logger.error("kudu_template.count_failed", table=table_name, error=str(exc))
            return 0

    def close(self) -> None:
        self._connection.close()

    def _touch(self, table_name: str) -> None:
        """Log the first write to each table within the current hour."""
        bucket = datetime.now(UTC).strftime("%Y%m%d%H")
        with self._touch_lock:
            if bucket != self._touch_bucket:
                self._touch_bucket = bucket
                self._touched.clear()
            if table_name in self._touched:
                return
            self._touched.add(table_name)
        logger.info("kudu_template.table_touched", table=table_name, hour=bucket)
