"""Owned lifecycle for the shared store connection."""

from __future__ import annotations

import threading
from collections.abc import Callable
from enum import StrEnum

import structlog

from kudu_sink.errors import StoreConnectionError
from kudu_sink.store.base import StoreClient

logger = structlog.get_logger()


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class ConnectionManager:
    """Lazily connects, reconnects on demand and closes a :class:`StoreClient`.

    All transitions happen under one re-entrant lock, so threads sharing a
    manager see a consistent state instead of racing on a ``None`` check.
    """

    def __init__(self, factory: Callable[[], StoreClient]) -> None:
        self._factory = factory
        self._client: StoreClient | None = None
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.RLock()
        self._reconnects = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnects(self) -> int:
        return self._reconnects

    def client(self) -> StoreClient:
        """Return the live client, connecting first if needed."""
        with self._lock:
            if self._state == ConnectionState.CLOSED:
                msg = "connection manager is closed"
                raise StoreConnectionError(msg)
            if self._client is None:
                self._connect()
            assert self._client is not None
            return self._client

    def reconnect(self) -> StoreClient:
        """Tear down the current client (errors logged) and connect again."""
        with self._lock:
            if self._state == ConnectionState.CLOSED:
                msg = "connection manager is closed"
                raise StoreConnectionError(msg)
            self._state = ConnectionState.RECONNECTING
            self._release()
            self._reconnects += 1
            logger.info("connection.reconnecting", reconnects=self._reconnects)
            self._connect()
            assert self._client is not None
            return self._client

    def close(self) -> None:
        with self._lock:
            if self._state == ConnectionState.CLOSED:
                return
            self._release()
            self._state = ConnectionState.CLOSED
            logger.info("connection.closed")

    def _connect(self) -> None:
        try:
            self._client = self._factory()
        except StoreConnectionError:
            self._state = ConnectionState.DISCONNECTED
            raise
        self._state = ConnectionState.CONNECTED

    def _release(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.close()
        except Exception as exc:
            logger.error("connection.close_failed", error=str(exc))
