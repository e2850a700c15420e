from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from kudu_sink.config.models import KuduConfig, MappingConfig, RetryConfig
from kudu_sink.store.connection import ConnectionManager
from kudu_sink.template import KuduTemplate

from .fakes import FakeCluster

USER_COLUMNS = {
    "id": "int64",
    "name": "string",
    "age": "int32",
    "score": "double",
    "active": "bool",
    "created_at": "unixtime_micros",
    "phone": "string",
}


@pytest.fixture
def cluster() -> FakeCluster:
    c = FakeCluster()
    c.add_table("impala::db.users", USER_COLUMNS, ["id"], num_buckets=4)
    return c


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        budget=6,
        reconnect_every=3,
        escalate_at=5,
        initial_wait_seconds=0,
        max_wait_seconds=0,
        jitter=False,
    )


@pytest.fixture
def template(cluster: FakeCluster, retry_config: RetryConfig) -> KuduTemplate:
    return KuduTemplate(
        ConnectionManager(cluster.factory),
        KuduConfig(mutation_buffer_space=30, truncate_poll_interval_seconds=0),
        retry_config,
        sleep=lambda _seconds: None,
    )


@pytest.fixture
def mapping() -> MappingConfig:
    return MappingConfig(
        database="shop",
        table="users",
        target_table="impala::db.users",
        target_pk={"ID": None},
        encryption_columns=["phone"],
        commit_batch=3,
    )


class FakeKuduException(Exception):
    pass


@pytest.fixture
def kudu_mod():
    """Stand in a mocked ``kudu`` package for the kudu-python binding."""
    mod = MagicMock()
    errors = MagicMock()
    errors.KuduException = FakeKuduException
    client_mod = MagicMock()
    mod.errors = errors
    mod.client = client_mod
    with patch.dict(
        "sys.modules",
        {"kudu": mod, "kudu.errors": errors, "kudu.client": client_mod},
    ):
        yield mod
