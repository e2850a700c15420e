"""Pydantic configuration models for the Kudu sink."""

from __future__ import annotations

import re
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_IDENT_PATTERN = re.compile(r"^[A-Za-z_][\w$.:-]*$")


class KuduConfig(BaseModel):
    """Connection and session settings for the Kudu cluster."""

    # Comma-separated master addresses, e.g. "kudu-1:7051,kudu-2:7051"
    masters: list[str] = Field(default_factory=lambda: ["localhost:7051"])
    operation_timeout_ms: int = Field(default=60000, ge=1)
    admin_timeout_ms: int = Field(default=60000, ge=1)
    mutation_buffer_space: int = Field(default=500, ge=3)
    truncate_poll_attempts: int = Field(default=10, ge=1)
    truncate_poll_interval_seconds: float = Field(default=0.5, ge=0.0)
    backup_table_suffix: str = Field(default="_kudu_sink_bak", min_length=1)

    @field_validator("masters", mode="before")
    @classmethod
    def split_masters(cls, v: object) -> object:
        if isinstance(v, str):
            return [m.strip() for m in v.split(",") if m.strip()]
        return v

    @field_validator("masters")
    @classmethod
    def validate_masters(cls, v: list[str]) -> list[str]:
        if not v:
            msg = "at least one Kudu master address is required"
            raise ValueError(msg)
        return v

    @property
    def flush_threshold(self) -> int:
        """Uncommitted row count above which a session is flushed early."""
        return self.mutation_buffer_space // 3 * 2


class RetryConfig(BaseModel):
    """Bounded retry / reconnect configuration for failed batches."""

    budget: int = Field(default=30, ge=0)
    reconnect_every: int = Field(default=3, ge=1)
    escalate_at: int = Field(default=5, ge=1)
    initial_wait_seconds: float = Field(default=0.5, ge=0.0)
    max_wait_seconds: float = Field(default=10.0, ge=0.0)
    jitter: bool = True


class LoggingConfig(BaseModel):
    """structlog output settings."""

    level: str = "INFO"
    json_output: bool = Field(default=False, alias="json")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Unknown log level '{v}'"
            raise ValueError(msg)
        return level


class MappingConfig(BaseModel):
    """Maps one source (database, table) pair onto a Kudu table.

    ``target_pk`` maps source primary-key columns to Kudu column names;
    a ``None`` or empty value keeps the source name.
    """

    model_config = ConfigDict(frozen=True)

    database: str
    table: str
    target_table: str
    target_pk: dict[str, str | None] = Field(default_factory=dict)
    encryption_columns: frozenset[str] = frozenset()
    commit_batch: int = Field(default=3000, ge=1)

    @field_validator("database", "table", "target_table")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        if not _IDENT_PATTERN.match(v):
            msg = f"'{v}' is not a valid table or database identifier"
            raise ValueError(msg)
        return v

    @field_validator("encryption_columns", mode="before")
    @classmethod
    def normalize_encryption_columns(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple, set, frozenset)):
            return frozenset(str(c).strip().lower() for c in v if str(c).strip())
        return v

    def primary_key_columns(self) -> dict[str, str]:
        """Return lowercase source PK name -> target PK name."""
        return {
            src.lower(): (tgt or src).lower() for src, tgt in self.target_pk.items()
        }


class SinkSettings(BaseModel, extra="forbid"):
    """Top-level sink configuration: cluster, retry policy, logging and mappings."""

    kudu: KuduConfig = KuduConfig()
    retry: RetryConfig = RetryConfig()
    logging: LoggingConfig = LoggingConfig()
    mappings: list[MappingConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_mappings(self) -> Self:
        """Reject two mappings for the same source table."""
        seen: set[tuple[str, str]] = set()
        for m in self.mappings:
            key = (m.database, m.table)
            if key in seen:
                msg = f"duplicate mapping for source table '{m.database}.{m.table}'"
                raise ValueError(msg)
            seen.add(key)
        return self

    def mapping_for(self, database: str, table: str) -> MappingConfig | None:
        for m in self.mappings:
            if m.database == database and m.table == table:
                return m
        return None
