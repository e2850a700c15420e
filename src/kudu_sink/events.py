"""Mutation events as delivered by the replication decoder."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TRUNCATE = "TRUNCATE"
    # Index create/drop markers; carry no row data
    CINDEX = "CINDEX"
    DINDEX = "DINDEX"

    @classmethod
    def parse(cls, value: str | None) -> EventType | None:
        if value is None:
            return None
        try:
            return cls(value.upper())
        except ValueError:
            return None


@dataclass(slots=True)
class MutationEvent:
    """One logical change-set from a source table.

    ``data`` rows map column name (any case) to a scalar value or None.
    """

    type: str
    database: str
    table: str
    data: list[dict[str, Any]] | None = None
    old: list[dict[str, Any]] | None = None
    pk_names: list[str] | None = None
    is_ddl: bool = False
    sql: str | None = None
    es: int | None = None  # source commit time (ms)
    ts: int | None = None  # decode time (ms)
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def event_type(self) -> EventType | None:
        return EventType.parse(self.type)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> MutationEvent:
        """Build an event from a decoded JSON message.

        Accepts ``pkNames`` / ``isDdl`` spellings; unknown keys are kept in
        ``extra``.
        """
        known = {"type", "database", "table", "data", "old", "sql", "es", "ts"}
        aliases = {"pkNames": "pk_names", "isDdl": "is_ddl"}
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in payload.items():
            if key in known or key in ("pk_names", "is_ddl"):
                kwargs[key] = value
            elif key in aliases:
                kwargs[aliases[key]] = value
            else:
                extra[key] = value
        for required in ("type", "database", "table"):
            if required not in kwargs:
                msg = f"mutation event is missing '{required}'"
                raise ValueError(msg)
        return cls(**kwargs, extra=extra)

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)
