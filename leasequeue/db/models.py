"""
SQLAlchemy table definitions.

A queue collection is one table: fixed control columns plus an opaque
JSON payload. Table names are configurable, so tables are built by
``job_table`` rather than declared once at import time.
"""

import json
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL, JSON text elsewhere.
PayloadType = JSON().with_variant(JSONB(), "postgresql")


def payload_serializer(value: Any) -> str:
    """
    Serialize a payload for the JSON column.

    Datetimes, UUIDs, decimals, sets and pydantic models are stored in
    their JSON form (ISO strings, lists, dicts) and read back as such.
    """
    return json.dumps(to_jsonable_python(value))


def job_table(name: str, metadata: MetaData | None = None) -> Table:
    """
    Build the table for a queue collection.

    Key columns:
    - locked_by / locked_at / keep_alive_at track the current lease;
      all three are NULL for an unclaimed job
    - active_at delays eligibility until the given time
    - attempts counts reported failures

    Args:
        name: Table name (the queue's collection).
        metadata: MetaData to attach to. A fresh one is created if omitted.

    Returns:
        The Table.
    """
    metadata = metadata if metadata is not None else MetaData()
    if name in metadata.tables:
        return metadata.tables[name]

    return Table(
        name,
        metadata,
        Column("id", Uuid(), primary_key=True, nullable=False),
        Column("payload", PayloadType, nullable=False, default=dict),
        Column("priority", Integer, nullable=False, default=0),
        Column("attempts", Integer, nullable=False, default=0),
        Column("locked_by", String(255), nullable=True),
        Column("locked_at", DateTime(), nullable=True),
        Column("keep_alive_at", DateTime(), nullable=True),
        Column("active_at", DateTime(), nullable=True),
        Column("last_error", Text, nullable=True),
        Column("created_at", DateTime(), nullable=False),
        # Index for queue polling in claim order
        Index(f"ix_{name}_poll", "priority", "created_at"),
        # Index for lease ownership checks and stale-lease scans
        Index(f"ix_{name}_lease", "locked_by", "keep_alive_at"),
        Index(f"ix_{name}_attempts", "attempts"),
    )
