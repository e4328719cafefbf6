"""
Translation of caller criteria and changes into SQL expressions.

Criteria may be a plain mapping or a ready-made SQLAlchemy expression.
Mapping keys naming a control column compare that column; any other key
compares the payload value stored under it.
"""

from datetime import datetime
from typing import Any, Mapping, Union
from uuid import UUID

from sqlalchemy import JSON, Table, and_, cast, false, func, literal, or_, true
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql.elements import ColumnElement

from leasequeue.constants import DEFAULT_INSERT
from leasequeue.errors import InvalidCriteriaError, InvalidFieldError
from leasequeue.types.job import as_utc

Criteria = Union[Mapping[str, Any], ColumnElement[bool], None]

# Columns that are fixed once a job exists.
IMMUTABLE_FIELDS = frozenset({"id", "created_at", "payload"})


def build_where(table: Table, criteria: Criteria) -> ColumnElement[bool]:
    """
    Build a WHERE clause from criteria.

    Args:
        table: The queue table.
        criteria: Mapping of field -> value, a SQLAlchemy boolean
            expression, or None to match everything.

    Returns:
        A boolean SQL expression.
    """
    if criteria is None:
        return true()
    if isinstance(criteria, ColumnElement):
        return criteria

    clauses = []
    for key, value in criteria.items():
        if key in table.c and key != "payload":
            column = table.c[key]
            clauses.append(column.is_(None) if value is None else column == as_utc(value))
        else:
            clauses.append(_payload_clause(table, key, value))
    return and_(true(), *clauses)


def _payload_clause(table: Table, key: str, value: Any) -> ColumnElement[bool]:
    element = table.c.payload[key]
    if value is None:
        return element.as_string().is_(None)
    # bool first: it is a subclass of int
    if isinstance(value, bool):
        return element.as_boolean() == value
    if isinstance(value, int):
        return element.as_integer() == value
    if isinstance(value, float):
        return element.as_float() == value
    if isinstance(value, str):
        return element.as_string() == value
    raise InvalidCriteriaError(key, value)


def build_changes(
    table: Table,
    changes: Mapping[str, Any],
    dialect_name: str,
) -> dict[str, Any]:
    """
    Build UPDATE values from a changes mapping.

    Control fields become column assignments; every other key is merged
    into the payload, leaving the payload's other keys intact.

    Raises:
        InvalidFieldError: If a change targets an immutable field.
    """
    values: dict[str, Any] = {}
    payload_changes: dict[str, Any] = {}
    for key, value in changes.items():
        if key in IMMUTABLE_FIELDS:
            raise InvalidFieldError(key)
        if key in DEFAULT_INSERT:
            values[key] = as_utc(value)
        else:
            payload_changes[key] = value

    if payload_changes:
        values["payload"] = merge_payload(table, payload_changes, dialect_name)
    return values


def merge_payload(
    table: Table,
    payload_changes: Mapping[str, Any],
    dialect_name: str,
) -> ColumnElement[Any]:
    """Expression merging keys into the stored payload in place."""
    column = table.c.payload
    if dialect_name == "sqlite":
        return func.json_patch(
            column, literal(dict(payload_changes), JSON()), type_=JSON()
        )
    return column.op("||", return_type=JSONB())(
        cast(literal(dict(payload_changes), JSONB()), JSONB())
    )


# Predicates shared by the queue, the archiver and the stats collector.


def is_locked(table: Table) -> ColumnElement[bool]:
    return table.c.locked_by.is_not(None)


def is_unlocked(table: Table) -> ColumnElement[bool]:
    return table.c.locked_by.is_(None)


def is_exhausted(table: Table, max_attempts: int) -> ColumnElement[bool]:
    return table.c.attempts >= max_attempts


def is_active(table: Table, now: datetime) -> ColumnElement[bool]:
    """``active_at`` unset or already reached."""
    return or_(table.c.active_at.is_(None), table.c.active_at <= now)


def is_eligible(table: Table, max_attempts: int, now: datetime) -> ColumnElement[bool]:
    """Unlocked, attempts left, and active: what lock_next may hand out."""
    return and_(
        is_unlocked(table),
        table.c.attempts < max_attempts,
        is_active(table, now),
    )


def is_scheduled(table: Table, max_attempts: int, now: datetime) -> ColumnElement[bool]:
    """Pending, but held back by an ``active_at`` in the future."""
    return and_(
        is_unlocked(table),
        table.c.attempts < max_attempts,
        table.c.active_at > now,
    )


def is_stale(table: Table, cutoff: datetime) -> ColumnElement[bool]:
    """Locked, with no heartbeat since ``cutoff``."""
    return and_(
        is_locked(table),
        func.coalesce(table.c.keep_alive_at, table.c.locked_at) < cutoff,
    )


def owned_by(table: Table, job_id: UUID, worker_id: str | None) -> ColumnElement[bool]:
    """The given job, and only while ``worker_id`` holds its lease."""
    if worker_id is None:
        return false()
    return and_(table.c.id == job_id, table.c.locked_by == worker_id)


def claim_order(table: Table) -> list[ColumnElement[Any]]:
    """Highest priority first, then oldest first."""
    return [table.c.priority.desc(), table.c.created_at.asc(), table.c.id.asc()]
