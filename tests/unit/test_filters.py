"""
Unit tests for criteria and change translation.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import MetaData, false, true
from sqlalchemy.dialects import postgresql, sqlite

from leasequeue.db.filters import build_changes, build_where, owned_by
from leasequeue.db.models import job_table
from leasequeue.errors import InvalidCriteriaError, InvalidFieldError


@pytest.fixture
def table():
    return job_table("jobs", MetaData())


def compile_sqlite(clause) -> str:
    return str(clause.compile(dialect=sqlite.dialect()))


class TestBuildWhere:
    """Tests for build_where."""

    def test_none_matches_everything(self, table):
        """Test that no criteria compiles to a tautology."""
        assert build_where(table, None).compare(true())

    def test_expression_passes_through(self, table):
        """Test that a SQLAlchemy expression is used as-is."""
        clause = table.c.priority > 1

        assert build_where(table, clause) is clause

    def test_control_field_compares_column(self, table):
        """Test that control keys compare their own column."""
        sql = compile_sqlite(build_where(table, {"locked_by": "w1"}))

        assert "jobs.locked_by = ?" in sql

    def test_none_value_is_null_check(self, table):
        """Test that None compares with IS NULL."""
        sql = compile_sqlite(build_where(table, {"active_at": None}))

        assert "jobs.active_at IS NULL" in sql

    def test_other_keys_compare_payload(self, table):
        """Test that non-control keys read from the payload."""
        sql = compile_sqlite(build_where(table, {"msg": "First"}))

        assert "json_extract(jobs.payload" in sql.lower()

    @pytest.mark.parametrize("value", [True, 3, 2.5, "text", None])
    def test_supported_payload_values(self, table, value):
        """Test the scalar types payload criteria accept."""
        build_where(table, {"field": value})

    @pytest.mark.parametrize("value", [[1, 2], {"a": 1}, datetime(2024, 1, 1)])
    def test_unsupported_payload_value(self, table, value):
        """Test that non-scalar payload criteria are rejected."""
        with pytest.raises(InvalidCriteriaError) as exc_info:
            build_where(table, {"field": value})

        assert exc_info.value.key == "field"


class TestBuildChanges:
    """Tests for build_changes."""

    def test_control_fields_become_columns(self, table):
        """Test that control keys are assigned directly."""
        values = build_changes(table, {"priority": 5, "last_error": None}, "sqlite")

        assert values == {"priority": 5, "last_error": None}

    def test_payload_keys_are_merged(self, table):
        """Test that payload keys produce a merge expression."""
        values = build_changes(table, {"note": "x"}, "sqlite")

        assert "json_patch" in compile_sqlite(values["payload"])

    def test_postgres_merge_uses_concatenation(self, table):
        """Test the PostgreSQL payload merge."""
        values = build_changes(table, {"note": "x"}, "postgresql")
        sql = str(values["payload"].compile(dialect=postgresql.dialect()))

        assert "||" in sql

    @pytest.mark.parametrize("field", ["id", "created_at", "payload"])
    def test_immutable_fields_rejected(self, table, field):
        """Test that identity fields cannot be changed."""
        with pytest.raises(InvalidFieldError) as exc_info:
            build_changes(table, {field: None}, "sqlite")

        assert exc_info.value.field == field

    def test_aware_datetimes_become_naive_utc(self, table):
        """Test that control timestamps are stored as naive UTC."""
        eastern = timezone(timedelta(hours=-5))
        changes = {"active_at": datetime(2024, 1, 1, 7, tzinfo=eastern)}

        values = build_changes(table, changes, "sqlite")

        assert values == {"active_at": datetime(2024, 1, 1, 12)}


class TestOwnedBy:
    """Tests for the ownership predicate."""

    def test_missing_worker_matches_nothing(self, table):
        """Test that a None owner never matches an unlocked row."""
        assert owned_by(table, uuid4(), None).compare(false())

