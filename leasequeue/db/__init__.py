"""
Database module.
Contains database connection, table definitions, and the job store.
"""

from leasequeue.db.connection import (
    close_db,
    create_engine,
    create_tables,
    get_engine,
    get_test_engine,
    init_db,
)
from leasequeue.db.filters import Criteria, build_changes, build_where
from leasequeue.db.models import job_table
from leasequeue.db.store import JobStore

__all__ = [
    "create_engine",
    "create_tables",
    "get_engine",
    "get_test_engine",
    "init_db",
    "close_db",
    "job_table",
    "JobStore",
    "Criteria",
    "build_where",
    "build_changes",
]
