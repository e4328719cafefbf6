"""
Job store over a single SQL table.
Implements the core data access patterns the lease protocol is built on.
"""

import logging
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from typing import Any
from uuid import uuid4

from sqlalchemy import Table, delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.sql.elements import ColumnElement

from leasequeue.types.job import Job, utcnow

logger = logging.getLogger(__name__)


class JobStore:
    """
    Store for job rows.

    Every method runs in its own short transaction, so no connection or
    lock outlives a call. The one operation concurrent workers rely on is
    ``claim_one``: a single UPDATE whose target row is chosen by a
    ``SELECT ... FOR UPDATE SKIP LOCKED`` subquery, which makes two
    simultaneous claims pick different rows on PostgreSQL. SQLite has no
    row locks; there the statement runs under the database write lock and
    is equally indivisible.
    """

    def __init__(self, engine: AsyncEngine, table: Table):
        """
        Initialize the store.

        Args:
            engine: The async engine for the database holding ``table``.
            table: The queue table.
        """
        self._engine = engine
        self.table = table

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def name(self) -> str:
        return self.table.name

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    async def create(self) -> None:
        """Create the table and its indexes if they do not exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(self.table.create, checkfirst=True)

    async def drop(self) -> None:
        """Drop the table if it exists."""
        async with self._engine.begin() as conn:
            await conn.run_sync(self.table.drop, checkfirst=True)

    async def insert(self, values: Mapping[str, Any]) -> Job:
        """
        Insert one job, assigning ``id`` and ``created_at`` if absent.

        Returns:
            The stored job.
        """
        row = dict(values)
        row.setdefault("id", uuid4())
        row.setdefault("created_at", utcnow())
        row.setdefault("payload", {})

        stmt = insert(self.table).values(**row).returning(*self.table.c)
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
            return Job.from_row(result.one())

    async def insert_each(
        self,
        jobs: Iterable[Job],
    ) -> tuple[int, list[tuple[Job, SQLAlchemyError]]]:
        """
        Insert jobs one by one, each in its own transaction.

        A row that fails to insert is logged and skipped; the remaining
        rows are still attempted.

        Returns:
            Tuple of (inserted count, [(job, error), ...] for failed rows).
        """
        inserted = 0
        failures: list[tuple[Job, SQLAlchemyError]] = []
        for job in jobs:
            stmt = insert(self.table).values(**job.model_dump())
            try:
                async with self._engine.begin() as conn:
                    await conn.execute(stmt)
            except SQLAlchemyError as e:
                logger.debug(
                    "Failed to insert job",
                    extra={"table": self.name, "job_id": str(job.id), "error": str(e)},
                )
                failures.append((job, e))
            else:
                inserted += 1
        return inserted, failures

    async def find(
        self,
        where: ColumnElement[bool],
        batch_size: int = 500,
    ) -> AsyncIterator[Job]:
        """
        Lazily yield every job matching ``where``, in id order.

        Rows are fetched in pages by keyset on ``id``; each page is its own
        short query, so nothing stays locked while the caller iterates.
        """
        last_id = None
        while True:
            stmt = (
                select(self.table)
                .where(where)
                .order_by(self.table.c.id)
                .limit(batch_size)
            )
            if last_id is not None:
                stmt = stmt.where(self.table.c.id > last_id)

            async with self._engine.connect() as conn:
                rows = (await conn.execute(stmt)).all()

            for row in rows:
                yield Job.from_row(row)

            if len(rows) < batch_size:
                return
            last_id = rows[-1].id

    async def claim_one(
        self,
        where: ColumnElement[bool],
        values: Mapping[str, Any],
        order_by: Sequence[ColumnElement[Any]],
    ) -> Job | None:
        """
        Atomically pick the first row matching ``where`` and update it.

        Args:
            where: Filter selecting candidate rows.
            values: Column assignments to apply to the chosen row.
            order_by: Ordering deciding which candidate is first.

        Returns:
            The row after the update, or None if nothing matched.
        """
        candidate = (
            select(self.table.c.id)
            .where(where)
            .order_by(*order_by)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        stmt = (
            update(self.table)
            .where(self.table.c.id.in_(candidate))
            .values(**values)
            .returning(*self.table.c)
        )
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
            row = result.first()
        return Job.from_row(row) if row is not None else None

    async def update_one(
        self,
        where: ColumnElement[bool],
        values: Mapping[str, Any],
    ) -> Job | None:
        """
        Update the row matching ``where`` in one guarded statement.

        ``where`` is expected to pin a single row (by id plus any guard
        such as the current owner).

        Returns:
            The updated row, or None if the guard did not match.
        """
        stmt = (
            update(self.table)
            .where(where)
            .values(**values)
            .returning(*self.table.c)
        )
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
            row = result.first()
        return Job.from_row(row) if row is not None else None

    async def delete_one(self, where: ColumnElement[bool]) -> Job | None:
        """
        Delete the row matching ``where`` in one guarded statement.

        Returns:
            The deleted row, or None if the guard did not match.
        """
        stmt = delete(self.table).where(where).returning(*self.table.c)
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
            row = result.first()
        return Job.from_row(row) if row is not None else None

    async def update_many(
        self,
        where: ColumnElement[bool],
        values: Mapping[str, Any],
    ) -> int:
        """Update every matching row. Returns the number of rows updated."""
        stmt = update(self.table).where(where).values(**values)
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
            return result.rowcount

    async def delete_many(self, where: ColumnElement[bool]) -> int:
        """Delete every matching row. Returns the number of rows deleted."""
        stmt = delete(self.table).where(where)
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
            return result.rowcount

    async def count(self, where: ColumnElement[bool] | None = None) -> int:
        """Count matching rows."""
        stmt = select(func.count()).select_from(self.table)
        if where is not None:
            stmt = stmt.where(where)
        async with self._engine.connect() as conn:
            result = await conn.execute(stmt)
            return result.scalar_one()

    async def aggregate(
        self,
        **counts: ColumnElement[bool] | None,
    ) -> dict[str, int]:
        """
        Evaluate several filtered counts in a single statement.

        All counts come from one ``SELECT count(*) FILTER (WHERE ...)``,
        so they describe the same snapshot of the table.

        Args:
            **counts: name -> filter (None counts every row).

        Returns:
            Dictionary of name -> count.
        """
        columns = [
            (func.count() if where is None else func.count().filter(where)).label(name)
            for name, where in counts.items()
        ]
        stmt = select(*columns).select_from(self.table)
        async with self._engine.connect() as conn:
            result = await conn.execute(stmt)
            row = result.one()
        return {name: int(value or 0) for name, value in row._mapping.items()}
