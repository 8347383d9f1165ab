"""WorkItemStore — aiosqlite-backed step catalog and work queue."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

import aiosqlite

from conveyor.config import settings
from conveyor.pipeline.models import ProcessStatus, StepDescriptor, WorkItem, utcnow

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_STEPS = """
CREATE TABLE IF NOT EXISTS process_steps (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL DEFAULT ''
)
"""

_CREATE_ITEMS = """
CREATE TABLE IF NOT EXISTS work_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    step_id INTEGER NOT NULL REFERENCES process_steps(id),
    payload TEXT,
    status TEXT NOT NULL,
    error TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS ix_work_items_step_status
    ON work_items (step_id, status, updated_at)
"""

_ITEM_COLUMNS = "id, step_id, payload, status, error, attempts, updated_at"


def _stamp(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds")


def _item_from_row(row: tuple) -> WorkItem:
    return WorkItem(
        id=row[0],
        step_id=row[1],
        payload=json.loads(row[2]) if row[2] is not None else None,
        status=ProcessStatus(row[3]),
        error=row[4],
        attempts=row[5],
        updated_at=datetime.fromisoformat(row[6]),
    )


class WorkItemStore:
    """Persists steps and work-items in SQLite.

    Implements the ``WorkItemRepository`` protocol. Pass an explicit
    *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_STEPS)
            await db.execute(_CREATE_ITEMS)
            await db.execute(_CREATE_INDEX)
            await db.commit()
            self._initialised = True
        return db

    # -- Catalog ---------------------------------------------------------------

    async def add_step(self, name: str, description: str = "") -> StepDescriptor:
        """Insert a step into the catalog and return its descriptor."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "INSERT INTO process_steps (name, description) VALUES (?, ?)",
                (name, description),
            )
            await db.commit()
            logger.info("Added process step: %s (%s)", name, cursor.lastrowid)
            return StepDescriptor(id=cursor.lastrowid, name=name, description=description)
        finally:
            await db.close()

    async def get_step_catalog(self) -> dict[str, StepDescriptor]:
        """Return every step keyed by name."""
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT id, name, description FROM process_steps")
            rows = await cursor.fetchall()
            return {row[1]: StepDescriptor(id=row[0], name=row[1], description=row[2]) for row in rows}
        finally:
            await db.close()

    # -- Items -----------------------------------------------------------------

    async def add_items(self, step: StepDescriptor, payloads: Iterable[Any]) -> list[WorkItem]:
        """Queue new items at *step*. Returns them with their ids."""
        now = _stamp(utcnow())
        db = await self._connect()
        try:
            items: list[WorkItem] = []
            for payload in payloads:
                cursor = await db.execute(
                    """
                    INSERT INTO work_items
                        (step_id, payload, status, attempts, created_at, updated_at)
                    VALUES (?, ?, ?, 0, ?, ?)
                    """,
                    (step.id, json.dumps(payload), ProcessStatus.NEW.value, now, now),
                )
                items.append(
                    WorkItem(
                        id=cursor.lastrowid,
                        payload=payload,
                        step_id=step.id,
                        updated_at=datetime.fromisoformat(now),
                    )
                )
            await db.commit()
        except BaseException:
            await db.rollback()
            raise
        finally:
            await db.close()
        logger.info("Queued %d item(s) at step '%s'", len(items), step.name)
        return items

    async def get_item(self, item_id: int) -> WorkItem | None:
        """Fetch an item by id, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_ITEM_COLUMNS} FROM work_items WHERE id = ?", (item_id,)
            )
            row = await cursor.fetchone()
            return _item_from_row(row) if row else None
        finally:
            await db.close()

    async def list_items(self, status: ProcessStatus | None = None) -> list[WorkItem]:
        """Return all items, optionally filtered by status."""
        db = await self._connect()
        try:
            if status is None:
                cursor = await db.execute(f"SELECT {_ITEM_COLUMNS} FROM work_items ORDER BY id")
            else:
                cursor = await db.execute(
                    f"SELECT {_ITEM_COLUMNS} FROM work_items WHERE status = ? ORDER BY id",
                    (status.value,),
                )
            rows = await cursor.fetchall()
            return [_item_from_row(row) for row in rows]
        finally:
            await db.close()

    async def touch(self, item_id: int, updated_at: datetime) -> None:
        """Override an item's ``updated_at`` timestamp."""
        db = await self._connect()
        try:
            await db.execute(
                "UPDATE work_items SET updated_at = ? WHERE id = ?",
                (_stamp(updated_at), item_id),
            )
            await db.commit()
        finally:
            await db.close()

    # -- WorkItemRepository ----------------------------------------------------

    async def fetch_processable(self, step: StepDescriptor, limit: int) -> list[WorkItem]:
        """New or ready items waiting at *step*, oldest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT {_ITEM_COLUMNS} FROM work_items
                WHERE step_id = ? AND status IN (?, ?)
                ORDER BY updated_at, id
                LIMIT ?
                """,
                (step.id, ProcessStatus.NEW.value, ProcessStatus.READY.value, limit),
            )
            rows = await cursor.fetchall()
            return [_item_from_row(row) for row in rows]
        finally:
            await db.close()

    async def fetch_retryable(
        self,
        step: StepDescriptor,
        limit: int,
        since: datetime,
        max_attempts: int,
    ) -> list[WorkItem]:
        """Errored items at *step* untouched since *since* and under *max_attempts*."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                SELECT {_ITEM_COLUMNS} FROM work_items
                WHERE step_id = ? AND status = ? AND updated_at < ? AND attempts < ?
                ORDER BY updated_at, id
                LIMIT ?
                """,
                (step.id, ProcessStatus.ERROR.value, _stamp(since), max_attempts, limit),
            )
            rows = await cursor.fetchall()
            return [_item_from_row(row) for row in rows]
        finally:
            await db.close()

    async def commit(self, next_step: StepDescriptor | None, items: list[WorkItem]) -> None:
        """Persist a batch in a single transaction.

        READY items move to *next_step*; ERROR items keep their step and
        count one more attempt.
        """
        now = utcnow()
        stamp = _stamp(now)
        rows: list[tuple] = []
        for item in items:
            step_id = item.step_id
            if next_step is not None and item.status is ProcessStatus.READY:
                step_id = next_step.id
            attempts = item.attempts + 1 if item.status is ProcessStatus.ERROR else item.attempts
            rows.append((item.status.value, item.error, attempts, step_id, stamp, item.id))

        db = await self._connect()
        try:
            await db.executemany(
                """
                UPDATE work_items
                SET status = ?, error = ?, attempts = ?, step_id = ?, updated_at = ?
                WHERE id = ?
                """,
                rows,
            )
            await db.commit()
        except BaseException:
            await db.rollback()
            raise
        finally:
            await db.close()

        for item, row in zip(items, rows, strict=True):
            item.attempts = row[2]
            item.step_id = row[3]
            item.updated_at = now
