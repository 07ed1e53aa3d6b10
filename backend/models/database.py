"""SQLite-based task persistence using aiosqlite.

This module provides the TaskStore class for persisting tasks and their
execution history to a SQLite database. Unlike a best-effort log, losing a
task write is visible to the API caller, so failures are logged and then
re-raised as ``TaskStoreError``.

Tables:
    tasks: One row per task (id, name, owner, command, timestamps).
    task_executions: Execution records, ordered by position within a task.

Usage:
    >>> from models.database import TaskStore
    >>> store = TaskStore("./data/tasks.db")
    >>> await store.init()
    >>> await store.upsert(Task(name="hello", command="echo hi"))
"""

import time
from datetime import datetime
from pathlib import Path

import aiosqlite
import structlog

from models.schemas import ExecutionPath, Task, TaskExecution

logger = structlog.get_logger(__name__)


class TaskStoreError(Exception):
    """Raised when a persistence operation fails."""


def _dump_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _load_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class TaskStore:
    """Async SQLite store for tasks and their execution records.

    Each public method opens its own connection, so a store instance may be
    shared freely between concurrent requests.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the task store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Parent directories are created automatically on init().
        """
        self.db_path = db_path

    async def _connect(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(self.db_path)
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys = ON")
        return db

    async def init(self) -> None:
        """Create database tables if they do not exist."""
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS tasks (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        owner TEXT NOT NULL DEFAULT '',
                        command TEXT NOT NULL,
                        created_at REAL NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS task_executions (
                        task_id TEXT NOT NULL,
                        position INTEGER NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT,
                        output TEXT,
                        executed_by TEXT,
                        PRIMARY KEY (task_id, position),
                        FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_tasks_name
                    ON tasks(name COLLATE NOCASE)
                """)
                await db.commit()
            logger.info("task_store_initialized", db_path=self.db_path)
        except Exception as e:
            logger.error(
                "task_store_init_failed",
                db_path=self.db_path,
                error=str(e),
            )
            raise TaskStoreError(f"Failed to initialize task store: {e}") from e

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    async def find_all(self) -> list[Task]:
        """Return every task, oldest first."""
        return await self._select("SELECT * FROM tasks ORDER BY created_at, id", ())

    async def find_by_id(self, task_id: str) -> Task | None:
        """Return the task with the given id, or None if absent."""
        tasks = await self._select("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return tasks[0] if tasks else None

    async def find_by_name(self, fragment: str) -> list[Task]:
        """Return tasks whose name contains ``fragment``, ignoring case.

        LIKE wildcards in the fragment are matched literally.
        """
        escaped = (
            fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        )
        return await self._select(
            """
            SELECT * FROM tasks
            WHERE name LIKE ? ESCAPE '\\'
            ORDER BY created_at, id
            """,
            (f"%{escaped}%",),
        )

    async def exists(self, task_id: str) -> bool:
        """Check whether a task with the given id is stored."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT 1 FROM tasks WHERE id = ?", (task_id,)
                )
                return await cursor.fetchone() is not None
        except Exception as e:
            logger.error("task_exists_failed", task_id=task_id, error=str(e))
            raise TaskStoreError(f"Failed to look up task {task_id}: {e}") from e

    async def _select(self, query: str, params: tuple) -> list[Task]:
        try:
            db = await self._connect()
            try:
                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
                return [await self._hydrate(db, row) for row in rows]
            finally:
                await db.close()
        except Exception as e:
            logger.error("task_query_failed", error=str(e))
            raise TaskStoreError(f"Failed to query tasks: {e}") from e

    @staticmethod
    async def _hydrate(db: aiosqlite.Connection, row: aiosqlite.Row) -> Task:
        cursor = await db.execute(
            """
            SELECT * FROM task_executions
            WHERE task_id = ?
            ORDER BY position
            """,
            (row["id"],),
        )
        executions = [
            TaskExecution(
                start_time=_load_time(e["start_time"]),
                end_time=_load_time(e["end_time"]),
                output=e["output"],
                executed_by=ExecutionPath(e["executed_by"]) if e["executed_by"] else None,
            )
            for e in await cursor.fetchall()
        ]
        return Task(
            id=row["id"],
            name=row["name"],
            owner=row["owner"],
            command=row["command"],
            task_executions=executions,
        )

    # -----------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------

    async def save(self, task: Task) -> Task:
        """Insert or replace a task together with its execution list.

        Saving the same task twice leaves a single stored copy. The stored
        execution list is replaced by ``task.task_executions``.

        Args:
            task: The task to persist.

        Returns:
            The task as given.
        """
        now = time.time()
        try:
            db = await self._connect()
            try:
                await db.execute(
                    """
                    INSERT INTO tasks (id, name, owner, command, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        owner = excluded.owner,
                        command = excluded.command,
                        updated_at = excluded.updated_at
                    """,
                    (task.id, task.name, task.owner, task.command, now, now),
                )
                await db.execute(
                    "DELETE FROM task_executions WHERE task_id = ?", (task.id,)
                )
                await db.executemany(
                    """
                    INSERT INTO task_executions
                        (task_id, position, start_time, end_time, output, executed_by)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            task.id,
                            position,
                            _dump_time(execution.start_time),
                            _dump_time(execution.end_time),
                            execution.output,
                            str(execution.executed_by) if execution.executed_by else None,
                        )
                        for position, execution in enumerate(task.task_executions)
                    ],
                )
                await db.commit()
            finally:
                await db.close()
            logger.debug(
                "task_saved",
                task_id=task.id,
                executions=len(task.task_executions),
            )
            return task
        except Exception as e:
            logger.error("task_save_failed", task_id=task.id, error=str(e))
            raise TaskStoreError(f"Failed to save task {task.id}: {e}") from e

    async def upsert(self, task: Task) -> Task:
        """Insert or update a task's fields, keeping its stored executions.

        Any executions carried on ``task`` are ignored; history is only
        extended through ``append_execution``.

        Returns:
            The stored task, including its execution history.
        """
        now = time.time()
        try:
            db = await self._connect()
            try:
                await db.execute(
                    """
                    INSERT INTO tasks (id, name, owner, command, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        owner = excluded.owner,
                        command = excluded.command,
                        updated_at = excluded.updated_at
                    """,
                    (task.id, task.name, task.owner, task.command, now, now),
                )
                await db.commit()
                cursor = await db.execute("SELECT * FROM tasks WHERE id = ?", (task.id,))
                stored = await self._hydrate(db, await cursor.fetchone())
            finally:
                await db.close()
        except Exception as e:
            logger.error("task_upsert_failed", task_id=task.id, error=str(e))
            raise TaskStoreError(f"Failed to upsert task {task.id}: {e}") from e

        logger.debug("task_upserted", task_id=task.id)
        return stored

    async def append_execution(self, task_id: str, execution: TaskExecution) -> None:
        """Append one execution record to a task's history.

        The position is computed in the same statement as the insert, so
        concurrent appends to the same task never overwrite each other.

        Raises:
            TaskStoreError: If the task does not exist or the write fails.
        """
        try:
            db = await self._connect()
            try:
                # Take the write lock before reading MAX(position).
                await db.execute("BEGIN IMMEDIATE")
                await db.execute(
                    """
                    INSERT INTO task_executions
                        (task_id, position, start_time, end_time, output, executed_by)
                    SELECT ?, COALESCE(MAX(position), -1) + 1, ?, ?, ?, ?
                    FROM task_executions
                    WHERE task_id = ?
                    """,
                    (
                        task_id,
                        _dump_time(execution.start_time),
                        _dump_time(execution.end_time),
                        execution.output,
                        str(execution.executed_by) if execution.executed_by else None,
                        task_id,
                    ),
                )
                await db.commit()
            finally:
                await db.close()
        except Exception as e:
            logger.error("task_execution_append_failed", task_id=task_id, error=str(e))
            raise TaskStoreError(
                f"Failed to append execution to task {task_id}: {e}"
            ) from e

        logger.debug("task_execution_appended", task_id=task_id)

    async def delete(self, task_id: str) -> bool:
        """Delete a task and its executions.

        Returns:
            True if a task was removed, False if none had that id.
        """
        try:
            db = await self._connect()
            try:
                cursor = await db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
                await db.commit()
                deleted = cursor.rowcount > 0
            finally:
                await db.close()
        except Exception as e:
            logger.error("task_delete_failed", task_id=task_id, error=str(e))
            raise TaskStoreError(f"Failed to delete task {task_id}: {e}") from e

        if deleted:
            logger.info("task_deleted", task_id=task_id)
        return deleted
