"""SQLite-backed storage implementation for pyrelay.

Design Pattern: Adapter Pattern
SqliteDocumentStore adapts an SQLite database to the DocumentStore interface.

Implementation details:
- aiosqlite for async operations
- WAL mode for concurrent reads
- Documents stored as pickled BLOBs next to the columns that are queried
  (status, version, compound job key)
- Partial unique index enforces one active job per (execution, node, scope)
- Versioned UPDATE ... WHERE version = ? for optimistic concurrency
"""

from __future__ import annotations

import asyncio
import pickle
from datetime import datetime
from pathlib import Path

import aiosqlite

from pyrelay.models import Execution, Job, Script, Workflow
from pyrelay.storage.base import (
    ConcurrencyError,
    DocumentStore,
    DuplicateJobError,
    StorageError,
)

_ACTIVE_JOB_STATUSES = ("queued", "running")


class SqliteDocumentStore(DocumentStore):
    """SQLite-backed durable storage.

    After __init__, the instance is not yet usable. Call connect() first.

    Usage:
        store = SqliteDocumentStore("pyrelay.db")
        await store.connect()
        try:
            await store.save_workflow(workflow)
        finally:
            await store.close()
    """

    def __init__(self, db_path: str):
        """Initialize storage (connection not opened yet).

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize access to shared connection

    @classmethod
    async def in_memory(cls) -> SqliteDocumentStore:
        """
        Create an in-memory SQLite storage for testing.

        Example:
            store = await SqliteDocumentStore.in_memory()
        """
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        if self.db_path == ":memory:":
            return "SqliteDocumentStore(in-memory)"
        return f"SqliteDocumentStore({self.db_path})"

    async def connect(self) -> None:
        """Open database connection and initialize schema."""
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()
        if result:
            mode = result[0].upper()
            if mode not in ("WAL", "MEMORY"):
                raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        await self._create_schema()
        await self._connection.commit()

    async def _create_schema(self) -> None:
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                data BLOB NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS scripts (
                id TEXT PRIMARY KEY,
                data BLOB NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT CHECK( status IN (
                    'pending','running','completed','failed','cancelled'
                ) ) NOT NULL,
                version INTEGER NOT NULL,
                data BLOB NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_executions_status
            ON executions(status)
        """)

        # seq keeps creation order independent of clock resolution
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                execution_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                scope TEXT,
                status TEXT CHECK( status IN (
                    'queued','running','completed','failed','cancelled'
                ) ) NOT NULL,
                version INTEGER NOT NULL,
                data BLOB NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_execution
            ON jobs(execution_id, seq)
        """)

        await self._connection.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_active_key
            ON jobs(execution_id, node_id, COALESCE(scope, ''))
            WHERE status IN ('queued', 'running')
        """)

    # ========================================================================
    # Workflows and scripts
    # ========================================================================

    async def save_workflow(self, workflow: Workflow) -> None:
        self._check_connected()
        async with self._lock:
            await self._connection.execute(
                "INSERT OR REPLACE INTO workflows (id, data) VALUES (?, ?)",
                (workflow.id, pickle.dumps(workflow)),
            )
            await self._connection.commit()

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        self._check_connected()
        return await self._load_blob("SELECT data FROM workflows WHERE id = ?", workflow_id)

    async def save_script(self, script: Script) -> None:
        self._check_connected()
        async with self._lock:
            await self._connection.execute(
                "INSERT OR REPLACE INTO scripts (id, data) VALUES (?, ?)",
                (script.id, pickle.dumps(script)),
            )
            await self._connection.commit()

    async def get_script(self, script_id: str) -> Script | None:
        self._check_connected()
        return await self._load_blob("SELECT data FROM scripts WHERE id = ?", script_id)

    # ========================================================================
    # Executions
    # ========================================================================

    async def create_execution(self, execution: Execution) -> Execution:
        self._check_connected()
        async with self._lock:
            execution.version = 1
            try:
                await self._connection.execute(
                    """
                    INSERT INTO executions (id, workflow_id, status, version, data, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        execution.id,
                        execution.workflow_id,
                        execution.status.value,
                        execution.version,
                        pickle.dumps(execution),
                        _now_millis(),
                    ),
                )
                await self._connection.commit()
            except aiosqlite.IntegrityError as e:
                execution.version = 0
                raise StorageError(f"Execution already exists: {execution.id}") from e
            return execution

    async def save_execution(self, execution: Execution) -> Execution:
        """Versioned update.

        Design Pattern: Optimistic Concurrency Control
        UPDATE with WHERE version = ? only succeeds for the writer holding
        the current version.
        """
        self._check_connected()
        async with self._lock:
            expected = execution.version
            execution.version = expected + 1
            cursor = await self._connection.execute(
                """
                UPDATE executions
                SET status = ?, version = ?, data = ?, updated_at = ?
                WHERE id = ? AND version = ?
                """,
                (
                    execution.status.value,
                    execution.version,
                    pickle.dumps(execution),
                    _now_millis(),
                    execution.id,
                    expected,
                ),
            )
            updated = cursor.rowcount
            await cursor.close()
            await self._connection.commit()

            if updated == 0:
                execution.version = expected
                stored_version = await self._fetch_version("executions", execution.id)
                if stored_version is None:
                    raise StorageError(f"Execution not found: {execution.id}")
                raise ConcurrencyError(
                    f"Execution {execution.id} version conflict: "
                    f"stored={stored_version}, given={expected}"
                )
            return execution

    async def get_execution(self, execution_id: str) -> Execution | None:
        self._check_connected()
        return await self._load_blob("SELECT data FROM executions WHERE id = ?", execution_id)

    async def get_incomplete_executions(self) -> list[Execution]:
        self._check_connected()
        cursor = await self._connection.execute(
            "SELECT data FROM executions WHERE status IN ('pending', 'running')"
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [pickle.loads(row[0]) for row in rows]

    # ========================================================================
    # Jobs
    # ========================================================================

    async def create_job(self, job: Job) -> Job:
        self._check_connected()
        async with self._lock:
            existing = await self.find_active_job(job.execution_id, job.node_id, job.scope)
            if existing is not None:
                raise DuplicateJobError(
                    f"Active job {existing.id} already exists for node "
                    f"{job.node_id} (scope={job.scope}) in execution {job.execution_id}"
                )

            job.version = 1
            try:
                await self._connection.execute(
                    """
                    INSERT INTO jobs (id, execution_id, node_id, scope, status,
                                      version, data, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job.id,
                        job.execution_id,
                        job.node_id,
                        job.scope,
                        job.status.value,
                        job.version,
                        pickle.dumps(job),
                        _now_millis(),
                    ),
                )
                await self._connection.commit()
            except aiosqlite.IntegrityError as e:
                job.version = 0
                raise DuplicateJobError(f"Failed to insert job {job.id}: {e}") from e
            return job

    async def save_job(self, job: Job) -> Job:
        self._check_connected()
        async with self._lock:
            expected = job.version
            job.version = expected + 1
            try:
                cursor = await self._connection.execute(
                    """
                    UPDATE jobs
                    SET status = ?, version = ?, data = ?, updated_at = ?
                    WHERE id = ? AND version = ?
                    """,
                    (
                        job.status.value,
                        job.version,
                        pickle.dumps(job),
                        _now_millis(),
                        job.id,
                        expected,
                    ),
                )
            except aiosqlite.IntegrityError as e:
                job.version = expected
                raise DuplicateJobError(f"Failed to update job {job.id}: {e}") from e
            updated = cursor.rowcount
            await cursor.close()
            await self._connection.commit()

            if updated == 0:
                job.version = expected
                stored_version = await self._fetch_version("jobs", job.id)
                if stored_version is None:
                    raise StorageError(f"Job not found: {job.id}")
                raise ConcurrencyError(
                    f"Job {job.id} version conflict: stored={stored_version}, given={expected}"
                )
            return job

    async def get_job(self, job_id: str) -> Job | None:
        self._check_connected()
        return await self._load_blob("SELECT data FROM jobs WHERE id = ?", job_id)

    async def get_jobs_for_execution(self, execution_id: str) -> list[Job]:
        self._check_connected()
        cursor = await self._connection.execute(
            "SELECT data FROM jobs WHERE execution_id = ? ORDER BY seq ASC",
            (execution_id,),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [pickle.loads(row[0]) for row in rows]

    async def find_active_job(
        self, execution_id: str, node_id: str, scope: str | None = None
    ) -> Job | None:
        self._check_connected()
        cursor = await self._connection.execute(
            """
            SELECT data FROM jobs
            WHERE execution_id = ? AND node_id = ? AND COALESCE(scope, '') = ?
              AND status IN (?, ?)
            """,
            (execution_id, node_id, scope or "", *_ACTIVE_JOB_STATUSES),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return pickle.loads(row[0]) if row else None

    async def count_active_jobs(self, execution_id: str) -> int:
        self._check_connected()
        cursor = await self._connection.execute(
            "SELECT COUNT(*) FROM jobs WHERE execution_id = ? AND status IN (?, ?)",
            (execution_id, *_ACTIVE_JOB_STATUSES),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row[0] if row else 0

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def reset(self) -> None:
        """Clear all data (for testing/demos)."""
        self._check_connected()
        await self._connection.execute("DELETE FROM workflows")
        await self._connection.execute("DELETE FROM scripts")
        await self._connection.execute("DELETE FROM executions")
        await self._connection.execute("DELETE FROM jobs")
        await self._connection.commit()

    async def close(self) -> None:
        """Close storage connections.

        Explicit resource cleanup, not relying on GC.
        """
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def _check_connected(self) -> None:
        """Guard clause: Ensure connection is open."""
        if self._connection is None:
            raise StorageError("Not connected. Call connect() first.")

    async def _load_blob(self, query: str, key: str):
        cursor = await self._connection.execute(query, (key,))
        row = await cursor.fetchone()
        await cursor.close()
        return pickle.loads(row[0]) if row else None

    async def _fetch_version(self, table: str, key: str) -> int | None:
        cursor = await self._connection.execute(
            f"SELECT version FROM {table} WHERE id = ?", (key,)
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row[0] if row else None


def _now_millis() -> int:
    return int(datetime.now().timestamp() * 1000)
