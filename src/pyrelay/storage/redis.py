"""Redis-based document store implementation.

Lets several processes (the engine and operator tooling) share execution
state over the network instead of a shared SQLite file.

Data Structures:
- pyrelay:workflow:{id} (STRING): Pickled Workflow
- pyrelay:script:{id} (STRING): Pickled Script
- pyrelay:execution:{id} (HASH): data, version, status
- pyrelay:executions:incomplete (SET): Ids of pending/running executions
- pyrelay:job:{id} (HASH): data, version, status
- pyrelay:jobs:{execution_id} (LIST): Job ids in creation order
- pyrelay:active:{execution_id}:{node_id}:{scope} (STRING): Id of the
  single active job for the compound key (SET NX guards uniqueness)

Key Features:
- Optimistic concurrency: WATCH + MULTI/EXEC on the document hash
- Atomic operations: Uses MULTI/EXEC for index maintenance

Design: Adapter Pattern
Implements the DocumentStore interface on top of Redis.
"""

from __future__ import annotations

import pickle

try:
    import redis.asyncio as redis
    from redis.exceptions import WatchError
except ImportError:
    raise ImportError("redis-py is required for RedisDocumentStore. Install with: pip install redis")

from pyrelay.models import Execution, Job, Script, Workflow
from pyrelay.storage.base import (
    ConcurrencyError,
    DocumentStore,
    DuplicateJobError,
    StorageError,
)


class RedisDocumentStore(DocumentStore):
    """Redis document store using connection pooling.

    Usage:
        store = RedisDocumentStore("redis://localhost:6379")
        await store.connect()
        await store.save_workflow(workflow)
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", max_connections: int = 16):
        """Initialize Redis document store.

        Args:
            redis_url: Redis connection URL
            max_connections: Maximum pool size
        """
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._redis: redis.Redis | None = None

    def __repr__(self) -> str:
        return f"RedisDocumentStore({self._redis_url})"

    async def connect(self) -> None:
        """Establish Redis connection pool."""
        self._redis = redis.from_url(
            self._redis_url,
            decode_responses=False,  # Documents are pickled bytes
            max_connections=self._max_connections,
        )

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> None:
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")

    @staticmethod
    def _workflow_key(workflow_id: str) -> str:
        return f"pyrelay:workflow:{workflow_id}"

    @staticmethod
    def _script_key(script_id: str) -> str:
        return f"pyrelay:script:{script_id}"

    @staticmethod
    def _execution_key(execution_id: str) -> str:
        return f"pyrelay:execution:{execution_id}"

    @staticmethod
    def _job_key(job_id: str) -> str:
        return f"pyrelay:job:{job_id}"

    @staticmethod
    def _execution_jobs_key(execution_id: str) -> str:
        return f"pyrelay:jobs:{execution_id}"

    @staticmethod
    def _active_key(execution_id: str, node_id: str, scope: str | None) -> str:
        return f"pyrelay:active:{execution_id}:{node_id}:{scope or ''}"

    _INCOMPLETE_KEY = "pyrelay:executions:incomplete"

    # ========================================================================
    # Workflows and scripts
    # ========================================================================

    async def save_workflow(self, workflow: Workflow) -> None:
        self._check_connected()
        await self._redis.set(self._workflow_key(workflow.id), pickle.dumps(workflow))

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        self._check_connected()
        data = await self._redis.get(self._workflow_key(workflow_id))
        return pickle.loads(data) if data else None

    async def save_script(self, script: Script) -> None:
        self._check_connected()
        await self._redis.set(self._script_key(script.id), pickle.dumps(script))

    async def get_script(self, script_id: str) -> Script | None:
        self._check_connected()
        data = await self._redis.get(self._script_key(script_id))
        return pickle.loads(data) if data else None

    # ========================================================================
    # Executions
    # ========================================================================

    async def create_execution(self, execution: Execution) -> Execution:
        self._check_connected()
        key = self._execution_key(execution.id)

        created = await self._redis.hsetnx(key, "version", "1")
        if not created:
            raise StorageError(f"Execution already exists: {execution.id}")

        execution.version = 1
        async with self._redis.pipeline(transaction=True) as pipe:
            await pipe.hset(
                key,
                mapping={"data": pickle.dumps(execution), "status": execution.status.value},
            )
            if not execution.is_terminal:
                await pipe.sadd(self._INCOMPLETE_KEY, execution.id)
            await pipe.execute()
        return execution

    async def save_execution(self, execution: Execution) -> Execution:
        self._check_connected()
        key = self._execution_key(execution.id)
        expected = execution.version

        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                stored = await pipe.hget(key, "version")
                if stored is None:
                    raise StorageError(f"Execution not found: {execution.id}")
                if int(stored) != expected:
                    raise ConcurrencyError(
                        f"Execution {execution.id} version conflict: "
                        f"stored={int(stored)}, given={expected}"
                    )

                execution.version = expected + 1
                pipe.multi()
                pipe.hset(
                    key,
                    mapping={
                        "data": pickle.dumps(execution),
                        "version": str(execution.version),
                        "status": execution.status.value,
                    },
                )
                if execution.is_terminal:
                    pipe.srem(self._INCOMPLETE_KEY, execution.id)
                await pipe.execute()
            except WatchError as e:
                execution.version = expected
                raise ConcurrencyError(
                    f"Execution {execution.id} modified concurrently"
                ) from e
        return execution

    async def get_execution(self, execution_id: str) -> Execution | None:
        self._check_connected()
        data = await self._redis.hget(self._execution_key(execution_id), "data")
        return pickle.loads(data) if data else None

    async def get_incomplete_executions(self) -> list[Execution]:
        self._check_connected()
        ids = await self._redis.smembers(self._INCOMPLETE_KEY)
        executions = []
        for raw_id in ids:
            execution = await self.get_execution(raw_id.decode())
            if execution is not None and not execution.is_terminal:
                executions.append(execution)
        return executions

    # ========================================================================
    # Jobs
    # ========================================================================

    async def create_job(self, job: Job) -> Job:
        self._check_connected()
        active_key = self._active_key(job.execution_id, job.node_id, job.scope)

        if job.is_active:
            claimed = await self._redis.set(active_key, job.id, nx=True)
            if not claimed:
                holder = await self._redis.get(active_key)
                raise DuplicateJobError(
                    f"Active job {holder.decode() if holder else '?'} already exists for node "
                    f"{job.node_id} (scope={job.scope}) in execution {job.execution_id}"
                )

        job.version = 1
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.hset(
                    self._job_key(job.id),
                    mapping={
                        "data": pickle.dumps(job),
                        "version": "1",
                        "status": job.status.value,
                    },
                )
                await pipe.rpush(self._execution_jobs_key(job.execution_id), job.id)
                await pipe.execute()
        except Exception:
            # Release the claim so the node can be dispatched again
            if job.is_active:
                await self._redis.delete(active_key)
            job.version = 0
            raise
        return job

    async def save_job(self, job: Job) -> Job:
        self._check_connected()
        key = self._job_key(job.id)
        expected = job.version

        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                stored = await pipe.hget(key, "version")
                if stored is None:
                    raise StorageError(f"Job not found: {job.id}")
                if int(stored) != expected:
                    raise ConcurrencyError(
                        f"Job {job.id} version conflict: stored={int(stored)}, given={expected}"
                    )

                job.version = expected + 1
                pipe.multi()
                pipe.hset(
                    key,
                    mapping={
                        "data": pickle.dumps(job),
                        "version": str(job.version),
                        "status": job.status.value,
                    },
                )
                if job.is_terminal:
                    pipe.delete(self._active_key(job.execution_id, job.node_id, job.scope))
                await pipe.execute()
            except WatchError as e:
                job.version = expected
                raise ConcurrencyError(f"Job {job.id} modified concurrently") from e
        return job

    async def get_job(self, job_id: str) -> Job | None:
        self._check_connected()
        data = await self._redis.hget(self._job_key(job_id), "data")
        return pickle.loads(data) if data else None

    async def get_jobs_for_execution(self, execution_id: str) -> list[Job]:
        self._check_connected()
        job_ids = await self._redis.lrange(self._execution_jobs_key(execution_id), 0, -1)
        jobs = []
        for raw_id in job_ids:
            job = await self.get_job(raw_id.decode())
            if job is not None:
                jobs.append(job)
        return jobs

    async def find_active_job(
        self, execution_id: str, node_id: str, scope: str | None = None
    ) -> Job | None:
        self._check_connected()
        job_id = await self._redis.get(self._active_key(execution_id, node_id, scope))
        if job_id is None:
            return None
        job = await self.get_job(job_id.decode())
        return job if job is not None and job.is_active else None

    async def reset(self) -> None:
        """Delete every pyrelay key (for testing/demos)."""
        self._check_connected()
        async for key in self._redis.scan_iter(match="pyrelay:*"):
            await self._redis.delete(key)
