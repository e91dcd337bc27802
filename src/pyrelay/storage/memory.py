"""In-memory storage implementation for pyrelay.

Design Pattern: Adapter Pattern
InMemoryDocumentStore adapts in-memory dictionaries to the DocumentStore
interface.

Documents are deep-copied on the way in and on the way out, so callers
never share mutable state with the store (the same isolation a real
database gives). Instance is immediately usable after __init__.
"""

from __future__ import annotations

import asyncio
import copy

from pyrelay.models import Execution, ExecutionStatus, Job, Script, Workflow
from pyrelay.storage.base import (
    ConcurrencyError,
    DocumentStore,
    DuplicateJobError,
    StorageError,
)


class InMemoryDocumentStore(DocumentStore):
    """In-memory storage for testing.

    Can be substituted for SqliteDocumentStore without changing client code.

    Usage:
        store = InMemoryDocumentStore()
        await store.save_workflow(workflow)
    """

    def __init__(self):
        self._workflows: dict[str, Workflow] = {}
        self._scripts: dict[str, Script] = {}
        self._executions: dict[str, Execution] = {}

        # Jobs keep insertion order, which is creation order
        self._jobs: dict[str, Job] = {}

        # Index: {execution_id: [job_id, ...]}
        self._jobs_by_execution: dict[str, list[str]] = {}

        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return "InMemoryDocumentStore"

    async def save_workflow(self, workflow: Workflow) -> None:
        # Workflows are frozen; no copy needed
        async with self._lock:
            self._workflows[workflow.id] = workflow

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        async with self._lock:
            return self._workflows.get(workflow_id)

    async def save_script(self, script: Script) -> None:
        async with self._lock:
            self._scripts[script.id] = copy.deepcopy(script)

    async def get_script(self, script_id: str) -> Script | None:
        async with self._lock:
            script = self._scripts.get(script_id)
            return copy.deepcopy(script) if script else None

    async def create_execution(self, execution: Execution) -> Execution:
        async with self._lock:
            if execution.id in self._executions:
                raise StorageError(f"Execution already exists: {execution.id}")
            execution.version = 1
            self._executions[execution.id] = copy.deepcopy(execution)
            return execution

    async def save_execution(self, execution: Execution) -> Execution:
        async with self._lock:
            stored = self._executions.get(execution.id)
            if stored is None:
                raise StorageError(f"Execution not found: {execution.id}")
            if stored.version != execution.version:
                raise ConcurrencyError(
                    f"Execution {execution.id} version conflict: "
                    f"stored={stored.version}, given={execution.version}"
                )
            execution.version += 1
            self._executions[execution.id] = copy.deepcopy(execution)
            return execution

    async def get_execution(self, execution_id: str) -> Execution | None:
        async with self._lock:
            execution = self._executions.get(execution_id)
            return copy.deepcopy(execution) if execution else None

    async def get_incomplete_executions(self) -> list[Execution]:
        async with self._lock:
            return [
                copy.deepcopy(e)
                for e in self._executions.values()
                if e.status in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)
            ]

    async def create_job(self, job: Job) -> Job:
        async with self._lock:
            if job.id in self._jobs:
                raise StorageError(f"Job already exists: {job.id}")
            for job_id in self._jobs_by_execution.get(job.execution_id, ()):
                existing = self._jobs[job_id]
                if (
                    existing.node_id == job.node_id
                    and existing.scope == job.scope
                    and existing.is_active
                ):
                    raise DuplicateJobError(
                        f"Active job {existing.id} already exists for node "
                        f"{job.node_id} (scope={job.scope}) in execution {job.execution_id}"
                    )
            job.version = 1
            self._jobs[job.id] = copy.deepcopy(job)
            self._jobs_by_execution.setdefault(job.execution_id, []).append(job.id)
            return job

    async def save_job(self, job: Job) -> Job:
        async with self._lock:
            stored = self._jobs.get(job.id)
            if stored is None:
                raise StorageError(f"Job not found: {job.id}")
            if stored.version != job.version:
                raise ConcurrencyError(
                    f"Job {job.id} version conflict: stored={stored.version}, given={job.version}"
                )
            job.version += 1
            self._jobs[job.id] = copy.deepcopy(job)
            return job

    async def get_job(self, job_id: str) -> Job | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    async def get_jobs_for_execution(self, execution_id: str) -> list[Job]:
        async with self._lock:
            return [
                copy.deepcopy(self._jobs[job_id])
                for job_id in self._jobs_by_execution.get(execution_id, ())
            ]

    async def reset(self) -> None:
        """Clear all data."""
        async with self._lock:
            self._workflows.clear()
            self._scripts.clear()
            self._executions.clear()
            self._jobs.clear()
            self._jobs_by_execution.clear()
