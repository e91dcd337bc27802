"""
DocumentStore - Abstract interface for storage backends.

Design Pattern: Adapter Pattern
DocumentStore defines the target interface that all storage adapters
implement. Different backends (SQLite, Redis, Memory) adapt to this common
interface, so the coordinator programs against the abstraction and tests
run against InMemoryDocumentStore.

Consistency model:
    Executions and jobs carry a ``version`` counter. Every save checks that
    the stored version equals the caller's version and increments it, so a
    stale writer gets ConcurrencyError instead of silently overwriting a
    newer document. Under the engine's single-writer discipline (one lock
    per execution) conflicts indicate a bug or a second engine instance.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pyrelay.models import Execution, Job, Script, Workflow


class StorageError(Exception):
    """
    Storage operation failed.

    Custom exception with context, not generic Exception.
    """

    pass


class ConcurrencyError(StorageError):
    """A save lost the optimistic version check (stale document)."""

    pass


class DuplicateJobError(StorageError):
    """A non-terminal job already exists for (execution, node, scope)."""

    pass


class DocumentStore(ABC):
    """
    Abstract storage interface for workflow execution documents.

    Each method has one clear purpose. Lookups return None when a document
    does not exist (a valid state), and raise StorageError only when the
    backend itself fails or an invariant would be violated.
    """

    async def connect(self) -> None:
        """Open connections / create schema. No-op for in-process stores."""
        return None

    async def close(self) -> None:
        """Release connections. No-op for in-process stores."""
        return None

    # ========================================================================
    # Workflow and script documents (read-mostly)
    # ========================================================================

    @abstractmethod
    async def save_workflow(self, workflow: Workflow) -> None:
        """Insert or replace a workflow definition."""
        pass

    @abstractmethod
    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Load a workflow by id."""
        pass

    @abstractmethod
    async def save_script(self, script: Script) -> None:
        """Insert or replace a library script."""
        pass

    @abstractmethod
    async def get_script(self, script_id: str) -> Script | None:
        """Load a library script by id."""
        pass

    # ========================================================================
    # Execution documents
    # ========================================================================

    @abstractmethod
    async def create_execution(self, execution: Execution) -> Execution:
        """
        Insert a new execution document.

        Sets ``execution.version`` to 1.

        Raises:
            StorageError: If an execution with the same id already exists
        """
        pass

    @abstractmethod
    async def save_execution(self, execution: Execution) -> Execution:
        """
        Save an execution with an optimistic version check.

        On success ``execution.version`` is incremented in place.

        Raises:
            StorageError: If the execution does not exist
            ConcurrencyError: If the stored version differs from the caller's
        """
        pass

    @abstractmethod
    async def get_execution(self, execution_id: str) -> Execution | None:
        """Load an execution by id."""
        pass

    @abstractmethod
    async def get_incomplete_executions(self) -> list[Execution]:
        """
        Get all executions that are still pending or running.

        Used for recovery: find executions interrupted by an engine restart.
        """
        pass

    # ========================================================================
    # Job documents
    # ========================================================================

    @abstractmethod
    async def create_job(self, job: Job) -> Job:
        """
        Insert a new job document.

        Enforces the compound identity: at most one non-terminal job may
        exist per (execution_id, node_id, scope). Sets ``job.version`` to 1.

        Raises:
            DuplicateJobError: If an active job already exists for the key
        """
        pass

    @abstractmethod
    async def save_job(self, job: Job) -> Job:
        """
        Save a job with an optimistic version check.

        Raises:
            StorageError: If the job does not exist
            ConcurrencyError: If the stored version differs from the caller's
        """
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None:
        """Load a job by id."""
        pass

    @abstractmethod
    async def get_jobs_for_execution(self, execution_id: str) -> list[Job]:
        """All jobs of an execution in creation order."""
        pass

    async def find_active_job(
        self, execution_id: str, node_id: str, scope: str | None = None
    ) -> Job | None:
        """
        Find the non-terminal job for (execution, node, scope), if any.

        Default implementation scans get_jobs_for_execution(); backends may
        override it with an indexed query.
        """
        for job in await self.get_jobs_for_execution(execution_id):
            if job.node_id == node_id and job.scope == scope and job.is_active:
                return job
        return None

    async def count_active_jobs(self, execution_id: str) -> int:
        """Number of queued or running jobs of an execution (any scope)."""
        jobs = await self.get_jobs_for_execution(execution_id)
        return sum(1 for job in jobs if job.is_active)
