"""
Execution coordinator: drives workflow executions to a terminal status.

The coordinator owns the lifecycle of every execution it runs:

    pending → running → completed | failed | cancelled

It asks the graph scheduler which nodes are ready, runs them through the
node executors, and re-enters whenever a job finishes (remote callback,
local background task). Marks are always re-derived from the job
documents, so continuing an execution is idempotent and works the same
after a restart.

Concurrency model:
    One asyncio.Lock per execution serialises every logical step (node
    executor body, completion handling, re-derivation). Suspension points
    (remote jobs, waits, HTTP calls, loop drivers) run outside the lock and
    re-enter through it. Different executions never share a lock.

Usage:
    store = InMemoryDocumentStore()
    transport = InMemoryTransport()
    coordinator = ExecutionCoordinator(store, transport, agents)
    execution = await coordinator.start_execution("wf-1", user_id="u-1")
    await coordinator.wait_for_completion(execution.id, timeout=30)
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from uuid_extensions import uuid7

from pyrelay.config import EngineConfig
from pyrelay.executor import completion
from pyrelay.executor.conditions import ConditionEvaluator
from pyrelay.executor.context import LocalWork, NodeContext
from pyrelay.executor.graph import (
    GraphError,
    derive_marks,
    find_ready_nodes,
    find_start_nodes,
    has_pending_work,
    validate,
)
from pyrelay.executor.nodes.base import NodeExecutionError
from pyrelay.executor.nodes.registry import ExecutorRegistry
from pyrelay.executor.outcome import Proceed
from pyrelay.executor.variables import CATEGORIES, USER, WORKFLOW, VariableStore
from pyrelay.models import Execution, ExecutionStatus, Job, JobStatus, LogLevel, Node, Workflow
from pyrelay.storage.base import DocumentStore, DuplicateJobError, StorageError
from pyrelay.transport.base import AgentRegistry, JobTransport, TransportError

logger = logging.getLogger(__name__)

NO_START_NODES = "No start nodes found in workflow"
INTERRUPTED = "Interrupted by engine restart"


class CoordinatorError(Exception):
    """Coordinator operation failed."""

    pass


class WorkflowNotFoundError(CoordinatorError):
    pass


class ExecutionNotFoundError(CoordinatorError):
    pass


class JobNotFoundError(CoordinatorError):
    pass


@dataclass(eq=False)
class _ExecutionRun:
    """In-memory state of one execution driven by this coordinator."""

    execution: Execution
    workflow: Workflow
    variables: VariableStore
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    # Local background work, keyed by job id
    tasks: dict[str, asyncio.Task] = field(default_factory=dict)

    # Loop-body jobs awaited by their loop driver, keyed by job id
    waiters: dict[str, asyncio.Future] = field(default_factory=dict)
    scoped_variables: dict[str, VariableStore] = field(default_factory=dict)

    done: asyncio.Event = field(default_factory=asyncio.Event)
    closed: bool = False


def _error_text(error: BaseException) -> str:
    return str(error) or type(error).__name__


class ExecutionCoordinator:
    """
    Runs workflow executions.

    All collaborators are passed explicitly:
        store: DocumentStore holding workflows, scripts, executions and jobs
        transport: JobTransport delivering script jobs to agents
        agents: AgentRegistry used to pick agents (optional; without it
            script nodes must name their agent)
        registry: Node executors by type (default: all built-ins)
        config: EngineConfig (default: EngineConfig())
    """

    def __init__(
        self,
        store: DocumentStore,
        transport: JobTransport,
        agents: AgentRegistry | None = None,
        registry: ExecutorRegistry | None = None,
        config: EngineConfig | None = None,
    ):
        self.store = store
        self.transport = transport
        self.agents = agents
        self.registry = registry or ExecutorRegistry.default()
        self.config = config or EngineConfig()
        self.evaluator = ConditionEvaluator(self.config)

        self._runs: dict[str, _ExecutionRun] = {}
        self._runs_lock = asyncio.Lock()

        # Strong references so background tasks are not garbage collected
        self._background_tasks: set[asyncio.Task] = set()

        transport.bind(self.on_job_result)

    def __repr__(self) -> str:
        return f"ExecutionCoordinator(store={self.store!r}, running={len(self._runs)})"

    # ========================================================================
    # Builder methods
    # ========================================================================

    def with_config(self, config: EngineConfig) -> ExecutionCoordinator:
        """Replace the engine configuration (builder pattern).

        Returns:
            self for method chaining
        """
        self.config = config
        self.evaluator = ConditionEvaluator(config)
        return self

    def with_registry(self, registry: ExecutorRegistry) -> ExecutionCoordinator:
        """Replace the node executor registry (builder pattern)."""
        self.registry = registry
        return self

    def with_agents(self, agents: AgentRegistry) -> ExecutionCoordinator:
        """Set the agent registry (builder pattern)."""
        self.agents = agents
        return self

    # ========================================================================
    # Public API
    # ========================================================================

    async def start_execution(
        self,
        workflow_id: str,
        user_id: str,
        agent_id: str | None = None,
        initial_variables: dict[str, Any] | None = None,
    ) -> Execution:
        """
        Create an execution of ``workflow_id`` and dispatch its start nodes.

        Returns:
            The live execution document (running, or already terminal when
            every node finished synchronously or the graph was invalid)

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
        """
        workflow = await self.store.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")

        execution = Execution(
            id=str(uuid7()),
            workflow_id=workflow.id,
            initiated_by=user_id,
            agent_id=agent_id,
        )
        variables = VariableStore(execution.variables)
        self._seed_variables(execution, workflow, variables, initial_variables)
        execution.add_log(None, f"Execution started for workflow {workflow.name}")

        await self.store.create_execution(execution)
        logger.info(f"Started execution {execution.id} of workflow {workflow.id}")

        run = _ExecutionRun(execution=execution, workflow=workflow, variables=variables)
        self._runs[execution.id] = run

        async with run.lock:
            if await self._begin(run):
                await self._advance(run)
        return execution

    async def continue_execution(self, execution: Execution | str) -> Execution:
        """
        Dispatch whatever is ready and complete the execution if nothing is
        left. Safe to call any number of times.
        """
        execution_id = execution if isinstance(execution, str) else execution.id
        run = await self._get_run(execution_id)
        async with run.lock:
            if run.execution.is_terminal:
                return run.execution
            if run.execution.status == ExecutionStatus.PENDING and not await self._begin(run):
                return run.execution
            await self._advance(run)
        return run.execution

    async def cancel_execution(self, execution_id: str) -> Execution:
        """
        Cancel an execution and every non-terminal job it owns.

        Remote jobs get a best-effort cancel through the transport; local
        timers and loop drivers are stopped.
        """
        run = await self._get_run(execution_id)
        async with run.lock:
            execution = run.execution
            if execution.is_terminal:
                logger.info(f"Execution {execution_id} is already {execution.status}")
                return execution

            for job in await self.store.get_jobs_for_execution(execution_id):
                if not job.is_active:
                    continue
                job.cancel()
                await self.store.save_job(job)
                if job.is_remote:
                    try:
                        await self.transport.cancel(job)
                    except TransportError as e:
                        logger.warning(f"Failed to cancel job {job.id} on agent {job.agent_id}: {e}")

            for task in list(run.tasks.values()):
                task.cancel()
            for waiter in run.waiters.values():
                if not waiter.done():
                    waiter.cancel()
            run.waiters.clear()
            run.scoped_variables.clear()

            completion.cancel_execution(execution)
            await self._save(run)
        return execution

    async def on_job_result(
        self,
        job_id: str,
        success: bool,
        output: str | None = None,
        error: str | None = None,
    ) -> None:
        """
        Transport callback: a remote job finished.

        Results for jobs that are already terminal (duplicates, cancelled
        jobs) are ignored with a warning.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if job.is_terminal:
            logger.warning(f"Ignoring result for job {job_id}, already {job.status}")
            return

        run = await self._get_run(job.execution_id)
        async with run.lock:
            job = await self.store.get_job(job_id)
            if job is None or job.is_terminal:
                logger.warning(f"Ignoring result for job {job_id}, already settled")
                return

            execution = run.execution
            node = run.workflow.get_node(job.node_id)
            error = error or (None if success else "Remote execution failed")

            if node is None or execution.is_terminal:
                # Late result: record it on the job, the execution is read-only
                if success:
                    job.complete(output)
                else:
                    job.fail(error)
                await self.store.save_job(job)
                self._resolve_waiter(run, job)
                return

            if success:
                execution.add_log(node.id, "Node execution completed")
            else:
                execution.add_log(node.id, f"Node execution failed: {error}", LogLevel.ERROR)
            logger.debug(f"Job {job_id} for node {node.id} reported success={success}")

            variables = run.scoped_variables.get(job.id, run.variables)
            context = NodeContext(self, run, node, job, variables)
            executor = self.registry.get(node.type)
            try:
                outcome = await executor.on_result(node, job, success, output, error, context)
                failure = None
            except Exception as e:
                outcome, failure = None, _error_text(e)

            await self._settle(run, node, job, outcome, failure)
            if job.scope is None:
                await self._advance(run)

    async def wait_for_completion(
        self, execution_id: str, timeout: float | None = None
    ) -> Execution:
        """
        Wait until the execution reaches a terminal status.

        Raises:
            TimeoutError: If ``timeout`` elapses first
            ExecutionNotFoundError: If the execution does not exist
        """
        run = self._runs.get(execution_id)
        if run is None:
            return await self.get_execution(execution_id)
        await asyncio.wait_for(run.done.wait(), timeout)
        return run.execution

    async def get_execution(self, execution_id: str) -> Execution:
        run = self._runs.get(execution_id)
        if run is not None:
            return run.execution
        execution = await self.store.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(f"Execution not found: {execution_id}")
        return execution

    async def recover(self) -> list[Execution]:
        """
        Resume every pending or running execution found in the store.

        Remote jobs keep waiting for their callbacks. Local work (timers,
        HTTP calls, loop drivers) did not survive the restart: those jobs
        are cancelled and their nodes dispatched again.
        """
        recovered = []
        for stored in await self.store.get_incomplete_executions():
            if stored.id in self._runs:
                continue
            try:
                run = await self._get_run(stored.id)
            except CoordinatorError as e:
                logger.error(f"Cannot recover execution {stored.id}: {e}")
                continue

            async with run.lock:
                execution = run.execution
                restart: list[Node] = []
                for job in await self.store.get_jobs_for_execution(execution.id):
                    if not job.is_active or (job.is_remote and job.scope is None):
                        continue
                    job.cancel()
                    job.error = INTERRUPTED
                    await self.store.save_job(job)
                    if job.is_remote:
                        try:
                            await self.transport.cancel(job)
                        except TransportError as e:
                            logger.warning(f"Failed to cancel job {job.id}: {e}")
                    elif job.scope is None:
                        node = run.workflow.get_node(job.node_id)
                        if node is not None:
                            restart.append(node)

                if execution.status == ExecutionStatus.PENDING and not await self._begin(run):
                    recovered.append(execution)
                    continue

                execution.add_log(None, "Execution recovered", LogLevel.WARN)
                for node in restart:
                    if execution.is_terminal:
                        break
                    await self._dispatch_node(run, node)
                await self._advance(run)

            logger.info(f"Recovered execution {execution.id} ({len(restart)} nodes restarted)")
            recovered.append(run.execution)
        return recovered

    async def close(self) -> None:
        """Stop all local background work of this coordinator."""
        for task in list(self._background_tasks):
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ========================================================================
    # Walk
    # ========================================================================

    def _seed_variables(
        self,
        execution: Execution,
        workflow: Workflow,
        variables: VariableStore,
        initial_variables: dict[str, Any] | None,
    ) -> None:
        defaults = copy.deepcopy(workflow.variables)
        # Tiered: every value is a category map and at least one is a known tier
        tiered = (
            bool(defaults)
            and any(key in CATEGORIES for key in defaults)
            and all(isinstance(value, dict) for value in defaults.values())
        )
        if tiered:
            for category, values in defaults.items():
                execution.variables.setdefault(category, {}).update(values)
        else:
            execution.variables[WORKFLOW].update(defaults)

        if initial_variables:
            execution.variables[USER].update(copy.deepcopy(initial_variables))

        variables.seed_system(
            {
                "executionId": execution.id,
                "workflowId": workflow.id,
                "startTime": execution.started_at.isoformat(),
                "environment": self.config.environment,
            }
        )

    async def _begin(self, run: _ExecutionRun) -> bool:
        """Validate the graph and move to running. False if the execution failed."""
        execution = run.execution
        workflow = run.workflow

        if not find_start_nodes(workflow.nodes, workflow.edges):
            completion.fail_execution(execution, NO_START_NODES)
            await self._save(run)
            return False
        try:
            validate(workflow)
        except GraphError as e:
            completion.fail_execution(execution, str(e))
            await self._save(run)
            return False

        execution.status = ExecutionStatus.RUNNING
        await self._save(run)
        return True

    async def _advance(self, run: _ExecutionRun) -> None:
        """Dispatch ready nodes until none are left; complete when idle.

        Caller holds ``run.lock``.
        """
        execution = run.execution
        dispatched: set[str] = set()

        while not execution.is_terminal:
            jobs = await self.store.get_jobs_for_execution(execution.id)
            marks = derive_marks(jobs)
            ready = find_ready_nodes(run.workflow, marks, dispatched)
            if ready.skipped:
                logger.debug(f"Execution {execution.id} skipped nodes: {', '.join(ready.skipped)}")

            if not ready.ready:
                if not has_pending_work(run.workflow, marks):
                    completion.complete_execution(execution)
                    await self._save(run)
                return

            for node in ready.ready:
                dispatched.add(node.id)
                await self._dispatch_node(run, node)
                if execution.is_terminal:
                    return

    async def _dispatch_node(self, run: _ExecutionRun, node: Node) -> Job | None:
        execution = run.execution
        job = Job(
            id=str(uuid7()),
            execution_id=execution.id,
            node_id=node.id,
            user_id=execution.initiated_by,
            script=node.type,
        )
        try:
            await self.store.create_job(job)
        except DuplicateJobError as e:
            logger.warning(f"Node {node.id} already dispatched: {e}")
            return None

        await self._execute(run, node, job, run.variables)
        return job

    async def _run_inline(
        self, run: _ExecutionRun, node: Node, scope: str, variables: VariableStore
    ) -> Job:
        """Run one loop-body dispatch and wait for its job to settle."""
        async with run.lock:
            execution = run.execution
            if execution.is_terminal:
                raise NodeExecutionError(f"Execution is {execution.status}")

            job = Job(
                id=str(uuid7()),
                execution_id=execution.id,
                node_id=node.id,
                scope=scope,
                user_id=execution.initiated_by,
                script=node.type,
            )
            await self.store.create_job(job)

            waiter = asyncio.get_running_loop().create_future()
            run.waiters[job.id] = waiter
            run.scoped_variables[job.id] = variables

            await self._execute(run, node, job, variables)

        return await waiter

    async def _execute(
        self, run: _ExecutionRun, node: Node, job: Job, variables: VariableStore
    ) -> None:
        """Run a node executor for ``job``. Caller holds ``run.lock``."""
        execution = run.execution
        execution.add_log(node.id, f"Executing node {node.id} ({node.type})")
        logger.debug(f"Executing node {node.id} ({node.type}) scope={job.scope}")

        executor = self.registry.get(node.type)
        context = NodeContext(self, run, node, job, variables)
        try:
            outcome = await executor.execute(node, run.workflow, context)
        except Exception as e:
            message = _error_text(e)
            execution.add_log(node.id, f"Error executing node: {message}", LogLevel.ERROR)
            logger.warning(f"Node {node.id} failed: {message}")
            await self._settle(run, node, job, None, message)
            return

        if isinstance(outcome, Proceed):
            await self._settle(run, node, job, outcome, None)
        else:
            await self._save(run)

    async def _settle(
        self,
        run: _ExecutionRun,
        node: Node,
        job: Job,
        outcome: Proceed | None,
        error: str | None,
    ) -> None:
        """Make ``job`` terminal and apply the completion policy.

        Caller holds ``run.lock``.
        """
        if outcome is not None:
            job.complete(outcome.output, outcome.handles)
        else:
            completion.settle_failure(run.execution, run.workflow, node, job, error or "")

        await self.store.save_job(job)
        self._resolve_waiter(run, job)
        await self._save(run)

    def _resolve_waiter(self, run: _ExecutionRun, job: Job) -> None:
        run.scoped_variables.pop(job.id, None)
        waiter = run.waiters.pop(job.id, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(job)

    async def _save(self, run: _ExecutionRun) -> None:
        """Persist the execution; the terminal save is the last one."""
        if run.closed:
            return
        await self.store.save_execution(run.execution)
        if run.execution.is_terminal:
            run.closed = True
            run.done.set()
            self._runs.pop(run.execution.id, None)

    async def _get_run(self, execution_id: str) -> _ExecutionRun:
        run = self._runs.get(execution_id)
        if run is not None:
            return run

        async with self._runs_lock:
            run = self._runs.get(execution_id)
            if run is not None:
                return run

            execution = await self.store.get_execution(execution_id)
            if execution is None:
                raise ExecutionNotFoundError(f"Execution not found: {execution_id}")
            workflow = await self.store.get_workflow(execution.workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(f"Workflow not found: {execution.workflow_id}")

            run = _ExecutionRun(
                execution=execution,
                workflow=workflow,
                variables=VariableStore(execution.variables),
            )
            if execution.is_terminal:
                run.closed = True
                run.done.set()
            else:
                self._runs[execution_id] = run
            return run

    # ========================================================================
    # Jobs
    # ========================================================================

    async def _dispatch_remote(self, run: _ExecutionRun, job: Job) -> None:
        """Save and hand a job to the transport. Caller holds ``run.lock``."""
        await self.store.save_job(job)
        await self.transport.dispatch(job)
        logger.debug(f"Dispatched job {job.id} for node {job.node_id} to agent {job.agent_id}")

    async def _spawn_local(
        self,
        run: _ExecutionRun,
        node: Node,
        job: Job,
        variables: VariableStore,
        work: LocalWork,
    ) -> None:
        """Run ``work`` in the background and settle ``job`` with its outcome."""
        job.set_status(JobStatus.RUNNING)
        await self.store.save_job(job)
        job_id = job.id

        async def runner() -> None:
            try:
                outcome = await work()
                error = None
            except asyncio.CancelledError:
                raise
            except Exception as e:
                outcome, error = None, _error_text(e)

            try:
                await self._finish_local(run, node, job_id, outcome, error)
            except Exception as e:
                logger.error(f"Failed to settle job {job_id} of node {node.id}: {e}")
                await self._abort(run, node, f"Failed to settle node {node.id}: {_error_text(e)}")

        task = asyncio.get_running_loop().create_task(runner())
        run.tasks[job_id] = task
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(lambda _: run.tasks.pop(job_id, None))

    async def _finish_local(
        self,
        run: _ExecutionRun,
        node: Node,
        job_id: str,
        outcome: Proceed | None,
        error: str | None,
    ) -> None:
        async with run.lock:
            job = await self.store.get_job(job_id)
            if job is None or job.is_terminal:
                return

            if error is not None and not run.execution.is_terminal:
                run.execution.add_log(node.id, f"Error executing node: {error}", LogLevel.ERROR)
                logger.warning(f"Node {node.id} failed: {error}")

            await self._settle(run, node, job, outcome, error)
            if job.scope is None:
                await self._advance(run)

    async def _abort(self, run: _ExecutionRun, node: Node, message: str) -> None:
        """Fail the execution after its state could not be settled."""
        async with run.lock:
            if run.closed:
                return
            # No-op when the failed step had already finished the execution in memory
            completion.fail_execution(run.execution, message, node.id)

            current = asyncio.current_task()
            for task in list(run.tasks.values()):
                if task is not current:
                    task.cancel()
            for waiter in run.waiters.values():
                if not waiter.done():
                    waiter.cancel()
            run.waiters.clear()
            run.scoped_variables.clear()

            try:
                await self._save(run)
            except StorageError as e:
                logger.error(f"Failed to persist failure of execution {run.execution.id}: {e}")
                run.closed = True
                run.done.set()
                self._runs.pop(run.execution.id, None)
