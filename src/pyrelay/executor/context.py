"""
Per-node execution context.

A NodeContext is what a node executor sees of the engine: the execution
being run, the node's job, the variable store (passed explicitly, never a
global), the external collaborators, and the few engine operations an
executor may request:

- dispatch_job(): send the node's job to a remote agent
- spawn(): finish the node later in a local background task
- run_inline(): run a loop-body node once for one iteration

Each context is bound to one job. Loop drivers derive child scopes from
their own scope so nested loops never collide on a job key.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from pyrelay.config import EngineConfig
from pyrelay.executor.conditions import ConditionEvaluator
from pyrelay.executor.outcome import AwaitJob, Proceed
from pyrelay.executor.variables import VariableStore
from pyrelay.models import Execution, Job, LogLevel, Node, Script, Workflow
from pyrelay.storage.base import DocumentStore
from pyrelay.transport.base import AgentRegistry, JobTransport

if TYPE_CHECKING:
    from pyrelay.executor.coordinator import ExecutionCoordinator, _ExecutionRun

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}

LocalWork = Callable[[], Awaitable[Proceed]]


class NodeContext:
    """Everything a node executor may touch while running one node."""

    def __init__(
        self,
        coordinator: ExecutionCoordinator,
        run: _ExecutionRun,
        node: Node,
        job: Job,
        variables: VariableStore,
    ):
        self._coordinator = coordinator
        self._run = run
        self.node = node
        self.job = job
        self.variables = variables

    def __repr__(self) -> str:
        return (
            f"NodeContext(execution={self.execution.id!r}, node={self.node.id!r}, "
            f"scope={self.scope!r})"
        )

    @property
    def execution(self) -> Execution:
        return self._run.execution

    @property
    def workflow(self) -> Workflow:
        return self._run.workflow

    @property
    def scope(self) -> str | None:
        return self.job.scope

    @property
    def config(self) -> EngineConfig:
        return self._coordinator.config

    @property
    def evaluator(self) -> ConditionEvaluator:
        return self._coordinator.evaluator

    @property
    def store(self) -> DocumentStore:
        return self._coordinator.store

    @property
    def transport(self) -> JobTransport:
        return self._coordinator.transport

    @property
    def agents(self) -> AgentRegistry | None:
        return self._coordinator.agents

    def log(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        """Append to the execution log and to the process log."""
        # Terminal executions are read-only; late local work only reaches the process log
        if not self.execution.is_terminal:
            self.execution.add_log(self.node.id, message, level)
        logger.log(
            _LOG_LEVELS[level],
            f"[{self.execution.id}] {self.node.id}: {message}",
        )

    def set_result(self, value: Any) -> None:
        """Record this node's entry in the execution's results map."""
        self.execution.results[self.node.id] = value

    async def load_script(self, script_id: str) -> Script | None:
        return await self.store.get_script(script_id)

    async def dispatch_job(
        self, agent_id: str, script: str, parameters: dict[str, Any] | None = None
    ) -> AwaitJob:
        """Send this node's job to ``agent_id``; the node finishes on the callback."""
        self.job.agent_id = agent_id
        self.job.script = script
        self.job.parameters = dict(parameters or {})
        await self._coordinator._dispatch_remote(self._run, self.job)
        return AwaitJob(self.job.id)

    async def spawn(self, work: LocalWork, description: str | None = None) -> AwaitJob:
        """
        Finish this node in a background task.

        Args:
            work: Zero-argument coroutine function returning the node's
                Proceed outcome (or raising on failure)
            description: Recorded as the job's script text
        """
        if description is not None:
            self.job.script = description
        await self._coordinator._spawn_local(self._run, self.node, self.job, self.variables, work)
        return AwaitJob(self.job.id)

    def child_scope(self, iteration: int) -> str:
        """Scope key of one iteration of this (loop) node."""
        own = f"{self.node.id}#{iteration}"
        return f"{self.scope}/{own}" if self.scope else own

    async def run_inline(self, node: Node, scope: str, variables: VariableStore) -> Job:
        """
        Run ``node`` once as part of a loop iteration and wait for it.

        Returns:
            The terminal job of the dispatch (completed, failed or cancelled)
        """
        return await self._coordinator._run_inline(self._run, node, scope, variables)
