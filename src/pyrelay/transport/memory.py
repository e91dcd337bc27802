"""In-process transport and agent registry.

InMemoryTransport stands in for the websocket link to real agents. It
records every dispatched job and reports results either manually
(``report()``) or through a responder that simulates an agent:

    transport = InMemoryTransport().with_responder(
        lambda job: JobReport(success=True, output="ok"), delay=0.01
    )

Results are always reported from a separate task, never from inside
dispatch(), so callers that hold locks while dispatching cannot deadlock.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from pyrelay.models import Agent, AgentStatus, Job
from pyrelay.transport.base import (
    AgentRegistry,
    AgentUnavailableError,
    JobTransport,
    ResultHandler,
    TransportError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobReport:
    """Result an agent reports for one job."""

    success: bool
    output: str | None = None
    error: str | None = None


Responder = Callable[[Job], "JobReport | Awaitable[JobReport]"]


class InMemoryTransport(JobTransport):
    """Transport that keeps jobs in process.

    Attributes:
        dispatched: Every job handed to dispatch(), in order (copies)
        cancelled: Ids of jobs passed to cancel()
    """

    def __init__(self):
        self._handler: ResultHandler | None = None
        self._responder: Responder | None = None
        self._response_delay = 0.0
        self._job_timeout: float | None = None

        self.dispatched: list[Job] = []
        self.cancelled: list[str] = []

        self._pending: dict[str, Job] = {}
        self._reported: set[str] = set()
        self._job_tasks: dict[str, set[asyncio.Task]] = {}

        # Strong references so background tasks are not garbage collected
        self._background_tasks: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"InMemoryTransport(dispatched={len(self.dispatched)}, pending={len(self._pending)})"

    def with_responder(self, responder: Responder, delay: float = 0.0) -> InMemoryTransport:
        """Simulate an agent that answers every job (builder pattern).

        Args:
            responder: Called with the dispatched job; returns a JobReport
                (or an awaitable of one)
            delay: Seconds to wait before reporting

        Returns:
            self for method chaining
        """
        self._responder = responder
        self._response_delay = delay
        return self

    def with_job_timeout(self, seconds: float) -> InMemoryTransport:
        """Fail jobs that have not been reported after ``seconds`` (builder pattern)."""
        if seconds <= 0:
            raise ValueError("job timeout must be positive")
        self._job_timeout = seconds
        return self

    def bind(self, handler: ResultHandler) -> None:
        self._handler = handler

    @property
    def pending_jobs(self) -> list[Job]:
        """Dispatched jobs that have not been reported yet."""
        return list(self._pending.values())

    async def dispatch(self, job: Job) -> str:
        if self._handler is None:
            raise TransportError("No result handler bound to transport")
        if job.id in self._pending or job.id in self._reported:
            raise TransportError(f"Job {job.id} was already dispatched")

        snapshot = copy.deepcopy(job)
        self.dispatched.append(snapshot)
        self._pending[job.id] = snapshot
        logger.debug(f"Dispatched job {job.id} for node {job.node_id} to agent {job.agent_id}")

        if self._responder is not None:
            self._spawn(job.id, self._respond(snapshot))
        if self._job_timeout is not None:
            self._spawn(job.id, self._expire(job.id, self._job_timeout))
        return job.id

    async def report(
        self,
        job_id: str,
        success: bool,
        output: str | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Deliver a job result to the bound handler.

        Returns:
            False if the job was already reported (the report is dropped)

        Raises:
            TransportError: If the job was never dispatched
        """
        if job_id in self._reported:
            logger.warning(f"Dropping duplicate report for job {job_id}")
            return False
        if job_id not in self._pending:
            raise TransportError(f"Unknown job: {job_id}")

        self._reported.add(job_id)
        self._pending.pop(job_id, None)
        self._cancel_job_tasks(job_id)

        await self._handler(job_id, success, output, error)
        return True

    async def cancel(self, job: Job) -> None:
        self.cancelled.append(job.id)
        if self._pending.pop(job.id, None) is not None:
            self._reported.add(job.id)
            self._cancel_job_tasks(job.id)
            logger.debug(f"Cancelled job {job.id}")

    async def drain(self) -> None:
        """Wait until every scheduled response and timeout has run."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._background_tasks):
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def _respond(self, job: Job) -> None:
        if self._response_delay > 0:
            await asyncio.sleep(self._response_delay)
        else:
            # Never report before dispatch() has returned to its caller
            await asyncio.sleep(0)

        try:
            result = self._responder(job)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            result = JobReport(success=False, error=str(e))

        if job.id in self._reported:
            return
        await self._report_from_task(job.id, result)

    async def _expire(self, job_id: str, seconds: float) -> None:
        await asyncio.sleep(seconds)
        if job_id in self._reported:
            return
        logger.warning(f"Job {job_id} timed out after {seconds} seconds")
        await self._report_from_task(
            job_id, JobReport(success=False, error=f"Job timed out after {seconds} seconds")
        )

    async def _report_from_task(self, job_id: str, report: JobReport) -> None:
        # Detach from the job's task set first so report() does not cancel us
        current = asyncio.current_task()
        tasks = self._job_tasks.get(job_id)
        if tasks is not None and current in tasks:
            tasks.discard(current)
        try:
            await self.report(job_id, report.success, report.output, report.error)
        except Exception as e:
            logger.error(f"Failed to deliver result of job {job_id}: {e}")

    def _spawn(self, job_id: str, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        self._job_tasks.setdefault(job_id, set()).add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(lambda t, jid=job_id: self._job_tasks.get(jid, set()).discard(t))

    def _cancel_job_tasks(self, job_id: str) -> None:
        for task in self._job_tasks.pop(job_id, set()):
            if task is not asyncio.current_task():
                task.cancel()


class InMemoryAgentRegistry(AgentRegistry):
    """Registry of agents kept in process.

    Usage:
        agents = InMemoryAgentRegistry()
        agents.register("agent-1")
        agent = await agents.find_available()
    """

    def __init__(self):
        self._agents: dict[str, Agent] = {}

    def __repr__(self) -> str:
        online = sum(1 for a in self._agents.values() if a.is_online)
        return f"InMemoryAgentRegistry(agents={len(self._agents)}, online={online})"

    def register(
        self,
        agent_id: str,
        address: str | None = None,
        platform: str | None = None,
        version: str | None = None,
    ) -> Agent:
        """Register (or re-register) an agent as online."""
        agent = Agent(
            agent_id=agent_id,
            address=address,
            status=AgentStatus.ONLINE,
            platform=platform,
            version=version,
        )
        self._agents[agent_id] = agent
        logger.info(f"Agent {agent_id} registered")
        return agent

    def heartbeat(self, agent_id: str) -> None:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentUnavailableError(f"Unknown agent: {agent_id}")
        agent.last_seen = datetime.now(UTC)
        agent.status = AgentStatus.ONLINE

    def set_status(self, agent_id: str, status: AgentStatus) -> None:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentUnavailableError(f"Unknown agent: {agent_id}")
        agent.status = status
        logger.info(f"Agent {agent_id} is now {status}")

    def unregister(self, agent_id: str) -> None:
        self._agents.pop(agent_id, None)

    async def resolve(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    async def find_available(self, agent_id: str | None = None) -> Agent:
        if agent_id:
            agent = self._agents.get(agent_id)
            if agent is None or not agent.is_online:
                raise AgentUnavailableError(f"Specified agent {agent_id} is not available")
            return agent

        online = [a for a in self._agents.values() if a.is_online]
        if not online:
            raise AgentUnavailableError("No agents available")
        # Most recently seen agent first
        return max(online, key=lambda a: a.last_seen)
