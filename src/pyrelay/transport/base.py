"""
Job transport and agent registry interfaces.

The engine never talks to agents directly. It hands jobs to a JobTransport
(fire-and-forget) and learns about results through the handler bound with
``bind()``. The AgentRegistry answers which agents are reachable.

Contract for transports:
- dispatch() returns as soon as the job is handed off; it never reports
  the result inline
- every dispatched job is reported at most once through the bound handler
- cancel() is best effort
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from pyrelay.models import Agent, Job

ResultHandler = Callable[[str, bool, str | None, str | None], Awaitable[None]]
"""Callback signature: (job_id, success, output, error)."""


class TransportError(Exception):
    """Handing a job to the transport failed."""

    pass


class AgentUnavailableError(TransportError):
    """No agent (or not the requested agent) is online."""

    pass


class JobTransport(ABC):
    """Delivers jobs to agents and reports their results back."""

    @abstractmethod
    def bind(self, handler: ResultHandler) -> None:
        """Register the callback that receives job results."""
        pass

    @abstractmethod
    async def dispatch(self, job: Job) -> str:
        """
        Hand a job to its agent.

        Returns:
            The job id

        Raises:
            TransportError: If the job could not be handed off
        """
        pass

    async def cancel(self, job: Job) -> None:
        """Ask the agent to stop a job. Best effort, default no-op."""
        return None

    async def close(self) -> None:
        return None


class AgentRegistry(ABC):
    """Lookup of agents known to the server."""

    @abstractmethod
    async def resolve(self, agent_id: str) -> Agent | None:
        """Return the agent record, or None if unknown."""
        pass

    @abstractmethod
    async def find_available(self, agent_id: str | None = None) -> Agent:
        """
        Pick the agent a job should run on.

        With ``agent_id`` the named agent must be online. Without it any
        online agent is returned.

        Raises:
            AgentUnavailableError: If no suitable agent is online
        """
        pass
