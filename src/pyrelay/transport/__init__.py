"""Job delivery to agents and agent lookup."""

from pyrelay.transport.base import (
    AgentRegistry,
    AgentUnavailableError,
    JobTransport,
    ResultHandler,
    TransportError,
)
from pyrelay.transport.memory import InMemoryAgentRegistry, InMemoryTransport, JobReport

__all__ = [
    "AgentRegistry",
    "AgentUnavailableError",
    "InMemoryAgentRegistry",
    "InMemoryTransport",
    "JobReport",
    "JobTransport",
    "ResultHandler",
    "TransportError",
]
