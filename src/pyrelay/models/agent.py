"""Agent record kept by the agent registry."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from pyrelay.models.status import AgentStatus


@dataclass
class Agent:
    """A remote worker that executes scripts on request.

    Attributes:
        agent_id: Stable agent identifier
        address: Delivery address or connection handle used by the transport
        status: Last known connectivity status
        last_seen: Time of the last registration or heartbeat
    """

    agent_id: str
    address: str | None = None
    status: AgentStatus = AgentStatus.OFFLINE
    last_seen: datetime = field(default_factory=lambda: datetime.now(UTC))
    platform: str | None = None
    version: str | None = None

    @property
    def is_online(self) -> bool:
        return self.status == AgentStatus.ONLINE
