"""
Job represents one dispatched unit of work bound to one node in one execution.

Design principles:
- (execution_id, node_id, scope) is the compound identity: at most one
  non-terminal job may exist for it at any time
- Mutated only through the set_* helpers so updated_at stays accurate
- Serialization-friendly (all fields are basic types or enums)
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pyrelay.models.status import JobStatus


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Job:
    """
    A unit of work backing a node execution.

    Remote jobs (script nodes) carry an agent id and are completed by the
    transport callback. Local jobs (waits, loops, HTTP calls, synchronous
    nodes) have no agent and are completed by the engine itself.
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    id: str
    """Unique identifier (UUIDv7 string, time ordered)."""

    execution_id: str
    """Execution this job belongs to."""

    node_id: str
    """Workflow node this job backs."""

    scope: str | None = None
    """Loop-body scope key ("<loop-node-id>#<iteration>").

    None for nodes dispatched by the graph walk. Loop bodies run once per
    iteration, so each iteration is a separate logical dispatch that is not
    tracked by node id alone.
    """

    # ==========================================================================
    # Work description
    # ==========================================================================

    agent_id: str | None = None
    """Agent the job was dispatched to, None for local jobs."""

    user_id: str | None = None
    """User who initiated the execution."""

    script: str = ""
    """Resolved script body (or a description for local jobs)."""

    parameters: dict[str, Any] = field(default_factory=dict)
    """Script parameters with placeholders resolved."""

    # ==========================================================================
    # Status tracking
    # ==========================================================================

    status: JobStatus = JobStatus.QUEUED

    output: str | None = None
    """Output reported on completion."""

    error: str | None = None
    """Error message reported on failure."""

    proceed: bool = False
    """Whether the graph walk continues past this node.

    True for completed jobs and for failures tolerated by continueOnError or
    routed to an ``error`` edge. False while active and for fatal failures.
    """

    handles: tuple[str, ...] | None = None
    """Outgoing handles activated when the walk proceeds.

    None activates the default edges (every edge not labeled ``error``).
    """

    created_at: datetime = field(default_factory=_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime = field(default_factory=_now)

    version: int = 0
    """Optimistic concurrency counter maintained by the document store."""

    def __post_init__(self):
        """Validate invariants after creation."""
        if not self.execution_id:
            raise ValueError("Job requires an execution_id")
        if not self.node_id:
            raise ValueError("Job requires a node_id")
        if self.handles is not None:
            self.handles = tuple(self.handles)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def is_remote(self) -> bool:
        return self.agent_id is not None

    def set_status(self, status: JobStatus) -> None:
        """Set the job status, stamping start/completion times."""
        now = _now()
        self.status = status
        if status == JobStatus.RUNNING and self.started_at is None:
            self.started_at = now
        if status.is_terminal:
            self.completed_at = now
        self.updated_at = now

    def complete(
        self, output: str | None = None, handles: tuple[str, ...] | None = None
    ) -> None:
        """Mark completed; the walk proceeds along ``handles``."""
        self.output = output
        self.proceed = True
        self.handles = tuple(handles) if handles is not None else None
        self.set_status(JobStatus.COMPLETED)

    def fail(
        self,
        error: str,
        proceed: bool = False,
        handles: tuple[str, ...] | None = None,
        output: str | None = None,
    ) -> None:
        """Mark failed. ``proceed`` is set when the failure is tolerated."""
        self.error = error
        if output is not None:
            self.output = output
        self.proceed = proceed
        self.handles = tuple(handles) if handles is not None else None
        self.set_status(JobStatus.FAILED)

    def cancel(self) -> None:
        self.proceed = False
        self.set_status(JobStatus.CANCELLED)

    def __repr__(self) -> str:
        """Readable representation for debugging."""
        return (
            f"Job(id={self.id!r}, execution_id={self.execution_id!r}, "
            f"node_id={self.node_id!r}, scope={self.scope!r}, status={self.status}, "
            f"agent_id={self.agent_id!r})"
        )
