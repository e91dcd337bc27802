"""Status enumerations for execution tracking.

Defines lifecycle states for workflow executions, the jobs that back
individual nodes, agents, and execution log levels.
"""

from enum import Enum


class ExecutionStatus(Enum):
    """Status of a single workflow execution.

    Lifecycle:
        PENDING → RUNNING → COMPLETED/FAILED/CANCELLED

    Terminal states are sinks: once reached, the execution is read-only.
    """

    PENDING = "pending"
    """Execution document created, no node dispatched yet."""

    RUNNING = "running"
    """Nodes are being dispatched or awaited."""

    COMPLETED = "completed"
    """Every reachable node finished and no job is active."""

    FAILED = "failed"
    """A node failed without continueOnError, or the graph was invalid."""

    CANCELLED = "cancelled"
    """Cancelled by an explicit external request."""

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (no more work will be dispatched)."""
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )

    def __str__(self) -> str:
        return self.value


class JobStatus(Enum):
    """Status of a job backing one node in one execution.

    Lifecycle:
        QUEUED → RUNNING → COMPLETED/FAILED/CANCELLED

    Local jobs (waits, loops, HTTP calls) start directly in RUNNING.
    """

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        """Check if the job is still queued or running."""
        return not self.is_terminal

    def __str__(self) -> str:
        return self.value


class AgentStatus(Enum):
    """Connectivity status reported by (or inferred for) an agent."""

    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class LogLevel(Enum):
    """Severity of an execution log entry."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    DEBUG = "debug"

    def __str__(self) -> str:
        return self.value
