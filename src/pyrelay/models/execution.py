"""Execution document: one run of a workflow.

The coordinator owns the Execution for the run's duration and saves it
after every logical step. Once the status is terminal the document is
read-only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pyrelay.models.status import ExecutionStatus, LogLevel


def _empty_variables() -> dict[str, dict[str, Any]]:
    return {"system": {}, "workflow": {}, "user": {}}


@dataclass
class LogEntry:
    """One chronological entry in an execution's log."""

    node_id: str | None
    message: str
    level: LogLevel = LogLevel.INFO
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "type": self.level.value,
        }


@dataclass(frozen=True)
class ExecutionFailure:
    """First fatal failure of an execution.

    Attributes:
        message: Error message reported by the failing node
        node_id: Failing node, None for graph-level failures
    """

    message: str
    node_id: str | None = None


@dataclass
class Execution:
    """Runtime instance of a workflow.

    Design: Value Object
        Snapshot of one run: status, chronological logs, the three-tier
        variable document, per-node results, and the first fatal error.

    The ``version`` counter implements optimistic concurrency in the
    document store: every successful save increments it.
    """

    id: str
    workflow_id: str
    initiated_by: str
    agent_id: str | None = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    duration: float | None = None
    logs: list[LogEntry] = field(default_factory=list)
    variables: dict[str, dict[str, Any]] = field(default_factory=_empty_variables)
    results: dict[str, Any] = field(default_factory=dict)
    error: ExecutionFailure | None = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def add_log(
        self, node_id: str | None, message: str, level: LogLevel = LogLevel.INFO
    ) -> LogEntry:
        """Append a log entry. Entries are strictly chronological."""
        entry = LogEntry(node_id=node_id, message=message, level=level)
        if self.logs and entry.timestamp < self.logs[-1].timestamp:
            entry.timestamp = self.logs[-1].timestamp
        self.logs.append(entry)
        return entry

    def finish(self, status: ExecutionStatus) -> None:
        """Move to a terminal status and stamp completion time and duration."""
        if not status.is_terminal:
            raise ValueError(f"finish() requires a terminal status, got {status}")
        self.status = status
        self.completed_at = datetime.now(UTC)
        self.duration = (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view, shaped like the execution document."""
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "agentId": self.agent_id,
            "initiatedBy": self.initiated_by,
            "status": self.status.value,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "duration": self.duration,
            "logs": [entry.to_dict() for entry in self.logs],
            "variables": self.variables,
            "results": self.results,
            "error": (
                {"message": self.error.message, "nodeId": self.error.node_id}
                if self.error
                else None
            ),
        }

    def __repr__(self) -> str:
        return (
            f"Execution(id={self.id!r}, workflow_id={self.workflow_id!r}, "
            f"status={self.status}, logs={len(self.logs)})"
        )
