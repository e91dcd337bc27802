"""Core data models for workflow execution.

Defines the workflow graph, execution and job documents, agents, and
their status enumerations.

Design: Dependency-Free Models
These types have no dependencies on executor or storage modules to
prevent circular imports and enable clean layering.
"""

from pyrelay.models.agent import Agent
from pyrelay.models.execution import Execution, ExecutionFailure, LogEntry
from pyrelay.models.job import Job
from pyrelay.models.status import AgentStatus, ExecutionStatus, JobStatus, LogLevel
from pyrelay.models.workflow import Edge, Node, Script, Workflow

__all__ = [
    "Agent",
    "AgentStatus",
    "Edge",
    "Execution",
    "ExecutionFailure",
    "ExecutionStatus",
    "Job",
    "JobStatus",
    "LogEntry",
    "LogLevel",
    "Node",
    "Script",
    "Workflow",
]
