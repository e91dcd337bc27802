"""Node and execution completion policy.

Handles the three ways a node can end:
- Success: the walk proceeds along the node's chosen handles
- Routed or tolerated failure: the node has an ``error`` edge (the walk
  follows it) or ``continueOnError`` (the walk follows the default edges)
- Fatal failure: the execution fails with the first such error

Design: Information Hiding
The policy is isolated here so the coordinator loop stays simple and the
rules can evolve independently.
"""

import logging
from dataclasses import dataclass

from pyrelay.executor.graph import ERROR_HANDLE
from pyrelay.models import (
    Execution,
    ExecutionFailure,
    ExecutionStatus,
    Job,
    LogLevel,
    Node,
    Workflow,
)

logger = logging.getLogger(__name__)

__all__ = [
    "FailureDecision",
    "decide_failure",
    "settle_failure",
    "fail_execution",
    "complete_execution",
    "cancel_execution",
]


@dataclass(frozen=True)
class FailureDecision:
    """How a node failure affects the walk."""

    proceed: bool
    handles: tuple[str, ...] | None
    fatal: bool


def decide_failure(node: Node, workflow: Workflow) -> FailureDecision:
    if workflow.has_handle(node.id, ERROR_HANDLE):
        return FailureDecision(proceed=True, handles=(ERROR_HANDLE,), fatal=False)
    if node.continue_on_error:
        return FailureDecision(proceed=True, handles=None, fatal=False)
    return FailureDecision(proceed=False, handles=None, fatal=True)


def settle_failure(execution: Execution, workflow: Workflow, node: Node, job: Job, error: str) -> bool:
    """
    Mark ``job`` failed and apply the failure policy to the execution.

    Loop-body jobs and jobs of finished executions are only marked failed;
    the loop driver (or nobody) decides what happens next.

    Returns:
        True if the failure was fatal to the execution
    """
    if job.scope is not None or execution.is_terminal:
        job.fail(error)
        return False

    decision = decide_failure(node, workflow)
    job.fail(error, proceed=decision.proceed, handles=decision.handles)

    if decision.fatal:
        fail_execution(execution, error, node.id)
        return True

    if decision.handles == (ERROR_HANDLE,):
        execution.add_log(node.id, "Routing failure to error handle", LogLevel.WARN)
    else:
        execution.add_log(node.id, "Continuing after error (continueOnError)", LogLevel.WARN)
    return False


def fail_execution(execution: Execution, message: str, node_id: str | None = None) -> bool:
    """Fail the execution. Only the first fatal failure is recorded."""
    if execution.is_terminal:
        return False
    execution.error = ExecutionFailure(message=message, node_id=node_id)
    execution.add_log(node_id, f"Execution failed: {message}", LogLevel.ERROR)
    execution.finish(ExecutionStatus.FAILED)
    logger.error(f"Execution {execution.id} failed at node {node_id}: {message}")
    return True


def complete_execution(execution: Execution) -> bool:
    if execution.is_terminal:
        return False
    execution.add_log(None, "Execution completed")
    execution.finish(ExecutionStatus.COMPLETED)
    logger.info(f"Execution {execution.id} completed in {execution.duration:.3f}s")
    return True


def cancel_execution(execution: Execution) -> bool:
    if execution.is_terminal:
        return False
    execution.add_log(None, "Execution cancelled", LogLevel.WARN)
    execution.finish(ExecutionStatus.CANCELLED)
    logger.info(f"Execution {execution.id} cancelled")
    return True
