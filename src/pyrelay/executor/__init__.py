"""
Executor module - Runtime engine for workflow executions.

This module contains the execution components:
- coordinator: Execution lifecycle (ExecutionCoordinator)
- graph: Ready-node scheduling over the workflow DAG
- completion: Failure policy and terminal transitions
- variables: Three-tier variable store and placeholder resolution
- expressions: Sandboxed condition/transform expression language
- nodes: One executor per node type
"""

from pyrelay.executor.completion import (
    FailureDecision,
    cancel_execution,
    complete_execution,
    decide_failure,
    fail_execution,
    settle_failure,
)
from pyrelay.executor.conditions import ConditionEvaluator, make_lookup
from pyrelay.executor.context import NodeContext
from pyrelay.executor.coordinator import (
    CoordinatorError,
    ExecutionCoordinator,
    ExecutionNotFoundError,
    JobNotFoundError,
    WorkflowNotFoundError,
)
from pyrelay.executor.expressions import ExpressionError, evaluate_expression, parse
from pyrelay.executor.graph import (
    GraphError,
    MarkState,
    NodeMark,
    ReadySet,
    derive_marks,
    find_ready_nodes,
    find_start_nodes,
    validate,
)
from pyrelay.executor.outcome import AwaitJob, Outcome, Proceed
from pyrelay.executor.variables import UNDEFINED, VariableError, VariableStore, stringify

__all__ = [
    # Coordinator
    "ExecutionCoordinator",
    "CoordinatorError",
    "WorkflowNotFoundError",
    "ExecutionNotFoundError",
    "JobNotFoundError",
    "NodeContext",
    # Outcomes
    "Proceed",
    "AwaitJob",
    "Outcome",
    # Graph
    "GraphError",
    "MarkState",
    "NodeMark",
    "ReadySet",
    "derive_marks",
    "find_ready_nodes",
    "find_start_nodes",
    "validate",
    # Completion
    "FailureDecision",
    "decide_failure",
    "settle_failure",
    "fail_execution",
    "complete_execution",
    "cancel_execution",
    # Variables and expressions
    "VariableStore",
    "VariableError",
    "UNDEFINED",
    "stringify",
    "ConditionEvaluator",
    "make_lookup",
    "ExpressionError",
    "evaluate_expression",
    "parse",
]
