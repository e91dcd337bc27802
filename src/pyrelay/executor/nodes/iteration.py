"""Helpers shared by the foreach and loop nodes."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pyrelay.executor.nodes.base import NodeConfigurationError, NodeExecutionError
from pyrelay.models import JobStatus, Node, Workflow

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext


def collection_items(value: Any, path: str) -> list[Any]:
    """Items of a collection variable; maps iterate as ``[key, value]`` pairs."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise NodeExecutionError(f"Collection variable {path} is not a list or map") from None
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, dict):
        return [[key, item] for key, item in value.items()]
    raise NodeExecutionError(f"Collection variable {path} is not a list or map")


def body_nodes(workflow: Workflow, node: Node, handle: str) -> list[Node]:
    """Direct targets of ``node``'s ``handle`` edges, in edge order."""
    nodes = []
    for edge in workflow.outgoing_edges(node.id, handle):
        target = workflow.get_node(edge.target)
        if target is not None and target not in nodes:
            nodes.append(target)
    return nodes


def require_collection(context: NodeContext, node: Node) -> tuple[str, list[Any]]:
    path = node.data.get("collectionVariable")
    if not path:
        raise NodeConfigurationError(f"Node {node.id} requires a collectionVariable")
    if not context.variables.has(path):
        raise NodeExecutionError(f"Collection variable not found: {path}")
    return path, collection_items(context.variables.get(path), path)


async def run_iteration(
    context: NodeContext,
    nodes: list[Node],
    bindings: dict[str, Any],
    iteration: int,
) -> str | None:
    """
    Run the body nodes once with ``bindings`` layered over the variables.

    Returns:
        None on success, else a description of the first failure
    """
    scope = context.child_scope(iteration)
    context.log(f"Starting iteration {iteration}")
    variables = context.variables.scoped(bindings)
    for body in nodes:
        job = await context.run_inline(body, scope, variables)
        if job.status != JobStatus.COMPLETED:
            return f"{body.id}: {job.error or job.status}"
    return None
