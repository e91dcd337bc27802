"""
Graph scheduling: which nodes of a workflow may run next.

The scheduler is a pure function of the workflow and the per-node marks
derived from job documents. It keeps no state of its own, so the
coordinator can rebuild the walk at any time (after a callback, after a
restart) and get the same answer.

Edge activation:
    A node that proceeded with ``handles=None`` activates every outgoing
    edge not labeled ``error`` or with a loop-body handle. A node that
    proceeded with explicit handles (a condition taking ``true``, a failure
    routed to ``error``) activates only the edges whose source handle is
    listed.

Readiness:
    A node is ready once every incoming source is settled (proceeded or
    skipped) and at least one incoming edge is activated. If every source
    is settled and no edge is activated the node is skipped, which settles
    it for its own successors. Skips therefore propagate down untaken
    branches while join nodes after a condition still run exactly once.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from pyrelay.models import Edge, Job, Node, Workflow

ERROR_HANDLE = "error"

# Loop bodies are run by their loop node, never by the graph walk
BODY_HANDLES = ("forEach", "body")


class GraphError(Exception):
    """Workflow graph is structurally invalid."""

    pass


class MarkState(Enum):
    ACTIVE = "active"
    """A job for the node is queued or running."""

    PROCEEDED = "proceeded"
    """Node finished (or failed tolerably); successors may run."""

    HALTED = "halted"
    """Node failed fatally or was cancelled; successors never run."""

    SKIPPED = "skipped"
    """No activated incoming edge; derived, never stored."""


@dataclass(frozen=True)
class NodeMark:
    state: MarkState
    handles: tuple[str, ...] | None = None

    @property
    def is_settled(self) -> bool:
        return self.state in (MarkState.PROCEEDED, MarkState.SKIPPED)


@dataclass(frozen=True)
class ReadySet:
    """Result of one scheduling pass."""

    ready: tuple[Node, ...]
    skipped: tuple[str, ...]


def find_start_nodes(nodes: Sequence[Node], edges: Iterable[Edge]) -> list[Node]:
    """Nodes that are never the target of an edge, in workflow order."""
    targets = {edge.target for edge in edges}
    return [node for node in nodes if node.id not in targets]


def validate(workflow: Workflow) -> None:
    """
    Check the workflow graph before anything runs.

    Raises:
        GraphError: On duplicate node ids, edges referencing unknown nodes,
            or cycles
    """
    node_ids: set[str] = set()
    for node in workflow.nodes:
        if node.id in node_ids:
            raise GraphError(f"Duplicate node id: {node.id}")
        node_ids.add(node.id)

    for edge in workflow.edges:
        if edge.source not in node_ids:
            raise GraphError(f"Edge {edge.id} references unknown source node {edge.source}")
        if edge.target not in node_ids:
            raise GraphError(f"Edge {edge.id} references unknown target node {edge.target}")

    # Kahn's algorithm; whatever is left over sits on a cycle
    in_degree = {node_id: 0 for node_id in node_ids}
    for edge in workflow.edges:
        in_degree[edge.target] += 1
    queue = [node_id for node_id, degree in in_degree.items() if degree == 0]
    visited = 0
    while queue:
        node_id = queue.pop()
        visited += 1
        for edge in workflow.outgoing_edges(node_id):
            in_degree[edge.target] -= 1
            if in_degree[edge.target] == 0:
                queue.append(edge.target)
    if visited != len(node_ids):
        cyclic = sorted(node_id for node_id, degree in in_degree.items() if degree > 0)
        raise GraphError(f"Cycle detected in workflow involving nodes: {', '.join(cyclic)}")


def edge_activated(edge: Edge, mark: NodeMark | None) -> bool:
    """Whether ``edge`` carries control given its source's mark."""
    if mark is None or mark.state != MarkState.PROCEEDED:
        return False
    if mark.handles is None:
        return edge.source_handle != ERROR_HANDLE and edge.source_handle not in BODY_HANDLES
    return edge.source_handle in mark.handles


def derive_marks(jobs: Iterable[Job]) -> dict[str, NodeMark]:
    """
    Per-node marks from the job documents of the graph walk.

    Only unscoped jobs count: loop-body jobs belong to their loop node.
    Jobs are expected in creation order; the latest job of a node wins.
    """
    marks: dict[str, NodeMark] = {}
    for job in jobs:
        if job.scope is not None:
            continue
        if job.is_active:
            marks[job.node_id] = NodeMark(MarkState.ACTIVE)
        elif job.proceed:
            marks[job.node_id] = NodeMark(MarkState.PROCEEDED, job.handles)
        else:
            marks[job.node_id] = NodeMark(MarkState.HALTED)
    return marks


def find_ready_nodes(
    workflow: Workflow,
    marks: dict[str, NodeMark],
    dispatched: Iterable[str] = (),
) -> ReadySet:
    """
    Nodes that may be dispatched now.

    Args:
        workflow: The workflow being executed
        marks: Marks derived from job documents (not modified)
        dispatched: Node ids already handed out in the current pass

    Returns:
        Ready nodes in workflow order, plus the ids derived as skipped
    """
    marks = dict(marks)
    excluded = set(dispatched)
    skipped: list[str] = []

    # Fixpoint: a skip can settle the sources of further nodes
    changed = True
    while changed:
        changed = False
        for node in workflow.nodes:
            if node.id in marks or node.id in excluded:
                continue
            incoming = workflow.incoming_edges(node.id)
            if not incoming:
                continue
            if not all(
                (mark := marks.get(edge.source)) is not None and mark.is_settled
                for edge in incoming
            ):
                continue
            if not any(edge_activated(edge, marks.get(edge.source)) for edge in incoming):
                marks[node.id] = NodeMark(MarkState.SKIPPED)
                skipped.append(node.id)
                changed = True

    ready = []
    for node in workflow.nodes:
        if node.id in marks or node.id in excluded:
            continue
        incoming = workflow.incoming_edges(node.id)
        if not incoming:
            ready.append(node)
            continue
        if all(
            (mark := marks.get(edge.source)) is not None and mark.is_settled
            for edge in incoming
        ) and any(edge_activated(edge, marks.get(edge.source)) for edge in incoming):
            ready.append(node)

    return ReadySet(ready=tuple(ready), skipped=tuple(skipped))


def has_pending_work(workflow: Workflow, marks: dict[str, NodeMark]) -> bool:
    """True while some node is active or could still become ready."""
    if any(mark.state == MarkState.ACTIVE for mark in marks.values()):
        return True
    return bool(find_ready_nodes(workflow, marks).ready)
