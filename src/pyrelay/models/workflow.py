"""Workflow definition: typed nodes connected by (optionally handled) edges.

A Workflow is immutable for the duration of an execution. Lookups used by
the scheduler on every step (node by id, incoming/outgoing edges) are
indexed once at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Node:
    """One step of a workflow graph.

    Attributes:
        id: Unique identifier within the workflow
        type: Type tag selecting the executor (e.g. "scriptNode")
        data: Node configuration as stored by the editor (camelCase keys)
    """

    id: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def continue_on_error(self) -> bool:
        """Whether a failure of this node lets the graph walk proceed."""
        return bool(self.data.get("continueOnError"))

    @property
    def label(self) -> str:
        return self.data.get("label") or self.id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        return cls(id=str(data["id"]), type=str(data["type"]), data=dict(data.get("data") or {}))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "data": dict(self.data)}


@dataclass(frozen=True)
class Edge:
    """Directed connection between two nodes.

    Attributes:
        id: Edge identifier
        source: Source node id
        target: Target node id
        source_handle: Branch selector on the source ("true", "false",
            "forEach", "complete", "error", ...), None for the default output
        target_handle: Input selector on the target, informational only
    """

    id: str
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        source = str(data["source"])
        target = str(data["target"])
        return cls(
            id=str(data.get("id") or f"{source}->{target}"),
            source=source,
            target=target,
            source_handle=data.get("sourceHandle", data.get("source_handle")) or None,
            target_handle=data.get("targetHandle", data.get("target_handle")) or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "sourceHandle": self.source_handle,
            "targetHandle": self.target_handle,
        }


@dataclass(frozen=True)
class Workflow:
    """A DAG of nodes and edges plus default variables.

    Usage:
        workflow = Workflow.from_dict({
            "id": "wf-1",
            "name": "Deploy",
            "nodes": [{"id": "a", "type": "scriptNode", "data": {"script": "echo hi"}}],
            "edges": [],
        })
    """

    id: str
    name: str = "Unnamed Workflow"
    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()
    variables: dict[str, Any] = field(default_factory=dict)
    description: str = ""

    _nodes_by_id: dict[str, Node] = field(init=False, repr=False, compare=False)
    _incoming: dict[str, tuple[Edge, ...]] = field(init=False, repr=False, compare=False)
    _outgoing: dict[str, tuple[Edge, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "nodes", tuple(self.nodes))
        object.__setattr__(self, "edges", tuple(self.edges))

        # First node wins on duplicate ids; graph validation reports duplicates
        nodes_by_id: dict[str, Node] = {}
        for node in self.nodes:
            nodes_by_id.setdefault(node.id, node)

        incoming: dict[str, list[Edge]] = {}
        outgoing: dict[str, list[Edge]] = {}
        for edge in self.edges:
            incoming.setdefault(edge.target, []).append(edge)
            outgoing.setdefault(edge.source, []).append(edge)

        object.__setattr__(self, "_nodes_by_id", nodes_by_id)
        object.__setattr__(self, "_incoming", {k: tuple(v) for k, v in incoming.items()})
        object.__setattr__(self, "_outgoing", {k: tuple(v) for k, v in outgoing.items()})

    def get_node(self, node_id: str) -> Node | None:
        return self._nodes_by_id.get(node_id)

    def incoming_edges(self, node_id: str) -> tuple[Edge, ...]:
        return self._incoming.get(node_id, ())

    def outgoing_edges(self, node_id: str, handle: str | None = None) -> tuple[Edge, ...]:
        """Outgoing edges of a node, optionally restricted to one source handle."""
        edges = self._outgoing.get(node_id, ())
        if handle is None:
            return edges
        return tuple(e for e in edges if e.source_handle == handle)

    def has_handle(self, node_id: str, handle: str) -> bool:
        return any(e.source_handle == handle for e in self._outgoing.get(node_id, ()))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Workflow:
        """Build a workflow from its document form (editor JSON)."""
        return cls(
            id=str(data.get("id") or data.get("_id") or ""),
            name=data.get("name") or "Unnamed Workflow",
            nodes=tuple(Node.from_dict(n) for n in data.get("nodes") or ()),
            edges=tuple(Edge.from_dict(e) for e in data.get("edges") or ()),
            variables=dict(data.get("variables") or {}),
            description=data.get("description") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "variables": dict(self.variables),
        }


@dataclass
class Script:
    """Library script referenced by a script node's ``scriptId``."""

    id: str
    name: str
    content: str
    description: str = ""
