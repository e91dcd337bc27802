"""
Pytest configuration and fixtures for pyrelay tests.

Provides reusable fixtures for storage backends, a simulated agent, the
coordinator, and a small builder for test workflows.
"""

from collections.abc import AsyncGenerator
from typing import Any

import pytest

from pyrelay.executor import ExecutionCoordinator
from pyrelay.models import Edge, Job, Node, Workflow
from pyrelay.storage import InMemoryDocumentStore, SqliteDocumentStore
from pyrelay.transport import InMemoryAgentRegistry, InMemoryTransport, JobReport


def pytest_sessionfinish(session, exitstatus):
    """Force cleanup after all tests complete to prevent CI hanging."""
    import os

    # In CI environments only, force exit to prevent hanging
    if os.getenv("CI") or os.getenv("GITHUB_ACTIONS"):
        os._exit(exitstatus)


def simulated_agent(job: Job) -> JobReport:
    """
    Agent stand-in used by the default transport.

    ``echo <text>`` succeeds with <text> as output, ``fail <text>`` fails
    with <text> as error, anything else succeeds with no output.
    """
    command, _, rest = job.script.strip().partition(" ")
    if command == "echo":
        return JobReport(success=True, output=rest)
    if command == "fail":
        return JobReport(success=False, error=rest or "failed")
    return JobReport(success=True, output="")


class WorkflowBuilder:
    """Fluent builder for test workflows.

    Usage:
        workflow = await (
            workflow_builder.node("a", "scriptNode", script="echo hi")
            .node("b", "variableNode", name="x", value="1")
            .edge("a", "b")
            .save()
        )
    """

    def __init__(self, store):
        self._store = store
        self._nodes: list[Node] = []
        self._edges: list[Edge] = []
        self._variables: dict[str, Any] = {}

    def node(self, node_id: str, node_type: str, **data: Any) -> "WorkflowBuilder":
        self._nodes.append(Node(id=node_id, type=node_type, data=data))
        return self

    def edge(self, source: str, target: str, handle: str | None = None) -> "WorkflowBuilder":
        edge_id = f"{source}-{handle or 'out'}-{target}"
        self._edges.append(Edge(id=edge_id, source=source, target=target, source_handle=handle))
        return self

    def variables(self, **values: Any) -> "WorkflowBuilder":
        self._variables.update(values)
        return self

    def build(self, workflow_id: str = "wf-test") -> Workflow:
        return Workflow(
            id=workflow_id,
            name="Test Workflow",
            nodes=tuple(self._nodes),
            edges=tuple(self._edges),
            variables=dict(self._variables),
        )

    async def save(self, workflow_id: str = "wf-test") -> Workflow:
        workflow = self.build(workflow_id)
        await self._store.save_workflow(workflow)
        return workflow


@pytest.fixture
async def store() -> AsyncGenerator[InMemoryDocumentStore, None]:
    """Async in-memory document store with automatic cleanup."""
    storage = InMemoryDocumentStore()
    yield storage
    await storage.reset()


@pytest.fixture
async def sqlite_store() -> AsyncGenerator[SqliteDocumentStore, None]:
    """Async SQLite in-memory document store with automatic cleanup."""
    storage = SqliteDocumentStore(":memory:")
    await storage.connect()
    yield storage
    await storage.close()


@pytest.fixture
def agents() -> InMemoryAgentRegistry:
    """Registry with one online agent, ``agent-1``."""
    registry = InMemoryAgentRegistry()
    registry.register("agent-1", platform="linux")
    return registry


@pytest.fixture
async def transport() -> AsyncGenerator[InMemoryTransport, None]:
    """Transport answered by the simulated agent."""
    link = InMemoryTransport().with_responder(simulated_agent)
    yield link
    await link.close()


@pytest.fixture
async def manual_transport() -> AsyncGenerator[InMemoryTransport, None]:
    """Transport without a responder; tests report results themselves."""
    link = InMemoryTransport()
    yield link
    await link.close()


@pytest.fixture
async def coordinator(store, transport, agents) -> AsyncGenerator[ExecutionCoordinator, None]:
    engine = ExecutionCoordinator(store, transport, agents)
    yield engine
    await engine.close()


@pytest.fixture
async def manual_coordinator(
    store, manual_transport, agents
) -> AsyncGenerator[ExecutionCoordinator, None]:
    engine = ExecutionCoordinator(store, manual_transport, agents)
    yield engine
    await engine.close()


@pytest.fixture
def workflow_builder(store) -> WorkflowBuilder:
    return WorkflowBuilder(store)

