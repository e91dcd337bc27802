"""
Relay: Workflow Execution Engine for Python

Runs workflows (DAGs of typed nodes) to completion: remote scripts on
agents, conditions, waits, variable and string manipulation, expression
transforms, HTTP requests, and loops, with per-execution variables and a
persisted log.

Design Pattern: Façade Pattern
This module re-exports the pieces an embedding application needs,
hiding the layout of the storage, transport and executor packages.

Example:
    ```python
    import asyncio
    from pyrelay import (
        ExecutionCoordinator,
        InMemoryAgentRegistry,
        InMemoryDocumentStore,
        InMemoryTransport,
        JobReport,
        Workflow,
    )

    async def main():
        store = InMemoryDocumentStore()
        await store.save_workflow(Workflow.from_dict({
            "id": "wf-1",
            "nodes": [{"id": "hello", "type": "scriptNode",
                       "data": {"script": "echo hello"}}],
            "edges": [],
        }))

        agents = InMemoryAgentRegistry()
        agents.register("agent-1")
        transport = InMemoryTransport().with_responder(
            lambda job: JobReport(success=True, output="hello")
        )

        coordinator = ExecutionCoordinator(store, transport, agents)
        execution = await coordinator.start_execution("wf-1", user_id="me")
        execution = await coordinator.wait_for_completion(execution.id)
        print(execution.status, execution.results)

    asyncio.run(main())
    ```
"""

# Models
from pyrelay.models import (
    Agent,
    AgentStatus,
    Edge,
    Execution,
    ExecutionFailure,
    ExecutionStatus,
    Job,
    JobStatus,
    LogEntry,
    LogLevel,
    Node,
    Script,
    Workflow,
)

# Configuration
from pyrelay.config import EngineConfig

# Storage (Adapter pattern)
from pyrelay.storage import (
    ConcurrencyError,
    DocumentStore,
    DuplicateJobError,
    StorageError,
)
from pyrelay.storage.memory import InMemoryDocumentStore
from pyrelay.storage.sqlite import SqliteDocumentStore

# Transport
from pyrelay.transport import (
    AgentRegistry,
    AgentUnavailableError,
    InMemoryAgentRegistry,
    InMemoryTransport,
    JobReport,
    JobTransport,
    TransportError,
)

# Execution
from pyrelay.executor import (
    AwaitJob,
    CoordinatorError,
    ExecutionCoordinator,
    ExecutionNotFoundError,
    ExpressionError,
    GraphError,
    JobNotFoundError,
    NodeContext,
    Proceed,
    VariableStore,
    WorkflowNotFoundError,
)
from pyrelay.executor.nodes import (
    ExecutorRegistry,
    NodeConfigurationError,
    NodeExecutionError,
    NodeExecutor,
)

__version__ = "0.1.0"

__all__ = [
    # Models
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
    # Configuration
    "EngineConfig",
    # Storage
    "DocumentStore",
    "InMemoryDocumentStore",
    "SqliteDocumentStore",
    "StorageError",
    "ConcurrencyError",
    "DuplicateJobError",
    # Transport
    "JobTransport",
    "AgentRegistry",
    "InMemoryTransport",
    "InMemoryAgentRegistry",
    "JobReport",
    "TransportError",
    "AgentUnavailableError",
    # Execution
    "ExecutionCoordinator",
    "NodeContext",
    "Proceed",
    "AwaitJob",
    "VariableStore",
    "ExecutorRegistry",
    "NodeExecutor",
    # Errors
    "CoordinatorError",
    "WorkflowNotFoundError",
    "ExecutionNotFoundError",
    "JobNotFoundError",
    "GraphError",
    "ExpressionError",
    "NodeConfigurationError",
    "NodeExecutionError",
]
