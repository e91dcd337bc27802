"""
Deploy Workflow Example

This example runs a small deployment workflow end to end against a
simulated agent.

## Pattern Shown: Branching, Loops and Agent Jobs

This example shows how to:
- Load a workflow from its editor document (camelCase JSON)
- Branch on a condition node
- Fan out over a collection with a foreach node
- Route a failing node to its ``error`` handle

## Run with:
```bash
PYTHONPATH=src python examples/deploy_workflow.py
```
"""

import asyncio

from pyrelay import (
    ExecutionCoordinator,
    InMemoryAgentRegistry,
    InMemoryDocumentStore,
    InMemoryTransport,
    JobReport,
    Workflow,
)

WORKFLOW = {
    "id": "deploy",
    "name": "Deploy web tier",
    "variables": {"workflow": {"release": "2.4.1"}},
    "nodes": [
        {"id": "check", "type": "conditionNode", "data": {"condition": "hosts.0 != null"}},
        {
            "id": "each",
            "type": "foreachNode",
            "data": {"collectionVariable": "hosts", "itemVariable": "host"},
        },
        {
            "id": "deploy",
            "type": "scriptNode",
            "data": {"script": "deploy {{workflow.release}} to {{host}}"},
        },
        {
            "id": "notify",
            "type": "scriptNode",
            "data": {"script": "notify deployed {{workflow.release}}"},
        },
        {
            "id": "report",
            "type": "variableNode",
            "data": {"name": "status", "value": "notification failed"},
        },
        {
            "id": "skip",
            "type": "variableNode",
            "data": {"name": "status", "value": "nothing to deploy"},
        },
    ],
    "edges": [
        {"id": "e1", "source": "check", "target": "each", "sourceHandle": "true"},
        {"id": "e2", "source": "check", "target": "skip", "sourceHandle": "false"},
        {"id": "e3", "source": "each", "target": "deploy", "sourceHandle": "forEach"},
        {"id": "e4", "source": "each", "target": "notify", "sourceHandle": "complete"},
        {"id": "e5", "source": "notify", "target": "report", "sourceHandle": "error"},
    ],
}


def agent(job) -> JobReport:
    """Pretend agent: deployments succeed, notifications fail."""
    print(f"  agent ran: {job.script}")
    if job.script.startswith("notify"):
        return JobReport(success=False, error="mail relay unreachable")
    return JobReport(success=True, output="ok")


async def main():
    store = InMemoryDocumentStore()
    await store.save_workflow(Workflow.from_dict(WORKFLOW))

    agents = InMemoryAgentRegistry()
    agents.register("agent-1", platform="linux")
    transport = InMemoryTransport().with_responder(agent, delay=0.05)
    coordinator = ExecutionCoordinator(store, transport, agents)

    execution = await coordinator.start_execution(
        "deploy", user_id="ops", initial_variables={"hosts": ["web-1", "web-2", "web-3"]}
    )
    execution = await coordinator.wait_for_completion(execution.id, timeout=10)

    print(f"\nExecution {execution.id}: {execution.status}")
    print(f"status variable: {execution.variables['user'].get('status')}")
    for entry in execution.logs:
        print(f"  [{entry.level}] {entry.node_id or '-'}: {entry.message}")

    await coordinator.close()
    await transport.close()


if __name__ == "__main__":
    asyncio.run(main())
