"""
Recovery Example - SQLite Version

This example interrupts an engine while a workflow is waiting on an agent
and on a wait node, then resumes it with a fresh coordinator.

## Pattern Shown: Durable Executions with SQLite

This variant shows how to:
- Persist executions and jobs in SQLite
- Simulate a restart by dropping the first coordinator
- Resume with recover(): remote jobs keep waiting, local work restarts
- Deliver the late agent result to the new coordinator

## Run with:
```bash
PYTHONPATH=src python examples/recover_after_restart.py
```
"""

import asyncio
import logging

from pyrelay import (
    Edge,
    ExecutionCoordinator,
    InMemoryAgentRegistry,
    InMemoryTransport,
    Node,
    SqliteDocumentStore,
    Workflow,
)

WORKFLOW = Workflow(
    id="nightly-backup",
    name="Nightly backup",
    nodes=(
        Node("dump", "scriptNode", {"script": "pg_dump app > /backups/app.sql"}),
        Node("cooldown", "waitNode", {"waitTime": 0.5}),
        Node("done", "variableNode", {"name": "backup.finished", "value": "true"}),
    ),
    edges=(
        Edge("e1", "dump", "done"),
        Edge("e2", "cooldown", "done"),
    ),
)


async def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    store = SqliteDocumentStore("data/recovery_demo.db")
    await store.connect()
    await store.reset()
    await store.save_workflow(WORKFLOW)

    agents = InMemoryAgentRegistry()
    agents.register("backup-agent")

    # First engine: dispatches the dump to the agent and starts the timer
    first = ExecutionCoordinator(store, InMemoryTransport(), agents)
    execution = await first.start_execution("nightly-backup", user_id="cron")
    print(f"Started {execution.id}: {execution.status}")

    # Crash: the timer task is lost, the agent is still working
    await first.close()
    print("Engine stopped")

    second = ExecutionCoordinator(store, InMemoryTransport(), agents)
    recovered = await second.recover()
    print(f"Recovered {len(recovered)} execution(s)")

    # The agent finishes and reports to whichever engine is running now
    jobs = await store.get_jobs_for_execution(execution.id)
    dump_job = next(job for job in jobs if job.node_id == "dump" and job.is_active)
    await second.on_job_result(dump_job.id, True, output="dumped 42 MB")

    execution = await second.wait_for_completion(execution.id, timeout=10)
    print(f"Execution {execution.id}: {execution.status}")
    print(f"backup.finished = {execution.variables['backup']['finished']}")

    for job in await store.get_jobs_for_execution(execution.id):
        print(f"  job {job.node_id:<9} {str(job.status):<10} {job.error or ''}")

    await second.close()
    await store.close()


if __name__ == "__main__":
    asyncio.run(main())
