"""Foreach node: run the nodes on the ``forEach`` handle once per item."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from pyrelay.executor.nodes.base import NodeExecutionError, NodeExecutor
from pyrelay.executor.nodes.iteration import body_nodes, require_collection, run_iteration
from pyrelay.executor.outcome import Outcome, Proceed
from pyrelay.models import LogLevel, Node, Workflow

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext

FOREACH_HANDLE = "forEach"
COMPLETE_HANDLE = "complete"


class ForeachExecutor(NodeExecutor):
    """
    Iterates a collection variable.

    Node data:
        collectionVariable: Path of a list (or map, iterated as
            ``[key, value]`` pairs)
        itemVariable: Name bound to the current item (default ``item``)
        indexVariable: Optional name bound to the current index
        parallelExecution: Run every iteration concurrently
        continueOnError: Keep iterating after a failed iteration

    Each iteration is a separate dispatch of the body nodes with its own
    scope, so per-iteration bindings never leak between iterations. When
    all iterations are done the ``complete`` handle is taken; a failed
    iteration without continueOnError fails the node instead.
    """

    node_type = "foreachNode"

    async def execute(self, node: Node, workflow: Workflow, context: NodeContext) -> Outcome:
        data = node.data
        path, items = require_collection(context, node)
        item_variable = data.get("itemVariable") or "item"
        index_variable = data.get("indexVariable")
        parallel = bool(data.get("parallelExecution"))
        continue_on_error = node.continue_on_error
        nodes = body_nodes(workflow, node, FOREACH_HANDLE)

        def bindings(index: int, item) -> dict:
            values = {item_variable: item}
            if index_variable:
                values[index_variable] = index
            return values

        mode = "in parallel" if parallel else "sequentially"
        context.log(f"Iterating over {len(items)} items of {path} {mode}")

        async def drive() -> Proceed:
            failures: list[tuple[int, str]] = []

            if parallel:
                errors = await asyncio.gather(
                    *(
                        run_iteration(context, nodes, bindings(i, item), i)
                        for i, item in enumerate(items)
                    )
                )
                failures = [(i, error) for i, error in enumerate(errors) if error]
            else:
                for i, item in enumerate(items):
                    error = await run_iteration(context, nodes, bindings(i, item), i)
                    if error:
                        failures.append((i, error))
                        if not continue_on_error:
                            break

            for i, error in failures:
                context.log(f"Iteration {i} failed: {error}", LogLevel.WARN)

            context.set_result(
                {"iterations": len(items), "failed": [i for i, _ in failures]}
            )
            if failures and not continue_on_error:
                index, error = failures[0]
                raise NodeExecutionError(f"Iteration {index} failed: {error}")

            context.log(f"Completed {len(items)} iterations")
            return Proceed(handles=(COMPLETE_HANDLE,))

        return await context.spawn(drive, description=f"Iterate {path}")
