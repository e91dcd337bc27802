"""Loop node: count, while and collection loops over the ``body`` handle."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pyrelay.executor.nodes.base import NodeConfigurationError, NodeExecutionError, NodeExecutor
from pyrelay.executor.nodes.iteration import body_nodes, require_collection, run_iteration
from pyrelay.executor.outcome import Outcome, Proceed
from pyrelay.models import LogLevel, Node, Workflow

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext

BODY_HANDLE = "body"
EXIT_HANDLE = "exit"
LOOP_TYPES = ("collection", "count", "while")


def _as_int(raw: Any, default: int, name: str) -> int:
    if raw is None or raw == "":
        return default
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        raise NodeConfigurationError(f"{name} must be a number, got {raw!r}") from None


class LoopExecutor(NodeExecutor):
    """
    Runs the nodes on the ``body`` handle repeatedly, then takes ``exit``.

    Loop types:
        count: ``counterVariable`` runs from ``start`` (default 0) up to,
            not including, ``end`` (default 10)
        while: repeats while ``whileCondition`` holds, re-evaluated before
            every iteration against the current variables
        collection: like foreach, with ``collectionVariable`` and
            ``itemVariable``

    Every loop stops after ``maxIterations``. Iterations run sequentially.
    """

    node_type = "loopNode"

    async def execute(self, node: Node, workflow: Workflow, context: NodeContext) -> Outcome:
        data = node.data
        loop_type = data.get("loopType") or "collection"
        if loop_type not in LOOP_TYPES:
            raise NodeConfigurationError(f"Unknown loop type: {loop_type}")

        max_iterations = _as_int(
            data.get("maxIterations"), context.config.max_loop_iterations, "maxIterations"
        )
        if max_iterations <= 0:
            raise NodeConfigurationError("maxIterations must be positive")

        nodes = body_nodes(workflow, node, BODY_HANDLE)
        counter_variable = data.get("counterVariable")

        if loop_type == "count":
            start = _as_int(data.get("start"), 0, "start")
            end = _as_int(data.get("end"), 10, "end")
            name = counter_variable or "index"
            iterations = ({name: value} for value in range(start, end))
            context.log(f"Counting from {start} to {end}")
        elif loop_type == "collection":
            path, items = require_collection(context, node)
            item_variable = data.get("itemVariable") or "item"
            iterations = ({item_variable: item} for item in items)
            context.log(f"Iterating over {len(items)} items of {path}")
        else:
            condition = data.get("whileCondition")
            if not condition or not isinstance(condition, str):
                raise NodeConfigurationError(f"Loop node {node.id} requires a whileCondition")
            iterations = None

        async def drive() -> Proceed:
            count = 0
            if iterations is None:
                while context.evaluator.evaluate(condition, context.variables):
                    if count >= max_iterations:
                        context.log(
                            f"Loop stopped after maxIterations ({max_iterations})", LogLevel.WARN
                        )
                        break
                    bindings = {counter_variable: count} if counter_variable else {}
                    await self._iterate(context, nodes, bindings, count)
                    count += 1
            else:
                for bindings in iterations:
                    if count >= max_iterations:
                        context.log(
                            f"Loop stopped after maxIterations ({max_iterations})", LogLevel.WARN
                        )
                        break
                    await self._iterate(context, nodes, bindings, count)
                    count += 1

            context.set_result({"iterations": count})
            context.log(f"Loop finished after {count} iterations")
            return Proceed(handles=(EXIT_HANDLE,))

        return await context.spawn(drive, description=f"{loop_type} loop")

    async def _iterate(
        self, context: NodeContext, nodes: list[Node], bindings: dict[str, Any], count: int
    ) -> None:
        error = await run_iteration(context, nodes, bindings, count)
        if error is None:
            return
        if not context.node.continue_on_error:
            raise NodeExecutionError(f"Iteration {count} failed: {error}")
        context.log(f"Iteration {count} failed: {error}", LogLevel.WARN)
