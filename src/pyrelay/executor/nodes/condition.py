"""Condition node: branch on the ``true`` or ``false`` handle."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pyrelay.executor.nodes.base import NodeExecutor
from pyrelay.executor.outcome import Outcome, Proceed
from pyrelay.executor.variables import stringify
from pyrelay.models import Node, Workflow

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext

TRUE_HANDLE = "true"
FALSE_HANDLE = "false"


class ConditionExecutor(NodeExecutor):
    node_type = "conditionNode"
    aliases = ("condition",)

    async def execute(self, node: Node, workflow: Workflow, context: NodeContext) -> Outcome:
        condition = node.data.get("condition")
        result = context.evaluator.evaluate(condition, context.variables)

        context.set_result({"condition": condition, "result": result})
        context.log(f"Condition evaluated to: {stringify(result)}")
        return Proceed(handles=(TRUE_HANDLE,) if result else (FALSE_HANDLE,))
