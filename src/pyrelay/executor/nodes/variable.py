"""Variable node: assign a value to a variable."""

from __future__ import annotations

import json
import math
import re
from typing import TYPE_CHECKING, Any

from pyrelay.executor.nodes.base import NodeConfigurationError, NodeExecutor
from pyrelay.executor.outcome import Outcome, Proceed
from pyrelay.models import Node, Workflow

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext

_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


def parse_value(text: str) -> Any:
    """
    Interpret a string the way the variable editor does.

    Order: JSON object/array, then number, then ``true``/``false``,
    otherwise the string itself.
    """
    stripped = text.strip()

    if stripped.startswith(("{", "[")):
        try:
            return json.loads(stripped)
        except ValueError:
            pass

    if _NUMBER.match(stripped):
        number = float(stripped)
        # Numbers are untyped in the editor: "2.0" and "2" are the same value
        if not math.isinf(number) and number.is_integer() and abs(number) < 2**53:
            return int(number)
        return number

    if stripped == "true":
        return True
    if stripped == "false":
        return False
    return text


class VariableExecutor(NodeExecutor):
    """Sets ``name`` (dotted paths allowed) to ``value``."""

    node_type = "variableNode"
    aliases = ("variable",)

    async def execute(self, node: Node, workflow: Workflow, context: NodeContext) -> Outcome:
        name = node.data.get("name")
        if not name or not isinstance(name, str):
            raise NodeConfigurationError(f"Variable node {node.id} requires a name")

        value = node.data.get("value")
        if isinstance(value, str):
            value = parse_value(context.variables.resolve_placeholders(value))
        else:
            value = context.variables.resolve_deep(value)

        context.variables.set(name, value)
        context.set_result({"name": name, "value": value})
        context.log(
            f"Variable '{name}' set to: {json.dumps(value, ensure_ascii=False, default=str)}"
        )
        return Proceed()
