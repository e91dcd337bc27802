"""String node: simple string operations on variables or literals.

Operations:
    concat     input1 + input2
    substring  input1[startIndex:endIndex] with JavaScript substring()
               clamping (swapped bounds are reordered)
    replace    every occurrence of input2 in input1 by replacementText
               (a variable name or a literal, like the inputs)
    toLower    lower-case input1
    toUpper    upper-case input1
    trim       strip surrounding whitespace from input1
    split      split input1 on the separator input2
    length     length of input1 (string or list)

Inputs name a variable when such a variable exists, otherwise they are
literals (with placeholders resolved).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pyrelay.executor.nodes.base import (
    NodeConfigurationError,
    NodeExecutionError,
    NodeExecutor,
)
from pyrelay.executor.outcome import Outcome, Proceed
from pyrelay.executor.variables import VariableStore, stringify
from pyrelay.models import Node, Workflow

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext

OPERATIONS = ("concat", "substring", "replace", "toLower", "toUpper", "trim", "split", "length")
_NEEDS_INPUT2 = ("concat", "replace", "split")


def _resolve_input(raw: Any, variables: VariableStore) -> Any:
    if isinstance(raw, str):
        if variables.has(raw):
            return variables.get(raw)
        return variables.resolve_placeholders(raw)
    return raw


def _require_string(value: Any, operation: str) -> str:
    if not isinstance(value, str):
        raise NodeExecutionError(
            f"Operation {operation} requires a string input, got {type(value).__name__}"
        )
    return value


def _to_index(raw: Any, default: int, name: str) -> int:
    if raw is None or raw == "":
        return default
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        raise NodeConfigurationError(f"{name} must be a number, got {raw!r}") from None


def js_substring(text: str, start: int, end: int) -> str:
    start = min(max(start, 0), len(text))
    end = min(max(end, 0), len(text))
    if start > end:
        start, end = end, start
    return text[start:end]


class StringExecutor(NodeExecutor):
    node_type = "stringNode"

    async def execute(self, node: Node, workflow: Workflow, context: NodeContext) -> Outcome:
        data = node.data
        operation = data.get("operation")
        if operation not in OPERATIONS:
            raise NodeConfigurationError(f"Unknown string operation: {operation}")

        output_variable = data.get("outputVariable")
        if not output_variable:
            raise NodeConfigurationError(f"String node {node.id} requires an outputVariable")

        raw1 = data.get("input1")
        if raw1 is None or raw1 == "":
            raise NodeConfigurationError(f"String operation {operation} requires input1")
        input1 = _resolve_input(raw1, context.variables)

        input2 = None
        if operation in _NEEDS_INPUT2:
            raw2 = data.get("input2")
            if raw2 is None or (raw2 == "" and operation != "replace"):
                raise NodeConfigurationError(f"String operation {operation} requires input2")
            input2 = _resolve_input(raw2, context.variables)

        result = self._apply(operation, input1, input2, data, context.variables)

        context.variables.set(output_variable, result)
        context.set_result({"operation": operation, "result": result})
        context.log(f"String operation '{operation}' stored in '{output_variable}'")
        return Proceed()

    def _apply(
        self,
        operation: str,
        input1: Any,
        input2: Any,
        data: dict[str, Any],
        variables: VariableStore,
    ) -> Any:
        if operation == "concat":
            return stringify(input1) + stringify(input2)

        if operation == "length":
            if isinstance(input1, (str, list)):
                return len(input1)
            raise NodeExecutionError(
                f"Operation length requires a string or list input, got {type(input1).__name__}"
            )

        text = _require_string(input1, operation)

        if operation == "substring":
            start = _to_index(data.get("startIndex"), 0, "startIndex")
            end = _to_index(data.get("endIndex"), len(text), "endIndex")
            return js_substring(text, start, end)
        if operation == "replace":
            replacement = _resolve_input(data.get("replacementText"), variables)
            return text.replace(
                stringify(input2), "" if replacement is None else stringify(replacement)
            )
        if operation == "toLower":
            return text.lower()
        if operation == "toUpper":
            return text.upper()
        if operation == "trim":
            return text.strip()
        if operation == "split":
            return text.split(stringify(input2)) if input2 != "" else list(text)
        raise NodeConfigurationError(f"Unknown string operation: {operation}")
