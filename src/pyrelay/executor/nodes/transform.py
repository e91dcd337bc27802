"""Transform node: compute a value with the expression language."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pyrelay.executor.conditions import make_lookup
from pyrelay.executor.expressions import ExpressionError, evaluate_expression
from pyrelay.executor.nodes.base import NodeConfigurationError, NodeExecutionError, NodeExecutor
from pyrelay.executor.outcome import Outcome, Proceed
from pyrelay.executor.variables import UNDEFINED, stringify
from pyrelay.models import Node, Workflow

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext


def _strip_function_body(source: str) -> str:
    """Accept ``return <expr>;`` as written in the editor's function box."""
    text = source.strip()
    if text.startswith("return "):
        text = text[len("return ") :]
    return text.rstrip(";").strip()


class TransformExecutor(NodeExecutor):
    """
    Evaluates ``expression`` (or ``transformFunction``) with ``input``
    bound to the value of ``inputVariable``, and stores the result in
    ``outputVariable``. Evaluation errors fail the node.
    """

    node_type = "transformNode"

    async def execute(self, node: Node, workflow: Workflow, context: NodeContext) -> Outcome:
        data = node.data
        source = data.get("expression") or data.get("transformFunction")
        if not source or not isinstance(source, str):
            raise NodeConfigurationError(f"Transform node {node.id} requires an expression")

        output_variable = data.get("outputVariable")
        if not output_variable:
            raise NodeConfigurationError(f"Transform node {node.id} requires an outputVariable")

        input_variable = data.get("inputVariable")
        bindings = {}
        if input_variable:
            bindings["input"] = context.variables.get(input_variable)

        scoped = context.variables.scoped(bindings)
        expression = scoped.resolve_placeholders(_strip_function_body(source))
        try:
            result = evaluate_expression(
                expression,
                make_lookup(scoped),
                max_length=context.config.max_expression_length,
                max_depth=context.config.max_expression_depth,
            )
        except ExpressionError as e:
            raise NodeExecutionError(f"Transform failed: {e}") from e

        if result is UNDEFINED:
            result = None

        context.variables.set(output_variable, result)
        context.set_result({"result": result})
        context.log(f"Transform result stored in '{output_variable}': {stringify(result)}")
        return Proceed()
