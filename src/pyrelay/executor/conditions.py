"""Condition evaluation for condition, loop and foreach nodes."""

import logging
from typing import Any

from pyrelay.config import EngineConfig
from pyrelay.executor.expressions import ExpressionError, evaluate_expression, truthy
from pyrelay.executor.variables import UNDEFINED, VariableStore

logger = logging.getLogger(__name__)

# Expressions may address variables as "variables.<path>"
_VARIABLES_PREFIX = "variables."


def make_lookup(variables: VariableStore):
    """Identifier resolver backed by a variable store."""

    def lookup(path: str) -> Any:
        if path.startswith(_VARIABLES_PREFIX):
            path = path[len(_VARIABLES_PREFIX) :]
        return variables.get(path, UNDEFINED)

    return lookup


class ConditionEvaluator:
    """
    Evaluates condition strings to booleans.

    Steps:
    1. Empty conditions are true
    2. ``{{path}}`` placeholders are substituted
    3. The result is evaluated in the restricted expression language and
       coerced with JavaScript truthiness

    Evaluation errors yield False and a warning, unless the config asks for
    strict conditions, in which case ExpressionError propagates.
    """

    def __init__(self, config: EngineConfig | None = None):
        self._config = config or EngineConfig()

    def evaluate(self, condition: Any, variables: VariableStore) -> bool:
        if condition is None:
            return True
        if not isinstance(condition, str):
            return truthy(condition)
        if not condition.strip():
            return True

        prepared = variables.resolve_placeholders(condition)
        try:
            value = evaluate_expression(
                prepared,
                make_lookup(variables),
                max_length=self._config.max_expression_length,
                max_depth=self._config.max_expression_depth,
            )
        except (ExpressionError, ArithmeticError, TypeError, ValueError, RecursionError) as e:
            if self._config.strict_conditions:
                if isinstance(e, ExpressionError):
                    raise
                raise ExpressionError(f"Error evaluating condition {condition!r}: {e}") from e
            logger.warning(f"Error evaluating condition {condition!r}: {e}")
            return False
        return truthy(value)
