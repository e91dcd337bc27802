"""Wait node: pause one path of the workflow without blocking the others."""

from __future__ import annotations

import asyncio
import math
from typing import TYPE_CHECKING, Any

from pyrelay.executor.nodes.base import NodeExecutor
from pyrelay.executor.outcome import Outcome, Proceed
from pyrelay.executor.variables import stringify
from pyrelay.models import Node, Workflow

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext


def parse_wait_time(raw: Any, default: float) -> float:
    """Seconds to wait; non-positive or unparsable values give ``default``."""
    if isinstance(raw, bool):
        return default
    try:
        seconds = float(raw)
    except (TypeError, ValueError):
        return default
    if math.isnan(seconds) or math.isinf(seconds) or seconds <= 0:
        return default
    return seconds


class WaitExecutor(NodeExecutor):
    node_type = "waitNode"
    aliases = ("wait",)

    async def execute(self, node: Node, workflow: Workflow, context: NodeContext) -> Outcome:
        raw = context.variables.resolve_placeholders(node.data.get("waitTime"))
        seconds = parse_wait_time(raw, context.config.default_wait_seconds)
        shown = stringify(seconds)

        context.log(f"Waiting for {shown} seconds")

        async def sleep() -> Proceed:
            await asyncio.sleep(seconds)
            message = f"Waited for {shown} seconds"
            context.log(message)
            return Proceed(output=message)

        return await context.spawn(sleep, description=f"Wait {shown} seconds")
