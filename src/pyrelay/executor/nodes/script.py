"""Script node: run a script on a remote agent."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pyrelay.executor.nodes.base import (
    NodeConfigurationError,
    NodeExecutor,
    RemoteExecutionError,
)
from pyrelay.executor.outcome import Outcome, Proceed
from pyrelay.models import Job, Node, Workflow

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext

logger = logging.getLogger(__name__)


class ScriptExecutor(NodeExecutor):
    """
    Dispatches a script to an agent and finishes on the agent's callback.

    Node data:
        scriptId: Library script to run (takes precedence over ``script``)
        script: Inline script body
        parameters: Map of parameters; string values are placeholder-resolved
        assignedAgent: Agent to run on (default: the execution's agent,
            else any online agent)
        outputVariable: Variable receiving the script output on success
    """

    node_type = "scriptNode"
    aliases = ("script",)

    async def execute(self, node: Node, workflow: Workflow, context: NodeContext) -> Outcome:
        data = node.data

        script_id = data.get("scriptId")
        if script_id:
            script = await context.load_script(script_id)
            if script is None:
                raise NodeConfigurationError(f"Script not found: {script_id}")
            body = script.content
        else:
            body = data.get("script")

        if not isinstance(body, str) or not body.strip():
            raise NodeConfigurationError(f"Script node {node.id} has no script")

        body = context.variables.resolve_placeholders(body)
        raw_parameters = data.get("parameters") or {}
        if not isinstance(raw_parameters, dict):
            raise NodeConfigurationError(f"Script node {node.id} parameters must be a map")
        parameters = {
            name: context.variables.resolve_placeholders(value)
            for name, value in raw_parameters.items()
        }

        agent_id = await self._select_agent(node, context)
        context.log(f"Dispatching script to agent {agent_id}")
        return await context.dispatch_job(agent_id, body, parameters)

    async def _select_agent(self, node: Node, context: NodeContext) -> str:
        requested = node.data.get("assignedAgent") or context.execution.agent_id
        if context.agents is None:
            if not requested:
                raise NodeConfigurationError(
                    f"Script node {node.id} has no agent and no agent registry is configured"
                )
            return requested
        agent = await context.agents.find_available(requested)
        return agent.agent_id

    async def on_result(
        self,
        node: Node,
        job: Job,
        success: bool,
        output: str | None,
        error: str | None,
        context: NodeContext,
    ) -> Proceed:
        if not success:
            context.set_result({"output": output, "error": error, "agentId": job.agent_id})
            raise RemoteExecutionError(error or "Script execution failed")

        context.set_result({"output": output, "agentId": job.agent_id})
        output_variable = node.data.get("outputVariable")
        if output_variable:
            context.variables.set(output_variable, output)
        return Proceed(output=output)
