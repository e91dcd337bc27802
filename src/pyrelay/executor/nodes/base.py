"""Node executor interface and errors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

from pyrelay.executor.outcome import Outcome, Proceed
from pyrelay.models import Job, LogLevel, Node, Workflow

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext


class NodeConfigurationError(Exception):
    """Node data is missing or malformed."""

    pass


class NodeExecutionError(Exception):
    """Node ran but could not do its work."""

    pass


class RemoteExecutionError(NodeExecutionError):
    """An agent reported a failed job."""

    pass


class NodeExecutor(ABC):
    """
    Executes one node type.

    ``execute()`` either finishes the node (Proceed) or leaves it pending on
    its job (AwaitJob). Raising any exception fails the node; the
    coordinator applies the failure policy.

    Subclasses set ``node_type`` (the registry key) and may list legacy
    ``aliases``.
    """

    node_type: ClassVar[str] = ""
    aliases: ClassVar[tuple[str, ...]] = ()

    @abstractmethod
    async def execute(self, node: Node, workflow: Workflow, context: NodeContext) -> Outcome:
        pass

    async def on_result(
        self,
        node: Node,
        job: Job,
        success: bool,
        output: str | None,
        error: str | None,
        context: NodeContext,
    ) -> Proceed:
        """Map a remote job result to the node's outcome."""
        if not success:
            raise RemoteExecutionError(error or "Remote execution failed")
        return Proceed(output=output)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.node_type!r})"


class NoopExecutor(NodeExecutor):
    """Fallback for unknown node types: logs and passes through."""

    async def execute(self, node: Node, workflow: Workflow, context: NodeContext) -> Outcome:
        context.log(f"Unhandled node type: {node.type}", LogLevel.WARN)
        return Proceed()
