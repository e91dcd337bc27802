"""Registry mapping node type names to their executors."""

from __future__ import annotations

import logging

from pyrelay.executor.nodes.base import NodeExecutor, NoopExecutor

logger = logging.getLogger(__name__)


class ExecutorRegistry:
    """Registry mapping node type names to executors.

    Unknown types resolve to the fallback (a no-op pass-through by
    default), so workflows containing editor-only nodes still run.

    Example:
        ```python
        registry = ExecutorRegistry.default()
        registry.register(MyCustomExecutor())
        executor = registry.get("scriptNode")
        ```
    """

    def __init__(self, fallback: NodeExecutor | None = None):
        self._executors: dict[str, NodeExecutor] = {}
        self._fallback = fallback or NoopExecutor()

    def register(self, executor: NodeExecutor, *aliases: str) -> ExecutorRegistry:
        """Register ``executor`` under its node type, its aliases and ``aliases``.

        Returns:
            self for method chaining
        """
        names = (executor.node_type, *executor.aliases, *aliases)
        if not any(names):
            raise ValueError(f"{executor!r} has no node type to register under")
        for name in names:
            if name:
                self._executors[name] = executor
                logger.debug(f"Registered node executor: {name}")
        return self

    def get(self, node_type: str) -> NodeExecutor:
        return self._executors.get(node_type, self._fallback)

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._executors

    def __len__(self) -> int:
        return len(self._executors)

    def types(self) -> list[str]:
        return sorted(self._executors)

    @classmethod
    def default(cls, http_client_factory=None) -> ExecutorRegistry:
        """Registry with every built-in node executor.

        Args:
            http_client_factory: Forwarded to HttpExecutor and ApiExecutor
                (tests inject a client backed by httpx.MockTransport)
        """
        from pyrelay.executor.nodes.api import ApiExecutor
        from pyrelay.executor.nodes.condition import ConditionExecutor
        from pyrelay.executor.nodes.foreach import ForeachExecutor
        from pyrelay.executor.nodes.http import HttpExecutor
        from pyrelay.executor.nodes.loop import LoopExecutor
        from pyrelay.executor.nodes.script import ScriptExecutor
        from pyrelay.executor.nodes.string import StringExecutor
        from pyrelay.executor.nodes.transform import TransformExecutor
        from pyrelay.executor.nodes.variable import VariableExecutor
        from pyrelay.executor.nodes.wait import WaitExecutor

        registry = cls()
        for executor in (
            ScriptExecutor(),
            ConditionExecutor(),
            WaitExecutor(),
            VariableExecutor(),
            StringExecutor(),
            ForeachExecutor(),
            LoopExecutor(),
            TransformExecutor(),
            HttpExecutor(client_factory=http_client_factory),
            ApiExecutor(client_factory=http_client_factory),
        ):
            registry.register(executor)
        return registry
