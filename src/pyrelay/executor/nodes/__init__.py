"""Built-in node executors."""

from pyrelay.executor.nodes.base import (
    NodeConfigurationError,
    NodeExecutionError,
    NodeExecutor,
    NoopExecutor,
    RemoteExecutionError,
)
from pyrelay.executor.nodes.api import ApiExecutor
from pyrelay.executor.nodes.condition import ConditionExecutor
from pyrelay.executor.nodes.foreach import ForeachExecutor
from pyrelay.executor.nodes.http import HttpExecutor
from pyrelay.executor.nodes.loop import LoopExecutor
from pyrelay.executor.nodes.registry import ExecutorRegistry
from pyrelay.executor.nodes.script import ScriptExecutor
from pyrelay.executor.nodes.string import StringExecutor
from pyrelay.executor.nodes.transform import TransformExecutor
from pyrelay.executor.nodes.variable import VariableExecutor
from pyrelay.executor.nodes.wait import WaitExecutor

__all__ = [
    "ApiExecutor",
    "ConditionExecutor",
    "ExecutorRegistry",
    "ForeachExecutor",
    "HttpExecutor",
    "LoopExecutor",
    "NodeConfigurationError",
    "NodeExecutionError",
    "NodeExecutor",
    "NoopExecutor",
    "RemoteExecutionError",
    "ScriptExecutor",
    "StringExecutor",
    "TransformExecutor",
    "VariableExecutor",
    "WaitExecutor",
]
