"""Tests for the local node executors: variable, string, transform, wait."""

import pytest

from pyrelay.config import EngineConfig
from pyrelay.executor import ExecutionCoordinator
from pyrelay.executor.nodes import ExecutorRegistry, NoopExecutor, StringExecutor
from pyrelay.executor.nodes.string import js_substring
from pyrelay.executor.nodes.variable import parse_value
from pyrelay.executor.nodes.wait import parse_wait_time
from pyrelay.models import ExecutionStatus, JobStatus


async def run_single(coordinator, workflow_builder, node_type, initial_variables=None, **data):
    await workflow_builder.node("n", node_type, **data).save()
    execution = await coordinator.start_execution(
        "wf-test", user_id="user-1", initial_variables=initial_variables
    )
    return await coordinator.wait_for_completion(execution.id, timeout=5)


# =============================================================================
# Registry
# =============================================================================


def test_default_registry_has_builtin_types():
    registry = ExecutorRegistry.default()

    for node_type in (
        "scriptNode",
        "conditionNode",
        "waitNode",
        "variableNode",
        "stringNode",
        "foreachNode",
        "loopNode",
        "transformNode",
        "httpNode",
        "apiNode",
    ):
        assert node_type in registry

    # Legacy aliases
    assert registry.get("script") is registry.get("scriptNode")
    assert registry.get("condition") is registry.get("conditionNode")
    assert isinstance(registry.get("stickyNote"), NoopExecutor)


def test_register_extra_alias():
    registry = ExecutorRegistry().register(StringExecutor(), "text")

    assert registry.types() == ["stringNode", "text"]
    assert len(registry) == 2


# =============================================================================
# Variable node
# =============================================================================


@pytest.mark.parametrize(
    "text,expected",
    [
        ('{"a": 1}', {"a": 1}),
        ("[1, 2]", [1, 2]),
        ("42", 42),
        ("2.0", 2),
        ("2.5", 2.5),
        ("-3", -3),
        ("true", True),
        ("false", False),
        ("hello", "hello"),
        ("[1, 2", "[1, 2"),
        ("", ""),
    ],
)
def test_parse_value(text, expected):
    assert parse_value(text) == expected


@pytest.mark.asyncio
async def test_variable_node_creates_category(coordinator, workflow_builder):
    execution = await run_single(
        coordinator, workflow_builder, "variableNode", name="config.region", value="eu-west-1"
    )

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.variables["config"] == {"region": "eu-west-1"}
    assert "config" not in execution.variables["user"]
    assert "Variable 'config.region' set to: \"eu-west-1\"" in [e.message for e in execution.logs]


@pytest.mark.asyncio
async def test_variable_node_resolves_structured_values(coordinator, workflow_builder):
    execution = await run_single(
        coordinator,
        workflow_builder,
        "variableNode",
        initial_variables={"env": "prod"},
        name="target",
        value={"env": "{{env}}", "replicas": 3},
    )

    assert execution.variables["user"]["target"] == {"env": "prod", "replicas": 3}


@pytest.mark.asyncio
async def test_variable_node_cannot_write_system_tier(coordinator, workflow_builder):
    execution = await run_single(
        coordinator, workflow_builder, "variableNode", name="system.executionId", value="x"
    )

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.message == "System variables are read-only: system.executionId"
    assert execution.variables["system"]["executionId"] == execution.id


@pytest.mark.asyncio
async def test_variable_node_requires_name(coordinator, workflow_builder):
    execution = await run_single(coordinator, workflow_builder, "variableNode", value="x")

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.message == "Variable node n requires a name"


# =============================================================================
# String node
# =============================================================================


@pytest.mark.parametrize(
    "data,expected",
    [
        ({"operation": "concat", "input1": "greeting", "input2": " world"}, "hello world"),
        ({"operation": "substring", "input1": "greeting", "startIndex": 1, "endIndex": 3}, "el"),
        ({"operation": "substring", "input1": "greeting", "startIndex": 3, "endIndex": 1}, "el"),
        ({"operation": "substring", "input1": "greeting", "startIndex": -2}, "hello"),
        (
            {"operation": "replace", "input1": "a-b-c", "input2": "-", "replacementText": "+"},
            "a+b+c",
        ),
        ({"operation": "replace", "input1": "a-b-c", "input2": "-"}, "abc"),
        (
            {
                "operation": "replace",
                "input1": "a-b-c",
                "input2": "-",
                "replacementText": "user.sep",
            },
            "a/b/c",
        ),
        (
            {
                "operation": "replace",
                "input1": "a-b",
                "input2": "-",
                "replacementText": "{{sep}}{{sep}}",
            },
            "a//b",
        ),
        ({"operation": "toUpper", "input1": "greeting"}, "HELLO"),
        ({"operation": "toLower", "input1": "ABC"}, "abc"),
        ({"operation": "trim", "input1": "padded"}, "x y"),
        ({"operation": "split", "input1": "a,b,c", "input2": ","}, ["a", "b", "c"]),
        ({"operation": "length", "input1": "greeting"}, 5),
        ({"operation": "length", "input1": "names"}, 2),
        ({"operation": "concat", "input1": "Hi {{greeting}}", "input2": "!"}, "Hi hello!"),
    ],
)
@pytest.mark.asyncio
async def test_string_operations(coordinator, workflow_builder, data, expected):
    execution = await run_single(
        coordinator,
        workflow_builder,
        "stringNode",
        initial_variables={
            "greeting": "hello",
            "padded": "  x y  ",
            "names": ["a", "b"],
            "sep": "/",
        },
        outputVariable="result",
        **data,
    )

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.variables["user"]["result"] == expected
    assert execution.results["n"] == {"operation": data["operation"], "result": expected}


@pytest.mark.parametrize(
    "data,message",
    [
        ({"operation": "reverse", "input1": "x"}, "Unknown string operation: reverse"),
        ({"operation": "concat", "input1": "x"}, "String operation concat requires input2"),
        ({"operation": "split", "input1": "x", "input2": ""}, "String operation split requires input2"),
        ({"operation": "toUpper"}, "String operation toUpper requires input1"),
        (
            {"operation": "length", "input1": "count"},
            "Operation length requires a string or list input, got int",
        ),
        (
            {"operation": "toUpper", "input1": "count"},
            "Operation toUpper requires a string input, got int",
        ),
    ],
)
@pytest.mark.asyncio
async def test_string_errors_fail_node(coordinator, workflow_builder, data, message):
    execution = await run_single(
        coordinator,
        workflow_builder,
        "stringNode",
        initial_variables={"count": 7},
        outputVariable="result",
        **data,
    )

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.message == message


def test_js_substring_clamps_bounds():
    assert js_substring("hello", 0, 100) == "hello"
    assert js_substring("hello", -5, 2) == "he"
    assert js_substring("hello", 4, 1) == "ell"
    assert js_substring("", 0, 3) == ""


# =============================================================================
# Transform node
# =============================================================================


@pytest.mark.asyncio
async def test_transform_binds_input(coordinator, workflow_builder):
    execution = await run_single(
        coordinator,
        workflow_builder,
        "transformNode",
        initial_variables={"price": 10},
        inputVariable="price",
        expression="input * 2 + 1",
        outputVariable="total",
    )

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.variables["user"]["total"] == 21
    assert execution.results["n"] == {"result": 21}


@pytest.mark.asyncio
async def test_transform_function_body(coordinator, workflow_builder):
    execution = await run_single(
        coordinator,
        workflow_builder,
        "transformNode",
        initial_variables={"name": "relay"},
        transformFunction='return "hello " + name;',
        outputVariable="greeting",
    )

    assert execution.variables["user"]["greeting"] == "hello relay"


@pytest.mark.asyncio
async def test_transform_syntax_error_fails_node(coordinator, workflow_builder):
    execution = await run_single(
        coordinator,
        workflow_builder,
        "transformNode",
        expression="1 +",
        outputVariable="x",
    )

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.message == "Transform failed: Unexpected end of expression"


@pytest.mark.asyncio
async def test_transform_undefined_result_is_null(coordinator, workflow_builder):
    execution = await run_single(
        coordinator,
        workflow_builder,
        "transformNode",
        expression="missing",
        outputVariable="x",
    )

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.variables["user"]["x"] is None


# =============================================================================
# Condition node
# =============================================================================


@pytest.mark.asyncio
async def test_condition_error_evaluates_false(coordinator, workflow_builder):
    await (
        workflow_builder.node("c", "conditionNode", condition="count >")
        .node("yes", "variableNode", name="branch", value="true-branch")
        .node("no", "variableNode", name="branch", value="false-branch")
        .edge("c", "yes", "true")
        .edge("c", "no", "false")
        .save()
    )
    execution = await coordinator.start_execution("wf-test", user_id="user-1")
    execution = await coordinator.wait_for_completion(execution.id, timeout=5)

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.variables["user"]["branch"] == "false-branch"


@pytest.mark.asyncio
async def test_strict_conditions_fail_node(coordinator, workflow_builder):
    coordinator.with_config(EngineConfig(strict_conditions=True))

    execution = await run_single(coordinator, workflow_builder, "conditionNode", condition="1 +")

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.message == "Unexpected end of expression"


@pytest.mark.asyncio
async def test_condition_with_placeholder(coordinator, workflow_builder):
    execution = await run_single(
        coordinator,
        workflow_builder,
        "conditionNode",
        initial_variables={"status": "ok"},
        condition='"{{status}}" == "ok"',
    )

    assert execution.results["n"]["result"] is True


@pytest.mark.parametrize("initial,branch", [({"count": 15}, "high"), ({}, "low")])
@pytest.mark.asyncio
async def test_condition_on_user_count(coordinator, workflow_builder, initial, branch):
    await (
        workflow_builder.node("c", "conditionNode", condition="{{user.count}} > 10")
        .node("yes", "variableNode", name="branch", value="high")
        .node("no", "variableNode", name="branch", value="low")
        .edge("c", "yes", "true")
        .edge("c", "no", "false")
        .save()
    )
    execution = await coordinator.start_execution(
        "wf-test", user_id="user-1", initial_variables=initial
    )
    execution = await coordinator.wait_for_completion(execution.id, timeout=5)

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.variables["user"]["branch"] == branch


# =============================================================================
# Wait node
# =============================================================================


@pytest.mark.parametrize(
    "raw,expected",
    [
        (2, 2.0),
        ("0.5", 0.5),
        ("3", 3.0),
        (0, 5.0),
        (-1, 5.0),
        ("soon", 5.0),
        (None, 5.0),
        (True, 5.0),
        ("nan", 5.0),
        ("inf", 5.0),
    ],
)
def test_parse_wait_time(raw, expected):
    assert parse_wait_time(raw, 5.0) == expected


@pytest.mark.asyncio
async def test_wait_node_finishes_in_background(coordinator, workflow_builder, store):
    execution = await run_single(coordinator, workflow_builder, "waitNode", waitTime=0.01)

    assert execution.status == ExecutionStatus.COMPLETED
    logs = [e.message for e in execution.logs]
    assert "Waiting for 0.01 seconds" in logs
    assert "Waited for 0.01 seconds" in logs

    jobs = await store.get_jobs_for_execution(execution.id)
    assert jobs[0].status == JobStatus.COMPLETED
    assert jobs[0].script == "Wait 0.01 seconds"
    assert jobs[0].agent_id is None


@pytest.mark.asyncio
async def test_wait_does_not_block_other_branches(coordinator, workflow_builder):
    await (
        workflow_builder.node("w", "waitNode", waitTime=0.05)
        .node("v", "variableNode", name="fast", value="true")
        .save()
    )

    execution = await coordinator.start_execution("wf-test", user_id="user-1")

    # The variable branch finished while the wait is still pending
    assert execution.status == ExecutionStatus.RUNNING
    assert execution.variables["user"]["fast"] is True

    execution = await coordinator.wait_for_completion(execution.id, timeout=5)
    assert execution.status == ExecutionStatus.COMPLETED


@pytest.mark.asyncio
async def test_wait_uses_configured_default(store, transport, agents, workflow_builder):
    coordinator = ExecutionCoordinator(
        store, transport, agents, config=EngineConfig(default_wait_seconds=0.01)
    )
    execution = await run_single(coordinator, workflow_builder, "waitNode", waitTime="later")

    assert execution.status == ExecutionStatus.COMPLETED
    assert "Waiting for 0.01 seconds" in [e.message for e in execution.logs]
