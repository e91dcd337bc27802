"""Tests for the HTTP node, using httpx.MockTransport instead of a network."""

import base64
import json

import httpx
import pytest

from pyrelay.executor import ExecutionCoordinator
from pyrelay.executor.nodes import ExecutorRegistry
from pyrelay.models import ExecutionStatus


def coordinator_for(store, transport, agents, handler):
    """Coordinator whose HTTP node talks to ``handler``, plus the recorded requests."""
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    def client_factory(timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(record), timeout=timeout)

    coordinator = ExecutionCoordinator(
        store, transport, agents, registry=ExecutorRegistry.default(client_factory)
    )
    return coordinator, requests


async def run_to_end(coordinator, **kwargs):
    execution = await coordinator.start_execution("wf-test", user_id="user-1", **kwargs)
    return await coordinator.wait_for_completion(execution.id, timeout=5)


@pytest.mark.asyncio
async def test_get_stores_response(store, transport, agents, workflow_builder):
    coordinator, requests = coordinator_for(
        store, transport, agents, lambda request: httpx.Response(200, json={"ok": True})
    )
    await (
        workflow_builder.node(
            "h",
            "httpNode",
            url="https://api.example.com/items/{{id}}",
            headers={"X-Request-Id": "{{id}}"},
            responseVariable="response",
        ).save()
    )

    execution = await run_to_end(coordinator, initial_variables={"id": 42})

    assert execution.status == ExecutionStatus.COMPLETED
    request = requests[0]
    assert request.method == "GET"
    assert request.url.path == "/items/42"
    assert request.headers["X-Request-Id"] == "42"

    result = execution.results["h"]
    assert result["status"] == 200
    assert result["body"] == {"ok": True}
    assert execution.variables["user"]["response"]["body"]["ok"] is True
    assert "HTTP GET https://api.example.com/items/42 responded with status 200" in [
        e.message for e in execution.logs
    ]


@pytest.mark.asyncio
async def test_post_sends_resolved_json_body(store, transport, agents, workflow_builder):
    coordinator, requests = coordinator_for(
        store, transport, agents, lambda request: httpx.Response(201, text="created")
    )
    await (
        workflow_builder.node(
            "h",
            "httpNode",
            url="https://api.example.com/users",
            method="post",
            body={"name": "{{name}}", "tags": ["{{name}}", "new"]},
        ).save()
    )

    execution = await run_to_end(coordinator, initial_variables={"name": "ada"})

    assert execution.status == ExecutionStatus.COMPLETED
    request = requests[0]
    assert request.method == "POST"
    assert json.loads(request.content) == {"name": "ada", "tags": ["ada", "new"]}
    assert execution.results["h"]["body"] == "created"


@pytest.mark.asyncio
async def test_error_status_routes_to_error_handle(store, transport, agents, workflow_builder):
    coordinator, _ = coordinator_for(
        store, transport, agents, lambda request: httpx.Response(503, json={"error": "down"})
    )
    await (
        workflow_builder.node("h", "httpNode", url="https://api.example.com/health")
        .node("fallback", "variableNode", name="degraded", value="true")
        .node("next", "variableNode", name="healthy", value="true")
        .edge("h", "fallback", "error")
        .edge("h", "next")
        .save()
    )

    execution = await run_to_end(coordinator)

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.results["h"]["status"] == 503
    assert execution.variables["user"]["degraded"] is True
    assert "healthy" not in execution.variables["user"]


@pytest.mark.asyncio
async def test_connection_error_fails_execution(store, transport, agents, workflow_builder):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    coordinator, _ = coordinator_for(store, transport, agents, refuse)
    await workflow_builder.node("h", "httpNode", url="https://api.example.com/").save()

    execution = await run_to_end(coordinator)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.message.startswith("HTTP GET https://api.example.com/ failed")
    assert execution.error.node_id == "h"


@pytest.mark.asyncio
async def test_missing_url_fails_node(coordinator, workflow_builder):
    await workflow_builder.node("h", "httpNode", method="GET").save()

    execution = await run_to_end(coordinator)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.message == "HTTP node h has no url"


@pytest.mark.asyncio
async def test_unsupported_method_fails_node(coordinator, workflow_builder):
    await workflow_builder.node("h", "httpNode", url="https://x.test/", method="TRACE").save()

    execution = await run_to_end(coordinator)

    assert execution.error.message == "Unsupported HTTP method: TRACE"


@pytest.mark.asyncio
async def test_failed_call_leaves_response_variable_unset(
    store, transport, agents, workflow_builder
):
    coordinator, _ = coordinator_for(
        store, transport, agents, lambda request: httpx.Response(500, text="boom")
    )
    await (
        workflow_builder.node(
            "h",
            "httpNode",
            url="https://api.example.com/jobs",
            responseVariable="resp",
            continueOnError=True,
        )
        .node("after", "variableNode", name="after", value="1")
        .edge("h", "after")
        .save()
    )

    execution = await run_to_end(coordinator)

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.results["h"]["status"] == 500
    assert execution.variables["user"] == {"after": 1}


# =============================================================================
# API node
# =============================================================================


@pytest.mark.asyncio
async def test_api_node_bearer_auth_and_json_body(store, transport, agents, workflow_builder):
    coordinator, requests = coordinator_for(
        store, transport, agents, lambda request: httpx.Response(201, json={"id": 7})
    )
    await (
        workflow_builder.node(
            "api",
            "apiNode",
            endpoint="https://api.example.com/tickets",
            method="POST",
            bodyType="json",
            body={"title": "{{title}}"},
            authentication={"type": "bearer", "token": "{{token}}"},
            responseVariable="ticket",
        ).save()
    )

    execution = await run_to_end(
        coordinator, initial_variables={"title": "disk full", "token": "s3cret"}
    )

    assert execution.status == ExecutionStatus.COMPLETED
    request = requests[0]
    assert request.headers["Authorization"] == "Bearer s3cret"
    assert json.loads(request.content) == {"title": "disk full"}
    assert execution.variables["user"]["ticket"]["body"] == {"id": 7}
    assert "API POST https://api.example.com/tickets responded with status 201" in [
        e.message for e in execution.logs
    ]


@pytest.mark.asyncio
async def test_api_node_basic_auth_and_form_body(store, transport, agents, workflow_builder):
    coordinator, requests = coordinator_for(
        store, transport, agents, lambda request: httpx.Response(204)
    )
    await (
        workflow_builder.node(
            "api",
            "apiNode",
            endpoint="https://api.example.com/login",
            method="POST",
            bodyType="form",
            bodyVariable="credentials",
            authentication={"type": "basic", "username": "ops", "password": "pw"},
        ).save()
    )

    execution = await run_to_end(
        coordinator, initial_variables={"credentials": {"user": "ops", "remember": True}}
    )

    assert execution.status == ExecutionStatus.COMPLETED
    request = requests[0]
    assert request.headers["Authorization"] == "Basic " + base64.b64encode(b"ops:pw").decode()
    assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert request.content == b"user=ops&remember=true"


@pytest.mark.asyncio
async def test_api_node_key_in_query(store, transport, agents, workflow_builder):
    coordinator, requests = coordinator_for(
        store, transport, agents, lambda request: httpx.Response(200, text="ok")
    )
    await (
        workflow_builder.node(
            "api",
            "apiNode",
            endpoint="https://api.example.com/status",
            authentication={
                "type": "apiKey",
                "name": "api_key",
                "value": "k-1",
                "location": "query",
            },
        ).save()
    )

    execution = await run_to_end(coordinator)

    assert execution.status == ExecutionStatus.COMPLETED
    assert requests[0].url.params["api_key"] == "k-1"


@pytest.mark.asyncio
async def test_api_node_success_codes(store, transport, agents, workflow_builder):
    coordinator, _ = coordinator_for(
        store, transport, agents, lambda request: httpx.Response(200, json={})
    )
    await (
        workflow_builder.node(
            "api",
            "apiNode",
            endpoint="https://api.example.com/accepted-only",
            successStatusCodes="202",
        ).save()
    )

    execution = await run_to_end(coordinator)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.message == (
        "API GET https://api.example.com/accepted-only returned status 200"
    )


@pytest.mark.asyncio
async def test_api_node_retries_transport_errors(store, transport, agents, workflow_builder):
    attempts = []

    def flaky(request):
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, json={"ok": True})

    coordinator, _ = coordinator_for(store, transport, agents, flaky)
    await (
        workflow_builder.node(
            "api", "apiNode", endpoint="https://api.example.com/", retryCount=2
        ).save()
    )

    execution = await run_to_end(coordinator)

    assert execution.status == ExecutionStatus.COMPLETED
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_api_node_requires_endpoint(coordinator, workflow_builder):
    await workflow_builder.node("api", "apiNode", url="https://api.example.com/").save()

    execution = await run_to_end(coordinator)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error.message == "API node api has no endpoint"
