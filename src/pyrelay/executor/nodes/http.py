"""HTTP node: call an HTTP endpoint from the engine.

The request runs in a background task, so a slow endpoint only delays its
own path through the workflow. The response is stored as

    {"status": 200, "headers": {...}, "body": <parsed JSON or text>}

in the node's result and, when the call succeeds, in ``responseVariable``.
Non-2xx statuses and transport errors fail the node (routed to an ``error``
edge when one exists).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx

from pyrelay.executor.nodes.base import NodeConfigurationError, NodeExecutionError, NodeExecutor
from pyrelay.executor.outcome import Outcome, Proceed
from pyrelay.executor.variables import VariableStore, stringify
from pyrelay.models import Node, Workflow

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext


METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")
_BODYLESS = ("GET", "HEAD", "OPTIONS")

ClientFactory = Callable[[float], httpx.AsyncClient]


def _default_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True)


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpExecutor(NodeExecutor):
    node_type = "httpNode"

    # Subclasses for other request-node flavours override these
    label = "HTTP"
    url_field = "url"
    methods = METHODS

    def __init__(self, client_factory: ClientFactory | None = None):
        self._client_factory = client_factory or _default_client

    async def execute(self, node: Node, workflow: Workflow, context: NodeContext) -> Outcome:
        data = node.data
        variables = context.variables
        label = self.label

        url = variables.resolve_placeholders(data.get(self.url_field))
        if not url or not isinstance(url, str):
            raise NodeConfigurationError(f"{label} node {node.id} has no {self.url_field}")

        method = str(data.get("method") or "GET").upper()
        if method not in self.methods:
            raise NodeConfigurationError(f"Unsupported HTTP method: {method}")

        raw_headers = data.get("headers") or {}
        if not isinstance(raw_headers, dict):
            raise NodeConfigurationError(f"{label} node {node.id} headers must be a map")
        headers = {str(k): stringify(v) for k, v in variables.resolve_deep(raw_headers).items()}

        request: dict[str, Any] = {"headers": headers}
        if method not in _BODYLESS:
            request.update(self.build_body(node, variables, headers))
        request.update(self.build_options(node, variables, headers))

        response_variable = data.get("responseVariable")
        timeout = self.timeout(node, context)
        attempts = 1 + self.retries(node)

        context.log(f"{label} {method} {url}")

        async def call() -> Proceed:
            for attempt in range(1, attempts + 1):
                try:
                    async with self._client_factory(timeout) as client:
                        response = await client.request(method, url, **request)
                    break
                except httpx.HTTPError as e:
                    if attempt == attempts:
                        raise NodeExecutionError(f"{label} {method} {url} failed: {e}") from e
                    context.log(f"{label} {method} {url} failed (attempt {attempt}): {e}")

            result = {
                "status": response.status_code,
                "headers": dict(response.headers),
                "body": _decode_body(response),
            }
            context.set_result(result)

            if not self.is_success(node, response):
                raise NodeExecutionError(
                    f"{label} {method} {url} returned status {response.status_code}"
                )

            if response_variable:
                variables.set(response_variable, result)
            context.log(f"{label} {method} {url} responded with status {response.status_code}")
            return Proceed(output=str(response.status_code))

        return await context.spawn(call, description=f"{method} {url}")

    def build_body(
        self, node: Node, variables: VariableStore, headers: dict[str, str]
    ) -> dict[str, Any]:
        """httpx keyword arguments carrying the request body."""
        body = node.data.get("body")
        if body in (None, ""):
            return {}
        if isinstance(body, (dict, list)):
            return {"json": variables.resolve_deep(body)}
        return {"content": stringify(variables.resolve_placeholders(body)).encode()}

    def build_options(
        self, node: Node, variables: VariableStore, headers: dict[str, str]
    ) -> dict[str, Any]:
        """Extra httpx keyword arguments (auth, query params, redirects)."""
        return {}

    def timeout(self, node: Node, context: NodeContext) -> float:
        return context.config.http_timeout

    def retries(self, node: Node) -> int:
        return 0

    def is_success(self, node: Node, response: httpx.Response) -> bool:
        return response.is_success
