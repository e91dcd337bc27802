"""API node: an HTTP call configured the way the workflow editor's API node is.

On top of the HTTP node it adds:
    endpoint: Request URL (placeholders resolved)
    bodyType: ``none``, ``json``, ``form`` or ``text``
    bodyVariable: Variable sent as the body instead of ``body``
    authentication: ``{"type": "basic" | "bearer" | "apiKey", ...}``
    timeout: Seconds (default: EngineConfig.http_timeout)
    retryCount: Extra attempts after a transport error (0-5)
    followRedirects: Default true
    successStatusCodes: Comma separated list (default ``200,201,202,204``)
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

import httpx

from pyrelay.executor.nodes.base import NodeConfigurationError
from pyrelay.executor.nodes.http import HttpExecutor
from pyrelay.executor.variables import UNDEFINED, VariableStore, stringify
from pyrelay.models import Node

if TYPE_CHECKING:
    from pyrelay.executor.context import NodeContext


BODY_TYPES = ("none", "json", "form", "text")
AUTH_TYPES = ("none", "basic", "bearer", "apiKey")
DEFAULT_SUCCESS_CODES = "200,201,202,204"
MAX_RETRIES = 5


def parse_status_codes(raw: Any) -> frozenset[int]:
    """``"200, 201"`` -> {200, 201}. Lists of ints are accepted as well."""
    if raw in (None, ""):
        raw = DEFAULT_SUCCESS_CODES
    items = raw.split(",") if isinstance(raw, str) else raw
    try:
        codes = frozenset(int(str(item).strip()) for item in items if str(item).strip())
    except (TypeError, ValueError) as e:
        raise NodeConfigurationError(f"Invalid successStatusCodes: {raw!r}") from e
    if not codes:
        raise NodeConfigurationError(f"Invalid successStatusCodes: {raw!r}")
    return codes


class ApiExecutor(HttpExecutor):
    node_type = "apiNode"
    label = "API"
    url_field = "endpoint"
    methods = ("GET", "POST", "PUT", "DELETE", "PATCH")

    def build_body(
        self, node: Node, variables: VariableStore, headers: dict[str, str]
    ) -> dict[str, Any]:
        data = node.data
        body_type = data.get("bodyType") or "none"
        if body_type not in BODY_TYPES:
            raise NodeConfigurationError(f"Unsupported body type: {body_type}")
        if body_type == "none":
            return {}

        body_variable = data.get("bodyVariable")
        if body_variable:
            body = variables.get(body_variable, UNDEFINED)
            if body is UNDEFINED:
                raise NodeConfigurationError(f"Body variable not found: {body_variable}")
        else:
            body = variables.resolve_deep(data.get("body"))
        if body is None:
            return {}

        if body_type == "json":
            if isinstance(body, str):
                headers.setdefault("Content-Type", "application/json")
                return {"content": body.encode()}
            return {"json": body}

        if body_type == "form":
            if isinstance(body, dict):
                return {"data": {str(k): stringify(v) for k, v in body.items()}}
            headers.setdefault("Content-Type", "application/x-www-form-urlencoded")
            return {"content": stringify(body).encode()}

        return {"content": stringify(body).encode()}

    def build_options(
        self, node: Node, variables: VariableStore, headers: dict[str, str]
    ) -> dict[str, Any]:
        # Fail on a malformed list before any request is sent
        parse_status_codes(node.data.get("successStatusCodes"))
        options: dict[str, Any] = {
            "follow_redirects": node.data.get("followRedirects") is not False,
        }

        auth = variables.resolve_deep(node.data.get("authentication") or {})
        if not isinstance(auth, dict):
            raise NodeConfigurationError(f"API node {node.id} authentication must be a map")
        auth_type = auth.get("type") or "none"

        if auth_type == "basic":
            options["auth"] = httpx.BasicAuth(
                stringify(auth.get("username") or ""), stringify(auth.get("password") or "")
            )
        elif auth_type == "bearer":
            token = auth.get("token")
            if not token:
                raise NodeConfigurationError(f"API node {node.id} bearer auth requires a token")
            headers["Authorization"] = f"Bearer {stringify(token)}"
        elif auth_type == "apiKey":
            name = auth.get("name")
            if not name:
                raise NodeConfigurationError(f"API node {node.id} API key auth requires a name")
            value = stringify(auth.get("value") or "")
            if (auth.get("location") or "header") == "query":
                options["params"] = {str(name): value}
            else:
                headers[str(name)] = value
        elif auth_type not in AUTH_TYPES:
            raise NodeConfigurationError(f"Unsupported authentication type: {auth_type}")

        return options

    def timeout(self, node: Node, context: NodeContext) -> float:
        raw = node.data.get("timeout")
        if raw in (None, ""):
            return context.config.http_timeout
        try:
            seconds = float(raw)
        except (TypeError, ValueError) as e:
            raise NodeConfigurationError(f"Invalid timeout: {raw!r}") from e
        if seconds <= 0 or not math.isfinite(seconds):
            raise NodeConfigurationError(f"Invalid timeout: {raw!r}")
        return seconds

    def retries(self, node: Node) -> int:
        raw = node.data.get("retryCount") or 0
        try:
            count = int(raw)
        except (TypeError, ValueError) as e:
            raise NodeConfigurationError(f"Invalid retryCount: {raw!r}") from e
        return max(0, min(count, MAX_RETRIES))

    def is_success(self, node: Node, response: httpx.Response) -> bool:
        return response.status_code in parse_status_codes(node.data.get("successStatusCodes"))
