"""
Variable store: the three-tier variable document of an execution.

Tiers:
    system   - executionId, workflowId, startTime, environment. Seeded by
               the coordinator, read-only to node executors.
    workflow - seeded from the workflow's default variables.
    user     - seeded from caller-supplied values; bare names live here.

Paths are dotted: ``"workflow.region"`` addresses a tier explicitly,
``"region"`` means ``"user.region"``. Further segments walk nested maps
and list indices (``"user.servers.0.host"``).

A two-segment path ``"<category>.<name>"`` whose first segment is not a
tier names a custom category, created on first write, unless the user
tier already holds a variable of that name.

The store wraps ``execution.variables`` directly, so writes are visible in
the execution document without copying.
"""

from __future__ import annotations

import copy
import json
import math
import re
from typing import Any

SYSTEM = "system"
WORKFLOW = "workflow"
USER = "user"
CATEGORIES = (SYSTEM, WORKFLOW, USER)

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_$][\w$]*(?:\.[\w$]+)*)\s*\}\}")


class VariableError(Exception):
    """Invalid variable write (read-only tier, non-container parent)."""

    pass


class _Undefined:
    """Marker for "no such variable", distinct from a stored None."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "undefined"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


UNDEFINED = _Undefined()


def stringify(value: Any) -> str:
    """Render a value the way the workflow editor displays it.

    Booleans are ``true``/``false``, None is ``null``, integral floats drop
    the ``.0``, and maps and lists are rendered as compact JSON.
    """
    if isinstance(value, str):
        return value
    if value is UNDEFINED:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


def split_path(path: str) -> list[str]:
    """Split a dotted path into its segments."""
    if not path or not isinstance(path, str):
        raise VariableError(f"Invalid variable path: {path!r}")
    parts = path.strip().split(".")
    if any(not part for part in parts):
        raise VariableError(f"Invalid variable path: {path!r}")
    return parts


def _step(container: Any, segment: str) -> Any:
    if isinstance(container, dict):
        return container.get(segment, UNDEFINED)
    if isinstance(container, (list, tuple)):
        try:
            index = int(segment)
        except ValueError:
            return UNDEFINED
        if -len(container) <= index < len(container):
            return container[index]
        return UNDEFINED
    return UNDEFINED


class VariableStore:
    """Read/write access to an execution's variables.

    Usage:
        variables = VariableStore(execution.variables)
        variables.set("region", "eu-west-1")
        variables.resolve_placeholders("deploy to {{region}}")

    A store created by ``scoped()`` overlays per-iteration loop bindings on
    the user tier. Reads see the bindings first; writes to a bound name stay
    in the overlay, every other write goes to the shared document.
    """

    def __init__(
        self,
        variables: dict[str, dict[str, Any]] | None = None,
        bindings: dict[str, Any] | None = None,
    ):
        self._variables = variables if variables is not None else {}
        for category in CATEGORIES:
            self._variables.setdefault(category, {})
        self._bindings = bindings

    def __repr__(self) -> str:
        counts = ", ".join(f"{c}={len(self._variables[c])}" for c in CATEGORIES)
        return f"VariableStore({counts}, bindings={sorted(self._bindings or ())})"

    @property
    def document(self) -> dict[str, dict[str, Any]]:
        """The wrapped variable document (not a copy)."""
        return self._variables

    @property
    def bindings(self) -> dict[str, Any]:
        return dict(self._bindings or {})

    def scoped(self, bindings: dict[str, Any]) -> VariableStore:
        """Store sharing this document with ``bindings`` layered on top."""
        merged = dict(self._bindings or {})
        merged.update(bindings)
        return VariableStore(self._variables, merged)

    def get(self, path: str, default: Any = None) -> Any:
        """Value at ``path``, or ``default`` when absent."""
        try:
            category, segments = self._locate(path, for_write=False)
        except VariableError:
            return default

        head, rest = segments[0], segments[1:]
        if category == USER and self._bindings and head in self._bindings:
            value = self._bindings[head]
        else:
            value = self._variables.get(category, {}).get(head, UNDEFINED)

        for segment in rest:
            if value is UNDEFINED:
                break
            value = _step(value, segment)

        return default if value is UNDEFINED else value

    def has(self, path: str) -> bool:
        return self.get(path, UNDEFINED) is not UNDEFINED

    def set(self, path: str, value: Any) -> None:
        """
        Assign ``value`` at ``path``.

        Missing tiers and intermediate maps are created.

        Raises:
            VariableError: For writes to the system tier or through a
                non-map intermediate value
        """
        category, segments = self._locate(path, for_write=True)
        if category == SYSTEM:
            raise VariableError(f"System variables are read-only: {path}")
        self._assign(category, segments, value)

    def seed_system(self, values: dict[str, Any]) -> None:
        """Populate the system tier. Only the coordinator calls this."""
        self._variables[SYSTEM].update(values)

    def _locate(self, path: str, for_write: bool) -> tuple[str, list[str]]:
        """Map a path to (category, segments inside that category)."""
        parts = split_path(path)
        if len(parts) == 1:
            return USER, parts

        head = parts[0]
        if head in CATEGORIES:
            return head, parts[1:]
        if self._bindings and head in self._bindings:
            return USER, parts
        if head in self._variables:
            return head, parts[1:]
        if head in self._variables[USER]:
            return USER, parts
        if for_write and len(parts) == 2:
            return head, parts[1:]
        return USER, parts

    def _assign(self, category: str, segments: list[str], value: Any) -> None:
        head, rest = segments[0], segments[1:]
        if category == USER and self._bindings is not None and head in self._bindings:
            target = self._bindings
        else:
            target = self._variables.setdefault(category, {})

        for segment in [head, *rest][:-1]:
            child = target.get(segment)
            if child is None:
                child = {}
                target[segment] = child
            elif not isinstance(child, dict):
                raise VariableError(
                    f"Cannot set {category}.{'.'.join(segments)}: "
                    f"{segment!r} is not a map"
                )
            target = child
        target[segments[-1]] = value

    def resolve_placeholders(self, text: Any) -> Any:
        """Replace every ``{{path}}`` in ``text`` with the variable's value.

        Unresolved placeholders are left verbatim. Non-strings pass through.
        """
        if not isinstance(text, str) or "{{" not in text:
            return text

        def substitute(match: re.Match) -> str:
            value = self.get(match.group(1), UNDEFINED)
            if value is UNDEFINED:
                return match.group(0)
            return stringify(value)

        return _PLACEHOLDER.sub(substitute, text)

    def resolve_deep(self, value: Any) -> Any:
        """resolve_placeholders applied to every string inside maps and lists."""
        if isinstance(value, str):
            return self.resolve_placeholders(value)
        if isinstance(value, dict):
            return {k: self.resolve_deep(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve_deep(v) for v in value]
        return value

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Deep copy of all tiers, with bindings merged into the user tier."""
        snap = copy.deepcopy(self._variables)
        if self._bindings:
            snap[USER].update(copy.deepcopy(self._bindings))
        return snap
