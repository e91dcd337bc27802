"""Engine configuration.

EngineConfig is an immutable value object passed to the coordinator and
from there to every node executor. Deployments usually build it from
PYRELAY_* environment variables:

    $ export PYRELAY_ENVIRONMENT=production
    $ export PYRELAY_STRICT_CONDITIONS=1
    config = EngineConfig.from_env()
"""

import logging
import os
from dataclasses import dataclass, replace

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineConfig:
    """Tunables of the execution engine.

    Attributes:
        environment: Value of the ``system.environment`` variable
        default_wait_seconds: Wait node duration when ``waitTime`` is
            missing, non-positive or unparsable
        max_loop_iterations: Default ``maxIterations`` of loop nodes
        max_expression_length: Longest condition/transform expression accepted
        max_expression_depth: Deepest expression nesting accepted
        http_timeout: Timeout in seconds for HTTP nodes
        strict_conditions: Surface condition evaluation errors as node
            failures instead of evaluating to false
    """

    environment: str = "development"
    default_wait_seconds: float = 5.0
    max_loop_iterations: int = 100
    max_expression_length: int = 2048
    max_expression_depth: int = 64
    http_timeout: float = 30.0
    strict_conditions: bool = False

    def __post_init__(self):
        if self.default_wait_seconds <= 0:
            raise ValueError("default_wait_seconds must be positive")
        if self.max_loop_iterations <= 0:
            raise ValueError("max_loop_iterations must be positive")
        if self.max_expression_length <= 0 or self.max_expression_depth <= 0:
            raise ValueError("expression limits must be positive")

    def with_overrides(self, **changes) -> "EngineConfig":
        """Copy with some fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls, prefix: str = "PYRELAY_") -> "EngineConfig":
        """
        Build a configuration from environment variables.

        Unset variables keep their defaults. Unparsable values are logged
        and ignored.

        Example:
            # $ export PYRELAY_MAX_LOOP_ITERATIONS=500
            config = EngineConfig.from_env()
        """
        defaults = cls()
        values = {}

        environment = os.getenv(f"{prefix}ENVIRONMENT")
        if environment:
            values["environment"] = environment

        for name, parse in (
            ("default_wait_seconds", float),
            ("max_loop_iterations", int),
            ("max_expression_length", int),
            ("max_expression_depth", int),
            ("http_timeout", float),
        ):
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw is None or raw == "":
                continue
            try:
                values[name] = parse(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid {prefix}{name.upper()}={raw!r}")

        strict = os.getenv(f"{prefix}STRICT_CONDITIONS")
        if strict is not None:
            values["strict_conditions"] = strict.strip().lower() in _TRUE_VALUES

        return replace(defaults, **values)
