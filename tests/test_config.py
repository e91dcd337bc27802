"""Tests for EngineConfig."""

import dataclasses

import pytest

from pyrelay.config import EngineConfig


def test_defaults():
    config = EngineConfig()

    assert config.environment == "development"
    assert config.default_wait_seconds == 5.0
    assert config.max_loop_iterations == 100
    assert config.strict_conditions is False


def test_config_is_immutable():
    config = EngineConfig()

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.environment = "production"


@pytest.mark.parametrize(
    "changes",
    [
        {"default_wait_seconds": 0},
        {"max_loop_iterations": -1},
        {"max_expression_length": 0},
        {"max_expression_depth": 0},
    ],
)
def test_invalid_values_rejected(changes):
    with pytest.raises(ValueError):
        EngineConfig(**changes)


def test_with_overrides():
    config = EngineConfig().with_overrides(environment="staging", http_timeout=2.5)

    assert config.environment == "staging"
    assert config.http_timeout == 2.5
    assert config.max_loop_iterations == 100


def test_from_env(monkeypatch):
    monkeypatch.setenv("PYRELAY_ENVIRONMENT", "production")
    monkeypatch.setenv("PYRELAY_MAX_LOOP_ITERATIONS", "500")
    monkeypatch.setenv("PYRELAY_DEFAULT_WAIT_SECONDS", "0.5")
    monkeypatch.setenv("PYRELAY_STRICT_CONDITIONS", "Yes")

    config = EngineConfig.from_env()

    assert config.environment == "production"
    assert config.max_loop_iterations == 500
    assert config.default_wait_seconds == 0.5
    assert config.strict_conditions is True


def test_from_env_ignores_invalid_values(monkeypatch, caplog):
    monkeypatch.setenv("PYRELAY_MAX_LOOP_ITERATIONS", "many")
    monkeypatch.setenv("PYRELAY_HTTP_TIMEOUT", "")
    monkeypatch.setenv("PYRELAY_STRICT_CONDITIONS", "off")

    config = EngineConfig.from_env()

    assert config.max_loop_iterations == 100
    assert config.http_timeout == 30.0
    assert config.strict_conditions is False
    assert "Ignoring invalid PYRELAY_MAX_LOOP_ITERATIONS='many'" in caplog.text


def test_from_env_custom_prefix(monkeypatch):
    monkeypatch.setenv("RELAY_ENVIRONMENT", "test")

    assert EngineConfig.from_env(prefix="RELAY_").environment == "test"
