"""Tests for the in-process transport and agent registry."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from pyrelay.models import AgentStatus, Job
from pyrelay.transport import (
    AgentUnavailableError,
    InMemoryAgentRegistry,
    InMemoryTransport,
    JobReport,
    TransportError,
)


class RecordingHandler:
    def __init__(self):
        self.calls = []

    async def __call__(self, job_id, success, output=None, error=None):
        self.calls.append((job_id, success, output, error))


def make_job(job_id="job-1"):
    return Job(id=job_id, execution_id="exec-1", node_id="a", agent_id="agent-1", script="uptime")


# =============================================================================
# Transport
# =============================================================================


@pytest.mark.asyncio
async def test_dispatch_requires_handler():
    transport = InMemoryTransport()

    with pytest.raises(TransportError, match="No result handler bound"):
        await transport.dispatch(make_job())


@pytest.mark.asyncio
async def test_manual_report_reaches_handler():
    handler = RecordingHandler()
    transport = InMemoryTransport()
    transport.bind(handler)

    await transport.dispatch(make_job())
    assert [job.id for job in transport.pending_jobs] == ["job-1"]

    assert await transport.report("job-1", True, output="up 3 days") is True
    assert handler.calls == [("job-1", True, "up 3 days", None)]
    assert transport.pending_jobs == []


@pytest.mark.asyncio
async def test_duplicate_report_is_dropped():
    handler = RecordingHandler()
    transport = InMemoryTransport()
    transport.bind(handler)
    await transport.dispatch(make_job())

    await transport.report("job-1", True)

    assert await transport.report("job-1", False, error="late") is False
    assert len(handler.calls) == 1


@pytest.mark.asyncio
async def test_unknown_report_raises():
    transport = InMemoryTransport()
    transport.bind(RecordingHandler())

    with pytest.raises(TransportError, match="Unknown job: ghost"):
        await transport.report("ghost", True)


@pytest.mark.asyncio
async def test_dispatch_twice_raises():
    transport = InMemoryTransport()
    transport.bind(RecordingHandler())
    await transport.dispatch(make_job())

    with pytest.raises(TransportError, match="already dispatched"):
        await transport.dispatch(make_job())


@pytest.mark.asyncio
async def test_responder_reports_after_dispatch():
    handler = RecordingHandler()
    transport = InMemoryTransport().with_responder(
        lambda job: JobReport(success=True, output=job.script.upper())
    )
    transport.bind(handler)

    await transport.dispatch(make_job())
    # Never reported from inside dispatch()
    assert handler.calls == []

    await transport.drain()
    assert handler.calls == [("job-1", True, "UPTIME", None)]


@pytest.mark.asyncio
async def test_async_responder_and_errors():
    handler = RecordingHandler()

    async def responder(job):
        await asyncio.sleep(0)
        raise RuntimeError("agent crashed")

    transport = InMemoryTransport().with_responder(responder)
    transport.bind(handler)

    await transport.dispatch(make_job())
    await transport.drain()

    assert handler.calls == [("job-1", False, None, "agent crashed")]


@pytest.mark.asyncio
async def test_job_timeout():
    handler = RecordingHandler()
    transport = InMemoryTransport().with_job_timeout(0.01)
    transport.bind(handler)

    await transport.dispatch(make_job())
    await transport.drain()

    assert handler.calls == [("job-1", False, None, "Job timed out after 0.01 seconds")]


def test_job_timeout_must_be_positive():
    with pytest.raises(ValueError):
        InMemoryTransport().with_job_timeout(0)


@pytest.mark.asyncio
async def test_cancel_suppresses_response():
    handler = RecordingHandler()
    transport = InMemoryTransport().with_responder(lambda job: JobReport(success=True), delay=0.05)
    transport.bind(handler)
    job = make_job()

    await transport.dispatch(job)
    await transport.cancel(job)
    await transport.drain()

    assert transport.cancelled == ["job-1"]
    assert handler.calls == []
    assert await transport.report("job-1", True) is False


# =============================================================================
# Agent registry
# =============================================================================


@pytest.mark.asyncio
async def test_find_available_without_agents():
    registry = InMemoryAgentRegistry()

    with pytest.raises(AgentUnavailableError, match="No agents available"):
        await registry.find_available()


@pytest.mark.asyncio
async def test_find_available_prefers_most_recent():
    registry = InMemoryAgentRegistry()
    old = registry.register("agent-old")
    old.last_seen = datetime.now(UTC) - timedelta(minutes=5)
    registry.register("agent-new")

    assert (await registry.find_available()).agent_id == "agent-new"

    registry.heartbeat("agent-old")
    assert (await registry.find_available()).agent_id == "agent-old"


@pytest.mark.asyncio
async def test_specific_agent_must_be_online():
    registry = InMemoryAgentRegistry()
    registry.register("agent-1", platform="linux")

    assert (await registry.find_available("agent-1")).platform == "linux"

    registry.set_status("agent-1", AgentStatus.OFFLINE)
    with pytest.raises(AgentUnavailableError, match="Specified agent agent-1 is not available"):
        await registry.find_available("agent-1")
    with pytest.raises(AgentUnavailableError):
        await registry.find_available()

    # A heartbeat brings the agent back
    registry.heartbeat("agent-1")
    assert (await registry.find_available()).agent_id == "agent-1"


@pytest.mark.asyncio
async def test_resolve_and_unregister():
    registry = InMemoryAgentRegistry()
    registry.register("agent-1")

    assert (await registry.resolve("agent-1")).is_online
    registry.unregister("agent-1")
    assert await registry.resolve("agent-1") is None


def test_unknown_agent_updates_raise():
    registry = InMemoryAgentRegistry()

    with pytest.raises(AgentUnavailableError, match="Unknown agent: ghost"):
        registry.heartbeat("ghost")
    with pytest.raises(AgentUnavailableError):
        registry.set_status("ghost", AgentStatus.ERROR)
