"""
Tests for the document store backends.

Every test runs against InMemoryDocumentStore and SqliteDocumentStore, and
against RedisDocumentStore when PYRELAY_TEST_REDIS_URL points at a server.
The coordinator relies on identical version and job-identity semantics.
"""

import os
import pickle

import pytest

from pyrelay.models import Execution, ExecutionStatus, Job, JobStatus, Node, Script, Workflow
from pyrelay.storage import (
    ConcurrencyError,
    DuplicateJobError,
    InMemoryDocumentStore,
    SqliteDocumentStore,
    StorageError,
)


@pytest.fixture(params=["memory", "sqlite", "redis"])
async def document_store(request):
    if request.param == "memory":
        store = InMemoryDocumentStore()
    elif request.param == "sqlite":
        store = SqliteDocumentStore(":memory:")
    else:
        redis_url = os.getenv("PYRELAY_TEST_REDIS_URL")
        if not redis_url:
            pytest.skip("PYRELAY_TEST_REDIS_URL not set")
        from pyrelay.storage.redis import RedisDocumentStore

        store = RedisDocumentStore(redis_url)

    await store.connect()
    if request.param == "redis":
        await store.reset()
    yield store
    if request.param == "redis":
        await store.reset()
    await store.close()


def make_execution(execution_id="exec-1", status=ExecutionStatus.PENDING):
    return Execution(id=execution_id, workflow_id="wf-1", initiated_by="user-1", status=status)


def make_job(job_id, node_id="a", scope=None, execution_id="exec-1"):
    return Job(id=job_id, execution_id=execution_id, node_id=node_id, scope=scope)


# =============================================================================
# Workflows and scripts
# =============================================================================


@pytest.mark.asyncio
async def test_workflow_roundtrip(document_store):
    workflow = Workflow(
        id="wf-1",
        name="Deploy",
        nodes=(Node("a", "scriptNode", {"script": "echo hi"}),),
        variables={"region": "eu"},
    )

    await document_store.save_workflow(workflow)
    loaded = await document_store.get_workflow("wf-1")

    assert loaded == workflow
    assert loaded.get_node("a").data == {"script": "echo hi"}
    assert await document_store.get_workflow("missing") is None


@pytest.mark.asyncio
async def test_script_roundtrip(document_store):
    await document_store.save_script(Script(id="s-1", name="Backup", content="tar czf"))

    script = await document_store.get_script("s-1")

    assert script.content == "tar czf"
    assert await document_store.get_script("missing") is None


# =============================================================================
# Executions
# =============================================================================


@pytest.mark.asyncio
async def test_create_execution_sets_version(document_store):
    execution = await document_store.create_execution(make_execution())

    assert execution.version == 1
    with pytest.raises(StorageError, match="already exists"):
        await document_store.create_execution(make_execution())


@pytest.mark.asyncio
async def test_save_execution_increments_version(document_store):
    execution = await document_store.create_execution(make_execution())
    execution.status = ExecutionStatus.RUNNING
    execution.add_log(None, "started")

    await document_store.save_execution(execution)
    loaded = await document_store.get_execution("exec-1")

    assert execution.version == 2
    assert loaded.version == 2
    assert loaded.status == ExecutionStatus.RUNNING
    assert [e.message for e in loaded.logs] == ["started"]


@pytest.mark.asyncio
async def test_stale_execution_save_conflicts(document_store):
    await document_store.create_execution(make_execution())
    first = await document_store.get_execution("exec-1")
    second = await document_store.get_execution("exec-1")

    await document_store.save_execution(first)

    with pytest.raises(ConcurrencyError):
        await document_store.save_execution(second)
    # A failed save leaves the caller's version untouched
    assert second.version == 1


@pytest.mark.asyncio
async def test_save_unknown_execution_fails(document_store):
    with pytest.raises(StorageError):
        await document_store.save_execution(make_execution("ghost"))


@pytest.mark.asyncio
async def test_incomplete_executions(document_store):
    await document_store.create_execution(make_execution("pending"))
    await document_store.create_execution(make_execution("running", ExecutionStatus.RUNNING))
    await document_store.create_execution(make_execution("done", ExecutionStatus.COMPLETED))

    incomplete = await document_store.get_incomplete_executions()

    assert sorted(e.id for e in incomplete) == ["pending", "running"]


# =============================================================================
# Jobs
# =============================================================================


@pytest.mark.asyncio
async def test_one_active_job_per_node_and_scope(document_store):
    first = await document_store.create_job(make_job("j1"))
    assert first.version == 1

    with pytest.raises(DuplicateJobError):
        await document_store.create_job(make_job("j2"))

    # Another scope or another node is a different key
    await document_store.create_job(make_job("j3", scope="loop#0"))
    await document_store.create_job(make_job("j4", node_id="b"))

    # Once the first job is terminal the key is free again
    first.complete("done")
    await document_store.save_job(first)
    await document_store.create_job(make_job("j5"))

    assert await document_store.count_active_jobs("exec-1") == 3


@pytest.mark.asyncio
async def test_jobs_in_creation_order(document_store):
    for index, node_id in enumerate(["c", "a", "b"]):
        await document_store.create_job(make_job(f"j{index}", node_id=node_id))
    await document_store.create_job(make_job("other", execution_id="exec-2"))

    jobs = await document_store.get_jobs_for_execution("exec-1")

    assert [job.node_id for job in jobs] == ["c", "a", "b"]
    assert await document_store.get_jobs_for_execution("exec-3") == []


@pytest.mark.asyncio
async def test_find_active_job(document_store):
    await document_store.create_job(make_job("j1", scope="each#1"))

    found = await document_store.find_active_job("exec-1", "a", "each#1")

    assert found.id == "j1"
    assert await document_store.find_active_job("exec-1", "a") is None
    assert await document_store.find_active_job("exec-1", "a", "each#2") is None


@pytest.mark.asyncio
async def test_save_job_persists_outcome(document_store):
    job = await document_store.create_job(make_job("j1"))
    job.fail("boom", proceed=True, handles=("error",))

    await document_store.save_job(job)
    loaded = await document_store.get_job("j1")

    assert loaded.status == JobStatus.FAILED
    assert loaded.error == "boom"
    assert loaded.proceed is True
    assert loaded.handles == ("error",)
    assert loaded.version == 2


@pytest.mark.asyncio
async def test_stale_job_save_conflicts(document_store):
    await document_store.create_job(make_job("j1"))
    first = await document_store.get_job("j1")
    second = await document_store.get_job("j1")

    first.set_status(JobStatus.RUNNING)
    await document_store.save_job(first)

    second.cancel()
    with pytest.raises(ConcurrencyError):
        await document_store.save_job(second)
    assert (await document_store.get_job("j1")).status == JobStatus.RUNNING


@pytest.mark.asyncio
async def test_loaded_documents_are_copies(document_store):
    await document_store.create_job(make_job("j1"))

    loaded = await document_store.get_job("j1")
    loaded.output = "changed locally"

    assert (await document_store.get_job("j1")).output is None


# =============================================================================
# SQLite durability
# =============================================================================


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(tmp_path):
    path = str(tmp_path / "relay.db")

    store = SqliteDocumentStore(path)
    await store.connect()
    execution = await store.create_execution(make_execution(status=ExecutionStatus.RUNNING))
    await store.create_job(make_job("j1"))
    await store.close()

    reopened = SqliteDocumentStore(path)
    await reopened.connect()
    try:
        loaded = await reopened.get_execution(execution.id)
        assert loaded.status == ExecutionStatus.RUNNING
        assert [e.id for e in await reopened.get_incomplete_executions()] == [execution.id]
        assert (await reopened.find_active_job("exec-1", "a")).id == "j1"
    finally:
        await reopened.close()


@pytest.mark.asyncio
async def test_sqlite_requires_connect():
    store = SqliteDocumentStore(":memory:")

    with pytest.raises(StorageError, match="Not connected"):
        await store.get_execution("exec-1")


# =============================================================================
# Redis claims
# =============================================================================


@pytest.mark.asyncio
async def test_redis_failed_create_releases_claim(monkeypatch):
    redis_url = os.getenv("PYRELAY_TEST_REDIS_URL")
    if not redis_url:
        pytest.skip("PYRELAY_TEST_REDIS_URL not set")
    import pyrelay.storage.redis as redis_storage

    class UnpicklableJobs:
        @staticmethod
        def dumps(obj):
            raise pickle.PicklingError("cannot pickle job")

    store = redis_storage.RedisDocumentStore(redis_url)
    await store.connect()
    await store.reset()
    try:
        monkeypatch.setattr(redis_storage, "pickle", UnpicklableJobs)
        with pytest.raises(pickle.PicklingError):
            await store.create_job(make_job("j1"))
        monkeypatch.undo()

        # The failed create left no active claim behind
        created = await store.create_job(make_job("j2"))
        assert created.version == 1
        assert (await store.find_active_job("exec-1", "a")).id == "j2"
    finally:
        await store.reset()
        await store.close()
