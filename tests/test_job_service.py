"""Tests for the reindex job service."""

import asyncio
from uuid import UUID

import pytest

from solr_reindex.core.exceptions import FatalCopyError, InvalidTransitionError
from solr_reindex.reindex.backends import TaskExecutionBackend
from solr_reindex.reindex.copier import BatchCopier
from solr_reindex.reindex.dispatcher import ExecutionDispatcher
from solr_reindex.reindex.models import JobStatus
from solr_reindex.reindex.state_machine import ReindexJobStateMachine
from solr_reindex.services.job_service import ReindexJobService
from tests.fakes import TARGET, FakeBackend, FakeSolr

pytestmark = pytest.mark.asyncio


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def service(registry, backend: FakeBackend) -> ReindexJobService:
    return ReindexJobService(registry, ExecutionDispatcher(registry, backend))


async def test_create_job_dispatches(service: ReindexJobService, backend: FakeBackend, spec):
    state = await service.create_job(spec)

    assert state.status is JobStatus.PENDING
    assert state.execution_id is not None
    assert backend.launched == [(state.id, state.execution_id)]


async def test_create_job_without_dispatch(service: ReindexJobService, backend: FakeBackend, spec):
    state = await service.create_job(spec, dispatch=False)

    assert state.execution_id is None
    assert backend.launched == []
    assert await service.list_jobs([JobStatus.PENDING]) == [state]


async def test_pause_and_resume(service: ReindexJobService, registry, backend: FakeBackend, spec):
    """A paused job is resumed by a new execution unit."""
    state = await service.create_job(spec)
    assert (await service.pause(state.id)).pause_requested is True

    current = await registry.get(state.id)
    await registry.compare_and_set(
        state.id, current, current.evolve(status=JobStatus.PAUSED, pause_requested=False)
    )
    backend.finish(state.execution_id)

    resumed = await service.resume(state.id)

    assert len(backend.launched) == 2
    assert resumed.execution_id == backend.launched[-1][1]


async def test_resume_rejects_completed_job(service: ReindexJobService, registry, spec):
    state = await service.create_job(spec, dispatch=False)
    await registry.compare_and_set(state.id, state, state.evolve(status=JobStatus.COMPLETED))

    with pytest.raises(InvalidTransitionError):
        await service.resume(state.id)


async def test_resume_from_failure_copies_only_remaining_keys(
    service: ReindexJobService, registry, solr: FakeSolr, spec, fake_sleep
):
    """A failed job's cursor seeds a new job that copies only keys after it."""
    solr.write_failures[2] = FatalCopyError("Solr returned HTTP 400: document too large")
    failed_id = (await service.create_job(spec, dispatch=False)).id
    failed = await ReindexJobStateMachine(
        registry, BatchCopier(solr, solr), execution_id="exec-1", sleep=fake_sleep
    ).run(failed_id)
    assert failed.status is JobStatus.FAILED
    solr.write_failures.clear()
    writes_before = len(solr.writes)

    resumed = await service.resume_from_failure(failed_id, dispatch=False)

    assert resumed.id != failed_id
    assert resumed.status is JobStatus.PENDING
    assert resumed.cursor == failed.cursor
    assert resumed.resumed_from == failed_id

    state = await ReindexJobStateMachine(
        registry, BatchCopier(solr, solr), execution_id="exec-2", sleep=fake_sleep
    ).run(resumed.id)

    assert state.status is JobStatus.COMPLETED
    assert state.docs_copied == 150
    resumed_ids = [doc["id"] for write in solr.writes[writes_before:] for doc in write["docs"]]
    assert min(resumed_ids) == "doc-100"
    assert len(solr.docs(TARGET)) == 250
    assert (await registry.get(failed_id)).status is JobStatus.FAILED


async def test_resume_from_failure_requires_failed_job(service: ReindexJobService, spec):
    state = await service.create_job(spec, dispatch=False)

    with pytest.raises(InvalidTransitionError):
        await service.resume_from_failure(state.id)


async def test_cancel_with_live_execution(service: ReindexJobService, backend: FakeBackend, spec):
    state = await service.create_job(spec)

    cancelled = await service.cancel(state.id)

    assert cancelled.pause_requested is True
    assert backend.terminated == [state.execution_id]


async def test_cancel_without_execution_sets_flag(service: ReindexJobService, backend, spec):
    state = await service.create_job(spec, dispatch=False)

    cancelled = await service.cancel(state.id)

    assert cancelled.pause_requested is True
    assert backend.terminated == []


async def test_crashed_execution_is_reported_failed(registry, spec):
    """A job whose unit dies before reporting is failed on the next reconcile pass."""

    async def evicted(job_id: UUID, execution_id: str, stop_event: asyncio.Event) -> int:
        raise RuntimeError("worker evicted")

    backend = TaskExecutionBackend(evicted)
    service = ReindexJobService(registry, ExecutionDispatcher(registry, backend))
    created = await service.create_job(spec)
    await asyncio.sleep(0)

    await service.dispatcher.reconcile_all()

    state = await service.get_job(created.id)
    assert state.status is JobStatus.FAILED
    assert state.failure_kind == "LostWorkerError"
    assert state.cursor == created.cursor
    assert service.dispatcher.handle_for(created.id) is None
    assert backend.tasks == {}


async def test_resume_clears_pause_of_undispatched_job(
    service: ReindexJobService, registry, solr: FakeSolr, spec, fake_sleep
):
    """Resuming a pending job paused before any dispatch copies it instead of re-pausing."""
    created = await service.create_job(spec, dispatch=False)
    assert (await service.pause(created.id)).pause_requested is True

    resumed = await service.resume(created.id)
    assert resumed.pause_requested is False

    state = await ReindexJobStateMachine(
        registry, BatchCopier(solr, solr), execution_id=resumed.execution_id, sleep=fake_sleep
    ).run(created.id)

    assert state.status is JobStatus.COMPLETED
    assert state.docs_copied == 250


async def test_pause_after_dispatch_is_honoured(
    service: ReindexJobService, registry, solr: FakeSolr, spec, fake_sleep
):
    """A pause that lands before the unit starts stops it before the first batch."""
    created = await service.create_job(spec)
    await service.pause(created.id)

    state = await ReindexJobStateMachine(
        registry, BatchCopier(solr, solr), execution_id=created.execution_id, sleep=fake_sleep
    ).run(created.id)

    assert state.status is JobStatus.PAUSED
    assert state.docs_copied == 0
    assert solr.reads == []
