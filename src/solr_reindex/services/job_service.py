"""Operator facade over the registry and dispatcher."""

from uuid import UUID

from solr_reindex.core.exceptions import InvalidTransitionError
from solr_reindex.core.logging import get_logger
from solr_reindex.core.models import Cursor
from solr_reindex.reindex.dispatcher import ExecutionDispatcher
from solr_reindex.reindex.models import JobState, JobStatus, ReindexJobSpec
from solr_reindex.reindex.registry import JobRegistry, request_pause

logger = get_logger(__name__)


class ReindexJobService:
    """Creates, inspects and steers reindex jobs."""

    def __init__(self, registry: JobRegistry, dispatcher: ExecutionDispatcher):
        self.registry = registry
        self.dispatcher = dispatcher

    async def create_job(self, spec: ReindexJobSpec, *, dispatch: bool = True) -> JobState:
        """Register a job and, by default, start an execution unit for it."""
        job_id = await self.registry.create(spec)
        if dispatch:
            await self.dispatcher.submit(job_id)
        return await self.registry.get(job_id)

    async def get_job(self, job_id: UUID) -> JobState:
        return await self.registry.get(job_id)

    async def list_jobs(self, statuses: list[JobStatus] | None = None) -> list[JobState]:
        return await self.registry.list_jobs(statuses)

    async def pause(self, job_id: UUID) -> JobState:
        """Ask the running unit to pause at the next batch boundary."""
        return await request_pause(self.registry, job_id)

    async def resume(self, job_id: UUID) -> JobState:
        """Start a new execution for a paused (or never started) job."""
        state = await self.registry.get(job_id)
        if state.status not in (JobStatus.PAUSED, JobStatus.PENDING):
            raise InvalidTransitionError(
                f"Job {job_id} is {state.status.value}; only paused or pending jobs can resume"
            )
        await self.dispatcher.submit(job_id)
        return await self.registry.get(job_id)

    async def resume_from_failure(self, job_id: UUID, *, dispatch: bool = True) -> JobState:
        """Create a new job continuing a failed one from its last good cursor."""
        failed = await self.registry.get(job_id)
        if failed.status is not JobStatus.FAILED:
            raise InvalidTransitionError(
                f"Job {job_id} is {failed.status.value}; only failed jobs can be resumed this way"
            )

        new_id = await self.registry.create(
            failed.spec, start_cursor=Cursor(failed.cursor), resumed_from=failed.id
        )
        logger.info(f"Job {new_id} resumes failed job {job_id} from cursor {failed.cursor}")
        if dispatch:
            await self.dispatcher.submit(new_id)
        return await self.registry.get(new_id)

    async def cancel(self, job_id: UUID) -> JobState:
        """Stop the job's execution unit; the job ends paused with its cursor kept."""
        handle = self.dispatcher.handle_for(job_id)
        if handle is not None:
            await self.dispatcher.cancel(handle)
        else:
            await request_pause(self.registry, job_id)
        return await self.registry.get(job_id)
