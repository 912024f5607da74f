"""Reindex job endpoints: create, inspect, pause, resume and cancel."""

from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import ValidationError

from solr_reindex.core.exceptions import ValidationException
from solr_reindex.core.logging import get_logger
from solr_reindex.dependencies import JobServiceDep
from solr_reindex.reindex.models import JobStatus
from solr_reindex.schemas.jobs import CreateReindexJobRequest, JobListResponse, JobResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/reindex/jobs", tags=["reindex"])


@router.post(
    "",
    response_model=JobResponse,
    summary="Create Reindex Job",
    description="Registers a reindex job and starts an execution unit for it",
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_job(request: CreateReindexJobRequest, service: JobServiceDep) -> JobResponse:
    """Create a reindex job.

    Args:
        request: Job parameters.
        service: Injected job service.

    Returns:
        JobResponse: The newly created job.

    Raises:
        ValidationException: If the parameters do not describe a runnable job.
    """
    try:
        spec = request.to_spec()
    except ValidationError as e:
        raise ValidationException(str(e)) from e

    logger.info(
        f"Create reindex job: {spec.source_collection} -> {spec.target_collection}, "
        f"batch_size={spec.batch_size}, dispatch={request.dispatch}"
    )
    state = await service.create_job(spec, dispatch=request.dispatch)
    return JobResponse.from_state(state)


@router.get("", response_model=JobListResponse, summary="List Reindex Jobs")
async def list_jobs(
    service: JobServiceDep,
    status_filter: list[JobStatus] | None = Query(None, alias="status"),
) -> JobListResponse:
    """List jobs, optionally filtered by status."""
    jobs = [JobResponse.from_state(s) for s in await service.list_jobs(status_filter)]
    return JobListResponse(jobs=jobs, total=len(jobs))


@router.get("/{job_id}", response_model=JobResponse, summary="Get Reindex Job")
async def get_job(job_id: UUID, service: JobServiceDep) -> JobResponse:
    return JobResponse.from_state(await service.get_job(job_id))


@router.post(
    "/{job_id}/pause",
    response_model=JobResponse,
    summary="Pause Reindex Job",
    status_code=status.HTTP_202_ACCEPTED,
)
async def pause_job(job_id: UUID, service: JobServiceDep) -> JobResponse:
    """Request a pause; the worker stops at the next batch boundary."""
    return JobResponse.from_state(await service.pause(job_id))


@router.post(
    "/{job_id}/resume",
    response_model=JobResponse,
    summary="Resume Reindex Job",
    status_code=status.HTTP_202_ACCEPTED,
)
async def resume_job(job_id: UUID, service: JobServiceDep) -> JobResponse:
    """Start a new execution unit for a paused job."""
    return JobResponse.from_state(await service.resume(job_id))


@router.post(
    "/{job_id}/resume-from-failure",
    response_model=JobResponse,
    summary="Resume Failed Reindex Job",
    status_code=status.HTTP_202_ACCEPTED,
)
async def resume_failed_job(job_id: UUID, service: JobServiceDep) -> JobResponse:
    """Create a new job that continues a failed one from its last good cursor."""
    return JobResponse.from_state(await service.resume_from_failure(job_id))


@router.delete(
    "/{job_id}",
    response_model=JobResponse,
    summary="Cancel Reindex Job",
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_job(job_id: UUID, service: JobServiceDep) -> JobResponse:
    """Stop the job's execution unit; progress is kept."""
    return JobResponse.from_state(await service.cancel(job_id))
