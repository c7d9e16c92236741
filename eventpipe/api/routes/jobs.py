"""
Job inspection routes.
"""

import logging

from fastapi import APIRouter, HTTPException, Query, status

from eventpipe.api.dependencies import QueueDep
from eventpipe.constants import API_V1_PREFIX, JobStatus
from eventpipe.types.api import (
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    RetryJobRequest,
    RetryJobResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])


@router.get(
    "/stats",
    response_model=JobStatsResponse,
    summary="Get job statistics",
    description="Get job counts by state.",
)
async def get_job_stats(queue: QueueDep) -> JobStatsResponse:
    """
    Get job counts for every state present in the queue.

    Completed jobs removed on completion are not counted.
    """
    counts = await queue.get_job_stats()
    return JobStatsResponse(counts=counts, total=sum(counts.values()))


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(job_id: str, queue: QueueDep) -> JobResponse:
    """
    Get job details by ID (the event id).
    
    Raises:
        HTTPException: If job not found.
    """
    job = await queue.get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return JobResponse.from_record(job)


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs with optional state filtering.",
)
async def list_jobs(
    queue: QueueDep,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status: JobStatus | None = Query(default=None),
) -> JobListResponse:
    """
    List jobs, newest first.
    
    Args:
        queue: The job queue.
        page: Page number (1-indexed).
        page_size: Number of items per page.
        status: Optional status filter.
        
    Returns:
        JobListResponse with paginated jobs.
    """
    offset = (page - 1) * page_size

    jobs, total = await queue.list_jobs(
        status=status,
        limit=page_size,
        offset=offset,
    )

    return JobListResponse(
        jobs=[JobResponse.from_record(job) for job in jobs],
        total=total,
        page=page,
        page_size=page_size,
        has_next=(page * page_size) < total,
    )


@router.post(
    "/{job_id}/retry",
    response_model=RetryJobResponse,
    summary="Retry a failed job",
    description="Re-queue a job that exhausted its attempts.",
)
async def retry_job(
    job_id: str,
    queue: QueueDep,
    request: RetryJobRequest | None = None,
) -> RetryJobResponse:
    """
    Re-queue a terminally failed job.
    
    Raises:
        HTTPException: If job not found or not failed.
    """
    request = request or RetryJobRequest()
    job = await queue.get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    if job.status != JobStatus.FAILED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job is not failed (current status: {job.status})",
        )

    updated_job = await queue.retry_failed(job_id, reset_attempts=request.reset_attempts)

    if updated_job is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job changed state before it could be retried",
        )

    logger.info(
        "Failed job re-queued by operator",
        extra={"job_id": job_id, "reset_attempts": request.reset_attempts}
    )

    return RetryJobResponse(
        id=updated_job.job_id,
        status=updated_job.status,
        attempt=updated_job.attempt,
    )
