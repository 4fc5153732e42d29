"""
api/jobs.py
FastAPI router for batch job status, progress streaming, retry and cancel.
"""
import asyncio
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from app.api.deps import get_job_repository, get_job_service, get_publisher
from app.core.exceptions import NotFoundError
from app.models.job_model import (
    TERMINAL_STATUSES,
    BatchJob,
    EmailStatus,
    JobStatus,
    JobType,
    ProgressEvent,
)
from app.repositories.job_repository import JobRepository
from app.services.job_service import JobService
from app.services.progress_service import ProgressPublisher

router = APIRouter(prefix="/api/jobs", tags=["Jobs"])

KEEPALIVE_SECONDS = 15


async def _get_job(job_id: str, jobs: JobRepository) -> BatchJob:
    job = await jobs.get_job(job_id)
    if job is None:
        raise NotFoundError("Job not found")
    return job


@router.get("")
async def list_jobs(
    type: Optional[JobType] = None,
    status: Optional[JobStatus] = None,
    jobs: JobRepository = Depends(get_job_repository),
):
    """Newest 50 jobs, optionally filtered by type and status."""
    return await jobs.list_jobs(
        job_type=type.value if type else None,
        status=status.value if status else None,
    )


@router.get("/{job_id}")
async def get_job(job_id: str, jobs: JobRepository = Depends(get_job_repository)):
    job = await _get_job(job_id, jobs)
    recipients = await jobs.list_recipients(job_id)
    return {**job.model_dump(), "recipients": recipients}


@router.get("/{job_id}/progress")
async def get_progress(job_id: str, jobs: JobRepository = Depends(get_job_repository)):
    job = await _get_job(job_id, jobs)
    return {
        "id": job.id,
        "status": job.status,
        "total_count": job.total_count,
        "processed_count": job.processed_count,
        "success_count": job.success_count,
        "failed_count": job.failed_count,
        "percentage": job.percentage,
    }


@router.get("/{job_id}/recipients")
async def get_recipients(
    job_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    status: Optional[EmailStatus] = None,
    jobs: JobRepository = Depends(get_job_repository),
):
    await _get_job(job_id, jobs)
    recipients, total = await jobs.find_recipients(
        job_id,
        email_status=status.value if status else None,
        skip=(page - 1) * limit,
        limit=limit,
    )
    return {
        "recipients": recipients,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit),
        },
    }


def _sse(event: ProgressEvent) -> str:
    return f"data: {event.model_dump_json()}\n\n"


@router.get("/{job_id}/events")
async def stream_events(
    job_id: str,
    request: Request,
    jobs: JobRepository = Depends(get_job_repository),
    publisher: ProgressPublisher = Depends(get_publisher),
):
    """
    Server-sent progress events for a job.

    The current state is sent first; the stream closes once the job reaches
    a terminal status or the client goes away.
    """
    # Subscribe before reading the snapshot so no final event slips between them
    queue = publisher.subscribe(job_id)
    try:
        job = await _get_job(job_id, jobs)
    except NotFoundError:
        publisher.unsubscribe(job_id, queue)
        raise

    async def event_stream():
        try:
            yield _sse(
                ProgressEvent(
                    job_id=job.id,
                    processed=job.processed_count,
                    total=job.total_count,
                    percentage=job.percentage,
                    status=job.status,
                )
            )
            if job.is_terminal:
                return

            while True:
                if await request.is_disconnected():
                    return
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse(event)
                if event.status in TERMINAL_STATUSES:
                    return
        finally:
            publisher.unsubscribe(job_id, queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/{job_id}/retry-failed")
async def retry_failed(job_id: str, service: JobService = Depends(get_job_service)):
    """Reset failed recipients and run the job again over just those."""
    retried = await service.retry_failed(job_id)
    service.start(job_id)
    return {
        "success": True,
        "retried_count": retried,
        "message": f"{retried} failed recipient(s) queued for retry",
    }


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str, service: JobService = Depends(get_job_service)):
    job = await service.cancel_job(job_id)
    return {"success": True, "status": job.status}


@router.delete("/{job_id}")
async def delete_job(job_id: str, service: JobService = Depends(get_job_service)):
    await service.delete_job(job_id)
    return {"success": True}
