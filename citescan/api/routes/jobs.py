"""
Jobs API - job status read interface and out-of-band cancellation.

Polling clients read GET /api/jobs/{job_id} every few seconds.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends

from citescan.api.deps import get_store
from citescan.core.exceptions import ConflictError, ResourceNotFoundError
from citescan.core.models import APIResponse, JobStatus, JobStatusView, PipelineStep, RetryState
from citescan.core.timeutils import ensure_utc
from citescan.db.models import ScanJobModel
from citescan.db.store import JobStore

logger = structlog.get_logger()
router = APIRouter()


def to_status_view(job: ScanJobModel) -> JobStatusView:
    status = JobStatus(job.status)
    step = PipelineStep(job.current_step_index)
    return JobStatusView(
        job_id=job.id,
        scan_id=job.scan_id,
        status=status,
        current_step=step.key,
        current_step_index=job.current_step_index,
        substep_label=job.substep_label,
        progress=job.progress,
        retry_state=RetryState(
            attempt=job.attempt_count,
            next_retry_at=ensure_utc(job.next_retry_at),
        ),
        last_error=job.last_error,
    )


@router.get("/{job_id}", response_model=JobStatusView)
async def get_job_status(
    job_id: int,
    store: Annotated[JobStore, Depends(get_store)],
) -> JobStatusView:
    """Current status, step, substep and progress of a scan job."""
    job = await store.get_job(job_id)
    if job is None:
        raise ResourceNotFoundError(f"Job {job_id} not found")
    return to_status_view(job)


@router.post("/{job_id}/cancel")
async def cancel_job(
    job_id: int,
    store: Annotated[JobStore, Depends(get_store)],
) -> APIResponse:
    """Fail a non-terminal job out of band. A running step notices at its next write."""
    if not await store.cancel_job(job_id):
        raise ConflictError(f"Job {job_id} is already finished")

    logger.info("Job cancelled", job_id=job_id)
    return APIResponse(message=f"Job {job_id} cancelled", data={"job_id": job_id})
