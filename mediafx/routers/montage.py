"""
Montage API Router - Submit clip plans, poll status, download results.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from mediafx.schemas.requests import MontageSubmitRequest
from mediafx.schemas.responses import (
    MontageJobStatusResponse,
    MontageJobSubmitResponse,
    RejectionDetail,
)
from mediafx.services.job_manager import (
    AdmissionError,
    JobManager,
    JobNotFoundError,
    PlanValidationError,
    RejectionReason,
    ResultGoneError,
    ResultNotReadyError,
    SubmissionRejected,
)
from mediafx.services.job_store import JobStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/montage", tags=["Montage"])


# ============================================================================
# Dependencies
# ============================================================================


async def get_job_manager(request: Request) -> JobManager:
    """Get the job manager from app state (initialized at startup)."""
    manager = getattr(request.app.state, "job_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job manager not initialized",
        )
    return manager


def _rejection_status(error: SubmissionRejected) -> int:
    if error.reason == RejectionReason.AT_CAPACITY:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/jobs", response_model=MontageJobSubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_montage_job(
    request: MontageSubmitRequest,
    manager: JobManager = Depends(get_job_manager),
) -> MontageJobSubmitResponse:
    """
    Submit a montage plan.

    The job is processed asynchronously. Use GET /montage/jobs/{job_id} to
    check status and GET /montage/jobs/{job_id}/result to download it.

    Clips without a location or with a non-positive duration are skipped;
    a plan with no valid clips is rejected with reason "empty_plan".
    """
    try:
        snapshot = await manager.submit(request.to_raw_entries())
    except (PlanValidationError, AdmissionError) as e:
        logger.info(f"Submission rejected: {e}")
        headers = {"Retry-After": "30"} if e.reason == RejectionReason.AT_CAPACITY else None
        raise HTTPException(
            status_code=_rejection_status(e),
            detail=RejectionDetail(reason=e.reason, message=e.message).model_dump(),
            headers=headers,
        )

    return MontageJobSubmitResponse(
        job_id=snapshot.job_id,
        status=snapshot.status.value,
        message="Job queued for processing",
        total_clips=snapshot.total_clips,
        total_duration_seconds=snapshot.total_duration_seconds,
    )


# Legacy path: POST /montage
router.add_api_route(
    "",
    submit_montage_job,
    methods=["POST"],
    response_model=MontageJobSubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    include_in_schema=False,
)


@router.get("/jobs", response_model=list[MontageJobStatusResponse])
async def list_montage_jobs(
    status_filter: Optional[JobStatus] = None,
    limit: int = 20,
    manager: JobManager = Depends(get_job_manager),
) -> list[MontageJobStatusResponse]:
    """
    List recent montage jobs, newest first.

    Args:
        status_filter: Filter by status (queued, processing, done, failed)
        limit: Maximum number of jobs to return
    """
    return [
        MontageJobStatusResponse.from_snapshot(s)
        for s in manager.list_jobs(status_filter=status_filter, limit=limit)
    ]


@router.get("/jobs/{job_id}", response_model=MontageJobStatusResponse)
async def get_montage_job_status(
    job_id: str,
    manager: JobManager = Depends(get_job_manager),
) -> MontageJobStatusResponse:
    """
    Get the status of a montage job.

    When the job failed, "error" carries the failing step's message.
    """
    try:
        snapshot = manager.get_status(job_id)
    except JobNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job not found: {job_id}",
        )
    return MontageJobStatusResponse.from_snapshot(snapshot)


@router.get(
    "/jobs/{job_id}/result",
    response_class=StreamingResponse,
    responses={
        200: {"content": {"video/mp4": {}}, "description": "The montage"},
        404: {"description": "Unknown job"},
        409: {"description": "Job not finished (or failed)"},
        410: {"description": "Result already delivered"},
    },
)
async def download_montage_result(
    job_id: str,
    manager: JobManager = Depends(get_job_manager),
) -> StreamingResponse:
    """
    Download the finished montage.

    Delivery is single-use: the file and its workspace are removed once the
    download ends, and later requests get 410 Gone.
    """
    try:
        stream = manager.open_result(job_id)
    except JobNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job not found: {job_id}",
        )
    except ResultNotReadyError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job is {e.status.value}; result not available",
        )
    except ResultGoneError:
        raise HTTPException(
            status_code=status.HTTP_410_GONE,
            detail="Result already delivered",
        )

    return StreamingResponse(
        stream.iter_chunks(),
        media_type=manager.settings.output_content_type,
        headers={
            "Content-Length": str(stream.size),
            "Content-Disposition": f'attachment; filename="{stream.filename}"',
        },
        # Reclaims the workspace even if the body iterator never started
        background=BackgroundTask(stream.close),
    )
