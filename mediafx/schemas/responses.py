"""
Response schemas for the montage API.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from mediafx.services.job_store import JobSnapshot


class MontageJobSubmitResponse(BaseModel):
    """Response after submitting a montage job."""

    job_id: str
    status: str
    message: str
    total_clips: int
    total_duration_seconds: float


class MontageJobStatusResponse(BaseModel):
    """Response for job status query."""

    job_id: str
    status: str = Field(..., description="queued, processing, done or failed")
    current_step: str
    total_clips: int
    segments_completed: int
    total_duration_seconds: float
    result_available: bool
    error: Optional[str] = None
    created_at: datetime
    finished_at: Optional[datetime] = None

    @classmethod
    def from_snapshot(cls, snapshot: JobSnapshot) -> "MontageJobStatusResponse":
        return cls(
            job_id=snapshot.job_id,
            status=snapshot.status.value,
            current_step=snapshot.current_step,
            total_clips=snapshot.total_clips,
            segments_completed=snapshot.segments_completed,
            total_duration_seconds=snapshot.total_duration_seconds,
            result_available=snapshot.result_available,
            error=snapshot.error_detail,
            created_at=snapshot.created_at,
            finished_at=snapshot.finished_at,
        )


class RejectionDetail(BaseModel):
    """Structured detail for rejected submissions."""

    reason: str = Field(
        ..., description="empty_plan, too_many_clips, total_duration_exceeded or at_capacity"
    )
    message: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    ffmpeg: str
    active_jobs: int
    memory_rss_mb: float
    workspace_disk_free_mb: Optional[float] = None
