"""
Health check endpoints for the montage service.
"""

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from mediafx import __version__
from mediafx.schemas.responses import HealthResponse
from mediafx.services.memory_monitor import get_memory_usage_mb, get_workspace_disk_free_mb

router = APIRouter()


@router.get("/healthz", response_class=PlainTextResponse)
async def liveness_check() -> str:
    """
    Liveness probe for the hosting platform.

    Returns 200 "OK" if the process is serving requests.
    """
    return "OK"


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """
    Service health with transcode engine availability and load.
    """
    manager = getattr(request.app.state, "job_manager", None)
    ffmpeg_ready = bool(getattr(request.app.state, "ffmpeg_available", False))

    return HealthResponse(
        status="healthy" if manager is not None else "starting",
        version=__version__,
        ffmpeg="available" if ffmpeg_ready else "not_found",
        active_jobs=manager.active_job_count() if manager is not None else 0,
        memory_rss_mb=round(get_memory_usage_mb()["rss"], 1),
        workspace_disk_free_mb=get_workspace_disk_free_mb(),
    )
