"""
FastAPI application entry point for the MediaFX montage service.

Accepts ordered clip plans, cuts each clip out of its source with FFmpeg and
joins the cuts into one video that clients download once.
"""

import logging
import os
import shutil
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mediafx import __version__
from mediafx.config import get_settings
from mediafx.routers import health, montage
from mediafx.services.job_manager import JobManager

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Creates the job manager on startup and reclaims scratch space on shutdown.
    """
    settings = get_settings()
    logger.info("Starting MediaFX montage service...")

    # Create workspace root
    os.makedirs(settings.workspace_root, exist_ok=True)
    logger.info(f"Workspace root: {settings.workspace_root}")
    logger.info(
        f"Limits: {settings.max_clips} clips, {settings.max_total_duration_seconds:.0f}s total, "
        f"{settings.max_concurrent_jobs} concurrent job(s), {settings.download_workers} download worker(s)"
    )
    logger.info(f"Extraction policy: {settings.extraction_policy}")

    app.state.ffmpeg_available = _verify_external_tools()
    app.state.job_manager = JobManager(settings=settings)

    logger.info("MediaFX ready to accept requests.")

    yield

    # Cleanup on shutdown
    logger.info("Shutting down MediaFX montage service...")
    await app.state.job_manager.shutdown()
    app.state.job_manager = None

    logger.info("Shutdown complete")


def _verify_external_tools() -> bool:
    """Verify that required external tools are available."""
    tools = {
        settings.ffmpeg_path: "FFmpeg for segment extraction and concatenation",
        settings.ffprobe_path: "FFprobe for stream inspection",
    }

    all_found = True
    for tool, description in tools.items():
        if shutil.which(tool):
            logger.info(f"✓ {description} available")
        else:
            logger.warning(f"✗ {description} NOT FOUND - jobs will fail")
            all_found = False
    return all_found


# Create FastAPI application
app = FastAPI(
    title="MediaFX Montage",
    description="""
MediaFX - clip montage service.

## Usage

1. Submit a plan: `POST /montage/jobs` with `{"clips": [{"url", "start", "duration"}, ...]}`
2. Poll status: `GET /montage/jobs/{job_id}`
3. Download once: `GET /montage/jobs/{job_id}/result`
    """,
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(montage.router)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {
        "service": settings.app_name,
        "version": __version__,
        "status": "running",
        "extraction_policy": settings.extraction_policy,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("mediafx.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
