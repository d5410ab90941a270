"""
Configuration module using Pydantic Settings for environment variable management.

Limits, pipeline tuning and transcode profile are read from the environment
(or a local .env file). Everything else is derived from those values.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class ExtractionPolicy:
    """
    Segment extraction policies.

    The policy is fixed per deployment because it decides whether the
    concatenator may stream-copy.
    """
    COPY = "copy"            # No re-encode, cuts snap to keyframes
    NORMALIZE = "normalize"  # Re-encode to one profile, frame-accurate cuts


class Settings(BaseSettings):
    """
    Application settings.

    Every field maps to an upper-case environment variable of the same name
    (e.g. MAX_CLIPS, DOWNLOAD_WORKERS).
    """

    # ============================================================
    # ENVIRONMENT VARIABLES
    # ============================================================

    # Application
    app_name: str = "mediafx-montage"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3000

    # Scratch storage
    workspace_root: str = "/tmp/mediafx"

    # Admission limits
    max_clips: int = 20
    max_total_duration_seconds: float = 600.0
    max_concurrent_jobs: int = 2  # Active (queued + processing) jobs

    # Source acquisition
    download_workers: int = 1  # 1 = sequential, safest on small instances
    download_timeout_seconds: float = 120.0
    download_chunk_size: int = 1024 * 1024
    download_retries: int = 0  # Extra attempts per source; 0 = fail fast

    # Transcoding
    extraction_policy: Literal["copy", "normalize"] = ExtractionPolicy.NORMALIZE
    max_concurrent_transcodes: Optional[int] = None  # Process-wide ffmpeg limit
    transcode_timeout_seconds: float = 600.0
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ffmpeg_preset: str = "veryfast"
    ffmpeg_crf: int = 20
    output_width: int = 1080
    output_height: int = 1920
    output_fps: int = 30

    # Job table
    job_retention_seconds: float = 3600.0
    result_chunk_size: int = 256 * 1024

    # Resource warnings (sized for a 2 GB container)
    memory_warning_mb: int = 1536
    disk_warning_mb: int = 1024

    # AWS S3 (for s3:// sources)
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    s3_bucket: Optional[str] = None

    # ============================================================
    # DERIVED SETTINGS
    # ============================================================

    @property
    def concat_stream_copy(self) -> bool:
        # Only normalized segments are guaranteed to share one codec profile
        return self.extraction_policy == ExtractionPolicy.NORMALIZE

    @property
    def output_content_type(self) -> str:
        return "video/mp4"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
