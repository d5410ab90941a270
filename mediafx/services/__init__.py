"""
Services for the montage pipeline.

Includes:
- Workspace management and source acquisition
- Segment extraction and concatenation (FFmpeg)
- Job management (admission, lifecycle, result delivery)
"""

from mediafx.services.concatenator import Concatenator
from mediafx.services.execution_plan import ClipRequest, ExecutionPlan, normalize_plan
from mediafx.services.ffmpeg_runner import FFmpegRunner
from mediafx.services.job_manager import JobManager
from mediafx.services.job_store import InMemoryJobStore, JobStatus, JobStore
from mediafx.services.segment_extractor import SegmentExtractor
from mediafx.services.source_acquirer import SourceAcquirer
from mediafx.services.workspace_manager import Workspace, WorkspaceManager

__all__ = [
    "ClipRequest",
    "ExecutionPlan",
    "normalize_plan",
    "Workspace",
    "WorkspaceManager",
    "SourceAcquirer",
    "FFmpegRunner",
    "SegmentExtractor",
    "Concatenator",
    "JobStore",
    "InMemoryJobStore",
    "JobStatus",
    "JobManager",
]
