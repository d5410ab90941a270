"""
Job Manager - Admission control and lifecycle for montage jobs.

Runs each admitted job as one background asyncio task:
1. Source acquisition (every distinct location fetched once)
2. Segment extraction (one clip at a time, in sequence order)
3. Concatenation (concat demuxer over the ordered segments)

The finished montage is delivered once; delivery (or failure) reclaims the
job's workspace.
"""

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Iterable, Mapping, Optional

from mediafx.config import ExtractionPolicy, Settings, get_settings
from mediafx.services.concatenator import ConcatenationError, Concatenator
from mediafx.services.execution_plan import ExecutionPlan, normalize_plan
from mediafx.services.ffmpeg_runner import FFmpegRunner
from mediafx.services.job_store import (
    InMemoryJobStore,
    Job,
    JobSnapshot,
    JobStatus,
    JobStore,
)
from mediafx.services.memory_monitor import log_memory_usage
from mediafx.services.segment_extractor import ExtractionError, SegmentExtractor
from mediafx.services.source_acquirer import AcquisitionError, SourceAcquirer
from mediafx.services.workspace_manager import WorkspaceManager

logger = logging.getLogger(__name__)

# Tolerance for float sums of clip durations
_DURATION_EPSILON = 1e-6


class RejectionReason:
    """Reason codes for rejected submissions."""

    EMPTY_PLAN = "empty_plan"
    TOO_MANY_CLIPS = "too_many_clips"
    TOTAL_DURATION_EXCEEDED = "total_duration_exceeded"
    AT_CAPACITY = "at_capacity"


class JobManager:
    """
    Owns the job table and drives every job through the montage pipeline.

    All collaborators can be injected; by default they are built from
    settings, with extraction and concatenation sharing one FFmpegRunner. The
    concat mode follows the extractor's policy, not the settings.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[JobStore] = None,
        workspace_manager: Optional[WorkspaceManager] = None,
        acquirer: Optional[SourceAcquirer] = None,
        extractor: Optional[SegmentExtractor] = None,
        concatenator: Optional[Concatenator] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or InMemoryJobStore()
        self.workspace_manager = workspace_manager or WorkspaceManager()

        self.acquirer = acquirer or SourceAcquirer()
        self.extractor = extractor or SegmentExtractor(FFmpegRunner())

        # Stream-copy concat is only valid over normalized segments
        policy = getattr(self.extractor, "policy", self.settings.extraction_policy)
        self.concatenator = concatenator or Concatenator(
            getattr(self.extractor, "runner", None) or FFmpegRunner(),
            stream_copy=policy == ExtractionPolicy.NORMALIZE,
        )

        # job_id -> background task (kept referenced until done)
        self._tasks: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, raw_entries: Iterable[Mapping[str, Any]]) -> JobSnapshot:
        """
        Validate a raw plan, admit it and start processing in the background.

        Returns immediately with the queued job's snapshot.

        Raises:
            PlanValidationError: No valid clips after normalization
            AdmissionError: A configured limit would be exceeded
        """
        plan = normalize_plan(raw_entries)
        self._check_limits(plan)

        with self.store.lock():
            self._prune_expired()

            active = sum(1 for job in self.store.list() if not job.status.is_terminal)
            if active >= self.settings.max_concurrent_jobs:
                raise AdmissionError(
                    RejectionReason.AT_CAPACITY,
                    f"{active} job(s) already active (limit {self.settings.max_concurrent_jobs})",
                )

            workspace = self.workspace_manager.create()
            job = Job(plan=plan, workspace=workspace)
            self.store.put(job)
            snapshot = job.snapshot()

        task = asyncio.create_task(self._execute(job.id), name=f"montage-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))

        logger.info(
            f"Job {job.id} queued: {len(plan)} clip(s), "
            f"{len(plan.distinct_locations())} source(s), {plan.total_duration:.1f}s total"
        )
        return snapshot

    def _check_limits(self, plan: ExecutionPlan) -> None:
        if plan.is_empty:
            raise PlanValidationError(
                RejectionReason.EMPTY_PLAN,
                "Plan contains no valid clips (each clip needs a location and a positive duration)",
            )

        if len(plan) > self.settings.max_clips:
            raise AdmissionError(
                RejectionReason.TOO_MANY_CLIPS,
                f"Plan has {len(plan)} clips; maximum is {self.settings.max_clips}",
            )

        limit = self.settings.max_total_duration_seconds
        if plan.total_duration > limit + _DURATION_EPSILON:
            raise AdmissionError(
                RejectionReason.TOTAL_DURATION_EXCEEDED,
                f"Total duration {plan.total_duration:.1f}s exceeds maximum {limit:.1f}s",
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self, job_id: str) -> JobSnapshot:
        """Current snapshot of a job. Raises JobNotFoundError."""
        with self.store.lock():
            return self._get_job(job_id).snapshot()

    def list_jobs(
        self,
        status_filter: Optional[JobStatus] = None,
        limit: int = 20,
    ) -> list[JobSnapshot]:
        """Snapshots of known jobs, newest first."""
        with self.store.lock():
            self._prune_expired()
            jobs = sorted(self.store.list(), key=lambda j: j.created_at, reverse=True)
            snapshots = [
                job.snapshot() for job in jobs
                if status_filter is None or job.status == status_filter
            ]
        return snapshots[:max(0, limit)]

    def active_job_count(self) -> int:
        with self.store.lock():
            return sum(1 for job in self.store.list() if not job.status.is_terminal)

    # ------------------------------------------------------------------
    # Result delivery
    # ------------------------------------------------------------------

    def open_result(self, job_id: str) -> "ResultStream":
        """
        Claim a finished job's artifact for delivery.

        Only one caller can ever claim an artifact. The workspace is
        reclaimed when the returned stream finishes, fails or is closed.

        Raises:
            JobNotFoundError: Unknown job
            ResultNotReadyError: Job is not DONE
            ResultGoneError: Artifact already delivered or reclaimed
        """
        with self.store.lock():
            job = self._get_job(job_id)
            if job.status != JobStatus.DONE:
                raise ResultNotReadyError(job_id, job.status)
            if (
                job.result_claimed
                or job.result_artifact is None
                or job.workspace.destroyed
                or not os.path.isfile(job.result_artifact)
            ):
                raise ResultGoneError(job_id)

            job.result_claimed = True
            path = job.result_artifact

        logger.info(f"Job {job_id}: result claimed for delivery")
        return ResultStream(self, job, path, self.settings.result_chunk_size)

    def _release_workspace(self, job: Job) -> None:
        """Single teardown point for a job's workspace (idempotent)."""
        if self.workspace_manager.destroy(job.workspace):
            logger.info(f"Job {job.id}: workspace reclaimed")

    # ------------------------------------------------------------------
    # Background execution
    # ------------------------------------------------------------------

    async def _execute(self, job_id: str) -> None:
        """Run the pipeline for one job. Never raises except on cancellation."""
        job = self.store.get(job_id)
        if job is None:
            return

        plan = job.plan
        workspace = job.workspace
        self._update(job, status=JobStatus.PROCESSING, step="Downloading sources")
        logger.info(f"Starting montage job: {job_id}")

        try:
            # Step 1: Acquire sources
            sources = await self.acquirer.acquire(plan, workspace)
            log_memory_usage("after_acquisition", job_id)

            # Step 2: Extract segments, strictly one at a time
            segment_paths: list[str] = []
            clips = sorted(plan.clips, key=lambda c: c.sequence_index)
            for position, clip in enumerate(clips, start=1):
                self._update(job, step=f"Extracting segment {position}/{len(clips)}")
                segment_path = await self.extractor.extract(
                    sources[clip.source_location],
                    clip.start_offset,
                    clip.duration,
                    clip.sequence_index,
                    workspace,
                )
                segment_paths.append(segment_path)
                self._update(job, segments_completed=len(segment_paths))
            log_memory_usage("after_extraction", job_id)

            # Step 3: Concatenate
            self._update(job, step="Concatenating segments")
            artifact = await self.concatenator.concatenate(segment_paths, workspace)

        except (AcquisitionError, ExtractionError, ConcatenationError) as e:
            logger.error(f"Job {job_id} failed: {e}")
            self._update(job, status=JobStatus.FAILED, step="Failed", error=str(e))

        except asyncio.CancelledError:
            logger.warning(f"Job {job_id} cancelled during shutdown")
            self._update(job, status=JobStatus.FAILED, step="Failed", error="Service shutting down")
            raise

        except Exception as e:
            logger.exception(f"Job {job_id} failed with unexpected error: {e}")
            self._update(job, status=JobStatus.FAILED, step="Failed", error=f"Unexpected error: {e}")

        else:
            with self.store.lock():
                job.result_artifact = artifact
                job.current_step = "Completed"
                job.transition(JobStatus.DONE)
            logger.info(f"Job {job_id} completed: {artifact}")

        finally:
            # Failed jobs are reclaimed now; done jobs after delivery
            if job.status == JobStatus.FAILED:
                self._release_workspace(job)

    def _update(
        self,
        job: Job,
        status: Optional[JobStatus] = None,
        step: Optional[str] = None,
        segments_completed: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        with self.store.lock():
            if error is not None:
                job.error_detail = error
            if step is not None:
                job.current_step = step
            if segments_completed is not None:
                job.segments_completed = segments_completed
            if status is not None:
                job.transition(status)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def _get_job(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _prune_expired(self) -> None:
        """Drop terminal jobs older than the retention window (caller holds the lock)."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.settings.job_retention_seconds)
        for job in self.store.list():
            if job.status.is_terminal and job.finished_at and job.finished_at < cutoff:
                # Undelivered results expire with their job record
                self._release_workspace(job)
                self.store.delete(job.id)
                logger.debug(f"Pruned expired job {job.id}")

    async def wait_for(self, job_id: str) -> JobSnapshot:
        """Wait until a job's background task has finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.get_status(job_id)

    async def shutdown(self) -> None:
        """Cancel in-flight jobs and reclaim every remaining workspace."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelling {len(tasks)} in-flight job(s)")
            await asyncio.gather(*tasks, return_exceptions=True)

        with self.store.lock():
            for job in self.store.list():
                # Tasks cancelled before their first step never left QUEUED
                if job.status == JobStatus.QUEUED:
                    job.transition(JobStatus.PROCESSING)
                if job.status == JobStatus.PROCESSING:
                    job.error_detail = "Service shutting down"
                    job.current_step = "Failed"
                    job.transition(JobStatus.FAILED)

        for job in self.store.list():
            self._release_workspace(job)


class ResultStream:
    """
    Single-use byte stream over a finished montage.

    Iterating to the end, failing mid-way or calling close() all reclaim
    the job's workspace, exactly once.
    """

    def __init__(self, manager: JobManager, job: Job, path: str, chunk_size: int):
        self._manager = manager
        self._job = job
        self.path = path
        self.chunk_size = chunk_size
        self.size = os.path.getsize(path)
        self.filename = f"montage-{job.id}.mp4"

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        try:
            with open(self.path, "rb") as f:
                while True:
                    chunk = await loop.run_in_executor(None, f.read, self.chunk_size)
                    if not chunk:
                        break
                    yield chunk
            logger.info(f"Job {self._job.id}: result delivered ({self.size} bytes)")
        finally:
            self.close()

    def close(self) -> None:
        self._manager._release_workspace(self._job)


class SubmissionRejected(Exception):
    """Base class for synchronous submission rejections."""

    def __init__(self, reason: str, message: str):
        self.reason = reason
        self.message = message
        super().__init__(f"{reason}: {message}")


class PlanValidationError(SubmissionRejected):
    """Raised when a plan has no valid clips."""
    pass


class AdmissionError(SubmissionRejected):
    """Raised when a plan exceeds a configured limit or the service is at capacity."""
    pass


class JobNotFoundError(Exception):
    """Raised when a job handle is unknown."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class ResultNotReadyError(Exception):
    """Raised when a result is requested before the job is DONE."""

    def __init__(self, job_id: str, status: JobStatus):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} is {status.value}; result not available")


class ResultGoneError(Exception):
    """Raised when a result has already been delivered or reclaimed."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Result for job {job_id} has already been delivered")
