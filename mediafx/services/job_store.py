"""
Job store - the in-memory job table for montage jobs.

Job lifecycle: QUEUED -> PROCESSING -> DONE | FAILED
Terminal states are final; no transition leaves DONE or FAILED.

Only the JobManager mutates jobs, and only while holding the store lock.
Everything handed to callers outside the manager is a JobSnapshot.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ContextManager, Iterator, Optional

from mediafx.services.execution_plan import ExecutionPlan
from mediafx.services.workspace_manager import Workspace


class JobStatus(str, Enum):
    """Status of a montage job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


_JOB_TRANSITIONS: set[tuple[JobStatus, JobStatus]] = {
    (JobStatus.QUEUED, JobStatus.PROCESSING),
    (JobStatus.PROCESSING, JobStatus.DONE),
    (JobStatus.PROCESSING, JobStatus.FAILED),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return (current, target) in _JOB_TRANSITIONS


@dataclass
class Job:
    """End-to-end record of one montage submission."""

    plan: ExecutionPlan
    workspace: Workspace
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.QUEUED
    error_detail: Optional[str] = None
    result_artifact: Optional[str] = None
    result_claimed: bool = False
    current_step: str = "Queued for processing"
    segments_completed: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def transition(self, target: JobStatus) -> None:
        """Move to a new status, enforcing the lifecycle."""
        if not can_transition(self.status, target):
            raise InvalidStateTransitionError(self.id, self.status, target)
        self.status = target
        if target.is_terminal:
            self.finished_at = datetime.now(timezone.utc)

    def snapshot(self) -> "JobSnapshot":
        return JobSnapshot(
            job_id=self.id,
            status=self.status,
            error_detail=self.error_detail,
            current_step=self.current_step,
            total_clips=len(self.plan),
            segments_completed=self.segments_completed,
            total_duration_seconds=self.plan.total_duration,
            result_available=(
                self.status == JobStatus.DONE
                and self.result_artifact is not None
                and not self.result_claimed
            ),
            created_at=self.created_at,
            finished_at=self.finished_at,
        )


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only view of a job at one point in time."""

    job_id: str
    status: JobStatus
    error_detail: Optional[str]
    current_step: str
    total_clips: int
    segments_completed: int
    total_duration_seconds: float
    result_available: bool
    created_at: datetime
    finished_at: Optional[datetime]


class JobStore(ABC):
    """
    Storage interface for the job table.

    Implementations must make lock() a re-entrant mutual-exclusion region
    covering get/put/list/delete, so compound read-modify-write sequences
    can run atomically.
    """

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    def put(self, job: Job) -> None:
        ...

    @abstractmethod
    def list(self) -> list[Job]:
        ...

    @abstractmethod
    def delete(self, job_id: str) -> None:
        ...

    @abstractmethod
    def lock(self) -> ContextManager[None]:
        ...


class InMemoryJobStore(JobStore):
    """Dict-backed job table guarded by a single re-entrant lock."""

    def __init__(self):
        # job_id -> Job
        self._jobs: dict[str, Job] = {}
        self._lock = threading.RLock()

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def put(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job

    def list(self) -> list[Job]:
        with self._lock:
            return list(self._jobs.values())

    def delete(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    @contextmanager
    def lock(self) -> Iterator[None]:
        with self._lock:
            yield

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class InvalidStateTransitionError(Exception):
    """Raised when attempting an illegal job status transition."""

    def __init__(self, job_id: str, current: JobStatus, target: JobStatus):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid job state transition for {job_id}: {current.value} -> {target.value}"
        )
