"""
Asynchronous analysis job queue.

The queue is bound to one caller: every job it creates is owned by that
caller, and reads and cancellations only ever see the caller's own jobs.
Foreign jobs look exactly like missing ones.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from neurolint_mcp.config import ALL_LAYERS, JobsConfig
from neurolint_mcp.exceptions import JobValidationError
from neurolint_mcp.jobs.store import JobStore
from neurolint_mcp.models import (
    AnalysisJob,
    AnalysisRequest,
    Caller,
    CallerTier,
    JobPriority,
    JobStatus,
    JobSubmission,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

ESTIMATED_WAITS: dict[JobPriority, str] = {
    JobPriority.URGENT: "< 10 seconds",
    JobPriority.HIGH: "< 30 seconds",
    JobPriority.NORMAL: "1-2 minutes",
    JobPriority.LOW: "2-5 minutes",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_priority(tier: CallerTier | str, requested: JobPriority | str | None = None) -> JobPriority:
    """
    Effective job priority for a caller tier.

    Free callers always get normal priority. Premium callers may ask for
    anything up to high (urgent is capped) and default to normal.
    Enterprise callers may ask for anything and default to high.
    """
    tier = CallerTier(tier)
    requested = JobPriority(requested) if requested is not None else None

    if tier is CallerTier.ENTERPRISE:
        return requested or JobPriority.HIGH
    if tier is CallerTier.PREMIUM:
        if requested is JobPriority.URGENT:
            return JobPriority.HIGH
        return requested or JobPriority.NORMAL
    return JobPriority.NORMAL


def estimated_wait(priority: JobPriority | str) -> str:
    return ESTIMATED_WAITS[JobPriority(priority)]


def normalize_layers(layers: Optional[list[int]]) -> list[int]:
    """
    Validate requested layers.

    Omitted layers mean every layer. Unknown ids are dropped with a
    warning; an explicit list with no valid id is rejected.

    Raises:
        JobValidationError: No requested layer is in range.
    """
    if layers is None:
        return list(ALL_LAYERS)

    valid = sorted({layer for layer in layers if layer in ALL_LAYERS})
    dropped = sorted({layer for layer in layers if layer not in ALL_LAYERS})
    if dropped:
        logger.warning(f"Dropping unsupported layers {dropped}")
    if not valid:
        raise JobValidationError(f"no valid layers requested (got {list(layers)})")
    return valid


class AnalysisJobQueue:
    """
    Creates, reads and cancels analysis jobs for one caller.

    Attributes:
        store: Job persistence.
        caller: Identity and tier all operations act for.
        config: Queue settings (expiry).

    Example:
        >>> queue = AnalysisJobQueue(InMemoryJobStore(), Caller(user_id="u1"))
        >>> queue.submit(AnalysisRequest(code="const a = 1;")).estimated_wait
        '1-2 minutes'
    """

    def __init__(
        self,
        store: JobStore,
        caller: Caller,
        config: JobsConfig | None = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.caller = caller
        self.config = config or JobsConfig()
        self._clock = clock

    def create_job(self, request: AnalysisRequest) -> AnalysisJob:
        """
        Validate a request and persist it as a pending job.

        Raises:
            JobValidationError: The request names no valid layer.
        """
        now = self._clock()
        priority = resolve_priority(self.caller.tier, request.priority)
        job = AnalysisJob(
            id=str(uuid.uuid4()),
            user_id=self.caller.user_id,
            project_id=request.project_id,
            status=JobStatus.PENDING,
            priority=priority,
            code=request.code,
            filename=request.filename,
            layers=normalize_layers(request.layers),
            options=dict(request.options),
            progress=0,
            created_at=now,
            expires_at=now + timedelta(hours=self.config.expiry_hours),
        )
        self.store.insert(job)

        logger.info(
            f"Created analysis job {job.id}",
            extra={
                "job_id": job.id,
                "user_id": job.user_id,
                "priority": priority.value,
                "layers": job.layers,
            },
        )
        return job

    def submit(self, request: AnalysisRequest) -> JobSubmission:
        """Create a job and report its expected wait."""
        job = self.create_job(request)
        return JobSubmission(job_id=job.id, status=job.status, estimated_wait=estimated_wait(job.priority))

    def get_job(self, job_id: str) -> Optional[AnalysisJob]:
        """Return the caller's job, or None if it is missing or foreign."""
        job = self.store.get(job_id)
        if job is None or job.user_id != self.caller.user_id:
            return None
        return job

    def list_jobs(self, limit: int = 10) -> list[AnalysisJob]:
        """The caller's most recent jobs, newest first."""
        return self.store.list_by_owner(self.caller.user_id, limit)

    def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a pending or processing job owned by the caller.

        Returns:
            True if the job was cancelled; False for missing, foreign or
            already finished jobs.
        """
        if self.get_job(job_id) is None:
            return False

        job = self.store.transition(
            job_id,
            (JobStatus.PENDING, JobStatus.PROCESSING),
            JobStatus.CANCELLED,
            completed_at=self._clock(),
        )
        if job is None:
            logger.debug(f"Cancel of job {job_id} refused: already finished")
            return False

        logger.info(f"Cancelled analysis job {job_id}", extra={"job_id": job_id, "user_id": self.caller.user_id})
        return True
