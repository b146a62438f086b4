"""
Background worker for analysis jobs.

A worker claims the best pending job, runs the core analysis (and the fix
pipeline when the job asks for it), and records the outcome on the job.
Failures are written to the job as an error string and never retried.
Cancellation is cooperative: the fix pipeline checks the job's status
before every layer, and a job that stopped being ``processing`` is never
overwritten with a result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from neurolint_mcp.config import JobsConfig
from neurolint_mcp.core import NeuroLintCore
from neurolint_mcp.jobs.queue import Clock, utcnow
from neurolint_mcp.jobs.store import JobStore
from neurolint_mcp.models import (
    AnalysisJob,
    AnalysisJobResult,
    AppliedFix,
    FixResult,
    JobLayerResult,
    JobStatus,
    JobSummary,
    LayerReport,
    LayerStatus,
)

logger = logging.getLogger(__name__)

# Progress reported once analysis is done and fixing begins.
ANALYSIS_PROGRESS = 50


class JobWorker:
    """
    Processes jobs from a store one at a time.

    Attributes:
        store: Shared job store; the only state shared with other workers.
        core: Analysis facade.
        config: Size limit, poll interval.
    """

    def __init__(
        self,
        store: JobStore,
        core: NeuroLintCore,
        config: JobsConfig | None = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.core = core
        self.config = config or core.config.jobs
        self._clock = clock

    def run_once(self) -> Optional[AnalysisJob]:
        """
        Claim and process one job.

        Returns:
            The job as stored after processing, or None if nothing was pending.
        """
        job = self.store.claim_next(self._clock())
        if job is None:
            return None
        logger.info(f"Claimed analysis job {job.id}", extra={"job_id": job.id, "priority": job.priority})
        self.process(job)
        return self.store.get(job.id)

    def sweep(self) -> int:
        """Delete finished jobs past their expiry."""
        removed = self.store.delete_expired(self._clock())
        if removed:
            logger.info(f"Removed {removed} expired jobs", extra={"removed": removed})
        return removed

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll for jobs until ``stop_event`` is set."""
        logger.info("Job worker started", extra={"poll_interval": self.config.poll_interval_seconds})
        while not stop_event.is_set():
            try:
                job = await asyncio.to_thread(self.run_once)
                if job is not None:
                    continue
                await asyncio.to_thread(self.sweep)
            except Exception:
                logger.exception("Job worker iteration failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Job worker stopped")

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _still_processing(self, job_id: str) -> bool:
        job = self.store.get(job_id)
        return job is not None and job.job_status is JobStatus.PROCESSING

    def _fail(self, job: AnalysisJob, error: str) -> None:
        updated = self.store.transition(
            job.id, (JobStatus.PROCESSING,), JobStatus.FAILED, error=error, completed_at=self._clock()
        )
        if updated is None:
            logger.info(f"Job {job.id} left processing before it could be marked failed")
            return
        logger.warning(f"Analysis job {job.id} failed: {error}", extra={"job_id": job.id})

    def process(self, job: AnalysisJob) -> None:
        """Run a claimed job and record its outcome."""
        size = len(job.code.encode("utf-8"))
        if size > self.config.max_code_bytes:
            self._fail(job, f"Code exceeds maximum size of {self.config.max_code_bytes} bytes ({size} bytes)")
            return

        start = time.perf_counter()
        try:
            analysis = self.core.analyze(job.code, filename=job.filename, layers=job.layers)
            fix: Optional[FixResult] = None
            if job.options.get("apply_fixes"):
                fix = self._apply_fixes(job)
                if fix.cancelled or not self._still_processing(job.id):
                    logger.info(f"Analysis job {job.id} cancelled during fixing", extra={"job_id": job.id})
                    return
        except Exception as e:
            logger.exception(f"Analysis job {job.id} raised")
            self._fail(job, str(e) or type(e).__name__)
            return

        elapsed_ms = (time.perf_counter() - start) * 1000
        result = self._build_result(job, analysis.issues, analysis.summary.quality_score, elapsed_ms, fix)

        updated = self.store.transition(
            job.id,
            (JobStatus.PROCESSING,),
            JobStatus.COMPLETED,
            result=result,
            progress=100,
            completed_at=self._clock(),
        )
        if updated is None:
            logger.info(f"Analysis job {job.id} was cancelled before completion", extra={"job_id": job.id})
            return
        logger.info(
            f"Completed analysis job {job.id}",
            extra={"job_id": job.id, "issues": result.summary.total_issues, "execution_time_ms": elapsed_ms},
        )

    def _apply_fixes(self, job: AnalysisJob) -> FixResult:
        self.store.update_progress(job.id, ANALYSIS_PROGRESS)
        total = max(1, len(job.layers))
        done = 0

        def on_layer_complete(report: LayerReport, fixes: list[AppliedFix]) -> None:
            nonlocal done
            done += 1
            progress = ANALYSIS_PROGRESS + (100 - ANALYSIS_PROGRESS) * done // total
            # Completion writes 100, so per-layer progress stops one short.
            self.store.update_progress(job.id, min(progress, 99))

        return self.core.apply_fixes(
            job.code,
            filename=job.filename,
            layers=job.layers,
            should_continue=lambda: self._still_processing(job.id),
            on_layer_complete=on_layer_complete,
        )

    @staticmethod
    def _build_result(
        job: AnalysisJob,
        issues: list,
        quality_score: int,
        elapsed_ms: float,
        fix: Optional[FixResult],
    ) -> AnalysisJobResult:
        by_layer: dict[int, int] = {}
        for issue in issues:
            by_layer[issue.layer] = by_layer.get(issue.layer, 0) + 1

        reports = {report.layer_id: report for report in fix.layers} if fix else {}
        layers = []
        for layer_id in job.layers:
            layer_issues = [issue for issue in issues if issue.layer == layer_id]
            report = reports.get(layer_id)
            if report is None:
                layers.append(JobLayerResult(
                    layer_id=layer_id, success=True, change_count=0, issues=layer_issues,
                ))
            else:
                layers.append(JobLayerResult(
                    layer_id=layer_id,
                    success=report.status != LayerStatus.REVERTED.value,
                    change_count=report.change_count,
                    issues=layer_issues,
                ))

        return AnalysisJobResult(
            success=True,
            issues=issues,
            transformed_code=fix.code if fix else None,
            summary=JobSummary(
                total_issues=len(issues),
                issues_by_layer=by_layer,
                quality_score=quality_score,
                execution_time_ms=elapsed_ms,
            ),
            layers=layers,
        )
