"""Tests for the background job worker."""

import asyncio

import pytest

from neurolint_mcp.config import JobsConfig
from neurolint_mcp.jobs import AnalysisJobQueue, InMemoryJobStore, JobWorker
from neurolint_mcp.models import AnalysisRequest, JobStatus


class ExplodingCore:
    """Core whose analysis always raises."""

    def __init__(self, core):
        self.config = core.config

    def analyze(self, *args, **kwargs):
        raise RuntimeError("analyzer crashed")


class CancellingCore:
    """Core that cancels the job on behalf of its owner as soon as fixing starts."""

    def __init__(self, core, queue):
        self._core = core
        self._queue = queue
        self.config = core.config
        self.job_id = None

    def analyze(self, *args, **kwargs):
        return self._core.analyze(*args, **kwargs)

    def apply_fixes(self, *args, **kwargs):
        self._queue.cancel_job(self.job_id)
        return self._core.apply_fixes(*args, **kwargs)


@pytest.fixture
def queue(store, alice, clock):
    return AnalysisJobQueue(store, alice, clock=clock)


@pytest.fixture
def worker(store, core, clock):
    return JobWorker(store, core, clock=clock)


def test_run_once_without_jobs(worker):
    assert worker.run_once() is None


def test_job_completes_with_result(queue, worker):
    job_id = queue.submit(AnalysisRequest(code="console.log('x'); <img src='a'/>", layers=[2, 3])).job_id

    job = worker.run_once()

    assert job.id == job_id
    assert job.job_status is JobStatus.COMPLETED
    assert job.progress == 100
    assert job.started_at is not None and job.completed_at is not None
    assert job.result.success
    assert job.result.summary.total_issues == 2
    assert job.result.summary.quality_score == 90
    assert job.result.summary.issues_by_layer == {2: 1, 3: 1}
    assert [layer.layer_id for layer in job.result.layers] == [2, 3]
    assert job.result.transformed_code is None


def test_job_with_fixes_returns_transformed_code(queue, worker):
    code = "export const a = 1;\nconsole.log(a);\n"
    job_id = queue.submit(
        AnalysisRequest(code=code, filename="a.ts", layers=[2], options={"apply_fixes": True})
    ).job_id

    worker.run_once()
    job = queue.get_job(job_id)

    assert job.job_status is JobStatus.COMPLETED
    assert job.result.transformed_code == "export const a = 1;\n"
    assert job.result.layers[0].success
    assert job.result.layers[0].change_count == 1


def test_oversized_code_fails(store, queue, core, clock):
    worker = JobWorker(store, core, JobsConfig(max_code_bytes=10), clock=clock)
    job_id = queue.submit(AnalysisRequest(code="const value = 12345;")).job_id

    worker.run_once()
    job = queue.get_job(job_id)

    assert job.job_status is JobStatus.FAILED
    assert job.error == "Code exceeds maximum size of 10 bytes (20 bytes)"
    assert job.result is None


def test_analysis_error_fails_job(store, queue, core, clock):
    worker = JobWorker(store, ExplodingCore(core), clock=clock)
    job_id = queue.submit(AnalysisRequest(code="const a = 1;")).job_id

    worker.run_once()
    job = queue.get_job(job_id)

    assert job.job_status is JobStatus.FAILED
    assert job.error == "analyzer crashed"
    assert job.completed_at is not None


def test_cancelled_job_is_never_completed(store, queue, core, clock):
    cancelling = CancellingCore(core, queue)
    worker = JobWorker(store, cancelling, clock=clock)
    cancelling.job_id = queue.submit(
        AnalysisRequest(code="console.log('a');\n", filename="a.ts", layers=[2, 3], options={"apply_fixes": True})
    ).job_id

    worker.run_once()
    job = queue.get_job(cancelling.job_id)

    assert job.job_status is JobStatus.CANCELLED
    assert job.result is None
    assert job.progress < 100


def test_sweep_removes_expired_jobs(store, queue, worker, clock):
    job_id = queue.submit(AnalysisRequest(code="const a = 1;")).job_id
    worker.run_once()

    assert worker.sweep() == 0
    clock.advance(hours=48)
    assert worker.sweep() == 1
    assert queue.get_job(job_id) is None


@pytest.mark.asyncio
async def test_async_worker_loop(core, alice):
    store = InMemoryJobStore()
    queue = AnalysisJobQueue(store, alice)
    worker = JobWorker(store, core, JobsConfig(poll_interval_seconds=0.01))
    job_ids = [queue.submit(AnalysisRequest(code=f"console.log({i});", layers=[2])).job_id for i in range(3)]

    stop = asyncio.Event()
    task = asyncio.create_task(worker.run(stop))
    for _ in range(500):
        if all(queue.get_job(job_id).job_status.is_terminal for job_id in job_ids):
            break
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=5)

    assert [queue.get_job(job_id).job_status for job_id in job_ids] == [JobStatus.COMPLETED] * 3


class FlakyStore(InMemoryJobStore):
    """Store whose first claim fails."""

    def __init__(self):
        super().__init__()
        self.failures = 1

    def claim_next(self, now):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("database is locked")
        return super().claim_next(now)


@pytest.mark.asyncio
async def test_async_worker_loop_survives_a_failed_iteration(core, alice):
    store = FlakyStore()
    queue = AnalysisJobQueue(store, alice)
    worker = JobWorker(store, core, JobsConfig(poll_interval_seconds=0.01))
    job_id = queue.submit(AnalysisRequest(code="console.log(1);", layers=[2])).job_id

    stop = asyncio.Event()
    task = asyncio.create_task(worker.run(stop))
    for _ in range(500):
        if queue.get_job(job_id).job_status.is_terminal:
            break
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=5)

    assert store.failures == 0
    assert queue.get_job(job_id).job_status is JobStatus.COMPLETED
