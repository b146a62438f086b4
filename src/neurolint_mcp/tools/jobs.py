"""
Job tools: submit, poll, cancel and list asynchronous analyses.

The job queue acts for the caller configured under ``server`` in
config.yaml. Jobs are persisted in SQLite when ``jobs.database_path`` is
set, otherwise in memory. A single background thread running the worker's
asyncio loop is started on the first submission.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Optional

from neurolint_mcp.jobs import AnalysisJobQueue, InMemoryJobStore, JobStore, JobWorker, SqliteJobStore
from neurolint_mcp.models import AnalysisRequest, Caller, JobSubmission
from neurolint_mcp.tools.analyzer import get_cached_core

logger = logging.getLogger(__name__)

_queue: AnalysisJobQueue | None = None
_worker: JobWorker | None = None
_worker_thread: threading.Thread | None = None
_worker_loop: asyncio.AbstractEventLoop | None = None
_stop_event: asyncio.Event | None = None
_started = threading.Event()
_lock = threading.Lock()


def _build_store() -> JobStore:
    database_path = get_cached_core().config.jobs.database_path
    if database_path:
        return SqliteJobStore(database_path)
    return InMemoryJobStore()


def get_queue() -> AnalysisJobQueue:
    """Return the cached queue, creating the store on first use."""
    global _queue, _worker
    with _lock:
        if _queue is None:
            core = get_cached_core()
            caller = Caller(user_id=core.config.server.user_id, tier=core.config.server.tier)
            store = _build_store()
            _queue = AnalysisJobQueue(store, caller, core.config.jobs)
            _worker = JobWorker(store, core, core.config.jobs)
            logger.info("Job queue initialized", extra={"user_id": caller.user_id, "tier": caller.tier})
        return _queue


async def _serve(worker: JobWorker) -> None:
    global _worker_loop, _stop_event
    _worker_loop = asyncio.get_running_loop()
    _stop_event = asyncio.Event()
    _started.set()
    await worker.run(_stop_event)


def ensure_worker() -> None:
    """Start the background worker thread if it is not running."""
    global _worker_thread
    get_queue()
    with _lock:
        if _worker_thread is not None and _worker_thread.is_alive():
            return
        _started.clear()
        _worker_thread = threading.Thread(
            target=asyncio.run, args=(_serve(_worker),), name="neurolint-job-worker", daemon=True
        )
        _worker_thread.start()


def stop_worker(timeout: float = 5.0) -> None:
    """Signal the worker loop to stop and wait for its thread."""
    global _worker_thread, _worker_loop, _stop_event
    thread = _worker_thread
    if thread is not None and thread.is_alive():
        _started.wait(timeout)
        if _worker_loop is not None and _stop_event is not None:
            _worker_loop.call_soon_threadsafe(_stop_event.set)
        thread.join(timeout)
    _worker_thread = None
    _worker_loop = None
    _stop_event = None


def reset_jobs() -> None:
    """Stop the worker and drop the cached queue and store."""
    global _queue, _worker
    stop_worker()
    with _lock:
        _queue = None
        _worker = None


def submit_job(
    code: str,
    filename: Optional[str] = None,
    layers: Optional[list[int]] = None,
    priority: Optional[str] = None,
    apply_fixes: bool = False,
    project_id: Optional[str] = None,
) -> JobSubmission:
    """Queue an analysis and start the worker if needed."""
    request = AnalysisRequest(
        code=code,
        filename=filename,
        layers=layers,
        priority=priority,
        project_id=project_id,
        options={"apply_fixes": apply_fixes},
    )
    submission = get_queue().submit(request)
    ensure_worker()
    return submission


def get_job_status(job_id: str) -> Optional[dict[str, Any]]:
    job = get_queue().get_job(job_id)
    return job.view().model_dump(mode="json") if job else None


def cancel_job(job_id: str) -> bool:
    return get_queue().cancel_job(job_id)


def list_jobs(limit: int = 10) -> list[dict[str, Any]]:
    return [job.view().model_dump(mode="json") for job in get_queue().list_jobs(limit)]
