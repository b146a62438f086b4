"""Asynchronous analysis jobs: queue, persistence and worker."""

from neurolint_mcp.jobs.queue import AnalysisJobQueue, estimated_wait, normalize_layers, resolve_priority
from neurolint_mcp.jobs.store import InMemoryJobStore, JobStore, SqliteJobStore
from neurolint_mcp.jobs.worker import JobWorker

__all__ = [
    "AnalysisJobQueue",
    "InMemoryJobStore",
    "JobStore",
    "JobWorker",
    "SqliteJobStore",
    "estimated_wait",
    "normalize_layers",
    "resolve_priority",
]
