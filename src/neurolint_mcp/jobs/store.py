"""
Persistence for analysis jobs.

The store is the concurrency boundary of the job system. Every status change
goes through :meth:`JobStore.transition`, an atomic compare-and-set on the
current status, so two workers can never both claim a job and a cancelled
job can never be completed afterwards.

Two implementations are provided: :class:`InMemoryJobStore` for a single
process and :class:`SqliteJobStore` for a file shared between processes.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from neurolint_mcp.exceptions import JobStoreError
from neurolint_mcp.models import AnalysisJob, AnalysisJobResult, JobStatus

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)

# Fields a transition may change alongside the status.
MUTABLE_FIELDS = frozenset({"started_at", "completed_at", "result", "error", "progress"})


def _check_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise JobStoreError(f"fields cannot be changed by a transition: {sorted(unknown)}")


class JobStore(ABC):
    """Abstract job persistence with atomic status transitions."""

    @abstractmethod
    def insert(self, job: AnalysisJob) -> None:
        """Persist a new job. Raises JobStoreError if the id exists."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[AnalysisJob]:
        """Return a job by id, or None."""

    @abstractmethod
    def list_by_owner(self, user_id: str, limit: int = 10) -> list[AnalysisJob]:
        """Jobs owned by ``user_id``, newest first."""

    @abstractmethod
    def transition(
        self,
        job_id: str,
        expected: Iterable[JobStatus],
        target: JobStatus,
        **changes: Any,
    ) -> Optional[AnalysisJob]:
        """
        Move a job to ``target`` if its status is one of ``expected``.

        The check and the write happen atomically. Illegal transitions
        (see :meth:`JobStatus.can_transition_to`) are refused.

        Returns:
            The updated job, or None if the job is missing or its status
            did not match.
        """

    @abstractmethod
    def update_progress(self, job_id: str, progress: int) -> bool:
        """Raise progress of a processing job; never lowers it."""

    @abstractmethod
    def claim_next(self, now: datetime) -> Optional[AnalysisJob]:
        """Atomically move the best pending job to processing and return it."""

    @abstractmethod
    def delete_expired(self, now: datetime) -> int:
        """Delete terminal jobs whose expiry has passed; return the count."""


# =============================================================================
# In-memory store
# =============================================================================


class InMemoryJobStore(JobStore):
    """
    Dict-backed store guarded by a single lock.

    Jobs are copied on the way in and out so callers never hold a
    reference to stored state.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, AnalysisJob] = {}
        self._lock = threading.Lock()

    def insert(self, job: AnalysisJob) -> None:
        with self._lock:
            if job.id in self._jobs:
                raise JobStoreError(f"job {job.id} already exists")
            self._jobs[job.id] = job.model_copy(deep=True)

    def get(self, job_id: str) -> Optional[AnalysisJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def list_by_owner(self, user_id: str, limit: int = 10) -> list[AnalysisJob]:
        with self._lock:
            owned = [job for job in self._jobs.values() if job.user_id == user_id]
        owned.sort(key=lambda job: job.created_at, reverse=True)
        return [job.model_copy(deep=True) for job in owned[: max(0, limit)]]

    def _transition_locked(
        self,
        job_id: str,
        expected: Iterable[JobStatus],
        target: JobStatus,
        changes: dict[str, Any],
    ) -> Optional[AnalysisJob]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        current = job.job_status
        if current not in set(expected) or not current.can_transition_to(target):
            return None
        updated = job.model_copy(update={"status": target.value, **changes}, deep=True)
        self._jobs[job_id] = updated
        return updated.model_copy(deep=True)

    def transition(
        self,
        job_id: str,
        expected: Iterable[JobStatus],
        target: JobStatus,
        **changes: Any,
    ) -> Optional[AnalysisJob]:
        _check_changes(changes)
        with self._lock:
            return self._transition_locked(job_id, expected, target, changes)

    def update_progress(self, job_id: str, progress: int) -> bool:
        progress = max(0, min(100, progress))
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.job_status is not JobStatus.PROCESSING:
                return False
            if progress > job.progress:
                self._jobs[job_id] = job.model_copy(update={"progress": progress})
            return True

    def claim_next(self, now: datetime) -> Optional[AnalysisJob]:
        with self._lock:
            pending = [job for job in self._jobs.values() if job.job_status is JobStatus.PENDING]
            if not pending:
                return None
            pending.sort(key=lambda job: (-job.job_priority.rank, job.created_at))
            return self._transition_locked(
                pending[0].id, (JobStatus.PENDING,), JobStatus.PROCESSING, {"started_at": now}
            )

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.job_status.is_terminal and job.expires_at <= now
            ]
            for job_id in expired:
                del self._jobs[job_id]
        return len(expired)


# =============================================================================
# SQLite store
# =============================================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS analysis_jobs (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    project_id    TEXT,
    status        TEXT NOT NULL DEFAULT 'pending',
    priority      TEXT NOT NULL DEFAULT 'normal',
    priority_rank INTEGER NOT NULL DEFAULT 1,
    code          TEXT NOT NULL,
    filename      TEXT,
    layers        TEXT NOT NULL DEFAULT '[]',
    options       TEXT NOT NULL DEFAULT '{}',
    result        TEXT,
    error         TEXT,
    progress      INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT NOT NULL,
    started_at    TEXT,
    completed_at  TEXT,
    expires_at    TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_analysis_jobs_user ON analysis_jobs(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_analysis_jobs_claim ON analysis_jobs(status, priority_rank, created_at);
"""

CLAIM_CANDIDATES = 10


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SqliteJobStore(JobStore):
    """
    SQLite-backed store.

    Transitions are single guarded ``UPDATE ... WHERE id = ? AND status IN
    (...)`` statements; a zero rowcount means another writer won. The
    connection is shared between threads and serialised with a lock.
    """

    def __init__(self, db_path: str | Path = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            self.db_path,
            isolation_level="DEFERRED",
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()
        logger.info("SqliteJobStore initialized", extra={"db_path": self.db_path})

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> SqliteJobStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> AnalysisJob:
        data = dict(row)
        data.pop("priority_rank", None)
        data["layers"] = json.loads(data["layers"])
        data["options"] = json.loads(data["options"])
        data["result"] = json.loads(data["result"]) if data["result"] else None
        return AnalysisJob.model_validate(data)

    @staticmethod
    def _encode(field: str, value: Any) -> Any:
        if field == "result":
            if value is None:
                return None
            if isinstance(value, AnalysisJobResult):
                return value.model_dump_json()
            return json.dumps(value)
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    # ------------------------------------------------------------------
    # JobStore interface
    # ------------------------------------------------------------------

    def insert(self, job: AnalysisJob) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO analysis_jobs (id, user_id, project_id, status, priority, priority_rank, "
                    "code, filename, layers, options, result, error, progress, created_at, started_at, "
                    "completed_at, expires_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        job.id,
                        job.user_id,
                        job.project_id,
                        job.job_status.value,
                        job.job_priority.value,
                        job.job_priority.rank,
                        job.code,
                        job.filename,
                        json.dumps(job.layers),
                        json.dumps(job.options),
                        self._encode("result", job.result),
                        job.error,
                        job.progress,
                        _iso(job.created_at),
                        _iso(job.started_at),
                        _iso(job.completed_at),
                        _iso(job.expires_at),
                    ),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as e:
                self._conn.rollback()
                raise JobStoreError(f"job {job.id} already exists") from e
            except sqlite3.Error as e:
                self._conn.rollback()
                raise JobStoreError(f"cannot insert job {job.id}: {e}") from e

    def get(self, job_id: str) -> Optional[AnalysisJob]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM analysis_jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def list_by_owner(self, user_id: str, limit: int = 10) -> list[AnalysisJob]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM analysis_jobs WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
                (user_id, max(0, limit)),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def transition(
        self,
        job_id: str,
        expected: Iterable[JobStatus],
        target: JobStatus,
        **changes: Any,
    ) -> Optional[AnalysisJob]:
        _check_changes(changes)
        allowed = [status.value for status in expected if status.can_transition_to(target)]
        if not allowed:
            return None

        assignments = ["status = ?"] + [f"{field} = ?" for field in changes]
        params: list[Any] = [target.value] + [self._encode(f, v) for f, v in changes.items()]
        status_ph = ",".join("?" * len(allowed))

        with self._lock:
            try:
                cursor = self._conn.execute(
                    f"UPDATE analysis_jobs SET {', '.join(assignments)} "
                    f"WHERE id = ? AND status IN ({status_ph})",
                    [*params, job_id, *allowed],
                )
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise JobStoreError(f"cannot transition job {job_id}: {e}") from e
            if cursor.rowcount == 0:
                return None
            return self.get(job_id)

    def update_progress(self, job_id: str, progress: int) -> bool:
        progress = max(0, min(100, progress))
        with self._lock:
            try:
                cursor = self._conn.execute(
                    "UPDATE analysis_jobs SET progress = MAX(progress, ?) WHERE id = ? AND status = ?",
                    (progress, job_id, JobStatus.PROCESSING.value),
                )
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise JobStoreError(f"cannot update progress of job {job_id}: {e}") from e
            return cursor.rowcount > 0

    def claim_next(self, now: datetime) -> Optional[AnalysisJob]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id FROM analysis_jobs WHERE status = ? "
                "ORDER BY priority_rank DESC, created_at ASC LIMIT ?",
                (JobStatus.PENDING.value, CLAIM_CANDIDATES),
            ).fetchall()
            for row in rows:
                job = self.transition(row["id"], (JobStatus.PENDING,), JobStatus.PROCESSING, started_at=now)
                if job is not None:
                    return job
                logger.debug(f"claim_next: job {row['id']} was claimed by another worker")
        return None

    def delete_expired(self, now: datetime) -> int:
        terminal = [status.value for status in TERMINAL_STATUSES]
        with self._lock:
            try:
                cursor = self._conn.execute(
                    f"DELETE FROM analysis_jobs WHERE expires_at <= ? AND status IN ({','.join('?' * len(terminal))})",
                    (now.isoformat(), *terminal),
                )
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise JobStoreError(f"cannot delete expired jobs: {e}") from e
            return cursor.rowcount
