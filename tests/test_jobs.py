"""Tests for the job queue and the job stores."""

from datetime import timedelta

import pytest

from neurolint_mcp.exceptions import JobStoreError, JobValidationError
from neurolint_mcp.jobs import AnalysisJobQueue, SqliteJobStore
from neurolint_mcp.jobs.queue import estimated_wait, normalize_layers, resolve_priority
from neurolint_mcp.models import AnalysisRequest, Caller, JobPriority, JobStatus


def _queue(store, caller, clock):
    return AnalysisJobQueue(store, caller, clock=clock)


# =============================================================================
# Priority and layer validation
# =============================================================================


def test_free_tier_default_priority():
    """A free caller with no priority gets normal and a 1-2 minute estimate."""
    priority = resolve_priority("free")
    assert priority is JobPriority.NORMAL
    assert estimated_wait(priority) == "1-2 minutes"


@pytest.mark.parametrize(
    "tier, requested, expected",
    [
        ("free", "urgent", JobPriority.NORMAL),
        ("free", "low", JobPriority.NORMAL),
        ("premium", None, JobPriority.NORMAL),
        ("premium", "low", JobPriority.LOW),
        ("premium", "urgent", JobPriority.HIGH),
        ("enterprise", None, JobPriority.HIGH),
        ("enterprise", "urgent", JobPriority.URGENT),
    ],
)
def test_priority_is_capped_by_tier(tier, requested, expected):
    assert resolve_priority(tier, requested) is expected


def test_normalize_layers():
    assert normalize_layers(None) == [1, 2, 3, 4, 5, 6, 7, 8]
    assert normalize_layers([3, 2, 9, 2]) == [2, 3]
    with pytest.raises(JobValidationError):
        normalize_layers([0, 9])
    with pytest.raises(JobValidationError):
        normalize_layers([])


# =============================================================================
# Queue
# =============================================================================


def test_submit_creates_pending_job(store, alice, clock):
    queue = _queue(store, alice, clock)
    submission = queue.submit(AnalysisRequest(code="const a = 1;", layers=[2, 3], project_id="p1"))

    assert submission.status == "pending"
    assert submission.estimated_wait == "1-2 minutes"

    job = queue.get_job(submission.job_id)
    assert job.user_id == "alice"
    assert job.project_id == "p1"
    assert job.layers == [2, 3]
    assert job.progress == 0
    assert job.expires_at - job.created_at == timedelta(hours=24)


def test_submit_rejects_request_without_valid_layers(store, alice, clock):
    queue = _queue(store, alice, clock)
    with pytest.raises(JobValidationError):
        queue.submit(AnalysisRequest(code="x", layers=[42]))
    assert queue.list_jobs() == []


def test_jobs_are_isolated_by_owner(store, alice, bob, clock):
    alice_queue = _queue(store, alice, clock)
    bob_queue = _queue(store, bob, clock)
    job_id = alice_queue.submit(AnalysisRequest(code="const a = 1;")).job_id

    assert bob_queue.get_job(job_id) is None
    assert bob_queue.cancel_job(job_id) is False
    assert bob_queue.list_jobs() == []
    assert alice_queue.get_job(job_id).job_status is JobStatus.PENDING


def test_list_jobs_newest_first(store, alice, clock):
    queue = _queue(store, alice, clock)
    ids = [queue.submit(AnalysisRequest(code=f"const a = {i};")).job_id for i in range(3)]

    assert [job.id for job in queue.list_jobs()] == list(reversed(ids))
    assert len(queue.list_jobs(limit=2)) == 2


def test_cancel_pending_job(store, alice, clock):
    queue = _queue(store, alice, clock)
    job_id = queue.submit(AnalysisRequest(code="const a = 1;")).job_id

    assert queue.cancel_job(job_id) is True
    job = queue.get_job(job_id)
    assert job.job_status is JobStatus.CANCELLED
    assert job.completed_at is not None
    # Terminal jobs stay terminal.
    assert queue.cancel_job(job_id) is False
    assert store.claim_next(clock()) is None


def test_cancel_unknown_job(store, alice, clock):
    assert _queue(store, alice, clock).cancel_job("missing") is False


# =============================================================================
# Store
# =============================================================================


def test_claim_order_is_priority_then_fifo(store, clock):
    enterprise = _queue(store, Caller(user_id="e", tier="enterprise"), clock)
    free = _queue(store, Caller(user_id="f", tier="free"), clock)

    first_normal = free.submit(AnalysisRequest(code="1")).job_id
    second_normal = free.submit(AnalysisRequest(code="2")).job_id
    high = enterprise.submit(AnalysisRequest(code="3")).job_id
    urgent = enterprise.submit(AnalysisRequest(code="4", priority="urgent")).job_id

    claimed = [store.claim_next(clock()).id for _ in range(4)]
    assert claimed == [urgent, high, first_normal, second_normal]
    assert store.claim_next(clock()) is None


def test_claim_marks_processing(store, alice, clock):
    queue = _queue(store, alice, clock)
    job_id = queue.submit(AnalysisRequest(code="x")).job_id

    job = store.claim_next(clock())
    assert job.id == job_id
    assert job.job_status is JobStatus.PROCESSING
    assert job.started_at is not None


def test_illegal_transitions_are_refused(store, alice, clock):
    queue = _queue(store, alice, clock)
    job_id = queue.submit(AnalysisRequest(code="x")).job_id

    # pending -> completed skips processing
    assert store.transition(job_id, (JobStatus.PENDING,), JobStatus.COMPLETED) is None
    store.claim_next(clock())
    assert store.transition(job_id, (JobStatus.PROCESSING,), JobStatus.FAILED, error="boom") is not None
    assert store.transition(job_id, (JobStatus.FAILED,), JobStatus.PROCESSING) is None
    assert store.get(job_id).error == "boom"


def test_transition_rejects_immutable_fields(store, alice, clock):
    job_id = _queue(store, alice, clock).submit(AnalysisRequest(code="x")).job_id
    with pytest.raises(JobStoreError):
        store.transition(job_id, (JobStatus.PENDING,), JobStatus.CANCELLED, user_id="mallory")


def test_progress_is_monotonic_and_processing_only(store, alice, clock):
    job_id = _queue(store, alice, clock).submit(AnalysisRequest(code="x")).job_id
    assert store.update_progress(job_id, 10) is False

    store.claim_next(clock())
    assert store.update_progress(job_id, 60)
    assert store.update_progress(job_id, 40)
    assert store.get(job_id).progress == 60


def test_duplicate_insert_raises(store, alice, clock):
    job = _queue(store, alice, clock).create_job(AnalysisRequest(code="x"))
    with pytest.raises(JobStoreError):
        store.insert(job)


def test_delete_expired_only_removes_finished_jobs(store, alice, clock):
    queue = _queue(store, alice, clock)
    finished = queue.submit(AnalysisRequest(code="x")).job_id
    pending = queue.submit(AnalysisRequest(code="y")).job_id
    queue.cancel_job(finished)

    clock.advance(hours=25)
    assert store.delete_expired(clock()) == 1
    assert store.get(finished) is None
    assert store.get(pending) is not None


def test_sqlite_store_persists_across_connections(tmp_path, alice, clock):
    path = tmp_path / "jobs.db"
    with SqliteJobStore(path) as first:
        job_id = _queue(first, alice, clock).submit(AnalysisRequest(code="const a = 1;", layers=[2])).job_id
        first.claim_next(clock())

    with SqliteJobStore(path) as second:
        job = second.get(job_id)
        assert job.job_status is JobStatus.PROCESSING
        assert job.layers == [2]
        assert job.user_id == "alice"
