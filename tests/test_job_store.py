from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from jobs import InvalidTransition, Job, JobKind, JobNotFound, JobStatus, JobStore, ProgressTracker  # noqa: E402


@pytest.fixture
def job_store() -> JobStore:
    return JobStore(ttl_seconds=30)


@pytest.fixture
def job(job_store) -> Job:
    return job_store.create(Job(id="job-1", topic="Chess openings", requested_sections=10))


def test_new_job_is_pending(job_store, job):
    snapshot = job_store.snapshot(job.id)
    assert snapshot["status"] == "pending"
    assert snapshot["message"] == "Queued"
    assert snapshot["progress"] == {"current_batch": 0, "total_batches": 0, "sections_generated": 0}
    assert snapshot["render_status"] == "pending"
    assert snapshot["document"] is None


def test_duplicate_ids_are_rejected(job_store, job):
    with pytest.raises(ValueError):
        job_store.create(Job(id=job.id, topic="Other", requested_sections=2))


def test_update_merges_nested_progress(job_store, job):
    job_store.update(job.id, {"status": "generating", "progress": {"total_batches": 2}})
    job_store.update(job.id, {"progress": {"current_batch": 1, "sections_generated": 5}, "message": "Batch 1"})
    snapshot = job_store.snapshot(job.id)
    assert snapshot["progress"] == {"current_batch": 1, "total_batches": 2, "sections_generated": 5}
    assert snapshot["message"] == "Batch 1"
    assert snapshot["topic"] == "Chess openings"
    assert snapshot["started_at"] is not None


def test_update_unknown_job_returns_none(job_store):
    assert job_store.update("missing", {"message": "x"}) is None


def test_unknown_fields_are_rejected(job_store, job):
    with pytest.raises(KeyError):
        job_store.update(job.id, {"colour": "blue"})
    with pytest.raises(KeyError):
        job_store.update(job.id, {"progress": {"percent": 50}})


def test_terminal_status_is_final(job_store, job):
    job_store.update(job.id, {"status": JobStatus.GENERATING})
    job_store.update(job.id, {"status": JobStatus.COMPLETED, "word_count": 120})
    with pytest.raises(InvalidTransition):
        job_store.update(job.id, {"status": JobStatus.GENERATING, "message": "should not apply"})
    snapshot = job_store.snapshot(job.id)
    assert snapshot["status"] == "completed"
    assert snapshot["message"] != "should not apply"
    assert snapshot["finished_at"] is not None


def test_pending_cannot_skip_to_completed(job_store, job):
    with pytest.raises(InvalidTransition):
        job_store.update(job.id, {"status": "completed"})


def test_degradation_flags_accumulate_without_duplicates(job_store, job):
    job_store.update(job.id, {"degradation_flags": ["producer_fallback"]})
    job_store.update(job.id, {"degradation_flags": ["producer_fallback", "batch_1_recovered"]})
    assert job_store.snapshot(job.id)["degradation_flags"] == ["producer_fallback", "batch_1_recovered"]


def test_snapshot_is_a_copy(job_store, job):
    job_store.update(job.id, {"document": {"title": "T", "sections": []}})
    snapshot = job_store.snapshot(job.id)
    snapshot["document"]["title"] = "changed"
    assert job_store.snapshot(job.id)["document"]["title"] == "T"


def test_concurrent_progress_updates_are_atomic(job_store, job):
    job_store.update(job.id, {"status": "generating"})

    def _writer(value: int) -> None:
        for _ in range(200):
            job_store.update(job.id, {"progress": {"current_batch": value, "sections_generated": value * 5}})

    threads = [threading.Thread(target=_writer, args=(value,)) for value in range(1, 5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    progress = job_store.snapshot(job.id)["progress"]
    assert progress["sections_generated"] == progress["current_batch"] * 5


def test_tracker_failure_resets_counters(job_store, job):
    tracker = ProgressTracker(job_store, job.id)
    tracker.start(3)
    tracker.batch_completed(0, 5, "Batch 1/3")
    tracker.fail("boom")
    snapshot = job_store.snapshot(job.id)
    assert snapshot["status"] == "failed"
    assert snapshot["error"] == "boom"
    assert snapshot["progress"] == {"current_batch": 0, "total_batches": 0, "sections_generated": 0}


def test_tracker_raises_when_job_disappears(job_store, job):
    tracker = ProgressTracker(job_store, job.id)
    job_store.delete(job.id)
    with pytest.raises(JobNotFound):
        tracker.start(1)


def test_list_snapshots_newest_first_and_by_kind(job_store, job):
    pack = job_store.create(
        Job(id="pack-1", topic="Beekeeping", requested_sections=0, kind=JobKind.PROMPTS, requested_prompts=5)
    )
    later = job_store.create(Job(id="job-2", topic="Endgames", requested_sections=4))

    assert [item["id"] for item in job_store.list_snapshots()] == [later.id, pack.id, job.id]
    assert [item["id"] for item in job_store.list_snapshots(JobKind.EBOOK)] == [later.id, job.id]
    prompts_only = job_store.list_snapshots("prompts")
    assert [item["id"] for item in prompts_only] == [pack.id]
    assert prompts_only[0]["requested_prompts"] == 5
