"""In-memory job store with TTL semantics and patch updates."""
from __future__ import annotations

import threading
import time
from typing import Any, Dict, List, Mapping, Optional

from .models import Job, JobKind


class JobStore:
    """Thread-safe in-memory storage for jobs.

    ``update`` merges partial patches under the store lock, so a reader calling
    ``snapshot`` always sees either the state before or after a patch.
    """

    def __init__(self, *, ttl_seconds: int = 3600) -> None:
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._jobs: Dict[str, Job] = {}
        self._expiry: Dict[str, float] = {}
        self._lock = threading.RLock()

    def create(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"job {job.id} already exists")
            self._jobs[job.id] = job
            self._expiry[job.id] = time.time() + self._ttl_seconds
            self._purge_expired_locked()
            return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            self._purge_expired_locked()
            return self._jobs.get(job_id)

    def update(self, job_id: str, patch: Mapping[str, Any]) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return None
            job.apply(patch)
            self._expiry[job_id] = time.time() + self._ttl_seconds
            return job

    def touch(self, job_id: str) -> None:
        with self._lock:
            if job_id in self._jobs:
                self._expiry[job_id] = time.time() + self._ttl_seconds

    def delete(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)
            self._expiry.pop(job_id, None)

    def snapshot(self, job_id: str) -> Optional[dict]:
        with self._lock:
            job = self.get(job_id)
            return job.to_dict() if job else None

    def list_snapshots(self, kind: Optional[JobKind | str] = None) -> List[dict]:
        """Snapshots of the live jobs, newest first, optionally of one kind."""

        wanted = JobKind(kind) if kind is not None else None
        with self._lock:
            self._purge_expired_locked()
            # Insertion order breaks ties between jobs created within the same clock tick.
            ordered = sorted(
                enumerate(self._jobs.values()), key=lambda item: (item[1].created_at, item[0]), reverse=True
            )
            return [job.to_dict() for _, job in ordered if wanted is None or job.kind is wanted]

    def _purge_expired_locked(self) -> None:
        now = time.time()
        expired = [job_id for job_id, deadline in self._expiry.items() if deadline <= now]
        for job_id in expired:
            self._jobs.pop(job_id, None)
            self._expiry.pop(job_id, None)

    def __len__(self) -> int:  # pragma: no cover - trivial
        with self._lock:
            self._purge_expired_locked()
            return len(self._jobs)
