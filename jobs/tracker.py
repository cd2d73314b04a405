"""Progress recording for a single job on top of the job store."""
from __future__ import annotations

from typing import Any, Dict, Optional

from observability.logger import get_logger

from .models import JobStatus, RenderStatus
from .store import JobStore

LOGGER = get_logger("ebook_factory.jobs.tracker")


class JobNotFound(LookupError):
    """Raised when the tracked job is no longer present in the store."""


class ProgressTracker:
    """Lifecycle writes for one job; every method is a single atomic patch."""

    def __init__(self, store: JobStore, job_id: str) -> None:
        self._store = store
        self.job_id = job_id

    def _update(self, patch: Dict[str, Any]) -> None:
        if self._store.update(self.job_id, patch) is None:
            raise JobNotFound(self.job_id)

    def start(self, total_batches: int) -> None:
        self._update(
            {
                "status": JobStatus.GENERATING,
                "progress": {"current_batch": 0, "total_batches": total_batches, "sections_generated": 0},
                "message": f"Starting generation in {total_batches} batch(es)",
            }
        )

    def batch_completed(self, batch_index: int, sections_generated: int, message: str) -> None:
        self._update(
            {
                "progress": {"current_batch": batch_index + 1, "sections_generated": sections_generated},
                "message": message,
            }
        )

    def flag(self, *flags: str) -> None:
        if flags:
            self._update({"degradation_flags": list(flags)})

    def complete(
        self, document: Dict[str, Any], word_count: int, *, message: str = "Ebook generated successfully"
    ) -> None:
        self._update(
            {
                "status": JobStatus.COMPLETED,
                "document": document,
                "word_count": word_count,
                "message": message,
            }
        )
        LOGGER.info("job_completed", extra={"job_id": self.job_id, "word_count": word_count})

    def fail(self, error: str) -> None:
        self._update(
            {
                "status": JobStatus.FAILED,
                "error": error,
                "message": f"Generation failed: {error}",
                "progress": {"current_batch": 0, "total_batches": 0, "sections_generated": 0},
            }
        )
        LOGGER.warning("job_failed", extra={"job_id": self.job_id, "error": error})

    def render_succeeded(self, resource_url: str) -> None:
        self._update(
            {"resource_url": resource_url, "render_status": RenderStatus.SUCCEEDED, "render_error": None}
        )

    def render_failed(self, error: Optional[str]) -> None:
        self._update({"render_status": RenderStatus.FAILED, "render_error": error or "render_failed"})


__all__ = ["JobNotFound", "ProgressTracker"]
