"""Data models describing asynchronous document generation jobs."""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    """Return a timezone-aware UTC datetime."""

    return datetime.now(timezone.utc)


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.strftime(ISO_FORMAT) if value else None


class JobStatus(str, Enum):
    """Lifecycle states for a generation job."""

    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.COMPLETED, JobStatus.FAILED}


class JobKind(str, Enum):
    """What a job produces."""

    EBOOK = "ebook"
    PROMPTS = "prompts"


class RenderStatus(str, Enum):
    """State of the rendered artifact, tracked apart from the job status."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.GENERATING, JobStatus.FAILED}),
    JobStatus.GENERATING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    """Raised when a status change would move a job backwards or out of a terminal state."""

    def __init__(self, current: JobStatus, requested: JobStatus) -> None:
        super().__init__(f"cannot move job from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


@dataclass
class JobProgress:
    current_batch: int = 0
    total_batches: int = 0
    sections_generated: int = 0

    def merge(self, patch: Mapping[str, Any]) -> None:
        for key, value in patch.items():
            if key not in {"current_batch", "total_batches", "sections_generated"}:
                raise KeyError(f"unknown progress field: {key}")
            setattr(self, key, max(0, int(value)))

    def reset(self) -> None:
        self.current_batch = 0
        self.total_batches = 0
        self.sections_generated = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "sections_generated": self.sections_generated,
        }


_PATCHABLE_FIELDS = frozenset(
    {
        "message",
        "document",
        "word_count",
        "error",
        "resource_url",
        "render_status",
        "render_error",
        "trace_id",
    }
)
_SPECIAL_FIELDS = frozenset({"status", "progress", "degradation_flags"})


@dataclass
class Job:
    """Representation of one topic-to-document request."""

    id: str
    topic: str
    requested_sections: int
    kind: JobKind = JobKind.EBOOK
    requested_prompts: int = 0
    status: JobStatus = JobStatus.PENDING
    progress: JobProgress = field(default_factory=JobProgress)
    message: str = "Queued"
    document: Optional[Dict[str, Any]] = None
    word_count: int = 0
    error: Optional[str] = None
    resource_url: Optional[str] = None
    render_status: RenderStatus = RenderStatus.PENDING
    render_error: Optional[str] = None
    degradation_flags: List[str] = field(default_factory=list)
    trace_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    last_event_at: datetime = field(default_factory=utcnow)

    def transition(self, status: JobStatus | str) -> None:
        target = JobStatus(status)
        if target is self.status:
            return
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(self.status, target)
        self.status = target
        now = utcnow()
        if target is JobStatus.GENERATING:
            self.started_at = self.started_at or now
        if target.is_terminal:
            self.finished_at = now
        self.last_event_at = now

    def add_flags(self, flags: Iterable[str]) -> None:
        for flag in flags:
            if flag and flag not in self.degradation_flags:
                self.degradation_flags.append(flag)

    def apply(self, patch: Mapping[str, Any]) -> None:
        """Merge a partial update; untouched fields keep their values."""

        unknown = set(patch) - _PATCHABLE_FIELDS - _SPECIAL_FIELDS
        if unknown:
            raise KeyError(f"unknown job fields: {', '.join(sorted(unknown))}")
        # The status check runs first so a rejected transition leaves the job untouched.
        if "status" in patch:
            self.transition(patch["status"])
        progress = patch.get("progress")
        if progress is not None:
            self.progress.merge(progress)
        flags = patch.get("degradation_flags")
        if flags:
            self.add_flags(flags)
        for key in _PATCHABLE_FIELDS.intersection(patch):
            value = patch[key]
            if key == "render_status":
                value = RenderStatus(value)
            elif key == "word_count":
                value = int(value or 0)
            setattr(self, key, value)
        self.last_event_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "kind": self.kind.value,
            "requested_sections": self.requested_sections,
            "requested_prompts": self.requested_prompts,
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "message": self.message,
            "document": copy.deepcopy(self.document),
            "word_count": self.word_count,
            "error": self.error,
            "resource_url": self.resource_url,
            "render_status": self.render_status.value,
            "render_error": self.render_error,
            "degradation_flags": list(self.degradation_flags),
            "trace_id": self.trace_id,
            "created_at": _format_ts(self.created_at),
            "started_at": _format_ts(self.started_at),
            "finished_at": _format_ts(self.finished_at),
            "last_event_at": _format_ts(self.last_event_at),
        }


__all__ = [
    "ISO_FORMAT",
    "InvalidTransition",
    "Job",
    "JobKind",
    "JobProgress",
    "JobStatus",
    "RenderStatus",
    "utcnow",
]
