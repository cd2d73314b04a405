"""Job management primitives for asynchronous document generation."""

from .models import InvalidTransition, Job, JobKind, JobProgress, JobStatus, RenderStatus  # noqa: F401
from .store import JobStore  # noqa: F401
from .tracker import JobNotFound, ProgressTracker  # noqa: F401
from .runner import JobRunner  # noqa: F401

__all__ = [
    "InvalidTransition",
    "Job",
    "JobKind",
    "JobNotFound",
    "JobProgress",
    "JobRunner",
    "JobStatus",
    "JobStore",
    "ProgressTracker",
    "RenderStatus",
]
