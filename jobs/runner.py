"""Background execution of generation jobs on a pool of worker threads."""
from __future__ import annotations

import queue
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import JOB_WORKERS
from domain.generation_policy import clamp_prompt_count, clamp_section_count
from observability.logger import bind_trace_id, clear_trace_id, get_logger
from observability.metrics import get_registry

from .models import Job, JobKind
from .store import JobStore

LOGGER = get_logger("ebook_factory.jobs.runner")
REGISTRY = get_registry()
QUEUE_GAUGE = REGISTRY.gauge("jobs.queue_length")
ACTIVE_GAUGE = REGISTRY.gauge("jobs.active")

_SHUTDOWN = "__shutdown__"


@dataclass
class RunnerTask:
    job_id: str
    topic: str
    requested_sections: int
    trace_id: Optional[str] = None
    kind: JobKind = JobKind.EBOOK
    requested_prompts: int = 0


class JobRunner:
    """Fire-and-forget job execution.

    ``submit`` stores the job as ``pending`` and returns at once; a worker
    thread later hands it to the orchestrator. Results are observed only
    through the job store. Prompt-pack jobs share the queue and go to
    ``prompt_generator`` instead.
    """

    def __init__(
        self,
        store: JobStore,
        orchestrator: Any,
        *,
        prompt_generator: Any = None,
        workers: int = JOB_WORKERS,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._prompt_generator = prompt_generator
        self._workers = max(1, int(workers))
        self._tasks: "queue.Queue[RunnerTask]" = queue.Queue()
        self._events: Dict[str, threading.Event] = {}
        self._events_lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._started = False
        self._start_lock = threading.Lock()

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def orchestrator(self) -> Any:
        return self._orchestrator

    @property
    def prompt_generator(self) -> Any:
        return self._prompt_generator

    def start(self) -> None:
        with self._start_lock:
            if self._started:
                return
            for number in range(self._workers):
                thread = threading.Thread(target=self._worker, name=f"job-runner-{number}", daemon=True)
                thread.start()
                self._threads.append(thread)
            self._started = True

    def stop(self) -> None:
        with self._start_lock:
            if not self._started:
                return
            for _ in self._threads:
                self._tasks.put(RunnerTask(job_id=_SHUTDOWN, topic="", requested_sections=0))
            for thread in self._threads:
                thread.join(timeout=1.0)
            self._threads.clear()
            self._started = False

    def submit(self, topic: str, requested_sections: Any = None, *, trace_id: Optional[str] = None) -> Job:
        normalized_topic = (topic or "").strip()
        if not normalized_topic:
            raise ValueError("topic must not be empty")
        job = Job(
            id=uuid.uuid4().hex,
            topic=normalized_topic,
            requested_sections=clamp_section_count(requested_sections),
            trace_id=trace_id,
        )
        self._enqueue(
            job,
            RunnerTask(
                job_id=job.id,
                topic=job.topic,
                requested_sections=job.requested_sections,
                trace_id=trace_id,
            ),
        )
        LOGGER.info("job_enqueued", extra={"job_id": job.id, "requested_sections": job.requested_sections})
        return job

    def submit_prompts(self, topic: str, count: Any = None, *, trace_id: Optional[str] = None) -> Job:
        if self._prompt_generator is None:
            raise RuntimeError("prompt pack generation is not configured")
        normalized_topic = (topic or "").strip()
        if not normalized_topic:
            raise ValueError("topic must not be empty")
        job = Job(
            id=uuid.uuid4().hex,
            topic=normalized_topic,
            requested_sections=0,
            kind=JobKind.PROMPTS,
            requested_prompts=clamp_prompt_count(count),
            trace_id=trace_id,
        )
        self._enqueue(
            job,
            RunnerTask(
                job_id=job.id,
                topic=job.topic,
                requested_sections=0,
                trace_id=trace_id,
                kind=JobKind.PROMPTS,
                requested_prompts=job.requested_prompts,
            ),
        )
        LOGGER.info("job_enqueued", extra={"job_id": job.id, "requested_prompts": job.requested_prompts})
        return job

    def retry_render(self, job_id: str) -> bool:
        """Re-render a completed job with the renderer matching its kind."""

        snapshot = self._store.snapshot(job_id)
        if snapshot is None:
            raise KeyError(job_id)
        if snapshot.get("kind") == JobKind.PROMPTS.value:
            if self._prompt_generator is None:
                raise KeyError(job_id)
            return self._prompt_generator.retry_render(job_id)
        return self._orchestrator.retry_render(job_id)

    def _enqueue(self, job: Job, task: RunnerTask) -> None:
        self._store.create(job)
        with self._events_lock:
            self._events[job.id] = threading.Event()
        self._tasks.put(task)
        QUEUE_GAUGE.set(float(self._tasks.qsize()))
        self.start()

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        with self._events_lock:
            event = self._events.get(job_id)
        if not event:
            snapshot = self._store.snapshot(job_id)
            return bool(snapshot and snapshot.get("status") in {"completed", "failed"})
        return event.wait(timeout)

    def get_job(self, job_id: str) -> Optional[dict]:
        return self._store.snapshot(job_id)

    def queue_length(self) -> int:
        return self._tasks.qsize()

    def _worker(self) -> None:
        while True:
            task = self._tasks.get()
            QUEUE_GAUGE.set(float(self._tasks.qsize()))
            if task.job_id == _SHUTDOWN:
                break
            ACTIVE_GAUGE.add(1)
            bind_trace_id(task.trace_id)
            try:
                LOGGER.info("job_started", extra={"job_id": task.job_id})
                if task.kind is JobKind.PROMPTS:
                    self._prompt_generator.generate(task.job_id, task.topic, task.requested_prompts)
                else:
                    self._orchestrator.generate(task.job_id, task.topic, task.requested_sections)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("job_crashed", extra={"job_id": task.job_id, "error": str(exc)})
            finally:
                clear_trace_id()
                ACTIVE_GAUGE.add(-1)
                with self._events_lock:
                    event = self._events.pop(task.job_id, None)
                if event:
                    event.set()


__all__ = ["JobRunner", "RunnerTask"]
