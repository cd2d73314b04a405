from __future__ import annotations

import argparse
import json
import sys
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import artifacts_store
from config import BATCH_SIZE, PRODUCER_API_KEY, PRODUCER_MODEL
from domain.document_schema import StrictParseError, parse_batch_response, parse_title_response
from domain.generation_policy import clamp_section_count, plan_batches
from domain.models import Document, Section, count_words
from domain.prompt_builder import build_batch_prompt, build_title_prompt, fallback_description, fallback_title
from jobs.models import Job, JobKind, JobStatus
from jobs.store import JobStore
from jobs.tracker import JobNotFound, ProgressTracker
from observability.logger import get_logger, log_batch
from observability.metrics import get_registry
from renderer import PdfRenderer
from sanitizer import sanitize_document
from services.llm_client import build_default_client
from services.recovery import RecoveryTier, recover_document

LOGGER = get_logger("ebook_factory.orchestrate")
REGISTRY = get_registry()
COMPLETED_COUNTER = REGISTRY.counter("jobs.completed_total")
FAILED_COUNTER = REGISTRY.counter("jobs.failed_total")
RECOVERED_COUNTER = REGISTRY.counter("batches.recovered_total")
CANNED_COUNTER = REGISTRY.counter("batches.canned_total")
RENDER_FAILED_COUNTER = REGISTRY.counter("render.failed_total")
BATCH_TIMER = REGISTRY.timer("batches.duration_s")

NO_SECTIONS_ERROR = "No sections could be generated for this topic"


class NoSectionsGenerated(RuntimeError):
    """Raised when every batch came back without a usable section."""


@dataclass
class BatchOutcome:
    sections: List[Section] = field(default_factory=list)
    degradation_flags: List[str] = field(default_factory=list)
    tier: Optional[RecoveryTier] = None


class BatchOrchestrator:
    """Drive one job from topic to stored document.

    Batches run strictly in order because every prompt lists the titles that
    earlier batches produced. The accumulated section list lives only inside
    ``generate`` and is never shared between jobs.
    """

    def __init__(self, store: JobStore, producer: Any, renderer: Any, *, batch_size: int = BATCH_SIZE) -> None:
        self._store = store
        self._producer = producer
        self._renderer = renderer
        self._batch_size = max(1, int(batch_size))

    @property
    def producer(self) -> Any:
        return self._producer

    def generate(self, job_id: str, topic: str, requested_sections: int) -> None:
        tracker = ProgressTracker(self._store, job_id)
        try:
            self._run(tracker, job_id, topic, int(requested_sections))
        except JobNotFound:
            LOGGER.warning("job_missing", extra={"job_id": job_id})
        except NoSectionsGenerated:
            self._fail(tracker, NO_SECTIONS_ERROR)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("job_generation_error", extra={"job_id": job_id, "error": str(exc)})
            self._fail(tracker, str(exc) or exc.__class__.__name__)

    def retry_render(self, job_id: str) -> bool:
        """Render a completed job again; returns whether rendering succeeded."""

        snapshot = self._store.snapshot(job_id)
        if snapshot is None or snapshot.get("kind") != JobKind.EBOOK.value:
            raise KeyError(job_id)
        if snapshot["status"] != JobStatus.COMPLETED.value or not snapshot.get("document"):
            raise ValueError(f"job {job_id} has no completed document to render")
        tracker = ProgressTracker(self._store, job_id)
        return record_render(tracker, job_id, self._renderer.render, snapshot["document"])

    def _fail(self, tracker: ProgressTracker, error: str) -> None:
        FAILED_COUNTER.inc()
        try:
            tracker.fail(error)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("job_fail_not_recorded", extra={"job_id": tracker.job_id, "error": str(exc)})

    def _run(self, tracker: ProgressTracker, job_id: str, topic: str, requested: int) -> None:
        plan = plan_batches(requested, self._batch_size)
        total = len(plan)
        tracker.start(total)

        sections: List[Section] = []
        for index in range(total):
            count = min(self._batch_size, requested - len(sections))
            with BATCH_TIMER.time():
                outcome = self._run_batch(topic, [section.title for section in sections], count, index + 1)
            accepted = outcome.sections[:count]
            sections.extend(accepted)
            if outcome.degradation_flags:
                tracker.flag(*outcome.degradation_flags)
            tracker.batch_completed(
                index,
                len(sections),
                f"Generated batch {index + 1}/{total}: {len(accepted)} new section(s), {len(sections)} total",
            )
            log_batch(
                LOGGER,
                job_id=job_id,
                batch=index + 1,
                total=total,
                status=outcome.tier.value if outcome.tier else "parsed",
                requested=count,
                accepted=len(accepted),
            )

        if not sections:
            raise NoSectionsGenerated(job_id)

        title, description, title_flags = self._derive_title(topic, sections)
        if title_flags:
            tracker.flag(*title_flags)

        document = sanitize_document(Document(title=title, description=description, sections=sections).to_dict())
        word_count = count_words(document["sections"])
        document["wordCount"] = word_count
        tracker.complete(document, word_count)
        COMPLETED_COUNTER.inc()

        record_render(tracker, job_id, self._renderer.render, document)

    def _run_batch(self, topic: str, titles: List[str], count: int, batch_number: int) -> BatchOutcome:
        result = self._producer.generate(build_batch_prompt(topic, titles, count))
        flags: List[str] = ["producer_fallback"] if result.fallback_used else []
        try:
            return BatchOutcome(sections=parse_batch_response(result.text), degradation_flags=flags)
        except StrictParseError as exc:
            LOGGER.info(
                "batch_strict_parse_failed",
                extra={"batch": batch_number, "error": str(exc), "details": exc.errors or None},
            )

        recovery = recover_document(result.text)
        if recovery.is_canned:
            # Template content is not about the topic; the batch contributes nothing.
            CANNED_COUNTER.inc()
            flags.append(f"batch_{batch_number}_canned")
            return BatchOutcome(degradation_flags=flags, tier=recovery.tier)
        RECOVERED_COUNTER.inc()
        flags.append(f"batch_{batch_number}_recovered")
        return BatchOutcome(sections=list(recovery.document.sections), degradation_flags=flags, tier=recovery.tier)

    def _derive_title(self, topic: str, sections: List[Section]) -> tuple[str, str, List[str]]:
        result = self._producer.generate(build_title_prompt(topic, [section.title for section in sections]))
        flags: List[str] = ["producer_fallback"] if result.fallback_used else []
        try:
            title, description = parse_title_response(result.text)
        except StrictParseError as exc:
            LOGGER.info("title_strict_parse_failed", extra={"error": str(exc)})
            flags.append("title_fallback")
            return fallback_title(topic), fallback_description(topic, len(sections)), flags
        return title, description, flags


def record_render(
    tracker: ProgressTracker,
    job_id: str,
    render: Callable[[Mapping[str, Any], str], str],
    document: Mapping[str, Any],
) -> bool:
    """Render ``document`` and store the outcome on the job; returns whether it succeeded."""

    try:
        resource_url = render(document, job_id)
    except Exception as exc:  # noqa: BLE001
        RENDER_FAILED_COUNTER.inc()
        LOGGER.warning("render_failed", extra={"job_id": job_id, "error": str(exc)})
        tracker.render_failed(str(exc))
        return False
    tracker.render_succeeded(resource_url)
    return True


def _mask_api_key(raw_key: str) -> str:
    key = (raw_key or "").strip()
    if not key:
        return "****"
    if len(key) <= 4:
        return "*" * len(key)
    return f"{key[:2]}***{key[-2:]}"


def gather_health_status(producer: Any = None) -> Dict[str, Any]:
    checks: Dict[str, Dict[str, object]] = {}

    artifacts_dir = artifacts_store.ARTIFACTS_DIR
    try:
        artifacts_dir.mkdir(parents=True, exist_ok=True)
        marker = artifacts_dir / ".write_check"
        marker.write_text("ok", encoding="utf-8")
        marker.unlink()
        checks["artifacts_writable"] = {"ok": True, "message": f"Artifacts directory writable: {artifacts_dir}"}
    except OSError as exc:
        checks["artifacts_writable"] = {"ok": False, "message": f"Artifacts directory unavailable: {exc}"}

    if PRODUCER_API_KEY:
        checks["producer_key"] = {"ok": True, "message": f"Key found ({_mask_api_key(PRODUCER_API_KEY)})"}
    else:
        checks["producer_key"] = {"ok": False, "message": "GEMINI_API_KEY is not set; mock content will be used"}

    description = producer.describe() if producer is not None and hasattr(producer, "describe") else {}
    checks["producer"] = {
        "ok": True,
        "message": f"Model {description.get('model', PRODUCER_MODEL)}",
        "mock_mode": description.get("mock_mode"),
    }

    ok = all(check.get("ok") is True for check in checks.values())
    return {"ok": ok, "checks": checks}


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate one ebook synchronously")
    parser.add_argument("--topic", help="Topic of the ebook")
    parser.add_argument("--sections", type=int, default=None, help="Requested number of sections")
    parser.add_argument("--out", help="Write the final job snapshot to this JSON file")
    parser.add_argument("--check", action="store_true", help="Print health checks and exit")
    return parser.parse_args()


def run_job(topic: str, requested_sections: Optional[int] = None) -> Dict[str, Any]:
    store = JobStore()
    job = store.create(
        Job(id=uuid.uuid4().hex, topic=topic.strip(), requested_sections=clamp_section_count(requested_sections))
    )
    orchestrator = BatchOrchestrator(store, build_default_client(), PdfRenderer())
    orchestrator.generate(job.id, job.topic, job.requested_sections)
    return store.snapshot(job.id) or {}


def main() -> None:
    args = _parse_args()

    if args.check:
        status = gather_health_status()
        print(json.dumps(status, ensure_ascii=False, indent=2))
        sys.exit(0 if status.get("ok") else 1)

    topic = (args.topic or "").strip()
    if not topic:
        raise ValueError("--topic is required")
    snapshot = run_job(topic, args.sections)
    rendered = json.dumps(snapshot, ensure_ascii=False, indent=2)
    if args.out:
        Path(args.out).write_text(rendered, encoding="utf-8")
    print(rendered)
    sys.exit(0 if snapshot.get("status") == JobStatus.COMPLETED.value else 1)


if __name__ == "__main__":  # pragma: no cover
    try:
        main()
    except Exception as exc:  # noqa: BLE001
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
