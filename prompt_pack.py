"""Generation of AI prompt packs: one producer call, a prompt list and a PDF."""
from __future__ import annotations

import re
from typing import Any, Dict, List

from domain.document_schema import StrictParseError, parse_prompt_pack_response
from domain.prompt_builder import build_prompt_pack_prompt
from jobs.models import JobKind, JobStatus
from jobs.store import JobStore
from jobs.tracker import JobNotFound, ProgressTracker
from observability.logger import get_logger
from observability.metrics import get_registry
from orchestrate import record_render
from services.recovery import recover_prompts

LOGGER = get_logger("ebook_factory.prompt_pack")
REGISTRY = get_registry()
COMPLETED_COUNTER = REGISTRY.counter("jobs.completed_total")
FAILED_COUNTER = REGISTRY.counter("jobs.failed_total")
PROMPTS_RECOVERED_COUNTER = REGISTRY.counter("prompts.recovered_total")

NO_PROMPTS_ERROR = "No prompts could be generated for this topic"

_NUMBER_PREFIX_RE = re.compile(r"^\s*\d+\s*[.)]\s*")


class NoPromptsGenerated(RuntimeError):
    """Raised when the producer answer held no usable prompt."""


def clean_prompts(raw_prompts: List[Any], limit: int) -> List[str]:
    """Strip list numbering, drop blanks and repeats, keep at most ``limit``."""

    cleaned: List[str] = []
    seen = set()
    for item in raw_prompts:
        if not isinstance(item, str):
            continue
        text = _NUMBER_PREFIX_RE.sub("", item).strip()
        key = text.casefold()
        if not text or key in seen:
            continue
        seen.add(key)
        cleaned.append(text)
        if len(cleaned) >= limit:
            break
    return cleaned


class PromptPackGenerator:
    """Turn a topic into a numbered pack of AI prompts stored on the job.

    The whole pack comes from a single producer call, so the job reports one
    batch. Malformed answers are salvaged string by string before the job is
    given up.
    """

    def __init__(self, store: JobStore, producer: Any, renderer: Any) -> None:
        self._store = store
        self._producer = producer
        self._renderer = renderer

    def generate(self, job_id: str, topic: str, count: int) -> None:
        tracker = ProgressTracker(self._store, job_id)
        try:
            self._run(tracker, job_id, topic, int(count))
        except JobNotFound:
            LOGGER.warning("job_missing", extra={"job_id": job_id})
        except NoPromptsGenerated:
            self._fail(tracker, NO_PROMPTS_ERROR)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("prompt_pack_error", extra={"job_id": job_id, "error": str(exc)})
            self._fail(tracker, str(exc) or exc.__class__.__name__)

    def retry_render(self, job_id: str) -> bool:
        snapshot = self._store.snapshot(job_id)
        if snapshot is None or snapshot.get("kind") != JobKind.PROMPTS.value:
            raise KeyError(job_id)
        if snapshot["status"] != JobStatus.COMPLETED.value or not snapshot.get("document"):
            raise ValueError(f"job {job_id} has no completed prompt pack to render")
        tracker = ProgressTracker(self._store, job_id)
        return record_render(tracker, job_id, self._renderer.render_prompts, snapshot["document"])

    def _fail(self, tracker: ProgressTracker, error: str) -> None:
        FAILED_COUNTER.inc()
        try:
            tracker.fail(error)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("job_fail_not_recorded", extra={"job_id": tracker.job_id, "error": str(exc)})

    def _run(self, tracker: ProgressTracker, job_id: str, topic: str, count: int) -> None:
        tracker.start(1)
        result = self._producer.generate(build_prompt_pack_prompt(topic, count))
        if result.fallback_used:
            tracker.flag("producer_fallback")

        try:
            raw_prompts: List[Any] = parse_prompt_pack_response(result.text)
        except StrictParseError as exc:
            LOGGER.info("prompt_pack_strict_parse_failed", extra={"job_id": job_id, "error": str(exc)})
            raw_prompts = recover_prompts(result.text)
            if raw_prompts:
                PROMPTS_RECOVERED_COUNTER.inc()
                tracker.flag("prompts_recovered")

        prompts = clean_prompts(raw_prompts, count)
        if not prompts:
            raise NoPromptsGenerated(job_id)
        tracker.batch_completed(0, 0, f"Generated {len(prompts)} of {count} prompt(s)")

        document: Dict[str, Any] = {
            "topic": topic,
            "title": f"{len(prompts)} AI Prompts for {topic}",
            "prompts": prompts,
            "totalPrompts": len(prompts),
        }
        word_count = sum(len(prompt.split()) for prompt in prompts)
        tracker.complete(document, word_count, message="AI prompts generated successfully")
        COMPLETED_COUNTER.inc()
        LOGGER.info("prompt_pack_completed", extra={"job_id": job_id, "requested": count, "prompts": len(prompts)})

        record_render(tracker, job_id, self._renderer.render_prompts, document)


__all__ = ["NO_PROMPTS_ERROR", "NoPromptsGenerated", "PromptPackGenerator", "clean_prompts"]
