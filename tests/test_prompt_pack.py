from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import List

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from jobs import Job, JobKind, JobStore  # noqa: E402
from llm_client import GenerationResult  # noqa: E402
from prompt_pack import NO_PROMPTS_ERROR, PromptPackGenerator, clean_prompts  # noqa: E402


class ScriptedProducer:
    def __init__(self, text: str, *, fallback: str | None = None) -> None:
        self.text = text
        self.fallback = fallback
        self.prompts: List[str] = []

    def generate(self, prompt: str) -> GenerationResult:
        self.prompts.append(prompt)
        return GenerationResult(text=self.text, model_used="fake", retry_used=False, fallback_used=self.fallback)


class FakeRenderer:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.rendered: List[dict] = []

    def render_prompts(self, document, job_id):
        if self.fail:
            raise RuntimeError("disk full")
        self.rendered.append(document)
        return f"prompts/{job_id}.pdf"


@pytest.fixture
def store() -> JobStore:
    return JobStore(ttl_seconds=60)


def _create(store: JobStore, count: int, job_id: str = "pack-1") -> Job:
    return store.create(
        Job(id=job_id, topic="Beekeeping", requested_sections=0, kind=JobKind.PROMPTS, requested_prompts=count)
    )


def _pack(*prompts: str) -> str:
    return json.dumps({"prompts": list(prompts)})


def test_prompt_pack_completes_and_renders(store):
    job = _create(store, 3)
    producer = ScriptedProducer(_pack("Plan a hive inspection", "List spring tasks", "Explain swarming"))
    renderer = FakeRenderer()
    PromptPackGenerator(store, producer, renderer).generate(job.id, job.topic, 3)

    snapshot = store.snapshot(job.id)
    assert snapshot["status"] == "completed"
    assert snapshot["kind"] == "prompts"
    assert snapshot["message"] == "AI prompts generated successfully"
    assert snapshot["document"] == {
        "topic": "Beekeeping",
        "title": "3 AI Prompts for Beekeeping",
        "prompts": ["Plan a hive inspection", "List spring tasks", "Explain swarming"],
        "totalPrompts": 3,
    }
    assert snapshot["word_count"] == 9
    assert snapshot["progress"]["current_batch"] == 1
    assert snapshot["progress"]["total_batches"] == 1
    assert snapshot["render_status"] == "succeeded"
    assert snapshot["resource_url"] == f"prompts/{job.id}.pdf"
    assert snapshot["degradation_flags"] == []
    assert 'about the topic: "Beekeeping"' in producer.prompts[0]
    assert "array of 3 strings" in producer.prompts[0]


def test_prompts_are_cleaned_and_capped(store):
    job = _create(store, 2)
    producer = ScriptedProducer(
        _pack("1. Plan a hive inspection", "2) plan a hive inspection", "  ", "3. Extra one", "Four")
    )
    PromptPackGenerator(store, producer, FakeRenderer()).generate(job.id, job.topic, 2)

    document = store.snapshot(job.id)["document"]
    assert document["prompts"] == ["Plan a hive inspection", "Extra one"]
    assert document["totalPrompts"] == 2


def test_cut_off_answer_is_recovered(store):
    job = _create(store, 5)
    producer = ScriptedProducer('```json\n{"prompts": ["Plan a hive inspection", "List spring tasks", "Expl')
    PromptPackGenerator(store, producer, FakeRenderer()).generate(job.id, job.topic, 5)

    snapshot = store.snapshot(job.id)
    assert snapshot["status"] == "completed"
    assert snapshot["document"]["prompts"] == ["Plan a hive inspection", "List spring tasks"]
    assert snapshot["document"]["title"] == "2 AI Prompts for Beekeeping"
    assert "prompts_recovered" in snapshot["degradation_flags"]


@pytest.mark.parametrize("text", ["Sorry, I cannot do that.", "[" * 100000, _pack("   ")])
def test_unusable_answer_fails_job(store, text):
    job = _create(store, 5)
    renderer = FakeRenderer()
    PromptPackGenerator(store, ScriptedProducer(text), renderer).generate(job.id, job.topic, 5)

    snapshot = store.snapshot(job.id)
    assert snapshot["status"] == "failed"
    assert snapshot["error"] == NO_PROMPTS_ERROR
    assert snapshot["document"] is None
    assert snapshot["progress"] == {"current_batch": 0, "total_batches": 0, "sections_generated": 0}
    assert renderer.rendered == []


def test_mock_fallback_is_flagged(store):
    job = _create(store, 1)
    producer = ScriptedProducer(_pack("Plan a hive inspection"), fallback="mock")
    PromptPackGenerator(store, producer, FakeRenderer()).generate(job.id, job.topic, 1)
    assert "producer_fallback" in store.snapshot(job.id)["degradation_flags"]


def test_render_failure_can_be_retried(store):
    job = _create(store, 1)
    renderer = FakeRenderer(fail=True)
    generator = PromptPackGenerator(store, ScriptedProducer(_pack("Plan a hive inspection")), renderer)
    generator.generate(job.id, job.topic, 1)

    snapshot = store.snapshot(job.id)
    assert snapshot["status"] == "completed"
    assert snapshot["render_status"] == "failed"
    assert snapshot["render_error"] == "disk full"

    renderer.fail = False
    assert generator.retry_render(job.id) is True
    assert store.snapshot(job.id)["resource_url"] == f"prompts/{job.id}.pdf"


def test_retry_render_rejects_other_jobs(store):
    generator = PromptPackGenerator(store, ScriptedProducer(_pack("x")), FakeRenderer())
    with pytest.raises(KeyError):
        generator.retry_render("missing")
    store.create(Job(id="ebook-1", topic="Chess", requested_sections=2))
    with pytest.raises(KeyError):
        generator.retry_render("ebook-1")
    job = _create(store, 1)
    with pytest.raises(ValueError):
        generator.retry_render(job.id)


def test_clean_prompts_skips_non_strings():
    assert clean_prompts(["A", 3, None, "a", "B"], 10) == ["A", "B"]
