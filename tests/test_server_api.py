import json
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from jobs import JobRunner, JobStore  # noqa: E402
from llm_client import GenerationResult  # noqa: E402
from orchestrate import BatchOrchestrator  # noqa: E402
from prompt_pack import PromptPackGenerator  # noqa: E402
from renderer import PdfRenderer  # noqa: E402
from server import create_app  # noqa: E402


class _Producer:
    def generate(self, prompt):
        if "AI prompts about the topic" in prompt:
            text = json.dumps({"prompts": ["Explain castling to a child", "List five classic chess traps"]})
        elif "Generate the next" in prompt:
            text = json.dumps(
                {
                    "sections": [
                        {"title": "Basics", "content": "Learn the basic moves."},
                        {"title": "Tactics", "content": "Forks and pins win material."},
                    ]
                }
            )
        else:
            text = json.dumps({"title": "Chess for Everyone", "description": "From first move to mate"})
        return GenerationResult(text=text, model_used="fake", retry_used=False, fallback_used=None)


@pytest.fixture()
def runner(tmp_path, monkeypatch):
    artifacts_dir = tmp_path / "artifacts"
    artifacts_dir.mkdir()
    monkeypatch.setattr("artifacts_store.ARTIFACTS_DIR", artifacts_dir.resolve())
    store = JobStore(ttl_seconds=60)
    producer = _Producer()
    renderer = PdfRenderer()
    orchestrator = BatchOrchestrator(store, producer, renderer, batch_size=5)
    prompt_generator = PromptPackGenerator(store, producer, renderer)
    job_runner = JobRunner(store, orchestrator, prompt_generator=prompt_generator, workers=1)
    yield job_runner
    job_runner.stop()


@pytest.fixture()
def app(runner):
    app = create_app(runner)
    app.config.update(TESTING=True)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _generate(client, runner, **payload):
    response = client.post("/api/documents", json={"topic": "Chess", "sections": 2, **payload})
    assert response.status_code == 202
    job_id = response.get_json()["job_id"]
    assert runner.wait(job_id, timeout=10) is True
    return job_id


def test_create_document_returns_job_id(client, runner):
    response = client.post("/api/documents", json={"topic": "Chess", "sections": 2}, headers={"X-Trace-Id": "t-1"})
    assert response.status_code == 202
    body = response.get_json()
    assert body["status"] == "pending"
    assert body["requested_sections"] == 2
    assert body["trace_id"] == "t-1"
    assert response.headers["X-Trace-Id"] == "t-1"
    runner.wait(body["job_id"], timeout=10)


def test_create_document_requires_topic(client):
    response = client.post("/api/documents", json={"topic": "   "})
    assert response.status_code == 400
    error = response.get_json()["error"]
    assert error["message"] == "Topic is required"
    assert error["code"] == 400


def test_create_document_rejects_non_object_body(client):
    response = client.post("/api/documents", data="[1, 2]", content_type="application/json")
    assert response.status_code == 400


def test_status_of_completed_job(client, runner):
    job_id = _generate(client, runner)
    response = client.get(f"/api/documents/{job_id}")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "completed"
    assert body["document"]["title"] == "Chess for Everyone"
    assert [section["title"] for section in body["document"]["sections"]] == ["Basics", "Tactics"]
    assert body["word_count"] > 0
    assert body["render_status"] == "succeeded"
    assert body["resource_url"] == f"documents/{job_id}.pdf"


def test_unknown_job_returns_404(client):
    response = client.get("/api/documents/does-not-exist")
    assert response.status_code == 404
    assert response.get_json()["error"]["message"] == "Job not found"


def test_download_rendered_pdf(client, runner):
    job_id = _generate(client, runner)
    response = client.get(f"/api/documents/{job_id}/download")
    assert response.status_code == 200
    assert response.mimetype == "application/pdf"
    assert response.data.startswith(b"%PDF")
    assert "Chess_for_Everyone.pdf" in response.headers["Content-Disposition"]


def test_rerender_completed_job(client, runner):
    job_id = _generate(client, runner)
    response = client.post(f"/api/documents/{job_id}/render")
    assert response.status_code == 200
    assert response.get_json()["render_status"] == "succeeded"


def test_rerender_unknown_job(client):
    assert client.post("/api/documents/nope/render").status_code == 404


def test_artifacts_listing_and_delete(client, runner):
    job_id = _generate(client, runner)
    listing = client.get("/api/artifacts")
    assert listing.status_code == 200
    assert [item["id"] for item in listing.get_json()] == [job_id]

    deleted = client.delete("/api/artifacts", json={"id": job_id})
    assert deleted.status_code == 200
    assert deleted.get_json()["deleted"] is True
    assert client.get("/api/artifacts").get_json() == []


def test_artifacts_cleanup(client):
    response = client.post("/api/artifacts/cleanup")
    assert response.status_code == 200
    assert response.get_json()["removed"] == 0


def test_health_reports_checks_and_metrics(client, monkeypatch):
    monkeypatch.setattr("orchestrate.PRODUCER_API_KEY", "configured-key-123")
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.get_json()
    assert body["ok"] is True
    assert body["checks"]["artifacts_writable"]["ok"] is True
    assert body["checks"]["job_queue"]["ok"] is True
    assert "jobs.completed_total" in body["metrics"]


def test_health_without_key_is_degraded(client, monkeypatch):
    monkeypatch.setattr("orchestrate.PRODUCER_API_KEY", "")
    response = client.get("/api/health")
    assert response.status_code == 503
    assert response.get_json()["checks"]["producer_key"]["ok"] is False


def _generate_prompts(client, runner, **payload):
    response = client.post("/api/prompts", json={"topic": "Chess", "count": 2, **payload})
    assert response.status_code == 202
    job_id = response.get_json()["job_id"]
    assert runner.wait(job_id, timeout=10) is True
    return job_id


def test_list_documents_newest_first(client, runner):
    first = _generate(client, runner)
    second = _generate(client, runner)
    _generate_prompts(client, runner)

    response = client.get("/api/documents")
    assert response.status_code == 200
    body = response.get_json()
    assert [item["id"] for item in body] == [second, first]
    assert all(item["kind"] == "ebook" for item in body)


def test_create_prompts_starts_job(client, runner):
    response = client.post("/api/prompts", json={"topic": "Chess", "count": 5000})
    assert response.status_code == 202
    body = response.get_json()
    assert body["message"] == "AI prompts generation started"
    assert body["status"] == "pending"
    assert body["requested_prompts"] == 200
    runner.wait(body["job_id"], timeout=10)


def test_create_prompts_requires_topic(client):
    response = client.post("/api/prompts", json={"count": 10})
    assert response.status_code == 400
    assert response.get_json()["error"]["message"] == "Topic is required"


def test_prompts_status_and_download(client, runner):
    job_id = _generate_prompts(client, runner)
    response = client.get(f"/api/prompts/{job_id}")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "completed"
    assert body["document"]["prompts"] == ["Explain castling to a child", "List five classic chess traps"]
    assert body["document"]["totalPrompts"] == 2
    assert body["resource_url"] == f"prompts/{job_id}.pdf"

    download = client.get(f"/api/prompts/{job_id}/download")
    assert download.status_code == 200
    assert download.data.startswith(b"%PDF")
    assert "2_AI_Prompts_for_Chess.pdf" in download.headers["Content-Disposition"]

    rerendered = client.post(f"/api/prompts/{job_id}/render")
    assert rerendered.status_code == 200
    assert rerendered.get_json()["render_status"] == "succeeded"


def test_prompts_and_documents_do_not_mix(client, runner):
    prompts_id = _generate_prompts(client, runner)
    document_id = _generate(client, runner)

    missing = client.get(f"/api/prompts/{document_id}")
    assert missing.status_code == 404
    assert missing.get_json()["error"]["message"] == "Prompts not found"
    assert client.get("/api/prompts/unknown").status_code == 404
    assert client.get(f"/api/documents/{prompts_id}").status_code == 404
    assert client.post(f"/api/documents/{prompts_id}/render").status_code == 404
