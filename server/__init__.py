"""Flask application exposing ebook and prompt-pack generation jobs via HTTP."""
from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from flask import Flask, current_app, g, jsonify, request, send_file
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from dotenv import load_dotenv

# Configuration constants are read at import time, so .env must be loaded first.
load_dotenv()

from artifacts_store import (  # noqa: E402
    cleanup_index as cleanup_artifact_index,
    delete_artifact as delete_artifact_entry,
    list_artifacts as list_artifact_cards,
    resolve_artifact_path,
)
from config import BATCH_SIZE, JOB_STORE_TTL_S, JOB_WORKERS, PRODUCER_RPM, PRODUCER_RPS  # noqa: E402
from domain.generation_policy import clamp_prompt_count, clamp_section_count  # noqa: E402
from jobs import JobKind, JobRunner, JobStatus, JobStore  # noqa: E402
from observability.logger import bind_trace_id, clear_trace_id, get_logger  # noqa: E402
from observability.metrics import get_registry  # noqa: E402
from orchestrate import BatchOrchestrator, gather_health_status  # noqa: E402
from prompt_pack import PromptPackGenerator  # noqa: E402
from renderer import PdfRenderer  # noqa: E402
from services.llm_client import build_default_client  # noqa: E402

LOGGER = get_logger("ebook_factory.api")

RUNNER_EXTENSION = "ebook_job_runner"


class ApiError(Exception):
    """Exception translated into an HTTP error response."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def build_default_runner() -> JobRunner:
    store = JobStore(ttl_seconds=JOB_STORE_TTL_S)
    producer = build_default_client()
    renderer = PdfRenderer()
    orchestrator = BatchOrchestrator(store, producer, renderer, batch_size=BATCH_SIZE)
    prompt_generator = PromptPackGenerator(store, producer, renderer)
    return JobRunner(store, orchestrator, prompt_generator=prompt_generator, workers=JOB_WORKERS)


def _runner() -> JobRunner:
    return current_app.extensions[RUNNER_EXTENSION]


def _job_snapshot(job_id: str, kind: JobKind, not_found: str) -> Dict[str, Any]:
    snapshot = _runner().get_job(job_id)
    if not snapshot or snapshot.get("kind") != kind.value:
        raise ApiError(not_found, status_code=404)
    return snapshot


def _error_response(message: str, status_code: int):
    return (
        jsonify({"error": {"message": message, "code": status_code, "trace_id": getattr(g, "trace_id", None)}}),
        status_code,
    )


def create_app(runner: Optional[JobRunner] = None) -> Flask:
    app = Flask(__name__)
    if hasattr(app, "json"):
        app.json.ensure_ascii = False
    CORS(app, resources={r"/api/*": {"origins": "*"}})
    app.extensions[RUNNER_EXTENSION] = runner or build_default_runner()

    @app.before_request
    def _bind_request_trace() -> None:
        trace_id = request.headers.get("X-Trace-Id") or uuid.uuid4().hex
        g.trace_id = trace_id
        bind_trace_id(trace_id)

    @app.after_request
    def _append_trace(response):  # type: ignore[override]
        trace_id = getattr(g, "trace_id", None)
        if trace_id:
            response.headers.setdefault("X-Trace-Id", trace_id)
        return response

    @app.teardown_request
    def _teardown_trace(_exc):  # type: ignore[override]
        clear_trace_id()

    @app.errorhandler(ApiError)
    def _handle_api_error(exc: ApiError):  # type: ignore[override]
        LOGGER.warning("api_error", extra={"error": exc.message, "code": exc.status_code})
        return _error_response(exc.message, exc.status_code)

    @app.errorhandler(Exception)
    def _handle_generic_error(exc: Exception):  # type: ignore[override]
        if isinstance(exc, HTTPException):
            return _error_response(exc.description or exc.name, exc.code or 500)
        LOGGER.exception("unhandled_error")
        return _error_response("Internal server error", 500)

    @app.post("/api/documents")
    def create_document():
        payload = _require_json(request)
        topic = str(payload.get("topic") or "").strip()
        if not topic:
            raise ApiError("Topic is required")
        requested = clamp_section_count(payload.get("sections", payload.get("numberOfSections")))

        job = _runner().submit(topic, requested, trace_id=getattr(g, "trace_id", None))
        return (
            jsonify(
                {
                    "job_id": job.id,
                    "status": job.status.value,
                    "message": "Ebook generation started",
                    "requested_sections": job.requested_sections,
                    "trace_id": job.trace_id,
                }
            ),
            202,
        )

    @app.get("/api/documents")
    def list_documents():
        return jsonify(_runner().store.list_snapshots(JobKind.EBOOK))

    @app.get("/api/documents/<job_id>")
    def document_status(job_id: str):
        return jsonify(_job_snapshot(job_id, JobKind.EBOOK, "Job not found"))

    @app.post("/api/documents/<job_id>/render")
    def rerender_document(job_id: str):
        return _rerender(job_id, JobKind.EBOOK, "Job not found")

    @app.get("/api/documents/<job_id>/download")
    def download_document(job_id: str):
        return _send_rendered(_job_snapshot(job_id, JobKind.EBOOK, "Job not found"))

    @app.post("/api/prompts")
    def create_prompts():
        payload = _require_json(request)
        topic = str(payload.get("topic") or "").strip()
        if not topic:
            raise ApiError("Topic is required")
        count = clamp_prompt_count(payload.get("count"))

        job = _runner().submit_prompts(topic, count, trace_id=getattr(g, "trace_id", None))
        return (
            jsonify(
                {
                    "job_id": job.id,
                    "status": job.status.value,
                    "message": "AI prompts generation started",
                    "requested_prompts": job.requested_prompts,
                    "trace_id": job.trace_id,
                }
            ),
            202,
        )

    @app.get("/api/prompts/<job_id>")
    def prompts_status(job_id: str):
        return jsonify(_job_snapshot(job_id, JobKind.PROMPTS, "Prompts not found"))

    @app.post("/api/prompts/<job_id>/render")
    def rerender_prompts(job_id: str):
        return _rerender(job_id, JobKind.PROMPTS, "Prompts not found")

    @app.get("/api/prompts/<job_id>/download")
    def download_prompts(job_id: str):
        return _send_rendered(_job_snapshot(job_id, JobKind.PROMPTS, "Prompts not found"))

    @app.get("/api/artifacts")
    def list_artifacts():
        return jsonify(list_artifact_cards(auto_cleanup=True))

    @app.delete("/api/artifacts")
    def delete_artifact():
        payload = _require_json(request)
        identifier = str(payload.get("id") or payload.get("path") or "").strip()
        if not identifier:
            raise ApiError("Artifact identifier is required")
        result = delete_artifact_entry(identifier)
        return jsonify(result), 207 if result.get("errors") else 200

    @app.post("/api/artifacts/cleanup")
    def cleanup_artifacts():
        result = cleanup_artifact_index()
        return jsonify(result), 207 if result.get("errors") else 200

    @app.get("/api/health")
    def health():
        runner = _runner()
        status = gather_health_status(runner.orchestrator.producer)
        checks = status.setdefault("checks", {})
        queue_len = runner.queue_length()
        checks["producer_rate_limits"] = {
            "ok": True,
            "message": f"Client limits active: {PRODUCER_RPS} rps / {PRODUCER_RPM} rpm",
        }
        checks["job_queue"] = {
            "ok": queue_len < 10,
            "message": f"Queued jobs: {queue_len}; stored jobs: {len(runner.store)}",
        }
        status["ok"] = all(check.get("ok") is True for check in checks.values())
        status["metrics"] = get_registry().snapshot()
        return jsonify(status), 200 if status["ok"] else 503

    return app


def _rerender(job_id: str, kind: JobKind, not_found: str):
    _job_snapshot(job_id, kind, not_found)
    runner = _runner()
    try:
        rendered = runner.retry_render(job_id)
    except KeyError as exc:
        raise ApiError(not_found, status_code=404) from exc
    except ValueError as exc:
        raise ApiError(str(exc), status_code=409) from exc
    snapshot = runner.get_job(job_id) or {}
    return jsonify(snapshot), 200 if rendered else 502


def _send_rendered(snapshot: Dict[str, Any]):
    if snapshot.get("status") != JobStatus.COMPLETED.value or not snapshot.get("resource_url"):
        raise ApiError("Rendered document is not available", status_code=404)
    try:
        pdf_path = resolve_artifact_path(snapshot["resource_url"])
    except ValueError as exc:
        raise ApiError(str(exc), status_code=400) from exc
    if not pdf_path.is_file():
        raise ApiError("Rendered document is missing", status_code=404)
    return send_file(
        pdf_path,
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"{_download_stem(snapshot)}.pdf",
    )


def _download_stem(snapshot: Dict[str, Any]) -> str:
    document = snapshot.get("document") or {}
    title = str(document.get("title") or snapshot.get("topic") or snapshot["id"])
    stem = "".join(char if char.isalnum() else "_" for char in title).strip("_")
    return stem[:80] or snapshot["id"]


def _require_json(req) -> Dict[str, Any]:
    try:
        data = req.get_json(force=True)  # type: ignore[no-any-return]
    except Exception as exc:  # noqa: BLE001
        raise ApiError("Invalid JSON body") from exc
    if not isinstance(data, dict):
        raise ApiError("JSON object expected")
    return data


__all__ = ["ApiError", "build_default_runner", "create_app"]
