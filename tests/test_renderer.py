from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

import artifacts_store  # noqa: E402
from renderer import PdfRenderer, RenderError  # noqa: E402


@pytest.fixture(autouse=True)
def patch_artifacts_dir(tmp_path, monkeypatch):
    base = tmp_path / "artifacts"
    base.mkdir()
    monkeypatch.setattr(artifacts_store, "ARTIFACTS_DIR", base.resolve())
    yield


def _document():
    return {
        "title": "Home Gardening <Basics> & More",
        "description": "Grow food in small spaces",
        "sections": [
            {
                "title": "Soil",
                "content": "Healthy soil feeds plants.\n\nCompost helps.",
                "subheadings": ["Testing", "Amending"],
                "examples": ["Raised bed mix"],
                "keyTakeaways": ["Feed the soil"],
            },
            {"title": "Watering", "content": "Water deeply.", "subheadings": [], "examples": [], "keyTakeaways": []},
        ],
        "wordCount": 8,
    }


def test_build_pdf_returns_pdf_bytes():
    payload = PdfRenderer().build_pdf(_document())
    assert payload.startswith(b"%PDF")
    assert len(payload) > 1000


def test_build_pdf_requires_sections():
    with pytest.raises(RenderError):
        PdfRenderer().build_pdf({"title": "Empty", "sections": []})


def test_render_writes_and_registers_artifact():
    relative = PdfRenderer().render(_document(), "job-42")

    assert relative == "documents/job-42.pdf"
    pdf_path = artifacts_store.ARTIFACTS_DIR / relative
    assert pdf_path.read_bytes().startswith(b"%PDF")
    metadata = json.loads(pdf_path.with_suffix(".json").read_text(encoding="utf-8"))
    assert metadata["job_id"] == "job-42"
    assert metadata["sections"] == 2

    items = artifacts_store.list_artifacts()
    assert [item["id"] for item in items] == ["job-42"]


def _prompt_pack():
    return {
        "topic": "Urban <Beekeeping>",
        "title": "3 AI Prompts for Urban <Beekeeping>",
        "prompts": ["Plan a rooftop hive", "List city-safe flowers & herbs", "Explain swarm season"],
        "totalPrompts": 3,
    }


def test_build_prompts_pdf_returns_pdf_bytes():
    payload = PdfRenderer().build_prompts_pdf(_prompt_pack())
    assert payload.startswith(b"%PDF")


def test_build_prompts_pdf_requires_prompts():
    with pytest.raises(RenderError):
        PdfRenderer().build_prompts_pdf({"topic": "Empty", "prompts": ["   "]})


def test_render_prompts_writes_under_prompts_dir():
    relative = PdfRenderer().render_prompts(_prompt_pack(), "pack-7")

    assert relative == "prompts/pack-7.pdf"
    pdf_path = artifacts_store.ARTIFACTS_DIR / relative
    assert pdf_path.read_bytes().startswith(b"%PDF")
    metadata = json.loads(pdf_path.with_suffix(".json").read_text(encoding="utf-8"))
    assert metadata["prompts"] == 3
    assert metadata["title"] == "3 AI Prompts for Urban <Beekeeping>"
    assert [item["id"] for item in artifacts_store.list_artifacts()] == ["pack-7"]
