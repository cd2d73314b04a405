"""PDF rendering of completed documents into the artifacts directory."""
from __future__ import annotations

import io
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY, TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch, mm
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer

import artifacts_store
from observability.logger import get_logger

LOGGER = get_logger("ebook_factory.renderer")

DOCUMENTS_SUBDIR = "documents"
PROMPTS_SUBDIR = "prompts"
_PRIMARY = colors.HexColor("#1e40af")
_MUTED = colors.HexColor("#4b5563")
_LIST_BLOCKS = (
    ("Key Sections", "subheadings", colors.HexColor("#374151")),
    ("Examples", "examples", colors.HexColor("#059669")),
    ("Key Takeaways", "keyTakeaways", colors.HexColor("#dc2626")),
)


class RenderError(RuntimeError):
    """Raised when a document cannot be turned into a PDF artifact."""


def _escape_pdf(text: Any) -> str:
    return escape(str(text or "")).replace("\n", "<br/>")


def _split_blocks(text: str) -> List[str]:
    return [block.strip() for block in (text or "").split("\n\n") if block.strip()]


def _string_items(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item.strip()]


class PdfRenderer:
    """Build a book-style PDF: cover, contents, one page per section, closing page."""

    @property
    def artifacts_dir(self) -> Path:
        return artifacts_store.ARTIFACTS_DIR

    def _styles(self) -> Dict[str, ParagraphStyle]:
        styles = getSampleStyleSheet()
        return {
            "title": ParagraphStyle("EbookTitle", parent=styles["Title"], textColor=_PRIMARY, fontSize=30, leading=36),
            "subtitle": ParagraphStyle(
                "EbookSubtitle", parent=styles["Normal"], textColor=_MUTED, fontSize=16, leading=22, alignment=TA_CENTER
            ),
            "h1": ParagraphStyle("EbookH1", parent=styles["Heading1"], spaceAfter=12),
            "h2": ParagraphStyle("EbookH2", parent=styles["Heading2"], textColor=_PRIMARY, spaceAfter=10),
            "toc": ParagraphStyle("EbookToc", parent=styles["BodyText"], textColor=_PRIMARY, fontSize=12, leading=18),
            "body": ParagraphStyle(
                "EbookBody", parent=styles["BodyText"], fontSize=11, leading=16, spaceAfter=8, alignment=TA_JUSTIFY
            ),
            "block": ParagraphStyle("EbookBlock", parent=styles["Heading4"], textColor=_PRIMARY, spaceBefore=12),
            "bullet": ParagraphStyle("EbookBullet", parent=styles["BodyText"], fontSize=10, leftIndent=20),
            "closing": ParagraphStyle(
                "EbookClosing", parent=styles["Heading1"], textColor=_PRIMARY, alignment=TA_CENTER
            ),
            "closing_note": ParagraphStyle(
                "EbookClosingNote", parent=styles["Normal"], textColor=_MUTED, fontSize=13, alignment=TA_CENTER
            ),
        }

    def _bullets(self, heading: str, items: Iterable[str], color: Any, styles: Dict[str, ParagraphStyle]) -> List[Any]:
        entries = list(items)
        if not entries:
            return []
        bullet_style = ParagraphStyle(f"{styles['bullet'].name}-{heading}", parent=styles["bullet"], textColor=color)
        flow: List[Any] = [Paragraph(_escape_pdf(f"{heading}:"), styles["block"])]
        flow.extend(Paragraph(f"&bull; {_escape_pdf(item)}", bullet_style) for item in entries)
        return flow

    def build_pdf(self, document: Mapping[str, Any]) -> bytes:
        sections = [section for section in document.get("sections") or [] if isinstance(section, Mapping)]
        if not sections:
            raise RenderError("document has no sections to render")

        styles = self._styles()
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            topMargin=1 * inch,
            bottomMargin=1 * inch,
            leftMargin=1 * inch,
            rightMargin=1 * inch,
            title=str(document.get("title") or "Ebook"),
        )

        story: List[Any] = [
            Spacer(1, 2.0 * inch),
            Paragraph(_escape_pdf(document.get("title") or "Untitled Ebook"), styles["title"]),
            Spacer(1, 0.4 * inch),
            Paragraph(_escape_pdf(document.get("description")), styles["subtitle"]),
            PageBreak(),
            Paragraph("Table of Contents", styles["h1"]),
            Spacer(1, 0.15 * inch),
        ]
        story.extend(Paragraph(_escape_pdf(section.get("title")), styles["toc"]) for section in sections)

        for position, section in enumerate(sections, start=1):
            story.append(PageBreak())
            story.append(Paragraph(f"Chapter {position}", styles["h2"]))
            story.append(Paragraph(_escape_pdf(section.get("title")), styles["h1"]))
            story.append(Spacer(1, 0.2 * inch))
            for block in _split_blocks(str(section.get("content") or "")):
                story.append(Paragraph(_escape_pdf(block), styles["body"]))
            for heading, key, color in _LIST_BLOCKS:
                story.extend(self._bullets(heading, _string_items(section.get(key)), color, styles))

        story.extend(
            [
                PageBreak(),
                Spacer(1, 3.0 * inch),
                Paragraph("Thank You for Reading!", styles["closing"]),
                Spacer(1, 0.3 * inch),
                Paragraph("We hope you found this ebook valuable and actionable.", styles["closing_note"]),
            ]
        )

        def add_page_numbers(canvas, _doc):
            canvas.saveState()
            canvas.setFont("Helvetica", 9)
            canvas.drawRightString(200 * mm, 15 * mm, str(canvas.getPageNumber()))
            canvas.restoreState()

        doc.build(story, onLaterPages=add_page_numbers)
        return buffer.getvalue()

    def build_prompts_pdf(self, document: Mapping[str, Any]) -> bytes:
        """Cover page naming the topic, then the numbered prompt list."""

        prompts = _string_items(document.get("prompts"))
        if not prompts:
            raise RenderError("prompt pack has no prompts to render")

        styles = self._styles()
        heading = f"{len(prompts)} AI Prompts"
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            topMargin=1 * inch,
            bottomMargin=1 * inch,
            leftMargin=1 * inch,
            rightMargin=1 * inch,
            title=str(document.get("title") or heading),
        )
        topic_style = ParagraphStyle(
            "PromptsTopic", parent=styles["title"], textColor=colors.black, fontSize=24, leading=30
        )
        item_style = ParagraphStyle("PromptsItem", parent=styles["body"], alignment=TA_LEFT, spaceAfter=6)

        story: List[Any] = [
            Spacer(1, 2.0 * inch),
            Paragraph(_escape_pdf(f"{heading} for"), styles["title"]),
            Spacer(1, 0.3 * inch),
            Paragraph(_escape_pdf(document.get("topic")), topic_style),
            PageBreak(),
            Paragraph(_escape_pdf(heading), styles["h1"]),
            Spacer(1, 0.2 * inch),
        ]
        story.extend(
            Paragraph(f"{number}. {_escape_pdf(prompt)}", item_style) for number, prompt in enumerate(prompts, start=1)
        )
        doc.build(story)
        return buffer.getvalue()

    def render(self, document: Mapping[str, Any], job_id: str) -> str:
        """Write ``documents/<job_id>.pdf`` plus metadata and return the relative locator."""

        payload = self._build(self.build_pdf, document)
        metadata = {
            "title": document.get("title"),
            "sections": len(document.get("sections") or []),
            "word_count": document.get("wordCount"),
        }
        return self._store(payload, DOCUMENTS_SUBDIR, job_id, metadata)

    def render_prompts(self, document: Mapping[str, Any], job_id: str) -> str:
        """Write ``prompts/<job_id>.pdf`` plus metadata and return the relative locator."""

        payload = self._build(self.build_prompts_pdf, document)
        metadata = {
            "title": document.get("title"),
            "prompts": len(document.get("prompts") or []),
        }
        return self._store(payload, PROMPTS_SUBDIR, job_id, metadata)

    @staticmethod
    def _build(builder: Callable[[Mapping[str, Any]], bytes], document: Mapping[str, Any]) -> bytes:
        try:
            return builder(document)
        except RenderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise RenderError(f"PDF build failed: {exc}") from exc

    def _store(self, payload: bytes, subdir: str, job_id: str, extra: Mapping[str, Any]) -> str:
        relative = f"{subdir}/{job_id}.pdf"
        pdf_path = self.artifacts_dir / relative
        metadata = {
            "id": job_id,
            "job_id": job_id,
            "name": f"{job_id}.pdf",
            **extra,
            "status": "ready",
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            artifacts_store.atomic_write_bytes(pdf_path, payload)
            artifacts_store.atomic_write_text(
                pdf_path.with_suffix(".json"), json.dumps(metadata, ensure_ascii=False, indent=2)
            )
            artifacts_store.register_artifact(pdf_path, metadata)
        except (OSError, ValueError) as exc:
            raise RenderError(f"could not store rendered document: {exc}") from exc

        LOGGER.info("document_rendered", extra={"job_id": job_id, "path": relative, "bytes": len(payload)})
        return relative


__all__ = ["DOCUMENTS_SUBDIR", "PROMPTS_SUBDIR", "PdfRenderer", "RenderError"]
