# -*- coding: utf-8 -*-
"""Normalization of an assembled document before it is stored as final."""
from __future__ import annotations

import copy
import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from domain.models import LIST_FIELDS

LOGGER = logging.getLogger("ebook_factory.sanitizer")

_TRAILING_NUMBER_RE = re.compile(r"(?:\s+\d+)+$")
_FALLBACK_TITLE_RE = re.compile(r"^Untitled Section \d+$")
_TOC_LINE_RE = re.compile(r"^[ \t]*Section \d+:?.*?\d+[ \t]*$", re.MULTILINE)
_BULLET_RE = re.compile(r"^([ \t]*)(?:[*\-•][ \t]+)+", re.MULTILINE)
_BOLD_RE = re.compile(r"\*\*(.*?)\*\*", re.DOTALL)
_BLANK_RUN_RE = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")


def fallback_section_title(position: int) -> str:
    return f"Untitled Section {position}"


def fallback_section_body(position: int) -> str:
    return f"Content for section {position} is being generated."


def sanitize_title(value: Any, position: int) -> str:
    """Drop copied page numbers from a section title."""

    if value is None:
        return fallback_section_title(position)
    text = value if isinstance(value, str) else str(value)
    text = text.strip()
    if _FALLBACK_TITLE_RE.match(text):
        return text
    text = _TRAILING_NUMBER_RE.sub("", text).strip()
    return text or fallback_section_title(position)


def _clean_body_once(text: str) -> str:
    text = _TOC_LINE_RE.sub("", text)
    text = _BULLET_RE.sub(r"\1", text)
    text = _BOLD_RE.sub(r"\1", text)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text.strip()


def sanitize_body(value: Any, position: int) -> str:
    if value is None:
        return fallback_section_body(position)
    text = value if isinstance(value, str) else str(value)
    # Removing one pattern can expose another; run to a fixed point.
    while True:
        cleaned = _clean_body_once(text)
        if cleaned == text:
            break
        text = cleaned
    return text or fallback_section_body(position)


def sanitize_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def sanitize_section(section: Dict[str, Any], position: int) -> Dict[str, Any]:
    """Normalize one wire-format section in place and return it."""

    section["title"] = sanitize_title(section.get("title"), position)
    section["content"] = sanitize_body(section.get("content"), position)
    for name in LIST_FIELDS:
        section[name] = sanitize_list(section.get(name))
    return section


def sanitize_document(document: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return a sanitized deep copy of ``document``.

    Applying the function to its own output returns an equal value. A missing
    ``sections`` field is left alone and a single section object is wrapped in
    a list; entries that are not objects are passed through untouched.
    """

    if document is None:
        return None
    result: Dict[str, Any] = copy.deepcopy(dict(document))
    sections = result.get("sections")
    if sections is None:
        LOGGER.debug("sanitize_skipped", extra={"reason": "no_sections"})
        return result
    if isinstance(sections, Mapping):
        sections = [dict(sections)]
        result["sections"] = sections
    if not isinstance(sections, list):
        LOGGER.warning("sanitize_skipped", extra={"reason": "sections_not_a_list"})
        return result

    for index, section in enumerate(sections):
        if isinstance(section, dict):
            sanitize_section(section, index + 1)
    return result


__all__ = [
    "fallback_section_body",
    "fallback_section_title",
    "sanitize_body",
    "sanitize_document",
    "sanitize_list",
    "sanitize_section",
    "sanitize_title",
]
