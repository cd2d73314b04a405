"""Tiered recovery of structured documents from malformed producer output."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from domain.models import Document, Section

from .json_scan import find_matching_close, iter_balanced_objects, iter_leaf_objects

LOGGER = logging.getLogger("ebook_factory.recovery")

PLACEHOLDER_TITLE = "Comprehensive Ebook"
PLACEHOLDER_DESCRIPTION = "A detailed guide with practical insights"
PLACEHOLDER_CONTENT = (
    "This section covers important aspects of the topic. It provides valuable insights "
    "and practical advice that you can apply right away. The content is designed to be "
    "actionable and results-oriented."
)
_LIST_PLACEHOLDERS = {
    "subheadings": "Key Concept",
    "examples": "Example",
    "keyTakeaways": "Key Takeaway",
}
_PLACEHOLDER_ITEMS = 3

_STRING_BODY = r'"((?:[^"\\]|\\.)*)"'
_SECTIONS_KEY_RE = re.compile(r'"(?:sections|chapters)"\s*:\s*\[')
_TITLE_RE = re.compile(r'"title"\s*:\s*' + _STRING_BODY)
_DESCRIPTION_RE = re.compile(r'"description"\s*:\s*' + _STRING_BODY)
_CONTENT_RE = re.compile(r'"content"\s*:\s*' + _STRING_BODY + r"\s*[,}]", re.DOTALL)
_LIST_KEY_RE = {name: re.compile(rf'"{name}"\s*:\s*\[') for name in _LIST_PLACEHOLDERS}
_SECTION_KEYS = frozenset({"title", "content", "subheadings", "examples", "keyTakeaways"})

_CANNED_SECTIONS: Tuple[Dict[str, Any], ...] = (
    {
        "title": "Introduction",
        "content": (
            "This ebook provides comprehensive coverage of the topic with detailed explanations and "
            "practical examples. The content is designed to be actionable and valuable for readers at all levels."
        ),
        "subheadings": ["Getting Started", "Core Concepts", "Practical Applications"],
        "examples": ["Real-world scenario", "Step-by-step implementation", "Case study analysis"],
        "keyTakeaways": [
            "Understand the fundamentals",
            "Learn practical applications",
            "Apply knowledge immediately",
        ],
    },
    {
        "title": "Advanced Topics",
        "content": (
            "This section explores more advanced concepts and applications, providing deeper insights and "
            "specialized knowledge. You'll learn sophisticated techniques and strategies to enhance your skills."
        ),
        "subheadings": ["Advanced Techniques", "Best Practices", "Optimization Strategies"],
        "examples": ["Complex implementation", "Advanced case study", "Performance optimization"],
        "keyTakeaways": ["Master advanced concepts", "Implement best practices", "Optimize for results"],
    },
)


class RecoveryTier(str, Enum):
    """Strategy level that produced a recovered document."""

    DIRECT = "direct"
    BRACKET_REPAIR = "bracket_repair"
    FIELD_EXTRACTION = "field_extraction"
    CANNED = "canned"


@dataclass(slots=True)
class RecoveryResult:
    """Best-effort document plus the tier that produced it."""

    document: Document
    tier: RecoveryTier
    degradation_flags: List[str] = field(default_factory=list)

    @property
    def is_canned(self) -> bool:
        return self.tier is RecoveryTier.CANNED


def _decode_string(raw: str) -> str:
    try:
        decoded = json.loads(f'"{raw}"')
    except json.JSONDecodeError:
        return raw.replace("\\n", "\n").replace('\\"', '"')
    return decoded if isinstance(decoded, str) else raw


def _match_string(pattern: re.Pattern[str], text: str) -> Optional[str]:
    match = pattern.search(text)
    if not match:
        return None
    return _decode_string(match.group(1))


def _document_from_payload(payload: Any) -> Optional[Document]:
    if not isinstance(payload, Mapping):
        return None
    raw_sections = payload.get("sections")
    if raw_sections is None:
        raw_sections = payload.get("chapters")
    if not isinstance(raw_sections, list):
        return None
    sections = [Section.from_dict(item) for item in raw_sections if isinstance(item, Mapping)]
    if not sections:
        return None
    title = payload.get("title")
    description = payload.get("description")
    return Document(
        title=title if isinstance(title, str) else None,
        description=description if isinstance(description, str) else None,
        sections=sections,
    )


def direct_extraction(text: str) -> Optional[Document]:
    """Tier 0: parse the span between the first ``{`` and the last ``}``."""

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return _document_from_payload(payload)


def bracket_repair(text: str) -> Optional[Document]:
    """Tier 1: rebuild the sections array from its individually valid objects."""

    match = _SECTIONS_KEY_RE.search(text)
    if not match:
        return None
    array_start = match.end() - 1
    array_end = find_matching_close(text, array_start)
    if array_end is None:
        LOGGER.info("recovery_array_unclosed", extra={"array_start": array_start})
    limit = array_end if array_end is not None else len(text)

    objects: List[Dict[str, Any]] = []
    for span in iter_balanced_objects(text, array_start + 1, limit):
        try:
            candidate = json.loads(text[span.start : span.end])
        except json.JSONDecodeError:
            continue
        if isinstance(candidate, dict) and _SECTION_KEYS.intersection(candidate):
            objects.append(candidate)
    if not objects:
        return None

    head = text[: match.start()]
    rebuilt = json.dumps(
        {
            "title": _match_string(_TITLE_RE, head) or PLACEHOLDER_TITLE,
            "description": _match_string(_DESCRIPTION_RE, head) or PLACEHOLDER_DESCRIPTION,
            "sections": objects,
        },
        ensure_ascii=False,
    )
    try:
        payload = json.loads(rebuilt)
    except json.JSONDecodeError:
        return None
    return _document_from_payload(payload)


def _split_list_items(inner: str) -> List[str]:
    items: List[str] = []
    for item in inner.split(","):
        cleaned = item.strip()
        if len(cleaned) >= 2 and cleaned.startswith('"') and cleaned.endswith('"'):
            cleaned = cleaned[1:-1]
        else:
            cleaned = cleaned.strip('"')
        cleaned = cleaned.strip()
        if cleaned:
            items.append(cleaned)
    return items


def _extract_list(chunk: str, name: str) -> Optional[List[str]]:
    match = _LIST_KEY_RE[name].search(chunk)
    if not match:
        return None
    open_index = match.end() - 1
    close_index = find_matching_close(chunk, open_index)
    if close_index is None:
        return None
    inner = chunk[open_index + 1 : close_index]
    try:
        parsed = json.loads(f"[{inner}]")
    except json.JSONDecodeError:
        return _split_list_items(inner)
    if not isinstance(parsed, list):
        return _split_list_items(inner)
    return [item if isinstance(item, str) else json.dumps(item, ensure_ascii=False) for item in parsed]


def _placeholder_items(name: str) -> List[str]:
    label = _LIST_PLACEHOLDERS[name]
    return [f"{label} {number}" for number in range(1, _PLACEHOLDER_ITEMS + 1)]


def _extract_section_fields(chunk: str, index: int) -> Section:
    title = _match_string(_TITLE_RE, chunk)
    content = None
    content_match = _CONTENT_RE.search(chunk)
    if content_match:
        content = _decode_string(content_match.group(1))

    lists: Dict[str, List[str]] = {}
    for name in _LIST_PLACEHOLDERS:
        extracted = _extract_list(chunk, name)
        lists[name] = extracted if extracted is not None else _placeholder_items(name)

    return Section(
        title=title.strip() if title and title.strip() else f"Section {index + 1}",
        content=content if content and content.strip() else PLACEHOLDER_CONTENT,
        subheadings=lists["subheadings"],
        examples=lists["examples"],
        key_takeaways=lists["keyTakeaways"],
    )


def field_extraction(text: str) -> Optional[Document]:
    """Tier 2: pull fields out of every title-bearing leaf object."""

    candidates = [
        span
        for span in iter_leaf_objects(text)
        if _TITLE_RE.search(text, span.start, span.end)
        and not _SECTIONS_KEY_RE.search(text, span.start, span.end)
    ]
    if not candidates:
        return None
    sections = [
        _extract_section_fields(text[span.start : span.end], index) for index, span in enumerate(candidates)
    ]
    head = text[: candidates[0].start]
    return Document(
        title=_match_string(_TITLE_RE, head),
        description=_match_string(_DESCRIPTION_RE, head),
        sections=sections,
    )


def canned_document() -> Document:
    """Tier 3: fixed template used when nothing could be salvaged."""

    return Document(
        title=PLACEHOLDER_TITLE,
        description=PLACEHOLDER_DESCRIPTION,
        sections=[Section.from_dict(section) for section in _CANNED_SECTIONS],
    )


_TIERS: Sequence[Tuple[RecoveryTier, Callable[[str], Optional[Document]]]] = (
    (RecoveryTier.DIRECT, direct_extraction),
    (RecoveryTier.BRACKET_REPAIR, bracket_repair),
    (RecoveryTier.FIELD_EXTRACTION, field_extraction),
)


def recover_document(raw_text: Any) -> RecoveryResult:
    """Convert arbitrary producer text into a document with at least one section.

    Never raises: the tiers are tried in order and the first one yielding a
    section wins; the canned template closes the chain.
    """

    text = raw_text if isinstance(raw_text, str) else ""
    text = text.lstrip("﻿")
    for tier, strategy in _TIERS:
        try:
            document = strategy(text)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("recovery_tier_error", extra={"tier": tier.value, "error": str(exc)})
            continue
        if document is not None and document.sections:
            LOGGER.info(
                "recovery_succeeded",
                extra={"tier": tier.value, "sections": len(document.sections), "raw_length": len(text)},
            )
            flags = [] if tier is RecoveryTier.DIRECT else [f"recovery_{tier.value}"]
            return RecoveryResult(document=document, tier=tier, degradation_flags=flags)

    LOGGER.warning("recovery_canned_fallback", extra={"raw_length": len(text)})
    return RecoveryResult(
        document=canned_document(),
        tier=RecoveryTier.CANNED,
        degradation_flags=["recovery_canned"],
    )


_PROMPTS_KEY_RE = re.compile(r'"prompts"\s*:\s*\[')
_STRING_LITERAL_RE = re.compile(_STRING_BODY)


def recover_prompts(raw_text: Any) -> List[str]:
    """Salvage prompt strings from a malformed prompt-pack answer.

    Tries the span between the first ``{`` and the last ``}``, then the
    complete string literals of the ``prompts`` array, even when the array is
    cut off. Returns an empty list when nothing usable is found; never raises.
    """

    text = raw_text if isinstance(raw_text, str) else ""
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        try:
            payload = json.loads(text[start : end + 1])
        except (json.JSONDecodeError, RecursionError):
            payload = None
        if isinstance(payload, Mapping) and isinstance(payload.get("prompts"), list):
            prompts = [item for item in payload["prompts"] if isinstance(item, str) and item.strip()]
            if prompts:
                return prompts

    match = _PROMPTS_KEY_RE.search(text)
    if not match:
        return []
    array_start = match.end() - 1
    array_end = find_matching_close(text, array_start)
    if array_end is None:
        LOGGER.info("recovery_prompts_unclosed", extra={"array_start": array_start})
    body = text[array_start + 1 : array_end if array_end is not None else len(text)]
    prompts = [_decode_string(literal) for literal in _STRING_LITERAL_RE.findall(body)]
    return [prompt for prompt in prompts if prompt.strip()]


__all__ = [
    "PLACEHOLDER_CONTENT",
    "RecoveryResult",
    "RecoveryTier",
    "bracket_repair",
    "canned_document",
    "direct_extraction",
    "field_extraction",
    "recover_document",
    "recover_prompts",
]
