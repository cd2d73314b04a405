"""Document and section value objects."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

LIST_FIELDS = ("subheadings", "examples", "keyTakeaways")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_text_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


@dataclass
class Section:
    """One titled unit of a document."""

    title: str
    content: str
    subheadings: List[str] = field(default_factory=list)
    examples: List[str] = field(default_factory=list)
    key_takeaways: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Section":
        return cls(
            title=_as_text(payload.get("title")),
            content=_as_text(payload.get("content")),
            subheadings=_as_text_list(payload.get("subheadings")),
            examples=_as_text_list(payload.get("examples")),
            key_takeaways=_as_text_list(payload.get("keyTakeaways")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "content": self.content,
            "subheadings": list(self.subheadings),
            "examples": list(self.examples),
            "keyTakeaways": list(self.key_takeaways),
        }


@dataclass
class Document:
    """Assembled title, description and ordered sections."""

    title: Optional[str] = None
    description: Optional[str] = None
    sections: List[Section] = field(default_factory=list)
    word_count: int = 0

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Document":
        raw_sections = payload.get("sections")
        if isinstance(raw_sections, Mapping):
            raw_sections = [raw_sections]
        sections = [
            Section.from_dict(item)
            for item in (raw_sections if isinstance(raw_sections, list) else [])
            if isinstance(item, Mapping)
        ]
        title = payload.get("title")
        description = payload.get("description")
        return cls(
            title=title if isinstance(title, str) else None,
            description=description if isinstance(description, str) else None,
            sections=sections,
            word_count=int(payload.get("wordCount") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "sections": [section.to_dict() for section in self.sections],
            "wordCount": self.word_count,
        }

    def section_titles(self) -> List[str]:
        return [section.title for section in self.sections]


def count_words(sections: Iterable[Any]) -> int:
    """Sum whitespace-delimited tokens over every section body."""

    total = 0
    for section in sections:
        if isinstance(section, Section):
            body = section.content
        elif isinstance(section, Mapping):
            body = _as_text(section.get("content"))
        else:
            continue
        total += len(body.split())
    return total


__all__ = ["Document", "LIST_FIELDS", "Section", "count_words"]
