"""Pure prompt construction utilities."""
from __future__ import annotations

from typing import Iterable, List

_BATCH_RULES = """\
**RULES:**
- Output ONLY a valid JSON object.
- The JSON object must have a single key: "sections".
- "sections" is an array of section objects.
- Each section object must have keys: "title", "content", "subheadings", "examples", "keyTakeaways".
- "subheadings", "examples" and "keyTakeaways" are arrays of strings.
- DO NOT number the "title" string.
- Section "title" must be concise (under 10 words), descriptive, and accurately reflect the section's content. Avoid questions or overly long phrases in titles.
- Do not repeat any of the existing section titles.
- "content" must be 800-1200 words of detailed, expert-level content."""


def _quote_titles(titles: Iterable[str]) -> str:
    cleaned: List[str] = []
    for title in titles:
        text = str(title or "").strip()
        if text:
            cleaned.append('"' + text.replace('"', "'") + '"')
    return ", ".join(cleaned)


def build_batch_prompt(topic: str, existing_titles: Iterable[str], count: int) -> str:
    """Build the request for the next ``count`` sections of the ebook."""

    return "\n".join(
        [
            f'Topic: "{topic.strip()}"',
            f"Existing Section Titles: [{_quote_titles(existing_titles)}]",
            "",
            f"Generate the next {count} sections for this ebook.",
            "",
            _BATCH_RULES,
            "",
            "JSON OUTPUT:",
        ]
    )


def build_title_prompt(topic: str, section_titles: Iterable[str]) -> str:
    return (
        f'Generate a SEO-friendly title and a compelling description for an ebook about "{topic.strip()}" '
        f"with sections on: {_quote_titles(section_titles)}. "
        'Respond with a JSON object containing "title" and "description".'
    )


_PROMPT_PACK_STYLE = """\
The prompts should be in the style of the following examples:
- "Create a viral Instagram Reel script teaching how to grow a faceless page from scratch. Include hook + steps + CTA."
- "Explain why faceless pages grow faster. Give 5 psychological reasons."
- "List 10 content ideas for a faceless page in the {insert niche} niche that can grow to 10k followers fast."
- "Break down the algorithm strategy for faceless theme pages growing from 0 to 50k."
"""


def build_prompt_pack_prompt(topic: str, count: int) -> str:
    """Build the request for a pack of ``count`` ready-to-use AI prompts."""

    return "\n".join(
        [
            "You are an expert prompt generator.",
            f'Your task is to generate {count} diverse and high-quality AI prompts about the topic: "{topic.strip()}".',
            "",
            _PROMPT_PACK_STYLE.rstrip(),
            "",
            "**RULES:**",
            "- Output ONLY a valid JSON object.",
            '- The JSON object must have a single key: "prompts".',
            f'- "prompts" must be an array of {count} strings.',
            "- Each string in the array is a unique and creative prompt.",
            "- Do not number the prompts in the output.",
            "",
            "JSON OUTPUT:",
        ]
    )


def fallback_title(topic: str) -> str:
    return f"Guide to {topic.strip()}"


def fallback_description(topic: str, section_count: int | None = None) -> str:
    if section_count:
        return f"A comprehensive {section_count}-section ebook about {topic.strip()}"
    return f"An ebook about {topic.strip()}"


__all__ = [
    "build_batch_prompt",
    "build_prompt_pack_prompt",
    "build_title_prompt",
    "fallback_description",
    "fallback_title",
]
