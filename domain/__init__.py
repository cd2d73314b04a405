"""Domain-level models, prompts and batch policy."""

from .models import Document, Section, count_words  # noqa: F401
from .generation_policy import clamp_section_count, plan_batches, total_batches  # noqa: F401
from .prompt_builder import build_batch_prompt, build_title_prompt  # noqa: F401
from .document_schema import StrictParseError, parse_batch_response, parse_title_response  # noqa: F401

__all__ = [
    "Document",
    "Section",
    "StrictParseError",
    "build_batch_prompt",
    "build_title_prompt",
    "clamp_section_count",
    "count_words",
    "parse_batch_response",
    "parse_title_response",
    "plan_batches",
    "total_batches",
]
