"""Helpers describing how a requested section count is split into batches."""
from __future__ import annotations

import math
from typing import Any, List

from config import BATCH_SIZE, DEFAULT_PROMPTS, DEFAULT_SECTIONS, MAX_PROMPTS, MAX_SECTIONS, MIN_PROMPTS, MIN_SECTIONS


def clamp_section_count(value: Any, *, default: int = DEFAULT_SECTIONS) -> int:
    """Coerce a requested section count into the supported range."""

    try:
        numeric = int(value)
    except (TypeError, ValueError):
        numeric = default
    return max(MIN_SECTIONS, min(MAX_SECTIONS, numeric))


def clamp_prompt_count(value: Any, *, default: int = DEFAULT_PROMPTS) -> int:
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        numeric = default
    return max(MIN_PROMPTS, min(MAX_PROMPTS, numeric))


def total_batches(requested: int, batch_size: int = BATCH_SIZE) -> int:
    if requested <= 0:
        return 0
    return math.ceil(requested / max(1, batch_size))


def plan_batches(requested: int, batch_size: int = BATCH_SIZE) -> List[int]:
    """Return the number of sections asked for in each batch, in order."""

    size = max(1, batch_size)
    remaining = max(0, requested)
    plan: List[int] = []
    while remaining > 0:
        chunk = min(size, remaining)
        plan.append(chunk)
        remaining -= chunk
    return plan


__all__ = ["clamp_prompt_count", "clamp_section_count", "plan_batches", "total_batches"]
