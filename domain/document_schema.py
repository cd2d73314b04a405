"""Strict parsing of producer output against JSON schemas."""
from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple

from jsonschema import Draft7Validator

from .models import Section

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

SECTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["title", "content"],
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "content": {"type": "string"},
        "subheadings": _STRING_LIST,
        "examples": _STRING_LIST,
        "keyTakeaways": _STRING_LIST,
    },
}

BATCH_RESPONSE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["sections"],
    "properties": {
        "sections": {"type": "array", "minItems": 1, "items": SECTION_SCHEMA},
    },
}

TITLE_RESPONSE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["title", "description"],
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "description": {"type": "string", "minLength": 1},
    },
}

PROMPT_PACK_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["prompts"],
    "properties": {
        "prompts": {"type": "array", "minItems": 1, "items": {"type": "string"}},
    },
}

_BATCH_VALIDATOR = Draft7Validator(BATCH_RESPONSE_SCHEMA)
_TITLE_VALIDATOR = Draft7Validator(TITLE_RESPONSE_SCHEMA)
_PROMPT_PACK_VALIDATOR = Draft7Validator(PROMPT_PACK_SCHEMA)


class StrictParseError(ValueError):
    """Raised when producer output is not the exact JSON shape requested."""

    def __init__(self, message: str, *, errors: List[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


def _load_json(text: Any) -> Any:
    if not isinstance(text, str) or not text.strip():
        raise StrictParseError("empty_response")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise StrictParseError(f"invalid_json: {exc.msg} at {exc.pos}") from exc
    except RecursionError as exc:
        raise StrictParseError("invalid_json: nesting too deep") from exc


def _validate(validator: Draft7Validator, payload: Any) -> None:
    errors = sorted(validator.iter_errors(payload), key=lambda error: list(error.absolute_path))
    if errors:
        messages = [
            f"{'/'.join(str(part) for part in error.absolute_path) or '$'}: {error.message}"
            for error in errors[:5]
        ]
        raise StrictParseError("schema_mismatch", errors=messages)


def parse_batch_response(text: Any) -> List[Section]:
    """Parse a batch response exactly as requested or raise ``StrictParseError``."""

    payload = _load_json(text)
    _validate(_BATCH_VALIDATOR, payload)
    return [Section.from_dict(item) for item in payload["sections"]]


def parse_title_response(text: Any) -> Tuple[str, str]:
    payload = _load_json(text)
    _validate(_TITLE_VALIDATOR, payload)
    return payload["title"].strip(), payload["description"].strip()


def parse_prompt_pack_response(text: Any) -> List[str]:
    payload = _load_json(text)
    _validate(_PROMPT_PACK_VALIDATOR, payload)
    return list(payload["prompts"])


__all__ = [
    "BATCH_RESPONSE_SCHEMA",
    "PROMPT_PACK_SCHEMA",
    "SECTION_SCHEMA",
    "StrictParseError",
    "TITLE_RESPONSE_SCHEMA",
    "parse_batch_response",
    "parse_prompt_pack_response",
    "parse_title_response",
]
