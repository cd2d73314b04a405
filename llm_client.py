# -*- coding: utf-8 -*-
"""Simple wrapper around an OpenAI-compatible chat completion endpoint with retries."""
from __future__ import annotations

import json
import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import httpx

from config import (
    PRODUCER_API_KEY,
    PRODUCER_BACKOFF_SCHEDULE,
    PRODUCER_BASE_URL,
    PRODUCER_MAX_TOKENS,
    PRODUCER_MODEL,
    PRODUCER_TEMPERATURE,
    PRODUCER_TIMEOUT_S,
)

LOGGER = logging.getLogger("ebook_factory.llm_client")

DEFAULT_MODEL = PRODUCER_MODEL
MAX_ATTEMPTS = 2
BACKOFF_SCHEDULE = list(PRODUCER_BACKOFF_SCHEDULE)
RETRYABLE_STATUSES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})

_HTTP_CLIENT_LIMITS = httpx.Limits(
    max_connections=16,
    max_keepalive_connections=16,
    keepalive_expiry=120.0,
)
_HTTP_CLIENTS: "OrderedDict[float, httpx.Client]" = OrderedDict()


def reset_http_client_cache() -> None:
    """Close and clear pooled HTTP clients.

    Intended for test code to avoid state leaking between invocations when
    mocked clients keep internal counters."""

    while _HTTP_CLIENTS:
        _, pooled_client = _HTTP_CLIENTS.popitem(last=False)
        try:
            pooled_client.close()
        except Exception:  # pragma: no cover - best effort cleanup
            pass


def _acquire_http_client(timeout_value: float) -> httpx.Client:
    key = round(timeout_value, 1)
    client = _HTTP_CLIENTS.get(key)
    if client is not None:
        _HTTP_CLIENTS.move_to_end(key)
        return client

    timeout = httpx.Timeout(
        timeout=timeout_value,
        connect=min(20.0, timeout_value),
        read=timeout_value,
        write=timeout_value,
    )
    client = httpx.Client(
        timeout=timeout,
        limits=_HTTP_CLIENT_LIMITS,
        headers={"Connection": "keep-alive"},
        http2=True,
    )
    _HTTP_CLIENTS[key] = client
    while len(_HTTP_CLIENTS) > 4:
        _, old_client = _HTTP_CLIENTS.popitem(last=False)
        try:
            old_client.close()
        except Exception:  # pragma: no cover - best effort cleanup
            pass
    return client


@dataclass(frozen=True)
class GenerationResult:
    """Container describing the outcome of a text generation call."""

    text: str
    model_used: str
    retry_used: bool
    fallback_used: Optional[str]
    fallback_reason: Optional[str] = None
    metadata: Optional[Dict[str, object]] = None


class EmptyCompletionError(RuntimeError):
    """Raised when the model responds without any textual content."""

    status_code = 502

    def __init__(self, message: str, *, raw_response: Optional[Dict[str, object]] = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response or {}


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code in RETRYABLE_STATUSES:
            return True
    if isinstance(exc, httpx.TimeoutException):
        return True
    if isinstance(exc, httpx.TransportError):
        return True
    return False


def _describe_error(exc: BaseException) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return str(exc.response.status_code)
    status = getattr(exc, "status_code", None)
    if status:
        return str(status)
    return exc.__class__.__name__


def _extract_error_message(response: httpx.Response) -> str:
    message = ""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error_block = payload.get("error")
        if isinstance(error_block, dict):
            message = str(error_block.get("message", ""))
        elif isinstance(payload.get("message"), str):
            message = payload["message"]
    if not message:
        message = response.text or ""
    return message.strip()


def _raise_for_last_error(last_error: BaseException) -> None:
    if isinstance(last_error, httpx.HTTPStatusError):
        status_code = last_error.response.status_code
        detail = _extract_error_message(last_error.response)
        message = f"Text producer error: HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        raise RuntimeError(message) from last_error
    if isinstance(last_error, httpx.TimeoutException):
        raise RuntimeError("Network timeout while calling the text producer.") from last_error
    if isinstance(last_error, httpx.TransportError):
        raise RuntimeError("Network failure while calling the text producer.") from last_error
    if isinstance(last_error, EmptyCompletionError):
        raise last_error
    raise RuntimeError(f"Text producer did not respond: {last_error}") from last_error


def _make_request(
    http_client: httpx.Client,
    *,
    api_url: str,
    headers: Dict[str, str],
    payload: Dict[str, object],
    schedule: Sequence[float],
    max_attempts: int = MAX_ATTEMPTS,
) -> Dict[str, object]:
    last_error: Optional[BaseException] = None
    attempt_index = 0
    while attempt_index < max_attempts:
        attempt_index += 1
        try:
            response = http_client.post(api_url, headers=headers, json=payload)
            response.raise_for_status()
            data = response.json()
            if isinstance(data, dict):
                return data
            raise RuntimeError("Text producer returned an unexpected response format.")
        except Exception as exc:  # noqa: BLE001
            last_error = exc
        if attempt_index >= max_attempts or not _should_retry(last_error):
            break
        sleep_for = schedule[min(attempt_index - 1, len(schedule) - 1)] if schedule else 0.0
        LOGGER.warning(
            "llm_retry",
            extra={"attempt": attempt_index, "reason": _describe_error(last_error), "sleep_s": sleep_for},
        )
        time.sleep(sleep_for)
    if last_error:
        _raise_for_last_error(last_error)
    raise RuntimeError("Text producer did not respond.")


def _extract_choice_text(data: Dict[str, object]) -> str:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise EmptyCompletionError("Text producer returned no choices.", raw_response=data)
    choice = choices[0]
    message = choice.get("message") if isinstance(choice, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, list):
        content = "".join(
            str(part.get("text", "")) for part in content if isinstance(part, dict)
        )
    if not isinstance(content, str) or not content.strip():
        raise EmptyCompletionError("Text producer returned an empty completion.", raw_response=data)
    return content


def request_completion(
    prompt: str,
    *,
    api_key: str = PRODUCER_API_KEY,
    base_url: str = PRODUCER_BASE_URL,
    model: Optional[str] = None,
    max_tokens: int = PRODUCER_MAX_TOKENS,
    temperature: float = PRODUCER_TEMPERATURE,
    timeout_s: float = PRODUCER_TIMEOUT_S,
    backoff_schedule: Optional[List[float]] = None,
    http_client: Optional[httpx.Client] = None,
) -> GenerationResult:
    """Send one user prompt to ``{base_url}chat/completions`` and return the text."""

    if not prompt or not prompt.strip():
        raise ValueError("prompt must not be empty")
    if not api_key:
        raise RuntimeError("No API key configured for the text producer. Set GEMINI_API_KEY.")

    model_name = (model or DEFAULT_MODEL).strip()
    try:
        timeout_value = float(timeout_s)
    except (TypeError, ValueError):
        timeout_value = 120.0
    client = http_client or _acquire_http_client(min(max(timeout_value, 1.0), 300.0))
    api_url = base_url.rstrip("/") + "/chat/completions"
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    payload: Dict[str, object] = {
        "model": model_name,
        "messages": [{"role": "user", "content": prompt}],
        "max_tokens": int(max_tokens),
        "temperature": float(temperature),
    }

    started_at = time.perf_counter()
    data = _make_request(
        client,
        api_url=api_url,
        headers=headers,
        payload=payload,
        schedule=backoff_schedule or BACKOFF_SCHEDULE,
    )
    text = _extract_choice_text(data)
    LOGGER.info(
        "llm_completion_received",
        extra={
            "model": model_name,
            "chars": len(text),
            "duration_ms": int((time.perf_counter() - started_at) * 1000),
        },
    )
    return GenerationResult(
        text=text,
        model_used=str(data.get("model") or model_name),
        retry_used=False,
        fallback_used=None,
        metadata={"finish_reason": _finish_reason(data)},
    )


def _finish_reason(data: Dict[str, object]) -> Optional[str]:
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        reason = choices[0].get("finish_reason")
        return str(reason) if reason else None
    return None


_TOPIC_PATTERNS = (
    re.compile(r'"([^"]+)"'),
    re.compile(r"about\s+([^.\n]+)"),
    re.compile(r"topic[:\s]+([^.\n]+)", re.IGNORECASE),
)


def extract_topic(prompt: str) -> Optional[str]:
    for pattern in _TOPIC_PATTERNS:
        match = pattern.search(prompt or "")
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


_MOCK_BATCH_RE = re.compile(r"Generate the next \d+ sections")
_MOCK_PROMPT_PACK_RE = re.compile(r"generate (\d+) diverse and high-quality AI prompts")
_MOCK_PROMPT_TEMPLATES = (
    "Explain the core ideas of {topic} to a complete beginner in five short steps.",
    "Write a 30-day learning plan for {topic} with one concrete task per day.",
    "List 10 common mistakes people make with {topic} and how to avoid each one.",
    "Create a viral short-video script about {topic}. Include hook + steps + CTA.",
    "Compare three popular approaches to {topic} in a table with pros and cons.",
)


def _mock_prompt_pack(topic: str, count: int) -> str:
    prompts = []
    for index in range(max(1, count)):
        template = _MOCK_PROMPT_TEMPLATES[index % len(_MOCK_PROMPT_TEMPLATES)]
        prompt = template.format(topic=topic)
        if index >= len(_MOCK_PROMPT_TEMPLATES):
            prompt = f"{prompt} Variation {index // len(_MOCK_PROMPT_TEMPLATES) + 1}."
        prompts.append(prompt)
    return json.dumps({"prompts": prompts}, ensure_ascii=False)


def generate_mock_content(prompt: str) -> str:
    """Offline stand-in for the producer used when no real answer is available.

    The answer shape follows the request wording: batch prompts get sections,
    prompt-pack requests get a ``prompts`` array, anything else gets a title
    and description.
    """

    text = prompt or ""
    topic = extract_topic(text) or "the topic"
    pack = _MOCK_PROMPT_PACK_RE.search(text)
    if pack:
        return _mock_prompt_pack(topic, int(pack.group(1)))
    if not _MOCK_BATCH_RE.search(text):
        return json.dumps(
            {
                "title": f"The Complete Guide to {topic}",
                "description": f"A comprehensive guide to mastering {topic}. Perfect for beginners and experts alike.",
            },
            ensure_ascii=False,
        )
    payload = {
        "sections": [
            {
                "title": f"Introduction to {topic}",
                "content": (
                    f"Welcome to the world of {topic}! This guide will help you understand the fundamentals "
                    f"and advanced concepts. {topic} is an essential skill in today's world, and this ebook "
                    "will provide you with practical knowledge you can apply immediately.\n\n"
                    "In this comprehensive guide, we'll cover everything from basic principles to advanced "
                    "strategies. Whether you're just starting out or looking to enhance your existing "
                    "knowledge, this ebook has something valuable for you."
                ),
                "subheadings": ["Getting Started", "Core Concepts", "Practical Applications"],
                "examples": [
                    "A real-world scenario showing how to apply these concepts",
                    "Step-by-step guide for implementing the strategies",
                    "Case study demonstrating successful implementation",
                ],
                "keyTakeaways": [
                    f"Understand the fundamental principles of {topic}",
                    "Learn practical strategies you can implement immediately",
                    "Gain confidence in applying these concepts in real situations",
                ],
            },
            {
                "title": f"Advanced {topic} Strategies",
                "content": (
                    f"Now that you understand the basics, let's dive into more advanced strategies for "
                    f"mastering {topic}. This section explores sophisticated techniques and approaches that "
                    "can take your skills to the next level.\n\n"
                    "We'll examine complex scenarios and provide detailed solutions for each, so you can "
                    "analyze situations, make informed decisions and deliver results."
                ),
                "subheadings": ["Advanced Techniques", "Problem Solving", "Optimization"],
                "examples": [
                    "Complex problem-solving scenario with detailed analysis",
                    "Optimization techniques for maximum efficiency",
                    "Advanced implementation strategies",
                ],
                "keyTakeaways": [
                    "Master advanced techniques and strategies",
                    "Develop problem-solving skills for complex situations",
                    "Learn optimization methods for better results",
                ],
            },
        ],
    }
    return json.dumps(payload, ensure_ascii=False)


__all__ = [
    "BACKOFF_SCHEDULE",
    "DEFAULT_MODEL",
    "EmptyCompletionError",
    "GenerationResult",
    "extract_topic",
    "generate_mock_content",
    "request_completion",
    "reset_http_client_cache",
]
