"""Text producer facade with rate limiting, bounded retries and mock fallback."""
from __future__ import annotations

import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, List, Optional

from config import (
    PRODUCER_API_KEY,
    PRODUCER_BASE_URL,
    PRODUCER_MAX_RETRIES,
    PRODUCER_MAX_TOKENS,
    PRODUCER_MODEL,
    PRODUCER_RPM,
    PRODUCER_RPS,
    PRODUCER_TEMPERATURE,
    PRODUCER_TIMEOUT_S,
    USE_MOCK_LLM,
)
from llm_client import GenerationResult, generate_mock_content, request_completion
from observability.logger import get_logger
from observability.metrics import get_registry

LOGGER = get_logger("ebook_factory.services.llm_client")
FALLBACK_COUNTER = get_registry().counter("producer.fallback_total")

_PLACEHOLDER_KEY_MARKERS = ("your_actual", "your-api-key", "changeme")


@dataclass
class RetryPolicy:
    max_retries: int = PRODUCER_MAX_RETRIES
    base_delay: float = 0.4
    jitter: float = 0.3


class _RateLimiter:
    def __init__(self, *, rps: int, rpm: int) -> None:
        self._rps = max(1, rps)
        self._rpm = max(self._rps, rpm)
        self._per_second: deque[float] = deque()
        self._per_minute: deque[float] = deque()
        self._lock = threading.Lock()

    def acquire(self) -> None:
        while True:
            with self._lock:
                now = time.monotonic()
                self._trim(now)
                if len(self._per_second) < self._rps and len(self._per_minute) < self._rpm:
                    self._per_second.append(now)
                    self._per_minute.append(now)
                    return
                wait_options: List[float] = []
                if self._per_second:
                    wait_options.append(1.0 - (now - self._per_second[0]))
                if self._per_minute:
                    wait_options.append(60.0 - (now - self._per_minute[0]))
            delay = max(0.05, min(wait_options) if wait_options else 0.05)
            time.sleep(delay)

    def _trim(self, now: float) -> None:
        while self._per_second and now - self._per_second[0] >= 1.0:
            self._per_second.popleft()
        while self._per_minute and now - self._per_minute[0] >= 60.0:
            self._per_minute.popleft()


def _usable_key(api_key: str) -> bool:
    key = (api_key or "").strip()
    if len(key) < 10:
        return False
    lowered = key.lower()
    return not any(marker in lowered for marker in _PLACEHOLDER_KEY_MARKERS)


class ProducerClient:
    """Bounded text producer: ``generate`` always returns text and never raises.

    Real calls go through ``request_completion``; once the retry budget is spent
    (or when no usable key is configured) the mock generator answers instead and
    the result carries ``fallback_used="mock"``.
    """

    def __init__(
        self,
        *,
        api_key: str = PRODUCER_API_KEY,
        base_url: str = PRODUCER_BASE_URL,
        model: str = PRODUCER_MODEL,
        max_tokens: int = PRODUCER_MAX_TOKENS,
        temperature: float = PRODUCER_TEMPERATURE,
        timeout_s: float = PRODUCER_TIMEOUT_S,
        retry_policy: Optional[RetryPolicy] = None,
        rps: int = PRODUCER_RPS,
        rpm: int = PRODUCER_RPM,
        use_mock: bool = USE_MOCK_LLM,
        completion_fn: Callable[..., GenerationResult] = request_completion,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self.model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout_s = timeout_s
        self._policy = retry_policy or RetryPolicy()
        self._limiter = _RateLimiter(rps=rps, rpm=rpm)
        self._completion_fn = completion_fn
        self._sleep = sleep
        self.mock_mode = bool(use_mock) or not _usable_key(api_key)

    def describe(self) -> dict:
        return {
            "model": self.model,
            "base_url": self._base_url,
            "mock_mode": self.mock_mode,
            "max_retries": self._policy.max_retries,
        }

    def _mock(self, prompt: str, reason: str, *, retry_used: bool) -> GenerationResult:
        FALLBACK_COUNTER.inc()
        LOGGER.warning("llm_mock_fallback", extra={"reason": reason, "prompt_chars": len(prompt)})
        return GenerationResult(
            text=generate_mock_content(prompt),
            model_used="mock",
            retry_used=retry_used,
            fallback_used="mock",
            fallback_reason=reason,
        )

    def generate(self, prompt: str) -> GenerationResult:
        if self.mock_mode:
            return self._mock(prompt, "mock_mode", retry_used=False)

        attempts = 0
        last_error: Optional[Exception] = None
        while attempts <= self._policy.max_retries:
            attempts += 1
            self._limiter.acquire()
            started_at = time.perf_counter()
            try:
                result = self._completion_fn(
                    prompt,
                    api_key=self._api_key,
                    base_url=self._base_url,
                    model=self.model,
                    max_tokens=self._max_tokens,
                    temperature=self._temperature,
                    timeout_s=self._timeout_s,
                )
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                LOGGER.warning(
                    "llm_request_failed",
                    extra={"model": self.model, "attempt": attempts, "error": str(exc)},
                )
                if attempts > self._policy.max_retries:
                    break
                delay = self._policy.base_delay * (2 ** (attempts - 1))
                self._sleep(delay + random.random() * self._policy.jitter)
                continue
            LOGGER.info(
                "llm_request_succeeded",
                extra={
                    "model": self.model,
                    "attempt": attempts,
                    "duration_ms": int((time.perf_counter() - started_at) * 1000),
                },
            )
            if attempts > 1:
                return GenerationResult(
                    text=result.text,
                    model_used=result.model_used,
                    retry_used=True,
                    fallback_used=result.fallback_used,
                    fallback_reason=result.fallback_reason,
                    metadata=result.metadata,
                )
            return result

        reason = str(last_error) if last_error else "no_response"
        return self._mock(prompt, reason, retry_used=attempts > 1)


def build_default_client() -> ProducerClient:
    """Construct the process-wide producer from configuration."""

    client = ProducerClient()
    LOGGER.info("producer_configured", extra=client.describe())
    return client


__all__ = ["ProducerClient", "RetryPolicy", "build_default_client"]
