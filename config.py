# -*- coding: utf-8 -*-

import os


def _env_int(name: str, default: int) -> int:
    value = str(os.getenv(name, "")).strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = str(os.getenv(name, "")).strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_float_list(name: str, default: str) -> tuple[float, ...]:
    raw = str(os.getenv(name, "")).strip()
    if not raw:
        raw = default
    parts = [part.strip() for part in raw.split(",") if part.strip()]
    delays = []
    for part in parts:
        try:
            delays.append(float(part))
        except ValueError:
            continue
    if not delays:
        delays = [float(value) for value in default.split(",") if value]
    return tuple(delays)


def _env_bool(name: str, default: bool) -> bool:
    raw = str(os.getenv(name, "")).strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "off", "no"}


# The producer speaks the OpenAI chat/completions dialect; Gemini exposes a
# compatible endpoint, which is the default target.
PRODUCER_API_KEY = str(os.getenv("GEMINI_API_KEY") or os.getenv("OPENAI_API_KEY") or "").strip()
PRODUCER_BASE_URL = (
    str(os.getenv("PRODUCER_BASE_URL", "")).strip()
    or "https://generativelanguage.googleapis.com/v1beta/openai/"
)
PRODUCER_MODEL = str(os.getenv("PRODUCER_MODEL", "")).strip() or "gemini-2.5-flash"
PRODUCER_TIMEOUT_S = max(1, _env_int("PRODUCER_TIMEOUT_S", 120))
PRODUCER_MAX_RETRIES = max(0, _env_int("PRODUCER_MAX_RETRIES", 2))
PRODUCER_MAX_TOKENS = max(256, _env_int("PRODUCER_MAX_TOKENS", 65536))
PRODUCER_TEMPERATURE = max(0.0, min(2.0, _env_float("PRODUCER_TEMPERATURE", 0.7)))
PRODUCER_RPS = max(1, _env_int("PRODUCER_RPS", 2))
PRODUCER_RPM = max(PRODUCER_RPS, _env_int("PRODUCER_RPM", 60))
PRODUCER_BACKOFF_SCHEDULE = _env_float_list("PRODUCER_BACKOFF_SCHEDULE", "0.75,1.5")

# Without a usable key every call is answered by the mock generator.
USE_MOCK_LLM = _env_bool("USE_MOCK_LLM", False)

BATCH_SIZE = max(1, _env_int("BATCH_SIZE", 5))
MIN_SECTIONS = max(1, _env_int("MIN_SECTIONS", 2))
MAX_SECTIONS = max(MIN_SECTIONS, _env_int("MAX_SECTIONS", 20))
DEFAULT_SECTIONS = min(MAX_SECTIONS, max(MIN_SECTIONS, _env_int("DEFAULT_SECTIONS", 10)))

MIN_PROMPTS = max(1, _env_int("MIN_PROMPTS", 1))
MAX_PROMPTS = max(MIN_PROMPTS, _env_int("MAX_PROMPTS", 200))
DEFAULT_PROMPTS = min(MAX_PROMPTS, max(MIN_PROMPTS, _env_int("DEFAULT_PROMPTS", 100)))

JOB_STORE_TTL_S = max(60, _env_int("JOB_STORE_TTL_S", 24 * 3600))
JOB_WORKERS = max(1, _env_int("JOB_WORKERS", 4))

ARTIFACTS_DIR = str(os.getenv("ARTIFACTS_DIR", "artifacts")).strip() or "artifacts"
