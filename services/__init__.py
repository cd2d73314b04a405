"""Service layer utilities."""

from .llm_client import ProducerClient, RetryPolicy, build_default_client  # noqa: F401
from .recovery import RecoveryResult, RecoveryTier, recover_document  # noqa: F401

__all__ = [
    "ProducerClient",
    "RecoveryResult",
    "RecoveryTier",
    "RetryPolicy",
    "build_default_client",
    "recover_document",
]
