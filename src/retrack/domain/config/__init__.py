"""Configuration models with Pydantic validation."""

from retrack.domain.config.policy import (
    IDEMPOTENT_HTTP_METHODS,
    SAFE_HTTP_METHODS,
    PolicyUpdate,
    RetryPolicy,
)

__all__ = [
    "RetryPolicy",
    "PolicyUpdate",
    "SAFE_HTTP_METHODS",
    "IDEMPOTENT_HTTP_METHODS",
]
