"""Retry policy configuration models."""

import math
from typing import Callable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator

from retrack.domain.models.failure import FailureContext

SAFE_HTTP_METHODS = ("GET", "HEAD", "OPTIONS")
IDEMPOTENT_HTTP_METHODS = SAFE_HTTP_METHODS + ("PUT", "DELETE")

StatusRange = Union[StrictInt, Tuple[StrictInt, StrictInt]]
RetryPredicate = Callable[[FailureContext], bool]
RetryHook = Callable[[FailureContext], None]


def _default_status_ranges() -> List[StatusRange]:
    return [(100, 199), 429, (500, 599)]


def _upper_methods(value: List[str]) -> List[str]:
    return [method.upper() for method in value]


class RetryPolicy(BaseModel):
    """Active retry policy.

    Attributes:
        max_retries: Retry budget per logical request (0 disables retries)
        retry_delay_ms: Fixed delay before each resubmission, in milliseconds
        retryable_methods: HTTP methods considered retryable
        retryable_status_ranges: Status codes or inclusive (low, high) ranges
        should_retry: Custom retry predicate (None = built-in composite)
        should_retry_limit: Advisory cap for custom predicates, stored only
        on_will_retry: Called when a retry is scheduled
        on_start_retry: Called right before the retry is re-issued
    """

    max_retries: int = Field(3, ge=0)
    retry_delay_ms: float = Field(0, ge=0)
    retryable_methods: List[str] = Field(default_factory=lambda: list(IDEMPOTENT_HTTP_METHODS))
    retryable_status_ranges: List[StatusRange] = Field(default_factory=_default_status_ranges)
    should_retry: Optional[RetryPredicate] = None
    should_retry_limit: float = Field(math.inf, gt=0)
    on_will_retry: Optional[RetryHook] = None
    on_start_retry: Optional[RetryHook] = None

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",
    )

    @field_validator("retryable_methods")
    @classmethod
    def normalize_methods(cls, value: List[str]) -> List[str]:
        return _upper_methods(value)


class PolicyUpdate(BaseModel):
    """Validation rules for a single field of a partial policy update.

    Stricter than RetryPolicy: delays and limits must be strictly positive,
    numbers are never coerced from strings or bools.
    """

    max_retries: Optional[StrictInt] = Field(None, ge=0)
    retry_delay_ms: Optional[float] = Field(None, gt=0, strict=True)
    retryable_methods: Optional[List[StrictStr]] = None
    retryable_status_ranges: Optional[List[StatusRange]] = None
    should_retry: Optional[RetryPredicate] = None
    should_retry_limit: Optional[float] = Field(None, gt=0, strict=True)
    on_will_retry: Optional[RetryHook] = None
    on_start_retry: Optional[RetryHook] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("retryable_methods")
    @classmethod
    def normalize_methods(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _upper_methods(value) if value is not None else None
