"""Failure models - what the tracker sees when an attempt fails"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Optional

if TYPE_CHECKING:
    from retrack.domain.models.request import RequestDescriptor


@dataclass
class FailureResponse:
    """Response part of a failure (present when the server answered)"""

    status: int
    headers: Mapping[str, Any] = field(default_factory=dict)
    raw: Any = None  # Host response object, e.g. requests.Response


@dataclass
class FailureContext:
    """A failed attempt, passed to predicates and lifecycle hooks"""

    code: Optional[str] = None  # Node-style error code, e.g. ECONNRESET
    message: str = ""
    stack: str = ""
    response: Optional[FailureResponse] = None
    request: Optional["RequestDescriptor"] = None
    error: Optional[BaseException] = None  # Original exception, surfaced unmodified

    @property
    def status(self) -> int:
        """Response status, 0 when no response was received"""
        return self.response.status if self.response else 0


@dataclass(frozen=True)
class Classification:
    """Result of running every failure predicate once"""

    is_network_error: bool
    is_timeout: bool
    is_retryable_error: bool
    is_server_error: bool
    is_safe_request_error: bool
    is_idempotent_request_error: bool
    matches_retryable_status: bool
