"""
retrack
=======
Retry tracking and re-submission for HTTP clients.
"""

__version__ = "0.1.0"

# Policy
from retrack.application.config_store import RetryConfigStore
from retrack.domain.config import IDEMPOTENT_HTTP_METHODS, SAFE_HTTP_METHODS, RetryPolicy

# Tracking
from retrack.application.retry_tracker import RetryTracker
from retrack.domain.models.failure import Classification, FailureContext, FailureResponse
from retrack.domain.models.request import RequestDescriptor, TrackedRequest

# Predicates
from retrack.domain.classification import (
    classify,
    is_idempotent_request_error,
    is_network_error,
    is_retry_allowed,
    is_retryable_error,
    is_safe_request_error,
    is_server_error,
    is_timeout,
    matches_status_ranges,
)

# requests integration
from retrack.infrastructure.config.config_manager import ConfigManager
from retrack.infrastructure.error_codes import failure_from_exception
from retrack.infrastructure.http_client import RetryCancelledError, RetrySession, retry_session

__all__ = [
    "RetryPolicy",
    "RetryConfigStore",
    "SAFE_HTTP_METHODS",
    "IDEMPOTENT_HTTP_METHODS",
    "RetryTracker",
    "RequestDescriptor",
    "TrackedRequest",
    "FailureContext",
    "FailureResponse",
    "Classification",
    "classify",
    "is_network_error",
    "is_timeout",
    "is_retryable_error",
    "is_server_error",
    "is_safe_request_error",
    "is_idempotent_request_error",
    "is_retry_allowed",
    "matches_status_ranges",
    "ConfigManager",
    "failure_from_exception",
    "RetrySession",
    "RetryCancelledError",
    "retry_session",
]
