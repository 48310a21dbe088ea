"""Failure classification predicates.

Each predicate looks at a single FailureContext and answers one question.
They are independent of each other so that custom retry predicates can
combine them freely.
"""

from typing import Iterable

from retrack.domain.config.policy import IDEMPOTENT_HTTP_METHODS, SAFE_HTTP_METHODS, StatusRange
from retrack.domain.models.failure import Classification, FailureContext

# Code used for client-side aborts (timeouts and cancellations)
ABORTED = "ECONNABORTED"

# Errors that will not go away by retrying: DNS, routing and TLS trust failures
NON_RETRYABLE_CODES = frozenset(
    {
        "ENOTFOUND",
        "ENETUNREACH",
        "ERR_SSL",
        "UNABLE_TO_GET_ISSUER_CERT",
        "UNABLE_TO_GET_CRL",
        "UNABLE_TO_DECRYPT_CERT_SIGNATURE",
        "UNABLE_TO_DECRYPT_CRL_SIGNATURE",
        "UNABLE_TO_DECODE_ISSUER_PUBLIC_KEY",
        "CERT_SIGNATURE_FAILURE",
        "CRL_SIGNATURE_FAILURE",
        "CERT_NOT_YET_VALID",
        "CERT_HAS_EXPIRED",
        "CRL_NOT_YET_VALID",
        "CRL_HAS_EXPIRED",
        "ERROR_IN_CERT_NOT_BEFORE_FIELD",
        "ERROR_IN_CERT_NOT_AFTER_FIELD",
        "ERROR_IN_CRL_LAST_UPDATE_FIELD",
        "ERROR_IN_CRL_NEXT_UPDATE_FIELD",
        "OUT_OF_MEM",
        "DEPTH_ZERO_SELF_SIGNED_CERT",
        "SELF_SIGNED_CERT_IN_CHAIN",
        "UNABLE_TO_GET_ISSUER_CERT_LOCALLY",
        "UNABLE_TO_VERIFY_LEAF_SIGNATURE",
        "CERT_CHAIN_TOO_LONG",
        "CERT_REVOKED",
        "INVALID_CA",
        "PATH_LENGTH_EXCEEDED",
        "INVALID_PURPOSE",
        "CERT_UNTRUSTED",
        "CERT_REJECTED",
        "HOSTNAME_MISMATCH",
    }
)


def is_retry_allowed(failure: FailureContext) -> bool:
    """Check that the error code is not known to be unsafe to retry"""
    return failure.code not in NON_RETRYABLE_CODES


def is_network_error(failure: FailureContext) -> bool:
    """No response, an error code that is neither a timeout nor unsafe"""
    return (
        failure.response is None
        and bool(failure.code)  # cancelled requests carry no code
        and failure.code != ABORTED
        and is_retry_allowed(failure)
    )


def is_timeout(failure: FailureContext) -> bool:
    """Client-side abort caused by a timeout"""
    return failure.code == ABORTED and ("timeout" in failure.stack or "timeout" in failure.message)


def is_retryable_error(failure: FailureContext) -> bool:
    """No response was received and the request was not aborted"""
    return failure.code != ABORTED and failure.response is None


def is_server_error(failure: FailureContext) -> bool:
    """Server answered with a 5xx status"""
    return failure.code != ABORTED and failure.response is not None and 500 <= failure.status <= 599


def matches_status_ranges(status: int, ranges: Iterable[StatusRange]) -> bool:
    """Check a status against single codes and inclusive (low, high) ranges

    Status 0 (no response) always matches.
    """
    if status == 0:
        return True
    for item in ranges:
        if isinstance(item, int):
            if status == item:
                return True
        else:
            low, high = min(item), max(item)
            if low <= status <= high:
                return True
    return False


def is_safe_request_error(failure: FailureContext) -> bool:
    """Retryable error on a GET, HEAD or OPTIONS request"""
    return (
        failure.request is not None
        and is_retryable_error(failure)
        and failure.request.method in SAFE_HTTP_METHODS
    )


def is_idempotent_request_error(failure: FailureContext) -> bool:
    """Retryable error on a safe method, PUT or DELETE request"""
    if failure.request is None:
        return False
    return is_retryable_error(failure) and failure.request.method in IDEMPOTENT_HTTP_METHODS


def classify(failure: FailureContext, ranges: Iterable[StatusRange]) -> Classification:
    """Run every predicate against a failure"""
    return Classification(
        is_network_error=is_network_error(failure),
        is_timeout=is_timeout(failure),
        is_retryable_error=is_retryable_error(failure),
        is_server_error=is_server_error(failure),
        is_safe_request_error=is_safe_request_error(failure),
        is_idempotent_request_error=is_idempotent_request_error(failure),
        matches_retryable_status=matches_status_ranges(failure.status, ranges),
    )
