"""Retry policy store with lenient, field-by-field configuration"""

import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from retrack.domain.config import PolicyUpdate, RetryPolicy

logger = logging.getLogger(__name__)

# Option names accepted besides the canonical field names
FIELD_ALIASES = {
    # camelCase names
    "maxRetries": "max_retries",
    "retryDelayMs": "retry_delay_ms",
    "retryableMethods": "retryable_methods",
    "retryableStatusRanges": "retryable_status_ranges",
    "shouldRetry": "should_retry",
    "shouldRetryLimit": "should_retry_limit",
    "onWillRetry": "on_will_retry",
    "onStartRetry": "on_start_retry",
    # Legacy option names
    "retries": "max_retries",
    "retryDelay": "retry_delay_ms",
    "httpMethodsToRetry": "retryable_methods",
    "statusCodesToRetry": "retryable_status_ranges",
    "shouldRetryLimt": "should_retry_limit",
    "willRetry": "on_will_retry",
    "startRetry": "on_start_retry",
}


class RetryConfigStore:
    """Holds the active RetryPolicy

    The policy only changes through configure(). Invalid values never raise:
    they are dropped and the previous value stays in place.
    """

    def __init__(self, policy: Optional[RetryPolicy] = None):
        self._policy = policy if policy is not None else RetryPolicy()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def configure(self, partial: Optional[Mapping[str, Any]] = None, **fields: Any) -> RetryPolicy:
        """Merge a partial policy onto the current one

        Args:
            partial: Mapping of policy fields (canonical, camelCase or legacy names)
            **fields: Same as partial, as keyword arguments

        Returns:
            The updated policy
        """
        updates: Dict[str, Any] = dict(partial or {})
        updates.update(fields)

        for key, value in updates.items():
            if value is None:
                continue
            name = FIELD_ALIASES.get(key, key)
            try:
                validated = PolicyUpdate.model_validate({name: value})
            except ValidationError as e:
                logger.warning(f"Ignoring invalid retry option {key}={value!r}: {e.errors()[0]['msg']}")
                continue
            setattr(self._policy, name, getattr(validated, name))
            logger.debug(f"Retry option {name} set to {value!r}")

        return self._policy
