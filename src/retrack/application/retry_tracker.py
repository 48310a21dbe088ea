"""Retry tracker - registry of in-flight logical requests and retry decisions"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, List, Mapping, Optional

from retrack.application.config_store import RetryConfigStore
from retrack.domain import classification
from retrack.domain.config import RetryPolicy
from retrack.domain.models.failure import Classification, FailureContext
from retrack.domain.models.request import AFFINITY_FIELDS, RequestDescriptor, TrackedRequest

logger = logging.getLogger(__name__)


class RetryTracker:
    """Tracks logical requests across attempts and decides whether to retry

    One tracker belongs to one host client. The registry is guarded by a lock
    because lookup and mutation must happen as a single step when the host is
    driven from several threads.
    """

    def __init__(
        self,
        config_store: Optional[RetryConfigStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize tracker

        Args:
            config_store: Policy store (a default store is created if None)
            clock: Timestamp source for attempt history
        """
        self.config_store = config_store if config_store is not None else RetryConfigStore()
        self._clock = clock
        self._requests: List[TrackedRequest] = []
        self._last_id = 0
        self._lock = threading.RLock()

    @property
    def policy(self) -> RetryPolicy:
        return self.config_store.policy

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    def __contains__(self, descriptor: RequestDescriptor) -> bool:
        return self.get(descriptor) is not None

    def _find(self, descriptor: RequestDescriptor) -> Optional[TrackedRequest]:
        if descriptor.correlation_id is not None:
            for item in self._requests:
                if item.id == descriptor.correlation_id:
                    return item
        identity = descriptor.identity()
        for item in self._requests:
            if item.descriptor.identity() == identity:
                return item
        return None

    def get(self, descriptor: RequestDescriptor) -> Optional[TrackedRequest]:
        """Find the tracked request a descriptor belongs to"""
        with self._lock:
            return self._find(descriptor)

    def admit(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        """Register an outgoing attempt

        A first attempt gets a new correlation id; a re-admitted request has
        its retry count incremented.

        Args:
            descriptor: Request about to be sent

        Returns:
            Copy of the tracked descriptor, stamped with correlation id and retry count
        """
        now = self._clock()
        with self._lock:
            item = self._find(descriptor)
            if item is None:
                self._last_id += 1
                item = TrackedRequest(
                    id=self._last_id,
                    descriptor=descriptor.copy(correlation_id=self._last_id, retry_count=0),
                    retry_count=0,
                    last_attempt_at=now,
                    attempt_timestamps=[now],
                )
                self._requests.append(item)
                logger.debug(f"Tracking {item.descriptor.method} {item.descriptor.url} as request #{item.id}")
            else:
                item.last_attempt_at = now
                item.attempt_timestamps.append(now)
                item.retry_count += 1
                item.descriptor.retry_count = item.retry_count
                logger.debug(f"Request #{item.id} re-admitted (retry {item.retry_count})")
            return item.descriptor.copy()

    def remove(self, descriptor: RequestDescriptor) -> bool:
        """Forget a request by its correlation id

        Returns:
            True if the request was tracked and has been removed
        """
        with self._lock:
            for index, item in enumerate(self._requests):
                if item.id == descriptor.correlation_id:
                    del self._requests[index]
                    logger.debug(f"Request #{item.id} removed after {item.attempts} attempt(s)")
                    return True
        return False

    # Predicates

    def is_network_error(self, failure: FailureContext) -> bool:
        return classification.is_network_error(failure)

    def is_timeout(self, failure: FailureContext) -> bool:
        return classification.is_timeout(failure)

    def is_retryable_error(self, failure: FailureContext) -> bool:
        return classification.is_retryable_error(failure)

    def is_server_error(self, failure: FailureContext) -> bool:
        return classification.is_server_error(failure)

    def is_safe_request_error(self, failure: FailureContext) -> bool:
        return classification.is_safe_request_error(failure)

    def is_idempotent_request_error(self, failure: FailureContext) -> bool:
        return classification.is_idempotent_request_error(failure)

    def matches_retryable_status(self, failure: FailureContext) -> bool:
        """Check the failure status against the configured status ranges"""
        return classification.matches_status_ranges(failure.status, self.policy.retryable_status_ranges)

    def classify(self, failure: FailureContext) -> Classification:
        return classification.classify(failure, self.policy.retryable_status_ranges)

    def default_should_retry(self, failure: FailureContext) -> bool:
        """Built-in predicate: network errors on safe requests, never 5xx"""
        return (
            self.is_network_error(failure)
            and self.is_safe_request_error(failure)
            and self.matches_retryable_status(failure)
            and not self.is_server_error(failure)
        )

    # Decisions

    def should_retry(self, failure: FailureContext) -> bool:
        """Decide whether a failed attempt should be re-issued

        Args:
            failure: Failed attempt

        Returns:
            True if the retry budget allows it and the policy predicate agrees
        """
        policy = self.policy
        if failure.request is None or policy.max_retries == 0:
            return False

        item = self.get(failure.request)
        if item is None or item.retry_count >= policy.max_retries:
            return False

        predicate = policy.should_retry or self.default_should_retry
        return bool(predicate(failure))

    def get_delay(self) -> float:
        """Delay before each resubmission, in milliseconds"""
        return self.policy.retry_delay_ms

    def sanitize(self, descriptor: RequestDescriptor, host_defaults: Mapping[str, Any]) -> RequestDescriptor:
        """Drop connection-affinity fields that point at the host's defaults

        The descriptor, and the registry copy when it is tracked, are
        modified in place; the descriptor is returned.
        """
        with self._lock:
            item = self._find(descriptor)
            targets = [descriptor] if item is None else [descriptor, item.descriptor]
            for target in targets:
                for name in AFFINITY_FIELDS:
                    value = getattr(target, name)
                    if value is not None and value is host_defaults.get(name):
                        setattr(target, name, None)
        return descriptor

    # Lifecycle hooks

    def _dispatch(self, hook: Optional[Callable[[FailureContext], None]], failure: FailureContext) -> None:
        if not callable(hook):
            return
        try:
            hook(failure)
        except Exception:
            logger.exception(f"Retry hook {getattr(hook, '__name__', hook)!r} failed")

    def notify_will_retry(self, failure: FailureContext) -> None:
        """Retry scheduled, delay about to start"""
        self._dispatch(self.policy.on_will_retry, failure)

    def notify_start_retry(self, failure: FailureContext) -> None:
        """Delay elapsed, retry about to be re-issued"""
        self._dispatch(self.policy.on_start_retry, failure)

