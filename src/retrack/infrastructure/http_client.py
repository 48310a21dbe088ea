"""requests integration: a Session that re-issues failed requests.

The session is the glue between the host HTTP client and the RetryTracker:
every attempt is admitted before it is sent, failures are classified and,
when the tracker agrees, re-issued after the configured delay.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_never

from retrack.application.config_store import RetryConfigStore
from retrack.application.retry_tracker import RetryTracker
from retrack.domain.config import RetryPolicy
from retrack.domain.models.failure import FailureContext
from retrack.domain.models.request import RequestDescriptor
from retrack.infrastructure.config.config_manager import ConfigManager
from retrack.infrastructure.error_codes import failure_from_exception

logger = logging.getLogger(__name__)

# requests keyword arguments kept on the descriptor but outside its identity
_PASSTHROUGH_OPTIONS = (
    "cookies",
    "files",
    "auth",
    "allow_redirects",
    "proxies",
    "hooks",
    "stream",
    "verify",
    "cert",
)


class RetryCancelledError(requests.exceptions.RequestException):
    """A scheduled retry was abandoned because the request was cancelled."""

    code = None


class _AttemptFailed(Exception):
    """Carries the failure of one attempt through tenacity."""

    def __init__(self, failure: FailureContext):
        super().__init__(failure.message)
        self.failure = failure


def _release(response: Optional[requests.Response]) -> None:
    """Hand the connection of a discarded response back to the pool"""
    if response is not None and response.raw is not None:
        response.close()


class RetrySession(requests.Session):
    """requests.Session with transparent retries

    Responses with a 4xx/5xx status count as failures and are raised as
    requests.HTTPError once no retry is left. Each session owns its tracker,
    so sessions can run independently configured policies side by side.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        tracker: Optional[RetryTracker] = None,
        sleep: Optional[Callable[[float], None]] = None,
        **config: Any,
    ):
        """Initialize session

        Args:
            policy: Starting policy (defaults used if None)
            tracker: Tracker to use (overrides policy)
            sleep: Replacement for the delay wait, e.g. in tests
            **config: Partial policy applied with RetryConfigStore.configure
        """
        super().__init__()
        self.tracker = tracker if tracker is not None else RetryTracker(RetryConfigStore(policy))
        if config:
            self.tracker.config_store.configure(config)
        self._sleep = sleep
        self._cancel_lock = threading.Lock()
        # Shared by the requests in flight; replaced on every cancel()
        self._cancelled = threading.Event()
        self._closed = threading.Event()

    def configure(self, partial: Optional[Mapping[str, Any]] = None, **fields: Any) -> RetryPolicy:
        return self.tracker.config_store.configure(partial, **fields)

    def cancel(self) -> None:
        """Abandon the retries of requests already in flight

        Requests started after the call retry normally.
        """
        with self._cancel_lock:
            event, self._cancelled = self._cancelled, threading.Event()
        event.set()

    def close(self) -> None:
        """Cancel in-flight retries and refuse any further ones"""
        self._closed.set()
        self.cancel()
        super().close()

    def _session_event(self) -> threading.Event:
        if self._closed.is_set():
            return self._closed
        with self._cancel_lock:
            return self._cancelled

    def request(self, method, url, *, params=None, data=None, headers=None, json=None, timeout=None, **kwargs):
        adapter = kwargs.pop("adapter", None)
        cancel_event = kwargs.pop("cancel_event", None) or self._session_event()
        options = {name: kwargs.pop(name) for name in _PASSTHROUGH_OPTIONS if name in kwargs}
        if kwargs:
            raise TypeError(f"Unexpected request arguments: {', '.join(sorted(kwargs))}")

        descriptor = RequestDescriptor(
            method=method,
            url=url,
            params=params,
            headers=dict(headers or {}),
            data=data,
            json=json,
            timeout=timeout,
            adapter=adapter,
            options=options,
        )
        return self.send_with_retries(descriptor, cancel_event)

    def send_with_retries(
        self, descriptor: RequestDescriptor, cancel_event: Optional[threading.Event] = None
    ) -> requests.Response:
        """Send a descriptor, re-issuing it while the tracker allows"""
        cancel_event = cancel_event or self._session_event()
        scheduled: list = []  # failures whose retry was scheduled, in order

        def before_attempt(retry_state: RetryCallState) -> None:
            if retry_state.attempt_number > 1:
                self.tracker.notify_start_retry(scheduled[-1])

        def before_sleep(retry_state: RetryCallState) -> None:
            failure = retry_state.outcome.exception().failure
            scheduled.append(failure)
            logger.warning(
                f"{failure.request.method} {failure.request.url} failed ({failure.code or failure.status}), "
                f"retry {failure.request.retry_count + 1}/{self.tracker.policy.max_retries} "
                f"in {self.tracker.get_delay():g}ms"
            )
            self.tracker.notify_will_retry(failure)

        retrying = Retrying(
            retry=retry_if_exception(self._should_resubmit),
            wait=lambda retry_state: self.tracker.get_delay() / 1000.0,
            stop=stop_never,
            before=before_attempt,
            before_sleep=before_sleep,
            sleep=lambda seconds: self._pause(seconds, cancel_event),
        )

        try:
            for attempt in retrying:
                with attempt:
                    descriptor = self.tracker.admit(descriptor)
                    response = self._attempt(descriptor)
                    self.tracker.remove(descriptor)
                    return response
        except _AttemptFailed as e:
            error = e.failure.error
            if scheduled:
                logger.error(f"{descriptor.method} {descriptor.url} failed after {len(scheduled)} retries: {error}")
        except RetryCancelledError:
            self.tracker.remove(descriptor)
            logger.info(f"Retry of {descriptor.method} {descriptor.url} cancelled")
            raise
        except Exception:
            self.tracker.remove(descriptor)
            raise
        # Outside the except block so the original error is raised untouched
        raise error

    def _attempt(self, descriptor: RequestDescriptor) -> requests.Response:
        try:
            response = self._send(descriptor)
            response.raise_for_status()
            return response
        except requests.exceptions.RequestException as e:
            raise _AttemptFailed(failure_from_exception(e, descriptor)) from e

    def _send(self, descriptor: RequestDescriptor) -> requests.Response:
        logger.debug(f"HTTP {descriptor.method} {descriptor.url} (retry {descriptor.retry_count})")
        options = dict(descriptor.options)
        if descriptor.adapter is None:
            return super().request(
                descriptor.method,
                descriptor.url,
                params=descriptor.params,
                data=descriptor.data,
                headers=descriptor.headers,
                json=descriptor.json,
                timeout=descriptor.timeout,
                **options,
            )

        # Pinned adapter: send through it directly, bypassing the mounted ones
        prepared = self.prepare_request(
            requests.Request(
                method=descriptor.method,
                url=descriptor.url,
                headers=descriptor.headers,
                files=options.get("files"),
                data=descriptor.data or {},
                json=descriptor.json,
                params=descriptor.params or {},
                auth=options.get("auth"),
                cookies=options.get("cookies"),
                hooks=options.get("hooks"),
            )
        )
        settings = self.merge_environment_settings(
            prepared.url,
            options.get("proxies") or {},
            options.get("stream"),
            options.get("verify"),
            options.get("cert"),
        )
        return descriptor.adapter.send(prepared, timeout=descriptor.timeout, **settings)

    def _host_defaults(self, descriptor: RequestDescriptor) -> Dict[str, Any]:
        try:
            return {"adapter": self.get_adapter(descriptor.url)}
        except requests.exceptions.InvalidSchema:
            return {}

    def _should_resubmit(self, exception: BaseException) -> bool:
        if not isinstance(exception, _AttemptFailed):
            return False
        failure = exception.failure
        should_retry = self.tracker.should_retry(failure)
        self.tracker.sanitize(failure.request, self._host_defaults(failure.request))
        if not should_retry:
            self.tracker.remove(failure.request)
        elif failure.response is not None:
            _release(failure.response.raw)
        return should_retry

    def _pause(self, seconds: float, cancel_event: threading.Event) -> None:
        if self._sleep is None:
            cancelled = cancel_event.wait(seconds)
        else:
            self._sleep(seconds)
            cancelled = cancel_event.is_set()
        if cancelled:
            raise RetryCancelledError("Retry cancelled while waiting for its delay")


def retry_session(
    config: Optional[Mapping[str, Any]] = None,
    *,
    config_path: Optional[Union[str, Path]] = None,
    use_config_file: bool = False,
    sleep: Optional[Callable[[float], None]] = None,
) -> RetrySession:
    """Create a RetrySession with its own tracker and policy

    Args:
        config: Partial policy applied on top of defaults (and file settings)
        config_path: Explicit .retrack.yml to load
        use_config_file: Search for .retrack.yml from the current directory
        sleep: Replacement for the delay wait

    Returns:
        Configured session
    """
    if config_path is not None or use_config_file:
        store = ConfigManager(config_path).create_store()
    else:
        store = RetryConfigStore()
    if config:
        store.configure(config)
    return RetrySession(tracker=RetryTracker(store), sleep=sleep)
