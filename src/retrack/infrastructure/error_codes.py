"""Map requests exceptions to failure records with Node-style error codes"""

from __future__ import annotations

import errno
import socket
import traceback
from typing import Optional

import requests

from retrack.domain.classification import ABORTED
from retrack.domain.models.failure import FailureContext, FailureResponse
from retrack.domain.models.request import RequestDescriptor

NETWORK_ERROR = "ERR_NETWORK"
SSL_ERROR = "ERR_SSL"
BAD_REQUEST = "ERR_BAD_REQUEST"
BAD_RESPONSE = "ERR_BAD_RESPONSE"
REQUEST_ERROR = "ERR_REQUEST"


def _causes(exc: BaseException, limit: int = 10):
    """Walk wrapped exceptions (args, urllib3 reasons, __cause__/__context__)"""
    seen = set()
    pending = [exc]
    while pending and len(seen) < limit:
        current = pending.pop(0)
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        candidates = list(getattr(current, "args", ()))
        candidates += [getattr(current, "reason", None), current.__cause__, current.__context__]
        pending.extend(c for c in candidates if isinstance(c, BaseException))


def connection_error_code(exc: BaseException) -> str:
    """Best-effort errno name for a connection failure"""
    for cause in _causes(exc):
        if isinstance(cause, socket.gaierror):
            return "ENOTFOUND"
        if isinstance(cause, OSError) and cause.errno in errno.errorcode:
            # ECONNABORTED is reserved for client-side aborts (timeouts)
            if cause.errno == errno.ECONNABORTED:
                return NETWORK_ERROR
            return errno.errorcode[cause.errno]
    return NETWORK_ERROR


def _format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def _response_of(exc: BaseException) -> Optional[FailureResponse]:
    response = getattr(exc, "response", None)
    if response is None:
        return None
    return FailureResponse(status=response.status_code, headers=dict(response.headers), raw=response)


def failure_from_exception(exc: BaseException, descriptor: Optional[RequestDescriptor] = None) -> FailureContext:
    """Build a FailureContext for an exception raised by a request attempt

    Args:
        exc: Exception raised by requests (or by raise_for_status)
        descriptor: Descriptor of the attempt that failed

    Returns:
        Failure record with code, message, stack and response filled in
    """
    message = str(exc)
    response = _response_of(exc)

    if isinstance(exc, requests.exceptions.Timeout):
        code: Optional[str] = ABORTED
        message = f"timeout exceeded: {exc}"
    elif isinstance(exc, requests.exceptions.SSLError):
        code = SSL_ERROR
    elif isinstance(exc, requests.exceptions.ConnectionError):
        code = connection_error_code(exc)
    elif isinstance(exc, requests.exceptions.HTTPError):
        status = response.status if response else 0
        code = BAD_RESPONSE if status >= 500 else BAD_REQUEST
    elif isinstance(exc, requests.exceptions.RequestException):
        code = getattr(exc, "code", REQUEST_ERROR)
    else:
        code = None

    return FailureContext(
        code=code,
        message=message,
        stack=_format_stack(exc),
        response=response,
        request=descriptor,
        error=exc,
    )
