"""Failure classification: is this error worth another attempt?

The default classifier reads an HTTP status or a network error code off
whatever exception it is given, so it works for retryspine's own errors and
for exceptions raised by HTTP clients (``.status_code``,
``.response.status_code``) or the socket layer (``errno``,
``socket.gaierror``) alike.

Rules (first match wins):

    Signal                                   Retry?
    ──────────────────────────────────────── ──────────────────────────
    OperationCancelled / CancelledError      never
    400, 401, 403                            never
    404                                      first attempt only
    408                                      yes
    409                                      first two attempts only
    425, 429                                 yes
    >= 500                                   yes
    ECONNRESET EAI_AGAIN ETIMEDOUT ENETUNREACH  yes
    TimeoutError / ConnectionError           yes
    SpineError                               its ``retryable`` flag
    anything else                            no
"""

from __future__ import annotations

import asyncio
import errno
import socket
from typing import Any

from retryspine.core.errors import OperationCancelled, SpineError

TRANSIENT_ERROR_CODES = frozenset({"ECONNRESET", "EAI_AGAIN", "ETIMEDOUT", "ENETUNREACH"})

NEVER_RETRY_STATUSES = frozenset({400, 401, 403})
ALWAYS_RETRY_STATUSES = frozenset({408, 425, 429})


def status_from_error(error: BaseException | None) -> int | None:
    """Best-effort HTTP status of an error, or None."""
    if error is None:
        return None
    if isinstance(error, SpineError) and error.context.http_status is not None:
        return error.context.http_status
    for attr in ("status", "status_code", "http_status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(error, "response", None)
    if response is not None:
        for attr in ("status", "status_code"):
            value = getattr(response, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return None


def code_from_error(error: BaseException | None) -> str | None:
    """Symbolic network error code (``"ECONNRESET"``...) of an error or its cause."""
    seen: set[int] = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        code = _own_code(error)
        if code is not None:
            return code
        error = error.__cause__ or getattr(error, "cause", None)
    return None


def _own_code(error: BaseException) -> str | None:
    code: Any = getattr(error, "code", None)
    if isinstance(code, str):
        return code
    if isinstance(error, socket.gaierror):
        return "EAI_AGAIN" if error.errno == socket.EAI_AGAIN else None
    if isinstance(error, OSError) and error.errno is not None:
        return errno.errorcode.get(error.errno)
    return None


def is_cancellation(error: BaseException) -> bool:
    return isinstance(error, (OperationCancelled, asyncio.CancelledError))


def default_is_retryable(error: BaseException, attempt: int) -> bool:
    """Classify ``error`` raised by zero-based ``attempt`` as transient or terminal."""
    if is_cancellation(error):
        return False

    status = status_from_error(error)
    if status is not None:
        if status in NEVER_RETRY_STATUSES:
            return False
        if status == 404:
            return attempt == 0
        if status == 409:
            return attempt < 2
        if status in ALWAYS_RETRY_STATUSES or status >= 500:
            return True

    if code_from_error(error) in TRANSIENT_ERROR_CODES:
        return True

    if status is None:
        # A transport failure that never produced a response.
        if isinstance(error, (TimeoutError, ConnectionError)):
            return True
        if isinstance(error, SpineError):
            return error.retryable

    return False
