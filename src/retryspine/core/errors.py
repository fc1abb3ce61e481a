"""
Typed errors for remote calls, retries and batches.

The retry layer never parses messages: everything it needs to decide
"try again or give up" lives on the exception, either as a type or as a
field.

Hierarchy:
    ::

        SpineError                      category, retryable, retry_after,
         │                              context (ErrorContext), cause
         ├── TransientError             retryable by default
         │    ├── NetworkError          code="ECONNRESET", ...
         │    ├── RateLimitError        status 429, retry_after
         │    └── ServerError           status 5xx
         ├── HTTPStatusError            status → category
         │    ├── BadRequestError       400
         │    ├── AuthenticationError   401
         │    ├── AuthorizationError    403
         │    ├── NotFoundError         404
         │    └── ConflictError         409
         ├── OperationCancelled         cancellation token fired
         └── BatchAbortedError          fail-fast batch stopped, carries result

Any error with an HTTP status stores it in ``context.http_status``; the
default classifier in :mod:`retryspine.execution.classify` applies the same
status rules to these and to third-party exceptions (``.status_code`` etc.).

Examples:
    >>> NotFoundError("no such loan").context.http_status
    404
    >>> RateLimitError(retry_after=2).retryable
    True
    >>> try:
    ...     raise ConnectionResetError("peer closed")
    ... except ConnectionResetError as e:
    ...     raise NetworkError("loan service unreachable", code="ECONNRESET", cause=e)
    Traceback (most recent call last):
    ...
    NetworkError: loan service unreachable

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from retryspine.execution.async_batch import BatchResult


class ErrorCategory(str, Enum):
    """What kind of failure an error represents.

    NETWORK, RATE_LIMIT and SERVER are normally worth retrying; REQUEST,
    AUTH and CANCELLED never are; NOT_FOUND and CONFLICT only early on.
    """

    NETWORK = "NETWORK"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER = "SERVER"
    REQUEST = "REQUEST"
    AUTH = "AUTH"
    CANCELLED = "CANCELLED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    BATCH = "BATCH"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Where and when an error happened.

    Attributes:
        operation: Name of the retried operation
        batch_id: Batch the job belonged to
        job_key: Job identity within the batch
        attempt: Zero-based attempt index
        url: Remote endpoint, when there is one
        http_status: Response status, when there is one
        metadata: Free-form extra fields
    """

    operation: str | None = None
    batch_id: str | None = None
    job_key: Any = None
    attempt: int | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Set fields only, with ``metadata`` flattened in."""
        data = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "metadata" and getattr(self, f.name) is not None
        }
        data.update(self.metadata)
        return data


_CONTEXT_FIELDS = frozenset(f.name for f in fields(ErrorContext)) - {"metadata"}


class SpineError(Exception):
    """
    Base class of every retryspine error.

    Subclasses pick their ``default_category`` and ``default_retryable``;
    both can be overridden per instance. ``cause`` is also installed as
    ``__cause__`` so tracebacks show the underlying failure.

    Examples:
        >>> error = SpineError("renderer crashed")
        >>> (error.category, error.retryable)
        (<ErrorCategory.INTERNAL: 'INTERNAL'>, False)
        >>> error.with_context(operation="render", shard=3)
        SpineError('renderer crashed', category=INTERNAL)
        >>> error.to_dict()["context"]
        {'operation': 'render', 'shard': 3}
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = self.default_category if category is None else category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.retry_after = retry_after
        self.context = ErrorContext() if context is None else context
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **values: Any) -> SpineError:
        """Set context fields (unknown names go to ``metadata``) and return self."""
        for name, value in values.items():
            if name in _CONTEXT_FIELDS:
                setattr(self.context, name, value)
            else:
                self.context.metadata[name] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        optional = {
            "retry_after": self.retry_after,
            "context": self.context.to_dict() or None,
            "cause": None if self.cause is None else str(self.cause),
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS
# =============================================================================


class TransientError(SpineError):
    """A failure that a later, identical call can reasonably be expected to avoid."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Connection-level failure; ``code`` holds the socket error name if known."""

    def __init__(self, message: str, *, code: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.code = code


class RateLimitError(TransientError):
    """The upstream asked us to slow down (HTTP 429)."""

    default_category = ErrorCategory.RATE_LIMIT

    def __init__(
        self,
        message: str = "Too many requests",
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, retry_after=retry_after, **kwargs)
        self.context.http_status = self.context.http_status or 429


class ServerError(TransientError):
    """The upstream failed with a 5xx status."""

    default_category = ErrorCategory.SERVER

    def __init__(self, message: str = "Server error", *, status: int = 500, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.context.http_status = status


# =============================================================================
# HTTP STATUS ERRORS
# =============================================================================


_STATUS_CATEGORIES: dict[int, ErrorCategory] = {
    400: ErrorCategory.REQUEST,
    401: ErrorCategory.AUTH,
    403: ErrorCategory.AUTH,
    404: ErrorCategory.NOT_FOUND,
    408: ErrorCategory.NETWORK,
    409: ErrorCategory.CONFLICT,
    425: ErrorCategory.RATE_LIMIT,
    429: ErrorCategory.RATE_LIMIT,
}


def _category_for_status(status: int) -> ErrorCategory:
    if status >= 500:
        return ErrorCategory.SERVER
    return _STATUS_CATEGORIES.get(status, ErrorCategory.UNKNOWN)


class HTTPStatusError(SpineError):
    """
    A remote call answered with a non-success HTTP status.

    Retry decisions come from the status (see the classifier), not from
    ``retryable``: 404 and 409 are worth retrying only on early attempts.
    """

    default_status: int | None = None

    def __init__(self, message: str, *, status: int | None = None, **kwargs: Any):
        status = self.default_status if status is None else status
        if status is None:
            raise ValueError(f"{type(self).__name__} requires an HTTP status")
        kwargs.setdefault("category", _category_for_status(status))
        super().__init__(message, **kwargs)
        self.context.http_status = status

    @property
    def status(self) -> int:
        return self.context.http_status  # type: ignore[return-value]


class BadRequestError(HTTPStatusError):
    default_status = 400


class AuthenticationError(HTTPStatusError):
    default_status = 401


class AuthorizationError(HTTPStatusError):
    default_status = 403


class NotFoundError(HTTPStatusError):
    """Retried on the first attempt only; the resource may still be propagating."""

    default_status = 404


class ConflictError(HTTPStatusError):
    """Retried on the first two attempts only."""

    default_status = 409


# =============================================================================
# CONTROL FLOW
# =============================================================================


class OperationCancelled(SpineError):
    """Raised when a cancellation token stops an attempt, a retry wait or a batch."""

    default_category = ErrorCategory.CANCELLED

    def __init__(self, message: str = "Operation cancelled", **kwargs: Any):
        super().__init__(message, **kwargs)


class BatchAbortedError(SpineError):
    """
    A ``fail_fast`` batch stopped at its first failed job.

    ``result`` is the partial :class:`BatchResult` (unstarted jobs stay
    ``pending``); the failed job's error is chained as ``__cause__``.
    """

    default_category = ErrorCategory.BATCH

    def __init__(self, message: str, *, result: BatchResult, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.result = result


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SpineError",
    "TransientError",
    "NetworkError",
    "RateLimitError",
    "ServerError",
    "HTTPStatusError",
    "BadRequestError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "OperationCancelled",
    "BatchAbortedError",
]
