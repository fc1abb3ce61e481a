"""retryspine.core -- errors, logging and settings shared by every layer.

Architecture::

    errors.py      Structured error hierarchy (SpineError, TransientError, HTTP errors)
    logging.py     structlog configuration + get_logger / LogContext
    settings.py    pydantic-settings defaults (RETRYSPINE_* env vars)
"""

from retryspine.core.errors import (
    AuthenticationError,
    AuthorizationError,
    BadRequestError,
    BatchAbortedError,
    ConflictError,
    ErrorCategory,
    ErrorContext,
    HTTPStatusError,
    NetworkError,
    NotFoundError,
    OperationCancelled,
    RateLimitError,
    ServerError,
    SpineError,
    TransientError,
)
from retryspine.core.logging import LogContext, configure_logging, get_logger
from retryspine.core.settings import RetrySpineSettings, get_settings

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "BadRequestError",
    "BatchAbortedError",
    "ConflictError",
    "ErrorCategory",
    "ErrorContext",
    "HTTPStatusError",
    "NetworkError",
    "NotFoundError",
    "OperationCancelled",
    "RateLimitError",
    "ServerError",
    "SpineError",
    "TransientError",
    "LogContext",
    "configure_logging",
    "get_logger",
    "RetrySpineSettings",
    "get_settings",
]
