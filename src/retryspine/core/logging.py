"""
Structured logging for retryspine.

Library modules call ``get_logger(__name__)`` and log dotted event names
with key/value fields; nothing is configured at import time. Applications
(and the examples) call :func:`configure_logging` once, which reads
``RETRYSPINE_LOG_LEVEL`` / ``RETRYSPINE_JSON_LOGS`` unless told otherwise.

Events emitted by the library:

    retry.attempt_failed     retry.exhausted        retry.terminal
    retry.on_retry_failed    timeout.detached_failed
    async_batch.start        async_batch.item_failed
    async_batch.cleanup_failed                      async_batch.progress_failed
    async_batch.complete     artifacts.truncated    artifacts.late_release
    timeout.on_abandoned_failed

Processor chain::

    [TimeStamper]  merge_contextvars  add_log_level  _add_logger_name
    _expand_exc  _add_service   ( format_exc_info  _to_ecs  JSONRenderer | ConsoleRenderer )

``_expand_exc`` turns an ``exc=<exception>`` field into ``error`` and
``error_type``, plus category, retryability and context for a SpineError,
so JSON consumers can filter on them without parsing messages.

Examples:
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> log = get_logger(__name__)
    >>> with LogContext(batch_id="b-17"):
    ...     log.info("async_batch.start", items=5)

Tags:
    logging, structlog, observability, json-logging
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from retryspine.core.errors import SpineError
from retryspine.core.settings import RetrySpineSettings, get_settings

_service = "retryspine"


class _NamedPrintLogger(structlog.PrintLogger):
    """PrintLogger that remembers the name it was requested under."""

    def __init__(self, file: TextIO | None = None, name: str | None = None):
        super().__init__(file)
        self.name = name


def _named_print_logger(*args: Any) -> _NamedPrintLogger:
    return _NamedPrintLogger(name=args[0] if args else None)


def _add_logger_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    name = getattr(logger, "name", None)
    if name is not None:
        event_dict.setdefault("logger", name)
    return event_dict


def _add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _service)
    return event_dict


def _expand_exc(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Replace an ``exc=<exception>`` field with flat error fields."""
    error = event_dict.get("exc")
    if not isinstance(error, BaseException):
        return event_dict
    del event_dict["exc"]
    if isinstance(error, SpineError):
        details = error.to_dict()
        event_dict.setdefault("error", details.pop("message"))
        for key, value in details.items():
            event_dict.setdefault(key, value)
    else:
        event_dict.setdefault("error", str(error))
        event_dict.setdefault("error_type", type(error).__name__)
    return event_dict


def _to_ecs(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename timestamp/level to their Elastic Common Schema names."""
    for source, target in (("timestamp", "@timestamp"), ("level", "log.level")):
        if source in event_dict:
            event_dict[target] = event_dict.pop(source)
    return event_dict


def _build_processors(json_format: bool, add_timestamp: bool) -> list[Processor]:
    processors: list[Processor] = []
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        _add_logger_name,
        _expand_exc,
        _add_service,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            _to_ecs,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def configure_logging(
    level: str | None = None,
    json_format: bool | None = None,
    service: str = "retryspine",
    add_timestamp: bool = True,
    *,
    settings: RetrySpineSettings | None = None,
) -> None:
    """Configure structlog for an application using retryspine.

    Args:
        level: DEBUG, INFO, WARNING or ERROR (default ``settings.log_level``)
        json_format: JSON lines when True, console when False; defaults to
            ``settings.json_logs`` and then to JSON whenever stdout is not a tty
        service: Value of the ``service.name`` field
        add_timestamp: Prefix events with an ISO-8601 UTC timestamp
        settings: Settings to read defaults from (default :func:`get_settings`)
    """
    global _service
    settings = settings or get_settings()
    level_name = (level or settings.log_level).upper()
    if json_format is None:
        json_format = settings.json_logs
    if json_format is None:
        json_format = not sys.stdout.isatty()
    _service = service

    structlog.configure(
        processors=_build_processors(json_format, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        context_class=dict,
        logger_factory=_named_print_logger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Return a lazy structlog logger; ``name`` becomes the ``logger`` field once configured."""
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind fields to every event logged by the current task from now on."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for the duration of a ``with`` / ``async with`` block.

    On exit every field goes back to the value it had before, so nested
    contexts that bind the same key behave.
    """

    def __init__(self, **fields: Any):
        self._fields = fields
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = dict(structlog.contextvars.bind_contextvars(**self._fields))
        return self

    def __exit__(self, *exc_info: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
