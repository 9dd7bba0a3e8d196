"""Request-scoped structured logging.

Records are rendered by structlog; a :class:`ContextHandler` adds values taken
from declared ``ContextVar`` keys, and the ASGI middlewares populate those
keys and log one summary record per request.
"""

from __future__ import annotations

import contextvars
import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import Processor

from reqlog.observability.context_handler import ContextHandler, ContextKeys, context_attrs
from reqlog.observability.errors import HandlerError, LoggingError, SinkWriteError
from reqlog.observability.logger import (
    Logger,
    LoggerConfig,
    Option,
    build_logger,
    emit_safely,
    new_logger,
    new_test_logger,
    renderer_for,
    with_app,
    with_build_time,
    with_commit,
    with_context_keys,
    with_environment,
    with_level,
    with_python_version,
    with_version,
)
from reqlog.observability.middleware import (
    REQUEST_ID,
    REQUEST_ID_HEADER,
    RequestContextMiddleware,
    RequestLoggingMiddleware,
    ResponseObservation,
    get_request_id,
)
from reqlog.observability.records import Attr, Kind, Level, Record, Value, group_value
from reqlog.observability.sinks import DiscardSink, RenderingSink, Sink


DEFAULT_CONTEXT_KEYS: ContextKeys = {REQUEST_ID: "request_id"}

_CONFIGURED = False


def merge_context_keys(keys: ContextKeys) -> Processor:
    """structlog processor adding declared context values to foreign log lines."""

    def processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for attr in context_attrs(contextvars.copy_context(), keys):
            event_dict.setdefault(attr.key, attr.value.render())
        return event_dict

    return processor


def normalize_warn_level(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Label stdlib ``warning`` lines ``warn``, matching :attr:`Level.label`."""

    if event_dict.get("level") == "warning":
        event_dict["level"] = "warn"
    return event_dict


class WriterHandler(logging.Handler):
    """stdlib handler writing formatted lines through a ``structlog.WriteLogger``.

    The writer's lock is per file, so stdlib lines and :class:`RenderingSink`
    lines on the same stream never interleave.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        super().__init__()
        self._writer = structlog.WriteLogger(stream if stream is not None else sys.stdout)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._writer.msg(self.format(record))
        except Exception:
            self.handleError(record)


def foreign_pre_chain(config: LoggerConfig) -> list[Processor]:
    chain: list[Processor] = [
        merge_context_keys(config.context_keys),
        structlog.processors.add_log_level,
        normalize_warn_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if config.is_development:
        chain.append(
            structlog.processors.CallsiteParameterAdder(
                {
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                }
            )
        )
    return chain


def logging_formatter(config: LoggerConfig) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processor=renderer_for(config),
        foreign_pre_chain=foreign_pre_chain(config),
    )


def configure_logging(config: LoggerConfig) -> None:
    """Route stdlib logging (uvicorn included) through the same renderer.

    Safe to call multiple times (no-op after first call).
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    handler = WriterHandler(sys.stdout)
    handler.setFormatter(logging_formatter(config))

    level = int(config.level)
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # Keep uvicorn's own loggers consistent with our handler.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.propagate = False
        logger.setLevel(level)

    _CONFIGURED = True


__all__ = [
    "Attr",
    "ContextHandler",
    "ContextKeys",
    "DEFAULT_CONTEXT_KEYS",
    "DiscardSink",
    "HandlerError",
    "Kind",
    "Level",
    "Logger",
    "LoggerConfig",
    "LoggingError",
    "Option",
    "REQUEST_ID",
    "REQUEST_ID_HEADER",
    "Record",
    "RenderingSink",
    "RequestContextMiddleware",
    "RequestLoggingMiddleware",
    "ResponseObservation",
    "Sink",
    "SinkWriteError",
    "Value",
    "WriterHandler",
    "build_logger",
    "configure_logging",
    "emit_safely",
    "foreign_pre_chain",
    "get_request_id",
    "group_value",
    "logging_formatter",
    "merge_context_keys",
    "new_logger",
    "new_test_logger",
    "normalize_warn_level",
    "with_app",
    "with_build_time",
    "with_commit",
    "with_context_keys",
    "with_environment",
    "with_level",
    "with_python_version",
    "with_version",
]
