from __future__ import annotations

import contextvars
import logging
import sys
from dataclasses import dataclass, field, replace
from typing import Any, Callable, TextIO

import structlog

from reqlog.observability.context_handler import ContextHandler, ContextKeys, freeze_context_keys
from reqlog.observability.errors import LoggingError
from reqlog.observability.records import Attr, Level, Record, attrs_from_mapping
from reqlog.observability.sinks import DiscardSink, Renderer, RenderingSink, Sink


DEVELOPMENT = "development"

_log = logging.getLogger("reqlog.observability")


def caller_source() -> Attr | None:
    """The first frame outside this module, as a ``source`` group."""

    frame = sys._getframe(1)
    while frame is not None and frame.f_globals.get("__name__") == __name__:
        frame = frame.f_back
    if frame is None:
        return None
    code = frame.f_code
    return Attr.group(
        "source",
        [
            Attr.of("function", code.co_name),
            Attr.of("file", code.co_filename),
            Attr.of("line", frame.f_lineno),
        ],
    )


class Logger:
    """Thin front end over a :class:`Sink`.

    Each call snapshots the current ``contextvars`` context, so a record
    carries the request values that were active when it was emitted. With
    ``add_source`` the calling function, file and line are attached too.
    """

    def __init__(self, handler: Sink, add_source: bool = False) -> None:
        self._handler = handler
        self._add_source = add_source

    @property
    def handler(self) -> Sink:
        return self._handler

    @property
    def add_source(self) -> bool:
        return self._add_source

    def bind(self, **attrs: Any) -> "Logger":
        if not attrs:
            return self
        return Logger(self._handler.with_attrs(attrs_from_mapping(attrs)), self._add_source)

    def group(self, name: str) -> "Logger":
        if not name:
            return self
        return Logger(self._handler.with_group(name), self._add_source)

    def enabled(self, level: Level, context: contextvars.Context | None = None) -> bool:
        if context is None:
            context = contextvars.copy_context()
        return self._handler.enabled(context, level)

    def log_context(self, context: contextvars.Context, level: Level, event: str, **attrs: Any) -> None:
        if not self._handler.enabled(context, level):
            return
        record = Record(level=level, event=event, attrs=attrs_from_mapping(attrs))
        if self._add_source:
            source = caller_source()
            if source is not None:
                record = record.with_attrs(source)
        self._handler.handle(context, record)

    def log(self, level: Level, event: str, **attrs: Any) -> None:
        self.log_context(contextvars.copy_context(), level, event, **attrs)

    def debug(self, event: str, **attrs: Any) -> None:
        self.log(Level.DEBUG, event, **attrs)

    def info(self, event: str, **attrs: Any) -> None:
        self.log(Level.INFO, event, **attrs)

    def warning(self, event: str, **attrs: Any) -> None:
        self.log(Level.WARN, event, **attrs)

    def error(self, event: str, **attrs: Any) -> None:
        self.log(Level.ERROR, event, **attrs)


@dataclass(frozen=True)
class LoggerConfig:
    environment: str = DEVELOPMENT
    level: Level = Level.DEBUG
    app: str = "n/a"
    version: str = "n/a"
    commit: str = "n/a"
    build_time: str = "n/a"
    python_version: str = "n/a"
    context_keys: ContextKeys = field(default_factory=lambda: freeze_context_keys(None))

    @classmethod
    def from_options(cls, *options: "Option") -> "LoggerConfig":
        cfg = cls()
        for option in options:
            cfg = option(cfg)
        return cfg

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() == DEVELOPMENT

    def base_attrs(self) -> list[Attr]:
        return [
            Attr.of("app", self.app),
            Attr.of("environment", self.environment),
            Attr.of("version", self.version),
            Attr.of("commit", self.commit),
            Attr.of("build_time", self.build_time),
            Attr.of("python_version", self.python_version),
        ]


Option = Callable[[LoggerConfig], LoggerConfig]


def with_level(level: str) -> Option:
    return lambda cfg: replace(cfg, level=Level.parse(level, Level.DEBUG))


def with_environment(environment: str) -> Option:
    return lambda cfg: replace(cfg, environment=environment)


def with_app(app: str) -> Option:
    return lambda cfg: replace(cfg, app=app.lower())


def with_version(version: str) -> Option:
    return lambda cfg: replace(cfg, version=version)


def with_commit(commit: str) -> Option:
    return lambda cfg: replace(cfg, commit=commit)


def with_build_time(build_time: str) -> Option:
    return lambda cfg: replace(cfg, build_time=build_time)


def with_python_version(python_version: str) -> Option:
    return lambda cfg: replace(cfg, python_version=python_version)


def with_context_keys(keys: ContextKeys) -> Option:
    frozen = freeze_context_keys(keys)
    return lambda cfg: replace(cfg, context_keys=frozen)


def renderer_for(config: LoggerConfig) -> Renderer:
    """Human-readable console output in development, JSON lines elsewhere."""

    if config.is_development:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer(default=str)


def build_logger(config: LoggerConfig, stream: TextIO | None = None) -> Logger:
    if stream is None:
        stream = sys.stdout
    handler: Sink = RenderingSink(stream, renderer_for(config), config.level)
    if config.context_keys:
        handler = ContextHandler(handler, config.context_keys)
    return Logger(handler.with_attrs(config.base_attrs()), add_source=config.is_development)


def new_logger(*options: Option, stream: TextIO | None = None) -> Logger:
    return build_logger(LoggerConfig.from_options(*options), stream=stream)


def new_test_logger() -> Logger:
    """Logger that discards everything; handy in unit tests."""

    return Logger(DiscardSink())


def emit_safely(logger: Logger, level: Level, event: str, **attrs: Any) -> None:
    """Log without letting a sink failure reach the caller.

    A failed write is reported on the ``reqlog.observability`` stdlib logger.
    """

    try:
        logger.log(level, event, **attrs)
    except LoggingError:
        _log.warning("dropped log record %r", event, exc_info=True)
