from __future__ import annotations


class LoggingError(Exception):
    """Base class for failures raised while emitting a log record."""


class SinkWriteError(LoggingError):
    """The underlying stream rejected a rendered record."""


class HandlerError(LoggingError):
    """A sink decorator failed because the sink it wraps failed."""

    def __init__(self, component: str, message: str) -> None:
        super().__init__(f"{component}: {message}")
        self.component = component
