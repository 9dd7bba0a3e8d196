from __future__ import annotations

import contextvars
from collections.abc import Sequence
from typing import Any, Callable, Protocol, TextIO, runtime_checkable

import structlog

from reqlog.observability.errors import SinkWriteError
from reqlog.observability.records import Attr, Level, Record


Renderer = Callable[[Any, str, dict[str, Any]], Any]


@runtime_checkable
class Sink(Protocol):
    """Destination for log records.

    Sinks compose: a decorator sink implements this protocol and delegates to
    the sink it wraps.
    """

    def enabled(self, context: contextvars.Context, level: Level) -> bool: ...

    def handle(self, context: contextvars.Context, record: Record) -> None: ...

    def with_attrs(self, attrs: Sequence[Attr]) -> "Sink": ...

    def with_group(self, name: str) -> "Sink": ...


def _merged(base: dict[str, Any], groups: Sequence[str], items: dict[str, Any]) -> dict[str, Any]:
    # Copies every dict along the group path; `base` is never modified.
    out = dict(base)
    if not groups:
        out.update(items)
        return out
    head, rest = groups[0], groups[1:]
    child = out.get(head)
    out[head] = _merged(child if isinstance(child, dict) else {}, rest, items)
    return out


class RenderingSink:
    """Render records with a structlog renderer and write them to a stream.

    Output goes through a ``structlog.WriteLogger``, which serializes writes
    with a lock shared by every structlog logger on the same file. Derived
    sinks (``with_attrs``/``with_group``) reuse the parent's writer.
    """

    def __init__(
        self,
        stream: TextIO,
        renderer: Renderer,
        level: Level = Level.DEBUG,
        *,
        _bound: dict[str, Any] | None = None,
        _groups: tuple[str, ...] = (),
        _writer: structlog.WriteLogger | None = None,
    ) -> None:
        self._stream = stream
        self._renderer = renderer
        self._level = level
        self._bound = _bound or {}
        self._groups = _groups
        self._writer = _writer or structlog.WriteLogger(stream)

    def _derive(self, bound: dict[str, Any], groups: tuple[str, ...]) -> "RenderingSink":
        return RenderingSink(
            self._stream,
            self._renderer,
            self._level,
            _bound=bound,
            _groups=groups,
            _writer=self._writer,
        )

    def enabled(self, context: contextvars.Context, level: Level) -> bool:
        return level >= self._level

    def with_attrs(self, attrs: Sequence[Attr]) -> "RenderingSink":
        if not attrs:
            return self
        items = {attr.key: attr.value.render() for attr in attrs}
        return self._derive(_merged(self._bound, self._groups, items), self._groups)

    def with_group(self, name: str) -> "RenderingSink":
        if not name:
            return self
        return self._derive(self._bound, self._groups + (name,))

    def event_dict(self, record: Record) -> dict[str, Any]:
        items = {attr.key: attr.value.render() for attr in record.attrs}
        body = _merged(self._bound, self._groups, items) if items else dict(self._bound)
        return {
            "timestamp": record.time.isoformat(),
            "level": record.level.label,
            "event": record.event,
            **body,
        }

    def handle(self, context: contextvars.Context, record: Record) -> None:
        line = self._renderer(None, record.level.label, self.event_dict(record))
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        try:
            self._writer.msg(line)
        except (OSError, ValueError) as exc:
            raise SinkWriteError(f"write {record.level.label} record: {exc}") from exc


class DiscardSink:
    """Sink that is never enabled and drops everything it is given."""

    def enabled(self, context: contextvars.Context, level: Level) -> bool:
        return False

    def handle(self, context: contextvars.Context, record: Record) -> None:
        return None

    def with_attrs(self, attrs: Sequence[Attr]) -> "DiscardSink":
        return self

    def with_group(self, name: str) -> "DiscardSink":
        return self
