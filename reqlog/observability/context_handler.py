from __future__ import annotations

import contextvars
from collections.abc import Mapping, Sequence
from types import MappingProxyType

from reqlog.observability.errors import HandlerError
from reqlog.observability.records import Attr, Level, Record, attr_from_value
from reqlog.observability.sinks import Sink


ContextKeys = Mapping[contextvars.ContextVar, str]


def freeze_context_keys(keys: ContextKeys | None) -> ContextKeys:
    if isinstance(keys, MappingProxyType):
        return keys
    return MappingProxyType(dict(keys or {}))


def context_attrs(context: contextvars.Context, keys: ContextKeys) -> list[Attr]:
    """Look every declared context variable up in ``context``.

    Variables that are unset, ``None`` or an empty string produce nothing.
    """

    attrs: list[Attr] = []
    for var, name in keys.items():
        attr = attr_from_value(name, context.get(var))
        if attr is not None:
            attrs.append(attr)
    return attrs


class ContextHandler:
    """Sink decorator that adds request-scoped context values to each record.

    ``keys`` maps ``ContextVar`` objects to the attribute name each value is
    logged under. Only declared variables are ever read.
    """

    def __init__(self, handler: Sink, keys: ContextKeys) -> None:
        self._handler = handler
        self._keys = freeze_context_keys(keys)

    @property
    def handler(self) -> Sink:
        return self._handler

    @property
    def keys(self) -> ContextKeys:
        return self._keys

    def enabled(self, context: contextvars.Context, level: Level) -> bool:
        return self._handler.enabled(context, level)

    def handle(self, context: contextvars.Context, record: Record) -> None:
        enriched = record.with_attrs(*context_attrs(context, self._keys))
        try:
            self._handler.handle(context, enriched)
        except Exception as exc:
            raise HandlerError("ContextHandler.handle", str(exc)) from exc

    def with_attrs(self, attrs: Sequence[Attr]) -> "ContextHandler":
        return ContextHandler(self._handler.with_attrs(attrs), self._keys)

    def with_group(self, name: str) -> "ContextHandler":
        return ContextHandler(self._handler.with_group(name), self._keys)
