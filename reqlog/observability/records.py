"""Log record model: severity levels, typed attribute values and records.

Values are coerced into a closed set of kinds so that sinks never have to
guess what an arbitrary Python object looks like when rendered.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, runtime_checkable


_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class Level(enum.IntEnum):
    DEBUG = 10
    INFO = 20
    WARN = 30
    ERROR = 40

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, name: str, default: Optional["Level"] = None) -> "Level":
        """Map a level name ("debug", "info", "warn"/"warning", "error") to a Level."""

        if default is None:
            default = cls.DEBUG
        lookup = {
            "debug": cls.DEBUG,
            "info": cls.INFO,
            "warn": cls.WARN,
            "warning": cls.WARN,
            "error": cls.ERROR,
        }
        return lookup.get((name or "").strip().lower(), default)


class Kind(enum.Enum):
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    ANY = "any"
    GROUP = "group"


@runtime_checkable
class LogValuer(Protocol):
    """Objects that know how to present themselves in a log record."""

    def log_value(self) -> Any: ...


@dataclass(frozen=True)
class Value:
    kind: Kind
    raw: Any

    def render(self) -> Any:
        if self.kind is Kind.GROUP:
            return {attr.key: attr.value.render() for attr in self.raw}
        if self.kind is Kind.ANY:
            return _render_any(self.raw)
        return self.raw


@dataclass(frozen=True)
class Attr:
    key: str
    value: Value

    @classmethod
    def of(cls, key: str, value: Any) -> "Attr":
        return cls(key, value_of(value))

    @classmethod
    def group(cls, key: str, attrs: Iterable["Attr"]) -> "Attr":
        return cls(key, Value(Kind.GROUP, tuple(attrs)))


@dataclass(frozen=True)
class Record:
    level: Level
    event: str
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attrs: tuple[Attr, ...] = ()

    def with_attrs(self, *attrs: Attr) -> "Record":
        if not attrs:
            return self
        return replace(self, attrs=self.attrs + tuple(attrs))


def value_of(value: Any) -> Value:
    """Coerce an arbitrary value into one of the closed set of kinds.

    ``bool`` is checked before ``int`` since it is an ``int`` subclass.
    Integers outside the signed 64-bit range fall through to ``ANY``.
    """

    if isinstance(value, Value):
        return value
    if isinstance(value, str):
        return Value(Kind.STRING, value)
    if isinstance(value, bool):
        return Value(Kind.BOOL, value)
    if isinstance(value, int) and _INT64_MIN <= value <= _INT64_MAX:
        return Value(Kind.INT, int(value))
    if isinstance(value, float):
        return Value(Kind.FLOAT, value)
    return Value(Kind.ANY, value)


def attr_from_value(key: str, value: Any) -> Attr | None:
    """Build an attribute from a context value, or None if the value is absent.

    ``None`` and empty strings count as absent.
    """

    if value is None:
        return None
    if isinstance(value, str) and value == "":
        return None
    return Attr(key, value_of(value))


def attrs_from_mapping(items: Mapping[str, Any]) -> tuple[Attr, ...]:
    return tuple(Attr.of(key, value) for key, value in items.items())


def group_value(**items: Any) -> Value:
    return Value(Kind.GROUP, attrs_from_mapping(items))


def _render_any(value: Any) -> Any:
    if isinstance(value, Value):
        return value.render()
    if isinstance(value, LogValuer) and not isinstance(value, type):
        return _render_any(value.log_value())
    if isinstance(value, Mapping):
        return {str(k): _render_any(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_render_any(v) for v in value]
    if isinstance(value, int) and not isinstance(value, bool):
        return value if _INT64_MIN <= value <= _INT64_MAX else str(value)
    if value is None or isinstance(value, (str, bool, float)):
        return value
    return str(value)
