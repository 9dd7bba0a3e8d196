from __future__ import annotations

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable
from urllib.parse import parse_qs

from starlette.datastructures import Headers, MutableHeaders

from reqlog.observability.logger import Logger, emit_safely
from reqlog.observability.records import Level


REQUEST_ID_HEADER = "X-Request-ID"
UNKNOWN_REQUEST_ID = "unknown"

REQUEST_ID: ContextVar[str] = ContextVar("reqlog.request_id")


def get_request_id(default: str = UNKNOWN_REQUEST_ID) -> str:
    return REQUEST_ID.get(None) or default


class RequestContextMiddleware:
    """Assigns each request an ID, stores it in the request context and echoes it back."""

    def __init__(self, app: Callable[..., Any]) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_wrapper(message: dict[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers[REQUEST_ID_HEADER] = request_id

            await send(message)

        token = REQUEST_ID.set(request_id)
        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            REQUEST_ID.reset(token)


@dataclass
class ResponseObservation:
    status: int = 200
    bytes: int = 0
    content_type: str = ""
    duration_ms: float = 0.0
    started: bool = False

    def observe(self, message: dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == "http.response.start":
            self.started = True
            self.status = int(message.get("status", 200))
            self.content_type = Headers(raw=message.get("headers") or []).get("content-type", "")
        elif kind == "http.response.body":
            self.bytes += len(message.get("body", b""))

    def attrs(self) -> dict[str, Any]:
        attrs: dict[str, Any] = {
            "status": self.status,
            "bytes": self.bytes,
            "duration_ms": self.duration_ms,
        }
        if self.content_type:
            attrs["content_type"] = self.content_type
        return attrs


def completion_level(status: int) -> tuple[Level, str]:
    # Thresholds overlap; keep them ordered from highest to lowest.
    if status >= 500:
        return Level.ERROR, "server error"
    if status >= 400:
        return Level.WARN, "client error"
    if status >= 300:
        return Level.INFO, "redirect"
    return Level.INFO, "request completed"


def request_attrs(scope: dict[str, Any], request_id: str) -> dict[str, Any]:
    headers = Headers(scope=scope)
    client = scope.get("client")
    attrs: dict[str, Any] = {
        "request_id": request_id,
        "method": scope.get("method", ""),
        "path": scope.get("path", ""),
        "remote_ip": f"{client[0]}:{client[1]}" if client else "",
        "user_agent": headers.get("user-agent", ""),
        "referer": headers.get("referer", ""),
        "host": headers.get("host", ""),
    }
    raw_query = scope.get("query_string", b"").decode("latin-1")
    if raw_query:
        attrs["query"] = parse_qs(raw_query, keep_blank_values=True)
    return attrs


def route_pattern(scope: dict[str, Any]) -> str | None:
    route = scope.get("route")
    return getattr(route, "path", None) or None


class RequestLoggingMiddleware:
    """Logs one completion record per request with status, size and latency."""

    def __init__(self, app: Callable[..., Any], logger: Logger) -> None:
        self.app = app
        self.logger = logger

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        start = perf_counter()
        observation = ResponseObservation()
        logger = self.logger.bind(**request_attrs(scope, get_request_id()))

        emit_safely(logger, Level.DEBUG, "request started")

        async def send_wrapper(message: dict[str, Any]) -> None:
            observation.observe(message)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            if not observation.started:
                observation.status = 500
            raise
        finally:
            observation.duration_ms = (perf_counter() - start) * 1000.0
            attrs = observation.attrs()
            pattern = route_pattern(scope)
            if pattern:
                attrs["route_pattern"] = pattern
            level, event = completion_level(observation.status)
            emit_safely(logger, level, event, **attrs)

