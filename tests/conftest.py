from __future__ import annotations

import contextvars
import io
import json
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import replace

import pytest
from fastapi import FastAPI, Request, Response
from httpx import ASGITransport, AsyncClient

from reqlog.api.errors import ApiError, ErrorResponse
from reqlog.config import get_settings
from reqlog.main import create_app
from reqlog.observability import (
    DEFAULT_CONTEXT_KEYS,
    Attr,
    Level,
    Logger,
    Record,
    get_request_id,
    new_logger,
    with_app,
    with_context_keys,
    with_environment,
)


class RecordingSink:
    """Keeps every handled record (with bound attrs prepended) in a shared list."""

    def __init__(self, records: list[Record] | None = None, bound: tuple[Attr, ...] = (), groups: tuple[str, ...] = ()) -> None:
        self.records: list[Record] = records if records is not None else []
        self.bound = bound
        self.groups = groups
        self.level = Level.DEBUG

    def enabled(self, context: contextvars.Context, level: Level) -> bool:
        return level >= self.level

    def handle(self, context: contextvars.Context, record: Record) -> None:
        self.records.append(replace(record, attrs=self.bound + record.attrs))

    def with_attrs(self, attrs: Sequence[Attr]) -> "RecordingSink":
        return RecordingSink(self.records, self.bound + tuple(attrs), self.groups)

    def with_group(self, name: str) -> "RecordingSink":
        return RecordingSink(self.records, self.bound, self.groups + (name,))


class FailingSink(RecordingSink):
    def handle(self, context: contextvars.Context, record: Record) -> None:
        raise OSError("disk full")


class BrokenStream(io.StringIO):
    def write(self, s: str) -> int:
        raise OSError("stream closed")


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("APP_NAME", "reqlog-test")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logged(log_stream: io.StringIO) -> Callable[[], list[dict]]:
    def read() -> list[dict]:
        return [json.loads(line) for line in log_stream.getvalue().splitlines() if line.strip()]

    return read


@pytest.fixture
def logger(log_stream: io.StringIO) -> Logger:
    return new_logger(
        with_environment("test"),
        with_app("reqlog-test"),
        with_context_keys(DEFAULT_CONTEXT_KEYS),
        stream=log_stream,
    )


@pytest.fixture
def app(logger: Logger) -> FastAPI:
    application = create_app(logger=logger)

    @application.get("/items/{item_id}", status_code=201)
    async def get_item(item_id: int) -> dict[str, int]:
        return {"item_id": item_id}

    @application.get("/status/{code}")
    async def status(code: int) -> Response:
        return Response(status_code=code)

    @application.get("/whoami")
    async def whoami(request: Request) -> dict[str, str]:
        request.app.state.logger.info("inside handler")
        return {"request_id": get_request_id(), "state_request_id": request.state.request_id}

    @application.get("/redirect")
    async def redirect() -> Response:
        return Response(status_code=302, headers={"Location": "/health"})

    @application.get("/fail")
    async def fail() -> None:
        try:
            raise KeyError("item 7")
        except KeyError as exc:
            raise ApiError.from_exception(exc, 404, "Resource not found.", details={"item": 7}) from exc

    @application.get("/unrenderable")
    async def unrenderable() -> None:
        raise ApiError(ErrorResponse(status="Broken.", error="broken", details=object(), http_status_code=400))

    @application.get("/boom")
    async def boom() -> None:
        raise RuntimeError("boom")

    return application


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()


@pytest.fixture
def broken_stream() -> BrokenStream:
    return BrokenStream()
