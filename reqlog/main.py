from __future__ import annotations

from fastapi import FastAPI

from reqlog.api.errors import register_error_handlers
from reqlog.config import Settings, get_settings
from reqlog.observability import (
    DEFAULT_CONTEXT_KEYS,
    Logger,
    LoggerConfig,
    RequestContextMiddleware,
    RequestLoggingMiddleware,
    build_logger,
    configure_logging,
    with_context_keys,
)


def create_app(settings: Settings | None = None, logger: Logger | None = None) -> FastAPI:
    settings = settings or get_settings()
    config = LoggerConfig.from_options(*settings.logger_options(), with_context_keys(DEFAULT_CONTEXT_KEYS))
    configure_logging(config)
    if logger is None:
        logger = build_logger(config)

    app = FastAPI(title="reqlog", version=settings.app_version)
    app.state.logger = logger

    # The last middleware added runs first: the request ID must be set before
    # the logging middleware reads it.
    app.add_middleware(RequestLoggingMiddleware, logger=logger)
    app.add_middleware(RequestContextMiddleware)
    register_error_handlers(app)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
