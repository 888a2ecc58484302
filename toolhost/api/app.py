"""
FastAPI Application Factory

Creates and configures the HTTP application around a ToolHost.

Design decisions:
- Factory pattern for testability; settings can be passed in
- Lifespan builds the host, seeds definitions, schedules auto-start
  and installs the SIGTERM handler; shutdown closes the host
- Toolhost errors map to HTTP status codes in one handler
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from toolhost.config import Settings, get_settings, load_server_definitions
from toolhost.core.exceptions import ToolHostError
from toolhost.host import ToolHost
from toolhost.observability.logging import configure_logging, get_logger

logger = get_logger("toolhost.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[dict[str, Any]]:
    """
    Application lifespan manager.

    The host is stored in app.state.components for DI.
    """
    settings: Settings = app.state.settings

    configure_logging(
        level=settings.observability.log_level,
        json_output=settings.observability.log_format == "json",
        log_file=settings.observability.log_file,
    )

    host = await ToolHost.create(settings)
    state: dict[str, Any] = {"host": host}

    try:
        if settings.servers_file:
            await host.seed_servers(load_server_definitions(settings.servers_file))

        host.shutdown.install()
        host.schedule_autostart()

        app.state.components = state
        logger.info("Tool host started", app_name=settings.app_name, api_prefix=settings.api_prefix)

        yield state

    finally:
        await host.close()


def create_app(settings: Settings | None = None, **kwargs: Any) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use instead of the environment-derived ones
        **kwargs: Additional FastAPI arguments
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Supervisor and tool gateway for MCP servers",
        debug=settings.debug,
        lifespan=lifespan,
        **kwargs,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from toolhost.api.middleware import (
        RequestContextMiddleware,
        toolhost_error_handler,
        validation_error_handler,
    )

    app.add_middleware(RequestContextMiddleware)
    app.add_exception_handler(ToolHostError, toolhost_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)

    from toolhost.api.routes import health, servers, tools

    app.include_router(health.router, tags=["health"])
    app.include_router(servers.router, prefix=settings.api_prefix, tags=["servers"])
    app.include_router(tools.router, prefix=settings.api_prefix, tags=["tools"])

    return app
