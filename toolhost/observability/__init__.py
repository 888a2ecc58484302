"""
Observability Module

Structured logging for the toolhost core.
"""

from toolhost.observability.logging import (
    BufferHandler,
    ConsoleHandler,
    FileHandler,
    LogHandler,
    LogLevel,
    LogRecord,
    StructuredLogger,
    configure_logging,
    get_logger,
)

__all__ = [
    "BufferHandler",
    "ConsoleHandler",
    "FileHandler",
    "LogHandler",
    "LogLevel",
    "LogRecord",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
]
