"""
Exception Hierarchy

Defines all exceptions raised by the toolhost core.
Exceptions carry structured context, not just messages.

Design decisions:
- All exceptions inherit from ToolHostError for easy catching
- Error codes enable programmatic handling (HTTP mapping, log entries)
- Discovery and parse errors exist for local recovery only
"""

from typing import Any


class ToolHostError(Exception):
    """
    Base exception for all toolhost errors.

    Provides structured error information including:
    - Human-readable message
    - Machine-readable error code
    - Additional context for debugging
    """

    error_code: str = "TOOLHOST_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.error_code
        self.context = context or {}
        self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "context": self.context,
        }


class ConfigurationError(ToolHostError):
    """Error in configuration or settings."""

    error_code = "CONFIGURATION_ERROR"


# ============================================================
# Lifecycle Errors
# ============================================================

class LifecycleError(ToolHostError):
    """Base error for server lifecycle issues."""

    error_code = "LIFECYCLE_ERROR"


class SpawnFailureError(LifecycleError):
    """The server process could not be created or died before it was ready."""

    error_code = "SPAWN_FAILURE"


class StartTimeoutError(LifecycleError, TimeoutError):
    """No readiness signal was observed within the start window."""

    error_code = "START_TIMEOUT"

    def __init__(self, message: str, *, timeout: float, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class ServerBusyError(LifecycleError):
    """A start was requested while the server is already starting or running."""

    error_code = "SERVER_BUSY"


class ServerNotFoundError(ToolHostError):
    """No server definition exists for the given id."""

    error_code = "SERVER_NOT_FOUND"

    def __init__(self, server_id: str, **kwargs: Any):
        super().__init__(f"MCP server not found: {server_id}", **kwargs)
        self.server_id = server_id


# ============================================================
# Tool Errors
# ============================================================

class ToolError(ToolHostError):
    """Base error for tool discovery and execution."""

    error_code = "TOOL_ERROR"


class NotPermittedError(ToolError):
    """The permission gate denied the invocation."""

    error_code = "NOT_PERMITTED"

    def __init__(
        self,
        server_id: str,
        tool_name: str,
        project_id: str | None = None,
        **kwargs: Any,
    ):
        super().__init__("Tool execution not permitted", **kwargs)
        self.server_id = server_id
        self.tool_name = tool_name
        self.project_id = project_id


class ToolExecutionError(ToolError):
    """The bridging CLI failed to perform the call."""

    error_code = "TOOL_EXECUTION_ERROR"

    def __init__(self, message: str, *, tool_name: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.tool_name = tool_name


class ExecutionTimeoutError(ToolExecutionError):
    """The invocation subprocess exceeded its time window and was killed."""

    error_code = "EXECUTION_TIMEOUT"


class DiscoveryError(ToolError):
    """Live introspection failed. Recovered by the heuristic catalog."""

    error_code = "DISCOVERY_FAILURE"


class ParseError(ToolError):
    """CLI output could not be parsed. Recovered by raw-text wrapping."""

    error_code = "PARSE_FAILURE"


# ============================================================
# Bridging CLI Errors
# ============================================================

class BridgeError(ToolHostError):
    """The bridging CLI could not be run or reported a failure."""

    error_code = "BRIDGE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        stderr: str = "",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.returncode = returncode
        self.stderr = stderr


class BridgeTimeoutError(BridgeError):
    """The bridging CLI did not finish within its time window."""

    error_code = "BRIDGE_TIMEOUT"


class OutputLimitExceededError(BridgeError):
    """The bridging CLI produced more output than the configured bound."""

    error_code = "BRIDGE_OUTPUT_LIMIT"


# ============================================================
# Storage Errors
# ============================================================

class StorageError(ToolHostError):
    """Error in the persistence layer."""

    error_code = "STORAGE_ERROR"


class DuplicateServerError(StorageError):
    """A server definition with this id already exists."""

    error_code = "DUPLICATE_SERVER"
