"""
Core Module

Fundamental types and exceptions shared by every other toolhost module.
"""

from toolhost.core.exceptions import (
    BridgeError,
    BridgeTimeoutError,
    ConfigurationError,
    DiscoveryError,
    DuplicateServerError,
    ExecutionTimeoutError,
    LifecycleError,
    NotPermittedError,
    OutputLimitExceededError,
    ParseError,
    ServerBusyError,
    ServerNotFoundError,
    SpawnFailureError,
    StartTimeoutError,
    StorageError,
    ToolError,
    ToolExecutionError,
    ToolHostError,
)
from toolhost.core.types import (
    ExecutionLogEntry,
    PermissionRecord,
    ServerDefinition,
    ServerState,
    ServerStatus,
    ToolDescriptor,
)

__all__ = [
    # Types
    "ExecutionLogEntry",
    "PermissionRecord",
    "ServerDefinition",
    "ServerState",
    "ServerStatus",
    "ToolDescriptor",
    # Exceptions
    "BridgeError",
    "BridgeTimeoutError",
    "ConfigurationError",
    "DiscoveryError",
    "DuplicateServerError",
    "ExecutionTimeoutError",
    "LifecycleError",
    "NotPermittedError",
    "OutputLimitExceededError",
    "ParseError",
    "ServerBusyError",
    "ServerNotFoundError",
    "SpawnFailureError",
    "StartTimeoutError",
    "StorageError",
    "ToolError",
    "ToolExecutionError",
    "ToolHostError",
]
