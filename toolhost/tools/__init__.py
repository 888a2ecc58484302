"""
Tools Module

Discovery, permission checks and execution of server-provided tools
through the bridging CLI.
"""

from toolhost.tools.bridge import BridgeCLI, BridgeResult, ephemeral_file
from toolhost.tools.discovery import (
    DiscoveryResult,
    ToolDiscoveryService,
    parse_tool_listing,
)
from toolhost.tools.executor import ExecutionEngine, parse_execution_output
from toolhost.tools.heuristics import (
    CATALOG_VERSION,
    DEFAULT_RULES,
    CannedTool,
    HeuristicCatalog,
    HeuristicRule,
)
from toolhost.tools.permissions import PermissionGate

__all__ = [
    # Bridge
    "BridgeCLI",
    "BridgeResult",
    "ephemeral_file",
    # Discovery
    "DiscoveryResult",
    "ToolDiscoveryService",
    "parse_tool_listing",
    # Heuristics
    "CATALOG_VERSION",
    "DEFAULT_RULES",
    "CannedTool",
    "HeuristicCatalog",
    "HeuristicRule",
    # Permissions
    "PermissionGate",
    # Execution
    "ExecutionEngine",
    "parse_execution_output",
]
