"""
Configuration Module

Centralized settings and server definition loading.
"""

from toolhost.config.servers import load_server_definitions, parse_server_definitions
from toolhost.config.settings import (
    BridgeSettings,
    ObservabilitySettings,
    RuntimeSettings,
    Settings,
    StorageSettings,
    get_settings,
)

__all__ = [
    "BridgeSettings",
    "ObservabilitySettings",
    "RuntimeSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "load_server_definitions",
    "parse_server_definitions",
]
