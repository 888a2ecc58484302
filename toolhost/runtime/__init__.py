"""
Runtime Module

Server process supervision: registry, lifecycle, auto-start and shutdown.
"""

from toolhost.runtime.lifecycle import LifecycleController
from toolhost.runtime.registry import ProcessRegistry, ServerHandle
from toolhost.runtime.supervisor import (
    AutoStartOrchestrator,
    AutoStartReport,
    ShutdownHandler,
)

__all__ = [
    "AutoStartOrchestrator",
    "AutoStartReport",
    "LifecycleController",
    "ProcessRegistry",
    "ServerHandle",
    "ShutdownHandler",
]
