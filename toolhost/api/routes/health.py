"""
Health Check Routes
"""

from typing import Any

from fastapi import APIRouter, Depends

from toolhost.api.dependencies import get_host
from toolhost.core.types import ServerState
from toolhost.host import ToolHost

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Basic health check."""
    return {"status": "healthy"}


@router.get("/health/ready")
async def readiness_check(host: ToolHost = Depends(get_host)) -> dict[str, Any]:
    """Ready once the host is built; reports how many servers are running."""
    running = [s for s in host.registry.statuses().values() if s.state is ServerState.RUNNING]
    return {"status": "ready", "running_servers": len(running)}
