"""
FastAPI Dependencies

Routes reach the tool host only through these getters.
"""

from typing import Any

from fastapi import Depends, HTTPException, Request

from toolhost.host import ToolHost


async def get_components(request: Request) -> dict[str, Any]:
    """Get application components from state."""
    return getattr(request.app.state, "components", {})


async def get_host(
    components: dict[str, Any] = Depends(get_components),
) -> ToolHost:
    """Get the tool host."""
    if "host" not in components:
        raise HTTPException(status_code=503, detail="Tool host not available")
    value = components["host"]
    assert isinstance(value, ToolHost)
    return value
