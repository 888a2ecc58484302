"""
Tool, Permission and Execution Log Routes
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from toolhost.api.dependencies import get_host
from toolhost.api.routes.servers import RequestModel
from toolhost.core.types import ExecutionLogEntry, ToolDescriptor
from toolhost.host import ToolHost

router = APIRouter()


class ToolListResponse(BaseModel):
    """Discovered tools."""

    tools: list[ToolDescriptor]
    total: int


class ExecuteToolRequest(RequestModel):
    """Request to execute a tool on a server."""

    server_id: str = Field(min_length=1)
    tool: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    session_id: str | None = None
    project_id: str | None = None


class ExecuteToolResponse(BaseModel):
    success: bool = True
    result: Any = None


class SetPermissionRequest(RequestModel):
    server_id: str = Field(min_length=1)
    tool_name: str = Field(min_length=1)
    allowed: bool
    project_id: str | None = None


class ExecutionLogResponse(BaseModel):
    logs: list[ExecutionLogEntry]
    total: int


@router.get("/tools", response_model=ToolListResponse)
async def list_tools(
    server_id: str | None = Query(default=None, alias="serverId"),
    host: ToolHost = Depends(get_host),
):
    """List discovered tools, optionally for one server."""
    tools = await host.list_tools(server_id)
    return ToolListResponse(tools=tools, total=len(tools))


@router.post("/execute", response_model=ExecuteToolResponse)
async def execute_tool(
    request: ExecuteToolRequest,
    host: ToolHost = Depends(get_host),
):
    """
    Execute a tool through the bridging CLI.

    Every call is recorded in the execution log, including denied ones.
    """
    result = await host.execute(
        request.server_id,
        request.tool,
        request.params,
        session_id=request.session_id,
        project_id=request.project_id,
    )
    return ExecuteToolResponse(result=result)


@router.get("/permissions")
async def get_permissions(
    project_id: str | None = Query(default=None, alias="projectId"),
    host: ToolHost = Depends(get_host),
) -> dict[str, Any]:
    """Permission map keyed by "server:tool"."""
    return {"permissions": await host.get_permissions(project_id)}


@router.put("/permissions")
async def set_permission(
    request: SetPermissionRequest,
    host: ToolHost = Depends(get_host),
) -> dict[str, Any]:
    record = await host.set_permission(
        request.server_id,
        request.tool_name,
        request.allowed,
        project_id=request.project_id,
    )
    return {"success": True, "permission": record.model_dump(mode="json")}


@router.get("/execution-log", response_model=ExecutionLogResponse)
async def get_execution_log(
    server_id: str | None = Query(default=None, alias="serverId"),
    session_id: str | None = Query(default=None, alias="sessionId"),
    limit: int = Query(default=100, ge=1, le=1000),
    host: ToolHost = Depends(get_host),
):
    """Execution history, newest first."""
    logs = await host.get_execution_log(server_id=server_id, session_id=session_id, limit=limit)
    return ExecutionLogResponse(logs=logs, total=len(logs))
