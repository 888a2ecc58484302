"""
Server Management Routes
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from toolhost.api.dependencies import get_host
from toolhost.core.types import ServerDefinition, ServerState, ServerStatus
from toolhost.host import ToolHost

router = APIRouter()


class RequestModel(BaseModel):
    """Accepts both snake_case and camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateServerRequest(RequestModel):
    id: str | None = None
    name: str = Field(min_length=1)
    description: str = ""
    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    category: str = "utilities"
    tools: list[str] = Field(default_factory=list)
    auto_start: bool = False
    ready_pattern: str | None = None


class UpdateServerRequest(RequestModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    command: str | None = Field(default=None, min_length=1)
    args: list[str] | None = None
    env: dict[str, str] | None = None
    category: str | None = None
    tools: list[str] | None = None
    auto_start: bool | None = None
    ready_pattern: str | None = None


class ServerInfo(BaseModel):
    """A definition together with its current state."""

    id: str
    name: str
    description: str
    command: str
    args: list[str]
    env: dict[str, str]
    category: str
    tools: list[str]
    auto_start: bool
    ready_pattern: str | None
    state: ServerState

    @classmethod
    def build(cls, definition: ServerDefinition, state: ServerState) -> "ServerInfo":
        return cls(
            **definition.model_dump(exclude={"created_at", "updated_at"}),
            state=state,
        )


class ServerListResponse(BaseModel):
    servers: list[ServerInfo]
    total: int


class AutoStartRequest(RequestModel):
    server_ids: list[str] = Field(default_factory=list)


@router.get("/servers", response_model=ServerListResponse)
async def list_servers(host: ToolHost = Depends(get_host)):
    """List server definitions with their states."""
    definitions = await host.list_servers()
    servers = [ServerInfo.build(d, host.status(d.id).state) for d in definitions]
    return ServerListResponse(servers=servers, total=len(servers))


@router.post("/servers", response_model=ServerInfo, status_code=201)
async def add_server(
    request: CreateServerRequest,
    host: ToolHost = Depends(get_host),
):
    """Add a server definition."""
    data = request.model_dump(exclude_none=True)
    definition = await host.add_server(ServerDefinition(**data))
    return ServerInfo.build(definition, host.status(definition.id).state)


@router.put("/servers/{server_id}", response_model=ServerInfo)
async def update_server(
    server_id: str,
    request: UpdateServerRequest,
    host: ToolHost = Depends(get_host),
):
    """Change fields of a definition; a running server picks them up on restart."""
    # ready_pattern is the only field null may clear
    changes = {
        k: v
        for k, v in request.model_dump(exclude_unset=True).items()
        if v is not None or k == "ready_pattern"
    }
    definition = await host.update_server(server_id, changes)
    return ServerInfo.build(definition, host.status(server_id).state)


@router.delete("/servers/{server_id}")
async def delete_server(
    server_id: str,
    host: ToolHost = Depends(get_host),
) -> dict[str, Any]:
    """Stop a server if it runs, then delete its definition."""
    if not await host.delete_server(server_id):
        raise HTTPException(status_code=404, detail=f"MCP server not found: {server_id}")
    return {"success": True, "server_id": server_id}


@router.post("/servers/{server_id}/start", response_model=ServerStatus)
async def start_server(
    server_id: str,
    host: ToolHost = Depends(get_host),
):
    """Start a server and wait for it to become ready."""
    return await host.start(server_id)


@router.post("/servers/{server_id}/stop", response_model=ServerStatus)
async def stop_server(
    server_id: str,
    host: ToolHost = Depends(get_host),
):
    return await host.stop(server_id)


@router.get("/servers/{server_id}/status", response_model=ServerStatus)
async def server_status(
    server_id: str,
    host: ToolHost = Depends(get_host),
):
    await host.get_server(server_id)
    return host.status(server_id)


@router.post("/auto-start")
async def set_auto_start(
    request: AutoStartRequest,
    host: ToolHost = Depends(get_host),
) -> dict[str, Any]:
    """Replace the set of servers started at boot."""
    await host.set_auto_start(request.server_ids)
    return {"success": True, "server_ids": request.server_ids}


@router.get("/config")
async def get_config(host: ToolHost = Depends(get_host)) -> dict[str, Any]:
    """Effective runtime configuration."""
    settings = host.settings
    auto_start = await host.store.list_auto_start_servers()
    return {
        "config": {
            "version": settings.app_version,
            "bridge_command": settings.bridge.command,
            "readiness_timeout": settings.runtime.readiness_timeout,
            "discovery_timeout": settings.bridge.discovery_timeout,
            "execution_timeout": settings.bridge.execution_timeout,
            "autostart_enabled": settings.runtime.autostart_enabled,
            "autostart_delay": settings.runtime.autostart_delay,
            "auto_start": [d.id for d in auto_start],
            "catalog_version": host.discovery.catalog.version,
            "log_level": settings.observability.log_level,
        }
    }
