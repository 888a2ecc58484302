"""
Core Types and Data Structures

Defines the records the toolhost core reads and writes.
Persisted records (definitions, descriptors, permissions, log entries)
are pydantic models; runtime state never leaves the process registry.
"""

import shlex
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class ServerState(str, Enum):
    """Lifecycle state of a tool-provider server."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


class ServerDefinition(BaseModel):
    """
    How to launch one tool-provider server.

    `command` may carry embedded arguments ("npx -y pkg"); it is
    shell-split and followed by `args` when the process is spawned.
    """

    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    description: str = ""
    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    category: str = "utilities"
    tools: list[str] = Field(default_factory=list)  # Declared, informational only
    auto_start: bool = False
    ready_pattern: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("command")
    @classmethod
    def _check_command(cls, value: str) -> str:
        try:
            parts = shlex.split(value)
        except ValueError as e:
            raise ValueError(f"command cannot be parsed: {e}") from e
        if not parts:
            raise ValueError("command must name an executable")
        return value

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value

    @property
    def argv(self) -> list[str]:
        """Full argument vector for the server process."""
        return [*shlex.split(self.command), *self.args]

    @property
    def command_line(self) -> str:
        """Command and arguments as one string, for matching and display."""
        return " ".join([self.command, *self.args])

    def to_mcp_config(self) -> dict[str, Any]:
        """Entry for a single-server `mcpServers` configuration."""
        parts = shlex.split(self.command)
        return {
            "command": parts[0],
            "args": [*parts[1:], *self.args],
            "env": dict(self.env),
        }


class ServerStatus(BaseModel):
    """Snapshot of a server's runtime state."""

    server_id: str
    state: ServerState = ServerState.STOPPED
    pid: int | None = None
    started_at: datetime | None = None
    last_error: str | None = None
    recent_output: list[str] = Field(default_factory=list)


class ToolDescriptor(BaseModel):
    """A callable capability advertised by a server."""

    id: str = Field(default_factory=new_id)
    server_id: str
    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    created_at: datetime = Field(default_factory=utcnow)


class PermissionRecord(BaseModel):
    """
    A permission decision for one (server, tool, project scope) key.

    A null `project_id` is the global scope.
    """

    id: str = Field(default_factory=new_id)
    server_id: str
    tool_name: str
    project_id: str | None = None
    allowed: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str, str | None]:
        return (self.server_id, self.tool_name, self.project_id)


class ExecutionLogEntry(BaseModel):
    """One audit record per execution attempt."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    server_id: str
    tool_name: str
    session_id: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: str | None = None
    duration: int = Field(default=0, ge=0)  # milliseconds
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def is_error(self) -> bool:
        return self.error is not None
