"""
Storage Interface

Abstract persistence for the four records the toolhost core reads
and writes: server definitions, tool descriptors, permission records
and execution log entries.

Design decisions:
- Async interface so backends may block on a worker thread
- Descriptor replacement is a single unit (delete + insert)
- Permission writes are upserts keyed by (server, tool, project)
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from toolhost.core.types import (
    ExecutionLogEntry,
    PermissionRecord,
    ServerDefinition,
    ToolDescriptor,
)


class ToolHostStore(ABC):
    """Abstract store for toolhost records."""

    # ---------------------------------------------------------- servers

    @abstractmethod
    async def add_server(self, definition: ServerDefinition) -> ServerDefinition:
        """Insert a definition. Raises DuplicateServerError on id clash."""

    @abstractmethod
    async def get_server(self, server_id: str) -> ServerDefinition | None:
        """Fetch a definition by id."""

    @abstractmethod
    async def list_servers(self) -> list[ServerDefinition]:
        """All definitions, ordered by name."""

    @abstractmethod
    async def update_server(self, definition: ServerDefinition) -> ServerDefinition:
        """Replace a definition. Raises ServerNotFoundError if absent."""

    @abstractmethod
    async def delete_server(self, server_id: str) -> bool:
        """Delete a definition with its descriptors and permissions."""

    @abstractmethod
    async def list_auto_start_servers(self) -> list[ServerDefinition]:
        """Definitions flagged for automatic boot."""

    @abstractmethod
    async def set_auto_start(self, server_ids: Iterable[str]) -> None:
        """Clear the auto-start flag everywhere, then set it on `server_ids`."""

    # ------------------------------------------------------------ tools

    @abstractmethod
    async def list_tools(self, server_id: str | None = None) -> list[ToolDescriptor]:
        """Descriptors, optionally for one server, ordered by server then name."""

    @abstractmethod
    async def replace_tools(self, server_id: str, tools: list[ToolDescriptor]) -> None:
        """Atomically replace every descriptor of a server."""

    async def clear_tools(self, server_id: str) -> None:
        """Remove every descriptor of a server."""
        await self.replace_tools(server_id, [])

    # ------------------------------------------------------ permissions

    @abstractmethod
    async def upsert_permission(self, record: PermissionRecord) -> PermissionRecord:
        """Insert or supersede the record for its (server, tool, project) key."""

    @abstractmethod
    async def find_permissions(
        self,
        server_id: str,
        tool_name: str,
        project_id: str | None = None,
    ) -> list[PermissionRecord]:
        """
        Records for (server, tool) in the given scope or the global scope,
        most recently written first.
        """

    @abstractmethod
    async def list_permissions(self, project_id: str | None = None) -> list[PermissionRecord]:
        """
        All records, or only those visible to a project (its own plus
        global ones), oldest write first.
        """

    # ---------------------------------------------------- execution log

    @abstractmethod
    async def append_execution_log(self, entry: ExecutionLogEntry) -> None:
        """Persist one execution log entry."""

    @abstractmethod
    async def list_execution_log(
        self,
        server_id: str | None = None,
        session_id: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionLogEntry]:
        """Entries, newest first."""

    async def close(self) -> None:
        """Release backend resources."""
