"""
Tool Permission Gate

Decides whether a (server, tool, optional project) invocation may run.

Design decisions:
- Deny by default: no record means not permitted
- Project-scoped and global records coexist; the most recently
  written one that applies decides
- Writes are upserts keyed by (server, tool, project)
"""

from toolhost.core.exceptions import NotPermittedError
from toolhost.core.types import PermissionRecord, utcnow
from toolhost.observability.logging import get_logger
from toolhost.storage.base import ToolHostStore

logger = get_logger("toolhost.permissions")


class PermissionGate:
    """
    Permission lookups and writes over the store.

    Usage:
        gate = PermissionGate(store)
        await gate.set_permission("fs", "read_file", allowed=True)
        await gate.check("fs", "read_file")
    """

    def __init__(self, store: ToolHostStore):
        self._store = store

    async def lookup(
        self,
        server_id: str,
        tool_name: str,
        project_id: str | None = None,
    ) -> PermissionRecord | None:
        """The record that currently decides this invocation, if any."""
        records = await self._store.find_permissions(server_id, tool_name, project_id)
        return records[0] if records else None

    async def is_allowed(
        self,
        server_id: str,
        tool_name: str,
        project_id: str | None = None,
    ) -> bool:
        record = await self.lookup(server_id, tool_name, project_id)
        return record is not None and record.allowed

    async def check(
        self,
        server_id: str,
        tool_name: str,
        project_id: str | None = None,
    ) -> None:
        """
        Raises:
            NotPermittedError: If no record allows the invocation
        """
        if not await self.is_allowed(server_id, tool_name, project_id):
            logger.info(
                "Tool execution denied",
                server_id=server_id,
                tool_name=tool_name,
                project_id=project_id,
            )
            raise NotPermittedError(
                server_id,
                tool_name,
                project_id,
                context={"server_id": server_id, "tool_name": tool_name, "project_id": project_id},
            )

    async def set_permission(
        self,
        server_id: str,
        tool_name: str,
        allowed: bool,
        project_id: str | None = None,
    ) -> PermissionRecord:
        """Record a decision, superseding any earlier one for the same key."""
        now = utcnow()
        record = await self._store.upsert_permission(
            PermissionRecord(
                server_id=server_id,
                tool_name=tool_name,
                project_id=project_id,
                allowed=allowed,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(
            "Permission updated",
            server_id=server_id,
            tool_name=tool_name,
            project_id=project_id,
            allowed=allowed,
        )
        return record

    async def get_permissions(self, project_id: str | None = None) -> dict[str, bool]:
        """
        Map of "server:tool" to allowed for the records visible to a
        project. The newest record wins when a key appears twice.
        """
        permissions: dict[str, bool] = {}
        for record in await self._store.list_permissions(project_id):
            permissions[f"{record.server_id}:{record.tool_name}"] = record.allowed
        return permissions
