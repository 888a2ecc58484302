"""
In-memory store for development and testing.
"""

from collections.abc import Iterable
from itertools import count

from toolhost.core.exceptions import DuplicateServerError, ServerNotFoundError
from toolhost.core.types import (
    ExecutionLogEntry,
    PermissionRecord,
    ServerDefinition,
    ToolDescriptor,
    utcnow,
)
from toolhost.storage.base import ToolHostStore


class InMemoryStore(ToolHostStore):
    """Dict-backed store. Nothing survives the process."""

    def __init__(self, max_log_entries: int = 10000):
        self._servers: dict[str, ServerDefinition] = {}
        self._tools: dict[str, list[ToolDescriptor]] = {}
        self._permissions: dict[tuple[str, str, str | None], PermissionRecord] = {}
        self._log: list[ExecutionLogEntry] = []
        self._max_log_entries = max_log_entries

        # Write order for permissions, to break timestamp ties
        self._sequence = count()
        self._written: dict[tuple[str, str, str | None], int] = {}

    async def add_server(self, definition: ServerDefinition) -> ServerDefinition:
        if definition.id in self._servers:
            raise DuplicateServerError(
                f"MCP server already exists: {definition.id}",
                context={"server_id": definition.id},
            )
        self._servers[definition.id] = definition
        return definition

    async def get_server(self, server_id: str) -> ServerDefinition | None:
        return self._servers.get(server_id)

    async def list_servers(self) -> list[ServerDefinition]:
        return sorted(self._servers.values(), key=lambda s: s.name)

    async def update_server(self, definition: ServerDefinition) -> ServerDefinition:
        if definition.id not in self._servers:
            raise ServerNotFoundError(definition.id)
        updated = definition.model_copy(update={"updated_at": utcnow()})
        self._servers[definition.id] = updated
        return updated

    async def delete_server(self, server_id: str) -> bool:
        if self._servers.pop(server_id, None) is None:
            return False
        self._tools.pop(server_id, None)
        for key in [k for k in self._permissions if k[0] == server_id]:
            del self._permissions[key]
            self._written.pop(key, None)
        return True

    async def list_auto_start_servers(self) -> list[ServerDefinition]:
        return [s for s in await self.list_servers() if s.auto_start]

    async def set_auto_start(self, server_ids: Iterable[str]) -> None:
        selected = set(server_ids)
        for server_id, definition in list(self._servers.items()):
            flag = server_id in selected
            if definition.auto_start != flag:
                self._servers[server_id] = definition.model_copy(
                    update={"auto_start": flag, "updated_at": utcnow()}
                )

    async def list_tools(self, server_id: str | None = None) -> list[ToolDescriptor]:
        if server_id is not None:
            return sorted(self._tools.get(server_id, []), key=lambda t: t.name)

        tools = []
        for definition in await self.list_servers():
            tools.extend(sorted(self._tools.get(definition.id, []), key=lambda t: t.name))
        return tools

    async def replace_tools(self, server_id: str, tools: list[ToolDescriptor]) -> None:
        if tools:
            self._tools[server_id] = list(tools)
        else:
            self._tools.pop(server_id, None)

    async def upsert_permission(self, record: PermissionRecord) -> PermissionRecord:
        if record.server_id not in self._servers:
            raise ServerNotFoundError(record.server_id)

        existing = self._permissions.get(record.key)
        if existing is not None:
            record = record.model_copy(
                update={"id": existing.id, "created_at": existing.created_at}
            )
        self._permissions[record.key] = record
        self._written[record.key] = next(self._sequence)
        return record

    async def find_permissions(
        self,
        server_id: str,
        tool_name: str,
        project_id: str | None = None,
    ) -> list[PermissionRecord]:
        scopes = {None, project_id}
        matches = [
            r
            for r in self._permissions.values()
            if r.server_id == server_id and r.tool_name == tool_name and r.project_id in scopes
        ]
        return sorted(matches, key=self._recency, reverse=True)

    async def list_permissions(self, project_id: str | None = None) -> list[PermissionRecord]:
        records = list(self._permissions.values())
        if project_id is not None:
            records = [r for r in records if r.project_id in (None, project_id)]
        return sorted(records, key=self._recency)

    def _recency(self, record: PermissionRecord) -> tuple:
        return (record.updated_at, self._written.get(record.key, -1))

    async def append_execution_log(self, entry: ExecutionLogEntry) -> None:
        self._log.append(entry)
        if len(self._log) > self._max_log_entries:
            self._log = self._log[-self._max_log_entries :]

    async def list_execution_log(
        self,
        server_id: str | None = None,
        session_id: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionLogEntry]:
        results = self._log

        if server_id:
            results = [e for e in results if e.server_id == server_id]

        if session_id:
            results = [e for e in results if e.session_id == session_id]

        return list(reversed(results))[:limit]
