"""
Tool Host

Facade wiring the store, process runtime and tool pipeline together.
This is the surface the HTTP route layer (or any embedding program)
calls into.

Design decisions:
- Components are built once and shared; nothing here holds state
  beyond the components themselves
- Server deletion stops the process before the definition goes
- close() stops every server gracefully; the SIGTERM handler is the
  ungraceful path
"""

from collections.abc import Iterable
from typing import Any

from toolhost.config.settings import Settings, get_settings
from toolhost.core.exceptions import ServerNotFoundError
from toolhost.core.types import (
    ExecutionLogEntry,
    PermissionRecord,
    ServerDefinition,
    ServerStatus,
    ToolDescriptor,
    utcnow,
)
from toolhost.observability.logging import get_logger
from toolhost.runtime.lifecycle import LifecycleController
from toolhost.runtime.registry import ProcessRegistry
from toolhost.runtime.supervisor import (
    AutoStartOrchestrator,
    AutoStartReport,
    ShutdownHandler,
)
from toolhost.storage import create_store
from toolhost.storage.base import ToolHostStore
from toolhost.tools.bridge import BridgeCLI
from toolhost.tools.discovery import ToolDiscoveryService
from toolhost.tools.executor import ExecutionEngine
from toolhost.tools.heuristics import HeuristicCatalog
from toolhost.tools.permissions import PermissionGate

logger = get_logger("toolhost.host")


class ToolHost:
    """
    Supervises tool-provider servers and runs their tools.

    Usage:
        host = await ToolHost.create()
        await host.add_server(ServerDefinition(id="fs", name="fs", command="npx server-filesystem"))
        await host.start("fs")
        await host.set_permission("fs", "read_file", allowed=True)
        result = await host.execute("fs", "read_file", {"path": "/tmp/x"}, session_id="sess-1")
        await host.close()
    """

    def __init__(
        self,
        store: ToolHostStore,
        settings: Settings | None = None,
        bridge: BridgeCLI | None = None,
        catalog: HeuristicCatalog | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.bridge = bridge or BridgeCLI.from_settings(self.settings.bridge)

        self.registry = ProcessRegistry()
        self.discovery = ToolDiscoveryService(
            store,
            self.bridge,
            catalog=catalog,
            timeout=self.settings.bridge.discovery_timeout,
        )
        self.lifecycle = LifecycleController(
            self.registry,
            store,
            self.discovery,
            settings=self.settings.runtime,
        )
        self.gate = PermissionGate(store)
        self.engine = ExecutionEngine(
            store,
            self.gate,
            self.bridge,
            timeout=self.settings.bridge.execution_timeout,
        )
        self.autostart = AutoStartOrchestrator(
            store,
            self.lifecycle,
            delay=self.settings.runtime.autostart_delay,
        )
        self.shutdown = ShutdownHandler(self.registry)

    @classmethod
    async def create(cls, settings: Settings | None = None, **kwargs: Any) -> "ToolHost":
        """Build a host on the store the settings select."""
        settings = settings or get_settings()
        store = await create_store(settings.storage)
        return cls(store, settings=settings, **kwargs)

    # ------------------------------------------------------------ servers

    async def list_servers(self) -> list[ServerDefinition]:
        return await self.store.list_servers()

    async def get_server(self, server_id: str) -> ServerDefinition:
        """
        Raises:
            ServerNotFoundError: If no definition exists
        """
        definition = await self.store.get_server(server_id)
        if definition is None:
            raise ServerNotFoundError(server_id)
        return definition

    async def add_server(self, definition: ServerDefinition) -> ServerDefinition:
        definition = await self.store.add_server(definition)
        logger.info("Server added", server_id=definition.id, server_name=definition.name)
        return definition

    async def update_server(self, server_id: str, changes: dict[str, Any]) -> ServerDefinition:
        """
        Apply field changes to a definition. A running server keeps its
        current process; the change applies from the next start.
        """
        current = await self.get_server(server_id)
        data = current.model_dump()
        data.update({k: v for k, v in changes.items() if k not in ("id", "created_at")})
        data["updated_at"] = utcnow()
        definition = await self.store.update_server(ServerDefinition.model_validate(data))
        logger.info("Server updated", server_id=server_id, fields=sorted(changes))
        return definition

    async def delete_server(self, server_id: str) -> bool:
        await self.lifecycle.stop(server_id)
        deleted = await self.store.delete_server(server_id)
        self.registry.forget(server_id)
        if deleted:
            logger.info("Server deleted", server_id=server_id)
        return deleted

    async def seed_servers(self, definitions: Iterable[ServerDefinition]) -> list[str]:
        """Add definitions whose ids are not stored yet. Returns the added ids."""
        added = []
        for definition in definitions:
            if await self.store.get_server(definition.id) is None:
                await self.store.add_server(definition)
                added.append(definition.id)
        if added:
            logger.info("Seeded server definitions", count=len(added))
        return added

    # ---------------------------------------------------------- lifecycle

    async def start(self, server_id: str) -> ServerStatus:
        definition = await self.get_server(server_id)
        return await self.lifecycle.start(server_id, definition)

    async def stop(self, server_id: str) -> ServerStatus:
        return await self.lifecycle.stop(server_id)

    def status(self, server_id: str) -> ServerStatus:
        return self.lifecycle.status(server_id)

    async def set_auto_start(self, server_ids: Iterable[str]) -> None:
        server_ids = list(server_ids)
        await self.store.set_auto_start(server_ids)
        logger.info("Auto-start set updated", server_ids=server_ids)

    def schedule_autostart(self) -> None:
        if self.settings.runtime.autostart_enabled:
            self.autostart.schedule()

    async def run_autostart(self) -> AutoStartReport:
        return await self.autostart.run_once()

    # -------------------------------------------------------------- tools

    async def list_tools(self, server_id: str | None = None) -> list[ToolDescriptor]:
        return await self.store.list_tools(server_id)

    async def execute(
        self,
        server_id: str,
        tool_name: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
        project_id: str | None = None,
    ) -> Any:
        return await self.engine.execute(server_id, tool_name, params, session_id, project_id)

    async def get_permissions(self, project_id: str | None = None) -> dict[str, bool]:
        return await self.gate.get_permissions(project_id)

    async def set_permission(
        self,
        server_id: str,
        tool_name: str,
        allowed: bool,
        project_id: str | None = None,
    ) -> PermissionRecord:
        return await self.gate.set_permission(server_id, tool_name, allowed, project_id)

    async def get_execution_log(
        self,
        server_id: str | None = None,
        session_id: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionLogEntry]:
        return await self.store.list_execution_log(
            server_id=server_id, session_id=session_id, limit=limit
        )

    # ----------------------------------------------------------- teardown

    async def close(self) -> None:
        """Cancel pending auto-start, stop every server and close the store."""
        await self.autostart.cancel()
        self.shutdown.uninstall()
        await self.lifecycle.stop_all()
        await self.store.close()
        logger.info("Tool host closed")
