"""
Lifecycle Controller

Starts and stops tool-provider server processes.

State machine per server (no terminal state):
    Stopped  --start()-->          Starting
    Starting --ready signal-->     Running   (discovery scheduled)
    Starting --spawn failure-->    Error
    Starting --timeout-->          Error     (process killed)
    Running  --unexpected exit-->  Stopped   (tools cleared)
    any      --stop()-->           Stopped   (tools cleared)

Design decisions:
- start() waits for readiness and reports it; discovery runs after,
  as a task owned by the handle
- A start() while Starting or Running is rejected with ServerBusyError
- stop() during Starting wins; the pending start() fails
- The readiness wait does not hold the per-id lock, so stop() can
  interrupt it
"""

import asyncio
import os
import re
from collections import deque

from toolhost.config.settings import RuntimeSettings
from toolhost.core.exceptions import (
    ConfigurationError,
    ServerBusyError,
    ServerNotFoundError,
    SpawnFailureError,
    StartTimeoutError,
)
from toolhost.core.types import ServerDefinition, ServerState, ServerStatus
from toolhost.observability.logging import get_logger
from toolhost.runtime.registry import ProcessRegistry, ServerHandle
from toolhost.storage.base import ToolHostStore
from toolhost.tools.discovery import ToolDiscoveryService

logger = get_logger("toolhost.lifecycle")


class LifecycleController:
    """
    Drives server processes through their lifecycle.

    Usage:
        controller = LifecycleController(registry, store, discovery)
        status = await controller.start("fs")
        await controller.stop("fs")
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        store: ToolHostStore,
        discovery: ToolDiscoveryService,
        settings: RuntimeSettings | None = None,
    ):
        self._registry = registry
        self._store = store
        self._discovery = discovery
        self._settings = settings or RuntimeSettings()

    @property
    def registry(self) -> ProcessRegistry:
        return self._registry

    def status(self, server_id: str) -> ServerStatus:
        return self._registry.status(server_id)

    # -------------------------------------------------------------- start

    async def start(
        self,
        server_id: str,
        definition: ServerDefinition | None = None,
    ) -> ServerStatus:
        """
        Start a server and wait until it signals readiness.

        Raises:
            ServerNotFoundError: No definition given or stored
            ServerBusyError: The server is already Starting or Running
            SpawnFailureError: The process could not be created or died early
            StartTimeoutError: No readiness signal within the timeout
        """
        async with self._registry.lock(server_id):
            if definition is None:
                definition = await self._store.get_server(server_id)
                if definition is None:
                    raise ServerNotFoundError(server_id)

            state = self._registry.state(server_id)
            if state in (ServerState.STARTING, ServerState.RUNNING):
                raise ServerBusyError(
                    f"MCP server is already {state.value}: {server_id}",
                    context={"server_id": server_id, "state": state.value},
                )

            ready_pattern = self._compile_ready_pattern(definition)
            await self._store.clear_tools(server_id)
            self._registry.set_state(server_id, ServerState.STARTING)
            logger.info("Starting server", server_id=server_id, command=definition.command_line)

            handle = await self._spawn(server_id, definition)
            self._registry.register(handle)
            handle.spawn(self._pump(handle, handle.process.stdout, "stdout", ready_pattern), "stdout")
            handle.spawn(self._pump(handle, handle.process.stderr, "stderr", ready_pattern), "stderr")
            handle.spawn(self._watch(handle), "watch")

        try:
            await self._wait_ready(handle)
        except asyncio.CancelledError:
            await self.stop(server_id)
            raise

        async with self._registry.lock(server_id):
            return await self._settle_start(handle)

    def _compile_ready_pattern(self, definition: ServerDefinition) -> re.Pattern | None:
        pattern = definition.ready_pattern or self._settings.ready_pattern
        if not pattern:
            return None
        try:
            return re.compile(pattern)
        except re.error as e:
            raise ConfigurationError(
                f"Invalid ready pattern for {definition.name}: {e}",
                context={"server_id": definition.id, "pattern": pattern},
                cause=e,
            ) from e

    async def _spawn(self, server_id: str, definition: ServerDefinition) -> ServerHandle:
        try:
            argv = definition.argv
            if not argv:
                raise ValueError("command is empty")
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **definition.env},
            )
        except Exception as e:
            message = f"Failed to spawn {definition.name}: {e}"
            self._registry.set_state(server_id, ServerState.ERROR, error=message)
            logger.error("Server spawn failed", error=e, server_id=server_id)
            raise SpawnFailureError(
                message,
                context={"server_id": server_id, "command": definition.command_line},
                cause=e,
            ) from e

        logger.info("Server process spawned", server_id=server_id, pid=process.pid)
        return ServerHandle(
            definition=definition,
            process=process,
            recent_output=deque(maxlen=self._settings.output_buffer_lines),
        )

    async def _wait_ready(self, handle: ServerHandle) -> None:
        waiters = {
            asyncio.ensure_future(handle.ready.wait()),
            asyncio.ensure_future(handle.exited.wait()),
        }
        try:
            await asyncio.wait(
                waiters,
                timeout=self._settings.readiness_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def _settle_start(self, handle: ServerHandle) -> ServerStatus:
        server_id = handle.server_id

        if self._registry.get(server_id) is not handle:
            raise SpawnFailureError(
                f"MCP server was stopped before it became ready: {server_id}",
                context={"server_id": server_id},
            )

        if handle.exited.is_set() or not handle.is_alive:
            await self._discard(handle)
            message = f"Server exited with code {handle.returncode} before it became ready"
            self._registry.set_state(server_id, ServerState.ERROR, error=message)
            logger.error("Server exited during startup", server_id=server_id, returncode=handle.returncode)
            raise SpawnFailureError(
                message,
                context={"server_id": server_id, "returncode": handle.returncode},
            )

        if not handle.ready.is_set():
            timeout = self._settings.readiness_timeout
            await self._terminate(handle, force=True)
            await self._discard(handle)
            message = f"Server did not become ready within {timeout}s"
            self._registry.set_state(server_id, ServerState.ERROR, error=message)
            logger.error("Server start timed out", server_id=server_id, timeout=timeout)
            raise StartTimeoutError(
                message,
                timeout=timeout,
                context={"server_id": server_id},
            )

        self._registry.set_state(server_id, ServerState.RUNNING)
        logger.info("Server running", server_id=server_id, pid=handle.pid)
        handle.spawn(self._discover(handle), "discovery")
        return self._registry.status(server_id)

    # --------------------------------------------------------------- stop

    async def stop(self, server_id: str) -> ServerStatus:
        """Stop a server. Stopping a stopped or unknown server is a no-op."""
        if not self._registry.known(server_id):
            return self._registry.status(server_id)

        async with self._registry.lock(server_id):
            handle = self._registry.get(server_id)
            state = self._registry.state(server_id)

            if handle is None and state is ServerState.STOPPED:
                return self._registry.status(server_id)

            self._registry.set_state(server_id, ServerState.STOPPED)
            if handle is not None:
                handle.stopping = True
                self._registry.discard(handle)
                await self._terminate(handle)
                await self._discard(handle)

            await self._store.clear_tools(server_id)
            logger.info("Server stopped", server_id=server_id)
            return self._registry.status(server_id)

    async def stop_all(self) -> None:
        """Stop every server that has a live process, waiting for each to exit."""
        for handle in self._registry.handles():
            try:
                await self.stop(handle.server_id)
            except Exception as e:
                logger.error("Failed to stop server", error=e, server_id=handle.server_id)

    async def _terminate(self, handle: ServerHandle, force: bool = False) -> None:
        """SIGTERM, then SIGKILL once the stop timeout passes."""
        process = handle.process
        if process.returncode is None:
            try:
                if force:
                    process.kill()
                else:
                    process.terminate()
                await asyncio.wait_for(process.wait(), timeout=self._settings.stop_timeout)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                logger.warning("Server ignored SIGTERM, killing", server_id=handle.server_id, pid=handle.pid)
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

    async def _discard(self, handle: ServerHandle) -> None:
        self._registry.discard(handle)
        handle.exited.set()
        await handle.cancel_tasks()

    # ------------------------------------------------------- handle tasks

    async def _pump(
        self,
        handle: ServerHandle,
        stream: asyncio.StreamReader | None,
        name: str,
        ready_pattern: re.Pattern | None,
    ) -> None:
        """Read one output stream for the life of the process."""
        if stream is None:
            return

        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Line longer than the stream limit; the reader skips it
                continue
            if not raw:
                return

            line = raw.decode(errors="replace").rstrip()
            if not line:
                continue

            handle.recent_output.append(line)
            logger.debug("Server output", server_id=handle.server_id, stream=name, line=line)

            if not handle.ready.is_set() and (ready_pattern is None or ready_pattern.search(line)):
                handle.ready.set()

    async def _watch(self, handle: ServerHandle) -> None:
        """Wait for the process to exit and handle an exit nobody asked for."""
        returncode = await handle.process.wait()
        pumps = [t for t in handle.tasks if t is not asyncio.current_task() and t.get_name().startswith("std")]
        if pumps:
            await asyncio.wait(pumps, timeout=1.0)
        handle.exited.set()

        if handle.stopping or handle.state is not ServerState.RUNNING:
            return

        async with self._registry.lock(handle.server_id):
            if not self._registry.discard(handle):
                return
            self._registry.set_state(
                handle.server_id,
                ServerState.STOPPED,
                error=f"Server exited unexpectedly with code {returncode}",
            )
            logger.warning("Server exited unexpectedly", server_id=handle.server_id, returncode=returncode)
            await handle.cancel_tasks()
            await self._store.clear_tools(handle.server_id)

    async def _discover(self, handle: ServerHandle) -> None:
        try:
            await self._discovery.discover(
                handle.definition,
                is_current=lambda: self._registry.is_current(handle),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Tool discovery failed", error=e, server_id=handle.server_id)
