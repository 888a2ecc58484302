"""
Process Registry

Single owner of server runtime state and live process handles.

Design decisions:
- At most one handle per server id; registering a second is refused
- Per-id asyncio locks serialize lifecycle mutations of one server
- State and last error outlive the handle, so a failed server still
  reports Error after its process is gone
- No other component keeps a reference to a process
"""

import asyncio
import signal
from collections import deque
from collections.abc import Coroutine
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from toolhost.core.exceptions import ServerBusyError
from toolhost.core.types import ServerDefinition, ServerState, ServerStatus, utcnow
from toolhost.observability.logging import get_logger

logger = get_logger("toolhost.registry")


@dataclass(eq=False)
class ServerHandle:
    """
    A live server process and the tasks attached to it.

    `ready` is set by the output pumps on the readiness signal and
    `exited` once the process is gone and its output is drained.
    """

    definition: ServerDefinition
    process: asyncio.subprocess.Process
    state: ServerState = ServerState.STARTING
    started_at: datetime = field(default_factory=utcnow)
    recent_output: deque[str] = field(default_factory=lambda: deque(maxlen=200))
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    exited: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: set[asyncio.Task] = field(default_factory=set)
    stopping: bool = False

    @property
    def server_id(self) -> str:
        return self.definition.id

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def is_alive(self) -> bool:
        return self.process.returncode is None

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Run `coro` as a task owned by this handle."""
        task = asyncio.create_task(coro, name=f"{name}:{self.server_id}")
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def cancel_tasks(self) -> None:
        """Cancel every owned task except the caller's own, and wait for them."""
        current = asyncio.current_task()
        pending = [t for t in self.tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def send_signal(self, sig: int = signal.SIGTERM) -> bool:
        """Signal the process. Returns False if it is already gone."""
        if not self.is_alive:
            return False
        try:
            self.process.send_signal(sig)
        except ProcessLookupError:
            return False
        return True


class ProcessRegistry:
    """
    Runtime state of every server known to this process.

    Usage:
        registry = ProcessRegistry()
        async with registry.lock("fs"):
            registry.register(handle)
    """

    def __init__(self) -> None:
        self._handles: dict[str, ServerHandle] = {}
        self._states: dict[str, ServerState] = {}
        self._errors: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def known(self, server_id: str) -> bool:
        """True if the id has runtime state or a live handle."""
        return server_id in self._states or server_id in self._handles

    def lock(self, server_id: str) -> asyncio.Lock:
        """The lock serializing lifecycle changes for `server_id`."""
        if server_id not in self._locks:
            self._locks[server_id] = asyncio.Lock()
        return self._locks[server_id]

    # ------------------------------------------------------------ handles

    def get(self, server_id: str) -> ServerHandle | None:
        return self._handles.get(server_id)

    def register(self, handle: ServerHandle) -> None:
        """
        Raises:
            ServerBusyError: If the server already has a live handle
        """
        existing = self._handles.get(handle.server_id)
        if existing is not None and existing is not handle:
            raise ServerBusyError(
                f"MCP server already has a live process: {handle.server_id}",
                context={"server_id": handle.server_id, "pid": existing.pid},
            )
        self._handles[handle.server_id] = handle
        self.set_state(handle.server_id, handle.state)

    def discard(self, handle: ServerHandle) -> bool:
        """Remove `handle` if it is still the registered one."""
        if self._handles.get(handle.server_id) is handle:
            del self._handles[handle.server_id]
            return True
        return False

    def is_current(self, handle: ServerHandle) -> bool:
        """True while `handle` is registered and Running."""
        return self._handles.get(handle.server_id) is handle and handle.state is ServerState.RUNNING

    def handles(self) -> list[ServerHandle]:
        return list(self._handles.values())

    # -------------------------------------------------------------- state

    def state(self, server_id: str) -> ServerState:
        return self._states.get(server_id, ServerState.STOPPED)

    def set_state(
        self,
        server_id: str,
        state: ServerState,
        error: str | None = None,
    ) -> None:
        previous = self.state(server_id)
        self._states[server_id] = state
        handle = self._handles.get(server_id)
        if handle is not None:
            handle.state = state

        if error is not None:
            self._errors[server_id] = error
        elif state in (ServerState.STARTING, ServerState.STOPPED):
            self._errors.pop(server_id, None)

        if previous is not state:
            logger.debug(
                "Server state changed",
                server_id=server_id,
                previous=previous.value,
                state=state.value,
            )

    def forget(self, server_id: str) -> None:
        """Drop all runtime state for a server that no longer exists."""
        self._states.pop(server_id, None)
        self._errors.pop(server_id, None)
        lock = self._locks.get(server_id)
        if lock is not None and not lock.locked():
            del self._locks[server_id]

    def status(self, server_id: str) -> ServerStatus:
        handle = self._handles.get(server_id)
        return ServerStatus(
            server_id=server_id,
            state=self.state(server_id),
            pid=handle.pid if handle else None,
            started_at=handle.started_at if handle else None,
            last_error=self._errors.get(server_id),
            recent_output=list(handle.recent_output) if handle else [],
        )

    def statuses(self) -> dict[str, ServerStatus]:
        ids = set(self._states) | set(self._handles)
        return {server_id: self.status(server_id) for server_id in sorted(ids)}

    # ----------------------------------------------------------- shutdown

    def terminate_all(self) -> int:
        """
        Send SIGTERM to every live process without waiting for exit.

        Per-handle failures are logged and skipped. Returns the number
        of processes signalled.
        """
        signalled = 0
        for handle in self.handles():
            try:
                if handle.send_signal(signal.SIGTERM):
                    signalled += 1
            except OSError as e:
                logger.warning(
                    "Failed to signal server process",
                    server_id=handle.server_id,
                    pid=handle.pid,
                    reason=str(e),
                )
        return signalled
