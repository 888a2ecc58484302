"""
Supervisor

Process-level hooks around the lifecycle controller: starting flagged
servers after boot and terminating children on SIGTERM.
"""

import asyncio
import os
import signal
from collections.abc import Iterable
from dataclasses import dataclass, field
from types import FrameType
from typing import Any

from toolhost.core.exceptions import ServerBusyError
from toolhost.observability.logging import get_logger
from toolhost.runtime.lifecycle import LifecycleController
from toolhost.runtime.registry import ProcessRegistry
from toolhost.storage.base import ToolHostStore

logger = get_logger("toolhost.supervisor")


@dataclass
class AutoStartReport:
    """Outcome of one auto-start pass."""

    started: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"started": self.started, "skipped": self.skipped, "failed": self.failed}


class AutoStartOrchestrator:
    """
    Starts every definition flagged auto_start after a grace delay.

    Starts run one at a time; a failure is logged and the next
    definition is still attempted.

    Usage:
        orchestrator = AutoStartOrchestrator(store, lifecycle, delay=2.0)
        orchestrator.schedule()
    """

    def __init__(
        self,
        store: ToolHostStore,
        lifecycle: LifecycleController,
        delay: float = 2.0,
    ):
        self._store = store
        self._lifecycle = lifecycle
        self._delay = delay
        self._task: asyncio.Task | None = None

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def schedule(self) -> asyncio.Task:
        """Run one pass after the delay, in the background."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._delayed(), name="autostart")
        return self._task

    async def _delayed(self) -> AutoStartReport:
        await asyncio.sleep(self._delay)
        return await self.run_once()

    async def run_once(self) -> AutoStartReport:
        report = AutoStartReport()
        definitions = await self._store.list_auto_start_servers()
        logger.info("Auto-starting servers", count=len(definitions))

        for definition in definitions:
            try:
                await self._lifecycle.start(definition.id, definition)
                report.started.append(definition.id)
            except ServerBusyError:
                report.skipped.append(definition.id)
            except Exception as e:
                report.failed[definition.id] = getattr(e, "message", None) or str(e) or type(e).__name__
                logger.error("Auto-start failed", error=e, server_id=definition.id)

        logger.info(
            "Auto-start complete",
            started=len(report.started),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    async def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None


class ShutdownHandler:
    """
    Best-effort termination of every child on a termination signal.

    The handler signals children and returns without waiting for them,
    then hands the signal on to whatever handler was installed before.
    """

    def __init__(self, registry: ProcessRegistry):
        self._registry = registry
        self._previous: dict[int, Any] = {}

    @property
    def installed(self) -> bool:
        return bool(self._previous)

    def install(self, signals: Iterable[int] = (signal.SIGTERM,)) -> bool:
        """
        Register the handler. Returns False when signal handlers cannot
        be set from the current thread.
        """
        try:
            for sig in signals:
                if sig not in self._previous:
                    self._previous[sig] = signal.signal(sig, self._handle)
        except ValueError as e:
            logger.warning("Shutdown handler not installed", reason=str(e))
            return False
        return True

    def uninstall(self) -> None:
        for sig, previous in self._previous.items():
            signal.signal(sig, previous if previous is not None else signal.SIG_DFL)
        self._previous.clear()

    def terminate_all(self) -> int:
        count = self._registry.terminate_all()
        logger.info("Sent SIGTERM to server processes", count=count)
        return count

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        self.terminate_all()

        previous = self._previous.get(signum)
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_DFL:
            self.uninstall()
            os.kill(os.getpid(), signum)
