"""
Integration Tests - Auto-Start and Shutdown Handling
"""

import asyncio
import signal

import pytest

from toolhost.core.types import ServerState
from toolhost.runtime.registry import ProcessRegistry
from toolhost.runtime.supervisor import AutoStartOrchestrator, ShutdownHandler

pytestmark = pytest.mark.integration


@pytest.fixture
async def flagged(store, make_definition):
    """Three auto-start definitions; the middle one exits before it is ready."""
    definitions = [
        make_definition("first", auto_start=True),
        make_definition("broken", "exit", "1", auto_start=True),
        make_definition("last", auto_start=True),
    ]
    for definition in definitions:
        await store.add_server(definition)
    await store.add_server(make_definition("manual"))
    return definitions


class TestAutoStart:
    """Tests for AutoStartOrchestrator."""

    async def test_failure_does_not_block_others(self, controller, store, flagged):
        orchestrator = AutoStartOrchestrator(store, controller, delay=0)

        report = await orchestrator.run_once()

        assert sorted(report.started) == ["first", "last"]
        assert list(report.failed) == ["broken"]
        assert controller.status("first").state is ServerState.RUNNING
        assert controller.status("last").state is ServerState.RUNNING
        assert controller.status("broken").state is ServerState.ERROR
        assert controller.status("manual").state is ServerState.STOPPED

    async def test_unusable_definition_does_not_stop_pass(self, controller, store, make_definition):
        blank = make_definition("blank", auto_start=True).model_copy(update={"command": "   ", "args": []})
        await store.add_server(blank)
        await store.add_server(make_definition("valid", auto_start=True))

        report = await AutoStartOrchestrator(store, controller, delay=0).run_once()

        assert report.started == ["valid"]
        assert list(report.failed) == ["blank"]
        assert controller.status("blank").state is ServerState.ERROR

    async def test_unexpected_error_is_recorded(self, store, make_definition):
        class Exploding:
            async def start(self, server_id, definition=None):
                if server_id == "first":
                    raise RuntimeError("boom")
                return None

        await store.add_server(make_definition("first", auto_start=True))
        await store.add_server(make_definition("second", auto_start=True))

        report = await AutoStartOrchestrator(store, Exploding(), delay=0).run_once()

        assert report.failed == {"first": "boom"}
        assert report.started == ["second"]

    async def test_running_server_is_skipped(self, controller, store, flagged):
        await controller.start("first")
        orchestrator = AutoStartOrchestrator(store, controller, delay=0)

        report = await orchestrator.run_once()

        assert report.skipped == ["first"]
        assert report.started == ["last"]

    async def test_failure_is_logged(self, controller, store, flagged, log_buffer):
        await AutoStartOrchestrator(store, controller, delay=0).run_once()

        (failure,) = [r for r in log_buffer.records if r.message == "Auto-start failed"]
        assert failure.server_id == "broken"
        assert failure.error_type == "SpawnFailureError"

    async def test_schedule_runs_after_delay(self, controller, store, flagged):
        orchestrator = AutoStartOrchestrator(store, controller, delay=0.1)

        task = orchestrator.schedule()
        assert controller.status("first").state is ServerState.STOPPED
        report = await task

        assert sorted(report.started) == ["first", "last"]

    async def test_schedule_is_single_flight(self, controller, store):
        orchestrator = AutoStartOrchestrator(store, controller, delay=10)

        task = orchestrator.schedule()

        assert orchestrator.schedule() is task
        await orchestrator.cancel()

    async def test_cancel_before_delay(self, controller, store, flagged):
        orchestrator = AutoStartOrchestrator(store, controller, delay=10)
        task = orchestrator.schedule()

        await orchestrator.cancel()

        assert task.cancelled()
        assert orchestrator.task is None
        assert controller.registry.handles() == []

    async def test_report_dict(self, controller, store, flagged):
        report = await AutoStartOrchestrator(store, controller, delay=0).run_once()

        data = report.to_dict()

        assert set(data) == {"started", "skipped", "failed"}
        assert "broken" in data["failed"]


class TestShutdownHandler:
    """Tests for ShutdownHandler."""

    async def test_terminate_all_signals_children(self, controller, make_definition):
        await controller.start("a", make_definition("a"))
        await controller.start("b", make_definition("b"))
        handles = controller.registry.handles()

        count = ShutdownHandler(controller.registry).terminate_all()

        assert count == 2
        for handle in handles:
            assert await asyncio.wait_for(handle.process.wait(), timeout=5) == -signal.SIGTERM

    async def test_terminated_servers_end_stopped(self, controller, make_definition):
        await controller.start("a", make_definition("a"))

        ShutdownHandler(controller.registry).terminate_all()

        deadline = asyncio.get_running_loop().time() + 5
        while controller.status("a").state is not ServerState.STOPPED:
            assert asyncio.get_running_loop().time() < deadline
            await asyncio.sleep(0.05)
        assert controller.registry.get("a") is None

    def test_terminate_all_without_children(self):
        assert ShutdownHandler(ProcessRegistry()).terminate_all() == 0

    def test_install_and_uninstall(self):
        original = signal.getsignal(signal.SIGTERM)
        handler = ShutdownHandler(ProcessRegistry())

        assert handler.install() is True
        assert handler.installed
        assert signal.getsignal(signal.SIGTERM) == handler._handle

        handler.uninstall()

        assert not handler.installed
        assert signal.getsignal(signal.SIGTERM) == original

    def test_chains_previous_handler(self):
        received = []
        original = signal.signal(signal.SIGUSR1, lambda signum, frame: received.append(signum))
        handler = ShutdownHandler(ProcessRegistry())
        try:
            handler.install(signals=(signal.SIGUSR1,))

            signal.raise_signal(signal.SIGUSR1)

            assert received == [signal.SIGUSR1]
        finally:
            handler.uninstall()
            signal.signal(signal.SIGUSR1, original)

    async def test_install_off_main_thread(self):
        handler = ShutdownHandler(ProcessRegistry())

        assert await asyncio.to_thread(handler.install) is False
        assert not handler.installed
