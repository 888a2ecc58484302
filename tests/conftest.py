"""
Test Configuration

Shared fixtures. Tool-provider servers and the bridging CLI are stood in
for by small Python scripts run with the current interpreter, so no
external binaries are needed.
"""

import json
import shlex
import sys
import textwrap
from pathlib import Path
from typing import Any

import pytest

from toolhost.config.settings import RuntimeSettings
from toolhost.core.types import ServerDefinition
from toolhost.observability.logging import BufferHandler, LogLevel, configure_logging
from toolhost.runtime.lifecycle import LifecycleController
from toolhost.runtime.registry import ProcessRegistry
from toolhost.storage.memory import InMemoryStore
from toolhost.storage.sqlite import SQLiteStore
from toolhost.tools.bridge import BridgeCLI
from toolhost.tools.discovery import ToolDiscoveryService

PYTHON = shlex.quote(sys.executable)

FAKE_SERVER = textwrap.dedent(
    """
    import os
    import sys
    import time

    mode = sys.argv[1] if len(sys.argv) > 1 else "ready"

    if mode == "exit":
        sys.exit(int(sys.argv[2]) if len(sys.argv) > 2 else 3)
    if mode == "ready":
        print("server ready", flush=True)
    elif mode == "stderr":
        sys.stderr.write("MCP server running on stdio\\n")
        sys.stderr.flush()
    elif mode == "noise":
        print("loading configuration", flush=True)
        time.sleep(0.2)
        print("listening: ok", flush=True)
    elif mode == "env":
        print("value=" + os.environ.get("TOOLHOST_FAKE_VALUE", ""), flush=True)
    elif mode == "exit-later":
        print("server ready", flush=True)
        time.sleep(float(sys.argv[2]))
        sys.exit(0)

    while True:
        time.sleep(1)
    """
)

FAKE_BRIDGE = textwrap.dedent(
    """
    import json
    import pathlib
    import sys
    import time

    LISTING = {listing!r}
    RESPONSE = {response!r}
    EXIT_CODE = {exit_code!r}
    STDERR = {stderr!r}
    SLEEP = {sleep!r}
    RECORD = {record!r}

    args = sys.argv[1:]
    entry = {{"args": args}}
    if "--mcp-config" in args:
        path = pathlib.Path(args[args.index("--mcp-config") + 1])
        entry["config_path"] = str(path)
        entry["config"] = json.loads(path.read_text())
    if "--file" in args:
        path = pathlib.Path(args[args.index("--file") + 1])
        entry["prompt_path"] = str(path)
        entry["prompt"] = path.read_text()
    with open(RECORD, "a") as f:
        f.write(json.dumps(entry) + "\\n")

    time.sleep(SLEEP)
    if STDERR:
        sys.stderr.write(STDERR)
    sys.stdout.write(LISTING if "--list-tools" in args else RESPONSE)
    sys.exit(EXIT_CODE)
    """
)


class FakeBridge:
    """A scripted bridging CLI that records every invocation."""

    def __init__(self, directory: Path, **behaviour: Any):
        self.directory = directory
        self.record = directory / "bridge-calls.jsonl"
        self.script = directory / "fake_bridge.py"
        self.configure(**behaviour)

    def configure(
        self,
        listing: str = "",
        response: str = "",
        exit_code: int = 0,
        stderr: str = "",
        sleep: float = 0.0,
    ) -> None:
        self.script.write_text(
            FAKE_BRIDGE.format(
                listing=listing,
                response=response,
                exit_code=exit_code,
                stderr=stderr,
                sleep=sleep,
                record=str(self.record),
            )
        )

    def cli(self, **kwargs: Any) -> BridgeCLI:
        return BridgeCLI([sys.executable, str(self.script)], temp_dir=str(self.directory), **kwargs)

    def calls(self) -> list[dict[str, Any]]:
        if not self.record.exists():
            return []
        return [json.loads(line) for line in self.record.read_text().splitlines() if line]

    def leftover_artifacts(self) -> list[Path]:
        return sorted(
            p for p in self.directory.iterdir() if p.name.startswith(("mcp-config-", "tool-prompt-"))
        )


@pytest.fixture
def fake_server_script(tmp_path) -> Path:
    script = tmp_path / "fake_server.py"
    script.write_text(FAKE_SERVER)
    return script


@pytest.fixture
def make_definition(fake_server_script):
    """Build a definition that runs the fake server in the given mode."""

    def make(server_id: str = "fake", mode: str = "ready", *extra: str, **fields: Any) -> ServerDefinition:
        fields.setdefault("name", server_id)
        return ServerDefinition(
            id=server_id,
            command=PYTHON,
            args=[str(fake_server_script), mode, *extra],
            **fields,
        )

    return make


@pytest.fixture
def fake_bridge(tmp_path) -> FakeBridge:
    directory = tmp_path / "bridge"
    directory.mkdir()
    return FakeBridge(directory)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
async def sqlite_store(tmp_path):
    store = SQLiteStore(tmp_path / "toolhost.db")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def runtime_settings() -> RuntimeSettings:
    return RuntimeSettings(readiness_timeout=5.0, stop_timeout=2.0, autostart_delay=0.0)


@pytest.fixture
async def controller(store, fake_bridge, runtime_settings):
    """Lifecycle controller over the in-memory store; stops everything afterwards."""
    discovery = ToolDiscoveryService(store, fake_bridge.cli(), timeout=5.0)
    controller = LifecycleController(ProcessRegistry(), store, discovery, settings=runtime_settings)
    yield controller
    await controller.stop_all()


@pytest.fixture
def log_buffer():
    """Capture toolhost log records for the duration of a test."""
    buffer = BufferHandler(level=LogLevel.DEBUG)
    configure_logging(level=LogLevel.DEBUG, handlers=[buffer])
    yield buffer
    configure_logging(level=LogLevel.INFO, json_output=True)
