"""
Bridging CLI

Adapter for the external command-line program that introspects
tool-provider servers and performs tool calls on our behalf.

Invocation contract:
    <bridge> --mcp-config <config> --list-tools --server <name>
    <bridge> --mcp-config <config> --file <prompt> --print-response

Design decisions:
- The CLI is opaque: we only build arguments and read its output
- Every run has a wall-clock timeout and an output-size bound
- Ephemeral artifacts are scoped context managers, removed on every path
"""

import asyncio
import json
import os
import shlex
import tempfile
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from toolhost.config.settings import BridgeSettings
from toolhost.core.exceptions import (
    BridgeError,
    BridgeTimeoutError,
    OutputLimitExceededError,
)
from toolhost.core.types import ServerDefinition
from toolhost.observability.logging import get_logger

logger = get_logger("toolhost.bridge")

_READ_CHUNK = 64 * 1024


def _write_fd(fd: int, content: str) -> None:
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)


@asynccontextmanager
async def ephemeral_file(
    content: str,
    *,
    prefix: str = "toolhost-",
    suffix: str = "",
    directory: str | None = None,
) -> AsyncIterator[Path]:
    """
    Write `content` to a private temp file and remove it on exit.

    The write runs on a worker thread; the file is created first so it
    is removed even if the write is cancelled.
    """
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=directory)
    path = Path(name)
    try:
        await asyncio.to_thread(_write_fd, fd, content)
        yield path
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            pass


def scoped_config(definition: ServerDefinition) -> dict:
    """A configuration naming only this one server."""
    return {"mcpServers": {definition.name: definition.to_mcp_config()}}


@dataclass
class BridgeResult:
    """Captured output of one bridging CLI run."""

    stdout: str
    stderr: str
    returncode: int
    duration_ms: float


class BridgeCLI:
    """
    Runs the bridging CLI as a short-lived subprocess.

    Usage:
        bridge = BridgeCLI("claude")
        async with bridge.config_artifact(definition) as config:
            output = await bridge.list_tools(config, definition.name, timeout=10)
    """

    def __init__(
        self,
        command: str | Sequence[str] = "claude",
        *,
        max_output_bytes: int = 1024 * 1024,
        temp_dir: str | None = None,
    ):
        self._command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self._command:
            raise ValueError("Bridging CLI command must not be empty")
        self._max_output_bytes = max_output_bytes
        self._temp_dir = temp_dir

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> "BridgeCLI":
        return cls(
            settings.command,
            max_output_bytes=settings.max_output_bytes,
            temp_dir=settings.temp_dir,
        )

    @property
    def command(self) -> list[str]:
        return list(self._command)

    # -------------------------------------------------------- artifacts

    def config_artifact(self, definition: ServerDefinition) -> AbstractAsyncContextManager[Path]:
        """Ephemeral single-server configuration file."""
        return ephemeral_file(
            json.dumps(scoped_config(definition), indent=2),
            prefix=f"mcp-config-{definition.id}-",
            suffix=".json",
            directory=self._temp_dir,
        )

    def prompt_artifact(self, prompt: str) -> AbstractAsyncContextManager[Path]:
        """Ephemeral instruction file for execution mode."""
        return ephemeral_file(
            prompt,
            prefix="tool-prompt-",
            suffix=".txt",
            directory=self._temp_dir,
        )

    # ------------------------------------------------------------ modes

    async def list_tools(self, config_path: Path, server_name: str, timeout: float) -> str:
        """Introspection mode: list the tools of one configured server."""
        result = await self.run(
            ["--mcp-config", str(config_path), "--list-tools", "--server", server_name],
            timeout=timeout,
        )
        return result.stdout

    async def invoke(self, config_path: Path, prompt_path: Path, timeout: float) -> str:
        """Execution mode: run an instruction file and return the response."""
        result = await self.run(
            ["--mcp-config", str(config_path), "--file", str(prompt_path), "--print-response"],
            timeout=timeout,
        )
        return result.stdout

    # -------------------------------------------------------------- run

    async def run(self, args: Sequence[str], timeout: float) -> BridgeResult:
        """
        Run the CLI with `args` and return its output.

        Raises:
            BridgeError: CLI missing, non-zero exit, or non-warning stderr
            BridgeTimeoutError: `timeout` elapsed; the subprocess is killed
            OutputLimitExceededError: a stream exceeded the output bound
        """
        argv = [*self._command, *args]
        start = time.perf_counter()

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BridgeError(
                f"Bridging CLI unavailable: {e}",
                context={"command": self._command[0]},
                cause=e,
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(self._collect(proc), timeout=timeout)
        except asyncio.TimeoutError as e:
            await self._kill(proc)
            raise BridgeTimeoutError(
                f"Bridging CLI timed out after {timeout}s",
                context={"timeout": timeout},
                cause=e,
            ) from e
        except BaseException:
            await self._kill(proc)
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        returncode = proc.returncode if proc.returncode is not None else -1

        if returncode != 0:
            raise BridgeError(
                f"Bridging CLI exited with code {returncode}: {stderr.strip()[:500]}",
                returncode=returncode,
                stderr=stderr,
            )

        if stderr.strip() and "warning" not in stderr.lower():
            raise BridgeError(
                f"Bridging CLI reported an error: {stderr.strip()[:500]}",
                returncode=returncode,
                stderr=stderr,
            )

        if stderr.strip():
            logger.debug("Bridging CLI warning", stderr=stderr.strip()[:500])

        return BridgeResult(
            stdout=stdout,
            stderr=stderr,
            returncode=returncode,
            duration_ms=duration_ms,
        )

    async def _collect(self, proc: asyncio.subprocess.Process) -> tuple[str, str]:
        stdout, stderr = await asyncio.gather(
            self._drain(proc.stdout, "stdout"),
            self._drain(proc.stderr, "stderr"),
        )
        await proc.wait()
        return stdout.decode(errors="replace"), stderr.decode(errors="replace")

    async def _drain(self, stream: asyncio.StreamReader | None, name: str) -> bytes:
        if stream is None:
            return b""

        chunks: list[bytes] = []
        total = 0
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            total += len(chunk)
            if total > self._max_output_bytes:
                raise OutputLimitExceededError(
                    f"Bridging CLI {name} exceeded {self._max_output_bytes} bytes",
                    context={"stream": name, "limit": self._max_output_bytes},
                )
            chunks.append(chunk)
        return b"".join(chunks)

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        await proc.wait()
