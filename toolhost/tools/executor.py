"""
Execution Engine

Performs permitted tool calls through the bridging CLI and records
every attempt in the execution log.

Design decisions:
- Permission check first; a denial never reaches the CLI
- One short-lived CLI subprocess per call, bounded by a timeout
- Ephemeral artifacts are scoped resources released on every path
- Exactly one log entry per call, written in a finally block
- Unstructured output is wrapped, never treated as a failure
"""

import asyncio
import json
import time
from contextlib import AsyncExitStack
from typing import Any

from toolhost.core.exceptions import (
    BridgeError,
    BridgeTimeoutError,
    ExecutionTimeoutError,
    ParseError,
    ServerNotFoundError,
    ToolExecutionError,
)
from toolhost.core.types import ExecutionLogEntry, ServerDefinition, utcnow
from toolhost.observability.logging import get_logger
from toolhost.storage.base import ToolHostStore
from toolhost.tools.bridge import BridgeCLI
from toolhost.tools.permissions import PermissionGate

logger = get_logger("toolhost.executor")

_RESULT_MARKERS = ("Tool result:", "Result:")


def build_prompt(tool_name: str, params: dict[str, Any]) -> str:
    """Instruction text handed to the bridging CLI in execution mode."""
    return f"Please use the {tool_name} tool with these parameters: {json.dumps(params)}"


def extract_result_section(output: str, tool_name: str) -> str:
    """
    The text following a result marker, up to a line announcing a
    different tool. Returns the whole output when no marker is present.
    """
    markers = (f"{tool_name}:", *_RESULT_MARKERS)
    lines = output.splitlines()
    section: list[str] = []
    found = False

    for line in lines:
        if any(marker in line for marker in markers):
            found = True
            continue
        if not found:
            continue
        if "Tool:" in line and tool_name not in line:
            break
        section.append(line)

    if not found:
        return output.strip()
    return "\n".join(section).strip()


def decode_result(text: str) -> Any:
    """
    Raises:
        ParseError: If `text` is not JSON
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Result is not JSON: {e.msg}", cause=e) from e


def parse_execution_output(output: str, tool_name: str) -> Any:
    """Structured result if the output holds one, otherwise the wrapped text."""
    text = extract_result_section(output, tool_name)
    try:
        return decode_result(text)
    except ParseError:
        return {
            "success": True,
            "result": text,
            "tool": tool_name,
            "timestamp": utcnow().isoformat(),
        }


class ExecutionEngine:
    """
    Runs tool calls and keeps the audit trail.

    Usage:
        engine = ExecutionEngine(store, gate, bridge)
        result = await engine.execute("db", "query", {"sql": "select 1"}, "sess-1")
    """

    def __init__(
        self,
        store: ToolHostStore,
        gate: PermissionGate,
        bridge: BridgeCLI,
        timeout: float = 30.0,
    ):
        self._store = store
        self._gate = gate
        self._bridge = bridge
        self._timeout = timeout

    async def execute(
        self,
        server_id: str,
        tool_name: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
        project_id: str | None = None,
    ) -> Any:
        """
        Execute a tool on a server.

        Raises:
            NotPermittedError: The permission gate denied the call
            ServerNotFoundError: No definition for `server_id`
            ExecutionTimeoutError: The CLI exceeded the timeout and was killed
            ToolExecutionError: The CLI failed
        """
        params = dict(params or {})
        start_time = time.perf_counter()
        result: Any = None
        error: str | None = None

        try:
            await self._gate.check(server_id, tool_name, project_id)

            definition = await self._store.get_server(server_id)
            if definition is None:
                raise ServerNotFoundError(server_id)

            output = await self._invoke(definition, tool_name, params)
            result = parse_execution_output(output, tool_name)
            return result

        except asyncio.CancelledError:
            error = "Execution cancelled"
            raise

        except Exception as e:
            error = getattr(e, "message", None) or str(e) or type(e).__name__
            raise

        finally:
            duration = int((time.perf_counter() - start_time) * 1000)
            await self._store.append_execution_log(
                ExecutionLogEntry(
                    server_id=server_id,
                    tool_name=tool_name,
                    session_id=session_id,
                    params=params,
                    result=result if error is None else None,
                    error=error,
                    duration=max(duration, 0),
                )
            )
            if error is None:
                logger.info(
                    "Tool executed",
                    server_id=server_id,
                    tool_name=tool_name,
                    session_id=session_id,
                    duration_ms=duration,
                )
            else:
                logger.warning(
                    "Tool execution failed",
                    server_id=server_id,
                    tool_name=tool_name,
                    session_id=session_id,
                    duration_ms=duration,
                    reason=error,
                )

    async def _invoke(
        self,
        definition: ServerDefinition,
        tool_name: str,
        params: dict[str, Any],
    ) -> str:
        async with AsyncExitStack() as stack:
            config_path = await stack.enter_async_context(self._bridge.config_artifact(definition))
            prompt_path = await stack.enter_async_context(
                self._bridge.prompt_artifact(build_prompt(tool_name, params))
            )
            try:
                return await self._bridge.invoke(config_path, prompt_path, timeout=self._timeout)
            except BridgeTimeoutError as e:
                raise ExecutionTimeoutError(
                    f"Tool execution timed out after {self._timeout}s",
                    tool_name=tool_name,
                    context={"server_id": definition.id, "timeout": self._timeout},
                    cause=e,
                ) from e
            except BridgeError as e:
                raise ToolExecutionError(
                    f"Tool execution failed: {e.message}",
                    tool_name=tool_name,
                    context={"server_id": definition.id, "returncode": e.returncode},
                    cause=e,
                ) from e
