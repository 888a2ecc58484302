"""
Tool Discovery

Introspects a running tool-provider server through the bridging CLI
and stores its tool catalog.

Parsing is best-effort, tried in order:
1. Tagged extraction: a fenced ```json block or a <tools>...</tools> element
2. Line scan: bullet-prefixed tool names, following lines as description
3. Raw JSON: the whole output as a list, or an object with a "tools" key

When introspection fails or nothing parses, the heuristic catalog
supplies the tool list instead. Discovery never raises to its caller
for those cases.
"""

import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from toolhost.core.exceptions import BridgeError, DiscoveryError
from toolhost.core.types import ServerDefinition, ToolDescriptor
from toolhost.observability.logging import get_logger
from toolhost.storage.base import ToolHostStore
from toolhost.tools.bridge import BridgeCLI
from toolhost.tools.heuristics import HeuristicCatalog

logger = get_logger("toolhost.discovery")

_FENCED_JSON = re.compile(r"```(?:json)?[ \t]*\n(.*?)```", re.DOTALL)
_TOOLS_TAG = re.compile(r"<tools>(.*?)</tools>", re.DOTALL | re.IGNORECASE)
_BULLET = re.compile(r"^[-•*]\s*(\w[\w.-]*)(?:\s*[:–—-]\s*|\s+)?(.*)$")


def _default_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


@dataclass
class ParsedTool:
    """A tool as read from CLI output, before it is tied to a server."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=_default_schema)

    def to_descriptor(self, server_id: str) -> ToolDescriptor:
        return ToolDescriptor(
            server_id=server_id,
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
        )


def _coerce_tools(data: Any) -> list[ParsedTool]:
    """Read tool entries from decoded JSON in the shapes CLIs commonly emit."""
    if isinstance(data, dict) and isinstance(data.get("tools"), list):
        data = data["tools"]
    if not isinstance(data, list):
        return []

    tools = []
    for item in data:
        if isinstance(item, str) and item.strip():
            tools.append(ParsedTool(name=item.strip()))
            continue
        if not isinstance(item, dict):
            continue

        function = item.get("function") if isinstance(item.get("function"), dict) else {}
        name = item.get("name") or function.get("name")
        if not name:
            continue

        schema = (
            item.get("inputSchema")
            or item.get("input_schema")
            or item.get("parameters")
            or function.get("parameters")
        )
        tools.append(
            ParsedTool(
                name=str(name),
                description=str(item.get("description") or function.get("description") or ""),
                input_schema=schema if isinstance(schema, dict) else _default_schema(),
            )
        )
    return tools


def parse_tagged(output: str) -> list[ParsedTool]:
    """Tools from a fenced JSON block or a <tools> element."""
    for pattern in (_TOOLS_TAG, _FENCED_JSON):
        for match in pattern.finditer(output):
            try:
                tools = _coerce_tools(json.loads(match.group(1)))
            except json.JSONDecodeError:
                continue
            if tools:
                return tools
    return []


def parse_bullets(output: str) -> list[ParsedTool]:
    """Tools from a bulleted list; lines after a bullet form its description."""
    tools: list[ParsedTool] = []
    current: ParsedTool | None = None

    for line in output.strip().splitlines():
        stripped = line.strip()
        match = _BULLET.match(stripped)
        if match:
            current = ParsedTool(name=match.group(1), description=(match.group(2) or "").strip())
            tools.append(current)
        elif current is not None and stripped:
            current.description = f"{current.description} {stripped}".strip()

    return tools


def parse_raw_json(output: str) -> list[ParsedTool]:
    """Tools from the whole output decoded as JSON."""
    try:
        return _coerce_tools(json.loads(output))
    except json.JSONDecodeError:
        return []


def parse_tool_listing(output: str) -> list[ParsedTool]:
    """Run each parsing stage in turn; the first non-empty result wins."""
    for stage in (parse_tagged, parse_bullets, parse_raw_json):
        tools = stage(output)
        if tools:
            return tools
    return []


@dataclass
class DiscoveryResult:
    """Outcome of one discovery run."""

    server_id: str
    tools: list[ToolDescriptor]
    source: str  # "introspection" or "heuristic"
    error: str | None = None
    persisted: bool = True


class ToolDiscoveryService:
    """
    Builds a server's tool catalog.

    Usage:
        discovery = ToolDiscoveryService(store, bridge)
        result = await discovery.discover(definition)
    """

    def __init__(
        self,
        store: ToolHostStore,
        bridge: BridgeCLI,
        catalog: HeuristicCatalog | None = None,
        timeout: float = 10.0,
    ):
        self._store = store
        self._bridge = bridge
        self._catalog = catalog or HeuristicCatalog()
        self._timeout = timeout

    @property
    def catalog(self) -> HeuristicCatalog:
        return self._catalog

    async def introspect(self, definition: ServerDefinition) -> list[ToolDescriptor]:
        """
        Ask the bridging CLI for the server's tools.

        Raises:
            DiscoveryError: If the CLI fails or its output has no tools
        """
        try:
            async with self._bridge.config_artifact(definition) as config_path:
                output = await self._bridge.list_tools(
                    config_path, definition.name, timeout=self._timeout
                )
        except (BridgeError, OSError, ValueError) as e:
            raise DiscoveryError(
                f"Introspection failed for {definition.name}: {e}",
                context={"server_id": definition.id},
                cause=e,
            ) from e

        parsed = parse_tool_listing(output)
        if not parsed:
            raise DiscoveryError(
                f"No tools found in introspection output for {definition.name}",
                context={"server_id": definition.id, "output": output[:500]},
            )
        return [tool.to_descriptor(definition.id) for tool in parsed]

    async def discover(
        self,
        definition: ServerDefinition,
        is_current: Callable[[], bool] | None = None,
    ) -> DiscoveryResult:
        """
        Discover and store the server's tools, replacing any previous set.

        `is_current` is checked before writing; when it returns False
        (the server was stopped or restarted meanwhile) nothing is stored.
        """
        with logger.context(server_id=definition.id):
            logger.info("Discovering tools", server_name=definition.name)

            try:
                tools = await self.introspect(definition)
                result = DiscoveryResult(definition.id, tools, source="introspection")
            except DiscoveryError as e:
                tools = self._catalog.lookup(definition)
                logger.warning(
                    "Introspection failed, using heuristic catalog",
                    reason=e.message,
                    catalog_version=self._catalog.version,
                    tool_count=len(tools),
                )
                result = DiscoveryResult(
                    definition.id, tools, source="heuristic", error=e.message
                )

            if is_current is not None and not is_current():
                logger.info("Server changed during discovery; result discarded")
                result.persisted = False
                return result

            await self._store.replace_tools(definition.id, result.tools)
            logger.info(
                "Discovered tools",
                tool_count=len(result.tools),
                source=result.source,
            )
            return result
