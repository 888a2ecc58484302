"""
Heuristic Tool Catalog

Degraded-mode tool lists used when live introspection of a server fails.

Design decisions:
- An explicit ordered table of (pattern, canned tool set) rules
- First matching rule wins; unmatched servers get no tools
- Matched against the lower-cased server name, command and args
- Versioned, and extensible by prepending caller rules
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from toolhost.core.types import ServerDefinition, ToolDescriptor

CATALOG_VERSION = "1"


@dataclass(frozen=True)
class CannedTool:
    """A tool the catalog assumes a matching server offers."""

    name: str
    description: str
    properties: dict[str, Any] = field(default_factory=dict)

    def to_descriptor(self, server_id: str) -> ToolDescriptor:
        return ToolDescriptor(
            server_id=server_id,
            name=self.name,
            description=self.description,
            input_schema={"type": "object", "properties": dict(self.properties)},
        )


@dataclass(frozen=True)
class HeuristicRule:
    """Servers whose name or command line contains `pattern` get `tools`."""

    pattern: str
    tools: tuple[CannedTool, ...]

    def matches(self, definition: ServerDefinition) -> bool:
        needle = self.pattern.lower()
        return needle in definition.name.lower() or needle in definition.command_line.lower()


_STRING = {"type": "string"}

DEFAULT_RULES: tuple[HeuristicRule, ...] = (
    HeuristicRule(
        pattern="puppeteer",
        tools=(
            CannedTool("navigate", "Navigate to a URL", {"url": _STRING}),
            CannedTool("click", "Click an element", {"selector": _STRING}),
            CannedTool("screenshot", "Take a screenshot", {"fullPage": {"type": "boolean"}}),
            CannedTool("type", "Type text into an element", {"selector": _STRING, "text": _STRING}),
        ),
    ),
    HeuristicRule(
        pattern="postgres",
        tools=(
            CannedTool("query", "Execute SQL query", {"sql": _STRING}),
            CannedTool("schema", "Get database schema"),
        ),
    ),
    HeuristicRule(
        pattern="filesystem",
        tools=(
            CannedTool("read_file", "Read file contents", {"path": _STRING}),
            CannedTool("write_file", "Write file contents", {"path": _STRING, "content": _STRING}),
            CannedTool("list_directory", "List directory contents", {"path": _STRING}),
        ),
    ),
)


class HeuristicCatalog:
    """
    Ordered fallback table.

    Usage:
        catalog = HeuristicCatalog()
        tools = catalog.lookup(definition)
    """

    def __init__(
        self,
        rules: Iterable[HeuristicRule] = DEFAULT_RULES,
        version: str = CATALOG_VERSION,
    ):
        self._rules = list(rules)
        self.version = version

    @property
    def rules(self) -> list[HeuristicRule]:
        return list(self._rules)

    def with_rules(self, *rules: HeuristicRule) -> "HeuristicCatalog":
        """A catalog that tries `rules` before the current ones."""
        return HeuristicCatalog([*rules, *self._rules], version=self.version)

    def match(self, definition: ServerDefinition) -> HeuristicRule | None:
        for rule in self._rules:
            if rule.matches(definition):
                return rule
        return None

    def lookup(self, definition: ServerDefinition) -> list[ToolDescriptor]:
        rule = self.match(definition)
        if rule is None:
            return []
        return [tool.to_descriptor(definition.id) for tool in rule.tools]
