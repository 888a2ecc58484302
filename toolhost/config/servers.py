"""
Server Definition Files

Loads tool-provider server definitions from YAML or JSON files.

Two layouts are accepted:

    servers:                      # list form
      - name: filesystem
        command: npx
        args: ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]
        auto_start: true

    mcpServers:                   # mapping form, as written by MCP clients
      filesystem:
        command: npx
        args: ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from toolhost.core.exceptions import ConfigurationError
from toolhost.core.types import ServerDefinition


def parse_server_definitions(data: Any, source: str = "<data>") -> list[ServerDefinition]:
    """
    Build definitions from already-decoded file content.

    Raises:
        ConfigurationError: If the layout is unknown or a definition is invalid
    """
    if data is None:
        return []

    if isinstance(data, dict) and "mcpServers" in data:
        entries = [
            {"name": name, "id": config.get("id", name), **config}
            for name, config in (data["mcpServers"] or {}).items()
        ]
    elif isinstance(data, dict) and "servers" in data:
        entries = list(data["servers"] or [])
    elif isinstance(data, list):
        entries = data
    else:
        raise ConfigurationError(
            f"Unrecognized server definition layout in {source}",
            context={"source": source},
        )

    definitions = []
    for entry in entries:
        try:
            definitions.append(ServerDefinition(**entry))
        except (TypeError, ValidationError) as e:
            name = entry.get("name", "unknown") if isinstance(entry, dict) else "unknown"
            raise ConfigurationError(
                f"Invalid server definition '{name}' in {source}",
                context={"source": source, "name": name},
                cause=e,
            ) from e

    return definitions


def load_server_definitions(filepath: str | Path) -> list[ServerDefinition]:
    """
    Load server definitions from a YAML or JSON file.

    JSON is a subset of YAML, so one loader serves both.
    """
    path = Path(filepath)
    if not path.exists():
        raise ConfigurationError(f"File not found: {filepath}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Could not parse {filepath}: {e}",
                context={"source": str(path)},
                cause=e,
            ) from e

    return parse_server_definitions(data, source=str(path))
