"""Read configured MCP servers from the Claude config file."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .models import McpServerStatus, McpTransportType

logger = logging.getLogger(__name__)

DEFAULT_MCP_CONFIG_PATH = Path.home() / ".claude.json"


def read_mcp_server_statuses(path: str | Path | None = None) -> list[McpServerStatus]:
    """Return normalized MCP server statuses sorted case-insensitively by name.

    Returns an empty list on a missing file, a missing ``mcpServers`` key or
    malformed JSON.
    """
    config_path = Path(path) if path is not None else DEFAULT_MCP_CONFIG_PATH
    try:
        parsed = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.debug("cannot read MCP config %s: %s", config_path, exc)
        return []

    if not isinstance(parsed, Mapping):
        return []
    servers = parsed.get("mcpServers")
    if not isinstance(servers, Mapping):
        return []

    statuses = [
        _parse_server_entry(str(name), raw)
        for name, raw in servers.items()
        if isinstance(raw, Mapping)
    ]
    return sorted(statuses, key=lambda status: (status.name.casefold(), status.name))


def _detect_transport(config: Mapping[str, Any]) -> McpTransportType:
    kind = config.get("type")
    if isinstance(kind, str):
        lowered = kind.lower()
        if lowered == "http":
            return "http"
        if lowered == "sse":
            return "sse"
    if isinstance(config.get("url"), str):
        return "http"
    return "stdio"


def _extract_env_keys(config: Mapping[str, Any]) -> list[str]:
    env = config.get("env")
    if isinstance(env, Mapping):
        return sorted(str(key) for key in env)
    return []


def _parse_server_entry(name: str, raw: Mapping[str, Any]) -> McpServerStatus:
    transport = _detect_transport(raw)
    command = raw.get("command")
    url = raw.get("url")
    return McpServerStatus(
        name=name,
        transport=transport,
        command=command if transport == "stdio" and isinstance(command, str) else None,
        url=url if transport != "stdio" and isinstance(url, str) else None,
        env_keys=_extract_env_keys(raw),
    )
