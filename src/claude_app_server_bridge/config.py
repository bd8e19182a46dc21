from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .mcp_config import DEFAULT_MCP_CONFIG_PATH
from .session_store import DEFAULT_SESSION_STORE_PATH

_FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})
_DISABLED_PATHS = frozenset({"none", "off", "disabled"})


@dataclass(slots=True)
class BridgeConfig:
    """Runtime settings for the bridge server.

    Attributes:
        default_cwd: Working directory for `thread/start` without a `cwd`.
        session_store_path: JSON file persisting thread metadata; None disables
            persistence.
        mcp_config_path: Claude config file listing MCP servers.
        exclusive_turns: Reject `turn/start` while the thread has a running turn.
        shutdown_timeout: Seconds to let turns wind down after the input closes.
        log_level: Logging level name for the stderr diagnostic channel.
        cli_path: Optional path to the Claude CLI used by the agent SDK.
    """

    default_cwd: str = field(default_factory=os.getcwd)
    session_store_path: Path | None = DEFAULT_SESSION_STORE_PATH
    mcp_config_path: Path = DEFAULT_MCP_CONFIG_PATH
    exclusive_turns: bool = False
    shutdown_timeout: float = 2.0
    log_level: str = "WARNING"
    cli_path: str | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> BridgeConfig:
        """Build a config from `CLAUDE_BRIDGE_*` environment variables."""
        source = os.environ if env is None else env
        config = cls()

        default_cwd = source.get("CLAUDE_BRIDGE_DEFAULT_CWD")
        if default_cwd:
            config.default_cwd = default_cwd

        store = source.get("CLAUDE_BRIDGE_SESSION_STORE")
        if store is not None:
            config.session_store_path = parse_store_path(store)

        mcp_config = source.get("CLAUDE_BRIDGE_MCP_CONFIG")
        if mcp_config:
            config.mcp_config_path = Path(mcp_config).expanduser()

        exclusive = source.get("CLAUDE_BRIDGE_EXCLUSIVE_TURNS")
        if exclusive is not None:
            config.exclusive_turns = exclusive.strip().lower() not in _FALSE_VALUES

        timeout = source.get("CLAUDE_BRIDGE_SHUTDOWN_TIMEOUT")
        if timeout:
            try:
                config.shutdown_timeout = max(0.0, float(timeout))
            except ValueError as exc:
                raise ValueError(
                    f"CLAUDE_BRIDGE_SHUTDOWN_TIMEOUT must be a number, got {timeout!r}"
                ) from exc

        log_level = source.get("CLAUDE_BRIDGE_LOG_LEVEL")
        if log_level:
            config.log_level = log_level.upper()

        cli_path = source.get("CLAUDE_BRIDGE_CLI_PATH")
        if cli_path:
            config.cli_path = cli_path

        return config


def parse_store_path(value: str) -> Path | None:
    """Interpret a session store setting; `none`/`off`/empty disables the store."""
    stripped = value.strip()
    if not stripped or stripped.lower() in _DISABLED_PATHS:
        return None
    return Path(stripped).expanduser()
