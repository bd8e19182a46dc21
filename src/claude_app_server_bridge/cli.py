"""Run the Claude app-server bridge on stdio or a websocket port.

Frames are newline-delimited JSON on stdin/stdout. Diagnostics go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from .config import BridgeConfig, parse_store_path
from .server import BridgeServer, serve_websocket
from .transport import StdioTransport

logger = logging.getLogger("claude_app_server_bridge")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI options; unset options fall back to `CLAUDE_BRIDGE_*` env vars."""
    parser = argparse.ArgumentParser(prog="claude-app-server-bridge", description=__doc__)
    parser.add_argument(
        "--listen",
        metavar="HOST:PORT",
        help="Serve websocket connections instead of stdio, e.g. 127.0.0.1:8765.",
    )
    parser.add_argument(
        "--cwd",
        help="Default working directory for new threads.",
    )
    parser.add_argument(
        "--session-store",
        help="Thread metadata JSON file ('none' disables persistence).",
    )
    parser.add_argument(
        "--mcp-config",
        help="Claude config file listing MCP servers.",
    )
    parser.add_argument(
        "--exclusive-turns",
        action="store_true",
        default=None,
        help="Reject turn/start while the thread already has a running turn.",
    )
    parser.add_argument(
        "--shutdown-timeout",
        type=float,
        help="Seconds to let running turns wind down after input closes.",
    )
    parser.add_argument(
        "--cli-path",
        help="Path to the Claude CLI used by the agent SDK.",
    )
    parser.add_argument(
        "--log-level",
        help="Diagnostic log level (DEBUG, INFO, WARNING, ERROR).",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> BridgeConfig:
    """Overlay explicit CLI options on the environment-derived config."""
    config = BridgeConfig.from_env()
    if args.cwd:
        config.default_cwd = args.cwd
    if args.session_store is not None:
        config.session_store_path = parse_store_path(args.session_store)
    if args.mcp_config:
        config.mcp_config_path = Path(args.mcp_config).expanduser()
    if args.exclusive_turns is not None:
        config.exclusive_turns = args.exclusive_turns
    if args.shutdown_timeout is not None:
        config.shutdown_timeout = max(0.0, args.shutdown_timeout)
    if args.cli_path:
        config.cli_path = args.cli_path
    if args.log_level:
        config.log_level = args.log_level.upper()
    return config


def parse_listen(value: str) -> tuple[str, int]:
    """Split a HOST:PORT listen address."""
    host, sep, port = value.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"--listen expects HOST:PORT, got {value!r}")
    return host or "127.0.0.1", int(port)


def configure_logging(level: str) -> None:
    # stdout carries protocol frames; diagnostics must stay on stderr.
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exc = context.get("exception")
    logger.error("unhandled error: %s", context.get("message"), exc_info=exc)


async def run(config: BridgeConfig, listen: tuple[str, int] | None = None) -> int:
    """Serve until stdin closes (or forever in websocket mode)."""
    asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
    if listen is not None:
        host, port = listen
        await serve_websocket(host, port, config=config)
        return 0

    server = BridgeServer(StdioTransport(), config=config)
    await server.serve()
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint."""
    args = parse_args(argv)
    try:
        config = build_config(args)
        listen = parse_listen(args.listen) if args.listen else None
    except ValueError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    configure_logging(config.log_level)
    try:
        code = asyncio.run(run(config, listen))
    except KeyboardInterrupt:
        code = 130
    raise SystemExit(code)
