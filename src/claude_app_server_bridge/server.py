from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import websockets

from . import __version__
from .agent import AgentQueryService, ClaudeAgentQueryService
from .catalog import list_models
from .config import BridgeConfig
from .errors import (
    BridgeFrameTooLargeError,
    BridgeInvalidParamsError,
    BridgeProtocolError,
    BridgeTransportError,
)
from .mcp_config import read_mcp_server_statuses
from .protocol import (
    ACCOUNT_LOGIN_CANCEL_METHOD,
    ACCOUNT_LOGIN_START_METHOD,
    ACCOUNT_RATE_LIMITS_READ_METHOD,
    ACCOUNT_READ_METHOD,
    APP_LIST_METHOD,
    COLLABORATION_MODE_LIST_METHOD,
    INITIALIZE_METHOD,
    INITIALIZED_METHOD,
    INTERNAL_ERROR,
    INVALID_REQUEST,
    MCP_SERVER_STATUS_LIST_METHOD,
    METHOD_NOT_FOUND,
    MODEL_LIST_METHOD,
    PARSE_ERROR_NOTIFICATION,
    REVIEW_START_METHOD,
    SKILLS_LIST_METHOD,
    THREAD_ARCHIVE_METHOD,
    THREAD_FORK_METHOD,
    THREAD_LIST_METHOD,
    THREAD_NAME_SET_METHOD,
    THREAD_RESUME_METHOD,
    THREAD_RESUMED_NOTIFICATION,
    THREAD_START_METHOD,
    THREAD_STARTED_NOTIFICATION,
    TURN_INTERRUPT_METHOD,
    TURN_START_METHOD,
    classify_message,
    extract_error,
    make_error_response,
    make_notification,
    make_result_response,
)
from .session_store import SessionStore
from .threads import ThreadRegistry
from .transport import Transport, WebSocketTransport
from .turns import TurnManager

logger = logging.getLogger(__name__)

SERVER_NAME = "claude-app-server-bridge"

RequestId = int | str
MaybeId = RequestId | None
Params = dict[str, Any]
Handler = Callable[[MaybeId, Params], Awaitable[None]]


@dataclass(slots=True)
class _PendingPeerRequest:
    method: str
    thread_id: str | None
    turn_id: str | None


class BridgeServer:
    """Serve the app-server protocol on one transport.

    Inbound frames are handled one at a time in arrival order; turns run in
    background tasks owned by the `TurnManager`. Every outbound frame goes
    through `send_frame`, which serializes writes.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        agent: AgentQueryService | None = None,
        threads: ThreadRegistry | None = None,
        config: BridgeConfig | None = None,
    ) -> None:
        """Create a server bound to a transport.

        Args:
            transport: Channel to the frontend.
            agent: Agent query backend; defaults to the Claude Agent SDK.
            threads: Thread registry to share; a fresh one is built from
                `config` when omitted.
            config: Runtime settings; defaults to `BridgeConfig.from_env()`.
        """
        self._config = config if config is not None else BridgeConfig.from_env()
        self._transport = transport
        self._agent = agent if agent is not None else ClaudeAgentQueryService(
            cli_path=self._config.cli_path
        )
        self._threads = threads if threads is not None else build_thread_registry(self._config)
        self._send_lock = asyncio.Lock()
        self._next_request_id = 1
        self._pending_peer_requests: dict[RequestId, _PendingPeerRequest] = {}
        self.initialized = False

        self._turns = TurnManager(
            self._threads,
            self._agent,
            self.send_frame,
            next_request_id=self._allocate_request_id,
            exclusive_turns=self._config.exclusive_turns,
            shutdown_timeout=self._config.shutdown_timeout,
            on_turn_finished=self._forget_turn_requests,
        )

        self._handlers: dict[str, Handler] = {
            INITIALIZE_METHOD: self._handle_initialize,
            THREAD_START_METHOD: self._handle_thread_start,
            THREAD_RESUME_METHOD: self._handle_thread_resume,
            THREAD_FORK_METHOD: self._handle_thread_fork,
            THREAD_LIST_METHOD: self._handle_thread_list,
            THREAD_ARCHIVE_METHOD: self._handle_thread_archive,
            THREAD_NAME_SET_METHOD: self._handle_thread_name_set,
            TURN_START_METHOD: self._handle_turn_start,
            TURN_INTERRUPT_METHOD: self._handle_turn_interrupt,
            REVIEW_START_METHOD: self._handle_review_start,
            MODEL_LIST_METHOD: self._handle_model_list,
            ACCOUNT_RATE_LIMITS_READ_METHOD: self._handle_account_rate_limits,
            ACCOUNT_READ_METHOD: self._handle_account_read,
            ACCOUNT_LOGIN_START_METHOD: self._handle_account_login_start,
            ACCOUNT_LOGIN_CANCEL_METHOD: self._handle_account_login_cancel,
            SKILLS_LIST_METHOD: self._handle_skills_list,
            APP_LIST_METHOD: self._handle_app_list,
            COLLABORATION_MODE_LIST_METHOD: self._handle_collaboration_mode_list,
            MCP_SERVER_STATUS_LIST_METHOD: self._handle_mcp_server_status_list,
        }

    @property
    def threads(self) -> ThreadRegistry:
        return self._threads

    @property
    def turns(self) -> TurnManager:
        return self._turns

    @property
    def pending_peer_requests(self) -> Mapping[RequestId, _PendingPeerRequest]:
        """Outbound requests still waiting for a peer reply."""
        return self._pending_peer_requests

    async def serve(self) -> None:
        """Process inbound frames until the peer closes, then stop all turns."""
        await self._transport.connect()
        try:
            while True:
                try:
                    line = await self._transport.recv()
                except BridgeFrameTooLargeError as exc:
                    await self._send_parse_error("Message too large", str(exc))
                    continue
                except BridgeTransportError as exc:
                    logger.error("transport failed: %s", exc)
                    break
                if line is None:
                    logger.info("input closed")
                    break
                try:
                    await self.handle_line(line)
                except Exception:
                    logger.exception("unhandled error while processing frame")
        finally:
            await self._turns.shutdown()
            await self._transport.close()

    async def handle_line(self, raw: str) -> None:
        """Parse and route one inbound line."""
        try:
            payload = json.loads(raw)
        except (ValueError, RecursionError):
            await self._send_parse_error("Invalid JSON", raw)
            return

        kind = classify_message(payload)
        if kind == "response":
            self._resolve_peer_reply(payload)
            return
        if kind == "invalid":
            request_id = payload.get("id") if isinstance(payload, dict) else None
            if isinstance(request_id, (int, str)):
                await self.send_frame(
                    make_error_response(request_id, INVALID_REQUEST, "Invalid request")
                )
            else:
                await self._send_parse_error("Invalid message", raw)
            return

        params = payload.get("params")
        request_id = payload["id"] if kind == "request" else None
        await self.dispatch(
            payload["method"],
            request_id,
            dict(params) if isinstance(params, Mapping) else {},
        )

    async def dispatch(
        self,
        method: str,
        request_id: RequestId | None,
        params: dict[str, Any],
    ) -> None:
        """Run the handler for `method`, converting failures into error responses."""
        if method == INITIALIZED_METHOD:
            return

        handler = self._handlers.get(method)
        if handler is None:
            if request_id is not None:
                await self._send_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
            else:
                logger.debug("dropping unsupported notification %s", method)
            return

        try:
            await handler(request_id, params)
        except BridgeProtocolError as exc:
            await self._send_error(request_id, exc.code, str(exc), exc.data)
        except BridgeTransportError:
            raise
        except Exception as exc:
            logger.exception("handler for %s failed", method)
            await self._send_error(request_id, INTERNAL_ERROR, f"Internal error: {exc}")

    async def send_frame(self, payload: dict[str, Any]) -> None:
        """Write one outbound frame, remembering outbound requests for correlation."""
        if "method" in payload and payload.get("id") is not None:
            params = payload.get("params")
            params = params if isinstance(params, Mapping) else {}
            self._pending_peer_requests[payload["id"]] = _PendingPeerRequest(
                method=payload["method"],
                thread_id=params.get("threadId"),
                turn_id=params.get("turnId"),
            )
        async with self._send_lock:
            await self._transport.send(payload)

    def _allocate_request_id(self) -> int:
        request_id = self._next_request_id
        self._next_request_id += 1
        return request_id

    def _forget_turn_requests(self, turn_id: str) -> None:
        stale = [
            request_id
            for request_id, pending in self._pending_peer_requests.items()
            if pending.turn_id == turn_id
        ]
        for request_id in stale:
            del self._pending_peer_requests[request_id]
        if stale:
            logger.debug("dropped %d unanswered requests of %s", len(stale), turn_id)

    def _resolve_peer_reply(self, payload: dict[str, Any]) -> None:
        pending = self._pending_peer_requests.pop(payload["id"], None)
        if pending is None:
            logger.warning("dropping reply to unknown request id %r", payload["id"])
            return
        error = extract_error(payload)
        if error is not None:
            logger.info(
                "peer rejected %s (id=%r turn=%s): %s",
                pending.method,
                payload["id"],
                pending.turn_id,
                error.get("message"),
            )
            return
        logger.info(
            "peer answered %s (id=%r turn=%s): %s",
            pending.method,
            payload["id"],
            pending.turn_id,
            payload.get("result"),
        )

    async def _respond(self, request_id: RequestId | None, result: Any) -> None:
        if request_id is None:
            return
        await self.send_frame(make_result_response(request_id, result))

    async def _send_error(
        self,
        request_id: RequestId | None,
        code: int,
        message: str,
        data: Any = None,
    ) -> None:
        if request_id is None:
            logger.warning("error for notification (code=%d): %s", code, message)
            return
        await self.send_frame(make_error_response(request_id, code, message, data))

    async def _notify(self, method: str, params: dict[str, Any]) -> None:
        await self.send_frame(make_notification(method, params))

    async def _send_parse_error(self, error: str, raw: str) -> None:
        logger.warning("%s: %.200s", error, raw)
        await self._notify(PARSE_ERROR_NOTIFICATION, {"error": error, "raw": raw})

    async def _handle_initialize(self, request_id: MaybeId, params: Params) -> None:
        self.initialized = True
        client_info = params.get("clientInfo")
        if isinstance(client_info, Mapping):
            logger.info("initialized by %s %s", client_info.get("name"), client_info.get("version"))
        await self._respond(
            request_id,
            {
                "serverInfo": {"name": SERVER_NAME, "version": __version__},
                "capabilities": {
                    "threads": True,
                    "models": True,
                    "skills": True,
                    "reviews": True,
                },
            },
        )

    async def _handle_thread_start(self, request_id: MaybeId, params: Params) -> None:
        cwd = params.get("cwd")
        if not isinstance(cwd, str) or not cwd:
            cwd = self._config.default_cwd
        thread = self._threads.create(cwd)
        payload = {"threadId": thread.id, "thread": thread.summary()}
        await self._notify(THREAD_STARTED_NOTIFICATION, payload)
        await self._respond(request_id, payload)

    async def _handle_thread_resume(self, request_id: MaybeId, params: Params) -> None:
        thread = self._threads.resume(params.get("threadId"))
        # Turn history is not persisted, so resumed threads carry no items.
        payload = {"threadId": thread.id, "thread": thread.summary(), "items": []}
        await self._notify(THREAD_RESUMED_NOTIFICATION, payload)
        await self._respond(request_id, payload)

    async def _handle_thread_fork(self, request_id: MaybeId, params: Params) -> None:
        forked = self._threads.fork(params.get("threadId"))
        payload = {"threadId": forked.id, "thread": forked.summary()}
        await self._notify(THREAD_STARTED_NOTIFICATION, payload)
        await self._respond(request_id, payload)

    async def _handle_thread_list(self, request_id: MaybeId, params: Params) -> None:
        limit = params.get("limit")
        threads = self._threads.list_threads(limit if isinstance(limit, int) else None)
        await self._respond(
            request_id,
            {"threads": [thread.summary() for thread in threads], "cursor": None},
        )

    async def _handle_thread_archive(self, request_id: MaybeId, params: Params) -> None:
        self._threads.archive(params.get("threadId"))
        await self._respond(request_id, {"ok": True})

    async def _handle_thread_name_set(self, request_id: MaybeId, params: Params) -> None:
        name = params.get("name")
        if not isinstance(name, str):
            raise BridgeInvalidParamsError("name must be a string")
        self._threads.rename(params.get("threadId"), name)
        await self._respond(request_id, {"ok": True})

    async def _handle_turn_start(self, request_id: MaybeId, params: Params) -> None:
        await self._turns.start(request_id, params)

    async def _handle_turn_interrupt(self, request_id: MaybeId, params: Params) -> None:
        self._turns.interrupt(params.get("turnId"))
        await self._respond(request_id, {"ok": True})

    async def _handle_review_start(self, request_id: MaybeId, params: Params) -> None:
        prompt = build_review_prompt(params.get("target"))
        await self._turns.start(
            request_id,
            {
                **params,
                "input": [{"type": "text", "text": prompt}],
                "approvalPolicy": "never",
            },
        )

    async def _handle_model_list(self, request_id: MaybeId, params: Params) -> None:
        await self._respond(request_id, {"result": {"models": list_models()}})

    async def _handle_account_rate_limits(self, request_id: MaybeId, params: Params) -> None:
        # API-key accounts have no plan windows to report.
        await self._respond(
            request_id,
            {
                "result": {
                    "primary": None,
                    "secondary": None,
                    "credits": {"hasCredits": True, "unlimited": False, "balance": None},
                    "planType": "api",
                }
            },
        )

    async def _handle_account_read(self, request_id: MaybeId, params: Params) -> None:
        await self._respond(
            request_id,
            {
                "result": {
                    "type": "apikey",
                    "email": None,
                    "planType": "api",
                    "requiresOpenaiAuth": False,
                }
            },
        )

    async def _handle_account_login_start(self, request_id: MaybeId, params: Params) -> None:
        raise BridgeProtocolError(
            "Claude Code uses API keys for authentication. "
            "Set ANTHROPIC_API_KEY environment variable.",
            code=METHOD_NOT_FOUND,
        )

    async def _handle_account_login_cancel(self, request_id: MaybeId, params: Params) -> None:
        await self._respond(request_id, {"canceled": True, "status": "canceled"})

    async def _handle_skills_list(self, request_id: MaybeId, params: Params) -> None:
        await self._respond(request_id, {"result": {"skills": []}})

    async def _handle_app_list(self, request_id: MaybeId, params: Params) -> None:
        await self._respond(request_id, {"result": {"apps": [], "cursor": None}})

    async def _handle_collaboration_mode_list(self, request_id: MaybeId, params: Params) -> None:
        await self._respond(request_id, {"result": {"modes": []}})

    async def _handle_mcp_server_status_list(self, request_id: MaybeId, params: Params) -> None:
        servers = read_mcp_server_statuses(self._config.mcp_config_path)
        await self._respond(
            request_id,
            {"result": {"data": [server.to_wire() for server in servers], "cursor": None}},
        )


def build_review_prompt(target: Any) -> str:
    """Synthesize the review prompt for a `review/start` target."""
    if not isinstance(target, Mapping):
        raise BridgeInvalidParamsError("Unsupported review target")

    kind = target.get("type")
    if kind == "uncommittedChanges":
        return (
            "Please review the uncommitted changes in this repository. "
            "Run `git diff` to see what changed and provide a code review."
        )
    if kind == "baseBranch":
        branch = target.get("branch")
        return (
            f"Please review the changes between the current branch and {branch}. "
            f"Run `git diff {branch}...HEAD` and provide a code review."
        )
    if kind == "commit":
        sha = target.get("sha")
        return f"Please review commit {sha}. Run `git show {sha}` and provide a code review."
    if kind == "custom":
        instructions = target.get("instructions")
        return instructions if isinstance(instructions, str) else ""
    raise BridgeInvalidParamsError(f"Unsupported review target: {kind}")


def build_thread_registry(config: BridgeConfig) -> ThreadRegistry:
    if config.session_store_path is None:
        return ThreadRegistry()
    return ThreadRegistry(store=SessionStore(config.session_store_path))


async def serve_websocket(
    host: str,
    port: int,
    *,
    config: BridgeConfig,
    agent: AgentQueryService | None = None,
) -> None:
    """Serve each websocket connection with its own `BridgeServer`.

    Connections share one thread registry so threads outlive reconnects.
    """
    threads = build_thread_registry(config)
    shared_agent = agent if agent is not None else ClaudeAgentQueryService(cli_path=config.cli_path)

    async def _serve_connection(socket: Any) -> None:
        logger.info("websocket peer connected: %s", getattr(socket, "remote_address", None))
        server = BridgeServer(
            WebSocketTransport(socket),
            agent=shared_agent,
            threads=threads,
            config=config,
        )
        await server.serve()

    async with websockets.serve(_serve_connection, host, port, compression=None):
        logger.info("listening on ws://%s:%d", host, port)
        await asyncio.Future()
