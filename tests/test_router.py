from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from claude_app_server_bridge.agent import AgentQueryOptions, AgentQueryService, CancellationToken
from claude_app_server_bridge.config import BridgeConfig
from claude_app_server_bridge.errors import BridgeFrameTooLargeError, BridgeTransportError
from claude_app_server_bridge.server import BridgeServer, build_review_prompt
from claude_app_server_bridge.transport import Transport


class RecordingTransport(Transport):
    def __init__(self) -> None:
        self._incoming: asyncio.Queue[str | Exception | None] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.connect_calls = 0
        self.close_calls = 0

    async def connect(self) -> None:
        self.connect_calls += 1

    async def send(self, payload: Mapping[str, Any]) -> None:
        self.sent.append(json.loads(json.dumps(dict(payload))))

    async def recv(self) -> str | None:
        message = await self._incoming.get()
        if isinstance(message, Exception):
            raise message
        return message

    async def close(self) -> None:
        self.close_calls += 1

    def feed(self, message: Any) -> None:
        if not isinstance(message, (str, Exception)):
            message = json.dumps(message)
        self._incoming.put_nowait(message)

    def close_input(self) -> None:
        self._incoming.put_nowait(None)


class EmptyAgent(AgentQueryService):
    def __init__(self) -> None:
        self.calls: list[tuple[str, AgentQueryOptions]] = []

    async def stream(self, prompt: str, options: AgentQueryOptions, token: CancellationToken):
        self.calls.append((prompt, options))
        yield {"type": "result", "result": "ok"}


def _config(tmp_path: Path) -> BridgeConfig:
    return BridgeConfig(
        default_cwd="/workspace",
        session_store_path=None,
        mcp_config_path=tmp_path / "claude.json",
    )


def _server(
    tmp_path: Path, agent: AgentQueryService | None = None
) -> tuple[BridgeServer, RecordingTransport]:
    transport = RecordingTransport()
    server = BridgeServer(transport, agent=agent or EmptyAgent(), config=_config(tmp_path))
    return server, transport


def _responses(transport: RecordingTransport, request_id: Any) -> list[dict[str, Any]]:
    return [
        frame
        for frame in transport.sent
        if frame.get("id") == request_id and "method" not in frame
    ]


def test_initialize_reports_server_info(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        await server.handle_line(json.dumps({"id": 1, "method": "initialize", "params": {}}))
        await server.handle_line(json.dumps({"method": "initialized"}))

        assert server.initialized is True
        assert len(transport.sent) == 1
        result = transport.sent[0]["result"]
        assert result["serverInfo"]["name"] == "claude-app-server-bridge"
        assert result["capabilities"] == {
            "threads": True,
            "models": True,
            "skills": True,
            "reviews": True,
        }

    asyncio.run(_run())


def test_unknown_method_with_id_returns_method_not_found(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        await server.handle_line(json.dumps({"id": "abc", "method": "thread/teleport"}))

        assert transport.sent == [
            {
                "jsonrpc": "2.0",
                "id": "abc",
                "error": {"code": -32601, "message": "Method not found: thread/teleport"},
            }
        ]

    asyncio.run(_run())


def test_unknown_notification_is_dropped(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        await server.handle_line(json.dumps({"method": "thread/teleport", "params": {}}))
        assert transport.sent == []

    asyncio.run(_run())


def test_known_method_sent_as_notification_gets_no_reply(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        await server.handle_line(json.dumps({"method": "thread/list", "params": {}}))
        await server.handle_line(
            json.dumps({"method": "thread/resume", "params": {"threadId": "x"}})
        )
        assert transport.sent == []

    asyncio.run(_run())


def test_malformed_json_emits_parse_error_notification(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        await server.handle_line("{not json")

        assert len(transport.sent) == 1
        frame = transport.sent[0]
        assert "id" not in frame
        assert frame["method"] == "claude-code/parseError"
        assert frame["params"] == {"error": "Invalid JSON", "raw": "{not json"}

    asyncio.run(_run())


def test_non_object_frame_emits_parse_error(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        await server.handle_line("[1, 2, 3]")
        await server.handle_line(json.dumps({"id": 5}))

        assert transport.sent[0]["method"] == "claude-code/parseError"
        assert transport.sent[0]["params"]["error"] == "Invalid message"
        assert transport.sent[1]["id"] == 5
        assert transport.sent[1]["error"]["code"] == -32600

    asyncio.run(_run())


def test_handler_failure_returns_internal_error_and_keeps_serving(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)

        async def _boom(request_id: Any, params: dict[str, Any]) -> None:
            raise RuntimeError("boom")

        server._handlers["model/list"] = _boom
        await server.handle_line(json.dumps({"id": 1, "method": "model/list"}))
        await server.handle_line(json.dumps({"id": 2, "method": "skills/list"}))

        error = _responses(transport, 1)[0]["error"]
        assert error["code"] == -32603
        assert "boom" in error["message"]
        assert _responses(transport, 2)[0]["result"] == {"result": {"skills": []}}

    asyncio.run(_run())


def test_every_request_gets_exactly_one_response(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        requests = [
            {"id": 1, "method": "initialize"},
            {"id": 2, "method": "thread/start", "params": {"cwd": "/repo"}},
            {"id": 3, "method": "thread/resume", "params": {"threadId": "missing"}},
            {"id": 4, "method": "thread/list"},
            {"id": 5, "method": "no/such"},
            {"id": 6, "method": "turn/start", "params": {"threadId": "thread-1", "input": []}},
            {"id": 7, "method": "turn/interrupt", "params": {"turnId": "turn-99"}},
            {"id": 8, "method": "account/login/start"},
            {"id": 9, "method": "thread/archive", "params": {"threadId": "ghost"}},
            {"id": 0, "method": "app/list"},
        ]
        for request in requests:
            await server.handle_line(json.dumps(request))

        for request in requests:
            assert len(_responses(transport, request["id"])) == 1, request
        assert all(
            frame.get("id") is not None
            for frame in transport.sent
            if "result" in frame or "error" in frame
        )

    asyncio.run(_run())


def test_thread_start_notifies_and_responds(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        await server.handle_line(json.dumps({"id": 1, "method": "thread/start", "params": {}}))

        notification, response = transport.sent
        assert notification["method"] == "thread/started"
        assert notification["params"]["threadId"] == "thread-1"
        assert response["result"]["thread"]["name"] == "Session 1"
        assert server.threads.require("thread-1").cwd == "/workspace"

    asyncio.run(_run())


def test_thread_resume_returns_empty_items(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        thread = server.threads.create("/repo")
        await server.handle_line(
            json.dumps({"id": 1, "method": "thread/resume", "params": {"threadId": thread.id}})
        )

        notification, response = transport.sent
        assert notification["method"] == "thread/resumed"
        assert notification["params"]["items"] == []
        assert response["result"]["items"] == []
        assert response["result"]["threadId"] == thread.id

    asyncio.run(_run())


def test_thread_resume_unknown_is_invalid_params(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        await server.handle_line(
            json.dumps({"id": 1, "method": "thread/resume", "params": {"threadId": "thread-9"}})
        )
        assert transport.sent[0]["error"] == {
            "code": -32602,
            "message": "Thread not found: thread-9",
        }

    asyncio.run(_run())


def test_thread_fork_shares_session(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        source = server.threads.create("/repo")
        server.threads.capture_session(source.id, "s1")

        await server.handle_line(
            json.dumps({"id": 1, "method": "thread/fork", "params": {"threadId": source.id}})
        )

        notification, response = transport.sent
        forked_id = response["result"]["threadId"]
        assert notification["method"] == "thread/started"
        assert forked_id != source.id
        assert response["result"]["thread"]["name"] == "Fork of Session 1"
        forked = server.threads.require(forked_id)
        assert forked.cwd == "/repo"
        assert forked.session_id == "s1"

    asyncio.run(_run())


def test_thread_list_archive_and_rename(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        first = server.threads.create("/a")
        second = server.threads.create("/b")

        await server.handle_line(
            json.dumps({"id": 1, "method": "thread/archive", "params": {"threadId": first.id}})
        )
        await server.handle_line(
            json.dumps(
                {
                    "id": 2,
                    "method": "thread/name/set",
                    "params": {"threadId": second.id, "name": "Renamed"},
                }
            )
        )
        await server.handle_line(json.dumps({"id": 3, "method": "thread/list", "params": {}}))

        assert _responses(transport, 1)[0]["result"] == {"ok": True}
        assert _responses(transport, 2)[0]["result"] == {"ok": True}
        listing = _responses(transport, 3)[0]["result"]
        assert listing["cursor"] is None
        assert [thread["id"] for thread in listing["threads"]] == [second.id]
        assert listing["threads"][0]["name"] == "Renamed"

    asyncio.run(_run())


def test_static_account_and_catalog_methods(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        for request_id, method in enumerate(
            [
                "model/list",
                "account/rateLimits/read",
                "account/read",
                "account/login/start",
                "account/login/cancel",
                "skills/list",
                "app/list",
                "collaborationMode/list",
            ],
            start=1,
        ):
            await server.handle_line(json.dumps({"id": request_id, "method": method}))

        models = _responses(transport, 1)[0]["result"]["result"]["models"]
        assert [model["isDefault"] for model in models].count(True) == 1
        assert models[0]["displayName"] == "Claude Sonnet 4"
        assert "defaultReasoningEffort" in models[2]
        assert models[2]["defaultReasoningEffort"] is None

        assert _responses(transport, 2)[0]["result"]["result"]["planType"] == "api"
        assert _responses(transport, 3)[0]["result"]["result"]["type"] == "apikey"
        login_error = _responses(transport, 4)[0]["error"]
        assert login_error["code"] == -32601
        assert "ANTHROPIC_API_KEY" in login_error["message"]
        assert _responses(transport, 5)[0]["result"] == {"canceled": True, "status": "canceled"}
        assert _responses(transport, 6)[0]["result"] == {"result": {"skills": []}}
        assert _responses(transport, 7)[0]["result"] == {"result": {"apps": [], "cursor": None}}
        assert _responses(transport, 8)[0]["result"] == {"result": {"modes": []}}

    asyncio.run(_run())


def test_mcp_server_status_list_reads_config(tmp_path: Path) -> None:
    (tmp_path / "claude.json").write_text(
        json.dumps({"mcpServers": {"files": {"command": "npx", "env": {"TOKEN": "secret"}}}}),
        encoding="utf-8",
    )

    async def _run() -> None:
        server, transport = _server(tmp_path)
        await server.handle_line(json.dumps({"id": 1, "method": "mcpServerStatus/list"}))

        result = transport.sent[0]["result"]["result"]
        assert result["cursor"] is None
        assert result["data"] == [
            {
                "name": "files",
                "transport": "stdio",
                "command": "npx",
                "envKeys": ["TOKEN"],
                "status": "configured",
            }
        ]

    asyncio.run(_run())


def test_review_start_delegates_to_turn_start(tmp_path: Path) -> None:
    async def _run() -> None:
        agent = EmptyAgent()
        server, transport = _server(tmp_path, agent)
        thread = server.threads.create("/repo")

        await server.handle_line(
            json.dumps(
                {
                    "id": 1,
                    "method": "review/start",
                    "params": {
                        "threadId": thread.id,
                        "target": {"type": "commit", "sha": "abc123"},
                    },
                }
            )
        )
        for _ in range(50):
            if not server.turns.active:
                break
            await asyncio.sleep(0.01)

        assert _responses(transport, 1)[0]["result"]["threadId"] == thread.id
        prompt, options = agent.calls[0]
        assert "git show abc123" in prompt
        assert options.permission_mode == "bypassPermissions"

    asyncio.run(_run())


def test_review_prompts_per_target() -> None:
    assert "git diff`" in build_review_prompt({"type": "uncommittedChanges"})
    assert "git diff main...HEAD" in build_review_prompt({"type": "baseBranch", "branch": "main"})
    assert build_review_prompt({"type": "custom", "instructions": "Check naming"}) == "Check naming"
    assert build_review_prompt({"type": "custom"}) == ""


def test_review_start_with_unknown_target_is_invalid_params(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        thread = server.threads.create("/repo")
        await server.handle_line(
            json.dumps(
                {
                    "id": 1,
                    "method": "review/start",
                    "params": {"threadId": thread.id, "target": {"type": "vibes"}},
                }
            )
        )
        assert transport.sent[0]["error"]["code"] == -32602
        assert not server.turns.active

    asyncio.run(_run())


def test_peer_replies_are_correlated_to_outbound_requests(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        await server.send_frame(
            {
                "jsonrpc": "2.0",
                "id": 41,
                "method": "claude-code/approvalRequest",
                "params": {"threadId": "thread-1", "turnId": "turn-1"},
            }
        )
        assert 41 in server.pending_peer_requests

        await server.handle_line(json.dumps({"id": 41, "result": {"decision": "accept"}}))
        await server.handle_line(json.dumps({"id": 999, "error": {"code": 1, "message": "?"}}))

        assert 41 not in server.pending_peer_requests
        assert len(transport.sent) == 1

    asyncio.run(_run())


def test_serve_processes_lines_until_input_closes(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        transport.feed({"id": 1, "method": "initialize"})
        transport.feed({"method": "initialized"})
        transport.feed("garbage")
        transport.feed({"id": 2, "method": "thread/start"})
        transport.close_input()

        await asyncio.wait_for(server.serve(), timeout=2.0)

        assert transport.connect_calls == 1
        assert transport.close_calls == 1
        methods = [frame.get("method") for frame in transport.sent]
        assert methods == [None, "claude-code/parseError", "thread/started", None]

    asyncio.run(_run())


def test_deeply_nested_json_emits_parse_error(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        await server.handle_line("[" * 100000)
        await server.handle_line(json.dumps({"id": 1, "method": "initialize"}))

        assert transport.sent[0]["method"] == "claude-code/parseError"
        assert transport.sent[0]["params"]["error"] == "Invalid JSON"
        assert transport.sent[1]["id"] == 1
        assert "result" in transport.sent[1]

    asyncio.run(_run())


def test_serve_survives_oversized_frame(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        transport.feed(BridgeFrameTooLargeError("inbound line exceeds 100 bytes"))
        transport.feed({"id": 1, "method": "initialize"})
        transport.close_input()

        await asyncio.wait_for(server.serve(), timeout=2.0)

        parse_error, response = transport.sent
        assert parse_error["method"] == "claude-code/parseError"
        assert parse_error["params"]["error"] == "Message too large"
        assert response["id"] == 1
        assert response["result"]["serverInfo"]["name"] == "claude-app-server-bridge"

    asyncio.run(_run())


def test_serve_stops_on_transport_failure(tmp_path: Path) -> None:
    async def _run() -> None:
        server, transport = _server(tmp_path)
        transport.feed(BridgeTransportError("stdin went away"))
        transport.feed({"id": 1, "method": "initialize"})

        await asyncio.wait_for(server.serve(), timeout=2.0)

        assert transport.sent == []
        assert transport.close_calls == 1

    asyncio.run(_run())
