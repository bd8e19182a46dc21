from __future__ import annotations

import json
from typing import Any, Literal

# JSON-RPC protocol version stamped on frames built by the bridge.
JSONRPC_VERSION = "2.0"

# JSON-RPC error codes used by the router.
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Inbound methods.
INITIALIZE_METHOD = "initialize"
INITIALIZED_METHOD = "initialized"
THREAD_START_METHOD = "thread/start"
THREAD_RESUME_METHOD = "thread/resume"
THREAD_FORK_METHOD = "thread/fork"
THREAD_LIST_METHOD = "thread/list"
THREAD_ARCHIVE_METHOD = "thread/archive"
THREAD_NAME_SET_METHOD = "thread/name/set"
TURN_START_METHOD = "turn/start"
TURN_INTERRUPT_METHOD = "turn/interrupt"
REVIEW_START_METHOD = "review/start"
MODEL_LIST_METHOD = "model/list"
ACCOUNT_RATE_LIMITS_READ_METHOD = "account/rateLimits/read"
ACCOUNT_READ_METHOD = "account/read"
ACCOUNT_LOGIN_START_METHOD = "account/login/start"
ACCOUNT_LOGIN_CANCEL_METHOD = "account/login/cancel"
SKILLS_LIST_METHOD = "skills/list"
APP_LIST_METHOD = "app/list"
COLLABORATION_MODE_LIST_METHOD = "collaborationMode/list"
MCP_SERVER_STATUS_LIST_METHOD = "mcpServerStatus/list"

# Outbound notifications.
THREAD_STARTED_NOTIFICATION = "thread/started"
THREAD_RESUMED_NOTIFICATION = "thread/resumed"
TURN_STARTED_NOTIFICATION = "turn/started"
TURN_COMPLETED_NOTIFICATION = "turn/completed"
TURN_INTERRUPTED_NOTIFICATION = "turn/interrupted"
TURN_ERROR_NOTIFICATION = "turn/error"
ITEM_STARTED_NOTIFICATION = "item/started"
ITEM_COMPLETED_NOTIFICATION = "item/completed"
AGENT_MESSAGE_DELTA_NOTIFICATION = "item/agentMessage/delta"
PARSE_ERROR_NOTIFICATION = "claude-code/parseError"

# Outbound requests issued to the peer.
APPROVAL_REQUEST_METHOD = "claude-code/approvalRequest"
USER_INPUT_REQUEST_METHOD = "claude-code/userInputRequest"

MessageKind = Literal["request", "notification", "response", "invalid"]


def make_request(
    request_id: int | str,
    method: str,
    params: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a JSON-RPC request envelope."""
    payload: dict[str, Any] = {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "method": method,
    }
    if params is not None:
        payload["params"] = params
    return payload


def make_notification(
    method: str,
    params: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a JSON-RPC notification envelope (no id)."""
    payload: dict[str, Any] = {
        "jsonrpc": JSONRPC_VERSION,
        "method": method,
    }
    if params is not None:
        payload["params"] = params
    return payload


def make_result_response(
    request_id: int | str,
    result: Any,
) -> dict[str, Any]:
    """Build a JSON-RPC success response envelope."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "result": result,
    }


def make_error_response(
    request_id: int | str,
    code: int,
    message: str,
    data: Any = None,
) -> dict[str, Any]:
    """Build a JSON-RPC error response envelope."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": error,
    }


def encode_frame(payload: dict[str, Any]) -> str:
    """Serialize one frame as a single JSON line terminated by a newline."""
    return json.dumps(payload, separators=(",", ":")) + "\n"


def has_id(payload: dict[str, Any]) -> bool:
    """Return True when payload carries a usable (non-null) id."""
    return payload.get("id") is not None


def is_response_message(payload: dict[str, Any]) -> bool:
    """Return True when payload is a response (has id, result or error, no method)."""
    return (
        has_id(payload)
        and "method" not in payload
        and ("result" in payload or "error" in payload)
    )


def classify_message(payload: Any) -> MessageKind:
    """Classify an inbound frame by the presence of `id` and `method`.

    Returns ``"invalid"`` for anything that is not a JSON object, or for an
    object that is neither a call nor a reply.
    """
    if not isinstance(payload, dict):
        return "invalid"
    if is_response_message(payload):
        return "response"
    method = payload.get("method")
    if not isinstance(method, str):
        return "invalid"
    if has_id(payload):
        return "request"
    return "notification"


def extract_error(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Return JSON-RPC error object if present and valid."""
    error = payload.get("error")
    if isinstance(error, dict):
        return error
    return None
