"""Decode agent query messages into a closed set of event variants.

The agent service yields either typed SDK message objects
(``SystemMessage``, ``AssistantMessage``, ``UserMessage``, ``ResultMessage``)
or plain mappings in the stream-json wire shape. Both are decoded here, once,
so the translator only ever matches on the dataclasses below.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias


@dataclass(slots=True, frozen=True)
class SessionInitEvent:
    session_id: str | None


@dataclass(slots=True, frozen=True)
class ResultEvent:
    text: str


@dataclass(slots=True, frozen=True)
class TextContent:
    text: str


@dataclass(slots=True, frozen=True)
class ToolUseContent:
    id: str | None
    name: str | None


@dataclass(slots=True, frozen=True)
class ThinkingContent:
    thinking: str


ContentBlock: TypeAlias = TextContent | ToolUseContent | ThinkingContent


@dataclass(slots=True, frozen=True)
class AssistantContentEvent:
    blocks: tuple[ContentBlock, ...]


@dataclass(slots=True, frozen=True)
class ToolResultEvent:
    tool_use_ids: tuple[str | None, ...]


@dataclass(slots=True, frozen=True)
class PermissionRequestEvent:
    tool_name: str | None
    tool_input: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class InputRequestEvent:
    questions: list[Any] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class IgnoredEvent:
    kind: str | None


AgentEvent: TypeAlias = (
    SessionInitEvent
    | ResultEvent
    | AssistantContentEvent
    | ToolResultEvent
    | PermissionRequestEvent
    | InputRequestEvent
    | IgnoredEvent
)

# SDK message classes carry no `type` attribute; map them by class name.
_SDK_MESSAGE_KINDS = {
    "SystemMessage": "system",
    "AssistantMessage": "assistant",
    "UserMessage": "user",
    "ResultMessage": "result",
    "StreamEvent": "stream_event",
}
_SDK_BLOCK_KINDS = {
    "TextBlock": "text",
    "ThinkingBlock": "thinking",
    "ToolUseBlock": "tool_use",
    "ToolResultBlock": "tool_result",
}


def decode_event(raw: Any) -> AgentEvent:
    """Classify one agent message into exactly one event variant."""
    if raw is None:
        return IgnoredEvent(kind=None)

    kind = _kind(raw, _SDK_MESSAGE_KINDS)

    if kind == "system" and _field(raw, "subtype") == "init":
        return SessionInitEvent(session_id=_session_id(raw))

    if _has_result(raw, kind):
        result = _field(raw, "result")
        return ResultEvent(text=result if isinstance(result, str) else "")

    if kind == "assistant":
        return AssistantContentEvent(blocks=tuple(_decode_blocks(_content(raw))))

    if kind == "tool_result" or _field(raw, "tool_use_id") is not None:
        return ToolResultEvent(tool_use_ids=(_optional_str(_field(raw, "tool_use_id")),))

    if kind == "user":
        ids = tuple(
            _optional_str(_field(block, "tool_use_id"))
            for block in _content(raw)
            if _kind(block, _SDK_BLOCK_KINDS) == "tool_result"
        )
        if ids:
            return ToolResultEvent(tool_use_ids=ids)
        return IgnoredEvent(kind=kind)

    if kind == "permission_request":
        tool_input = _field(raw, "tool_input")
        return PermissionRequestEvent(
            tool_name=_optional_str(_field(raw, "tool_name")),
            tool_input=dict(tool_input) if isinstance(tool_input, Mapping) else {},
        )

    if kind == "input_request":
        questions = _field(raw, "questions")
        if not isinstance(questions, list):
            questions = []
        return InputRequestEvent(questions=list(questions))

    return IgnoredEvent(kind=kind)


def _decode_blocks(content: Sequence[Any]) -> list[ContentBlock]:
    blocks: list[ContentBlock] = []
    for block in content:
        block_kind = _kind(block, _SDK_BLOCK_KINDS)
        if block_kind == "text":
            text = _field(block, "text")
            if isinstance(text, str) and text:
                blocks.append(TextContent(text=text))
        elif block_kind == "tool_use":
            blocks.append(
                ToolUseContent(
                    id=_optional_str(_field(block, "id")),
                    name=_optional_str(_field(block, "name")),
                )
            )
        elif block_kind == "thinking":
            thinking = _field(block, "thinking")
            if isinstance(thinking, str) and thinking:
                blocks.append(ThinkingContent(thinking=thinking))
    return blocks


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _kind(obj: Any, class_kinds: Mapping[str, str]) -> str | None:
    kind = _field(obj, "type")
    if isinstance(kind, str):
        return kind
    return class_kinds.get(type(obj).__name__)


def _has_result(raw: Any, kind: str | None) -> bool:
    if isinstance(raw, Mapping):
        return "result" in raw
    return kind == "result"


def _content(raw: Any) -> Sequence[Any]:
    content = _field(raw, "content")
    if content is None:
        # stream-json nests the content under `message`
        content = _field(_field(raw, "message"), "content")
    if isinstance(content, Sequence) and not isinstance(content, str):
        return content
    return ()


def _session_id(raw: Any) -> str | None:
    session_id = _field(raw, "session_id")
    if session_id is None:
        session_id = _field(_field(raw, "data"), "session_id")
    return _optional_str(session_id)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
