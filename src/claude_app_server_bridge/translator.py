from __future__ import annotations

from collections.abc import Callable
from typing import Any

from .events import (
    AgentEvent,
    AssistantContentEvent,
    IgnoredEvent,
    InputRequestEvent,
    PermissionRequestEvent,
    ResultEvent,
    SessionInitEvent,
    TextContent,
    ThinkingContent,
    ToolResultEvent,
    ToolUseContent,
)
from .protocol import (
    AGENT_MESSAGE_DELTA_NOTIFICATION,
    APPROVAL_REQUEST_METHOD,
    ITEM_COMPLETED_NOTIFICATION,
    ITEM_STARTED_NOTIFICATION,
    USER_INPUT_REQUEST_METHOD,
    make_notification,
    make_request,
)

REASONING_SUMMARY_LIMIT = 200


class StreamingTranslator:
    """Turn one turn's agent events into outbound frames.

    The agent periodically resends the assistant text in full; `emitted_length`
    tracks how much of it has already gone out so only the unsent suffix is
    emitted as a delta. One translator is created per turn.
    """

    def __init__(
        self,
        *,
        thread_id: str,
        turn_id: str,
        message_item_id: str,
        next_request_id: Callable[[], int],
        next_item_id: Callable[[str], str],
        on_session: Callable[[str | None], None] | None = None,
    ) -> None:
        self.thread_id = thread_id
        self.turn_id = turn_id
        self.message_item_id = message_item_id
        self.emitted_length = 0
        self._next_request_id = next_request_id
        self._next_item_id = next_item_id
        self._on_session = on_session

    def feed(self, event: AgentEvent) -> list[dict[str, Any]]:
        """Return the frames for one event, in emission order."""
        if isinstance(event, SessionInitEvent):
            if self._on_session is not None:
                self._on_session(event.session_id)
            return []

        if isinstance(event, ResultEvent):
            return self._cumulative_text(event.text)

        if isinstance(event, AssistantContentEvent):
            frames: list[dict[str, Any]] = []
            for block in event.blocks:
                if isinstance(block, TextContent):
                    frames.extend(self._cumulative_text(block.text))
                elif isinstance(block, ToolUseContent):
                    frames.append(self._tool_started(block))
                elif isinstance(block, ThinkingContent):
                    frames.append(self._reasoning_started(block))
            return frames

        if isinstance(event, ToolResultEvent):
            return [self._tool_completed(tool_use_id) for tool_use_id in event.tool_use_ids]

        if isinstance(event, PermissionRequestEvent):
            return [self._approval_request(event)]

        if isinstance(event, InputRequestEvent):
            return [self._user_input_request(event)]

        if isinstance(event, IgnoredEvent):
            return []

        raise TypeError(f"unsupported agent event: {event!r}")

    def _cumulative_text(self, text: str) -> list[dict[str, Any]]:
        delta = text[self.emitted_length :]
        if not delta:
            return []
        self.emitted_length = len(text)
        return [
            self._notify(
                AGENT_MESSAGE_DELTA_NOTIFICATION,
                itemId=self.message_item_id,
                delta=delta,
            )
        ]

    def _tool_started(self, block: ToolUseContent) -> dict[str, Any]:
        return self._notify(
            ITEM_STARTED_NOTIFICATION,
            itemId=_tool_item_id(block.id),
            kind="tool",
            toolType=block.name,
            title=block.name,
        )

    def _tool_completed(self, tool_use_id: str | None) -> dict[str, Any]:
        return self._notify(
            ITEM_COMPLETED_NOTIFICATION,
            itemId=_tool_item_id(tool_use_id),
            kind="tool",
        )

    def _reasoning_started(self, block: ThinkingContent) -> dict[str, Any]:
        return self._notify(
            ITEM_STARTED_NOTIFICATION,
            itemId=self._next_item_id("reasoning"),
            kind="reasoning",
            summary=block.thinking[:REASONING_SUMMARY_LIMIT],
            content=block.thinking,
        )

    def _approval_request(self, event: PermissionRequestEvent) -> dict[str, Any]:
        request_id = self._next_request_id()
        return make_request(
            request_id,
            APPROVAL_REQUEST_METHOD,
            {
                "threadId": self.thread_id,
                "turnId": self.turn_id,
                "requestId": request_id,
                "method": event.tool_name or "unknown",
                "params": dict(event.tool_input),
            },
        )

    def _user_input_request(self, event: InputRequestEvent) -> dict[str, Any]:
        request_id = self._next_request_id()
        return make_request(
            request_id,
            USER_INPUT_REQUEST_METHOD,
            {
                "threadId": self.thread_id,
                "turnId": self.turn_id,
                "requestId": request_id,
                "params": {
                    "thread_id": self.thread_id,
                    "turn_id": self.turn_id,
                    "item_id": self.message_item_id,
                    "questions": list(event.questions),
                },
            },
        )

    def _notify(self, method: str, **params: Any) -> dict[str, Any]:
        return make_notification(
            method,
            {"threadId": self.thread_id, "turnId": self.turn_id, **params},
        )


def _tool_item_id(tool_use_id: str | None) -> str:
    return f"tool-{tool_use_id if tool_use_id is not None else 'unknown'}"
