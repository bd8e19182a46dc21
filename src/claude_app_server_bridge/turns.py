from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .agent import AgentQueryOptions, AgentQueryService, CancellationToken
from .errors import BridgeInvalidParamsError, IllegalTurnTransitionError
from .events import decode_event
from .models import Thread
from .policy import allowed_tools_for, permission_mode_for
from .protocol import (
    ITEM_COMPLETED_NOTIFICATION,
    ITEM_STARTED_NOTIFICATION,
    TURN_COMPLETED_NOTIFICATION,
    TURN_ERROR_NOTIFICATION,
    TURN_INTERRUPTED_NOTIFICATION,
    TURN_STARTED_NOTIFICATION,
    make_notification,
    make_result_response,
)
from .threads import ThreadRegistry
from .translator import StreamingTranslator

logger = logging.getLogger(__name__)

SendFrame = Callable[[dict[str, Any]], Awaitable[None]]


class TurnState(str, Enum):
    CREATED = "created"
    STARTED = "started"
    STREAMING = "streaming"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({TurnState.COMPLETED, TurnState.INTERRUPTED, TurnState.ERRORED})

_TRANSITIONS: dict[TurnState, frozenset[TurnState]] = {
    TurnState.CREATED: frozenset({TurnState.STARTED}),
    TurnState.STARTED: frozenset(
        {TurnState.STREAMING, TurnState.INTERRUPTED, TurnState.ERRORED}
    ),
    TurnState.STREAMING: TERMINAL_STATES,
}


@dataclass(slots=True)
class ActiveTurn:
    turn_id: str
    thread_id: str
    message_item_id: str
    token: CancellationToken = field(default_factory=CancellationToken)
    state: TurnState = TurnState.CREATED

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: TurnState) -> None:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise IllegalTurnTransitionError(
                f"turn {self.turn_id}: cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state


class TurnManager:
    """Starts, streams, interrupts and tears down agent turns.

    Each started turn runs as its own background task. A turn stays in the
    active set until it reaches a terminal state or is interrupted.
    """

    def __init__(
        self,
        threads: ThreadRegistry,
        agent: AgentQueryService,
        send: SendFrame,
        *,
        next_request_id: Callable[[], int],
        exclusive_turns: bool = False,
        shutdown_timeout: float = 2.0,
        on_turn_finished: Callable[[str], None] | None = None,
    ) -> None:
        """Create a turn manager.

        Args:
            threads: Registry turns are started against.
            agent: Streaming agent backend.
            send: Coroutine used to emit one outbound frame.
            next_request_id: Allocator for outbound request ids.
            exclusive_turns: Reject a new turn while the thread has one running.
            shutdown_timeout: Seconds `shutdown()` waits for turns to wind down.
            on_turn_finished: Called with the turn id once a turn's task ends,
                whatever the outcome.
        """
        self._threads = threads
        self._agent = agent
        self._send = send
        self._next_request_id = next_request_id
        self._exclusive_turns = exclusive_turns
        self._shutdown_timeout = shutdown_timeout
        self._on_turn_finished = on_turn_finished

        self._active: dict[str, ActiveTurn] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._turn_ids = itertools.count(1)
        self._item_ids = itertools.count(1)

    @property
    def active(self) -> Mapping[str, ActiveTurn]:
        """Read-only view of the turns currently in flight."""
        return self._active

    def active_for_thread(self, thread_id: str) -> list[ActiveTurn]:
        return [turn for turn in self._active.values() if turn.thread_id == thread_id]

    async def start(
        self,
        request_id: int | str | None,
        params: Mapping[str, Any],
    ) -> ActiveTurn:
        """Validate and launch a turn, acknowledging the request first.

        Raises:
            BridgeInvalidParamsError: unknown thread, empty prompt, or (with
                exclusive turns) a turn already running on the thread.
        """
        thread = self._threads.require(params.get("threadId"))
        prompt = extract_prompt(params.get("input"))
        if not prompt.strip():
            raise BridgeInvalidParamsError("Empty prompt")
        if self._exclusive_turns and self.active_for_thread(thread.id):
            raise BridgeInvalidParamsError(f"Turn already active on thread: {thread.id}")

        turn = ActiveTurn(
            turn_id=f"turn-{next(self._turn_ids)}",
            thread_id=thread.id,
            message_item_id=self._new_item_id("item"),
        )
        self._active[turn.turn_id] = turn
        options = build_query_options(thread, params)

        try:
            if request_id is not None:
                await self._send(
                    make_result_response(
                        request_id, {"turnId": turn.turn_id, "threadId": thread.id}
                    )
                )
            await self._notify(turn, TURN_STARTED_NOTIFICATION)
            await self._notify(
                turn,
                ITEM_STARTED_NOTIFICATION,
                itemId=turn.message_item_id,
                kind="agentMessage",
            )
        except BaseException:
            self._active.pop(turn.turn_id, None)
            raise
        turn.transition(TurnState.STARTED)

        task = asyncio.create_task(self._run(turn, prompt, options))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return turn

    def interrupt(self, turn_id: str | None) -> bool:
        """Signal a turn's cancellation and drop it from the active set.

        Returns False when the turn is unknown or already finished.
        """
        if turn_id is None:
            return False
        turn = self._active.pop(turn_id, None)
        if turn is None:
            return False
        turn.token.cancel()
        logger.info("interrupt requested for %s", turn_id)
        return True

    async def shutdown(self) -> None:
        """Cancel every active turn and wait briefly for their tasks to end."""
        for turn in list(self._active.values()):
            turn.token.cancel()
        self._active.clear()

        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=self._shutdown_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self, turn: ActiveTurn, prompt: str, options: AgentQueryOptions) -> None:
        translator = StreamingTranslator(
            thread_id=turn.thread_id,
            turn_id=turn.turn_id,
            message_item_id=turn.message_item_id,
            next_request_id=self._next_request_id,
            next_item_id=self._new_item_id,
            on_session=lambda session_id: self._threads.capture_session(
                turn.thread_id, session_id
            ),
        )
        try:
            if turn.token.cancelled:
                await self._finish_interrupted(turn)
                return
            turn.transition(TurnState.STREAMING)

            stream = self._agent.stream(prompt, options, turn.token)
            try:
                async for raw in stream:
                    if turn.token.cancelled:
                        await self._finish_interrupted(turn)
                        return
                    for frame in translator.feed(decode_event(raw)):
                        await self._send(frame)
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

            if turn.token.cancelled:
                await self._finish_interrupted(turn)
                return

            turn.transition(TurnState.COMPLETED)
            await self._notify(
                turn,
                ITEM_COMPLETED_NOTIFICATION,
                itemId=turn.message_item_id,
                kind="agentMessage",
            )
            self._threads.touch(turn.thread_id)
            await self._notify(turn, TURN_COMPLETED_NOTIFICATION)
        except asyncio.CancelledError:
            if not turn.finished:
                turn.transition(TurnState.INTERRUPTED)
            raise
        except Exception as exc:
            if turn.finished:
                raise
            if turn.token.cancelled:
                await self._finish_interrupted(turn)
            else:
                logger.warning("turn %s failed: %s", turn.turn_id, exc)
                turn.transition(TurnState.ERRORED)
                await self._notify(turn, TURN_ERROR_NOTIFICATION, error=str(exc))
        finally:
            if self._active.get(turn.turn_id) is turn:
                del self._active[turn.turn_id]
            if self._on_turn_finished is not None:
                self._on_turn_finished(turn.turn_id)

    async def _finish_interrupted(self, turn: ActiveTurn) -> None:
        turn.transition(TurnState.INTERRUPTED)
        await self._notify(turn, TURN_INTERRUPTED_NOTIFICATION)

    async def _notify(self, turn: ActiveTurn, method: str, **params: Any) -> None:
        await self._send(
            make_notification(
                method,
                {"threadId": turn.thread_id, "turnId": turn.turn_id, **params},
            )
        )

    def _new_item_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._item_ids)}"

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("turn task crashed", exc_info=exc)


def extract_prompt(items: Any) -> str:
    """Join the text of every `text` input item with newlines."""
    if not isinstance(items, list):
        return ""
    parts = [
        item["text"]
        for item in items
        if isinstance(item, Mapping)
        and item.get("type") == "text"
        and isinstance(item.get("text"), str)
        and item["text"]
    ]
    return "\n".join(parts)


def build_query_options(thread: Thread, params: Mapping[str, Any]) -> AgentQueryOptions:
    """Map `turn/start` params and thread state onto agent query options."""
    cwd = params.get("cwd")
    model = params.get("model")
    return AgentQueryOptions(
        cwd=cwd if isinstance(cwd, str) and cwd else thread.cwd,
        permission_mode=permission_mode_for(params.get("approvalPolicy")),
        allowed_tools=allowed_tools_for(params.get("accessMode")),
        model=model if isinstance(model, str) and model else None,
        resume=thread.session_id,
    )
