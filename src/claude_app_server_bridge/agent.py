from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from .models import PermissionMode

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag shared between a turn and its stream.

    Cancelling never interrupts an await in progress; consumers check
    `cancelled` between events.
    """

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """Signal cancellation. Returns False if already signaled."""
        if self._cancelled:
            return False
        self._cancelled = True
        return True


@dataclass(slots=True)
class AgentQueryOptions:
    """Per-turn options forwarded to the agent query service.

    Attributes:
        cwd: Working directory for tool execution.
        permission_mode: Agent permission mode.
        allowed_tools: Tool allowlist; None leaves tools unrestricted.
        model: Optional model id override.
        resume: Agent session handle to continue, if the thread has one.
    """

    cwd: str
    permission_mode: PermissionMode = "default"
    allowed_tools: list[str] | None = None
    model: str | None = None
    resume: str | None = None

    def to_sdk_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for `claude_agent_sdk.ClaudeAgentOptions`."""
        kwargs: dict[str, Any] = {
            "cwd": self.cwd,
            "permission_mode": self.permission_mode,
        }
        if self.allowed_tools is not None:
            kwargs["allowed_tools"] = list(self.allowed_tools)
        if self.model:
            kwargs["model"] = self.model
        if self.resume:
            kwargs["resume"] = self.resume
        return kwargs


class AgentQueryService(ABC):
    """Streaming agent backend driven by the turn manager."""

    @abstractmethod
    def stream(
        self,
        prompt: str,
        options: AgentQueryOptions,
        token: CancellationToken,
    ) -> AsyncIterator[Any]:
        """Yield agent messages for one prompt until a terminal message.

        Implementations may stop early once `token` is cancelled and may
        raise to abort the turn.
        """
        raise NotImplementedError


class ClaudeAgentQueryService(AgentQueryService):
    """Agent query service backed by `claude_agent_sdk.query`."""

    def __init__(self, *, cli_path: str | None = None) -> None:
        self._cli_path = cli_path

    async def stream(
        self,
        prompt: str,
        options: AgentQueryOptions,
        token: CancellationToken,
    ) -> AsyncIterator[Any]:
        # Imported lazily so the bridge can run against other services
        # without the SDK's CLI being present.
        from claude_agent_sdk import ClaudeAgentOptions, query

        kwargs = options.to_sdk_kwargs()
        kwargs["stderr"] = _log_agent_stderr
        if self._cli_path:
            kwargs["cli_path"] = self._cli_path
        logger.debug(
            "starting agent query cwd=%s mode=%s tools=%s resume=%s",
            options.cwd,
            options.permission_mode,
            options.allowed_tools,
            options.resume,
        )

        messages = query(prompt=prompt, options=ClaudeAgentOptions(**kwargs))
        try:
            async for message in messages:
                yield message
                if token.cancelled:
                    return
        finally:
            aclose = getattr(messages, "aclose", None)
            if aclose is not None:
                await aclose()


def _log_agent_stderr(line: str) -> None:
    logger.debug("agent stderr: %s", line.rstrip())
