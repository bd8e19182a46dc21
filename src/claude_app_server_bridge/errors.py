from __future__ import annotations

from typing import Any

from .protocol import INVALID_PARAMS


class BridgeError(Exception):
    """Base exception for the claude-app-server-bridge package."""


class BridgeTransportError(BridgeError):
    """Raised when the underlying transport fails or disconnects unexpectedly."""


class BridgeProtocolError(BridgeError):
    """Raised by a handler to reply with a specific JSON-RPC error."""

    def __init__(
        self,
        message: str,
        *,
        code: int,
        data: Any = None,
    ) -> None:
        """Create a protocol error.

        Args:
            message: Human-readable description sent to the peer.
            code: JSON-RPC error code.
            data: Optional error payload.
        """
        super().__init__(message)
        self.code = code
        self.data = data


class BridgeInvalidParamsError(BridgeProtocolError):
    """Raised when request params reference unknown state or are unusable."""

    def __init__(self, message: str, *, data: Any = None) -> None:
        super().__init__(message, code=INVALID_PARAMS, data=data)


class IllegalTurnTransitionError(BridgeError):
    """Raised when a turn is moved to a state its current state cannot reach."""


class BridgeFrameTooLargeError(BridgeError):
    """Raised when one inbound frame exceeds the transport's size limit.

    The oversized data has already been discarded, so reading can continue.
    """
