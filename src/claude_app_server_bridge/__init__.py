__version__ = "0.1.0"

from .agent import (  # noqa: E402
    AgentQueryOptions,
    AgentQueryService,
    CancellationToken,
    ClaudeAgentQueryService,
)
from .config import BridgeConfig  # noqa: E402
from .errors import (  # noqa: E402
    BridgeError,
    BridgeFrameTooLargeError,
    BridgeInvalidParamsError,
    BridgeProtocolError,
    BridgeTransportError,
    IllegalTurnTransitionError,
)
from .models import McpServerStatus, ModelInfo, Thread  # noqa: E402
from .server import BridgeServer, serve_websocket  # noqa: E402
from .threads import ThreadRegistry  # noqa: E402
from .transport import StdioTransport, Transport, WebSocketTransport  # noqa: E402
from .turns import TurnManager, TurnState  # noqa: E402

__all__ = [
    "AgentQueryOptions",
    "AgentQueryService",
    "BridgeConfig",
    "BridgeError",
    "BridgeFrameTooLargeError",
    "BridgeInvalidParamsError",
    "BridgeProtocolError",
    "BridgeServer",
    "BridgeTransportError",
    "CancellationToken",
    "ClaudeAgentQueryService",
    "IllegalTurnTransitionError",
    "McpServerStatus",
    "ModelInfo",
    "StdioTransport",
    "Thread",
    "ThreadRegistry",
    "Transport",
    "TurnManager",
    "TurnState",
    "WebSocketTransport",
    "serve_websocket",
]
