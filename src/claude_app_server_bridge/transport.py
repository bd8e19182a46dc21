from __future__ import annotations

import asyncio
import logging
import sys
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, BinaryIO

import websockets

from .errors import BridgeFrameTooLargeError, BridgeTransportError
from .protocol import encode_frame

logger = logging.getLogger(__name__)

# Upper bound for one inbound line; agent prompts can carry large pastes.
MAX_LINE_BYTES = 16 * 1024 * 1024


class Transport(ABC):
    """Abstract duplex channel carrying one JSON frame per message."""

    @abstractmethod
    async def connect(self) -> None:
        """Open transport resources."""
        raise NotImplementedError

    @abstractmethod
    async def send(self, payload: Mapping[str, Any]) -> None:
        """Send one JSON-serializable frame."""
        raise NotImplementedError

    @abstractmethod
    async def recv(self) -> str | None:
        """Receive the raw text of one inbound frame, or None once the peer closed."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Close transport resources."""
        raise NotImplementedError


class StdioTransport(Transport):
    """Newline-delimited JSON over this process's stdin/stdout."""

    def __init__(
        self,
        *,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
    ) -> None:
        """Configure stdio transport.

        Args:
            stdin: Binary stream to read frames from (defaults to sys.stdin).
            stdout: Binary stream to write frames to (defaults to sys.stdout).
        """
        self._stdin = stdin if stdin is not None else sys.stdin.buffer
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._direct_writes = False

    async def connect(self) -> None:
        """Attach asyncio pipes to stdin and stdout if not already attached."""
        if self._reader is not None:
            return
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=MAX_LINE_BYTES)
        protocol = asyncio.StreamReaderProtocol(reader)
        try:
            await loop.connect_read_pipe(lambda: protocol, self._stdin)
        except Exception as exc:
            raise BridgeTransportError("failed to attach stdio transport") from exc

        try:
            write_transport, write_protocol = await loop.connect_write_pipe(
                asyncio.streams.FlowControlMixin, self._stdout
            )
        except (OSError, ValueError) as exc:
            # Regular files and in-memory streams cannot back a write pipe.
            logger.debug("stdout is not a pipe (%s); writing directly", exc)
            self._direct_writes = True
        else:
            self._writer = asyncio.StreamWriter(write_transport, write_protocol, None, loop)
        self._reader = reader

    async def send(self, payload: Mapping[str, Any]) -> None:
        """Write one JSON line to stdout."""
        data = encode_frame(dict(payload)).encode("utf-8")
        try:
            if self._writer is not None:
                self._writer.write(data)
                await self._writer.drain()
            elif self._direct_writes:
                self._stdout.write(data)
                self._stdout.flush()
            else:
                raise BridgeTransportError("stdio transport is not connected")
        except (OSError, ValueError) as exc:
            raise BridgeTransportError("failed writing to stdio transport") from exc

    async def recv(self) -> str | None:
        """Read the next non-empty line from stdin.

        Raises:
            BridgeFrameTooLargeError: the line exceeded `MAX_LINE_BYTES`; it
                has been discarded and the next call keeps reading.
        """
        if self._reader is None:
            raise BridgeTransportError("stdio transport is not connected")
        while True:
            try:
                line = await self._reader.readline()
            except (asyncio.LimitOverrunError, ValueError) as exc:
                raise BridgeFrameTooLargeError(
                    f"inbound line exceeds {MAX_LINE_BYTES} bytes"
                ) from exc
            except Exception as exc:
                raise BridgeTransportError("failed reading from stdio transport") from exc
            if not line:
                return None
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                return text

    async def close(self) -> None:
        """Detach the stdin reader and close the stdout pipe."""
        self._reader = None
        self._direct_writes = False
        if self._writer is None:
            return
        writer = self._writer
        self._writer = None
        writer.close()


class WebSocketTransport(Transport):
    """One accepted websocket connection; each text message is one frame."""

    def __init__(self, socket: Any) -> None:
        self._socket = socket

    async def connect(self) -> None:
        """Accepted connections are already open."""
        return None

    async def send(self, payload: Mapping[str, Any]) -> None:
        """Send one JSON text frame over websocket."""
        if self._socket is None:
            raise BridgeTransportError("websocket transport is closed")
        try:
            await self._socket.send(encode_frame(dict(payload)).rstrip("\n"))
        except Exception as exc:
            raise BridgeTransportError("failed writing to websocket transport") from exc

    async def recv(self) -> str | None:
        """Receive the next non-empty text frame."""
        if self._socket is None:
            return None
        while True:
            try:
                message = await self._socket.recv()
            except websockets.ConnectionClosed:
                return None
            except Exception as exc:
                raise BridgeTransportError(
                    "failed reading from websocket transport"
                ) from exc

            if isinstance(message, (bytes, bytearray)):
                text = message.decode("utf-8", errors="replace")
            else:
                text = str(message)
            text = text.strip()
            if text:
                return text

    async def close(self) -> None:
        """Close websocket connection."""
        if self._socket is None:
            return
        socket = self._socket
        self._socket = None
        try:
            await socket.close()
        except Exception:
            pass
