"""WebSocket client wrapper for CodeGame sockets."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import (
    CodeGameConnectionError,
    CodeGameStateError,
)
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

NORMAL_CLOSURE = 1000


class CodeGameWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class CodeGameWsMessage:
    """Normalized WebSocket message payload."""

    type: CodeGameWsMessageType
    data: str | None = None


class CodeGameWsClient:
    """Wrapper around the websockets library for CodeGame sockets."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    async def connect(
        self,
        url: str,
        *,
        ping_interval: float | None = 20,
        timeout: float | None = None,
    ) -> None:
        """Connect to the game server websocket."""
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self, reason: str = "Connection closed.") -> None:
        """Close the websocket with a normal-closure handshake."""
        if self._ws is not None:
            await self._ws.close(code=NORMAL_CLOSURE, reason=reason)

    async def send_text(self, text: str) -> None:
        """Send an already encoded text frame."""
        if self._ws is None:
            raise CodeGameStateError("WebSocket is not connected")
        try:
            await self._ws.send(text)
        except (OSError, WebSocketException) as err:
            raise CodeGameConnectionError("Failed to send frame") from err

    def __aiter__(self) -> AsyncIterator[CodeGameWsMessage]:
        if self._ws is None:
            raise CodeGameStateError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[CodeGameWsMessage]:
        if self._ws is None:
            raise CodeGameStateError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                normalized = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
        except ConnectionClosed:
            yield CodeGameWsMessage(type=CodeGameWsMessageType.CLOSED)
        except (OSError, WebSocketException):
            yield CodeGameWsMessage(type=CodeGameWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield CodeGameWsMessage(type=CodeGameWsMessageType.CLOSED)

    @staticmethod
    def _normalize_message(msg: Any) -> CodeGameWsMessage | None:
        """Normalize frames into CodeGameWsMessage; binary frames are dropped."""
        if isinstance(msg, str):
            return CodeGameWsMessage(CodeGameWsMessageType.TEXT, msg)
        return None
