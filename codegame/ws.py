"""WebSocket helpers for CodeGame server connections."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from .errors import (
    CodeGameConnectionError,
    CodeGameHandshakeError,
    CodeGameTimeout,
)


async def connect_websocket(
    url: str,
    *,
    ping_interval: float | None = 20,
    timeout: float | None = None,
) -> ClientConnection:
    """Open a WebSocket connection to ``url``.

    Uses the websockets library which implements RFC 6455 frame masking.
    Without a ``timeout`` the handshake may block indefinitely; callers that
    need a deadline pass one explicitly.

    Args:
        url: Full ws:// or wss:// URL including path and query
        ping_interval: Interval for keepalive ping frames
        timeout: Handshake timeout, None for no limit
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise CodeGameTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise CodeGameHandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise CodeGameConnectionError("WebSocket connection failed") from err
