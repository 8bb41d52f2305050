"""Pytest configuration and fixtures for codegame tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from codegame.api import CodeGameApi
from codegame.session import SessionStore
from codegame.ws_client import CodeGameWsMessage, CodeGameWsMessageType


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


@pytest.fixture
def store(tmp_path) -> SessionStore:
    """Session store rooted in a temporary directory."""
    return SessionStore(tmp_path / "games")


@pytest.fixture
def api(mock_session: MagicMock) -> CodeGameApi:
    """Plain-HTTP API client for localhost:8080 backed by the mock session."""
    return CodeGameApi(mock_session, "localhost:8080", tls=False)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to serialize and return from text()
        text_data: Raw data to return from text()

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.text.return_value = json.dumps(json_data)
    elif text_data is not None:
        response.text.return_value = text_data
    else:
        response.text.return_value = ""

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class FakeWsClient:
    """In-memory stand-in for CodeGameWsClient driven by the test."""

    def __init__(self) -> None:
        self.connect = AsyncMock(side_effect=self._connect)
        self.url: str | None = None
        self.sent: list[str] = []
        self.closed = False
        self._queue: asyncio.Queue[CodeGameWsMessage] = asyncio.Queue()

    async def _connect(self, url: str, **kwargs: Any) -> None:
        self.url = url

    @property
    def is_connected(self) -> bool:
        return self.url is not None and not self.closed

    async def send_text(self, text: str) -> None:
        self.sent.append(text)

    async def close(self, reason: str = "Connection closed.") -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(CodeGameWsMessage(CodeGameWsMessageType.CLOSED))

    def feed(self, frame: Any) -> None:
        """Queue an inbound text frame; dicts are JSON encoded."""
        text = frame if isinstance(frame, str) else json.dumps(frame)
        self._queue.put_nowait(CodeGameWsMessage(CodeGameWsMessageType.TEXT, text))

    def feed_close(self) -> None:
        self._queue.put_nowait(CodeGameWsMessage(CodeGameWsMessageType.CLOSED))

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        while True:
            msg = await self._queue.get()
            yield msg
            if msg.type is not CodeGameWsMessageType.TEXT:
                return


async def drain(ws: FakeWsClient) -> None:
    """Let the listener task consume everything queued so far."""
    for _ in range(50):
        if ws._queue.empty():
            break
        await asyncio.sleep(0)
    await asyncio.sleep(0.01)
