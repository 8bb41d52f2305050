"""Debug message stream from a CodeGame server, game or player."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import threading
import uuid
from collections.abc import Awaitable, Callable
from enum import Enum
from urllib.parse import quote

import aiohttp

from .api import CodeGameApi
from .errors import CodeGameDecodingError, CodeGameError, CodeGameStateError
from .ws_client import CodeGameWsClient, CodeGameWsMessageType

_LOGGER = logging.getLogger(__name__)

DebugCallback = Callable[["DebugSeverity", str, "str | None"], Awaitable[None] | None]


class DebugSeverity(Enum):
    """Severity of a debug message."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    TRACE = "trace"


def _flag(value: bool) -> str:
    return "true" if value else "false"


class DebugSocket:
    """Receives debug messages; never sends anything."""

    def __init__(
        self,
        api: CodeGameApi,
        *,
        ping_interval: float | None = 20,
        connect_timeout: float | None = None,
        owns_http_session: bool = False,
    ) -> None:
        self._api = api
        self._ping_interval = ping_interval
        self._connect_timeout = connect_timeout
        self._owns_http_session = owns_http_session

        self._severities = {
            DebugSeverity.TRACE: False,
            DebugSeverity.INFO: True,
            DebugSeverity.WARNING: True,
            DebugSeverity.ERROR: True,
        }
        self._ws: CodeGameWsClient | None = None
        self._listen_task: asyncio.Task[None] | None = None
        self._closed = asyncio.Event()
        self._callbacks: dict[uuid.UUID, DebugCallback] = {}
        self._lock = threading.Lock()

    @classmethod
    async def create(
        cls,
        url: str,
        *,
        http_session: aiohttp.ClientSession | None = None,
        ping_interval: float | None = 20,
        connect_timeout: float | None = None,
        request_timeout: float | None = None,
    ) -> DebugSocket:
        """Resolve ``url`` and verify it points to a CodeGame server.

        Raises:
            ValueError: If the server cannot be reached or does not answer
                like a CodeGame server.
        """
        owns_http_session = http_session is None
        if http_session is None:
            http_session = aiohttp.ClientSession()

        try:
            api = await CodeGameApi.create(http_session, url, timeout=request_timeout)
            await api.fetch_info()
        except CodeGameError as err:
            if owns_http_session:
                await http_session.close()
            raise ValueError(
                "The provided URL does not point to a valid CodeGame game server."
            ) from err
        except BaseException:
            if owns_http_session:
                await http_session.close()
            raise

        return cls(
            api,
            ping_interval=ping_interval,
            connect_timeout=connect_timeout,
            owns_http_session=owns_http_session,
        )

    @property
    def api(self) -> CodeGameApi:
        return self._api

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    def set_severities(
        self,
        trace: bool = False,
        info: bool = True,
        warning: bool = True,
        error: bool = True,
    ) -> None:
        """Choose which severities the server should send.

        Raises:
            CodeGameStateError: If a connection was already opened.
        """
        if self._ws is not None or self._closed.is_set():
            raise CodeGameStateError(
                "Cannot set severities after a connection has been established."
            )
        self._severities = {
            DebugSeverity.TRACE: trace,
            DebugSeverity.INFO: info,
            DebugSeverity.WARNING: warning,
            DebugSeverity.ERROR: error,
        }

    def on_message(self, callback: DebugCallback) -> uuid.UUID:
        """Register a callback receiving (severity, message, data)."""
        handle = uuid.uuid4()
        with self._lock:
            self._callbacks[handle] = callback
        return handle

    def remove_callback(self, handle: uuid.UUID) -> None:
        with self._lock:
            self._callbacks.pop(handle, None)

    async def debug_server(self) -> None:
        """Stream debug messages of the whole server."""
        await self._open("/api/debug")

    async def debug_game(self, game_id: str) -> None:
        """Stream debug messages of one game."""
        await self._open(f"/api/games/{quote(game_id, safe='')}/debug")

    async def debug_player(
        self, game_id: str, player_id: str, player_secret: str
    ) -> None:
        """Stream debug messages of one player."""
        await self._open(
            f"/api/games/{quote(game_id, safe='')}"
            f"/players/{quote(player_id, safe='')}/debug",
            player_secret=player_secret,
        )

    async def wait(self) -> None:
        """Wait until the connection is closed."""
        await self._closed.wait()

    async def close(self) -> None:
        """Close the connection. Idempotent.

        If never connected, only an owned HTTP session is released.
        """
        ws = self._ws
        if ws is None:
            await self._release_http_session()
            return
        self._ws = None

        try:
            await ws.close()
        except CodeGameError as err:
            _LOGGER.debug(
                "[%s] Error while closing debug socket: %s", self._api.address, err
            )

        task = self._listen_task
        self._listen_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._mark_closed()

    async def _open(self, path: str, **query: str) -> None:
        if self._ws is not None or self._closed.is_set():
            raise CodeGameStateError("The debug socket is already connected.")

        for severity, enabled in self._severities.items():
            query[severity.value] = _flag(enabled)
        url = self._api.websocket_url(path, **query)

        ws = CodeGameWsClient()
        await ws.connect(
            url, ping_interval=self._ping_interval, timeout=self._connect_timeout
        )
        self._ws = ws
        self._listen_task = asyncio.create_task(self._listen(ws))
        _LOGGER.info("[%s] Debug socket connected to %s", self._api.address, path)

    async def _mark_closed(self) -> None:
        self._closed.set()
        await self._release_http_session()

    async def _release_http_session(self) -> None:
        if self._owns_http_session:
            self._owns_http_session = False
            await self._api.session.close()

    async def _listen(self, ws: CodeGameWsClient) -> None:
        try:
            async for msg in ws:
                if msg.type is CodeGameWsMessageType.TEXT and msg.data is not None:
                    await self._handle_message(msg.data)
                elif msg.type is not CodeGameWsMessageType.TEXT:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as err:
            _LOGGER.exception(
                "[%s] Unexpected debug listener error: %s", self._api.address, err
            )
        finally:
            if self._ws is ws:
                self._ws = None
                self._listen_task = None
                await self._mark_closed()

    async def _handle_message(self, text: str) -> None:
        try:
            severity, message, data = parse_debug_message(text)
        except CodeGameDecodingError as err:
            _LOGGER.warning(
                "[%s] Dropped invalid debug message: %s", self._api.address, err
            )
            return

        with self._lock:
            callbacks = list(self._callbacks.values())
        for callback in callbacks:
            try:
                result = callback(severity, message, data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _LOGGER.exception("[%s] Debug callback failed", self._api.address)


def parse_debug_message(text: str) -> tuple[DebugSeverity, str, str | None]:
    """Decode a debug frame into (severity, message, data as JSON text).

    Raises:
        CodeGameDecodingError: On invalid JSON, unknown severity or a missing
            message.
    """
    try:
        frame = json.loads(text)
    except ValueError as err:
        raise CodeGameDecodingError(f"Invalid debug message: {err}") from err
    if not isinstance(frame, dict):
        raise CodeGameDecodingError("Debug message is not a JSON object")

    try:
        severity = DebugSeverity(frame.get("severity"))
    except ValueError as err:
        raise CodeGameDecodingError("Unknown severity.") from err

    message = frame.get("message")
    if not isinstance(message, str):
        raise CodeGameDecodingError("Missing message property.")

    data = json.dumps(frame["data"]) if "data" in frame else None
    return severity, message, data
