"""Connection runtime for CodeGame game servers.

A ``GameSocket`` owns one WebSocket connection to a game, either as a player
(who may send commands) or as a spectator (who only receives events). Inbound
frames are routed by event name to the handlers registered with ``on``.

Usage:
    socket = await GameSocket.create("games.example.com")
    socket.on("move", on_move, payload_type=MoveEvent)
    await socket.join(game_id, "alice")
    await socket.send("move", MoveCommand(x=1, y=2))
    await socket.wait()
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
import uuid
from enum import Enum
from typing import Any
from urllib.parse import quote

import aiohttp

from .api import CodeGameApi, GameInfo
from .errors import (
    CodeGameDecodingError,
    CodeGameError,
    CodeGameStateError,
)
from .events import EventHandler, EventRegistry
from .protocol import CG_VERSION, encode_command, is_version_compatible, parse_event
from .session import Session, SessionStore
from .ws_client import CodeGameWsClient, CodeGameWsMessageType

_LOGGER = logging.getLogger(__name__)


class SocketState(Enum):
    """Connection lifecycle states; CLOSED is terminal."""

    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class GameSocket:
    """Live connection to a CodeGame game server."""

    def __init__(
        self,
        api: CodeGameApi,
        *,
        store: SessionStore | None = None,
        info: GameInfo | None = None,
        ping_interval: float | None = 20,
        connect_timeout: float | None = None,
        owns_http_session: bool = False,
    ) -> None:
        """Initialize the socket.

        Args:
            api: Control-plane client for the server
            store: Session store used to persist player sessions
            info: Server info, if already fetched
            ping_interval: Keepalive ping interval (seconds), None disables
            connect_timeout: WebSocket handshake timeout, None for no limit
            owns_http_session: Close the API's aiohttp session on close()
        """
        self._api = api
        self._store = store if store is not None else SessionStore()
        self._info = info
        self._ping_interval = ping_interval
        self._connect_timeout = connect_timeout
        self._owns_http_session = owns_http_session

        self._state = SocketState.UNCONNECTED
        self._session = Session()
        self._ws: CodeGameWsClient | None = None
        self._listen_task: asyncio.Task[None] | None = None
        self._closed = asyncio.Event()

        self._events = EventRegistry()
        self._usernames: dict[str, str] = {}
        self._usernames_lock = threading.Lock()

    @classmethod
    async def create(
        cls,
        url: str,
        *,
        http_session: aiohttp.ClientSession | None = None,
        store: SessionStore | None = None,
        ping_interval: float | None = 20,
        connect_timeout: float | None = None,
        request_timeout: float | None = None,
    ) -> GameSocket:
        """Resolve ``url``, fetch the server info and check protocol versions.

        A protocol version mismatch is logged as a warning and reported via
        ``version_compatible``; the socket is usable either way.
        """
        owns_http_session = http_session is None
        if http_session is None:
            http_session = aiohttp.ClientSession()

        try:
            api = await CodeGameApi.create(http_session, url, timeout=request_timeout)
            info = await api.fetch_info()
        except BaseException:
            if owns_http_session:
                await http_session.close()
            raise

        if not is_version_compatible(info.cg_version, CG_VERSION):
            _LOGGER.warning(
                "[%s] Server uses protocol v%s which is incompatible with client v%s",
                api.address,
                info.cg_version,
                CG_VERSION,
            )

        return cls(
            api,
            store=store,
            info=info,
            ping_interval=ping_interval,
            connect_timeout=connect_timeout,
            owns_http_session=owns_http_session,
        )

    # -------------------------------------------------------------------------
    # Public API: Properties
    # -------------------------------------------------------------------------

    @property
    def api(self) -> CodeGameApi:
        return self._api

    @property
    def url(self) -> str:
        return self._api.address

    @property
    def info(self) -> GameInfo | None:
        return self._info

    @property
    def version_compatible(self) -> bool:
        """False if the server's protocol version does not match this client."""
        if self._info is None:
            return True
        return is_version_compatible(self._info.cg_version, CG_VERSION)

    @property
    def state(self) -> SocketState:
        return self._state

    @property
    def session(self) -> Session:
        """Copy of the current session; empty before connecting."""
        return dataclasses.replace(self._session)

    @property
    def is_connected(self) -> bool:
        return self._state is SocketState.OPEN

    @property
    def is_spectating(self) -> bool:
        return self.is_connected and not self._session.player_id

    # -------------------------------------------------------------------------
    # Public API: Events
    # -------------------------------------------------------------------------

    def on(
        self,
        event_name: str,
        handler: EventHandler,
        *,
        payload_type: Any = None,
        once: bool = False,
    ) -> uuid.UUID:
        """Register a handler for an event; returns a handle for removal."""
        return self._events.register(
            event_name, handler, payload_type=payload_type, once=once
        )

    def remove_callback(self, event_name: str, handle: uuid.UUID) -> None:
        """Remove a handler registered with ``on``."""
        self._events.remove(event_name, handle)

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def create_game(
        self, public: bool, protected: bool = False, config: Any = None
    ) -> tuple[str, str]:
        """Create a game; returns (game_id, join_secret)."""
        return await self._api.create_game(public, protected, config)

    async def join(self, game_id: str, username: str, join_secret: str = "") -> None:
        """Create a player in ``game_id`` and connect as that player."""
        self._ensure_unconnected()
        player_id, player_secret = await self._api.create_player(
            game_id, username, join_secret
        )
        await self.connect(game_id, player_id, player_secret)

    async def restore_session(self, username: str) -> None:
        """Reconnect with the session stored for ``username``.

        A session that fails to load or connect is treated as stale and
        removed before the error is re-raised.
        """
        self._ensure_unconnected()
        stale = Session(game_url=self.url, username=username)
        try:
            session = await asyncio.to_thread(self._store.load, self.url, username)
        except CodeGameDecodingError:
            await self._remove_stored(stale)
            raise

        try:
            await self.connect(
                session.game_id, session.player_id, session.player_secret
            )
        except BaseException:
            await self._remove_stored(session)
            raise

    async def connect(self, game_id: str, player_id: str, player_secret: str) -> None:
        """Connect to a game as an existing player."""
        path = f"/api/games/{quote(game_id, safe='')}/connect"
        url = self._api.websocket_url(
            path, player_id=player_id, player_secret=player_secret
        )
        await self._open(url, game_id, player_id, player_secret)

        session = self.session
        try:
            await asyncio.to_thread(self._store.save, session)
        except CodeGameError as err:
            _LOGGER.warning("[%s] Failed to save session: %s", self.url, err)

    async def spectate(self, game_id: str) -> None:
        """Connect to a game as a spectator. Spectator sessions are not saved."""
        url = self._api.websocket_url(
            f"/api/games/{quote(game_id, safe='')}/spectate"
        )
        await self._open(url, game_id, "", "")

    async def wait(self) -> None:
        """Wait until the connection is closed. Any number of tasks may wait."""
        await self._closed.wait()

    async def close(self) -> None:
        """Close the connection with a normal-closure handshake. Idempotent.

        On a socket that never connected the state is left alone, but an
        owned HTTP session is still released.
        """
        if self._state is SocketState.UNCONNECTED:
            await self._release_http_session()
            return
        if self._state is SocketState.CLOSED:
            return

        _LOGGER.info("[%s] Closing connection", self.url)
        self._set_state(SocketState.CLOSED)
        ws = self._ws
        self._ws = None
        if ws is not None:
            try:
                await ws.close()
            except CodeGameError as err:
                _LOGGER.debug("[%s] Error while closing: %s", self.url, err)

        task = self._listen_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._listen_task = None

        await self._mark_closed()

    async def send(self, command_name: str, data: Any) -> None:
        """Send a command to the server.

        Raises:
            CodeGameStateError: If not connected as a player.
            CodeGameDecodingError: If ``data`` cannot be encoded.
        """
        if (
            self._state is not SocketState.OPEN
            or self._ws is None
            or not self._session.player_id
        ):
            raise CodeGameStateError("The socket is not connected to a player.")

        frame = encode_command(command_name, data)
        await self._ws.send_text(frame)
        _LOGGER.debug("[%s] Sent command '%s'", self.url, command_name)

    async def username(self, player_id: str) -> str:
        """Return the username of a player, fetching it on a cache miss.

        Raises:
            CodeGameStateError: If not connected to a game.
            CodeGameDomainError: If the player does not exist.
        """
        with self._usernames_lock:
            cached = self._usernames.get(player_id)
        if cached is not None:
            return cached

        if not self._session.game_id:
            raise CodeGameStateError("The socket is not connected to a game.")

        username = await self._api.fetch_username(self._session.game_id, player_id)
        with self._usernames_lock:
            self._usernames[player_id] = username
        return username

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _ensure_unconnected(self) -> None:
        if self._state is not SocketState.UNCONNECTED or self._session.game_url:
            raise CodeGameStateError("The socket is already connected to a game.")

    def _set_state(self, state: SocketState) -> None:
        if self._state is not state:
            _LOGGER.debug(
                "[%s] State: %s → %s", self.url, self._state.value, state.value
            )
            self._state = state

    async def _open(
        self, url: str, game_id: str, player_id: str, player_secret: str
    ) -> None:
        """Open the socket, seed the username cache and start listening.

        Any failure before the socket is OPEN closes the transport and returns
        to UNCONNECTED, unless close() was called meanwhile.
        """
        self._ensure_unconnected()
        self._set_state(SocketState.CONNECTING)

        ws = CodeGameWsClient()
        try:
            await ws.connect(
                url,
                ping_interval=self._ping_interval,
                timeout=self._connect_timeout,
            )
            self._check_not_closed()
            players = await self._api.fetch_players(game_id)
            self._check_not_closed()
            username = await self._resolve_own_username(game_id, player_id, players)
            self._check_not_closed()
        except BaseException:
            if ws.is_connected:
                await ws.close()
            if self._state is SocketState.CONNECTING:
                self._set_state(SocketState.UNCONNECTED)
            raise

        with self._usernames_lock:
            self._usernames.update(players)
            if username:
                self._usernames[player_id] = username

        self._ws = ws
        self._session = Session(
            game_url=self.url,
            username=username,
            game_id=game_id,
            player_id=player_id,
            player_secret=player_secret,
        )
        self._set_state(SocketState.OPEN)
        self._listen_task = asyncio.create_task(self._listen(ws))

        if player_id:
            _LOGGER.info(
                "[%s] Connected to game %s as %s",
                self.url,
                game_id,
                username or player_id,
            )
        else:
            _LOGGER.info("[%s] Spectating game %s", self.url, game_id)

    async def _resolve_own_username(
        self, game_id: str, player_id: str, players: dict[str, str]
    ) -> str:
        """Look the player up in the roster, asking the server if it is missing."""
        if not player_id:
            return ""
        username = players.get(player_id, "")
        if username:
            return username
        try:
            return await self._api.fetch_username(game_id, player_id)
        except CodeGameError as err:
            _LOGGER.warning("[%s] Could not resolve own username: %s", self.url, err)
            return ""

    def _check_not_closed(self) -> None:
        if self._state is SocketState.CLOSED:
            raise CodeGameStateError("The socket was closed while connecting.")

    async def _mark_closed(self) -> None:
        self._set_state(SocketState.CLOSED)
        self._closed.set()
        await self._release_http_session()

    async def _release_http_session(self) -> None:
        if self._owns_http_session:
            self._owns_http_session = False
            await self._api.session.close()

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(self, ws: CodeGameWsClient) -> None:
        """Route inbound frames until the connection closes."""
        try:
            async for msg in ws:
                if msg.type is CodeGameWsMessageType.TEXT:
                    if msg.data is not None:
                        await self._handle_message(msg.data)
                elif msg.type is CodeGameWsMessageType.CLOSED:
                    _LOGGER.info("[%s] WebSocket closed by server", self.url)
                    break
                elif msg.type is CodeGameWsMessageType.ERROR:
                    _LOGGER.error("[%s] WebSocket error", self.url)
                    break
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Listener cancelled", self.url)
            raise
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected listener error: %s", self.url, err)
        finally:
            if self._state is SocketState.OPEN:
                self._ws = None
                self._listen_task = None
                await self._mark_closed()

    async def _handle_message(self, text: str) -> None:
        """Route one text frame to the registered handlers.

        Undecodable frames and unexpected errors are logged and the frame is
        dropped; the listener keeps running.
        """
        try:
            name, data = parse_event(text)
            delivered = await self._events.dispatch(name, data)
        except CodeGameDecodingError as err:
            _LOGGER.warning("[%s] Dropped invalid frame: %s", self.url, err)
            return
        except Exception as err:
            _LOGGER.exception("[%s] Failed to dispatch frame: %s", self.url, err)
            return

        _LOGGER.debug(
            "[%s] Event '%s' delivered to %d handler(s)", self.url, name, delivered
        )

    async def _remove_stored(self, session: Session) -> None:
        try:
            await asyncio.to_thread(self._store.remove, session)
        except CodeGameError as err:
            _LOGGER.warning("[%s] Failed to remove stale session: %s", self.url, err)
