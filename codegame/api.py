"""HTTP client for the CodeGame control-plane endpoints."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlencode

import aiohttp

from .errors import (
    CodeGameConnectionError,
    CodeGameDecodingError,
    CodeGameDomainError,
    CodeGameResponseError,
    CodeGameTimeout,
)
from .protocol import to_jsonable
from .url import compose_base_url, normalize_url, probe_tls

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GameInfo:
    """Server description returned by ``/api/info``."""

    name: str
    cg_version: str
    display_name: str | None = None
    description: str | None = None
    version: str | None = None
    repository_url: str | None = None


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) else None


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise CodeGameDecodingError("Invalid server response.")
    return value


def _error_message(body: str) -> str:
    """Extract a server-supplied error message from a plain or JSON body."""
    text = body.strip()
    if not text:
        return ""
    try:
        data = json.loads(text)
    except ValueError:
        return text
    if isinstance(data, dict):
        message = data.get("error") or data.get("message")
        if isinstance(message, str):
            return message.strip()
    return text


class CodeGameApi:
    """HTTP client wrapper for a single CodeGame server."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        address: str,
        tls: bool,
        *,
        timeout: float | None = None,
    ) -> None:
        self._session = session
        self._address = normalize_url(address)
        self._tls = tls
        self._timeout = timeout

    @classmethod
    async def create(
        cls,
        session: aiohttp.ClientSession,
        url: str,
        *,
        timeout: float | None = None,
    ) -> CodeGameApi:
        """Normalize ``url`` and probe once whether the server speaks TLS."""
        address = normalize_url(url)
        tls = await probe_tls(session, address, timeout=timeout)
        _LOGGER.debug("[%s] Resolved server (tls=%s)", address, tls)
        return cls(session, address, tls, timeout=timeout)

    @property
    def address(self) -> str:
        return self._address

    @property
    def tls(self) -> bool:
        return self._tls

    @property
    def base_url(self) -> str:
        return compose_base_url("http", self._tls, self._address)

    @property
    def session(self) -> aiohttp.ClientSession:
        return self._session

    def websocket_url(self, path: str, **query: str) -> str:
        """Build a ws[s]:// URL for ``path`` with url-encoded query parameters."""
        url = compose_base_url("ws", self._tls, self._address) + path
        if query:
            url += "?" + urlencode(query)
        return url

    def _url(self, path: str) -> str:
        return self.base_url + path

    async def _request(
        self,
        method: str,
        path: str,
        description: str,
        *,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        """Perform a request and return the decoded JSON body.

        Raises:
            CodeGameTimeout: If the request times out
            CodeGameConnectionError: If the network request fails
            CodeGameDomainError: Non-2xx status with a server message
            CodeGameResponseError: Non-2xx status without a message
            CodeGameDecodingError: If the body is not valid JSON
        """
        url = self._url(path)
        try:
            async with self._session.request(
                method,
                url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                body = await resp.text()
                status = resp.status
        except TimeoutError as err:
            raise CodeGameTimeout(f"{description} request timed out") from err
        except (aiohttp.ClientError, OSError) as err:
            raise CodeGameConnectionError(f"{description} request failed") from err

        if not 200 <= status < 300:
            message = _error_message(body)
            if message:
                raise CodeGameDomainError(status, message)
            raise CodeGameResponseError(
                status, f"{description} failed with status {status}"
            )

        try:
            return json.loads(body)
        except ValueError as err:
            raise CodeGameDecodingError("Invalid server response.") from err

    async def _request_object(
        self,
        method: str,
        path: str,
        description: str,
        *,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        data = await self._request(method, path, description, payload=payload)
        if not isinstance(data, dict):
            raise CodeGameDecodingError("Invalid server response.")
        return data

    async def fetch_info(self) -> GameInfo:
        """Fetch the server description from /api/info.

        Raises:
            CodeGameDecodingError: If name or cg_version is missing or empty.
        """
        data = await self._request_object("GET", "/api/info", "Info")
        name = data.get("name")
        cg_version = data.get("cg_version")
        if not (isinstance(name, str) and name) or not (
            isinstance(cg_version, str) and cg_version
        ):
            raise CodeGameDecodingError("Invalid server response.")
        return GameInfo(
            name=name,
            cg_version=cg_version,
            display_name=_optional_str(data, "display_name"),
            description=_optional_str(data, "description"),
            version=_optional_str(data, "version"),
            repository_url=_optional_str(data, "repository_url"),
        )

    async def fetch_game_config(self, game_id: str) -> Any:
        """Fetch the config a game was created with."""
        data = await self._request_object(
            "GET", f"/api/games/{quote(game_id, safe='')}", "Game config"
        )
        if data.get("config") is None:
            raise CodeGameDecodingError("Invalid server response.")
        return data["config"]

    async def create_game(
        self,
        public: bool,
        protected: bool = False,
        config: Any = None,
    ) -> tuple[str, str]:
        """Create a game.

        Returns:
            (game_id, join_secret); join_secret is empty unless protected.
        """
        data = await self._request_object(
            "POST",
            "/api/games",
            "Create game",
            payload={
                "public": public,
                "protected": protected,
                "config": to_jsonable(config),
            },
        )
        game_id = _require_str(data, "game_id")
        join_secret = _require_str(data, "join_secret") if protected else ""
        _LOGGER.info("[%s] Created game %s", self._address, game_id)
        return game_id, join_secret

    async def create_player(
        self,
        game_id: str,
        username: str,
        join_secret: str = "",
    ) -> tuple[str, str]:
        """Create a player in a game.

        Returns:
            (player_id, player_secret)
        """
        data = await self._request_object(
            "POST",
            f"/api/games/{quote(game_id, safe='')}/players",
            "Create player",
            payload={"username": username, "join_secret": join_secret},
        )
        return _require_str(data, "player_id"), _require_str(data, "player_secret")

    async def fetch_players(self, game_id: str) -> dict[str, str]:
        """Fetch all players of a game as player_id -> username."""
        data = await self._request_object(
            "GET", f"/api/games/{quote(game_id, safe='')}/players", "Players"
        )
        if not all(isinstance(value, str) for value in data.values()):
            raise CodeGameDecodingError("Invalid server response.")
        return data

    async def fetch_username(self, game_id: str, player_id: str) -> str:
        """Fetch the username of one player.

        Raises:
            CodeGameDomainError: If the player does not exist (HTTP 404).
        """
        path = (
            f"/api/games/{quote(game_id, safe='')}/players/{quote(player_id, safe='')}"
        )
        try:
            data = await self._request_object("GET", path, "Username")
        except (CodeGameDomainError, CodeGameResponseError) as err:
            if err.status == 404:
                raise CodeGameDomainError(404, f"Player {player_id} not found") from err
            if isinstance(err, CodeGameDomainError):
                raise CodeGameResponseError(err.status, str(err)) from err
            raise
        return _require_str(data, "username")
