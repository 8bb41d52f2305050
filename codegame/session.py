"""Persisted player sessions used to reconnect after a restart.

A session file lives at
``<user data dir>/codegame/games/<escaped address>/<escaped username>.json``
and holds exactly ``game_id``, ``player_id`` and ``player_secret``. The address
and username are encoded in the path and are not repeated inside the file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote, unquote

import platformdirs

from .errors import CodeGameDecodingError, CodeGameSessionError, CodeGameStateError

_LOGGER = logging.getLogger(__name__)

_SESSION_KEYS = ("game_id", "player_id", "player_secret")
_SUFFIX = ".json"


def default_games_dir() -> Path:
    """Return the per-user directory holding all stored sessions."""
    return Path(platformdirs.user_data_dir()) / "codegame" / "games"


def escape_component(value: str) -> str:
    """Escape a single path component so it cannot traverse or collide."""
    escaped = quote(value, safe="")
    if escaped in {".", ".."}:
        return escaped.replace(".", "%2E")
    return escaped


@dataclass(slots=True)
class Session:
    """Credentials letting a client reconnect as the same player."""

    game_url: str = ""
    username: str = ""
    game_id: str = ""
    player_id: str = ""
    player_secret: str = ""

    @property
    def is_complete(self) -> bool:
        return all(
            (
                self.game_url,
                self.username,
                self.game_id,
                self.player_id,
                self.player_secret,
            )
        )


class SessionStore:
    """Loads, saves and removes session files under a root directory."""

    def __init__(self, root: str | os.PathLike[str] | None = None) -> None:
        self._root = Path(root) if root is not None else default_games_dir()

    @property
    def root(self) -> Path:
        return self._root

    def _game_dir(self, game_url: str) -> Path:
        return self._root / escape_component(game_url)

    def path_for(self, game_url: str, username: str) -> Path:
        """Return the deterministic file path for (game_url, username)."""
        return self._game_dir(game_url) / (escape_component(username) + _SUFFIX)

    def save(self, session: Session) -> None:
        """Write the session to disk, replacing any previous file.

        Raises:
            CodeGameStateError: If any field of the session is empty.
            CodeGameSessionError: If the file cannot be written.
        """
        if not session.is_complete:
            raise CodeGameStateError("The session is not complete.")

        directory = self._game_dir(session.game_url)
        path = self.path_for(session.game_url, session.username)
        data = {
            "game_id": session.game_id,
            "player_id": session.player_id,
            "player_secret": session.player_secret,
        }

        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                    json.dump(data, tmp)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as err:
            raise CodeGameSessionError(f"Failed to write session file {path}") from err

        _LOGGER.debug("[%s] Saved session for %s", session.game_url, session.username)

    def load(self, game_url: str, username: str) -> Session:
        """Read a stored session.

        Raises:
            CodeGameSessionError: If the file is missing or unreadable.
            CodeGameDecodingError: If the file is not a valid session file.
        """
        path = self.path_for(game_url, username)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as err:
            raise CodeGameSessionError(f"Failed to read session file {path}") from err

        try:
            data = json.loads(raw)
        except ValueError as err:
            raise CodeGameDecodingError("Invalid session file.") from err

        if not isinstance(data, dict) or not all(
            isinstance(data.get(key), str) for key in _SESSION_KEYS
        ):
            raise CodeGameDecodingError("Invalid session file.")

        return Session(
            game_url=game_url,
            username=username,
            game_id=data["game_id"],
            player_id=data["player_id"],
            player_secret=data["player_secret"],
        )

    def remove(self, session: Session) -> None:
        """Delete the session file, and its directory once empty.

        Raises:
            CodeGameSessionError: If the file or directory cannot be deleted.
        """
        if not session.game_url:
            return

        directory = self._game_dir(session.game_url)
        path = self.path_for(session.game_url, session.username)
        try:
            path.unlink(missing_ok=True)
            if directory.is_dir() and not any(directory.iterdir()):
                directory.rmdir()
        except OSError as err:
            raise CodeGameSessionError(f"Failed to remove session file {path}") from err

        _LOGGER.debug("[%s] Removed session for %s", session.game_url, session.username)

    def usernames(self, game_url: str) -> list[str]:
        """List usernames with a stored session for ``game_url``."""
        directory = self._game_dir(game_url)
        if not directory.is_dir():
            return []
        names: list[str] = []
        for entry in sorted(directory.glob("*" + _SUFFIX)):
            names.append(unquote(entry.name[: -len(_SUFFIX)]))
        return names
