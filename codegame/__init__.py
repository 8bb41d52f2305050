"""Client runtime for CodeGame game servers."""

__version__ = "0.1.0"

from .api import CodeGameApi, GameInfo
from .debug_socket import DebugSeverity, DebugSocket
from .errors import (
    CodeGameConnectionError,
    CodeGameDecodingError,
    CodeGameDomainError,
    CodeGameError,
    CodeGameHandshakeError,
    CodeGameResponseError,
    CodeGameSessionError,
    CodeGameStateError,
    CodeGameTimeout,
    CodeGameTransportError,
)
from .events import EventRegistry
from .game_socket import GameSocket, SocketState
from .protocol import CG_VERSION, is_version_compatible
from .session import Session, SessionStore
from .url import normalize_url

__all__ = [
    "CG_VERSION",
    "CodeGameApi",
    "CodeGameConnectionError",
    "CodeGameDecodingError",
    "CodeGameDomainError",
    "CodeGameError",
    "CodeGameHandshakeError",
    "CodeGameResponseError",
    "CodeGameSessionError",
    "CodeGameStateError",
    "CodeGameTimeout",
    "CodeGameTransportError",
    "DebugSeverity",
    "DebugSocket",
    "EventRegistry",
    "GameInfo",
    "GameSocket",
    "Session",
    "SessionStore",
    "SocketState",
    "__version__",
    "is_version_compatible",
    "normalize_url",
]
