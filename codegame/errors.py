"""Client error types for CodeGame server interactions."""

from __future__ import annotations


class CodeGameError(Exception):
    """Base error for CodeGame client failures."""


class CodeGameTransportError(CodeGameError):
    """Network or socket level failure."""


class CodeGameTimeout(CodeGameTransportError):
    """Timeout while communicating with the game server."""


class CodeGameConnectionError(CodeGameTransportError):
    """Network connection to the game server failed."""


class CodeGameHandshakeError(CodeGameTransportError):
    """WebSocket handshake failed."""


class CodeGameResponseError(CodeGameTransportError):
    """Non-2xx HTTP response without a server-supplied message."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class CodeGameDomainError(CodeGameError):
    """The server rejected the operation and said why."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class CodeGameDecodingError(CodeGameError, ValueError):
    """Malformed or incomplete JSON, or a value that cannot be encoded."""


class CodeGameStateError(CodeGameError):
    """Operation is not valid in the current connection state."""


class CodeGameSessionError(CodeGameError, OSError):
    """Session file could not be read, written or deleted."""
