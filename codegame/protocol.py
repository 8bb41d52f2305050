"""Protocol helpers for CodeGame frames and version negotiation.

Frames are UTF-8 JSON text shaped as ``{"name": ..., "data": ...}`` in both
directions.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Mapping
from typing import Any

from .errors import CodeGameDecodingError

# Protocol version this client speaks.
CG_VERSION = "0.7"


def split_version(version: str) -> tuple[str, str]:
    """Split ``MAJOR[.MINOR[...]]`` into (major, minor); minor defaults to "0"."""
    parts = version.strip().split(".")
    major = parts[0]
    minor = parts[1] if len(parts) > 1 and parts[1] else "0"
    return major, minor


def is_version_compatible(
    server_version: str, client_version: str = CG_VERSION
) -> bool:
    """Return True if a client built for ``client_version`` can talk to the server.

    Majors must match. Pre-1.0 (major "0") versions require an exact minor
    match. Otherwise the server may be newer but never older than the client.
    Non-numeric minors only match themselves.
    """
    server_major, server_minor = split_version(server_version)
    client_major, client_minor = split_version(client_version)

    if server_major != client_major:
        return False

    if not (client_minor.isdigit() and server_minor.isdigit()):
        return client_minor == server_minor

    if client_major == "0":
        return int(client_minor) == int(server_minor)

    return int(client_minor) <= int(server_minor)


def to_jsonable(data: Any) -> Any:
    """Convert dataclass payloads into plain JSON-compatible structures."""
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        return dataclasses.asdict(data)
    return data


def encode_command(name: str, data: Any) -> str:
    """Encode an outbound command frame.

    Raises:
        CodeGameDecodingError: If the payload cannot be serialized.
    """
    try:
        return json.dumps({"name": name, "data": to_jsonable(data)})
    except (TypeError, ValueError) as err:
        raise CodeGameDecodingError(
            f"Failed to encode command '{name}': {err}"
        ) from err


def parse_event(text: str) -> tuple[str, Any]:
    """Route an inbound frame: return its event name and raw ``data`` member.

    Only the envelope is validated here; the payload is decoded into its typed
    shape later, and only if someone listens for the event.

    Raises:
        CodeGameDecodingError: If the frame is not a JSON object with a
            string ``name``.
    """
    try:
        frame = json.loads(text)
    except ValueError as err:
        raise CodeGameDecodingError(f"Invalid frame: {err}") from err

    if not isinstance(frame, Mapping):
        raise CodeGameDecodingError("Frame is not a JSON object")

    name = frame.get("name")
    if not isinstance(name, str) or not name:
        raise CodeGameDecodingError("Frame has no event name")

    return name, frame.get("data")
