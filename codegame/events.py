"""Event callback registry.

Handlers are registered per event name together with the payload type they
expect. The decoder for that type is chosen once, at registration, so dispatch
never has to look types up by name.
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
import threading
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .errors import CodeGameDecodingError

_LOGGER = logging.getLogger(__name__)

Decoder = Callable[[Any], Any]
EventHandler = Callable[[Any], Awaitable[None] | None]


def _identity(data: Any) -> Any:
    return data


def _dataclass_decoder(cls: type) -> Decoder:
    field_names = {field.name for field in dataclasses.fields(cls) if field.init}

    def decode(data: Any) -> Any:
        if not isinstance(data, Mapping):
            raise CodeGameDecodingError(
                f"Expected an object for {cls.__name__}, got {type(data).__name__}"
            )
        return cls(**{key: value for key, value in data.items() if key in field_names})

    return decode


def decoder_for(payload_type: Any) -> Decoder:
    """Pick the decode function for a payload type.

    ``None`` passes the raw JSON value through. Types with a ``from_dict``
    classmethod use it, dataclasses are built from the mapping (unknown keys
    are ignored), and any other callable is called with the raw value.
    """
    if payload_type is None:
        return _identity
    from_dict = getattr(payload_type, "from_dict", None)
    if callable(from_dict):
        return from_dict
    if isinstance(payload_type, type) and dataclasses.is_dataclass(payload_type):
        return _dataclass_decoder(payload_type)
    if callable(payload_type):
        return payload_type
    raise TypeError(f"Unsupported payload type: {payload_type!r}")


@dataclass(frozen=True, slots=True)
class _Callback:
    handle: uuid.UUID
    handler: EventHandler
    payload_type: Any
    decoder: Decoder
    once: bool


class EventRegistry:
    """Maps event names to ordered handler collections."""

    def __init__(self) -> None:
        self._callbacks: dict[str, dict[uuid.UUID, _Callback]] = {}
        self._lock = threading.Lock()

    def register(
        self,
        event_name: str,
        handler: EventHandler,
        *,
        payload_type: Any = None,
        once: bool = False,
    ) -> uuid.UUID:
        """Register ``handler`` for ``event_name`` and return its handle.

        Args:
            event_name: Name of the event as sent by the server
            handler: Function or coroutine function receiving the decoded data
            payload_type: Shape to decode ``data`` into, see ``decoder_for``
            once: Remove the handler after its first invocation
        """
        callback = _Callback(
            handle=uuid.uuid4(),
            handler=handler,
            payload_type=payload_type,
            decoder=decoder_for(payload_type),
            once=once,
        )
        with self._lock:
            self._callbacks.setdefault(event_name, {})[callback.handle] = callback
        return callback.handle

    def remove(self, event_name: str, handle: uuid.UUID) -> None:
        """Remove a handler; unknown names and handles are ignored."""
        with self._lock:
            callbacks = self._callbacks.get(event_name)
            if callbacks is None:
                return
            callbacks.pop(handle, None)
            if not callbacks:
                del self._callbacks[event_name]

    def has_handlers(self, event_name: str) -> bool:
        with self._lock:
            return bool(self._callbacks.get(event_name))

    def clear(self) -> None:
        with self._lock:
            self._callbacks.clear()

    async def dispatch(self, event_name: str, data: Any) -> int:
        """Deliver ``data`` to every handler registered for ``event_name``.

        Returns the number of handlers invoked. Nothing is decoded when no one
        listens. Handler failures are logged and do not stop delivery.

        Raises:
            CodeGameDecodingError: If ``data`` does not fit a registered
                payload type. No handler is invoked in that case.
        """
        with self._lock:
            selected = list(self._callbacks.get(event_name, {}).values())
        if not selected:
            return 0

        decoded: dict[int, Any] = {}
        for callback in selected:
            key = id(callback.payload_type)
            if key in decoded:
                continue
            try:
                decoded[key] = callback.decoder(data)
            except CodeGameDecodingError:
                raise
            except (TypeError, ValueError, KeyError, AttributeError) as err:
                raise CodeGameDecodingError(
                    f"Invalid payload for event '{event_name}': {err}"
                ) from err

        for callback in selected:
            try:
                result = callback.handler(decoded[id(callback.payload_type)])
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _LOGGER.exception("Handler for event '%s' failed", event_name)
            finally:
                if callback.once:
                    self.remove(event_name, callback.handle)

        return len(selected)
