"""Tests for the event callback registry."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from unittest.mock import MagicMock

import pytest

from codegame.errors import CodeGameDecodingError
from codegame.events import EventRegistry, decoder_for


@dataclass
class TurnEvent:
    player_id: str
    round: int = 0


class ScoreEvent:
    """Payload type with its own decoder."""

    def __init__(self, points: int) -> None:
        self.points = points

    @classmethod
    def from_dict(cls, data: dict) -> ScoreEvent:
        return cls(points=int(data["points"]))


class TestDecoderFor:
    """Tests for decoder_for()."""

    def test_none_passes_raw_value(self) -> None:
        assert decoder_for(None)({"a": 1}) == {"a": 1}

    def test_dataclass_ignores_unknown_keys(self) -> None:
        event = decoder_for(TurnEvent)({"player_id": "p1", "round": 3, "extra": True})
        assert event == TurnEvent(player_id="p1", round=3)

    def test_dataclass_requires_mapping(self) -> None:
        with pytest.raises(CodeGameDecodingError):
            decoder_for(TurnEvent)(["p1"])

    def test_from_dict_is_preferred(self) -> None:
        assert decoder_for(ScoreEvent)({"points": "7"}).points == 7

    def test_plain_callable(self) -> None:
        assert decoder_for(str)(5) == "5"

    def test_unsupported_type(self) -> None:
        with pytest.raises(TypeError):
            decoder_for(42)


class TestEventRegistry:
    """Tests for EventRegistry registration and dispatch."""

    @pytest.mark.asyncio
    async def test_dispatch_decodes_payload(self) -> None:
        registry = EventRegistry()
        handler = MagicMock()
        registry.register("turn", handler, payload_type=TurnEvent)

        delivered = await registry.dispatch("turn", {"player_id": "p1", "round": 2})

        assert delivered == 1
        handler.assert_called_once_with(TurnEvent(player_id="p1", round=2))

    @pytest.mark.asyncio
    async def test_handlers_run_in_registration_order(self) -> None:
        registry = EventRegistry()
        calls: list[str] = []
        registry.register("turn", lambda data: calls.append("first"))

        async def second(data) -> None:
            calls.append("second")

        registry.register("turn", second)
        registry.register("turn", lambda data: calls.append("third"))

        await registry.dispatch("turn", {})

        assert calls == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_once_handler_fires_exactly_once(self) -> None:
        registry = EventRegistry()
        handler = MagicMock()
        handle = registry.register("turn", handler, once=True)

        await registry.dispatch("turn", {"player_id": "p1"})
        await registry.dispatch("turn", {"player_id": "p2"})

        handler.assert_called_once_with({"player_id": "p1"})
        assert not registry.has_handlers("turn")
        # Removing after it fired is a no-op
        registry.remove("turn", handle)

    @pytest.mark.asyncio
    async def test_once_removal_does_not_disturb_other_handlers(self) -> None:
        registry = EventRegistry()
        once = MagicMock()
        always = MagicMock()
        registry.register("turn", once, once=True)
        registry.register("turn", always)

        await registry.dispatch("turn", 1)
        await registry.dispatch("turn", 2)

        once.assert_called_once_with(1)
        assert [call.args[0] for call in always.call_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_remove(self) -> None:
        registry = EventRegistry()
        handler = MagicMock()
        handle = registry.register("turn", handler)

        registry.remove("turn", handle)
        await registry.dispatch("turn", {})

        handler.assert_not_called()

    def test_remove_unknown_is_noop(self) -> None:
        registry = EventRegistry()
        handle = registry.register("turn", MagicMock())

        registry.remove("unknown", handle)
        registry.remove("turn", uuid.uuid4())

        assert registry.has_handlers("turn")

    def test_handles_are_unique(self) -> None:
        registry = EventRegistry()
        handles = {registry.register("turn", MagicMock()) for _ in range(100)}
        assert len(handles) == 100

    @pytest.mark.asyncio
    async def test_no_handlers_skips_decoding(self) -> None:
        registry = EventRegistry()
        handle = registry.register("turn", MagicMock(), payload_type=TurnEvent)
        registry.remove("turn", handle)

        # Would fail TurnEvent decoding if it were attempted
        assert await registry.dispatch("turn", "garbage") == 0
        assert await registry.dispatch("never_registered", "garbage") == 0

    @pytest.mark.asyncio
    async def test_decode_failure_invokes_no_handler(self) -> None:
        registry = EventRegistry()
        raw = MagicMock()
        typed = MagicMock()
        registry.register("turn", raw)
        registry.register("turn", typed, payload_type=TurnEvent)

        with pytest.raises(CodeGameDecodingError, match="Invalid payload for event 'turn'"):
            await registry.dispatch("turn", {"round": 1})

        raw.assert_not_called()
        typed.assert_not_called()

    @pytest.mark.asyncio
    async def test_from_dict_on_wrong_shape_is_a_decoding_error(self) -> None:
        class Scores:
            @classmethod
            def from_dict(cls, data):
                return data.get("scores")

        registry = EventRegistry()
        handler = MagicMock()
        registry.register("scores", handler, payload_type=Scores)

        with pytest.raises(CodeGameDecodingError, match="Invalid payload for event"):
            await registry.dispatch("scores", [1, 2, 3])

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_payload_decoded_once_per_type(self) -> None:
        registry = EventRegistry()
        decoded: list[object] = []

        def decoder(data):
            decoded.append(data)
            return "decoded"

        first = MagicMock()
        second = MagicMock()
        registry.register("turn", first, payload_type=decoder)
        registry.register("turn", second, payload_type=decoder)

        await registry.dispatch("turn", {"x": 1})

        assert decoded == [{"x": 1}]
        first.assert_called_once_with("decoded")
        second.assert_called_once_with("decoded")

    @pytest.mark.asyncio
    async def test_failing_handler_is_logged_and_isolated(self, caplog) -> None:
        registry = EventRegistry()
        after = MagicMock()
        registry.register("turn", MagicMock(side_effect=RuntimeError("boom")))
        registry.register("turn", after)

        with caplog.at_level(logging.ERROR, logger="codegame.events"):
            await registry.dispatch("turn", {})

        after.assert_called_once_with({})
        assert "Handler for event 'turn' failed" in caplog.text

    @pytest.mark.asyncio
    async def test_register_during_dispatch(self) -> None:
        registry = EventRegistry()
        late = MagicMock()

        def register_more(data) -> None:
            registry.register("turn", late)

        registry.register("turn", register_more)

        await registry.dispatch("turn", 1)
        late.assert_not_called()

        await registry.dispatch("turn", 2)
        late.assert_called_once_with(2)
