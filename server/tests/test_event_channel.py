from __future__ import annotations

import asyncio

import pytest

from chatbridge.services.event_channel import EventChannel, StarletteTransport
from chatbridge.services.realtime_events import EventKind, MalformedPayloadError, RealtimeEvent
from fake_upstream import broken_browser


class ListTransport:
    """Transport fed from a list of frames; records everything sent."""

    def __init__(self, frames=(), is_open: bool = True) -> None:  # noqa: ANN001
        self.frames = list(frames)
        self.sent: list[str] = []
        self.is_open = is_open

    async def send_text(self, text: str) -> None:
        self.sent.append(text)

    async def receive_text(self):  # noqa: ANN201
        if not self.frames:
            return None
        return self.frames.pop(0)

    async def close(self) -> None:
        self.is_open = False


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


def test_send_returns_false_when_not_open(caplog: pytest.LogCaptureFixture) -> None:
    transport = ListTransport(is_open=False)
    channel = EventChannel("test", transport)

    assert _run(channel.send({"type": "response.create"})) is False
    assert transport.sent == []
    assert "not open" in caplog.text


def test_send_without_transport_returns_false() -> None:
    assert _run(EventChannel("detached").send({"type": "response.create"})) is False


def test_send_reuses_raw_text_of_received_event() -> None:
    transport = ListTransport()
    channel = EventChannel("test", transport)
    event = RealtimeEvent.parse('{"type":"response.create",   "response":{}}')

    assert _run(channel.send(event)) is True
    assert transport.sent == ['{"type":"response.create",   "response":{}}']


def test_handlers_run_in_registration_order() -> None:
    calls: list[str] = []

    async def second(event: RealtimeEvent) -> None:
        await asyncio.sleep(0)
        calls.append("second")

    channel = EventChannel("test", ListTransport(['{"type": "response.done"}']))
    channel.on(EventKind.RESPONSE_DONE, lambda event: calls.append("first"))
    channel.on("response.done", second)
    channel.on_any(lambda event: calls.append("any"))
    channel.on(EventKind.SESSION_CREATED, lambda event: calls.append("wrong"))

    _run(channel.listen())
    assert calls == ["first", "second", "any"]


def test_unknown_types_reach_catch_all_only() -> None:
    seen: list[str] = []
    channel = EventChannel("test", ListTransport(['{"type": "brand.new.event", "x": 1}']))
    channel.on(EventKind.ERROR, lambda event: seen.append("error"))
    channel.on_any(lambda event: seen.append(event.type))

    _run(channel.listen())
    assert seen == ["brand.new.event"]


def test_subscribing_to_unknown_kind_is_rejected() -> None:
    with pytest.raises(ValueError):
        EventChannel("test").on("not.a.kind", lambda event: None)


def test_malformed_frames_are_dropped_and_listening_continues() -> None:
    seen: list[str] = []
    frames = ["{oops", b"\xff\xfe", "42", '{"type": 7}', '{"no_type": true}', b'{"type": "session.created"}']
    channel = EventChannel("test", ListTransport(frames))
    channel.on_any(lambda event: seen.append(event.type))

    _run(channel.listen())
    assert seen == ["session.created"]


def test_failing_handler_does_not_stop_others() -> None:
    seen: list[str] = []

    def boom(event: RealtimeEvent) -> None:
        raise RuntimeError("handler exploded")

    channel = EventChannel("test", ListTransport(['{"type": "error"}', '{"type": "error"}']))
    channel.on(EventKind.ERROR, boom)
    channel.on(EventKind.ERROR, lambda event: seen.append("ok"))

    _run(channel.listen())
    assert seen == ["ok", "ok"]


def test_listen_requires_transport() -> None:
    with pytest.raises(RuntimeError):
        _run(EventChannel("detached").listen())


def test_parse_rejects_non_objects() -> None:
    with pytest.raises(MalformedPayloadError):
        RealtimeEvent.parse("[1, 2, 3]")
    event = RealtimeEvent.parse('{"type": "response.audio.delta", "delta": "AAAA"}')
    assert event.kind is EventKind.RESPONSE_AUDIO_DELTA
    assert event.get("delta") == "AAAA"
    assert RealtimeEvent.parse('{"type": "x.y"}').kind is None


def test_catch_all_registered_first_runs_first() -> None:
    calls: list[str] = []
    channel = EventChannel("test", ListTransport(['{"type": "response.done"}']))
    channel.on_any(lambda event: calls.append("any"))
    channel.on(EventKind.RESPONSE_DONE, lambda event: calls.append("done"))
    channel.on_any(lambda event: calls.append("any again"))

    _run(channel.listen())
    assert calls == ["any", "done", "any again"]


def test_send_to_disconnected_browser_returns_false() -> None:
    async def scenario():
        websocket, delivered = broken_browser("websocket.send")
        await websocket.accept()
        channel = EventChannel("browser", StarletteTransport(websocket))
        first = await channel.send({"type": "session.created"})
        second = await channel.send({"type": "session.updated"})
        await channel.close()
        return first, second, delivered

    first, second, delivered = _run(scenario())
    assert (first, second) == (False, False)
    assert "websocket.send" not in [message["type"] for message in delivered]


def test_close_of_disconnected_browser_is_silent() -> None:
    async def scenario():
        websocket, _ = broken_browser("websocket.close")
        await websocket.accept()
        channel = EventChannel("browser", StarletteTransport(websocket))
        await channel.close()
        return channel.is_open

    assert _run(scenario()) is False
