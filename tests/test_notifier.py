"""Tests for the listener registry and best-effort change broadcasting."""

import asyncio

import pytest

from core.errors import ErrorKind, ServiceError
from core.notifier import DATABASE_CHANGED, RECEIVE_MESSAGE, ChangeNotifier, ListenerRegistry


class RecordingListener:
    def __init__(self):
        self.frames = []

    async def send(self, frame):
        self.frames.append(frame)


class FailingListener:
    def __init__(self):
        self.attempts = 0

    async def send(self, frame):
        self.attempts += 1
        raise ConnectionResetError("client went away")


class HangingListener:
    async def send(self, frame):
        await asyncio.sleep(60)


@pytest.fixture
def registry():
    return ListenerRegistry()


@pytest.fixture
def notifier(registry):
    return ChangeNotifier(registry, send_timeout=0.2)


async def _register(registry, *listeners):
    for listener in listeners:
        await registry.add(listener)


class TestRegistry:
    async def test_add_remove(self, registry):
        a, b = RecordingListener(), RecordingListener()
        await _register(registry, a, b)
        assert len(registry) == 2

        await registry.remove(a)
        assert await registry.snapshot() == [b]

    async def test_remove_unknown_is_noop(self, registry):
        await registry.remove(RecordingListener())
        assert len(registry) == 0

    async def test_concurrent_add_and_remove(self, registry):
        listeners = [RecordingListener() for _ in range(50)]
        await asyncio.gather(*(registry.add(l) for l in listeners))
        await asyncio.gather(*(registry.remove(l) for l in listeners[:20]))

        assert len(registry) == 30


class TestBroadcast:
    async def test_delivers_to_every_listener(self, registry, notifier):
        listeners = [RecordingListener() for _ in range(3)]
        await _register(registry, *listeners)

        delivered = await notifier.broadcast("INSERT", "usuarios", {"id": 1})

        assert delivered == 3
        for listener in listeners:
            assert len(listener.frames) == 1
            frame = listener.frames[0]
            assert frame["event"] == DATABASE_CHANGED
            assert frame["data"]["changeType"] == "INSERT"
            assert frame["data"]["tableName"] == "usuarios"
            assert frame["data"]["data"] == {"id": 1}
            assert frame["data"]["timestamp"]

    async def test_one_failing_listener_does_not_stop_the_others(self, registry, notifier):
        good_a, good_b, bad = RecordingListener(), RecordingListener(), FailingListener()
        await _register(registry, good_a, bad, good_b)

        delivered = await notifier.broadcast("UPDATE", "clientes")

        assert delivered == 2
        assert bad.attempts == 1
        assert len(good_a.frames) == 1
        assert len(good_b.frames) == 1

    async def test_slow_listener_is_bounded_by_timeout(self, registry, notifier):
        good = RecordingListener()
        await _register(registry, HangingListener(), good)

        delivered = await asyncio.wait_for(notifier.broadcast("DELETE", "equipos"), timeout=5)

        assert delivered == 1
        assert len(good.frames) == 1

    async def test_no_listeners(self, notifier):
        assert await notifier.broadcast("INSERT", "usuarios") == 0

    @pytest.mark.parametrize(
        "change_type,table_name",
        [
            ("", "usuarios"),
            ("  ", "usuarios"),
            ("INSERT", ""),
            ("INSERT", "\t"),
            (None, "usuarios"),
            ("INSERT", None),
            ("\x00\x1b", "usuarios"),
            ("INSERT", "\x00"),
        ],
    )
    async def test_blank_fields_rejected_without_fan_out(self, registry, notifier, change_type, table_name):
        listener = RecordingListener()
        await _register(registry, listener)

        with pytest.raises(ServiceError) as exc_info:
            await notifier.broadcast(change_type, table_name)

        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert listener.frames == []

    async def test_control_characters_are_stripped(self, registry, notifier):
        listener = RecordingListener()
        await _register(registry, listener)

        await notifier.broadcast("INSERT\r\n", "usu\narios")

        data = listener.frames[0]["data"]
        assert data["changeType"] == "INSERT"
        assert data["tableName"] == "usuarios"


class TestSendMessage:
    async def test_delivers_message_frame(self, registry, notifier):
        listener = RecordingListener()
        await _register(registry, listener, FailingListener())

        delivered = await notifier.send_message("Hola a todos", {"info": "adicional"})

        assert delivered == 1
        frame = listener.frames[0]
        assert frame["event"] == RECEIVE_MESSAGE
        assert frame["data"]["message"] == "Hola a todos"
        assert frame["data"]["data"] == {"info": "adicional"}

    @pytest.mark.parametrize("message", ["", "   ", None, "\x00", "\x1b\x07 "])
    async def test_blank_message_rejected(self, registry, notifier, message):
        listener = RecordingListener()
        await _register(registry, listener)

        with pytest.raises(ServiceError) as exc_info:
            await notifier.send_message(message)

        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert listener.frames == []
