"""End-to-end: a device talking to the connection handler over a real loopback socket."""
import asyncio

import pytest

import run
from gt06_codec.frame_codec import build_ack
from gt06_listener.tcp_listener import create_tcp_server
from gt06_parser.frame_dispatcher import FrameDispatcher


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def publish(self, event, context=None):
        self.events.append((event, context))
        return True


async def _wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def publisher(monkeypatch):
    publisher = RecordingPublisher()
    monkeypatch.setattr(run, "_publisher", publisher)
    monkeypatch.setattr(run, "_dispatcher", FrameDispatcher())
    monkeypatch.setattr(run, "_load_monitor", None)
    monkeypatch.setattr(run, "_shutdown_event", asyncio.Event())
    monkeypatch.setattr(run, "_connection_lock", asyncio.Lock())
    monkeypatch.setattr(run, "_connection_count", 0)
    return publisher


@pytest.fixture
async def server(publisher):
    server = await create_tcp_server("127.0.0.1", 0, run.handle_client_connection)
    yield server
    server.close()
    await asyncio.wait_for(server.wait_closed(), timeout=5)


async def _connect(server):
    port = server.sockets[0].getsockname()[1]
    return await asyncio.open_connection("127.0.0.1", port)


async def test_login_and_gps_are_acknowledged(server, publisher, builder):
    reader, writer = await _connect(server)
    try:
        login, gps = builder.login(), builder.gps(22.5, 114.0, speed=12)
        # Split mid-frame to exercise reassembly across reads
        writer.write(login + gps[:9])
        await writer.drain()
        first_ack = await asyncio.wait_for(reader.readexactly(10), timeout=5)
        writer.write(gps[9:])
        await writer.drain()
        second_ack = await asyncio.wait_for(reader.readexactly(10), timeout=5)
    finally:
        writer.close()
        await writer.wait_closed()

    assert first_ack == build_ack(0x01, 1)
    assert second_ack == build_ack(0x12, 2)

    await _wait_for(lambda: len(publisher.events) == 2)
    login_event, context = publisher.events[0]
    assert login_event.imei == "356860820045174"
    assert context['device_ip'] == "127.0.0.1"
    assert publisher.events[1][0].gps.speed == 12


async def test_noise_and_corrupt_frame_do_not_stop_the_connection(server, publisher, builder):
    reader, writer = await _connect(server)
    try:
        corrupt = bytearray(builder.heartbeat())
        corrupt[-3] ^= 0xFF
        writer.write(b"\x00\x01\x02" + builder.login() + bytes(corrupt) + builder.status(90))
        await writer.drain()
        acks = await asyncio.wait_for(reader.readexactly(20), timeout=5)
    finally:
        writer.close()
        await writer.wait_closed()

    assert acks == build_ack(0x01, 1) + build_ack(0x10, 3)
    await _wait_for(lambda: len(publisher.events) == 2)


async def test_rejected_login_closes_connection(server, publisher, builder, monkeypatch):
    monkeypatch.setattr(run, "_dispatcher", FrameDispatcher(allow_list=lambda imei: False))

    reader, writer = await _connect(server)
    try:
        writer.write(builder.login())
        await writer.drain()
        data = await asyncio.wait_for(reader.read(100), timeout=5)
    finally:
        writer.close()
        await writer.wait_closed()

    assert data == b""
    assert publisher.events == []


async def test_listener_requires_handler():
    with pytest.raises(ValueError):
        await create_tcp_server("127.0.0.1", 0, None)
