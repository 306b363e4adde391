"""Client and server engines talking over an in-process loopback link."""

import time

import pytest

from gatttime.client import ClientProtocolEngine
from gatttime.codec import ValueCodec
from gatttime.gatt import ELAPSED_UUID
from gatttime.server import ServerProtocolEngine
from gatttime.state import ClientState

from timer_fixtures import (
    FakeClock,
    InlineDelivery,
    LoopbackClientTransport,
    LoopbackServerTransport,
    RecordingListener,
    SteppingClock,
)


def _quiesce(server):
    """Stop the periodic ticker so only explicit fan-outs reach the clients."""
    server.scheduler.cancel()
    server.scheduler.join()


@pytest.fixture
def link():
    """A running server engine on a loopback transport, plus a client factory."""
    clock = FakeClock(5000)
    server_transport = LoopbackServerTransport()
    server_listener = RecordingListener()
    server = ServerProtocolEngine(
        server_transport,
        server_listener,
        clock=clock,
        delivery=InlineDelivery(),
        notify_interval=60.0,
    )
    server.open()
    clients = []

    def make_client(device):
        listener = RecordingListener()
        engine = ClientProtocolEngine(
            LoopbackClientTransport(server_transport, device),
            listener,
            delivery=InlineDelivery(),
        )
        clients.append(engine)
        return engine, listener

    yield server, server_transport, server_listener, clock, make_client
    for engine in clients:
        engine.close()
    server.shutdown()


def test_client_subscribes_and_reads_elapsed(link):
    server, _, server_listener, clock, make_client = link
    client, listener = make_client("phone")

    assert client.connect()
    assert client.state == ClientState.SUBSCRIBED
    assert "phone" in server.registry
    assert server_listener.named("on_device_connected") == [{"device": "phone"}]
    assert {"value": clock.value} in listener.named("on_time_value_changed")


def test_offset_write_reaches_client_in_milliseconds(link):
    server, _, server_listener, _, make_client = link
    writer, _ = make_client("writer")
    reader, reader_listener = make_client("reader")
    writer.connect()
    reader.connect()

    assert writer.write_offset(3600)
    assert server.time_offset == 3600
    assert server_listener.named("on_time_offset_updated") == [{}]

    assert reader.read_offset()
    assert reader_listener.named("on_time_offset_changed") == [{"offset": 3_600_000}]


def test_offset_write_pushes_new_elapsed_to_subscribers(link):
    server, _, _, clock, make_client = link
    writer, _ = make_client("writer")
    watcher, watcher_listener = make_client("watcher")
    writer.connect()
    watcher.connect()
    _quiesce(server)

    writer.write_offset(100)
    values = [c["value"] for c in watcher_listener.named("on_time_value_changed")]
    assert values[-1] == clock.value + 100


def test_two_devices_get_identical_payloads(link):
    server, server_transport, _, clock, make_client = link
    first, _ = make_client("first")
    second, _ = make_client("second")
    first.connect()
    second.connect()
    _quiesce(server)

    clock.advance(2)
    assert server.notify_connected_devices() == 2
    expected = ValueCodec.encode(clock.value)
    assert server_transport.notifications_for("first")[-1] == expected
    assert server_transport.notifications_for("second")[-1] == expected


def test_disconnect_during_fan_out_spares_other_devices(link):
    server, server_transport, _, _, make_client = link
    engines = {}
    for device in ("a", "b", "c"):
        engines[device], _ = make_client(device)
        engines[device].connect()
    _quiesce(server)

    original = server_transport.notify_characteristic_changed

    def drop_b_midway(device, characteristic_id, payload):
        if device == "b":
            engines["b"].disconnect()
        return original(device, characteristic_id, payload)

    server_transport.notify_characteristic_changed = drop_b_midway
    before = {d: len(server_transport.notifications_for(d)) for d in ("a", "c")}
    server.notify_connected_devices()

    assert "b" not in server.registry
    for device in ("a", "c"):
        assert len(server_transport.notifications_for(device)) == before[device] + 1
    assert engines["b"].state == ClientState.DISCONNECTED


def test_last_client_leaving_stops_notifications(link):
    server, _, server_listener, _, make_client = link
    client, _ = make_client("solo")
    client.connect()
    assert server.scheduler.is_active
    client.disconnect()
    assert not server.scheduler.is_active
    assert server_listener.named("on_device_disconnected") == [{"device": "solo"}]
    assert client.state == ClientState.DISCONNECTED


def test_subscribed_client_receives_ticks(link):
    server, _, _, clock, make_client = link
    client, listener = make_client("ticker")
    client.connect()
    _quiesce(server)
    assert client.is_subscribed
    clock.advance(2)
    server.notify_connected_devices()
    values = [c["value"] for c in listener.named("on_time_value_changed")]
    assert values[-1] == clock.value


def test_notifications_use_elapsed_characteristic(link):
    server, server_transport, _, _, make_client = link
    client, _ = make_client("x")
    client.connect()
    server.notify_connected_devices()
    assert {uuid for _, uuid, _ in server_transport.notifications} == {ELAPSED_UUID}


def test_every_tick_sends_one_payload_to_all_devices():
    server_transport = LoopbackServerTransport()
    server = ServerProtocolEngine(
        server_transport,
        clock=SteppingClock(5000),
        delivery=InlineDelivery(),
        notify_interval=0.02,
    )
    listeners = {}
    clients = []
    with server:
        for device in ("first", "second"):
            listener = RecordingListener()
            client = ClientProtocolEngine(
                LoopbackClientTransport(server_transport, device),
                listener,
                delivery=InlineDelivery(),
            )
            clients.append(client)
            listeners[device] = listener
            assert client.connect()

        deadline = time.monotonic() + 2.0
        while len(server_transport.notifications_for("second")) < 4:
            assert time.monotonic() < deadline, "scheduler stopped ticking"
            time.sleep(0.01)
        _quiesce(server)

        first = server_transport.notifications_for("first")
        second = server_transport.notifications_for("second")
        # fan-outs run one at a time, so every tick "second" saw also reached "first"
        assert first[-len(second):] == second
        # the clock moves on each read, so distinct payloads mean distinct ticks
        assert len(set(second)) == len(second)

        latest = [ValueCodec.decode(p) for p in second[-2:]]
        for listener in listeners.values():
            values = [c["value"] for c in listener.named("on_time_value_changed")]
            assert values[-2:] == latest
    for client in clients:
        client.close()
