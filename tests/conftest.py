"""
Shared pytest fixtures for the Timer engine tests.
"""

import pytest  # type: ignore[import-untyped]  # pylint: disable=E0401
from pubsub import pub

from gatttime.client import ClientProtocolEngine
from gatttime.server import ServerProtocolEngine

from timer_fixtures import (
    FakeClientTransport,
    FakeClock,
    FakeServerTransport,
    InlineDelivery,
    RecordingListener,
)


@pytest.fixture
def inline_delivery():
    """Delivery context that runs application callbacks synchronously."""
    return InlineDelivery()


@pytest.fixture
def fake_clock():
    return FakeClock(1000)


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def server_transport():
    return FakeServerTransport()


@pytest.fixture
def client_transport():
    return FakeClientTransport()


@pytest.fixture
def server_engine(server_transport, listener, fake_clock, inline_delivery):
    """
    An opened server engine on a fake transport.

    The notification period is long enough that only the immediate tick on
    first connect fires during a test. The engine is shut down afterwards.
    """
    engine = ServerProtocolEngine(
        server_transport,
        listener,
        clock=fake_clock,
        delivery=inline_delivery,
        notify_interval=60.0,
    )
    engine.open()
    yield engine
    engine.shutdown()


@pytest.fixture
def client_engine(client_transport, listener, inline_delivery):
    engine = ClientProtocolEngine(client_transport, listener, delivery=inline_delivery)
    yield engine
    engine.close()


@pytest.fixture
def pub_messages():
    """
    Subscribe recorders to every Timer topic for the duration of a test.

    Returns:
        dict: topic name -> list of received message kwargs.
    """
    received = {}

    def recorder(topic):
        received[topic] = []
        return lambda **kwargs: received[topic].append(kwargs)

    record_connected = recorder("gatttime.server.deviceConnected")
    record_disconnected = recorder("gatttime.server.deviceDisconnected")
    record_offset_updated = recorder("gatttime.server.timeOffsetUpdated")
    record_value = recorder("gatttime.client.timeValueChanged")
    record_offset = recorder("gatttime.client.timeOffsetChanged")

    # pubsub checks listener signatures against each topic, so spell the arguments out.
    def on_connected(device, engine):
        record_connected(device=device, engine=engine)

    def on_disconnected(device, engine):
        record_disconnected(device=device, engine=engine)

    def on_offset_updated(engine):
        record_offset_updated(engine=engine)

    def on_value(value, engine):
        record_value(value=value, engine=engine)

    def on_offset(offset, engine):
        record_offset(offset=offset, engine=engine)

    # pubsub holds weak references; the local names keep the listeners alive.
    subscriptions = [
        (on_connected, "gatttime.server.deviceConnected"),
        (on_disconnected, "gatttime.server.deviceDisconnected"),
        (on_offset_updated, "gatttime.server.timeOffsetUpdated"),
        (on_value, "gatttime.client.timeValueChanged"),
        (on_offset, "gatttime.client.timeOffsetChanged"),
    ]
    for handler, topic in subscriptions:
        pub.subscribe(handler, topic)
    yield received
    for handler, topic in subscriptions:
        pub.unsubscribe(handler, topic)
