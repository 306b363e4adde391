"""Tests for ClientProtocolEngine and its state manager."""

import threading

import pytest

from gatttime.client import ClientProtocolEngine
from gatttime.codec import ValueCodec
from gatttime.events import (
    CharacteristicChanged,
    CharacteristicRead,
    ConnectionStateChanged,
    ServicesDiscovered,
)
from gatttime.gatt import (
    ELAPSED_UUID,
    OFFSET_UUID,
    SERVICE_UUID,
    ConnectionStatus,
    Status,
)
from gatttime.state import ClientState, ClientStateManager

ADDRESS = "AA:BB:CC:DD:EE:FF"
OTHER_SERVICE = "0000180f-0000-1000-8000-00805f9b34fb"


def _link_up(engine, status=Status.SUCCESS):
    engine.dispatch(ConnectionStateChanged(ADDRESS, status, ConnectionStatus.CONNECTED))


def _link_down(engine):
    engine.dispatch(
        ConnectionStateChanged(ADDRESS, Status.SUCCESS, ConnectionStatus.DISCONNECTED)
    )


def _subscribe(engine, value=42):
    """Drive a fake-transport engine through the whole handshake."""
    assert engine.connect()
    _link_up(engine)
    engine.dispatch(ServicesDiscovered(Status.SUCCESS, (OTHER_SERVICE, SERVICE_UUID)))
    engine.dispatch(CharacteristicRead(ELAPSED_UUID, Status.SUCCESS, ValueCodec.encode(value)))


class TestClientStateManager:
    """Test cases for ClientStateManager."""

    def test_initial_state(self):
        manager = ClientStateManager()
        assert manager.state == ClientState.DISCONNECTED
        assert manager.can_connect
        assert not manager.is_connected
        assert not manager.is_closed

    def test_handshake_path(self):
        manager = ClientStateManager()
        for state in (
            ClientState.CONNECTING,
            ClientState.CONNECTED,
            ClientState.SERVICE_DISCOVERY,
            ClientState.SUBSCRIBED,
        ):
            assert manager.transition_to(state)
        assert manager.is_connected

    def test_invalid_transition_is_rejected(self, caplog):
        manager = ClientStateManager()
        with caplog.at_level("WARNING", logger="gatttime"):
            assert not manager.transition_to(ClientState.SUBSCRIBED)
        assert manager.state == ClientState.DISCONNECTED
        assert "Invalid client state transition" in caplog.text

    def test_closed_is_terminal(self):
        manager = ClientStateManager()
        assert manager.transition_to(ClientState.CLOSED)
        assert manager.is_closed
        assert not manager.transition_to(ClientState.CONNECTING)
        assert not manager.transition_to(ClientState.DISCONNECTED)

    def test_transition_from_checks_current_state(self):
        manager = ClientStateManager()
        assert not manager.transition_from(ClientState.CONNECTING, ClientState.CONNECTED)
        assert manager.transition_from(ClientState.DISCONNECTED, ClientState.CONNECTING)
        assert manager.state == ClientState.CONNECTING

    def test_only_one_thread_wins_transition_from(self):
        manager = ClientStateManager()
        winners = []
        barrier = threading.Barrier(10)

        def attempt():
            barrier.wait()
            if manager.transition_from(ClientState.DISCONNECTED, ClientState.CONNECTING):
                winners.append(threading.current_thread().name)

        threads = [threading.Thread(target=attempt) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(winners) == 1


class TestClientHandshake:
    """Test cases for connect, discovery, read and subscribe."""

    def test_connect_moves_to_connecting(self, client_engine, client_transport):
        assert client_engine.connect()
        assert client_engine.state == ClientState.CONNECTING
        assert client_transport.names() == ["connect"]

    def test_second_connect_is_ignored(self, client_engine, client_transport):
        client_engine.connect()
        assert not client_engine.connect()
        assert client_transport.names() == ["connect"]

    def test_connect_failure_returns_to_disconnected(self, client_engine, client_transport):
        client_transport.fail_on.add("connect")
        assert not client_engine.connect()
        assert client_engine.state == ClientState.DISCONNECTED

    def test_failed_link_returns_to_disconnected(self, client_engine, client_transport):
        client_engine.connect()
        _link_up(client_engine, status=Status.FAILURE)
        assert client_engine.state == ClientState.DISCONNECTED
        assert "discover_services" not in client_transport.names()

    def test_link_up_starts_discovery(self, client_engine, client_transport):
        client_engine.connect()
        _link_up(client_engine)
        assert client_engine.state == ClientState.SERVICE_DISCOVERY
        assert client_transport.names() == ["connect", "discover_services"]

    def test_discovery_request_failure_abandons(self, client_engine, client_transport):
        client_transport.fail_on.add("discover_services")
        client_engine.connect()
        _link_up(client_engine)
        assert client_engine.state == ClientState.DISCONNECTED
        assert client_transport.names()[-1] == "disconnect"

    def test_services_discovered_reads_elapsed(self, client_engine, client_transport):
        client_engine.connect()
        _link_up(client_engine)
        client_engine.dispatch(ServicesDiscovered(Status.SUCCESS, (SERVICE_UUID.upper(),)))
        assert client_transport.calls[-1] == ("read_characteristic", ELAPSED_UUID)

    def test_missing_service_abandons(self, client_engine, client_transport):
        client_engine.connect()
        _link_up(client_engine)
        client_engine.dispatch(ServicesDiscovered(Status.SUCCESS, (OTHER_SERVICE,)))
        assert client_engine.state == ClientState.DISCONNECTED
        assert "read_characteristic" not in client_transport.names()

    def test_discovery_failure_abandons(self, client_engine, client_transport):
        client_engine.connect()
        _link_up(client_engine)
        client_engine.dispatch(ServicesDiscovered(Status.FAILURE))
        assert client_engine.state == ClientState.DISCONNECTED
        assert client_transport.names()[-1] == "disconnect"

    def test_elapsed_read_publishes_and_subscribes(self, client_engine, client_transport, listener):
        _subscribe(client_engine, value=1234)
        assert listener.named("on_time_value_changed") == [{"value": 1234}]
        assert client_transport.calls[-1] == ("enable_notifications", ELAPSED_UUID)
        assert client_engine.state == ClientState.SUBSCRIBED
        assert client_engine.is_subscribed

    def test_notifications_enabled_once(self, client_engine, client_transport):
        _subscribe(client_engine)
        client_engine.read_elapsed()
        client_engine.dispatch(CharacteristicRead(ELAPSED_UUID, Status.SUCCESS, ValueCodec.encode(1)))
        assert client_transport.names().count("enable_notifications") == 1

    def test_enable_notifications_failure_allows_retry(self, client_engine, client_transport):
        client_transport.fail_on.add("enable_notifications")
        _subscribe(client_engine)
        assert not client_engine.is_subscribed
        assert client_engine.state == ClientState.SERVICE_DISCOVERY
        client_transport.fail_on.clear()
        client_engine.dispatch(CharacteristicRead(ELAPSED_UUID, Status.SUCCESS, ValueCodec.encode(1)))
        assert client_engine.is_subscribed

    def test_failed_read_is_ignored(self, client_engine, listener, client_transport):
        client_engine.connect()
        _link_up(client_engine)
        client_engine.dispatch(CharacteristicRead(ELAPSED_UUID, Status.FAILURE))
        assert listener.named("on_time_value_changed") == []
        assert "enable_notifications" not in client_transport.names()

    def test_malformed_read_is_ignored(self, client_engine, listener, caplog):
        client_engine.connect()
        _link_up(client_engine)
        with caplog.at_level("WARNING", logger="gatttime"):
            client_engine.dispatch(CharacteristicRead(ELAPSED_UUID, Status.SUCCESS, b"\x01"))
        assert listener.named("on_time_value_changed") == []
        assert "Malformed value" in caplog.text

    def test_disconnect_clears_subscription(self, client_engine):
        _subscribe(client_engine)
        _link_down(client_engine)
        assert client_engine.state == ClientState.DISCONNECTED
        assert not client_engine.is_subscribed
        assert client_engine.connect()

    def test_late_read_while_disconnected_is_dropped(self, client_engine, client_transport, listener):
        client_engine.connect()
        _link_up(client_engine)
        client_engine.dispatch(ServicesDiscovered(Status.SUCCESS, (SERVICE_UUID,)))
        _link_down(client_engine)
        client_engine.dispatch(CharacteristicRead(ELAPSED_UUID, Status.SUCCESS, ValueCodec.encode(7)))
        client_engine.dispatch(CharacteristicChanged(ELAPSED_UUID, ValueCodec.encode(8)))
        assert "enable_notifications" not in client_transport.names()
        assert listener.named("on_time_value_changed") == []
        assert not client_engine.is_subscribed
        assert client_engine.state == ClientState.DISCONNECTED

    def test_reconnect_after_late_read_subscribes_again(self, client_engine, client_transport):
        _subscribe(client_engine, value=9)
        _link_down(client_engine)
        client_engine.dispatch(CharacteristicRead(ELAPSED_UUID, Status.SUCCESS, ValueCodec.encode(7)))
        _subscribe(client_engine, value=10)

        assert client_engine.state == ClientState.SUBSCRIBED
        assert client_engine.is_subscribed
        assert client_transport.names().count("enable_notifications") == 2


class TestClientValues:
    """Test cases for notifications and offset reads/writes."""

    def test_notification_publishes_value(self, client_engine, listener):
        _subscribe(client_engine, value=1)
        client_engine.dispatch(CharacteristicChanged(ELAPSED_UUID, ValueCodec.encode(3)))
        assert [c["value"] for c in listener.named("on_time_value_changed")] == [1, 3]

    def test_notification_for_other_characteristic_is_ignored(self, client_engine, listener):
        _subscribe(client_engine, value=1)
        client_engine.dispatch(CharacteristicChanged(OFFSET_UUID, ValueCodec.encode(3)))
        assert len(listener.named("on_time_value_changed")) == 1

    def test_malformed_notification_is_ignored(self, client_engine, listener):
        _subscribe(client_engine, value=1)
        client_engine.dispatch(CharacteristicChanged(ELAPSED_UUID, b""))
        assert len(listener.named("on_time_value_changed")) == 1

    def test_offset_read_is_reported_in_milliseconds(self, client_engine, client_transport, listener):
        _subscribe(client_engine)
        assert client_engine.read_offset()
        assert client_transport.calls[-1] == ("read_characteristic", OFFSET_UUID)
        client_engine.dispatch(CharacteristicRead(OFFSET_UUID, Status.SUCCESS, ValueCodec.encode(3600)))
        assert listener.named("on_time_offset_changed") == [{"offset": 3_600_000}]

    def test_write_offset_encodes_seconds(self, client_engine, client_transport):
        _subscribe(client_engine)
        assert client_engine.write_offset(3600)
        assert client_transport.calls[-1] == (
            "write_characteristic",
            OFFSET_UUID,
            ValueCodec.encode(3600),
            True,
        )

    def test_write_offset_failure_returns_false(self, client_engine, client_transport):
        _subscribe(client_engine)
        client_transport.fail_on.add("write_characteristic")
        assert not client_engine.write_offset(1)
        assert client_engine.state == ClientState.SUBSCRIBED

    @pytest.mark.parametrize("operation", ["read_elapsed", "read_offset"])
    def test_reads_require_connection(self, client_engine, client_transport, operation):
        assert not getattr(client_engine, operation)()
        assert client_transport.calls == []

    def test_write_requires_connection(self, client_engine, client_transport):
        assert not client_engine.write_offset(1)
        assert client_transport.calls == []

    def test_pubsub_topics(self, client_engine, pub_messages):
        _subscribe(client_engine, value=5)
        client_engine.dispatch(CharacteristicRead(OFFSET_UUID, Status.SUCCESS, ValueCodec.encode(2)))
        assert pub_messages["gatttime.client.timeValueChanged"] == [
            {"value": 5, "engine": client_engine}
        ]
        assert pub_messages["gatttime.client.timeOffsetChanged"] == [
            {"offset": 2000, "engine": client_engine}
        ]


class TestClientClose:
    """Test cases for close()."""

    def test_close_is_idempotent(self, client_transport, inline_delivery):
        engine = ClientProtocolEngine(client_transport, delivery=inline_delivery)
        engine.close()
        engine.close()
        assert client_transport.names() == ["close"]
        assert engine.state == ClientState.CLOSED

    def test_operations_after_close_are_noops(self, client_transport, inline_delivery, listener):
        engine = ClientProtocolEngine(client_transport, listener, delivery=inline_delivery)
        engine.close()
        assert not engine.connect()
        engine.disconnect()
        engine.dispatch(CharacteristicChanged(ELAPSED_UUID, ValueCodec.encode(1)))
        assert client_transport.names() == ["close"]
        assert listener.calls == []

    def test_context_manager_closes(self, client_transport, inline_delivery):
        with ClientProtocolEngine(client_transport, delivery=inline_delivery) as engine:
            engine.connect()
        assert engine.state == ClientState.CLOSED
        assert client_transport.names()[-1] == "close"
