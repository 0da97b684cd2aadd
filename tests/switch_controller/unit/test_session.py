"""Unit tests for the aiomqtt-backed broker session.

aiomqtt.Client is patched; each test drives the session's background tasks to
completion and inspects the events it posted.
"""
# pyright: reportPrivateUsage=false

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Generator
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import aiomqtt
import pytest

from switch_controller.const import MAX_PACKET_ID
from switch_controller.events import (
    BrokerConnected,
    BrokerDisconnected,
    Event,
    MessageReceived,
    PublishResult,
    SubscribeResult,
    UnsubscribeResult,
)
from switch_controller.mqtt.session import (
    AiomqttSession,
    granted_codes,
    payload_to_bytes,
    reason_from_return_code,
)
from switch_controller.structs import ControllerSettings, ControlMessage, DisconnectReason


def make_message(topic: str, payload: bytes, qos: int = 0) -> SimpleNamespace:
    return SimpleNamespace(topic=SimpleNamespace(value=topic), payload=payload, qos=qos)


async def idle_messages() -> AsyncIterator[SimpleNamespace]:
    await asyncio.Event().wait()
    yield make_message("never", b"")


def make_client(messages: AsyncIterator[SimpleNamespace] | None = None) -> MagicMock:
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    client.publish = AsyncMock()
    client.subscribe = AsyncMock(return_value=(1,))
    client.unsubscribe = AsyncMock()
    client.messages = messages if messages is not None else idle_messages()
    return client


@pytest.fixture
def posted() -> list[Event]:
    return []


@pytest.fixture
def mock_client() -> Generator[MagicMock]:
    client = make_client()
    with patch("switch_controller.mqtt.session.aiomqtt.Client", return_value=client) as client_cls:
        client.factory = client_cls
        yield client


@pytest.fixture
def session(settings: ControllerSettings, posted: list[Event]) -> AiomqttSession:
    return AiomqttSession(settings, posted.append)


async def settle(session: AiomqttSession) -> None:
    """Wait for every in-flight request task (not the receiver)."""
    pending = [t for t in session._tasks if t is not session._receiver_task]
    if pending:
        _ = await asyncio.gather(*pending)


async def connect(session: AiomqttSession) -> None:
    assert session.connect() is True
    assert session._connect_task is not None
    await session._connect_task


class TestHelpers:
    """Tests for module level helpers."""

    @pytest.mark.parametrize(
        ("rc", "expected"),
        [
            (1, DisconnectReason.MQTT_UNACCEPTABLE_PROTOCOL_VERSION),
            (2, DisconnectReason.MQTT_IDENTIFIER_REJECTED),
            (3, DisconnectReason.MQTT_SERVER_UNAVAILABLE),
            (4, DisconnectReason.MQTT_MALFORMED_CREDENTIALS),
            (5, DisconnectReason.MQTT_NOT_AUTHORIZED),
            (0x86, DisconnectReason.MQTT_MALFORMED_CREDENTIALS),
            (0x87, DisconnectReason.MQTT_NOT_AUTHORIZED),
            (SimpleNamespace(value=3), DisconnectReason.MQTT_SERVER_UNAVAILABLE),
            (99, DisconnectReason.TCP_DISCONNECTED),
            (None, DisconnectReason.TCP_DISCONNECTED),
        ],
    )
    def test_reason_from_return_code(self, rc: object, expected: DisconnectReason):
        assert reason_from_return_code(rc) is expected

    def test_payload_to_bytes(self):
        assert payload_to_bytes(b"1") == b"1"
        assert payload_to_bytes(bytearray(b"0")) == b"0"
        assert payload_to_bytes("1") == b"1"
        assert payload_to_bytes(1) == b"1"
        assert payload_to_bytes(None) == b""

    def test_granted_codes(self):
        assert granted_codes((1,)) == (1,)
        assert granted_codes([SimpleNamespace(value=0x80)]) == (0x80,)
        assert granted_codes(None) == ()


class TestConnect:
    """Tests for the connect handshake."""

    @pytest.mark.asyncio
    async def test_successful_connect_posts_connected(
        self,
        session: AiomqttSession,
        mock_client: MagicMock,
        posted: list[Event],
    ):
        await connect(session)

        assert posted == [BrokerConnected(session_present=False)]
        assert session._connected is True
        kwargs = mock_client.factory.call_args.kwargs
        assert kwargs["hostname"] == "broker.local"
        assert kwargs["identifier"] == "switch-1"
        assert kwargs["tls_context"] is None
        assert kwargs["will"].topic == "device/status"
        assert kwargs["will"].payload == b"switch-1 disconnected"
        await session.close()

    @pytest.mark.asyncio
    async def test_refused_connect_maps_return_code(
        self,
        session: AiomqttSession,
        mock_client: MagicMock,
        posted: list[Event],
    ):
        mock_client.__aenter__.side_effect = aiomqtt.MqttCodeError(5)

        await connect(session)

        assert posted == [BrokerDisconnected(DisconnectReason.MQTT_NOT_AUTHORIZED)]
        assert session._connected is False

    @pytest.mark.asyncio
    async def test_network_failure_is_tcp_disconnect(
        self,
        session: AiomqttSession,
        mock_client: MagicMock,
        posted: list[Event],
    ):
        mock_client.__aenter__.side_effect = aiomqtt.MqttError("[Errno 111] Connection refused")

        await connect(session)

        assert posted == [BrokerDisconnected(DisconnectReason.TCP_DISCONNECTED)]

    @pytest.mark.asyncio
    async def test_connect_refused_while_connected(self, session: AiomqttSession, mock_client: MagicMock):
        await connect(session)

        assert session.connect() is False
        assert mock_client.factory.call_count == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_connect_refused_while_handshake_in_flight(self, session: AiomqttSession, mock_client: MagicMock):
        assert session.connect() is True
        assert session.connect() is False
        await session.close()

    def test_connect_without_event_loop_fails(self, session: AiomqttSession):
        assert session.connect() is False

    @pytest.mark.asyncio
    async def test_connect_after_close_fails(self, session: AiomqttSession):
        await session.close()

        assert session.connect() is False


class TestRequests:
    """Tests for publish/subscribe/unsubscribe."""

    @pytest.mark.parametrize(
        "request_call",
        [
            lambda s: s.publish("device/status", 1, False, b"x"),
            lambda s: s.subscribe("device/control", 1),
            lambda s: s.unsubscribe("device/control"),
        ],
    )
    def test_requests_while_disconnected_return_zero(self, session: AiomqttSession, request_call):
        assert request_call(session) == 0

    @pytest.mark.asyncio
    async def test_publish_posts_result(self, session: AiomqttSession, mock_client: MagicMock, posted: list[Event]):
        await connect(session)

        packet_id = session.publish("device/status", 1, False, b"switch-1 connected")
        await settle(session)

        assert packet_id == 1
        mock_client.publish.assert_awaited_once_with("device/status", b"switch-1 connected", qos=1, retain=False)
        assert posted[-1] == PublishResult(1)
        await session.close()

    @pytest.mark.asyncio
    async def test_subscribe_posts_granted_qos(
        self,
        session: AiomqttSession,
        mock_client: MagicMock,
        posted: list[Event],
    ):
        await connect(session)

        packet_id = session.subscribe("device/control", 1)
        await settle(session)

        mock_client.subscribe.assert_awaited_once_with("device/control", qos=1)
        assert posted[-1] == SubscribeResult(packet_id, (1,))
        await session.close()

    @pytest.mark.asyncio
    async def test_unsubscribe_posts_result(
        self,
        session: AiomqttSession,
        mock_client: MagicMock,
        posted: list[Event],
    ):
        await connect(session)

        packet_id = session.unsubscribe("device/control")
        await settle(session)

        mock_client.unsubscribe.assert_awaited_once_with("device/control")
        assert posted[-1] == UnsubscribeResult(packet_id)
        await session.close()

    @pytest.mark.asyncio
    async def test_failed_requests_post_zero_packet_id(
        self,
        session: AiomqttSession,
        mock_client: MagicMock,
        posted: list[Event],
    ):
        mock_client.publish.side_effect = aiomqtt.MqttError("gone")
        mock_client.subscribe.side_effect = aiomqtt.MqttError("gone")
        await connect(session)

        _ = session.publish("device/status", 1, False, b"x")
        _ = session.subscribe("device/control", 1)
        await settle(session)

        assert PublishResult(0) in posted
        assert SubscribeResult(0) in posted
        await session.close()

    @pytest.mark.asyncio
    async def test_packet_ids_wrap_and_skip_zero(self, session: AiomqttSession, mock_client: MagicMock):
        await connect(session)
        session._last_packet_id = MAX_PACKET_ID - 1

        ids = [session.publish("t", 0, False, b"") for _ in range(3)]
        await settle(session)

        assert ids == [MAX_PACKET_ID, 1, 2]
        await session.close()


class TestReceive:
    """Tests for the inbound message loop."""

    @pytest.mark.asyncio
    async def test_messages_are_posted_then_disconnect(self, settings: ControllerSettings, posted: list[Event]):
        async def messages() -> AsyncIterator[SimpleNamespace]:
            yield make_message("device/control", b"1", qos=1)
            yield make_message("device/control", bytearray(b" 0 "))
            raise aiomqtt.MqttError("Disconnected during message iteration")

        client = make_client(messages())
        with patch("switch_controller.mqtt.session.aiomqtt.Client", return_value=client):
            session = AiomqttSession(settings, posted.append)
            await connect(session)
            assert session._receiver_task is not None
            await session._receiver_task

        assert posted == [
            BrokerConnected(session_present=False),
            MessageReceived(ControlMessage("device/control", b"1", qos=1)),
            MessageReceived(ControlMessage("device/control", b" 0 ", qos=0)),
            BrokerDisconnected(DisconnectReason.TCP_DISCONNECTED),
        ]
        assert session._connected is False
        assert session.client is None
        client.__aexit__.assert_awaited_once()


class TestClose:
    """Tests for session shutdown."""

    @pytest.mark.asyncio
    async def test_close_disconnects_client(self, session: AiomqttSession, mock_client: MagicMock):
        await connect(session)

        await session.close()

        mock_client.__aexit__.assert_awaited_once_with(None, None, None)
        assert session._connected is False
        assert session.client is None
        assert session._receiver_task is not None
        assert session._receiver_task.cancelled()

    @pytest.mark.asyncio
    async def test_close_waits_for_in_flight_publish(
        self,
        session: AiomqttSession,
        mock_client: MagicMock,
        posted: list[Event],
    ):
        await connect(session)
        _ = session.unsubscribe("device/control")

        await session.close()

        assert posted[-1] == UnsubscribeResult(1)

    @pytest.mark.asyncio
    async def test_close_during_handshake_exits_client(
        self,
        session: AiomqttSession,
        mock_client: MagicMock,
        posted: list[Event],
    ):
        handshake_started = asyncio.Event()

        async def stalled_handshake() -> MagicMock:
            handshake_started.set()
            await asyncio.Event().wait()
            return mock_client

        mock_client.__aenter__.side_effect = stalled_handshake
        assert session.connect() is True
        _ = await handshake_started.wait()

        await session.close()

        mock_client.__aexit__.assert_awaited_once_with(None, None, None)
        assert session._connect_task is not None
        assert session._connect_task.cancelled()
        assert session.client is None
        assert posted == []

    @pytest.mark.asyncio
    async def test_close_during_handshake_tolerates_exit_failure(
        self,
        session: AiomqttSession,
        mock_client: MagicMock,
    ):
        handshake_started = asyncio.Event()

        async def stalled_handshake() -> MagicMock:
            handshake_started.set()
            await asyncio.Event().wait()
            return mock_client

        mock_client.__aenter__.side_effect = stalled_handshake
        mock_client.__aexit__.side_effect = aiomqtt.MqttError("not connected")
        assert session.connect() is True
        _ = await handshake_started.wait()

        await session.close()

        mock_client.__aexit__.assert_awaited_once()
        assert session._connected is False

    @pytest.mark.asyncio
    async def test_close_without_connect(self, session: AiomqttSession):
        await session.close()

        assert session.client is None
