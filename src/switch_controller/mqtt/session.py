"""Broker session over aiomqtt.

Adapts the awaitable aiomqtt API to the initiate-now / complete-later contract
used by the supervisor and controller: every request returns immediately and its
outcome is posted as an event once the library call finishes.
"""

from __future__ import annotations

import asyncio
import contextlib
import ssl
from collections.abc import Callable, Coroutine
from typing import Any

import aiomqtt

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
from switch_controller.logging_abstraction import get_logger
from switch_controller.structs import ControlMessage, ControllerSettings, DisconnectReason

logger = get_logger(__name__)

# MQTT 3.1.1 CONNACK return codes and their MQTT 5 reason code equivalents
_RETURN_CODE_REASONS: dict[int, DisconnectReason] = {
    1: DisconnectReason.MQTT_UNACCEPTABLE_PROTOCOL_VERSION,
    2: DisconnectReason.MQTT_IDENTIFIER_REJECTED,
    3: DisconnectReason.MQTT_SERVER_UNAVAILABLE,
    4: DisconnectReason.MQTT_MALFORMED_CREDENTIALS,
    5: DisconnectReason.MQTT_NOT_AUTHORIZED,
    0x84: DisconnectReason.MQTT_UNACCEPTABLE_PROTOCOL_VERSION,
    0x85: DisconnectReason.MQTT_IDENTIFIER_REJECTED,
    0x86: DisconnectReason.MQTT_MALFORMED_CREDENTIALS,
    0x87: DisconnectReason.MQTT_NOT_AUTHORIZED,
    0x88: DisconnectReason.MQTT_SERVER_UNAVAILABLE,
    0x89: DisconnectReason.MQTT_SERVER_UNAVAILABLE,
}
_CLOSE_TIMEOUT_SECONDS = 2.0


def reason_from_return_code(rc: object) -> DisconnectReason:
    """Map a CONNACK return code (int or paho ReasonCode) to a DisconnectReason."""
    try:
        code = int(getattr(rc, "value", rc))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DisconnectReason.TCP_DISCONNECTED
    return _RETURN_CODE_REASONS.get(code, DisconnectReason.TCP_DISCONNECTED)


def payload_to_bytes(payload: object) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, bytes | bytearray):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode()
    return str(payload).encode()


def granted_codes(granted: object) -> tuple[int, ...]:
    """Normalize aiomqtt's SUBACK result (ints for v3, ReasonCodes for v5)."""
    if not isinstance(granted, list | tuple):
        return ()
    return tuple(int(getattr(code, "value", code)) for code in granted)


class AiomqttSession:
    """Broker session collaborator backed by ``aiomqtt.Client``.

    Args:
        settings: Broker address, identity and credentials
        post: Callback that enqueues events for the service dispatch loop

    """

    lp: str = "mqtt:"

    def __init__(self, settings: ControllerSettings, post: Callable[[Event], None]) -> None:
        self.settings = settings
        self.post = post
        self.client: aiomqtt.Client | None = None
        self._connected: bool = False
        self._closed: bool = False
        self._connect_task: asyncio.Task[None] | None = None
        self._receiver_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._last_packet_id: int = 0

    def _next_packet_id(self) -> int:
        self._last_packet_id = self._last_packet_id % MAX_PACKET_ID + 1
        return self._last_packet_id

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _build_client(self) -> aiomqtt.Client:
        s = self.settings
        will = aiomqtt.Will(topic=s.status_topic, payload=s.will_payload, qos=s.qos, retain=False)
        tls_context = ssl.create_default_context() if s.tls else None
        return aiomqtt.Client(
            hostname=s.broker_host,
            port=s.broker_port,
            username=s.username,
            password=s.password,
            identifier=s.client_id,
            keepalive=s.keepalive,
            will=will,
            tls_context=tls_context,
        )

    def connect(self) -> bool:
        lp = f"{self.lp}connect:"
        if self._closed:
            logger.debug("%s session closed, refusing to connect", lp)
            return False
        if self._connected:
            logger.debug("%s already connected", lp)
            return False
        if self._connect_task is not None and not self._connect_task.done():
            logger.debug("%s handshake already in progress", lp)
            return False
        try:
            _ = asyncio.get_running_loop()
        except RuntimeError:
            logger.exception("%s no running event loop", lp)
            return False
        self._connect_task = self._spawn(self._connect(), name="AiomqttSession_CONNECT")
        return True

    async def _connect(self) -> None:
        lp = f"{self.lp}connect:"
        s = self.settings
        logger.debug("%s connecting to %s:%s as %s", lp, s.broker_host, s.broker_port, s.client_id)
        client = self._build_client()
        try:
            _ = await client.__aenter__()
        except aiomqtt.MqttCodeError as code_err:
            # [code:134] Bad user name or password
            reason = reason_from_return_code(code_err.rc)
            logger.error("%s broker refused connection: %s", lp, code_err, extra={"reason": reason.name})
            if reason is DisconnectReason.MQTT_MALFORMED_CREDENTIALS:
                logger.error("%s check the MQTT credentials (username: %s)", lp, s.username)
            self.post(BrokerDisconnected(reason))
            return
        except aiomqtt.MqttError as mqtt_err:
            # -> [Errno 111] Connection refused
            logger.warning("%s connection failed: %s", lp, mqtt_err)
            self.post(BrokerDisconnected(DisconnectReason.TCP_DISCONNECTED))
            return
        except asyncio.CancelledError:
            # closed mid-handshake; the socket may already be open
            with contextlib.suppress(aiomqtt.MqttError):
                await client.__aexit__(None, None, None)
            raise

        self.client = client
        self._connected = True
        logger.info("%s connected to MQTT broker: %s port: %s", lp, s.broker_host, s.broker_port)
        self.post(BrokerConnected(session_present=False))
        self._receiver_task = self._spawn(self._receive(client), name="AiomqttSession_RECEIVE")

    async def _receive(self, client: aiomqtt.Client) -> None:
        lp = f"{self.lp}rcv:"
        reason = DisconnectReason.TCP_DISCONNECTED
        try:
            async for message in client.messages:
                self.post(
                    MessageReceived(
                        ControlMessage(
                            topic=message.topic.value,
                            payload=payload_to_bytes(message.payload),
                            qos=message.qos,
                        ),
                    ),
                )
        except asyncio.CancelledError:
            logger.debug("%s receiver task cancelled, propagating...", lp)
            raise
        except aiomqtt.MqttCodeError as code_err:
            reason = reason_from_return_code(code_err.rc)
            logger.warning("%s MQTT error: %s", lp, code_err)
        except aiomqtt.MqttError as msg_err:
            logger.warning("%s MQTT error: %s", lp, msg_err)

        await self._discard_client(client)
        self.post(BrokerDisconnected(reason))

    async def _discard_client(self, client: aiomqtt.Client) -> None:
        self._connected = False
        if self.client is client:
            self.client = None
        with contextlib.suppress(aiomqtt.MqttError):
            await client.__aexit__(None, None, None)

    def publish(self, topic: str, qos: int, retain: bool, payload: bytes) -> int:
        client = self.client
        if not self._connected or client is None:
            logger.debug("%s publish requested while disconnected", self.lp, extra={"topic": topic})
            return 0
        packet_id = self._next_packet_id()
        _ = self._spawn(self._publish(client, packet_id, topic, qos, retain, payload), name=f"publish-{packet_id}")
        return packet_id

    async def _publish(
        self,
        client: aiomqtt.Client,
        packet_id: int,
        topic: str,
        qos: int,
        retain: bool,
        payload: bytes,
    ) -> None:
        try:
            await client.publish(topic, payload, qos=qos, retain=retain)
        except aiomqtt.MqttError as e:
            logger.warning("%s publish to %s failed: %s", self.lp, topic, e)
            self.post(PublishResult(0))
        else:
            self.post(PublishResult(packet_id))

    def subscribe(self, topic: str, qos: int) -> int:
        client = self.client
        if not self._connected or client is None:
            logger.debug("%s subscribe requested while disconnected", self.lp, extra={"topic": topic})
            return 0
        packet_id = self._next_packet_id()
        _ = self._spawn(self._subscribe(client, packet_id, topic, qos), name=f"subscribe-{packet_id}")
        return packet_id

    async def _subscribe(self, client: aiomqtt.Client, packet_id: int, topic: str, qos: int) -> None:
        try:
            granted = await client.subscribe(topic, qos=qos)
        except aiomqtt.MqttError as e:
            logger.warning("%s subscribe to %s failed: %s", self.lp, topic, e)
            self.post(SubscribeResult(0))
        else:
            self.post(SubscribeResult(packet_id, granted_codes(granted)))

    def unsubscribe(self, topic: str) -> int:
        client = self.client
        if not self._connected or client is None:
            logger.debug("%s unsubscribe requested while disconnected", self.lp, extra={"topic": topic})
            return 0
        packet_id = self._next_packet_id()
        _ = self._spawn(self._unsubscribe(client, packet_id, topic), name=f"unsubscribe-{packet_id}")
        return packet_id

    async def _unsubscribe(self, client: aiomqtt.Client, packet_id: int, topic: str) -> None:
        try:
            await client.unsubscribe(topic)
        except aiomqtt.MqttError as e:
            logger.warning("%s unsubscribe from %s failed: %s", self.lp, topic, e)
            self.post(UnsubscribeResult(0))
        else:
            self.post(UnsubscribeResult(packet_id))

    async def close(self) -> None:
        """Let in-flight requests finish, then stop the receiver and disconnect."""
        lp = f"{self.lp}close:"
        self._closed = True
        background = {t for t in self._tasks if t not in (self._connect_task, self._receiver_task)}
        if background:
            _ = await asyncio.wait(background, timeout=_CLOSE_TIMEOUT_SECONDS)

        for task in (self._connect_task, self._receiver_task, *self._tasks):
            if task is not None and not task.done():
                _ = task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        client = self.client
        if client is None:
            return
        logger.debug("%s disconnecting from broker...", lp)
        try:
            await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as e:
            logger.warning("%s MQTT disconnect failed: %s", lp, e)
        else:
            logger.info("%s disconnected from MQTT broker", lp)
        finally:
            self.client = None
            self._connected = False
