"""Device controller: control topic messages in, actuator writes out."""

from __future__ import annotations

from switch_controller import metrics
from switch_controller.events import (
    Event,
    MessageReceived,
    PublishResult,
    SubscribeResult,
    UnsubscribeResult,
)
from switch_controller.exceptions import (
    ActuatorWriteError,
    FragmentedPayloadError,
    MalformedControlPayloadError,
    PublishFailedError,
    SubscribeFailedError,
    UnsubscribeFailedError,
)
from switch_controller.logging_abstraction import get_logger
from switch_controller.structs import ActuatorSinkProtocol, BrokerSessionProtocol, ControlMessage

logger = get_logger(__name__)

PAYLOAD_OFF = "0"
PAYLOAD_ON = "1"
# SUBACK return codes at or above this value mean the broker refused the subscription
SUBACK_FAILURE = 0x80


def parse_control_payload(payload: bytes) -> bool:
    """Interpret a control payload as the desired actuator state.

    Surrounding whitespace is ignored.

    Raises:
        MalformedControlPayloadError: payload is neither "0" nor "1"

    """
    text = payload.decode("utf-8", errors="replace").strip()
    if text == PAYLOAD_ON:
        return True
    if text == PAYLOAD_OFF:
        return False
    raise MalformedControlPayloadError(text)


class DeviceController:
    """Owns ActuatorState. Announces presence and subscribes after every handshake."""

    lp: str = "controller:"

    def __init__(
        self,
        session: BrokerSessionProtocol,
        actuator: ActuatorSinkProtocol,
        client_id: str,
        status_topic: str,
        control_topic: str,
        qos: int = 1,
    ) -> None:
        self.session = session
        self.actuator = actuator
        self.client_id = client_id
        self.status_topic = status_topic
        self.control_topic = control_topic
        self.qos = qos
        self.state: bool = False
        self.session_id: str | None = None

    @property
    def announcement(self) -> bytes:
        return f"{self.client_id} connected".encode()

    def reset_output(self) -> None:
        """Force the actuator off, as on power-up."""
        lp = f"{self.lp}reset_output:"
        try:
            self.actuator.write(False)
        except ActuatorWriteError:
            logger.exception("%s could not force the output off", lp)
            return
        self.state = False
        metrics.record_actuator_state(False)

    def on_connected(self, session_id: str) -> None:
        """Publish the announcement on the status topic, then subscribe to the control topic."""
        lp = f"{self.lp}on_connected:"
        self.session_id = session_id

        pub_id = self.session.publish(self.status_topic, self.qos, False, self.announcement)
        if pub_id == 0:
            err = PublishFailedError(self.status_topic)
            metrics.record_broker_op_failure(err.operation)
            logger.error("%s %s", lp, err)
        else:
            logger.debug("%s announcement queued", lp, extra={"packet_id": pub_id, "topic": self.status_topic})

        sub_id = self.session.subscribe(self.control_topic, self.qos)
        if sub_id == 0:
            err = SubscribeFailedError(self.control_topic)
            metrics.record_broker_op_failure(err.operation)
            logger.error("%s %s, device will not receive commands until the next reconnect", lp, err)
        else:
            logger.info(
                "%s subscribing to control topic",
                lp,
                extra={"packet_id": sub_id, "topic": self.control_topic, "qos": self.qos},
            )

    def on_shutdown(self) -> None:
        """Drop the control subscription before the session is closed."""
        lp = f"{self.lp}on_shutdown:"
        if self.session_id is None:
            return
        unsub_id = self.session.unsubscribe(self.control_topic)
        if unsub_id == 0:
            err = UnsubscribeFailedError(self.control_topic)
            metrics.record_broker_op_failure(err.operation)
            logger.warning("%s %s", lp, err)
        self.session_id = None

    def on_disconnected(self) -> None:
        self.session_id = None

    def on_message(self, message: ControlMessage) -> None:
        lp = f"{self.lp}on_message:"
        if message.topic != self.control_topic:
            logger.debug("%s ignoring message on unrelated topic", lp, extra={"topic": message.topic})
            return

        try:
            if message.is_fragment:
                raise FragmentedPayloadError(message.chunk_index, message.chunk_total)
            desired = parse_control_payload(message.payload)
        except FragmentedPayloadError as e:
            metrics.record_control_message("fragmented")
            logger.warning("%s %s", lp, e)
            return
        except MalformedControlPayloadError as e:
            metrics.record_control_message("ignored")
            logger.info("%s %s, output unchanged", lp, e, extra={"qos": message.qos})
            return

        try:
            self.actuator.write(desired)
        except ActuatorWriteError:
            metrics.record_control_message("failed")
            logger.exception("%s output left %s", lp, "ON" if self.state else "OFF", extra={"qos": message.qos})
            return

        self.state = desired
        metrics.record_control_message("applied")
        metrics.record_actuator_state(desired)
        logger.info("%s output %s", lp, "ON" if desired else "OFF", extra={"qos": message.qos})

    def on_subscribe_result(self, packet_id: int, granted_qos: tuple[int, ...]) -> None:
        lp = f"{self.lp}on_subscribe_result:"
        if packet_id == 0 or any(code >= SUBACK_FAILURE for code in granted_qos):
            metrics.record_broker_op_failure("subscribe")
            logger.error("%s subscription failed", lp, extra={"packet_id": packet_id, "codes": list(granted_qos)})
            return
        logger.info("%s subscription confirmed", lp, extra={"packet_id": packet_id, "granted_qos": list(granted_qos)})

    def on_publish_result(self, packet_id: int) -> None:
        lp = f"{self.lp}on_publish_result:"
        if packet_id == 0:
            metrics.record_broker_op_failure("publish")
            logger.error("%s publish failed", lp)
            return
        logger.debug("%s publish confirmed", lp, extra={"packet_id": packet_id})

    def on_unsubscribe_result(self, packet_id: int) -> None:
        lp = f"{self.lp}on_unsubscribe_result:"
        if packet_id == 0:
            metrics.record_broker_op_failure("unsubscribe")
            logger.error("%s unsubscribe failed", lp)
            return
        logger.info("%s subscription cancelled", lp, extra={"packet_id": packet_id})

    def dispatch(self, event: Event) -> None:
        """Apply a message or acknowledgement event; other events are ignored."""
        match event:
            case MessageReceived(message=message):
                self.on_message(message)
            case SubscribeResult(packet_id=packet_id, granted_qos=granted_qos):
                self.on_subscribe_result(packet_id, granted_qos)
            case PublishResult(packet_id=packet_id):
                self.on_publish_result(packet_id)
            case UnsubscribeResult(packet_id=packet_id):
                self.on_unsubscribe_result(packet_id)
            case _:
                pass
