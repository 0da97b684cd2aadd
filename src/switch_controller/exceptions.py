"""Error taxonomy for the switch controller.

None of these are fatal at runtime. They are raised at the seams where a failure is
detected and caught by the owning component, which logs and recovers. Only
``ConfigError`` is allowed to stop start-up.
"""

from __future__ import annotations


class SwitchControllerError(Exception):
    """Base class for switch controller errors."""


class ConfigError(SwitchControllerError):
    """Configuration could not be loaded or failed validation."""


class TransportDownError(SwitchControllerError):
    """Network link is unavailable.

    Raised by a link probe when the watched interface is missing or not
    operationally up. The link monitor turns it into a LinkDown event.
    """

    def __init__(self, reason: str = "link down"):
        self.reason = reason
        super().__init__(f"Transport down: {reason}")


class ConnectFailedError(SwitchControllerError):
    """Broker connect attempt failed before or during the handshake.

    Attributes:
        reason: DisconnectReason name or library message
        return_code: CONNACK return code if the broker answered, else None
    """

    def __init__(self, reason: str, return_code: int | None = None):
        self.reason = reason
        self.return_code = return_code
        detail = f" (rc={return_code})" if return_code is not None else ""
        super().__init__(f"Broker connect failed: {reason}{detail}")


class BrokerOperationError(SwitchControllerError):
    """A broker request could not be enqueued (zero packet id).

    Attributes:
        operation: "publish", "subscribe" or "unsubscribe"
        topic: Topic the request targeted
    """

    operation: str = "operation"

    def __init__(self, topic: str):
        self.topic = topic
        super().__init__(f"{self.operation} failed for topic '{topic}'")


class PublishFailedError(BrokerOperationError):
    operation = "publish"


class SubscribeFailedError(BrokerOperationError):
    operation = "subscribe"


class UnsubscribeFailedError(BrokerOperationError):
    operation = "unsubscribe"


class MalformedControlPayloadError(SwitchControllerError):
    """Control payload is neither "0" nor "1"."""

    def __init__(self, payload: str):
        self.payload = payload
        super().__init__(f"Unrecognized control payload: {payload!r}")


class FragmentedPayloadError(SwitchControllerError):
    """Payload arrived as one chunk of a larger message; reassembly is not supported."""

    def __init__(self, chunk_index: int, chunk_total: int):
        self.chunk_index = chunk_index
        self.chunk_total = chunk_total
        super().__init__(f"Fragmented payload rejected (chunk {chunk_index} of {chunk_total})")


class ActuatorWriteError(SwitchControllerError):
    """The output line could not be driven to the requested level.

    Attributes:
        pin: Output pin that refused the write
        on: Requested level
    """

    def __init__(self, pin: int, on: bool):
        self.pin = pin
        self.on = on
        super().__init__(f"Failed to drive output pin {pin} {'high' if on else 'low'}")
