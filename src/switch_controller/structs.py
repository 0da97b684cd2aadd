from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Protocol, Self

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from switch_controller.const import (
    DEFAULT_CLIENT_ID,
    DEFAULT_CONTROL_TOPIC,
    DEFAULT_RETRY_INTERVAL_MS,
    DEFAULT_STATUS_TOPIC,
    env_settings,
)
from switch_controller.exceptions import ConfigError

_TOPIC_WILDCARDS = ("+", "#")


class ConnectionState(Enum):
    """Broker connection state, owned by the reconnect supervisor."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class DisconnectReason(IntEnum):
    """Why the broker session ended (or never started)."""

    USER_OK = 0
    MQTT_UNACCEPTABLE_PROTOCOL_VERSION = 1
    MQTT_IDENTIFIER_REJECTED = 2
    MQTT_SERVER_UNAVAILABLE = 3
    MQTT_MALFORMED_CREDENTIALS = 4
    MQTT_NOT_AUTHORIZED = 5
    TLS_BAD_FINGERPRINT = 6
    TCP_DISCONNECTED = 7


class LinkState(Enum):
    UP = "up"
    DOWN = "down"


@dataclass
class RetrySchedule:
    """When the last connect attempt (or disconnect) happened and how long to wait.

    Attributes:
        retry_interval_ms: Minimum wait between attempts
        last_attempt_ms: Monotonic timestamp of the last failed attempt or disconnect
        pending: Whether a retry is armed
        attempts: Consecutive failed attempts since the last successful handshake
    """

    retry_interval_ms: int
    last_attempt_ms: float = 0.0
    pending: bool = False
    attempts: int = 0

    def arm(self, now_ms: float) -> None:
        self.pending = True
        self.last_attempt_ms = now_ms
        self.attempts += 1

    def disarm(self) -> None:
        self.pending = False

    def reset(self) -> None:
        self.pending = False
        self.attempts = 0


@dataclass(frozen=True, slots=True)
class ControlMessage:
    """A single inbound message; consumed immediately, never retained."""

    topic: str
    payload: bytes
    qos: int = 0
    chunk_index: int = 0
    chunk_total: int = 1

    @property
    def is_fragment(self) -> bool:
        return self.chunk_index != 0 or self.chunk_total != 1


class BrokerSessionProtocol(Protocol):
    """Broker session collaborator: initiates requests, results arrive as events."""

    def connect(self) -> bool:
        """Initiate a connection. True means the attempt was started, not completed."""
        ...

    def subscribe(self, topic: str, qos: int) -> int:
        """Request a subscription. Returns the packet id, 0 on local failure."""
        ...

    def unsubscribe(self, topic: str) -> int:
        """Request an unsubscribe. Returns the packet id, 0 on local failure."""
        ...

    def publish(self, topic: str, qos: int, retain: bool, payload: bytes) -> int:
        """Request a publish. Returns the packet id, 0 on local failure."""
        ...

    async def close(self) -> None:
        """Finish in-flight requests and end the session."""
        ...


class ActuatorSinkProtocol(Protocol):
    """Single binary output line."""

    def write(self, on: bool) -> None:
        """Drive the output line on (True) or off (False).

        Raises:
            ActuatorWriteError: the line could not be driven

        """
        ...

    def close(self) -> None:
        """Release the output line."""
        ...


class ConnectionListenerProtocol(Protocol):
    """Receives the post-handshake hand-off from the reconnect supervisor."""

    def on_connected(self, session_id: str) -> None: ...


class ControllerSettings(BaseModel):
    """Validated configuration surface of the service."""

    broker_host: str = "localhost"
    broker_port: int = Field(default=1883, ge=1, le=65535)
    username: str | None = None
    password: str | None = None
    tls: bool = False
    keepalive: int = Field(default=60, gt=0)
    client_id: str = Field(default=DEFAULT_CLIENT_ID, min_length=1)
    status_topic: str = DEFAULT_STATUS_TOPIC
    control_topic: str = DEFAULT_CONTROL_TOPIC
    qos: int = Field(default=1, ge=0, le=2)
    retry_interval_ms: int = Field(default=DEFAULT_RETRY_INTERVAL_MS, gt=0)
    retry_backoff: bool = False
    max_retry_interval_ms: int = Field(default=300000, gt=0)
    link_interface: str | None = None
    link_poll_seconds: float = Field(default=5.0, gt=0)
    actuator: str = "memory"
    pin: int | None = Field(default=None, ge=0, le=53)
    metrics_port: int = Field(default=0, ge=0, le=65535)

    @field_validator("status_topic", "control_topic")
    @classmethod
    def _check_topic(cls, value: str) -> str:
        if not value:
            msg = "topic must not be empty"
            raise ValueError(msg)
        if any(w in value for w in _TOPIC_WILDCARDS):
            msg = f"topic '{value}' must not contain wildcards"
            raise ValueError(msg)
        return value

    @field_validator("actuator")
    @classmethod
    def _check_actuator(cls, value: str) -> str:
        value = value.casefold()
        if value not in ("memory", "gpio"):
            msg = f"unknown actuator kind '{value}' (expected 'memory' or 'gpio')"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def _check_dependent_fields(self) -> Self:
        if self.actuator == "gpio" and self.pin is None:
            msg = "actuator 'gpio' requires pin"
            raise ValueError(msg)
        if self.username is None and self.password is not None:
            msg = "password given without username"
            raise ValueError(msg)
        self.max_retry_interval_ms = max(self.max_retry_interval_ms, self.retry_interval_ms)
        return self

    @property
    def will_payload(self) -> bytes:
        return f"{self.client_id} disconnected".encode()

    @classmethod
    def from_env(cls, base: Mapping[str, Any] | None = None, **overrides: Any) -> ControllerSettings:
        """Build settings from ``SWITCH_*`` environment variables.

        Precedence, lowest first: model defaults, ``base`` (config file values),
        environment, keyword overrides.

        Raises:
            ConfigError: the merged values fail validation

        """
        values: dict[str, Any] = dict(base or {})
        values.update(env_settings())
        values.update(overrides)
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(str(e)) from e
