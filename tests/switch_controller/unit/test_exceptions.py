"""Unit tests for the error taxonomy."""

from __future__ import annotations

import pytest

from switch_controller.exceptions import (
    ActuatorWriteError,
    BrokerOperationError,
    ConfigError,
    ConnectFailedError,
    FragmentedPayloadError,
    MalformedControlPayloadError,
    PublishFailedError,
    SubscribeFailedError,
    SwitchControllerError,
    TransportDownError,
    UnsubscribeFailedError,
)


class TestExceptionHierarchy:
    """Tests for exception inheritance."""

    @pytest.mark.parametrize(
        "exc_type",
        [
            ConfigError,
            TransportDownError,
            ConnectFailedError,
            BrokerOperationError,
            MalformedControlPayloadError,
            FragmentedPayloadError,
            ActuatorWriteError,
        ],
    )
    def test_all_inherit_from_base(self, exc_type: type[Exception]):
        assert issubclass(exc_type, SwitchControllerError)

    def test_broker_operation_errors(self):
        assert issubclass(PublishFailedError, BrokerOperationError)
        assert issubclass(SubscribeFailedError, BrokerOperationError)
        assert issubclass(UnsubscribeFailedError, BrokerOperationError)


class TestMessages:
    """Tests for error attributes and messages."""

    def test_transport_down(self):
        error = TransportDownError("eth0 operstate=down")

        assert error.reason == "eth0 operstate=down"
        assert str(error) == "Transport down: eth0 operstate=down"

    def test_transport_down_default_reason(self):
        assert TransportDownError().reason == "link down"

    def test_actuator_write(self):
        error = ActuatorWriteError(17, True)

        assert (error.pin, error.on) == (17, True)
        assert str(error) == "Failed to drive output pin 17 high"

    def test_connect_failed_with_return_code(self):
        error = ConnectFailedError("MQTT_NOT_AUTHORIZED", 5)

        assert error.return_code == 5
        assert str(error) == "Broker connect failed: MQTT_NOT_AUTHORIZED (rc=5)"

    def test_connect_failed_without_return_code(self):
        assert str(ConnectFailedError("could not initiate connection")) == (
            "Broker connect failed: could not initiate connection"
        )

    @pytest.mark.parametrize(
        ("exc_type", "operation"),
        [
            (PublishFailedError, "publish"),
            (SubscribeFailedError, "subscribe"),
            (UnsubscribeFailedError, "unsubscribe"),
        ],
    )
    def test_broker_operation_message(self, exc_type: type[BrokerOperationError], operation: str):
        error = exc_type("device/control")

        assert error.operation == operation
        assert error.topic == "device/control"
        assert str(error) == f"{operation} failed for topic 'device/control'"

    def test_malformed_payload(self):
        error = MalformedControlPayloadError("2")

        assert error.payload == "2"
        assert "'2'" in str(error)

    def test_fragmented_payload(self):
        error = FragmentedPayloadError(1, 3)

        assert (error.chunk_index, error.chunk_total) == (1, 3)
        assert "chunk 1 of 3" in str(error)
