"""Prometheus metrics for the switch controller."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    start_http_server,
)

switch_connect_attempts_total: Final = Counter(  # type: ignore[assignment]
    "switch_connect_attempts_total",
    "Broker connect attempts",
    ["outcome"],
)

switch_disconnects_total: Final = Counter(  # type: ignore[assignment]
    "switch_disconnects_total",
    "Broker disconnects",
    ["reason"],
)

switch_connection_state: Final = Gauge(  # type: ignore[assignment]
    "switch_connection_state",
    "Current broker connection state",
    ["state"],
)

switch_link_up: Final = Gauge(  # type: ignore[assignment]
    "switch_link_up",
    "Network link state (1 up, 0 down)",
)

switch_actuator_on: Final = Gauge(  # type: ignore[assignment]
    "switch_actuator_on",
    "Actuator output state (1 on, 0 off)",
)

switch_control_messages_total: Final = Counter(  # type: ignore[assignment]
    "switch_control_messages_total",
    "Messages seen on the control topic",
    ["outcome"],
)

switch_broker_op_failures_total: Final = Counter(  # type: ignore[assignment]
    "switch_broker_op_failures_total",
    "Publish/subscribe/unsubscribe requests that failed",
    ["operation"],
)

_CONNECTION_STATES = ("disconnected", "connecting", "connected")
_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_connect_attempt(outcome: str) -> None:
    switch_connect_attempts_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_disconnect(reason: str) -> None:
    switch_disconnects_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_connection_state(state: str) -> None:
    """Set gauge to 1 for current state, 0 for all others."""
    for s in _CONNECTION_STATES:
        switch_connection_state.labels(state=s).set(1 if s == state else 0)  # type: ignore[no-untyped-call]


def record_link_state(up: bool) -> None:
    switch_link_up.set(1 if up else 0)  # type: ignore[no-untyped-call]


def record_actuator_state(on: bool) -> None:
    switch_actuator_on.set(1 if on else 0)  # type: ignore[no-untyped-call]


def record_control_message(outcome: str) -> None:
    switch_control_messages_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_broker_op_failure(operation: str) -> None:
    switch_broker_op_failures_total.labels(operation=operation).inc()  # type: ignore[no-untyped-call]
