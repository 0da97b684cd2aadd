"""Shared fixtures for unit tests.

This module provides reusable fixtures for testing the switch controller components.
"""

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from _pytest.monkeypatch import MonkeyPatch

from switch_controller import const
from switch_controller.actuator import MemoryActuator
from switch_controller.session_context import set_session_id
from switch_controller.structs import ControllerSettings


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, ms: float) -> None:
        self.now_ms += ms


@pytest.fixture(autouse=True)
def clean_switch_env(monkeypatch: MonkeyPatch) -> None:
    """Keep host SWITCH_* variables from leaking into settings under test."""
    for env_name in const._ENV_FIELDS:
        monkeypatch.delenv(env_name, raising=False)


@pytest.fixture(autouse=True)
def reset_session_context() -> Generator[None]:
    yield
    set_session_id(None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> ControllerSettings:
    return ControllerSettings(
        broker_host="broker.local",
        client_id="switch-1",
        status_topic="device/status",
        control_topic="device/control",
        qos=1,
        retry_interval_ms=10000,
    )


@pytest.fixture
def mock_session() -> MagicMock:
    """Mock broker session that accepts every request.

    Returns a MagicMock whose connect() succeeds and whose publish/subscribe/
    unsubscribe return non-zero packet ids.
    """
    session: MagicMock = MagicMock()
    session.connect = MagicMock(return_value=True)
    session.publish = MagicMock(return_value=1)
    session.subscribe = MagicMock(return_value=2)
    session.unsubscribe = MagicMock(return_value=3)
    session.close = AsyncMock()
    return session


@pytest.fixture
def actuator() -> MemoryActuator:
    """In-memory output line with ``write`` wrapped in a spy."""
    sink = MemoryActuator()
    sink.write = MagicMock(wraps=sink.write)  # type: ignore[method-assign]
    return sink


@pytest.fixture
def listener() -> MagicMock:
    return MagicMock()
