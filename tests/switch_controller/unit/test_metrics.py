"""Unit tests for Prometheus metrics helpers."""

from __future__ import annotations

from unittest.mock import patch

from prometheus_client import REGISTRY  # type: ignore[import-untyped]

from switch_controller import metrics


def sample(name: str, labels: dict[str, str] | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels or {})
    return 0.0 if value is None else value


class TestMetrics:
    """Tests for metric recording helpers."""

    def test_connection_state_is_one_hot(self):
        metrics.record_connection_state("connecting")

        assert sample("switch_connection_state", {"state": "connecting"}) == 1
        assert sample("switch_connection_state", {"state": "connected"}) == 0
        assert sample("switch_connection_state", {"state": "disconnected"}) == 0

    def test_counters_increment(self):
        before = sample("switch_control_messages_total", {"outcome": "applied"})

        metrics.record_control_message("applied")

        assert sample("switch_control_messages_total", {"outcome": "applied"}) == before + 1

    def test_gauges(self):
        metrics.record_link_state(True)
        metrics.record_actuator_state(False)

        assert sample("switch_link_up") == 1
        assert sample("switch_actuator_on") == 0

    def test_server_starts_once(self):
        with (
            patch("switch_controller.metrics.start_http_server") as mock_start,
            patch.dict(metrics._server_state, {"started": False}),
        ):
            metrics.start_metrics_server(9400)
            metrics.start_metrics_server(9400)

        mock_start.assert_called_once_with(9400)
