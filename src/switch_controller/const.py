import logging
import os
from typing import Any

from switch_controller import __version__

__all__ = [
    "DEFAULT_CLIENT_ID",
    "DEFAULT_CONTROL_TOPIC",
    "DEFAULT_RETRY_INTERVAL_MS",
    "DEFAULT_STATUS_TOPIC",
    "FOREIGN_LOG_FORMATTER",
    "LINK_MONITOR_TASK_NAME",
    "MAX_PACKET_ID",
    "SERVICE_RUN_TASK_NAME",
    "SWITCH_CONFIG_FILE_PATH",
    "SWITCH_DEBUG",
    "SWITCH_LOG_FORMAT",
    "SWITCH_LOG_HUMAN_OUTPUT",
    "SWITCH_LOG_JSON_FILE",
    "SWITCH_LOG_NAME",
    "SWITCH_VERSION",
    "YES_ANSWER",
    "env_settings",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
SWITCH_LOG_NAME: str = "switch_controller"
SWITCH_VERSION: str = __version__

# adds logger name, used for third party loggers
FOREIGN_LOG_FORMATTER = logging.Formatter(
    "%(asctime)s.%(msecs)d %(levelname)s <%(name)s> [%(module)s:%(lineno)d] > %(message)s",
    "%m/%d/%y %H:%M:%S",
)

DEFAULT_CLIENT_ID: str = "switch-controller"
DEFAULT_STATUS_TOPIC: str = "device/status"
DEFAULT_CONTROL_TOPIC: str = "device/control"
DEFAULT_RETRY_INTERVAL_MS: int = 10000
# MQTT packet identifiers are 16 bit, 0 is reserved to flag a local failure
MAX_PACKET_ID: int = 65535
SERVICE_RUN_TASK_NAME = "SwitchControllerService_RUN"
LINK_MONITOR_TASK_NAME = "LinkMonitor_RUN"

SWITCH_CONFIG_FILE_PATH: str = os.environ.get("SWITCH_CONFIG_FILE_PATH", "/etc/switch-controller/config.yaml")
SWITCH_DEBUG: bool = os.environ.get("SWITCH_DEBUG", "0").casefold() in YES_ANSWER

# Logging Configuration
SWITCH_LOG_FORMAT: str = os.environ.get("SWITCH_LOG_FORMAT", "human")  # "json", "human", or "both"
SWITCH_LOG_JSON_FILE: str | None = os.environ.get("SWITCH_LOG_JSON_FILE") or None
SWITCH_LOG_HUMAN_OUTPUT: str = os.environ.get("SWITCH_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path

# env var -> settings field; values are read when settings are built so that a
# dotenv file loaded from the CLI is honoured
_ENV_FIELDS: dict[str, str] = {
    "SWITCH_MQTT_HOST": "broker_host",
    "SWITCH_MQTT_PORT": "broker_port",
    "SWITCH_MQTT_USER": "username",
    "SWITCH_MQTT_PASS": "password",
    "SWITCH_MQTT_TLS": "tls",
    "SWITCH_KEEPALIVE": "keepalive",
    "SWITCH_CLIENT_ID": "client_id",
    "SWITCH_STATUS_TOPIC": "status_topic",
    "SWITCH_CONTROL_TOPIC": "control_topic",
    "SWITCH_QOS": "qos",
    "SWITCH_RETRY_INTERVAL_MS": "retry_interval_ms",
    "SWITCH_RETRY_BACKOFF": "retry_backoff",
    "SWITCH_MAX_RETRY_INTERVAL_MS": "max_retry_interval_ms",
    "SWITCH_LINK_INTERFACE": "link_interface",
    "SWITCH_LINK_POLL_SECONDS": "link_poll_seconds",
    "SWITCH_ACTUATOR_KIND": "actuator",
    "SWITCH_ACTUATOR_PIN": "pin",
    "SWITCH_METRICS_PORT": "metrics_port",
}
_BOOL_FIELDS = ("tls", "retry_backoff")


def env_settings() -> dict[str, Any]:
    """Collect settings overrides from ``SWITCH_*`` environment variables.

    Unset or empty variables are skipped so model defaults apply. Values are left
    as strings (booleans excepted) for pydantic to coerce and validate.
    """
    values: dict[str, Any] = {}
    for env_name, field in _ENV_FIELDS.items():
        raw = os.environ.get(env_name)
        if not raw:
            continue
        if field in _BOOL_FIELDS:
            values[field] = raw.casefold() in YES_ANSWER
        else:
            values[field] = raw
    return values
