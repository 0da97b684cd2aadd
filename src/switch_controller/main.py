from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any

import dotenv
import uvloop
import yaml

from switch_controller.const import (
    FOREIGN_LOG_FORMATTER,
    SERVICE_RUN_TASK_NAME,
    SWITCH_CONFIG_FILE_PATH,
    SWITCH_LOG_NAME,
    SWITCH_VERSION,
    YES_ANSWER,
)
from switch_controller.exceptions import ConfigError
from switch_controller.logging_abstraction import get_logger
from switch_controller.service import SwitchControllerService
from switch_controller.structs import ControllerSettings

logger = get_logger(__name__)

# Third party loggers get their own formatter and stay quiet unless something breaks
_lib_handler = logging.StreamHandler(sys.stdout)
_lib_handler.setFormatter(FOREIGN_LOG_FORMATTER)
for _name in ("aiomqtt", "mqtt"):
    _lib_logger = logging.getLogger(_name)
    _lib_logger.setLevel(logging.WARNING)
    _lib_logger.propagate = False
    _lib_logger.addHandler(_lib_handler)

# config file section -> {key in section: settings field}
_CONFIG_SECTIONS: dict[str, dict[str, str]] = {
    "broker": {
        "host": "broker_host",
        "port": "broker_port",
        "username": "username",
        "password": "password",
        "tls": "tls",
        "keepalive": "keepalive",
    },
    "device": {
        "client_id": "client_id",
        "status_topic": "status_topic",
        "control_topic": "control_topic",
        "qos": "qos",
    },
    "reconnect": {
        "interval_ms": "retry_interval_ms",
        "backoff": "retry_backoff",
        "max_interval_ms": "max_retry_interval_ms",
    },
    "link": {
        "interface": "link_interface",
        "poll_seconds": "link_poll_seconds",
    },
    "actuator": {
        "kind": "actuator",
        "pin": "pin",
    },
}
_TOP_LEVEL_KEYS = ("metrics_port",)


def _process_section(section: str, section_data: dict[str, Any], values: dict[str, Any]) -> None:
    """Copy one config section into the flat settings mapping."""
    mapping = _CONFIG_SECTIONS[section]
    for key, value in section_data.items():
        field = mapping.get(key)
        if field is None:
            logger.warning("Unknown key '%s' in config section '%s', ignoring", key, section)
            continue
        values[field] = value


def parse_config(config_file: Path) -> dict[str, Any]:
    """Parse a YAML configuration file into settings field values.

    Args:
        config_file: Path to the YAML configuration file

    Returns:
        Mapping of ControllerSettings field names to raw values

    Raises:
        ConfigError: If the file cannot be read or is not a YAML mapping

    """
    logger.debug("Parsing config file: %s", config_file)
    try:
        with config_file.open() as f:
            config_data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.exception("Failed to parse config file: %s", config_file)
        msg = f"cannot load config file {config_file}: {e}"
        raise ConfigError(msg) from e

    values: dict[str, Any] = {}
    if not config_data:
        logger.warning("Config file is empty: %s", config_file)
        return values
    if not isinstance(config_data, dict):
        msg = f"config file {config_file} must contain a mapping"
        raise ConfigError(msg)

    for key, data in config_data.items():
        if key in _CONFIG_SECTIONS:
            if isinstance(data, dict):
                _process_section(key, data, values)
            else:
                logger.warning("Config section '%s' is not a mapping, ignoring", key)
        elif key in _TOP_LEVEL_KEYS:
            values[key] = data
        else:
            logger.warning("Unknown config section '%s', ignoring", key)

    logger.info("Parsed config: %d setting(s)", len(values), extra={"config_path": str(config_file)})
    return values


def load_settings(config_file: Path | None) -> ControllerSettings:
    """Merge the optional config file with the environment and validate."""
    file_values: dict[str, Any] = {}
    if config_file is not None:
        if config_file.exists():
            file_values = parse_config(config_file)
        else:
            logger.info("No config file at %s, using environment only", config_file)
    return ControllerSettings.from_env(base=file_values)


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="MQTT switch controller")
    _ = parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path(SWITCH_CONFIG_FILE_PATH),
        help="Path to the YAML config file",
    )
    _ = parser.add_argument(
        "--dry-run",
        action="store_true",
        dest="dry_run",
        help="Keep the output line in memory instead of driving hardware",
    )
    _ = parser.add_argument(
        "-D",
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    args = parser.parse_args(argv)

    if args.env:
        load_env_file(args.env)

    # re-read so a dotenv file can switch debug on
    if args.debug or os.environ.get("SWITCH_DEBUG", "0").casefold() in YES_ANSWER:
        enable_debug()
        logger.info("Debug mode enabled")

    return args


def enable_debug() -> None:
    """Lower every package logger (and its handlers) to DEBUG."""
    for name in list(logging.root.manager.loggerDict):
        if name != SWITCH_LOG_NAME and not name.startswith(f"{SWITCH_LOG_NAME}."):
            continue
        pkg_logger = logging.getLogger(name)
        pkg_logger.setLevel(logging.DEBUG)
        for handler in pkg_logger.handlers:
            handler.setLevel(logging.DEBUG)


def load_env_file(env_file: Path) -> None:
    env_path = env_file.expanduser().resolve()
    if not env_path.exists():
        logger.error(
            "Environment file not found",
            extra={"path": str(env_path)},
        )
    elif dotenv.load_dotenv(env_path, override=True):
        logger.info(
            " Environment variables loaded",
            extra={"source": str(env_path)},
        )
    else:
        logger.warning(
            "No environment variables loaded from file",
            extra={"path": str(env_path)},
        )


async def _run(service: SwitchControllerService) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, service.stop)
    logger.debug("Signal handlers configured for SIGINT & SIGTERM")
    await asyncio.create_task(service.run(), name=SERVICE_RUN_TASK_NAME)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the switch controller."""
    logger.info("Starting switch controller", extra={"version": SWITCH_VERSION})
    args = parse_cli(argv)

    try:
        settings = load_settings(args.config)
        service = SwitchControllerService(settings, dry_run=args.dry_run)
    except ConfigError as e:
        logger.critical("Invalid configuration: %s", e)
        return 2

    try:
        uvloop.run(_run(service))
    except asyncio.CancelledError:
        logger.info("Switch controller cancelled, shutting down...")
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    else:
        logger.info(" Switch controller stopped gracefully")
    finally:
        logger.info("Switch controller shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
