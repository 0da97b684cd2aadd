"""Logging layer for the switch controller.

Every record is tagged with the broker session id that was current when it was
emitted, so a reconnect cycle can be followed through the log. Structured context
passed as ``extra=`` is kept apart from the message and rendered as a JSON object
or as ``key=value`` pairs, depending on the output format.

Output is configured from the environment (see ``const``):

- ``SWITCH_LOG_FORMAT``: ``human`` (default), ``json`` or ``both``
- ``SWITCH_LOG_JSON_FILE``: file for JSON lines
- ``SWITCH_LOG_HUMAN_OUTPUT``: ``stdout``, ``stderr`` or a file path
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing_extensions import override

from switch_controller.session_context import get_session_id

__all__ = [
    "HumanReadableFormatter",
    "JSONFormatter",
    "SwitchLogger",
    "get_logger",
]

# attribute on LogRecord carrying the structured context
CONTEXT_ATTR = "extra_data"
_NO_SESSION = "[--------]"
_STREAMS = ("stdout", "stderr")


def _record_context(record: logging.LogRecord) -> dict[str, object]:
    context = getattr(record, CONTEXT_ATTR, None)
    if isinstance(context, Mapping):
        return {str(k): v for k, v in context.items()}
    return {}


def _short_session_tag() -> str:
    session_id = get_session_id()
    return f"[{session_id[:8]}]" if session_id else _NO_SESSION


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "session_id": get_session_id(),
            "message": record.getMessage(),
        }
        if context := _record_context(record):
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``<time> <level> [module:line] [session] > message | key=value ...``"""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(session_tag)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        record.session_tag = _short_session_tag()
        line = super().format(record)
        context = _record_context(record)
        if not context:
            return line
        pairs = " | ".join(f"{key}={value}" for key, value in context.items())
        return f"{line} | {pairs}"


def _ensure_parent(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _human_handler(target: str) -> logging.Handler:
    if target in _STREAMS:
        return logging.StreamHandler(getattr(sys, target))
    try:
        return logging.FileHandler(_ensure_parent(Path(target)), mode="a")
    except OSError as e:
        print(f"Warning: cannot open log file {target} ({e}), logging to stdout", file=sys.stderr)
        return logging.StreamHandler(sys.stdout)


def _json_handler(target: str | Path) -> logging.Handler | None:
    try:
        return logging.FileHandler(_ensure_parent(Path(target)), mode="a")
    except OSError as e:
        print(f"Warning: cannot open JSON log file {target} ({e}), JSON output disabled", file=sys.stderr)
        return None


class SwitchLogger:
    """Thin wrapper over ``logging.Logger`` that accepts structured ``extra`` context.

    Handlers are attached once per logger name; later instances for the same
    name reuse them.

    Args:
        name: Logger name (normally the module ``__name__``)
        log_format: "human", "json" or "both"
        json_file: Destination for JSON lines; JSON output is skipped without it
        human_output: "stdout", "stderr" or a file path
    """

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
    ) -> None:
        from switch_controller.const import SWITCH_DEBUG

        self.name = name
        self.log_format = log_format
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if SWITCH_DEBUG else logging.INFO)
        if not self.logger.handlers:
            for handler in self._build_handlers(json_file, human_output or "stdout"):
                handler.setLevel(self.logger.level)
                self.logger.addHandler(handler)

    def _build_handlers(self, json_file: str | Path | None, human_output: str) -> list[logging.Handler]:
        handlers: list[logging.Handler] = []
        if self.log_format in ("json", "both") and json_file:
            json_handler = _json_handler(json_file)
            if json_handler is not None:
                json_handler.setFormatter(JSONFormatter())
                handlers.append(json_handler)
        if self.log_format in ("human", "both"):
            human = _human_handler(human_output)
            human.setFormatter(HumanReadableFormatter())
            handlers.append(human)
        return handlers

    def _log(
        self,
        level: int,
        msg: str,
        *args: object,
        extra: Mapping[str, object] | None = None,
        exc_info: bool = False,
    ) -> None:
        # stacklevel 3 attributes the record to whoever called debug()/info()/...
        self.logger.log(
            level,
            msg,
            *args,
            extra={CONTEXT_ATTR: dict(extra)} if extra else None,
            exc_info=exc_info,
            stacklevel=3,
        )

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def critical(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.CRITICAL, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR with the active exception's traceback."""
        self._log(logging.ERROR, msg, *args, extra=extra, exc_info=True)


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> SwitchLogger:
    """Return a SwitchLogger, falling back to the ``SWITCH_LOG_*`` settings."""
    from switch_controller.const import (
        SWITCH_LOG_FORMAT,
        SWITCH_LOG_HUMAN_OUTPUT,
        SWITCH_LOG_JSON_FILE,
    )

    return SwitchLogger(
        name,
        log_format=log_format or SWITCH_LOG_FORMAT,
        json_file=json_file or SWITCH_LOG_JSON_FILE,
        human_output=human_output or SWITCH_LOG_HUMAN_OUTPUT,
    )
