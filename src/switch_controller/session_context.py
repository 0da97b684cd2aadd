"""
Broker session id tracking for log scoping.

Every successful broker handshake opens a new session. The session id is kept in a
contextvar so that log lines emitted while handling that session's events can be
tied back to it, including lines emitted from tasks spawned inside the session.
"""

from __future__ import annotations

import contextvars
import uuid

__all__ = [
    "get_session_id",
    "new_session_id",
    "set_session_id",
]

_session_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "session_id",
    default=None,
)


def new_session_id() -> str:
    """Mint a session id (UUID4 hex, no dashes)."""
    return uuid.uuid4().hex


def get_session_id() -> str | None:
    return _session_id.get()


def set_session_id(session_id: str | None) -> None:
    _session_id.set(session_id)
