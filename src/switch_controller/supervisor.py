"""Reconnect supervisor.

Decides when to (re)attempt a broker connection. Attempts are only ever started by
link-up, by an explicit ``attempt_connect`` call, or by ``tick`` once the retry
delay has elapsed. Nothing here blocks: the session only initiates the handshake,
and the outcome arrives later as a BrokerConnected / BrokerDisconnected event.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from switch_controller import metrics
from switch_controller.events import BrokerConnected, BrokerDisconnected, Event, LinkDown, LinkUp
from switch_controller.exceptions import ConnectFailedError
from switch_controller.logging_abstraction import get_logger
from switch_controller.retry_policy import FixedIntervalPolicy, RetryPolicy
from switch_controller.session_context import new_session_id, set_session_id
from switch_controller.structs import (
    BrokerSessionProtocol,
    ConnectionListenerProtocol,
    ConnectionState,
    DisconnectReason,
    RetrySchedule,
)

logger = get_logger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class ReconnectSupervisor:
    """Owns ConnectionState and the RetrySchedule.

    Args:
        session: Broker session collaborator used to start connect attempts
        listener: Notified with a fresh session id after every handshake
        retry_interval_ms: Minimum delay between a failure and the next attempt
        retry_policy: Delay policy; defaults to a fixed interval
        clock: Monotonic millisecond clock, used when callers pass no ``now``
    """

    lp: str = "supervisor:"

    def __init__(
        self,
        session: BrokerSessionProtocol,
        listener: ConnectionListenerProtocol,
        retry_interval_ms: int,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.session = session
        self.listener = listener
        self.state: ConnectionState = ConnectionState.DISCONNECTED
        self.schedule = RetrySchedule(retry_interval_ms=retry_interval_ms)
        self.retry_policy: RetryPolicy = retry_policy or FixedIntervalPolicy(retry_interval_ms)
        self.network_up: bool = False
        self.session_id: str | None = None
        self._clock = clock
        self._current_delay_ms: float = float(retry_interval_ms)
        metrics.record_connection_state(self.state.value)

    @property
    def retry_pending(self) -> bool:
        return self.schedule.pending

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            logger.debug("%s state %s -> %s", self.lp, self.state.value, state.value)
        self.state = state
        metrics.record_connection_state(state.value)

    def _arm_retry(self, now: float) -> None:
        self.schedule.arm(now)
        # a policy may jitter, so the delay is fixed once per armed retry
        self._current_delay_ms = max(
            float(self.schedule.retry_interval_ms),
            self.retry_policy.get_delay_ms(self.schedule.attempts),
        )
        logger.info(
            "%s retry armed, next attempt in %.0f ms",
            self.lp,
            self._current_delay_ms,
            extra={"attempts": self.schedule.attempts},
        )

    def _now(self, now: float | None) -> float:
        return self._clock() if now is None else now

    def on_network_available(self, now: float | None = None) -> None:
        """Link came up: connect right away unless a session exists or is being set up."""
        lp = f"{self.lp}on_network_available:"
        self.network_up = True
        metrics.record_link_state(True)
        if self.state is not ConnectionState.DISCONNECTED:
            logger.debug("%s already %s, nothing to do", lp, self.state.value)
            return
        logger.info("%s network link up, connecting to broker", lp)
        self.attempt_connect(now)

    def on_network_lost(self, reason: str = "") -> None:
        """Link went down: suspend retries until the next link-up."""
        lp = f"{self.lp}on_network_lost:"
        self.network_up = False
        metrics.record_link_state(False)
        if self.schedule.pending:
            logger.info("%s retries suspended until the link returns", lp)
        self.schedule.disarm()
        logger.warning("%s network link down", lp, extra={"reason": reason} if reason else None)

    def attempt_connect(self, now: float | None = None) -> bool:
        """Ask the session to start a handshake.

        Returns:
            True if the session accepted the request (state is now CONNECTING)

        """
        lp = f"{self.lp}attempt_connect:"
        now = self._now(now)
        if self.state is ConnectionState.CONNECTING:
            logger.debug("%s connect attempt already in flight, skipping", lp)
            return False
        if self.state is ConnectionState.CONNECTED:
            logger.debug("%s already connected, skipping", lp)
            return False

        logger.info("%s starting broker connection", lp)
        if not self.session.connect():
            logger.warning("%s %s", lp, ConnectFailedError("could not initiate connection"))
            metrics.record_connect_attempt("failed")
            self._set_state(ConnectionState.DISCONNECTED)
            self._arm_retry(now)
            return False

        metrics.record_connect_attempt("initiated")
        self.schedule.disarm()
        self._set_state(ConnectionState.CONNECTING)
        return True

    def on_broker_connected(self, session_present: bool = False) -> None:
        lp = f"{self.lp}on_broker_connected:"
        self._set_state(ConnectionState.CONNECTED)
        self.schedule.reset()
        self.session_id = new_session_id()
        set_session_id(self.session_id)
        logger.info("%s connected to broker", lp, extra={"session_present": session_present})
        self.listener.on_connected(self.session_id)

    def on_broker_disconnected(
        self,
        reason: DisconnectReason = DisconnectReason.TCP_DISCONNECTED,
        now: float | None = None,
    ) -> None:
        lp = f"{self.lp}on_broker_disconnected:"
        now = self._now(now)
        was = self.state
        self._set_state(ConnectionState.DISCONNECTED)
        metrics.record_disconnect(reason.name)
        if was is ConnectionState.CONNECTING:
            err = ConnectFailedError(reason.name, int(reason))
            metrics.record_connect_attempt("failed")
            logger.warning("%s %s", lp, err)
        else:
            logger.warning(
                "%s broker disconnected",
                lp,
                extra={"reason": reason.name, "previous_state": was.value},
            )
        self.session_id = None
        set_session_id(None)
        if self.network_up:
            self._arm_retry(now)
        else:
            logger.info("%s network is down, waiting for link-up before reconnecting", lp)

    def tick(self, now: float | None = None) -> bool:
        """Issue the armed retry once its delay has elapsed.

        Returns:
            True if a connect attempt was made

        """
        now = self._now(now)
        if not self.schedule.pending:
            return False
        if now - self.schedule.last_attempt_ms > self._current_delay_ms:
            self.attempt_connect(now)
            return True
        return False

    def next_retry_delay_ms(self, now: float | None = None) -> float | None:
        """Milliseconds until ``tick`` would issue an attempt, None if nothing is armed."""
        if not self.schedule.pending:
            return None
        elapsed = self._now(now) - self.schedule.last_attempt_ms
        return max(self._current_delay_ms - elapsed, 0.0)

    def dispatch(self, event: Event, now: float | None = None) -> None:
        """Apply a network or session event; other events are ignored."""
        match event:
            case LinkUp():
                self.on_network_available(now)
            case LinkDown(reason=reason):
                self.on_network_lost(reason)
            case BrokerConnected(session_present=session_present):
                self.on_broker_connected(session_present)
            case BrokerDisconnected(reason=reason):
                self.on_broker_disconnected(reason, now)
            case _:
                pass
