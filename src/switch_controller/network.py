"""Network link observation.

Stands in for the platform's link-up / link-down notifications. A probe is polled
on a fixed cadence and an event is posted only when the observed state changes
(the first observation always posts).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from switch_controller.events import LinkDown, LinkUp, NetworkEvent
from switch_controller.exceptions import TransportDownError
from switch_controller.logging_abstraction import get_logger
from switch_controller.structs import LinkState

logger = get_logger(__name__)

SYSFS_NET_DIR = Path("/sys/class/net")
# operstate values that mean the interface can carry traffic
_UP_STATES = ("up", "unknown")


class LinkProbe(Protocol):
    def check(self) -> None:
        """Return if the link is usable.

        Raises:
            TransportDownError: link is down

        """
        ...


class AlwaysUpProbe:
    """For hosts where the link is managed elsewhere (containers, wired servers)."""

    def check(self) -> None:
        return None


class InterfaceProbe:
    """Reads ``/sys/class/net/<name>/operstate``."""

    def __init__(self, interface: str, base_dir: Path = SYSFS_NET_DIR) -> None:
        self.interface = interface
        self.operstate_path = base_dir / interface / "operstate"

    def check(self) -> None:
        try:
            state = self.operstate_path.read_text().strip().casefold()
        except OSError as e:
            msg = f"interface {self.interface} unavailable: {e.strerror or e}"
            raise TransportDownError(msg) from e
        if state not in _UP_STATES:
            msg = f"interface {self.interface} operstate={state}"
            raise TransportDownError(msg)


class LinkMonitor:
    """Polls a probe and reports transitions through ``post``."""

    lp: str = "link:"

    def __init__(
        self,
        probe: LinkProbe,
        post: Callable[[NetworkEvent], None],
        poll_seconds: float = 5.0,
    ) -> None:
        self.probe = probe
        self.post = post
        self.poll_seconds = poll_seconds
        self.state: LinkState | None = None

    def poll(self) -> NetworkEvent | None:
        """Probe once; return (and post) the event if the state changed."""
        reason = ""
        try:
            self.probe.check()
        except TransportDownError as e:
            observed = LinkState.DOWN
            reason = e.reason
        else:
            observed = LinkState.UP

        if observed is self.state:
            return None

        self.state = observed
        event: NetworkEvent = LinkUp() if observed is LinkState.UP else LinkDown(reason=reason)
        logger.debug("%s link %s", self.lp, observed.value, extra={"reason": reason} if reason else None)
        self.post(event)
        return event

    async def run(self) -> None:
        lp = f"{self.lp}run:"
        logger.debug("%s polling link every %ss", lp, self.poll_seconds)
        try:
            while True:
                _ = self.poll()
                await asyncio.sleep(self.poll_seconds)
        except asyncio.CancelledError:
            logger.debug("%s link monitor cancelled", lp)
            raise


def build_probe(interface: str | None) -> LinkProbe:
    if interface:
        return InterfaceProbe(interface)
    return AlwaysUpProbe()
