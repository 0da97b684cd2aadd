"""Service composition and the single-consumer event loop.

Every collaborator completion (link transitions, broker events, acknowledgements,
inbound messages) is posted onto one queue and applied here, one event at a time,
so ConnectionState and ActuatorState are only ever touched from this loop.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable

from switch_controller.actuator import build_actuator
from switch_controller.const import LINK_MONITOR_TASK_NAME
from switch_controller.controller import DeviceController
from switch_controller.events import BrokerDisconnected, Event
from switch_controller.logging_abstraction import get_logger
from switch_controller.metrics import start_metrics_server
from switch_controller.mqtt.session import AiomqttSession
from switch_controller.network import LinkMonitor, LinkProbe, build_probe
from switch_controller.retry_policy import BackoffPolicy, FixedIntervalPolicy, RetryPolicy
from switch_controller.structs import ActuatorSinkProtocol, BrokerSessionProtocol, ControllerSettings
from switch_controller.supervisor import ReconnectSupervisor, monotonic_ms

logger = get_logger(__name__)


def build_retry_policy(settings: ControllerSettings) -> RetryPolicy:
    if settings.retry_backoff:
        return BackoffPolicy(settings.retry_interval_ms, settings.max_retry_interval_ms)
    return FixedIntervalPolicy(settings.retry_interval_ms)


class SwitchControllerService:
    """Wires session, supervisor, controller, actuator and link monitor together.

    Collaborators can be injected; anything not given is built from ``settings``.
    """

    lp: str = "service:"

    def __init__(
        self,
        settings: ControllerSettings,
        *,
        session: BrokerSessionProtocol | None = None,
        actuator: ActuatorSinkProtocol | None = None,
        probe: LinkProbe | None = None,
        clock: Callable[[], float] = monotonic_ms,
        dry_run: bool = False,
    ) -> None:
        self.settings = settings
        self.events: asyncio.Queue[Event] = asyncio.Queue()
        self.actuator: ActuatorSinkProtocol = actuator or build_actuator(settings, dry_run=dry_run)
        self.session: BrokerSessionProtocol = session or AiomqttSession(settings, self.post)
        self.controller = DeviceController(
            session=self.session,
            actuator=self.actuator,
            client_id=settings.client_id,
            status_topic=settings.status_topic,
            control_topic=settings.control_topic,
            qos=settings.qos,
        )
        self.supervisor = ReconnectSupervisor(
            session=self.session,
            listener=self.controller,
            retry_interval_ms=settings.retry_interval_ms,
            retry_policy=build_retry_policy(settings),
            clock=clock,
        )
        self.link_monitor = LinkMonitor(
            probe=probe or build_probe(settings.link_interface),
            post=self.post,
            poll_seconds=settings.link_poll_seconds,
        )
        self.tasks: list[asyncio.Task[None]] = []
        self.run_task: asyncio.Task[None] | None = None

    def post(self, event: Event) -> None:
        self.events.put_nowait(event)

    def dispatch(self, event: Event, now: float | None = None) -> None:
        """Apply one event: supervisor first, then controller."""
        self.supervisor.dispatch(event, now)
        if isinstance(event, BrokerDisconnected):
            self.controller.on_disconnected()
        self.controller.dispatch(event)

    def wait_timeout(self) -> float | None:
        """Seconds to wait for the next event before the armed retry is due."""
        delay_ms = self.supervisor.next_retry_delay_ms()
        if delay_ms is None:
            return None
        # tick fires strictly after the delay
        return (delay_ms + 1) / 1000.0

    async def run(self) -> None:
        lp = f"{self.lp}run:"
        self.run_task = asyncio.current_task()
        self.controller.reset_output()
        if self.settings.metrics_port:
            start_metrics_server(self.settings.metrics_port)
            logger.info("%s metrics exported", lp, extra={"port": self.settings.metrics_port})

        self.tasks.append(asyncio.create_task(self.link_monitor.run(), name=LINK_MONITOR_TASK_NAME))
        logger.info(
            "%s switch controller running",
            lp,
            extra={
                "broker": f"{self.settings.broker_host}:{self.settings.broker_port}",
                "control_topic": self.settings.control_topic,
                "status_topic": self.settings.status_topic,
            },
        )
        try:
            while True:
                try:
                    event = await asyncio.wait_for(self.events.get(), timeout=self.wait_timeout())
                except TimeoutError:
                    _ = self.supervisor.tick()
                    continue
                self.dispatch(event)
                # a steady stream of events must not starve an armed retry
                _ = self.supervisor.tick()
        except asyncio.CancelledError:
            logger.debug("%s run loop cancelled, shutting down...", lp)
            raise
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        lp = f"{self.lp}shutdown:"
        self.controller.on_shutdown()
        for task in self.tasks:
            if not task.done():
                _ = task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self.tasks.clear()
        await self.session.close()
        self.actuator.close()
        logger.info("%s switch controller stopped", lp)

    def stop(self) -> None:
        """Cancel the run loop; ``run`` performs the graceful shutdown."""
        if self.run_task is not None and not self.run_task.done():
            logger.info("%s stop requested", self.lp)
            _ = self.run_task.cancel()
