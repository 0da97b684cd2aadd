"""Binary output sinks.

``MemoryActuator`` keeps the value in process (dry runs, tests). ``GpioActuator``
drives a GPIO pin through gpiozero, which sits on top of RPi.GPIO (or lgpio) on a
Raspberry Pi.
"""

from __future__ import annotations

from gpiozero import DigitalOutputDevice, GPIOZeroError
from gpiozero.pins import Factory

from switch_controller.exceptions import ActuatorWriteError, ConfigError
from switch_controller.logging_abstraction import get_logger
from switch_controller.structs import ActuatorSinkProtocol, ControllerSettings

logger = get_logger(__name__)


class MemoryActuator:
    """Output line kept in memory."""

    def __init__(self) -> None:
        self.value: bool = False

    def write(self, on: bool) -> None:
        self.value = on

    def close(self) -> None:
        pass


class GpioActuator:
    """Output line on a BCM-numbered GPIO pin.

    The pin is claimed as an output driven low as soon as the actuator is built, so
    the line is off before the first broker connection. ``close`` releases the pin.

    Args:
        pin: BCM pin number
        pin_factory: gpiozero pin factory; the library default when omitted

    Raises:
        ConfigError: the pin cannot be claimed as an output
    """

    lp: str = "actuator:gpio:"

    def __init__(self, pin: int, pin_factory: Factory | None = None) -> None:
        self.pin = pin
        try:
            self.device = DigitalOutputDevice(pin, initial_value=False, pin_factory=pin_factory)
        except GPIOZeroError as e:
            msg = f"cannot set up GPIO pin {pin} as an output: {e}"
            raise ConfigError(msg) from e
        logger.debug("%s pin set up as output, driven low", self.lp, extra={"pin": pin})

    def write(self, on: bool) -> None:
        try:
            if on:
                self.device.on()
            else:
                self.device.off()
        except (GPIOZeroError, OSError) as e:
            raise ActuatorWriteError(self.pin, on) from e

    def close(self) -> None:
        self.device.close()
        logger.debug("%s pin released", self.lp, extra={"pin": self.pin})


def build_actuator(settings: ControllerSettings, dry_run: bool = False) -> ActuatorSinkProtocol:
    if dry_run or settings.actuator == "memory":
        logger.info("actuator: using in-memory output line")
        return MemoryActuator()
    assert settings.pin is not None, "validated by ControllerSettings"
    logger.info("actuator: driving GPIO output pin", extra={"pin": settings.pin})
    return GpioActuator(settings.pin)
