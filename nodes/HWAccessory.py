"""
homeworks-poly NodeServer/Plugin for EISY/Polisy

(C) 2025

class HWAccessory

Holds the desired/actual On and Brightness state of one Homeworks output
and the callback contract between the ISY side and the processor side.
"""

# std libraries
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional

# external libraries
from udi_interface import LOGGER

# personal libraries
pass

# constants
OFF = 0
FULL = 100

ACCESSORY_INFO = {
    'manufacturer': 'Homeworks',
    'model': 'Homeworks Plugin',
    'serial_number': 'n/a',
    'firmware_revision': '0.2',
}


class InvalidBrightness(ValueError):
    """Raised when a brightness is not an integer in [OFF, FULL]."""


@dataclass(frozen=True)
class AccessoryIdentity:
    name: str
    uuid: str
    integration_id: str
    dimmable: bool


@dataclass
class DimmerState:
    on: bool = False
    brightness: int = OFF


def validate_brightness(value) -> int:
    """Return value if it is a usable brightness, else raise InvalidBrightness."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidBrightness(f"brightness must be an int, got {value!r}")
    if not OFF <= value <= FULL:
        raise InvalidBrightness(f"brightness {value} outside {OFF}..{FULL}")
    return value


class HWAccessory:
    """State adapter for a single switched or dimmed Homeworks output.

    Requests from the ISY (set_on, set_brightness) change the desired state
    and are pushed to the processor through the outbound callback, called as
    ``callback(brightness, dimmable, accessory)``. Levels reported by the
    processor (update_brightness) are pushed back to the ISY through the
    ``on_changed`` and ``brightness_changed`` sinks and never reach the
    outbound callback.

    The invariant ``on == (brightness > 0)`` holds after every call.
    """

    def __init__(self, name: str, uuid: str, integration_id: str, dimmable: bool,
                 callback: Optional[Callable] = None,
                 on_changed: Optional[Callable[[bool], None]] = None,
                 brightness_changed: Optional[Callable[[int], None]] = None,
                 log=LOGGER):
        """
        Args:
            name: Display name of the output.
            uuid: Unique identifier, the node address on the ISY side.
            integration_id: Homeworks integration id used to address the output.
            dimmable: False for relays that only support full on/off.
            callback: Outbound handler for desired state changes.
            on_changed: Sink receiving the new On value on device reports.
            brightness_changed: Sink receiving the new Brightness on device reports.
            log: Any object with debug() and warning(); defaults to LOGGER.
        """
        self.identity = AccessoryIdentity(name, uuid, str(integration_id), bool(dimmable))
        self._state = DimmerState()
        self._lock = Lock()
        self._callback = callback
        self._on_changed = on_changed
        self._brightness_changed = brightness_changed
        self.log = log
        self.lpfx = f'{self.identity.uuid}:{self.identity.name}'


    def set_callback(self, callback: Optional[Callable]):
        """Register (or clear with None) the outbound desired-state handler."""
        self._callback = callback


    def set_sinks(self, on_changed: Optional[Callable[[bool], None]],
                  brightness_changed: Optional[Callable[[int], None]]):
        """Register the ISY-facing sinks used by update_brightness."""
        self._on_changed = on_changed
        self._brightness_changed = brightness_changed


    # identity
    def get_integration_id(self) -> str:
        return self.identity.integration_id

    def get_name(self) -> str:
        return self.identity.name

    def get_uuid(self) -> str:
        return self.identity.uuid

    def get_is_dimmable(self) -> bool:
        return self.identity.dimmable

    def get_info(self) -> dict:
        return dict(ACCESSORY_INFO, name=self.identity.name)


    @property
    def state(self) -> DimmerState:
        """Copy of the current state, taken atomically."""
        with self._lock:
            return DimmerState(self._state.on, self._state.brightness)


    # ISY side
    def set_on(self, desired_on: bool):
        """Turn the output fully on (100) or off (0) and notify the processor."""
        if not isinstance(desired_on, bool):
            raise TypeError(f"on must be a bool, got {desired_on!r}")
        with self._lock:
            self._state.on = desired_on
            self._state.brightness = FULL if desired_on else OFF
            brightness = self._state.brightness
        self.log.debug(f"{self.lpfx} set_on: {desired_on} dim: {self.identity.dimmable}")
        self._notify_desired(brightness)


    def get_on(self) -> bool:
        with self._lock:
            is_on = self._state.on
        self.log.debug(f"{self.lpfx} get_on -> {'ON' if is_on else 'OFF'}")
        return is_on


    def set_brightness(self, requested: int):
        """Set the brightness requested by the ISY and notify the processor.

        Outputs that are not dimmable stay binary: any request while on, or
        any positive request while off, resolves to FULL, otherwise OFF.

        Raises:
            InvalidBrightness: requested is not an int in [OFF, FULL].
        """
        requested = validate_brightness(requested)
        self.log.debug(f"{self.lpfx} set_brightness: {requested}")
        with self._lock:
            resolved = requested
            if not self.identity.dimmable:
                resolved = FULL if (self._state.on or requested > OFF) else OFF
            self._state.brightness = resolved
            self._state.on = resolved > OFF
        self._notify_desired(resolved)


    def get_brightness(self) -> int:
        with self._lock:
            brightness = self._state.brightness
        self.log.debug(f"{self.lpfx} get_brightness -> {brightness}")
        return brightness


    # processor side
    def update_brightness(self, reported: int):
        """Apply a level reported by the processor and push it to the ISY.

        Raises:
            InvalidBrightness: reported is not an int in [OFF, FULL].
        """
        reported = validate_brightness(reported)
        self.log.debug(f"{self.lpfx} update_brightness: {reported}")
        with self._lock:
            self._state.brightness = reported
            self._state.on = reported > OFF
            is_on = self._state.on
        if self._on_changed:
            self._on_changed(is_on)
        if self._brightness_changed:
            self._brightness_changed(reported)


    def _notify_desired(self, brightness: int):
        if self._callback is None:
            self.log.warning(f"{self.lpfx} no outbound callback, level {brightness} not sent")
            return
        self._callback(brightness, self.identity.dimmable, self)
