"""
homeworks-poly NodeServer/Plugin for EISY/Polisy

(C) 2025

node HWDimmer

Class for a single Homeworks dimmer output.
"""

# std libraries
from typing import Optional

# external libraries
from udi_interface import Node, LOGGER

# personal libraries
from .HWAccessory import HWAccessory, InvalidBrightness, OFF, FULL

# constants
INC = 10


class HWDimmer(Node):
    """Node representing a dimmable Homeworks output.

    The node is the ISY side of an HWAccessory. ISY commands change the
    accessory's desired state, which the accessory hands to the controller
    for publishing. Levels reported by the processor arrive through
    update_level and come back out through the accessory's sinks as driver
    updates.
    """
    id = "hwdimmer"
    dimmable = True

    def __init__(self, polyglot, primary, address, name, device):
        """Initializes the HWDimmer node.

        Args:
            polyglot: Reference to the Polyglot interface.
            primary: The address of the parent node.
            address: The address of this node.
            name: The name of this node.
            device: Dictionary containing device-specific information,
                    including 'integration_id' and optionally 'uuid'.
        """
        super().__init__(polyglot, primary, address, name)
        self.controller = self.poly.getNode(self.primary)
        self.lpfx = f'{address}:{name}'
        self.integration_id = str(device["integration_id"])
        self.on_state = False
        self.accessory = HWAccessory(
            name,
            device.get("uuid", address),
            self.integration_id,
            self.dimmable,
            callback=self.controller.send_level,
            on_changed=self._report_on,
            brightness_changed=self._report_brightness,
        )
        LOGGER.info(f"{self.lpfx} created {self.accessory.get_info()}")


    def update_level(self, level: int):
        """Applies a level reported by the processor for this output.

        Args:
            level: Output level 0-100 from a ~OUTPUT report.
        """
        LOGGER.info(f"{self.lpfx} integration_id:{self.integration_id}, level:{level}")
        try:
            self.accessory.update_brightness(level)
        except InvalidBrightness as ex:
            LOGGER.error(f"{self.lpfx} rejected report: {ex}")
            return
        LOGGER.debug("Exit")


    def _report_on(self, is_on: bool):
        """Sink for the On value; reports DON/DOF to the ISY only on a change."""
        self.setDriver("GV0", 1 if is_on else 0)
        if is_on != self.on_state:
            self.reportCmd("DON" if is_on else "DOF")
            self.on_state = is_on


    def _report_brightness(self, brightness: int):
        self.setDriver("ST", brightness)


    def _report_state(self):
        """Pushes the accessory state to the drivers after an ISY command."""
        state = self.accessory.state
        self.setDriver("ST", state.brightness)
        self.setDriver("GV0", 1 if state.on else 0)
        self.on_state = state.on


    def _command_level(self, command: Optional[dict]) -> Optional[int]:
        """Extracts a 0-100 level from a command, None if it carries none."""
        if not command or command.get("value") is None:
            return None
        try:
            level = int(float(command["value"]))
        except (ValueError, TypeError, OverflowError):
            LOGGER.warning(f"{self.lpfx} invalid 'value' in command: {command}")
            return None
        return max(OFF, min(FULL, level))


    def _set_level(self, level: int):
        try:
            self.accessory.set_brightness(level)
        except InvalidBrightness as ex:
            LOGGER.error(f"{self.lpfx} {ex}")
            return
        self._report_state()


    def _set_on(self, is_on: bool):
        self.accessory.set_on(is_on)
        self._report_state()


    def on_cmd(self, command=None):
        """Handles 'DON' from the ISY.

        Without a value, or with a value of 0, the output goes fully on.
        Otherwise the value is the brightness to set.

        Args:
            command: The command object from ISY. Can contain a 'value' key.
        """
        LOGGER.info(f"{self.lpfx}, {command}")
        level = self._command_level(command)
        if level is None or level == OFF:
            self._set_on(True)
        else:
            self._set_level(level)
        LOGGER.debug("Exit")


    def off_cmd(self, command=None):
        """Handles 'DOF' from the ISY."""
        LOGGER.info(f"{self.lpfx}, {command}")
        self._set_on(False)
        LOGGER.debug("Exit")


    def fast_on_cmd(self, command=None):
        """Handles 'DFON' from the ISY, always full on."""
        LOGGER.info(f"{self.lpfx}, {command}")
        self._set_on(True)
        LOGGER.debug("Exit")


    def fast_off_cmd(self, command=None):
        """Handles 'DFOF' from the ISY."""
        LOGGER.info(f"{self.lpfx}, {command}")
        self._set_on(False)
        LOGGER.debug("Exit")


    def brt_cmd(self, command=None):
        """Handles 'BRT' from the ISY, raising the level by INC."""
        LOGGER.info(f"{self.lpfx}, {command}")
        self._set_level(min(self.accessory.get_brightness() + INC, FULL))
        LOGGER.debug("Exit")


    def dim_cmd(self, command=None):
        """Handles 'DIM' from the ISY, lowering the level by INC."""
        LOGGER.info(f"{self.lpfx}, {command}")
        self._set_level(max(self.accessory.get_brightness() - INC, OFF))
        LOGGER.debug("Exit")


    def query(self, command=None):
        """Handles 'QUERY' from the ISY.

        Asks the processor for the output level and reports all drivers.
        """
        LOGGER.info(f"{self.lpfx}, {command}")
        self.controller.send_query(self.integration_id)
        self.reportDrivers()
        LOGGER.debug("Exit")


    hint = '0x01020900'
    # home, controller, dimmer switch
    # Hints See: https://github.com/UniversalDevicesInc/hints

    drivers = [
        {'driver': 'ST', 'value': OFF, 'uom': 51, 'name': "Brightness"},
        {'driver': 'GV0', 'value': 0, 'uom': 2, 'name': "On"},
    ]

    commands = {
        "QUERY": query,
        "DON": on_cmd,
        "DOF": off_cmd,
        "DFON": fast_on_cmd,
        "DFOF": fast_off_cmd,
        "BRT": brt_cmd,
        "DIM": dim_cmd,
    }
