"""
homeworks-poly NodeServer/Plugin for EISY/Polisy

(C) 2025

node HWSwitch

Class for a Homeworks relay output that is only ever full on or full off.
"""

# std libraries
pass

# external libraries
from udi_interface import LOGGER

# personal libraries
from .HWDimmer import HWDimmer
from .HWAccessory import OFF


class HWSwitch(HWDimmer):
    """Node representing a non-dimmable Homeworks output.

    Shares the accessory wiring of HWDimmer but registers no brightness
    commands; a 'DON' level is ignored and the relay goes fully on.
    """
    id = "hwswitch"
    dimmable = False

    def on_cmd(self, command=None):
        """Handles 'DON' from the ISY, always full on."""
        LOGGER.info(f"{self.lpfx}, {command}")
        self._set_on(True)
        LOGGER.debug("Exit")


    hint = '0x01040200'
    # home, relay, on/off power strip

    drivers = [
        {'driver': 'ST', 'value': OFF, 'uom': 78, 'name': "Power"},
        {'driver': 'GV0', 'value': 0, 'uom': 2, 'name': "On"},
    ]

    commands = {
        "QUERY": HWDimmer.query,
        "DON": on_cmd,
        "DOF": HWDimmer.off_cmd,
        "DFON": HWDimmer.fast_on_cmd,
        "DFOF": HWDimmer.fast_off_cmd,
    }
