#!/usr/bin/env python3
"""
This is a Plugin/NodeServer for Polyglot v3 written in Python3
It is a plugin to interface a Lutron Homeworks QS processor, bridged onto
an MQTT server, and Polyglot for EISY/Polisy

homeworks-poly NodeServer/Plugin for EISY/Polisy

(c) 2025 Stephen Jenkins
"""

# std libraries
import sys

# external libraries
import udi_interface

# local imports
from nodes import Controller

LOGGER = udi_interface.LOGGER

VERSION = "0.2.1"

"""
0.2.1
DONE rediscovery rebuilds routes, recreates nodes whose id or type changed
DONE optional fade on #OUTPUT commands
DONE skip non-finite levels, one bad payload line no longer drops the rest

0.2.0
DONE non-dimmable outputs as HWSwitch, always full on/off
DONE reject out-of-range levels instead of passing them through
DONE lock accessory state, reports arrive on the MQTT thread

0.1.0
DONE first release: dimmer outputs, #OUTPUT/~OUTPUT over MQTT bridge
"""

if __name__ == "__main__":
    polyglot = None
    try:
        polyglot = udi_interface.Interface([])
        polyglot.start(VERSION)
        polyglot.updateProfile()

        # 'hwctrl' for both parent and address lets PG3 track server status
        control = Controller(polyglot, "hwctrl", "hwctrl", "Homeworks")

        polyglot.runForever()
    except (KeyboardInterrupt, SystemExit):
        LOGGER.warning("Received interrupt or exit...")
        if polyglot is not None:
            polyglot.stop()
    except Exception as err:
        LOGGER.error("Exception: {0}".format(err), exc_info=True)
    sys.exit(0)
