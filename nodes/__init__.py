"""Node classes used by the Homeworks Node Server."""

from .HWAccessory import HWAccessory as HWAccessory
from .HWDimmer import HWDimmer as HWDimmer
from .HWSwitch import HWSwitch as HWSwitch
from .Controller import Controller as Controller
