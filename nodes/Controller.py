"""Homeworks Polyglot NodeServer for EISY/Polisy.

This module provides the Controller class for the homeworks-poly NodeServer,
which exposes the outputs of a Lutron Homeworks QS processor to the
EISY/Polisy home automation system through the Polyglot interface.

The processor's integration protocol is carried over an MQTT bridge: commands
are published to a command topic and output reports arrive on a status topic.
The Controller owns that connection, creates one node per configured output,
publishes the desired levels the nodes hand it, and routes the reported
levels back to the node owning each integration id.

Author: Stephen Jenkins
Copyright: (C) 2025 Stephen Jenkins
"""

# std libraries
import json, yaml, time, logging, math
from threading import Event, Condition
from typing import Dict, Optional, Any

# external libraries
from udi_interface import Node, LOGGER, Custom, LOG_HANDLER
from paho.mqtt.client import Client
from paho.mqtt.enums import CallbackAPIVersion

# personal libraries
from .protocol import (
    ProtocolError, format_set_level, format_query, parse_output, split_lines
)

# Nodes
from .HWDimmer import HWDimmer
from .HWSwitch import HWSwitch

DEFAULT_CONFIG = {
    'mqtt_server': 'localhost',
    'mqtt_port': 1884,
    'mqtt_user': 'admin',
    'mqtt_password': 'admin',
    'cmd_topic': 'homeworks/cmd',
    'status_topic': 'homeworks/status',
    'fade': None,
}

# Node class per device type
DEVICE_CONFIG = {
    'dimmer': {'node_class': HWDimmer},
    'switch': {'node_class': HWSwitch},
}

REQUIRED_FIELDS = ["id", "integration_id", "type"]


class Controller(Node):
    """Controller class for the Homeworks Polyglot NodeServer.

    Attributes:
        id (str): Node definition id ('hwctrl').
        hb (int): Heartbeat toggle.
        numNodes (int): Number of output nodes created by discovery.
        devlist (list): Configured outputs.
        general (dict): 'general' section of the devfile.
        integration_ids_to_devices (Dict[str, str]): Integration id to node address.
        mqttc (Client): MQTT client, None until connected.
        cmd_topic (str): Topic the processor commands are published on.
        status_topic (str): Topic the processor reports arrive on.
    """
    id = 'hwctrl'

    def __init__(self, poly, primary, address, name):
        """Initialize the Controller node.

        Sets up data storage, subscribes to the Polyglot events and tells
        the interface the controller exists.

        Args:
            poly: Polyglot interface instance.
            primary: Primary node address (the controller itself).
            address: Address of this controller node.
            name: Name of this controller node.
        """
        super().__init__(poly, primary, address, name)

        self.hb = 0
        self.numNodes = 0

        # node creation sync
        self.n_queue = []
        self.queue_condition = Condition()

        self.ready_event = Event()
        self.params_loaded_event = Event()
        self.discovery_in = False

        self.devlist = []
        # e.g. [{'id': 'kitchen', 'type': 'dimmer', 'integration_id': '12', 'name': 'Kitchen'}]
        self.general = {}
        self.integration_ids_to_devices: Dict[str, str] = {}
        self.valid_configuration = False

        self.mqttc = None
        self.mqtt_server = None
        self.mqtt_port = None
        self.mqtt_user = None
        self.mqtt_password = None
        self.cmd_topic = DEFAULT_CONFIG['cmd_topic']
        self.status_topic = DEFAULT_CONFIG['status_topic']
        self.fade = DEFAULT_CONFIG['fade']

        self.Notices    = Custom(poly, 'notices')
        self.Parameters = Custom(poly, 'customparams')

        self.poly.subscribe(self.poly.START,        self.start, address)
        self.poly.subscribe(self.poly.POLL,         self.poll)
        self.poly.subscribe(self.poly.LOGLEVEL,     self.handleLevelChange)
        self.poly.subscribe(self.poly.CUSTOMPARAMS, self.parameterHandler)
        self.poly.subscribe(self.poly.STOP,         self.stop)
        self.poly.subscribe(self.poly.DISCOVER,     self.discover_cmd)
        self.poly.subscribe(self.poly.ADDNODEDONE,  self.node_queue)

        # interface starts publishing once ready() is called
        self.poly.ready()
        self.poly.addNode(self, conn_status='ST')


    def start(self):
        """START handler.

        Order matters: parameters, then discovery (nodes and routes), then
        the bridge connection, whose subscribe step queries every output.
        """
        LOGGER.info(f"Homeworks PG3 NodeServer {self.poly.serverdata['version']}")
        self.Notices.clear()
        self.Notices['hello'] = 'Start-up'
        self.setDriver('ST', 1, report = True, force = True)

        self.poly.updateProfile()
        self.poly.setCustomParamsDoc()
        self.heartbeat()

        self.Notices['waiting'] = 'Waiting on custom parameters'
        if not self.params_loaded_event.wait(timeout=60):
            self._start_failed('No custom parameters received', 'start-up timeout')
            return
        if not self.discover_cmd():
            self._start_failed('First discovery failed', 'first discovery')
            return
        if not self._mqtt_start():
            self._start_failed('Bridge connection failed', 'MQTT connection')
            return

        for key in ('waiting', 'hello'):
            if self.Notices.get(key):
                self.Notices.delete(key)
        self.query(command = f"{self.name}: STARTUP")
        self.ready_event.set()
        LOGGER.info(f'{self.name} started, {self.numNodes} outputs')


    def _start_failed(self, reason: str, notice: str):
        LOGGER.error(f'{reason}, {self.name} not started')
        self.Notices['error'] = f'Error {notice}.  Check config & restart'
        self.setDriver('ST', 2)


    def _mqtt_start(self):
        """Connect to the bridge broker and wait until the client is up.

        Returns:
            bool: False if connect() itself failed.
        """
        self.mqttc = Client(CallbackAPIVersion.VERSION1)
        self.mqttc.on_connect = self._on_connect
        self.mqttc.on_disconnect = self._on_disconnect  # type: ignore
        self.mqttc.on_message = self._on_message
        self.mqttc.username_pw_set(self.mqtt_user, self.mqtt_password)

        try:
            self.mqttc.connect(self.mqtt_server, self.mqtt_port, keepalive=10)
            self.mqttc.loop_start()
        except Exception as ex:
            LOGGER.error(f"Bridge broker {self.mqtt_server}:{self.mqtt_port} unreachable: {ex}")
            self.Notices['mqtt'] = 'Error on bridge MQTT connection'
            return False

        # _on_connect subscribes once the broker accepts us
        while not self.mqttc.is_connected():
            LOGGER.warning(f"Waiting on bridge broker {self.mqtt_server}")
            self.Notices['mqtt'] = 'Waiting on bridge MQTT connection'
            time.sleep(3)
        if self.Notices.get('mqtt'):
            self.Notices.delete('mqtt')
        return True


    def node_queue(self, data):
        """ADDNODEDONE handler; queues the address and wakes wait_for_node_done."""
        address = data.get('address')
        if address:
            with self.queue_condition:
                self.n_queue.append(address)
                self.queue_condition.notify()

    def wait_for_node_done(self):
        """Block until addNode has finished for one node."""
        with self.queue_condition:
            while not self.n_queue:
                self.queue_condition.wait(timeout = 0.2)
            self.n_queue.pop()


    def parameterHandler(self, params):
        """CUSTOMPARAMS handler; the first call releases start()."""
        LOGGER.info(f'Loading custom parameters: {list(params or {})}')
        self.Parameters.load(params)
        self.params_loaded_event.set()


    def checkParams(self):
        """Load the output list and the MQTT parameters.

        Outputs come from the YAML devfile, then the JSON devlist parameter
        is upserted on top of them by id. At least one must be configured.

        Returns:
            bool: True if the configuration loaded.
        """
        if not (self.Parameters.get("devfile") or self.Parameters.get("devlist")):
            LOGGER.error("checkParams: No devfile or devlist configured! Must be configured.")
            return False

        if self.Parameters.get("devfile"):
            if not self._load_devfile_config():
                return False

        if self.Parameters.get("devlist"):
            if not self._load_devlist_config():
                return False

        if not self._load_mqtt_parameters():
            return False
        self.valid_configuration = True
        return True


    def _load_devfile_config(self):
        """Load 'devices' and 'general' from the YAML devfile.

        'general' is a list of single-key dictionaries and is flattened.

        Returns:
            bool: True if the file was read and has a devices section.
        """
        devfile_path = self.Parameters["devfile"]
        if not devfile_path or not isinstance(devfile_path, str):
            LOGGER.error("Invalid devfile path provided")
            return False

        try:
            with open(devfile_path, 'r', encoding='utf-8') as file:
                dev_yaml = yaml.safe_load(file)
        except (OSError, yaml.YAMLError) as ex:
            error_type = "open" if isinstance(ex, OSError) else "parse"
            LOGGER.error(f"Failed to {error_type} {devfile_path}: {ex}")
            return False

        if not isinstance(dev_yaml, dict) or "devices" not in dev_yaml:
            LOGGER.error(f"Manual discovery file {devfile_path} is missing devices section")
            return False
        devices = dev_yaml.get("devices") or []
        general = dev_yaml.get("general") or []
        LOGGER.info(f"devices = {devices}")
        LOGGER.info(f"general = {general}")

        self.devlist = devices
        self.general = {k: v for d in general for k, v in d.items()}
        return True


    def _load_devlist_config(self):
        """Upsert the devlist parameter (one JSON object) into devlist.

        Returns:
            bool: True if the parameter parsed to a dictionary.
        """
        devlist_data = self.Parameters["devlist"]
        try:
            if isinstance(devlist_data, str):
                parsed_data = json.loads(devlist_data)
            else:
                parsed_data = devlist_data

            if not isinstance(parsed_data, dict):
                LOGGER.error("Devlist data must be a dictionary")
                return False

            self.upsert_by_id(self.devlist, parsed_data)
        except (json.JSONDecodeError, TypeError) as ex:
            LOGGER.error(f"Failed to parse devlist: {ex}")
            return False
        return True


    def upsert_by_id(self, config_list, new_entry):
        """Replace the entry with the same 'id' or append new_entry."""
        new_id = new_entry.get('id')
        for i, entry in enumerate(config_list):
            if entry.get('id') == new_id:
                config_list[i] = new_entry
                return
        config_list.append(new_entry)


    def _load_mqtt_parameters(self) -> bool:
        """Resolve the bridge settings.

        Each value is taken from the Polyglot Parameters, then the devfile
        'general' section, then DEFAULT_CONFIG.

        Returns:
            bool: False if no usable server or port is left.
        """
        def pick(key, getter):
            return getter(self.Parameters.get(key), self.general.get(key), DEFAULT_CONFIG.get(key))

        self.mqtt_server = pick('mqtt_server', self._get_str)
        self.mqtt_port = pick('mqtt_port', self._get_int)
        self.mqtt_user = pick('mqtt_user', self._get_str)
        self.mqtt_password = pick('mqtt_password', self._get_str)
        self.cmd_topic = pick('cmd_topic', self._get_str)
        self.status_topic = pick('status_topic', self._get_str)
        self.fade = pick('fade', self._get_fade)

        if self.mqtt_server is None or self.mqtt_port is None:
            LOGGER.error(f"Bridge broker not usable: server={self.mqtt_server} port={self.mqtt_port}")
            return False
        return True


    @staticmethod
    def _get_str(*args: Optional[Any]) -> Optional[str]:
        """Return the first non-empty string argument, or None."""
        for val in args:
            if isinstance(val, str) and val.strip():
                return val
        return None

    @staticmethod
    def _get_int(*args: Optional[Any]) -> Optional[int]:
        """Return the first argument that is, or spells, an int; or None."""
        for val in args:
            if isinstance(val, bool):
                continue
            if isinstance(val, int):
                return val
            if isinstance(val, str) and val.isdigit():
                return int(val)
        return None

    @staticmethod
    def _get_fade(*args: Optional[Any]) -> Optional[float]:
        """Return the first argument that is a finite, non-negative number of seconds."""
        for val in args:
            if val is None or isinstance(val, bool):
                continue
            try:
                seconds = float(val)
            except (ValueError, TypeError):
                LOGGER.warning(f"Ignoring fade {val!r}")
                continue
            if math.isfinite(seconds) and seconds >= 0:
                return seconds
            LOGGER.warning(f"Ignoring fade {val!r}")
        return None

    @staticmethod
    def _get_bool(val: Any) -> bool:
        if isinstance(val, str):
            return val.strip().lower() in ('true', 'yes', 'on', '1')
        return bool(val)


    def handleLevelChange(self, level):
        """LOGLEVEL handler; DEBUG below 10, WARNING otherwise."""
        basic = logging.DEBUG if level['level'] < 10 else logging.WARNING
        LOGGER.info(f"Log level {level['level']}, basic config {logging.getLevelName(basic)}")
        LOG_HANDLER.set_basic_config(True, basic)


    def poll(self, flag):
        """POLL handler; the controller only sends its heartbeat."""
        if not self.ready_event.is_set():
            LOGGER.error("Node not ready yet, exiting")
            return

        if 'longPoll' in flag:
            LOGGER.debug('longPoll (controller)')
            self.heartbeat()


    def query(self, command=None):
        """Have every node report its drivers to the ISY."""
        LOGGER.info(f"Enter {command}")
        nodes = self.poly.getNodes()
        for node in nodes:
            nodes[node].reportDrivers()
        LOGGER.debug("Exit")


    def discover_cmd(self, command=None):
        """DISCOVER handler; reloads the configuration and syncs the nodes.

        Returns:
            bool: True if discovery completed.
        """
        LOGGER.info(command)
        success = False
        if self.discovery_in:
            LOGGER.info('Discover already running.')
            return success

        self.discovery_in = True
        LOGGER.info("In Discovery...")
        try:
            if self.checkParams() and self._discover():
                success = True
                LOGGER.info("Discovery Success")
            else:
                LOGGER.error("Discovery Failure")
        finally:
            self.discovery_in = False
        return success


    def _discover(self):
        """Sync the output nodes and the routing table with devlist.

        The routing table is rebuilt from scratch. A node whose class or
        integration id no longer matches its definition is recreated, and
        nodes with no definition left are deleted.

        Returns:
            bool: True if discovery completed.
        """
        nodes_existing = self.poly.getNodes()
        LOGGER.debug(f"current nodes = {nodes_existing}")
        nodes_old = [node for node in nodes_existing if node != self.address]
        routes: Dict[str, str] = {}

        try:
            for dev in self.devlist:
                self._sync_device_node(dev, nodes_existing, routes)
            self.integration_ids_to_devices = routes
            kept = set(routes.values())
            self._cleanup_nodes(kept, nodes_old)
            self.numNodes = len(kept)
            self.setDriver('GV0', self.numNodes)
        except Exception as ex:
            LOGGER.error(f'Discovery Failure: {ex}', exc_info=True)
            return False
        LOGGER.info(f"Discovery complete, {self.numNodes} outputs, routes {routes}")
        return True


    def _sync_device_node(self, dev, nodes_existing, routes: Dict[str, str]):
        """Create or refresh the node for one definition and record its route."""
        if not self._validate_device_definition(dev):
            return

        name = dev.get("name", dev["id"])
        address = self._format_device_address(dev)
        integration_id = str(dev["integration_id"])

        if integration_id in routes:
            LOGGER.error(f"Integration id {integration_id} already used by {routes[integration_id]}, skipping {name}")
            return
        if address in routes.values():
            LOGGER.error(f"Address {address} already used, skipping {name}")
            return

        node_class = self._node_class(dev)
        if node_class is None:
            LOGGER.error(f"Device type {dev['type']} is not yet supported")
            return

        existing = nodes_existing.get(address)
        if existing is not None and self._node_changed(existing, node_class, integration_id):
            LOGGER.info(f"{address} definition changed, recreating as {node_class.id} on {integration_id}")
            self.poly.delNode(address)
            existing = None

        if existing is None:
            self._create_device_node(node_class, dev, name, address)
            self.wait_for_node_done()
        routes[integration_id] = address


    @staticmethod
    def _node_changed(node, node_class, integration_id: str) -> bool:
        return (node.__class__ is not node_class
                or getattr(node, 'integration_id', None) != integration_id)


    def _validate_device_definition(self, dev):
        """Return True if dev is a dictionary carrying REQUIRED_FIELDS."""
        if not isinstance(dev, dict) or not all(field in dev for field in REQUIRED_FIELDS):
            LOGGER.error(f"Invalid device definition: {json.dumps(dev, default=str)}")
            return False
        return True


    def _node_class(self, dev):
        """Pick the node class; an explicit 'dimmable' overrides the type."""
        if "dimmable" in dev:
            return HWDimmer if self._get_bool(dev["dimmable"]) else HWSwitch
        device_config = DEVICE_CONFIG.get(dev["type"])
        if device_config is None:
            return None
        return device_config["node_class"]


    def _create_device_node(self, node_class, dev, name, address):
        LOGGER.info(f"Adding {node_class.id}, {name}, integration_id {dev['integration_id']}")
        self.poly.addNode(node_class(self.poly, self.address, address, name, dev))


    def _cleanup_nodes(self, nodes_kept, nodes_old):
        """Delete the nodes in nodes_old that discovery did not keep."""
        for node in nodes_old:
            if node not in nodes_kept:
                LOGGER.info(f"Deleting node {node}, no longer configured")
                self.poly.delNode(node)


    def _format_device_address(self, dev) -> str:
        """ISY-safe node address (max 14 chars) derived from the device id."""
        name = str(dev["id"]).replace("_", "").replace("-", "_")
        return self.poly.getValidAddress(name)


    def _on_connect(self, _mqttc, _userdata, _flags, rc):
        if rc == 0:
            LOGGER.info("Homeworks MQTT Connected")
            self.mqtt_subscribe()
        else:
            LOGGER.error(f"Homeworks MQTT Connect failed with rc:{rc}")


    def _on_disconnect(self, _mqttc, _userdata, rc):
        """Reconnect after an unexpected disconnect (rc != 0)."""
        if rc != 0:
            LOGGER.warning("Homeworks MQTT disconnected, trying to re-connect")
            try:
                self.mqttc.reconnect()
            except Exception as ex:
                LOGGER.error(f"Error connecting to MQTT broker {ex}")
        else:
            LOGGER.info("Homeworks MQTT graceful disconnection")


    def _on_message(self, _mqttc, _userdata, message):
        """Route ~OUTPUT reports to the node owning the integration id.

        A payload may hold several protocol lines; each is handled on its
        own so one bad line does not cost the others. Messages arriving
        during discovery are dropped.
        """
        if self.discovery_in:
            return

        topic = message.topic
        try:
            payload = message.payload.decode("utf-8")
        except UnicodeDecodeError as ex:
            LOGGER.error(f"Undecodable message from {topic}: {ex}")
            return
        LOGGER.info(f"Received message from {topic}: {payload}")

        for line in split_lines(payload):
            try:
                self._process_line(line)
            except Exception as ex:
                LOGGER.error(f"Failed to process {line!r} from {topic}: {ex}", exc_info=True)


    def _process_line(self, line: str):
        try:
            report = parse_output(line)
        except ProtocolError as ex:
            LOGGER.warning(f"Skipping line: {ex}")
            return
        if report is None:
            LOGGER.debug(f"Ignoring line: {line}")
            return

        address = self.integration_ids_to_devices.get(report.integration_id)
        if address is None:
            LOGGER.debug(f"No node for integration_id {report.integration_id}")
            return
        self.poly.getNode(address).update_level(report.level)


    def send_level(self, brightness: int, dimmable: bool, accessory):
        """Outbound handler for the accessories' desired state changes.

        Args:
            brightness: Resolved level 0-100.
            dimmable: Whether the output can dim.
            accessory: The HWAccessory whose state changed.
        """
        LOGGER.debug(f"send_level: {accessory.get_name()} level:{brightness} dim:{dimmable}")
        cmd = format_set_level(accessory.get_integration_id(), brightness, fade=self.fade)
        self.mqtt_pub(self.cmd_topic, cmd)


    def send_query(self, integration_id):
        """Ask the processor to report the level of one output."""
        self.mqtt_pub(self.cmd_topic, format_query(integration_id))


    def mqtt_pub(self, topic, message):
        """Publish message on topic.

        Returns:
            bool: False if there is no MQTT client yet.
        """
        LOGGER.debug(f"mqtt_pub: topic: {topic}, message: {message}")
        if self.mqttc is None:
            LOGGER.error(f"mqtt_pub: not connected, dropped {message}")
            return False
        self.mqttc.publish(topic, message, retain=False)
        return True


    def mqtt_subscribe(self):
        """Subscribe to the status topic and query every output node."""
        LOGGER.info("Homeworks MQTT subscribing...")
        result, mid = tuple(self.mqttc.subscribe(self.status_topic))
        if result == 0:
            LOGGER.info(f"Subscribed to {self.status_topic} MID: {mid}, res: {result}")
        else:
            LOGGER.error(f"Failed to subscribe {self.status_topic} MID: {mid}, res: {result}")

        for node in self.poly.getNodes():
            if node != self.address:
                self.poly.getNode(node).query()
        LOGGER.info("Subscriptions Done")


    def delete(self, command=None):
        """Called by Polyglot when the NodeServer is deleted."""
        LOGGER.info(command)
        self.setDriver('ST', 0, report = True, force = True)
        LOGGER.info('bye bye ... deleted.')


    def stop(self, command=None):
        """STOP handler; marks the server down and leaves the broker."""
        LOGGER.info(f'stop: {command}')
        self.setDriver('ST', 0, report = True, force = True)
        self.Notices.clear()
        if self.mqttc is not None:
            self.mqttc.loop_stop()
            self.mqttc.disconnect()
            self.mqttc = None


    def heartbeat(self):
        """Alternate DON/DOF to the ISY so programs can watch the NodeServer."""
        self.reportCmd("DOF" if self.hb else "DON", 2)
        self.hb = not self.hb


    drivers = [
        {'driver': 'ST', 'value': 1, 'uom': 25, 'name': "Controller Status"},
        {'driver': 'GV0', 'value': 0, 'uom': 107, 'name': "NumberOfNodes"},
    ]

    commands = {
        'DISCOVER': discover_cmd,
        'QUERY': query,
    }
