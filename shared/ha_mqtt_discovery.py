"""Home Assistant MQTT Discovery helper module.

Publishes discovery configs and retained state for the add-on entities and
routes command topics (buttons, selects) back to Python callbacks.

Usage:
    from shared.ha_mqtt_discovery import MqttDiscovery, EntityConfig

    mqtt = MqttDiscovery(
        addon_name="Azure Dynamic DNS",
        addon_id="azure_ddns",
        mqtt_host="core-mosquitto",
        will_topic="ddns/azure/status",
        will_payload={"status": "offline"},
    )

    if mqtt.connect():
        mqtt.publish_sensor(EntityConfig(
            object_id="ipv4",
            name="Public IPv4",
            state_topic="ddns/azure/ipv4/current",
            icon="mdi:ip-network",
        ))
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import paho.mqtt.client as mqtt

from .config_loader import get_env_with_fallback

logger = logging.getLogger(__name__)


@dataclass
class EntityConfig:
    """Configuration for a sensor or binary sensor.

    Attributes:
        object_id: Unique object ID within the addon (e.g., "ipv4")
        name: Human-readable name (e.g., "Public IPv4")
        state: Initial state, None publishes only the discovery config
        state_topic: Custom state topic (default: <addon_id>/<component>/<object_id>/state)
        json_attributes_topic: Custom attributes topic
        value_template: Template HA applies to the state payload
        attributes: Initial attributes published to the attributes topic
    """
    object_id: str
    name: str
    state: Optional[str] = None
    unit_of_measurement: Optional[str] = None
    device_class: Optional[str] = None
    state_class: Optional[str] = None
    icon: Optional[str] = None
    entity_category: Optional[str] = None
    state_topic: Optional[str] = None
    json_attributes_topic: Optional[str] = None
    value_template: Optional[str] = None
    payload_on: Optional[str] = None
    payload_off: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    enabled_by_default: bool = True


@dataclass
class SelectConfig:
    """Configuration for a Home Assistant select entity."""
    object_id: str
    name: str
    options: List[str]
    state: str
    icon: Optional[str] = None
    entity_category: Optional[str] = None


@dataclass
class ButtonConfig:
    """Configuration for a Home Assistant button entity."""
    object_id: str
    name: str
    device_class: Optional[str] = None
    icon: Optional[str] = None
    entity_category: Optional[str] = None


class MqttDiscovery:
    """MQTT Discovery client for Home Assistant.

    Creates entities with unique_id support via the MQTT Discovery protocol.
    Entities are grouped under one device in the HA UI. When a will topic is
    given the broker publishes ``will_payload`` there if the add-on dies.
    """

    DISCOVERY_PREFIX = "homeassistant"

    def __init__(
        self,
        addon_name: str,
        addon_id: str,
        mqtt_host: str = "core-mosquitto",
        mqtt_port: int = 1883,
        mqtt_user: Optional[str] = None,
        mqtt_password: Optional[str] = None,
        manufacturer: str = "HA Addons",
        model: Optional[str] = None,
        sw_version: Optional[str] = None,
        will_topic: Optional[str] = None,
        will_payload: Any = "offline",
        device_identifier: Optional[str] = None,
    ):
        self.addon_name = addon_name
        self.addon_id = addon_id
        self.mqtt_host = mqtt_host
        self.mqtt_port = mqtt_port
        self.mqtt_user = mqtt_user
        self.mqtt_password = mqtt_password
        self.manufacturer = manufacturer
        self.model = model or addon_name
        self.sw_version = sw_version
        self.will_topic = will_topic
        self.will_payload = will_payload
        self.device_identifier = device_identifier or addon_id

        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._command_callbacks: Dict[str, Callable[[str], None]] = {}
        self._callbacks_lock = threading.Lock()

    @property
    def device_info(self) -> Dict[str, Any]:
        """Device block shared by every discovery payload."""
        info = {
            "identifiers": [self.device_identifier],
            "name": self.addon_name,
            "manufacturer": self.manufacturer,
            "model": self.model,
        }
        if self.sw_version:
            info["sw_version"] = self.sw_version
        return info

    def _unique_id(self, object_id: str) -> str:
        return f"{self.addon_id}_{object_id}"

    def state_topic(self, component: str, object_id: str) -> str:
        return f"{self.addon_id}/{component}/{object_id}/state"

    def attributes_topic(self, component: str, object_id: str) -> str:
        return f"{self.addon_id}/{component}/{object_id}/attributes"

    def command_topic(self, component: str, object_id: str) -> str:
        return f"{self.addon_id}/{component}/{object_id}/set"

    def discovery_topic(self, component: str, object_id: str) -> str:
        return f"{self.DISCOVERY_PREFIX}/{component}/{self.addon_id}/{object_id}/config"

    @staticmethod
    def _encode(payload: Any) -> str:
        if isinstance(payload, (dict, list)):
            return json.dumps(payload)
        if payload is None:
            return ""
        return payload if isinstance(payload, str) else str(payload)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        # paho-mqtt 2.x passes a ReasonCode object
        if reason_code == 0 or (hasattr(reason_code, 'is_failure') and not reason_code.is_failure):
            logger.info("Connected to MQTT broker at %s:%d", self.mqtt_host, self.mqtt_port)
            self._connected = True
            with self._callbacks_lock:
                topics = list(self._command_callbacks)
            for topic in topics:
                client.subscribe(topic, qos=1)
        else:
            logger.error("Failed to connect to MQTT broker: %s", reason_code)
            self._connected = False

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        logger.info("Disconnected from MQTT broker: %s", reason_code)
        self._connected = False

    def _on_message(self, client, userdata, message):
        topic = message.topic
        payload = message.payload.decode('utf-8')

        with self._callbacks_lock:
            callback = self._command_callbacks.get(topic)
        if callback is None:
            logger.debug("Ignoring message on unhandled topic %s", topic)
            return

        logger.info("Received command on %s: %s", topic, payload)
        try:
            callback(payload)
        except Exception as e:
            logger.error("Error handling command on %s: %s", topic, e, exc_info=True)

    def connect(self, timeout: float = 10.0) -> bool:
        """Connect to the MQTT broker and start the network loop.

        Returns:
            True if connected successfully, False otherwise
        """
        try:
            self._client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=f"{self.addon_id}_{os.getpid()}",
                protocol=mqtt.MQTTv311,
            )
            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message

            if self.mqtt_user and self.mqtt_password:
                self._client.username_pw_set(self.mqtt_user, self.mqtt_password)

            if self.will_topic:
                self._client.will_set(self.will_topic, self._encode(self.will_payload), qos=1, retain=True)

            logger.info("Connecting to MQTT broker at %s:%d...", self.mqtt_host, self.mqtt_port)
            self._client.connect(self.mqtt_host, self.mqtt_port, keepalive=60)
            self._client.loop_start()

            start = time.time()
            while not self._connected and (time.time() - start) < timeout:
                time.sleep(0.1)

            if not self._connected:
                logger.error("MQTT connection timeout after %.1f seconds", timeout)
                self._client.loop_stop()
                return False

            return True

        except (OSError, ValueError) as e:
            logger.error("Failed to connect to MQTT broker: %s", e)
            return False

    def disconnect(self):
        """Disconnect from MQTT broker."""
        if self._client:
            self._client.loop_stop()
            self._client.disconnect()
            self._client = None
            self._connected = False
            logger.info("Disconnected from MQTT broker")

    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    def publish_raw(self, topic: str, payload: Any, retain: bool = True) -> bool:
        """Publish a message to an arbitrary topic.

        dict/list payloads are JSON encoded, other values are converted to str.

        Returns:
            True if published successfully
        """
        if not self.is_connected():
            logger.error("Cannot publish to %s: not connected to MQTT broker", topic)
            return False

        try:
            result = self._client.publish(topic, self._encode(payload), retain=retain, qos=1)
            result.wait_for_publish(timeout=5.0)

            if result.rc != mqtt.MQTT_ERR_SUCCESS:
                logger.error("Failed to publish to %s: rc=%d", topic, result.rc)
                return False

            return True

        except (RuntimeError, ValueError, OSError) as e:
            logger.error("Exception publishing to %s: %s", topic, e)
            return False

    def publish_discovery(self, component: str, object_id: str, config: Dict[str, Any]) -> bool:
        """Publish a discovery config, filling in unique_id and device."""
        payload = dict(config)
        payload.setdefault("unique_id", self._unique_id(object_id))
        payload.setdefault("device", self.device_info)
        if not self.publish_raw(self.discovery_topic(component, object_id), payload):
            return False

        logger.debug("Published %s discovery: %s", component, payload.get("name", object_id))
        return True

    def publish_sensor(self, config: EntityConfig) -> bool:
        return self._publish_entity("sensor", config)

    def publish_binary_sensor(self, config: EntityConfig) -> bool:
        """Publish a binary sensor (state "ON"/"OFF" unless payloads are overridden)."""
        return self._publish_entity("binary_sensor", config)

    def _publish_entity(self, component: str, config: EntityConfig) -> bool:
        state_topic = config.state_topic or self.state_topic(component, config.object_id)
        attributes_topic = config.json_attributes_topic
        if attributes_topic is None and config.attributes:
            attributes_topic = self.attributes_topic(component, config.object_id)

        discovery_payload: Dict[str, Any] = {
            "name": config.name,
            "state_topic": state_topic,
        }

        optional = {
            "unit_of_measurement": config.unit_of_measurement,
            "device_class": config.device_class,
            "state_class": config.state_class,
            "icon": config.icon,
            "entity_category": config.entity_category,
            "value_template": config.value_template,
            "payload_on": config.payload_on,
            "payload_off": config.payload_off,
            "json_attributes_topic": attributes_topic,
        }
        discovery_payload.update({key: value for key, value in optional.items() if value})
        if not config.enabled_by_default:
            discovery_payload["enabled_by_default"] = False

        if not self.publish_discovery(component, config.object_id, discovery_payload):
            return False

        if config.state is not None and not self.publish_raw(state_topic, config.state):
            return False

        if config.attributes and not self.publish_raw(attributes_topic, config.attributes):
            return False

        return True

    def publish_select(self, config: SelectConfig, command_callback: Optional[Callable[[str], None]] = None) -> bool:
        """Publish a select entity and route its commands to ``command_callback``."""
        state_topic = self.state_topic("select", config.object_id)
        command_topic = self.command_topic("select", config.object_id)

        discovery_payload = {
            "name": config.name,
            "state_topic": state_topic,
            "command_topic": command_topic,
            "options": config.options,
        }
        if config.icon:
            discovery_payload["icon"] = config.icon
        if config.entity_category:
            discovery_payload["entity_category"] = config.entity_category

        if not self.publish_discovery("select", config.object_id, discovery_payload):
            return False

        if not self.publish_raw(state_topic, config.state):
            return False

        if command_callback:
            self.subscribe_command(command_topic, command_callback)

        return True

    def publish_button(self, config: ButtonConfig, press_callback: Optional[Callable[[], None]] = None) -> bool:
        """Publish a button entity; buttons have no state topic."""
        command_topic = self.command_topic("button", config.object_id)

        discovery_payload = {
            "name": config.name,
            "command_topic": command_topic,
        }
        if config.device_class:
            discovery_payload["device_class"] = config.device_class
        if config.icon:
            discovery_payload["icon"] = config.icon
        if config.entity_category:
            discovery_payload["entity_category"] = config.entity_category

        if not self.publish_discovery("button", config.object_id, discovery_payload):
            return False

        if press_callback:
            self.subscribe_command(command_topic, lambda payload: press_callback())

        return True

    def subscribe_command(self, topic: str, callback: Callable[[str], None]) -> None:
        """Call ``callback(payload)`` for every message on ``topic``.

        Subscriptions are restored automatically after a reconnect.
        """
        with self._callbacks_lock:
            self._command_callbacks[topic] = callback
        if self._client:
            self._client.subscribe(topic, qos=1)
        logger.debug("Subscribed to command topic: %s", topic)

    def update_state(
        self,
        component: str,
        object_id: str,
        state: Any,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Update state (and optionally attributes) on the default topics."""
        if not self.publish_raw(self.state_topic(component, object_id), state):
            return False

        if attributes is not None:
            if not self.publish_raw(self.attributes_topic(component, object_id), attributes):
                return False

        return True

    def remove_entity(self, component: str, object_id: str) -> bool:
        """Remove an entity by publishing an empty discovery config."""
        return self.publish_raw(self.discovery_topic(component, object_id), "")


def get_mqtt_config_from_env() -> Dict[str, Any]:
    """Get MQTT configuration from environment variables.

    Returns:
        Dictionary with mqtt_host, mqtt_port, mqtt_user, mqtt_password
    """
    return {
        "mqtt_host": get_env_with_fallback("MQTT_HOST", "core-mosquitto"),
        "mqtt_port": get_env_with_fallback("MQTT_PORT", 1883),
        "mqtt_user": get_env_with_fallback("MQTT_USER", None),
        "mqtt_password": get_env_with_fallback("MQTT_PASSWORD", None),
    }
