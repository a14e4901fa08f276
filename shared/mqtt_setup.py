"""MQTT Discovery setup helper for add-ons.

Builds a connected MqttDiscovery client from the add-on config dict,
falling back to MQTT_* environment variables.

Usage:
    from shared.mqtt_setup import setup_mqtt_client

    mqtt_client = setup_mqtt_client(
        addon_name="ESWater Smart Meter",
        addon_id="eswater",
        config=config,
    )
    if mqtt_client is None:
        return 1
"""

import logging
from typing import Any, Dict, Optional

from .ha_mqtt_discovery import MqttDiscovery, get_mqtt_config_from_env

logger = logging.getLogger(__name__)


def setup_mqtt_client(
    addon_name: str,
    addon_id: str,
    config: Optional[Dict[str, Any]] = None,
    manufacturer: str = "HA Addons",
    model: Optional[str] = None,
    sw_version: Optional[str] = None,
    will_topic: Optional[str] = None,
    will_payload: Any = "offline",
    device_identifier: Optional[str] = None,
    connection_timeout: float = 10.0,
) -> Optional[MqttDiscovery]:
    """Set up and connect an MQTT Discovery client.

    Connection settings come from ``config`` (mqtt_host, mqtt_port, mqtt_user,
    mqtt_password), then the environment. Empty strings count as unset.

    Returns:
        Connected MqttDiscovery client, or None if the connection failed
    """
    config = config or {}
    env_config = get_mqtt_config_from_env()

    mqtt_host = config.get('mqtt_host') or env_config['mqtt_host']
    mqtt_port = int(config.get('mqtt_port') or env_config['mqtt_port'])
    mqtt_user = config.get('mqtt_user') or env_config['mqtt_user']
    mqtt_password = config.get('mqtt_password') or env_config['mqtt_password']

    if not mqtt_user or not mqtt_password:
        logger.warning("MQTT credentials not configured, connecting anonymously")

    mqtt_client = MqttDiscovery(
        addon_name=addon_name,
        addon_id=addon_id,
        mqtt_host=mqtt_host,
        mqtt_port=mqtt_port,
        mqtt_user=mqtt_user,
        mqtt_password=mqtt_password,
        manufacturer=manufacturer,
        model=model or addon_name,
        sw_version=sw_version,
        will_topic=will_topic,
        will_payload=will_payload,
        device_identifier=device_identifier,
    )

    if mqtt_client.connect(timeout=connection_timeout):
        logger.info("MQTT Discovery connected to %s:%d", mqtt_host, mqtt_port)
        return mqtt_client

    logger.error("MQTT connection to %s:%d failed", mqtt_host, mqtt_port)
    return None
