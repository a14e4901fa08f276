"""MQTT topics and Home Assistant discovery for the DDNS add-on."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from shared.ha_mqtt_discovery import EntityConfig, MqttDiscovery

from .models import DdnsConfig, DomainConfig, UpdateRecord

logger = logging.getLogger(__name__)

TOPIC_BASE = "ddns/azure"
STATUS_TOPIC = f"{TOPIC_BASE}/status"
LAST_UPDATE_TOPIC = f"{TOPIC_BASE}/last_update"
LEGACY_IP_TOPIC = f"{TOPIC_BASE}/ip"

OFFLINE_PAYLOAD = {"status": "offline", "message": "Service stopped"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def ip_topic(version: int, kind: str) -> str:
    return f"{TOPIC_BASE}/ipv{version}/{kind}"


def domain_status_topic(domain: DomainConfig) -> str:
    return f"{TOPIC_BASE}/domains/{domain.topic_key}/status"


class DdnsPublisher:
    """Publishes DDNS state on retained topics."""

    def __init__(self, mqtt: MqttDiscovery, config: DdnsConfig):
        self.mqtt = mqtt
        self.config = config

    def publish_discovery(self) -> None:
        self.mqtt.publish_binary_sensor(EntityConfig(
            object_id="service",
            name="Azure DDNS Service",
            state_topic=STATUS_TOPIC,
            value_template="{{ 'ON' if value_json.status == 'online' else 'OFF' }}",
            json_attributes_topic=STATUS_TOPIC,
            device_class="connectivity",
            entity_category="diagnostic",
        ))

        enabled = {4: self.config.ipv4_enabled, 6: self.config.ipv6_enabled}
        for version, on in enabled.items():
            if not on:
                # Drop entities left over from an earlier configuration
                self.mqtt.remove_entity("sensor", f"ipv{version}")
                self.mqtt.remove_entity("sensor", f"ipv{version}_previous")
                continue
            self.mqtt.publish_sensor(EntityConfig(
                object_id=f"ipv{version}",
                name=f"Public IPv{version}",
                state_topic=ip_topic(version, "current"),
                icon="mdi:ip-network",
            ))
            self.mqtt.publish_sensor(EntityConfig(
                object_id=f"ipv{version}_previous",
                name=f"Previous IPv{version}",
                state_topic=ip_topic(version, "previous"),
                icon="mdi:ip-network-outline",
            ))

        self.mqtt.publish_sensor(EntityConfig(
            object_id="last_update",
            name="Last DNS Update",
            state_topic=LAST_UPDATE_TOPIC,
            device_class="timestamp",
            icon="mdi:clock-check-outline",
        ))
        self.mqtt.publish_sensor(EntityConfig(
            object_id="legacy_ip",
            name="Public IP",
            state_topic=f"{LEGACY_IP_TOPIC}/current",
            icon="mdi:ip",
            enabled_by_default=False,
        ))

        for domain in self.config.domains:
            self.mqtt.publish_sensor(EntityConfig(
                object_id=f"domain_{domain.topic_key}",
                name=f"DNS {domain.zone}",
                state_topic=domain_status_topic(domain),
                value_template="{{ value_json.status }}",
                json_attributes_topic=domain_status_topic(domain),
                icon="mdi:dns",
            ))

        logger.info("Published discovery for %d domain(s)", len(self.config.domains))

    def publish_status(self, status: str, message: str = "") -> bool:
        return self.mqtt.publish_raw(STATUS_TOPIC, {
            "status": status,
            "message": message,
            "timestamp": _now_iso(),
        })

    def publish_offline(self) -> bool:
        return self.publish_status("offline", OFFLINE_PAYLOAD["message"])

    def publish_ip(self, version: int, current: Optional[str], previous: Optional[str], changed: bool) -> None:
        """Publish the current address and, on change, the one it replaced.

        IPv4 is mirrored to the legacy ``ddns/azure/ip`` topics.
        """
        if current is None:
            return

        topics = [f"{TOPIC_BASE}/ipv{version}"]
        if version == 4:
            topics.append(LEGACY_IP_TOPIC)

        for base in topics:
            self.mqtt.publish_raw(f"{base}/current", current)
            if changed and previous:
                self.mqtt.publish_raw(f"{base}/previous", previous)

    def publish_last_update(self, timestamp: Optional[str] = None) -> None:
        self.mqtt.publish_raw(LAST_UPDATE_TOPIC, timestamp or _now_iso())

    def publish_domain_status(
        self,
        domain: DomainConfig,
        status: str,
        message: str = "",
        records: Optional[List[UpdateRecord]] = None,
    ) -> None:
        payload = {
            "status": status,
            "zone": domain.zone,
            "records": domain.records,
            "timestamp": _now_iso(),
        }
        if message:
            payload["message"] = message
        if records:
            payload["updated"] = [record.describe() for record in records]
        self.mqtt.publish_raw(domain_status_topic(domain), payload)
