"""Home Assistant entities exposed by the iLert add-on."""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List

from shared.ha_mqtt_discovery import ButtonConfig, EntityConfig, MqttDiscovery, SelectConfig

from .models import SensorReading

logger = logging.getLogger(__name__)

ADDON_ID = "ilert"
STATUS_TOPIC = f"{ADDON_ID}/status"
OFFLINE_PAYLOAD = {"status": "offline", "message": "Service stopped"}

ACK_BUTTON_ID = "ack_pending_alerts"
MUTE_SELECT_ID = "mute_notifications"
MUTE_SENSOR_ID = "mute_status"
SCHEDULE_SENSOR_ID = "on_call_schedule"
ON_CALL_BINARY_ID = "is_on_call"

UNMUTE_OPTION = "Unmute"
MUTE_OPTIONS: Dict[str, int] = {
    UNMUTE_OPTION: 0,
    "15 minutes": 15,
    "30 minutes": 30,
    "1 hour": 60,
    "2 hours": 120,
    "4 hours": 240,
}

SENSORS: List[EntityConfig] = [
    EntityConfig(object_id="on_call_user", name="Current On-Call User", icon="mdi:account-clock"),
    EntityConfig(object_id="next_shift", name="Next On-Call Shift", device_class="timestamp",
                 icon="mdi:calendar-clock"),
    EntityConfig(object_id="current_shift_end", name="Current Shift End Time", device_class="timestamp",
                 icon="mdi:clock-end"),
    EntityConfig(object_id="open_incidents", name="Open Incidents", unit_of_measurement="incidents",
                 icon="mdi:alert-circle"),
    EntityConfig(object_id="pending_alerts", name="Pending Alerts", unit_of_measurement="alerts",
                 icon="mdi:bell-outline"),
    EntityConfig(object_id="accepted_alerts", name="Accepted Alerts", unit_of_measurement="alerts",
                 icon="mdi:bell-check"),
    EntityConfig(object_id="schedule_status", name="Schedule Status", icon="mdi:calendar-check"),
    EntityConfig(object_id=MUTE_SENSOR_ID, name="Mute Status", icon="mdi:bell-off-outline"),
    EntityConfig(object_id="latest_alert", name="Latest Alert", icon="mdi:bell-alert"),
    EntityConfig(object_id="heartbeat_monitors", name="Heartbeat Monitors", unit_of_measurement="monitors",
                 icon="mdi:heart-pulse"),
    EntityConfig(object_id=SCHEDULE_SENSOR_ID, name="On-Call Schedule", icon="mdi:calendar-account"),
]

BINARY_SENSORS: List[EntityConfig] = [
    EntityConfig(object_id=ON_CALL_BINARY_ID, name="On-Call Status", device_class="occupancy",
                 icon="mdi:phone-in-talk"),
]

ACK_BUTTON = ButtonConfig(
    object_id=ACK_BUTTON_ID,
    name="Acknowledge Pending Alerts",
    device_class="identify",
    icon="mdi:bell-check",
)

MUTE_SELECT = SelectConfig(
    object_id=MUTE_SELECT_ID,
    name="Mute Notifications",
    options=list(MUTE_OPTIONS),
    state=UNMUTE_OPTION,
    icon="mdi:bell-sleep",
)


def _component(object_id: str) -> str:
    return "binary_sensor" if object_id == ON_CALL_BINARY_ID else "sensor"


class IlertPublisher:
    """Publishes discovery, sensor readings and controls for the iLert device."""

    def __init__(self, mqtt: MqttDiscovery):
        self.mqtt = mqtt

    def publish_discovery(
        self,
        on_acknowledge: Callable[[], None],
        on_mute_select: Callable[[str], None],
    ) -> None:
        for sensor in SENSORS:
            self.mqtt.publish_sensor(replace(
                sensor, json_attributes_topic=self.mqtt.attributes_topic("sensor", sensor.object_id)
            ))
        for binary in BINARY_SENSORS:
            self.mqtt.publish_binary_sensor(replace(
                binary, json_attributes_topic=self.mqtt.attributes_topic("binary_sensor", binary.object_id)
            ))
        self.mqtt.publish_button(ACK_BUTTON, on_acknowledge)
        self.mqtt.publish_select(MUTE_SELECT, on_mute_select)
        logger.info(
            "Published discovery for %d sensors, %d binary sensors and 2 controls",
            len(SENSORS), len(BINARY_SENSORS)
        )

    def publish_reading(self, object_id: str, reading: SensorReading) -> bool:
        return self.mqtt.update_state(_component(object_id), object_id, reading.state, reading.attributes)

    def publish_mute_option(self, option: str) -> bool:
        return self.mqtt.publish_raw(self.mqtt.state_topic("select", MUTE_SELECT_ID), option)

    def publish_status(self, status: str, message: str = "") -> bool:
        return self.mqtt.publish_raw(STATUS_TOPIC, {
            "status": status,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def publish_offline(self) -> bool:
        return self.publish_status("offline", OFFLINE_PAYLOAD["message"])
