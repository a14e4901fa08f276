"""MQTT topics and Home Assistant discovery for the ESWater add-on."""

import logging
from datetime import datetime, timezone

from shared.ha_mqtt_discovery import EntityConfig, MqttDiscovery

from .models import FetchResult, UsageSummary

logger = logging.getLogger(__name__)

TOPIC_BASE = "eswater"
STATUS_TOPIC = f"{TOPIC_BASE}/status"
CONNECTION_STATUS_TOPIC = f"{TOPIC_BASE}/connection_status"
DAILY_USAGE_TOPIC = f"{TOPIC_BASE}/daily_usage"
DAILY_USAGE_ATTRIBUTES_TOPIC = f"{TOPIC_BASE}/daily_usage_attributes"
LATEST_READING_TOPIC = f"{TOPIC_BASE}/latest_reading"
HOURLY_TOPIC = f"{TOPIC_BASE}/hourly_json"
HOURLY_ATTRIBUTES_TOPIC = f"{TOPIC_BASE}/hourly_attributes"
READING_COUNT_TOPIC = f"{TOPIC_BASE}/reading_count"
LAST_UPDATED_TOPIC = f"{TOPIC_BASE}/last_updated"
DATA_AGE_TOPIC = f"{TOPIC_BASE}/data_age"

OFFLINE_PAYLOAD = {"status": "offline", "message": "Service stopped"}


class EswaterPublisher:
    """Publishes meter readings and fetch status on retained topics."""

    def __init__(self, mqtt: MqttDiscovery):
        self.mqtt = mqtt

    def publish_discovery(self) -> None:
        sensors = [
            EntityConfig(
                object_id="daily_usage",
                name="Daily Water Usage",
                state_topic=DAILY_USAGE_TOPIC,
                json_attributes_topic=DAILY_USAGE_ATTRIBUTES_TOPIC,
                unit_of_measurement="L",
                device_class="water",
                state_class="measurement",
                icon="mdi:water",
            ),
            EntityConfig(
                object_id="latest_reading",
                name="Latest Hourly Reading",
                state_topic=LATEST_READING_TOPIC,
                unit_of_measurement="L",
                device_class="water",
                icon="mdi:water-pump",
            ),
            EntityConfig(
                object_id="hourly_breakdown",
                name="Water Hourly Breakdown",
                state_topic=HOURLY_TOPIC,
                json_attributes_topic=HOURLY_ATTRIBUTES_TOPIC,
                icon="mdi:chart-bar",
            ),
            EntityConfig(
                object_id="reading_count",
                name="Available Data Points",
                state_topic=READING_COUNT_TOPIC,
                unit_of_measurement="readings",
                icon="mdi:counter",
            ),
            EntityConfig(
                object_id="last_updated",
                name="Last Reading Time",
                state_topic=LAST_UPDATED_TOPIC,
                device_class="timestamp",
                icon="mdi:clock",
            ),
            EntityConfig(
                object_id="data_age",
                name="Data Age (Days)",
                state_topic=DATA_AGE_TOPIC,
                unit_of_measurement="days",
                icon="mdi:calendar-clock",
            ),
            EntityConfig(
                object_id="connection_status",
                name="ESWater Connection Status",
                state_topic=CONNECTION_STATUS_TOPIC,
                json_attributes_topic=STATUS_TOPIC,
                icon="mdi:connection",
                entity_category="diagnostic",
            ),
        ]
        for sensor in sensors:
            self.mqtt.publish_sensor(sensor)
        logger.info("Published discovery for %d sensors", len(sensors))

    def publish_status(self, status: str, message: str = "") -> bool:
        return self.mqtt.publish_raw(STATUS_TOPIC, {
            "status": status,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def publish_offline(self) -> bool:
        self.mqtt.publish_raw(CONNECTION_STATUS_TOPIC, "offline")
        return self.publish_status("offline", OFFLINE_PAYLOAD["message"])

    def publish_result(self, result: FetchResult) -> None:
        """Always-published fetch outcome."""
        self.mqtt.publish_raw(CONNECTION_STATUS_TOPIC, result.status)
        if result.success:
            self.publish_status("online", "Data fetched successfully")
        else:
            self.publish_status(result.status, result.error or "")

    def publish_usage(self, usage: UsageSummary, result: FetchResult) -> None:
        self.mqtt.publish_raw(DAILY_USAGE_TOPIC, usage.daily_usage)
        self.mqtt.publish_raw(DAILY_USAGE_ATTRIBUTES_TOPIC, {
            "latest_hour_liters": usage.latest_hour if usage.latest_hour is not None else usage.latest_reading,
            "reading_count": usage.reading_count,
            "data_age_days": usage.days_back,
            "days_back_used": usage.days_back,
            "min_hour_liters": usage.min_hour,
            "max_hour_liters": usage.max_hour,
            "mean_hour_liters": usage.mean_hour,
            "meter_serial": result.meter_serial,
            "account_id": result.account_id,
        })
        self.mqtt.publish_raw(LATEST_READING_TOPIC, usage.latest_reading)
        self.mqtt.publish_raw(HOURLY_TOPIC, usage.reading_count)
        self.mqtt.publish_raw(HOURLY_ATTRIBUTES_TOPIC, {"readings": usage.readings})
        self.mqtt.publish_raw(READING_COUNT_TOPIC, usage.reading_count)
        timestamp = usage.timestamp_iso()
        if timestamp:
            self.mqtt.publish_raw(LAST_UPDATED_TOPIC, timestamp)
        self.mqtt.publish_raw(DATA_AGE_TOPIC, usage.days_back)
        logger.info(
            "Published meter data: %.2f L (%d readings, %d days old)",
            usage.daily_usage, usage.reading_count, usage.days_back
        )
