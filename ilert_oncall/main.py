"""iLert on-call add-on main entry point."""

import logging
import sys
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from shared.addon_base import parse_addon_args, parse_log_level, set_log_level, setup_logging, setup_signal_handlers
from shared.config_loader import ConfigError, load_addon_config
from shared.ha_api import HomeAssistantApi
from shared.mqtt_setup import setup_mqtt_client
from shared.poller import Poller

from . import __version__
from .fetchers import collect_sensor_readings, describe, mute_reading
from .ilert_api import ILertApi
from .models import IlertConfig, SensorReading
from .schedule import fetch_on_call_schedule, schedule_reading, sync_calendar
from .sensors import (
    ADDON_ID,
    MUTE_OPTIONS,
    MUTE_SENSOR_ID,
    OFFLINE_PAYLOAD,
    SCHEDULE_SENSOR_ID,
    STATUS_TOPIC,
    UNMUTE_OPTION,
    IlertPublisher,
)

logger = logging.getLogger(__name__)

ILERT_REQUIRED_FIELDS = ['api_key', 'ilert_email']

ILERT_CONFIG_DEFAULTS = {
    'poll_interval': 300,
    'calendar_entity': '',
    'calendar_personal_only': False,
    'calendar_days_ahead': 28,
    'log_level': 'info',
    'mqtt_host': '',
    'mqtt_port': 1883,
    'mqtt_user': '',
    'mqtt_password': '',
}


def load_config(config_path: str) -> Dict[str, Any]:
    return load_addon_config(
        config_path=config_path,
        defaults=ILERT_CONFIG_DEFAULTS,
        required_fields=ILERT_REQUIRED_FIELDS,
    )


class IlertService(Poller):
    """Mirrors iLert state into Home Assistant and handles its controls."""

    name = "ilert"

    def __init__(
        self,
        config: IlertConfig,
        api: ILertApi,
        publisher: IlertPublisher,
        ha_api: Optional[HomeAssistantApi] = None,
        shutdown_event: Optional[threading.Event] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        super().__init__(config.poll_interval, shutdown_event)
        self.config = config
        self.api = api
        self.publisher = publisher
        self.ha_api = ha_api
        self._clock = clock
        self._controls_lock = threading.Lock()
        self._acknowledge_requested = False
        self._requested_mute: Optional[str] = None

    def start(self) -> None:
        self.publisher.publish_discovery(self.handle_acknowledge, self.handle_mute_select)
        self.publisher.publish_status("online", "Starting")

    def stop(self) -> None:
        self.publisher.publish_offline()

    def _publish_if_changed(self, object_id: str, reading: SensorReading) -> bool:
        change = self.state.compare(object_id, reading.as_tuple())
        if not change.changed:
            return False
        if self.publisher.publish_reading(object_id, reading):
            self.state.commit(object_id, change.current)
            return True
        logger.warning("Failed to publish %s, will retry next cycle", object_id)
        return False

    def poll(self) -> None:
        self._apply_controls()
        self.api.clear_user_cache()

        readings = collect_sensor_readings(self.api, self.config)
        updated = [object_id for object_id, reading in readings.items()
                   if self._publish_if_changed(object_id, reading)]
        if updated:
            logger.info("Updated sensors: %s", ", ".join(updated))
        else:
            logger.debug("No sensor changes")

        self._update_mute_status()
        self._update_schedule()

        self.publisher.publish_status("online", describe(readings))

    def _update_mute_status(self) -> None:
        status = self.api.get_mute_status()
        self._publish_if_changed(MUTE_SENSOR_ID, mute_reading(status))
        if status.was_reset:
            logger.info("Mute expired, resetting select to %s", UNMUTE_OPTION)
            self.publisher.publish_mute_option(UNMUTE_OPTION)

    def _update_schedule(self) -> None:
        now = self._clock()
        schedule = fetch_on_call_schedule(self.api, self.config, now)
        self._publish_if_changed(SCHEDULE_SENSOR_ID, schedule_reading(schedule))

        if self.ha_api and self.config.calendar_entity:
            sync_calendar(
                self.ha_api,
                self.config.calendar_entity,
                schedule.events,
                now,
                now + timedelta(days=self.config.calendar_days_ahead),
            )

    def on_cycle_error(self, exc: Exception) -> None:
        self.publisher.publish_status("error", str(exc))

    def _apply_controls(self) -> None:
        with self._controls_lock:
            acknowledge, self._acknowledge_requested = self._acknowledge_requested, False
            option, self._requested_mute = self._requested_mute, None

        if acknowledge:
            accepted = self.api.accept_all_pending_alerts()
            logger.info("Acknowledged %d pending alert(s)", accepted)

        if option is not None:
            if self.api.mute_notifications(MUTE_OPTIONS[option]):
                self.publisher.publish_mute_option(option)
            else:
                logger.error("Failed to apply mute option %s", option)

    # Controls, called from the MQTT network thread. They only record the
    # request; the work happens in the next cycle on the main loop.

    def handle_acknowledge(self) -> None:
        with self._controls_lock:
            self._acknowledge_requested = True
        self.request_refresh("acknowledge button")

    def handle_mute_select(self, option: str) -> None:
        if option not in MUTE_OPTIONS:
            logger.warning("Ignoring unknown mute option: %s", option)
            return

        with self._controls_lock:
            self._requested_mute = option
        self.request_refresh(f"mute select ({option})")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the add-on."""
    args = parse_addon_args("iLert on-call sync", argv)
    setup_logging()
    logger.info("iLert add-on v%s starting...", __version__)

    try:
        raw_config = load_config(args.config)
        config = IlertConfig.from_config(raw_config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    set_log_level(parse_log_level(config.log_level))
    logger.info(
        "Polling every %ds for %s, calendar: %s",
        config.poll_interval, config.email, config.calendar_entity or "disabled"
    )

    shutdown_event = setup_signal_handlers(logger)

    mqtt_client = setup_mqtt_client(
        addon_name="iLert",
        addon_id=ADDON_ID,
        config=raw_config,
        manufacturer="iLert",
        model="On-Call Sync",
        sw_version=__version__,
        will_topic=STATUS_TOPIC,
        will_payload=OFFLINE_PAYLOAD,
    )
    if mqtt_client is None:
        logger.error("MQTT is required for this add-on, exiting")
        return 1

    api = ILertApi(config.api_key, config.email)
    ha_api = None
    if config.calendar_entity:
        ha_api = HomeAssistantApi()
        if not ha_api.test_connection():
            logger.warning("Home Assistant API unreachable, calendar %s will not update until it is", config.calendar_entity)
    service = IlertService(config, api, IlertPublisher(mqtt_client), ha_api=ha_api, shutdown_event=shutdown_event)

    try:
        service.start()
        service.run(run_once=args.once)
    finally:
        service.stop()
        mqtt_client.disconnect()

    logger.info("iLert add-on stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
