"""ESWater smart meter add-on main entry point."""

import logging
import sys
import threading
from typing import Any, Dict, List, Optional

from shared.addon_base import parse_addon_args, parse_log_level, set_log_level, setup_logging, setup_signal_handlers
from shared.backoff import FailureTracker
from shared.config_loader import ConfigError, load_addon_config
from shared.mqtt_setup import setup_mqtt_client
from shared.poller import Poller

from . import __version__
from .data_fetcher import WaterUsageFetcher
from .models import EswaterConfig, FetchResult
from .publisher import OFFLINE_PAYLOAD, STATUS_TOPIC, EswaterPublisher

logger = logging.getLogger(__name__)

ES_REQUIRED_FIELDS = ['eswater_username', 'eswater_password']

ES_CONFIG_DEFAULTS = {
    'poll_interval_minutes': 60,
    'browser_executable': '/usr/bin/chromium-browser',
    'headless': True,
    'allow_ambiguous_login': True,
    'min_days_back': 3,
    'max_days_back': 7,
    'log_level': 'info',
    'mqtt_host': '',
    'mqtt_port': 1883,
    'mqtt_user': '',
    'mqtt_password': '',
}

USAGE_KEY = "usage"


def load_config(config_path: str) -> Dict[str, Any]:
    return load_addon_config(
        config_path=config_path,
        defaults=ES_CONFIG_DEFAULTS,
        required_fields=ES_REQUIRED_FIELDS,
    )


class EswaterService(Poller):
    """Polls the portal and republishes meter data when it changes."""

    name = "eswater"

    def __init__(
        self,
        config: EswaterConfig,
        publisher: EswaterPublisher,
        fetcher: WaterUsageFetcher,
        shutdown_event: Optional[threading.Event] = None,
    ):
        super().__init__(config.poll_interval_minutes * 60, shutdown_event)
        self.config = config
        self.publisher = publisher
        self.fetcher = fetcher
        self.last_result: Optional[FetchResult] = None

    def start(self) -> None:
        self.publisher.publish_discovery()
        self.publisher.publish_status("online", "Starting")

    def stop(self) -> None:
        self.publisher.publish_offline()

    def poll(self) -> None:
        result = self.fetcher.fetch()
        self.last_result = result

        if result.success and result.usage is not None:
            change = self.state.compare(USAGE_KEY, result.usage.signature)
            if change.is_baseline:
                logger.info("Recording first meter reading")
            if change.changed:
                self.publisher.publish_usage(result.usage, result)
                self.state.commit(USAGE_KEY, change.current)
            else:
                logger.info("Meter data unchanged since last poll")

        self.publisher.publish_result(result)

    def on_cycle_error(self, exc: Exception) -> None:
        self.publisher.publish_status("error", str(exc))


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the add-on."""
    args = parse_addon_args("ESWater smart meter poller", argv)
    setup_logging()
    logger.info("ESWater add-on v%s starting...", __version__)

    try:
        raw_config = load_config(args.config)
        config = EswaterConfig.from_config(raw_config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    set_log_level(parse_log_level(config.log_level))
    logger.info("Polling every %d minutes", config.poll_interval_minutes)

    shutdown_event = setup_signal_handlers(logger)

    mqtt_client = setup_mqtt_client(
        addon_name="ESWater Smart Meter",
        addon_id="eswater",
        config=raw_config,
        manufacturer="Essex & Suffolk Water",
        model="Smart Water Meter",
        sw_version=__version__,
        will_topic=STATUS_TOPIC,
        will_payload=OFFLINE_PAYLOAD,
        device_identifier="eswater_meter",
    )
    if mqtt_client is None:
        logger.error("MQTT is required for this add-on, exiting")
        return 1

    # Process-local: a restart clears the failure history
    tracker = FailureTracker()
    service = EswaterService(
        config,
        EswaterPublisher(mqtt_client),
        WaterUsageFetcher(config, tracker),
        shutdown_event=shutdown_event,
    )

    try:
        service.start()
        service.run(run_once=args.once)
    finally:
        service.stop()
        mqtt_client.disconnect()

    logger.info("ESWater add-on stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
