"""Azure Dynamic DNS add-on main entry point."""

import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from shared.addon_base import parse_addon_args, parse_log_level, set_log_level, setup_logging, setup_signal_handlers
from shared.config_loader import ConfigError, load_addon_config
from shared.ha_api import HomeAssistantApi
from shared.ha_mqtt_discovery import MqttDiscovery
from shared.mqtt_setup import setup_mqtt_client
from shared.poller import Poller

from . import __version__
from .azure_dns import AzureDnsClient
from .calendar_event import create_dns_update_calendar_event
from .dns_update import update_all_dns_records
from .ip_detection import IPV4_KEY, IPV6_KEY, check_ip_changes
from .models import DdnsConfig, DnsUpdateOutcome, IpCheckResult
from .publisher import OFFLINE_PAYLOAD, STATUS_TOPIC, DdnsPublisher

logger = logging.getLogger(__name__)

DDNS_REQUIRED_FIELDS = [
    'azure_tenant_id',
    'azure_client_id',
    'azure_client_secret',
    'azure_subscription_id',
    'azure_resource_group',
]

DDNS_CONFIG_DEFAULTS = {
    'check_interval': 300,
    'ipv4_enabled': True,
    'ipv6_enabled': False,
    'record_ttl': 300,
    'update_on_startup': True,
    'calendar_entity': '',
    'log_level': 'info',
    'mqtt_host': '',
    'mqtt_port': 1883,
    'mqtt_user': '',
    'mqtt_password': '',
}


def load_config(config_path: str) -> Dict[str, Any]:
    """Load the raw add-on options, raising ConfigError when incomplete."""
    config = load_addon_config(
        config_path=config_path,
        defaults=DDNS_CONFIG_DEFAULTS,
        required_fields=DDNS_REQUIRED_FIELDS,
    )
    if not config.get('domains'):
        raise ConfigError("Required config field missing: domains")
    return config


class AzureDdnsService(Poller):
    """Checks the public IP and pushes changes to Azure DNS."""

    name = "azure-ddns"

    def __init__(
        self,
        config: DdnsConfig,
        publisher: DdnsPublisher,
        dns_client: AzureDnsClient,
        ha_api: Optional[HomeAssistantApi] = None,
        session: Optional[requests.Session] = None,
        shutdown_event: Optional[threading.Event] = None,
    ):
        super().__init__(config.check_interval, shutdown_event)
        self.config = config
        self.publisher = publisher
        self.dns_client = dns_client
        self.ha_api = ha_api
        self.session = session or requests.Session()

    def start(self) -> None:
        self.publisher.publish_discovery()
        self.publisher.publish_status("online", "Starting")

    def stop(self) -> None:
        self.publisher.publish_offline()

    def _should_write(self, changed: bool, previous: Optional[str]) -> bool:
        if not changed:
            return False
        return previous is not None or self.config.update_on_startup

    def poll(self) -> None:
        result = check_ip_changes(self.state, self.config, self.session)

        self.publisher.publish_ip(4, result.new_ipv4, result.previous_ipv4, result.ipv4_changed)
        self.publisher.publish_ip(6, result.new_ipv6, result.previous_ipv6, result.ipv6_changed)

        write_ipv4 = result.new_ipv4 if self._should_write(result.ipv4_changed, result.previous_ipv4) else None
        write_ipv6 = result.new_ipv6 if self._should_write(result.ipv6_changed, result.previous_ipv6) else None

        outcome = None
        if write_ipv4 or write_ipv6:
            outcome = self._update_dns(write_ipv4, write_ipv6)
        elif result.any_changed:
            logger.info("Recorded baseline address without updating DNS")
        else:
            logger.debug("No IP change detected")

        self._commit(result, outcome)
        self._report(result, outcome)

    def _update_dns(self, ipv4: Optional[str], ipv6: Optional[str]) -> DnsUpdateOutcome:
        outcome = update_all_dns_records(
            self.dns_client, self.config.domains, ipv4=ipv4, ipv6=ipv6, ttl=self.config.record_ttl
        )

        for domain in self.config.domains:
            if domain.zone in outcome.failed:
                self.publisher.publish_domain_status(domain, "error", outcome.failed[domain.zone])
            else:
                self.publisher.publish_domain_status(domain, "updated", records=outcome.by_zone.get(domain.zone))

        if outcome.records:
            self.publisher.publish_last_update(datetime.now(timezone.utc).isoformat())
            if self.ha_api and self.config.calendar_entity:
                create_dns_update_calendar_event(self.ha_api, self.config.calendar_entity, outcome.records)

        return outcome

    def _commit(self, result: IpCheckResult, outcome: Optional[DnsUpdateOutcome]) -> None:
        # Failed domains keep the old value cached so the next cycle retries the write
        if outcome is not None and not outcome.ok:
            logger.warning("Keeping previous addresses cached, DNS update will be retried")
            return
        if result.new_ipv4 is not None:
            self.state.commit(IPV4_KEY, result.new_ipv4)
        if result.new_ipv6 is not None:
            self.state.commit(IPV6_KEY, result.new_ipv6)

    def _report(self, result: IpCheckResult, outcome: Optional[DnsUpdateOutcome]) -> None:
        problems: List[str] = list(result.errors.values())
        if outcome is not None:
            problems.extend(f"{zone}: {message}" for zone, message in outcome.failed.items())

        if problems:
            self.publisher.publish_status("error", "; ".join(problems))
            return

        current = ", ".join(ip for ip in (result.new_ipv4, result.new_ipv6) if ip)
        self.publisher.publish_status("online", f"Current IP: {current}" if current else "")

    def on_cycle_error(self, exc: Exception) -> None:
        self.publisher.publish_status("error", str(exc))


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the add-on."""
    args = parse_addon_args("Azure Dynamic DNS updater", argv)
    setup_logging()
    logger.info("Azure Dynamic DNS add-on v%s starting...", __version__)

    try:
        raw_config = load_config(args.config)
        config = DdnsConfig.from_config(raw_config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    set_log_level(parse_log_level(config.log_level))
    logger.info(
        "Monitoring %d domain(s), IPv4=%s, IPv6=%s, interval=%ds",
        len(config.domains), config.ipv4_enabled, config.ipv6_enabled, config.check_interval
    )

    shutdown_event = setup_signal_handlers(logger)

    mqtt_client: Optional[MqttDiscovery] = setup_mqtt_client(
        addon_name="Azure Dynamic DNS",
        addon_id="azure_ddns",
        config=raw_config,
        manufacturer="Azure DDNS Add-on",
        model="Dynamic DNS Updater",
        sw_version=__version__,
        will_topic=STATUS_TOPIC,
        will_payload=OFFLINE_PAYLOAD,
    )
    if mqtt_client is None:
        logger.error("MQTT is required for this add-on, exiting")
        return 1

    dns_client = AzureDnsClient(
        tenant_id=config.tenant_id,
        client_id=config.client_id,
        client_secret=config.client_secret,
        subscription_id=config.subscription_id,
        resource_group=config.resource_group,
    )
    ha_api = None
    if config.calendar_entity:
        ha_api = HomeAssistantApi()
        if not ha_api.test_connection():
            logger.warning("Home Assistant API unreachable, calendar %s will not update until it is", config.calendar_entity)

    service = AzureDdnsService(
        config,
        DdnsPublisher(mqtt_client, config),
        dns_client,
        ha_api=ha_api,
        shutdown_event=shutdown_event,
    )

    try:
        service.start()
        service.run(run_once=args.once)
    finally:
        service.stop()
        mqtt_client.disconnect()

    logger.info("Azure Dynamic DNS add-on stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
