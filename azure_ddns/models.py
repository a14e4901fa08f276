"""Data models for the Azure Dynamic DNS add-on."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shared.config_loader import ConfigError

DEFAULT_IPV4_SERVICES = ["https://api.ipify.org", "https://icanhazip.com"]
DEFAULT_IPV6_SERVICES = ["https://api64.ipify.org", "https://ipv6.icanhazip.com"]


@dataclass
class DomainConfig:
    """A DNS zone and the record names to keep updated in it."""

    zone: str
    records: List[str]

    @property
    def topic_key(self) -> str:
        """Zone name usable as an MQTT topic level / object id."""
        return self.zone.replace(".", "_")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DomainConfig":
        zone = (data.get("zone") or "").strip()
        records = data.get("records") or []
        if isinstance(records, str):
            records = [r.strip() for r in records.split(",")]
        records = [r for r in records if r]
        if not zone or not records:
            raise ConfigError(f"Domain entry needs a zone and at least one record: {data}")
        return cls(zone=zone, records=records)


@dataclass
class DdnsConfig:
    """Typed add-on options."""

    tenant_id: str
    client_id: str
    client_secret: str
    subscription_id: str
    resource_group: str
    domains: List[DomainConfig]
    check_interval: int = 300
    ipv4_enabled: bool = True
    ipv6_enabled: bool = False
    ip_services: List[str] = field(default_factory=lambda: list(DEFAULT_IPV4_SERVICES))
    ipv6_services: List[str] = field(default_factory=lambda: list(DEFAULT_IPV6_SERVICES))
    record_ttl: int = 300
    update_on_startup: bool = True
    calendar_entity: str = ""
    log_level: str = "info"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DdnsConfig":
        domains = config.get("domains") or []
        if not isinstance(domains, list) or not domains:
            raise ConfigError("At least one domain must be configured")

        return cls(
            tenant_id=config["azure_tenant_id"],
            client_id=config["azure_client_id"],
            client_secret=config["azure_client_secret"],
            subscription_id=config["azure_subscription_id"],
            resource_group=config["azure_resource_group"],
            domains=[DomainConfig.from_dict(d) for d in domains],
            check_interval=max(30, int(config.get("check_interval", 300))),
            ipv4_enabled=config.get("ipv4_enabled") is not False,
            ipv6_enabled=config.get("ipv6_enabled") is True,
            ip_services=list(config.get("ip_services") or DEFAULT_IPV4_SERVICES),
            ipv6_services=list(config.get("ipv6_services") or DEFAULT_IPV6_SERVICES),
            record_ttl=int(config.get("record_ttl", 300)),
            update_on_startup=config.get("update_on_startup") is not False,
            calendar_entity=config.get("calendar_entity") or "",
            log_level=config.get("log_level", "info"),
        )


@dataclass(frozen=True)
class UpdateRecord:
    """One DNS record write that went through."""

    record: str
    record_type: str
    value: str

    def describe(self) -> str:
        return f"{self.record} ({self.record_type}) → {self.value}"


@dataclass
class IpCheckResult:
    """Outcome of one public IP lookup round."""

    new_ipv4: Optional[str] = None
    new_ipv6: Optional[str] = None
    previous_ipv4: Optional[str] = None
    previous_ipv6: Optional[str] = None
    ipv4_changed: bool = False
    ipv6_changed: bool = False
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def any_changed(self) -> bool:
        return self.ipv4_changed or self.ipv6_changed


@dataclass
class DnsUpdateOutcome:
    """Aggregated result of writing records across all domains."""

    by_zone: Dict[str, List[UpdateRecord]] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def records(self) -> List[UpdateRecord]:
        return [record for records in self.by_zone.values() for record in records]

    @property
    def succeeded(self) -> List[str]:
        return list(self.by_zone)

    @property
    def ok(self) -> bool:
        return not self.failed
