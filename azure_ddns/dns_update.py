"""Writes the current IPs into every configured zone.

Domains are isolated from each other: a failing record aborts the rest of
its own domain, but the remaining domains are still updated.
"""

import logging
from typing import Iterable, List, Optional

from .azure_dns import AzureDnsClient, AzureDnsError
from .models import DnsUpdateOutcome, DomainConfig, UpdateRecord

logger = logging.getLogger(__name__)


def _fqdn(name: str, zone: str) -> str:
    return zone if name == "@" else f"{name}.{zone}"


def update_domain_records(
    client: AzureDnsClient,
    domain: DomainConfig,
    ipv4: Optional[str] = None,
    ipv6: Optional[str] = None,
    ttl: int = 300,
) -> List[UpdateRecord]:
    """Write A and/or AAAA records for every record name of ``domain``.

    Raises:
        AzureDnsError: on the first failing write, remaining records are skipped
    """
    applied: List[UpdateRecord] = []
    for name in domain.records:
        if ipv4:
            client.create_or_update_record(domain.zone, name, "A", ipv4, ttl)
            applied.append(UpdateRecord(_fqdn(name, domain.zone), "A", ipv4))
        if ipv6:
            client.create_or_update_record(domain.zone, name, "AAAA", ipv6, ttl)
            applied.append(UpdateRecord(_fqdn(name, domain.zone), "AAAA", ipv6))
    return applied


def update_all_dns_records(
    client: AzureDnsClient,
    domains: Iterable[DomainConfig],
    ipv4: Optional[str] = None,
    ipv6: Optional[str] = None,
    ttl: int = 300,
) -> DnsUpdateOutcome:
    """Update every domain, collecting per-domain success and failure."""
    outcome = DnsUpdateOutcome()

    for domain in domains:
        try:
            records = update_domain_records(client, domain, ipv4, ipv6, ttl)
        except AzureDnsError as e:
            logger.error("DNS update failed for %s: %s", domain.zone, e)
            outcome.failed[domain.zone] = str(e)
            continue

        outcome.by_zone[domain.zone] = records
        logger.info("Updated %d record(s) in %s", len(records), domain.zone)

    return outcome
