"""Public IP address lookup against plain-text IP echo services."""

import logging
import re
from typing import List, Optional

import requests

from shared.poller import PollState

from .models import DdnsConfig, IpCheckResult

logger = logging.getLogger(__name__)

IPV4_PATTERN = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")
IPV6_PATTERN = re.compile(
    r"^("
    r"([0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}|"
    r"([0-9a-fA-F]{1,4}:){1,7}:|"
    r"([0-9a-fA-F]{1,4}:){1,6}:[0-9a-fA-F]{1,4}|"
    r"([0-9a-fA-F]{1,4}:){1,5}(:[0-9a-fA-F]{1,4}){1,2}|"
    r"([0-9a-fA-F]{1,4}:){1,4}(:[0-9a-fA-F]{1,4}){1,3}|"
    r"([0-9a-fA-F]{1,4}:){1,3}(:[0-9a-fA-F]{1,4}){1,4}|"
    r"([0-9a-fA-F]{1,4}:){1,2}(:[0-9a-fA-F]{1,4}){1,5}|"
    r"[0-9a-fA-F]{1,4}:(:[0-9a-fA-F]{1,4}){1,6}|"
    r":((:[0-9a-fA-F]{1,4}){1,7}|:)|"
    r"fe80:(:[0-9a-fA-F]{0,4}){0,4}%[0-9a-zA-Z]+|"
    r"::(ffff(:0{1,4})?:)?((25[0-5]|(2[0-4]|1?[0-9])?[0-9])\.){3}(25[0-5]|(2[0-4]|1?[0-9])?[0-9])|"
    r"([0-9a-fA-F]{1,4}:){1,4}:((25[0-5]|(2[0-4]|1?[0-9])?[0-9])\.){3}(25[0-5]|(2[0-4]|1?[0-9])?[0-9])"
    r")$"
)

LOOKUP_TIMEOUT = 10

IPV4_KEY = "ipv4"
IPV6_KEY = "ipv6"


class IpDetectionError(Exception):
    """No configured service returned a valid address."""


def is_valid_ip(value: str, version: int) -> bool:
    pattern = IPV4_PATTERN if version == 4 else IPV6_PATTERN
    return bool(pattern.match(value))


def get_current_public_ip(
    version: int,
    services: List[str],
    session: Optional[requests.Session] = None,
    timeout: float = LOOKUP_TIMEOUT,
) -> str:
    """Ask each service in order and return the first valid address.

    Raises:
        IpDetectionError: when every service failed or answered garbage
    """
    http = session or requests.Session()

    for service in services:
        try:
            response = http.get(service, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Failed to get IPv%d from %s: %s", version, service, e)
            continue

        ip = response.text.strip()
        if is_valid_ip(ip, version):
            logger.debug("Got IPv%d %s from %s", version, ip, service)
            return ip

        logger.warning("Invalid IPv%d format from %s: %r", version, service, ip[:64])

    raise IpDetectionError(f"Unable to determine public IPv{version} from any service")


def check_ip_changes(
    state: PollState,
    config: DdnsConfig,
    session: Optional[requests.Session] = None,
) -> IpCheckResult:
    """Look up the enabled address families and compare with the cached values.

    A failing family is recorded in ``result.errors`` and does not stop the
    other one from being checked. ``state`` is only read here.
    """
    result = IpCheckResult(
        previous_ipv4=state.get(IPV4_KEY),
        previous_ipv6=state.get(IPV6_KEY),
    )

    if config.ipv4_enabled:
        try:
            result.new_ipv4 = get_current_public_ip(4, config.ip_services, session)
            result.ipv4_changed = state.compare(IPV4_KEY, result.new_ipv4).changed
            if result.ipv4_changed:
                logger.info("IPv4 changed from %s to %s", result.previous_ipv4 or "(none)", result.new_ipv4)
        except IpDetectionError as e:
            logger.warning("IPv4 check failed: %s", e)
            result.errors[IPV4_KEY] = str(e)

    if config.ipv6_enabled:
        try:
            result.new_ipv6 = get_current_public_ip(6, config.ipv6_services, session)
            result.ipv6_changed = state.compare(IPV6_KEY, result.new_ipv6).changed
            if result.ipv6_changed:
                logger.info("IPv6 changed from %s to %s", result.previous_ipv6 or "(none)", result.new_ipv6)
        except IpDetectionError as e:
            logger.warning("IPv6 check failed: %s", e)
            result.errors[IPV6_KEY] = str(e)

    return result
