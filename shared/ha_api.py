"""Home Assistant REST API client for add-ons.

Covers the pieces the add-ons need from Home Assistant itself: calling
services and reading/writing calendar events.

Usage:
    from shared.ha_api import HomeAssistantApi

    ha = HomeAssistantApi()  # Auto-detects Supervisor or uses env vars
    ha.create_calendar_event("calendar.ops", "DNS Records Updated", "...", start, end)
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)


def get_ha_api_config() -> Tuple[str, str]:
    """Get Home Assistant API configuration from environment.

    Supports Supervisor-managed add-ons (SUPERVISOR_TOKEN, legacy HASSIO_TOKEN)
    and standalone development (HA_API_TOKEN, HA_API_URL).

    Returns:
        Tuple of (base_url, token)
    """
    token = (
        os.getenv('HA_API_TOKEN')
        or os.getenv('SUPERVISOR_TOKEN')
        or os.getenv('HASSIO_TOKEN', '')
    )
    base_url = os.getenv('HA_API_URL') or 'http://supervisor/core/api'
    return base_url.rstrip('/'), token


def _isoformat(value: Any) -> str:
    return value.isoformat() if isinstance(value, datetime) else str(value)


class HomeAssistantApi:
    """Client for the Home Assistant REST API.

    Failures are logged and reported through the return value; nothing
    here raises for HTTP or network errors.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10,
    ):
        env_url, env_token = get_ha_api_config()
        self.base_url = (base_url or env_url).rstrip('/')
        self.token = token if token is not None else env_token
        self.timeout = timeout

        self._session = session or requests.Session()
        self._session.headers.update({
            'Authorization': f'Bearer {self.token}',
            'Content-Type': 'application/json',
        })

    def call_service(self, domain: str, service: str, data: Dict[str, Any]) -> bool:
        """Call a Home Assistant service.

        Args:
            domain: Service domain (e.g., 'calendar')
            service: Service name (e.g., 'create_event')
            data: Service data dictionary

        Returns:
            True if successful, False otherwise
        """
        if not self.token:
            logger.error("Cannot call %s.%s: no Home Assistant token available", domain, service)
            return False

        try:
            url = f"{self.base_url}/services/{domain}/{service}"
            response = self._session.post(url, json=data, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("Exception calling %s.%s: %s", domain, service, e)
            return False

        if response.ok:
            logger.debug("Called %s.%s with %s", domain, service, data)
            return True

        logger.error(
            "Failed to call %s.%s: %d - %s",
            domain, service, response.status_code, response.text[:200]
        )
        return False

    def create_calendar_event(
        self,
        entity_id: str,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
    ) -> bool:
        """Create an event in a Home Assistant calendar."""
        data = {
            'entity_id': entity_id,
            'summary': summary,
            'description': description,
            'start_date_time': _isoformat(start),
            'end_date_time': _isoformat(end),
        }
        if self.call_service('calendar', 'create_event', data):
            logger.info("Created calendar event '%s' in %s", summary, entity_id)
            return True
        return False

    def get_calendar_events(self, entity_id: str, start: datetime, end: datetime) -> Optional[List[Dict[str, Any]]]:
        """List events of a calendar entity between ``start`` and ``end``.

        Returns:
            List of event dicts as returned by Home Assistant, None on error
        """
        if not self.token:
            logger.error("Cannot read %s: no Home Assistant token available", entity_id)
            return None

        try:
            response = self._session.get(
                f"{self.base_url}/calendars/{entity_id}",
                params={'start': _isoformat(start), 'end': _isoformat(end)},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Exception reading calendar %s: %s", entity_id, e)
            return None

        if not response.ok:
            logger.error(
                "Failed to read calendar %s: %d - %s",
                entity_id, response.status_code, response.text[:200]
            )
            return None

        try:
            events = response.json()
        except ValueError:
            logger.error("Calendar %s returned invalid JSON", entity_id)
            return None
        if not isinstance(events, list):
            logger.error("Calendar %s returned unexpected payload", entity_id)
            return None
        return events

    def test_connection(self) -> bool:
        """Check that the API answers with the configured token."""
        try:
            response = self._session.get(f"{self.base_url}/", timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Home Assistant API test exception: %s", e)
            return False

        if response.ok:
            logger.info("Home Assistant API connection successful")
            return True

        logger.warning(
            "Home Assistant API test failed: %d - %s",
            response.status_code, response.text[:200]
        )
        return False
